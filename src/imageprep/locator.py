"""Element locator: asynchronous pre-order walk over a template tree.

``locate`` is an async generator.  The walk is suspended at every match
until the consumer asks for the next one, so whatever the consumer awaits
for a match (path resolution, image conversion) completes before any later
element is visited.  Matches therefore arrive strictly in document order.
"""

from __future__ import annotations

from collections.abc import AsyncIterator, Sequence

from imageprep.logging import get_logger
from imageprep.models import ElementNode, ImageMatch, TemplateTree

logger = get_logger("locator")


class ElementLocator:
    """Find image-reference elements and their source attribute.

    Args:
        tags: Element names that count as image references.
        attribute: Name of the attribute carrying the reference.
    """

    def __init__(self, tags: Sequence[str] = ("img",), attribute: str = "src") -> None:
        self.tags = frozenset(tags)
        self.attribute = attribute

    def matches(self, node: ElementNode) -> bool:
        return node.name in self.tags

    async def locate(self, tree: TemplateTree) -> AsyncIterator[ImageMatch]:
        """Yield one ``ImageMatch`` per usable image element, in document order.

        Elements without the source attribute, or whose value is an
        expression, interpolated, or empty, are skipped.
        """
        filename = tree.source.filename or "<template>"
        work: list[ElementNode] = list(reversed(tree.roots))
        order = 0
        while work:
            node = work.pop()
            work.extend(reversed(node.children))
            if not self.matches(node):
                continue

            attr = node.attribute(self.attribute)
            if attr is None:
                logger.debug(
                    "%s: <%s> at %d has no %s attribute",
                    filename,
                    node.name,
                    node.span.start,
                    self.attribute,
                )
                continue
            if not attr.is_static or not (attr.raw or "").strip():
                logger.debug(
                    "%s: <%s> at %d has a dynamic or empty %s, leaving it alone",
                    filename,
                    node.name,
                    node.span.start,
                    self.attribute,
                )
                continue

            yield ImageMatch(element_order=order, tag=node.name, attribute=attr)
            order += 1
