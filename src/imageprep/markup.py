"""Template markup parser.

Builds a ``TemplateTree`` from component template text using the
standard-library HTML tokenizer.  The tokenizer only reports tag names
and decoded attribute values, so element and attribute-value offsets are
recovered by re-scanning the raw start-tag text, which keeps quotes and
``{...}`` expression delimiters exactly as written.

``<script>`` and ``<style>`` bodies are raw text: markup inside them is
never reported as elements.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from html.parser import HTMLParser
from typing import Protocol

from imageprep.errors import TemplateParseError
from imageprep.logging import get_logger
from imageprep.models import (
    AttributeValue,
    ElementNode,
    ScriptRegion,
    Span,
    TemplateSource,
    TemplateTree,
)

logger = get_logger("markup")

VOID_ELEMENTS = frozenset(
    {
        "area",
        "base",
        "br",
        "col",
        "embed",
        "hr",
        "img",
        "input",
        "link",
        "meta",
        "param",
        "source",
        "track",
        "wbr",
    }
)
RAW_TEXT_ELEMENTS = frozenset({"script", "style"})

_TAG_NAME = re.compile(r"<([^\s/>]+)")
_DANGLING_MARKUP = re.compile(r"<[a-zA-Z/!]")
_WHITESPACE = " \t\n\r\f"


class MarkupParser(Protocol):
    """Anything that turns template text into a ``TemplateTree``."""

    def parse(self, text: str, *, filename: str = "") -> TemplateTree: ...


def _match_brace(raw: str, start: int, limit: int) -> int:
    """Return the index of the ``}`` closing the ``{`` at *start*, or -1."""
    depth = 0
    quote: str | None = None
    i = start
    while i < limit:
        ch = raw[i]
        if quote:
            if ch == "\\":
                i += 2
                continue
            if ch == quote:
                quote = None
        elif ch in "\"'`":
            quote = ch
        elif ch == "{":
            depth += 1
        elif ch == "}":
            depth -= 1
            if depth == 0:
                return i
        i += 1
    return -1


def _tag_end(text: str, start: int) -> int:
    """Return the offset just past the ``>`` closing the tag at *start*, or -1.

    Quoted strings and ``{...}`` expressions are skipped, so a ``>`` inside
    them (``on:load={() => ready = true}``) does not end the tag.
    """
    i = start + 1
    size = len(text)
    while i < size:
        ch = text[i]
        if ch in "\"'":
            close = text.find(ch, i + 1)
            if close < 0:
                return -1
            i = close + 1
        elif ch == "{":
            close = _match_brace(text, i, size)
            if close < 0:
                return -1
            i = close + 1
        elif ch == ">":
            return i + 1
        else:
            i += 1
    return -1


def _skip_whitespace(raw: str, i: int, limit: int) -> int:
    while i < limit and raw[i] in _WHITESPACE:
        i += 1
    return i


def scan_attributes(raw: str, base: int) -> list[AttributeValue]:
    """Split a raw start tag into attributes with absolute value spans.

    Args:
        raw: Start-tag text from ``<`` to ``>`` inclusive.
        base: Offset of ``raw`` within the template.

    Raises:
        TemplateParseError: If a quoted value is never closed.
    """
    name_match = _TAG_NAME.match(raw)
    if name_match is None:
        return []
    limit = len(raw)
    if raw.endswith("/>"):
        limit -= 2
    elif raw.endswith(">"):
        limit -= 1

    attributes: list[AttributeValue] = []
    i = name_match.end()
    while True:
        i = _skip_whitespace(raw, i, limit)
        if i >= limit:
            break
        ch = raw[i]

        if ch == "{":
            # Shorthand ``{src}`` or spread ``{...props}``
            close = _match_brace(raw, i, limit)
            end = close if close >= 0 else limit
            inner = raw[i + 1 : end]
            attributes.append(
                AttributeValue(
                    name=inner.strip(),
                    raw=inner,
                    span=Span(start=base + i + 1, end=base + end),
                    outer_span=Span(start=base + i, end=base + min(end + 1, limit)),
                    delimiter="{",
                )
            )
            i = end + 1
            continue

        j = i
        while j < limit and raw[j] not in _WHITESPACE and raw[j] not in "=/>":
            j += 1
        if j == i:
            i += 1
            continue
        name = raw[i:j]

        k = _skip_whitespace(raw, j, limit)
        if k >= limit or raw[k] != "=":
            attributes.append(AttributeValue(name=name))
            i = j
            continue

        k = _skip_whitespace(raw, k + 1, limit)
        if k >= limit:
            attributes.append(
                AttributeValue(
                    name=name,
                    raw="",
                    span=Span(start=base + k, end=base + k),
                    outer_span=Span(start=base + k, end=base + k),
                )
            )
            break

        opener = raw[k]
        if opener in "\"'":
            close = raw.find(opener, k + 1, limit)
            if close < 0:
                raise TemplateParseError(
                    f"Unterminated value for attribute {name!r} at offset {base + k}"
                )
            attributes.append(
                AttributeValue(
                    name=name,
                    raw=raw[k + 1 : close],
                    span=Span(start=base + k + 1, end=base + close),
                    outer_span=Span(start=base + k, end=base + close + 1),
                    delimiter=opener,  # type: ignore[arg-type]
                )
            )
            i = close + 1
        elif opener == "{":
            close = _match_brace(raw, k, limit)
            if close < 0:
                # A ``>`` inside the expression ended the tag early.
                logger.debug("Expression for %r cut short at offset %d", name, base + k)
                close = limit - 1
            attributes.append(
                AttributeValue(
                    name=name,
                    raw=raw[k + 1 : close],
                    span=Span(start=base + k + 1, end=base + close),
                    outer_span=Span(start=base + k, end=base + close + 1),
                    delimiter="{",
                )
            )
            i = close + 1
        else:
            end = k
            while end < limit and raw[end] not in _WHITESPACE:
                end += 1
            value_span = Span(start=base + k, end=base + end)
            attributes.append(
                AttributeValue(
                    name=name, raw=raw[k:end], span=value_span, outer_span=value_span
                )
            )
            i = end
    return attributes


@dataclass
class _OpenElement:
    name: str
    attributes: list[AttributeValue]
    start: int
    content_start: int
    children: list[ElementNode] = field(default_factory=list)


class _TreeBuilder(HTMLParser):
    def __init__(self, source: TemplateSource) -> None:
        super().__init__(convert_charrefs=False)
        self.source = source
        self._line_starts = [0]
        self._line_starts.extend(
            i + 1 for i, ch in enumerate(source.text) if ch == "\n"
        )
        self._stack: list[_OpenElement] = []
        self.roots: list[ElementNode] = []
        self.scripts: list[ScriptRegion] = []
        # Tokenizer events before this offset belong to a tag already consumed.
        self._skip_until = 0

    def _offset(self) -> int:
        line, column = self.getpos()
        return self._line_starts[line - 1] + column

    def _location(self, offset: int) -> str:
        line = 0
        while line + 1 < len(self._line_starts) and self._line_starts[line + 1] <= offset:
            line += 1
        column = offset - self._line_starts[line]
        return f"{self.source.filename or '<template>'}:{line + 1}:{column + 1}"

    def _malformed(self, exc: Exception) -> TemplateParseError:
        detail = str(exc) or type(exc).__name__
        return TemplateParseError(f"{self._location(self._offset())}: malformed markup ({detail})")

    def _attach(self, node: ElementNode) -> None:
        if self._stack:
            self._stack[-1].children.append(node)
        else:
            self.roots.append(node)

    def _open(self) -> tuple[str, list[AttributeValue], int, int, bool] | None:
        start = self._offset()
        if start < self._skip_until:
            return None
        raw = self.get_starttag_text() or ""
        if "{" in raw:
            # The tokenizer stops at the first ``>``, even inside an expression.
            end = _tag_end(self.source.text, start)
            if end > start + len(raw):
                raw = self.source.text[start:end]
                self._skip_until = end
        match = _TAG_NAME.match(raw)
        name = match.group(1) if match else ""
        try:
            attributes = scan_attributes(raw, start)
        except TemplateParseError as exc:
            raise TemplateParseError(f"{self._location(start)}: {exc}") from exc
        return name, attributes, start, start + len(raw), raw.endswith("/>")

    def handle_starttag(self, tag: str, attrs: list[tuple[str, str | None]]) -> None:
        opened = self._open()
        if opened is None:
            return
        name, attributes, start, end, self_closing = opened
        if self_closing or tag in VOID_ELEMENTS:
            self._attach(
                ElementNode(name=name, attributes=attributes, span=Span(start=start, end=end))
            )
            return
        self._stack.append(
            _OpenElement(name=name, attributes=attributes, start=start, content_start=end)
        )

    def handle_startendtag(self, tag: str, attrs: list[tuple[str, str | None]]) -> None:
        opened = self._open()
        if opened is None:
            return
        name, attributes, start, end, _ = opened
        self._attach(
            ElementNode(name=name, attributes=attributes, span=Span(start=start, end=end))
        )

    def handle_endtag(self, tag: str) -> None:
        start = self._offset()
        if start < self._skip_until:
            return
        index = next(
            (
                i
                for i in range(len(self._stack) - 1, -1, -1)
                if self._stack[i].name.lower() == tag
            ),
            None,
        )
        if index is None:
            logger.debug("Ignoring stray </%s> at %s", tag, self._location(start))
            return
        close = self.source.text.find(">", start)
        end = close + 1 if close >= 0 else len(self.source.text)
        while len(self._stack) > index + 1:
            self._close(start, start)
        self._close(end, start)

    def _close(self, end: int, content_end: int) -> None:
        element = self._stack.pop()
        node = ElementNode(
            name=element.name,
            attributes=element.attributes,
            span=Span(start=element.start, end=end),
            children=element.children,
        )
        self._attach(node)
        if element.name.lower() == "script" and not self._stack:
            self.scripts.append(
                ScriptRegion(
                    span=node.span,
                    content_start=element.content_start,
                    content_end=content_end,
                    is_module=_is_module_script(node),
                )
            )

    def build(self) -> TemplateTree:
        text = self.source.text
        try:
            self.feed(text)
        except (AssertionError, ValueError) as exc:
            raise self._malformed(exc) from exc

        if self._stack and self._stack[-1].name.lower() in RAW_TEXT_ELEMENTS:
            element = self._stack[-1]
            raise TemplateParseError(
                f"{self._location(element.start)}: <{element.name}> is never closed"
            )
        leftover = self.rawdata
        if leftover and _DANGLING_MARKUP.match(leftover):
            raise TemplateParseError(
                f"{self._location(len(text) - len(leftover))}: unterminated tag"
            )
        try:
            self.close()
        except (AssertionError, ValueError) as exc:
            raise self._malformed(exc) from exc

        while self._stack:
            self._close(len(text), len(text))

        instance = next((s for s in self.scripts if not s.is_module), None)
        module = next((s for s in self.scripts if s.is_module), None)
        return TemplateTree(
            source=self.source,
            roots=self.roots,
            instance_script=instance,
            module_script=module,
        )


def _is_module_script(node: ElementNode) -> bool:
    if node.attribute("module") is not None:
        return True
    context = node.attribute("context")
    return context is not None and (context.raw or "").strip() == "module"


class HtmlMarkupParser:
    """Default ``MarkupParser`` backed by ``html.parser``."""

    def parse(self, text: str, *, filename: str = "") -> TemplateTree:
        """Parse *text* into a tree.

        Raises:
            TemplateParseError: On an unclosed ``<script>``/``<style>``, a
                tag cut off by the end of input, or an unterminated quoted
                attribute value.
        """
        tree = _TreeBuilder(TemplateSource(text=text, filename=filename)).build()
        logger.debug(
            "Parsed %s: %d root elements, script region: %s",
            filename or "<template>",
            len(tree.roots),
            "yes" if tree.has_script_region else "no",
        )
        return tree


def parse_template(text: str, filename: str = "") -> TemplateTree:
    return HtmlMarkupParser().parse(text, filename=filename)
