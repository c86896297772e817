"""Transform orchestrator: the public entry point for one template.

A pass parses the template, walks it for image references, binds each one
to a converted artifact and returns the rewritten text with its source map.
Templates that do not even contain an image tag marker are returned
unchanged without being parsed.
"""

from __future__ import annotations

from pathlib import Path

from pydantic import BaseModel, ConfigDict

from imageprep.codec import ImageCodec
from imageprep.edits import EditSet
from imageprep.gate import ConversionGate
from imageprep.locator import ElementLocator
from imageprep.logging import get_logger
from imageprep.markup import HtmlMarkupParser, MarkupParser
from imageprep.models import PreprocessorConfig, TransformResult
from imageprep.resolver import PathResolver
from imageprep.rewriter import RewriteEngine

logger = get_logger("preprocessor")


class PreprocessorContext(BaseModel):
    """Everything a pass needs, captured once before the first pass runs."""

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    config: PreprocessorConfig
    output_root: Path
    resolver: PathResolver
    codec: ImageCodec


class ImagePreprocessor:
    """Run transform passes against a fixed ``PreprocessorContext``.

    Passes share no mutable state, so several templates may be
    transformed concurrently.
    """

    def __init__(
        self, context: PreprocessorContext, *, parser: MarkupParser | None = None
    ) -> None:
        self.context = context
        self.parser = parser or HtmlMarkupParser()
        config = context.config
        self.locator = ElementLocator(config.tags, config.source_attribute)
        self.gate = ConversionGate(
            context.codec,
            source_extensions=config.source_extensions,
            target_extension=config.target_extension,
            target_format=config.target_format,
        )
        self.engine = RewriteEngine(
            context.resolver,
            self.gate,
            context.output_root,
            binding_prefix=config.binding_prefix,
            on_conversion_error=config.on_conversion_error,
            specifier_style=config.specifier_style,
        )

    def should_process(self, content: str) -> bool:
        return any(marker in content for marker in self.context.config.markers)

    async def transform(self, content: str, filename: str = "") -> TransformResult | None:
        """Rewrite the image references of one template.

        Returns:
            The rewritten code and source map, or ``None`` when the template
            is left unchanged (no marker, or no reference could be bound).

        Raises:
            TemplateParseError: If the template cannot be parsed.
        """
        if not self.should_process(content):
            return None

        tree = self.parser.parse(content, filename=filename)
        edit_set = EditSet(tree.source)
        bindings = await self.engine.apply_bindings(
            edit_set, self.locator.locate(tree), tree
        )
        if not bindings:
            logger.debug("No image references bound in %s", filename or "<template>")
            return None

        code, source_map = edit_set.finalize(
            hires=self.context.config.hires_source_map
        )
        logger.info(
            "Rewrote %d image reference(s) in %s",
            len(bindings),
            filename or "<template>",
        )
        return TransformResult(code=code, map=source_map, bindings=bindings)


async def transform(
    content: str,
    filename: str,
    context: PreprocessorContext,
    *,
    parser: MarkupParser | None = None,
) -> TransformResult | None:
    """Function form of ``ImagePreprocessor.transform``."""
    return await ImagePreprocessor(context, parser=parser).transform(content, filename)
