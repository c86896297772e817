"""imageprep: convert the images a component template references and rewrite it to import them."""

from typing import Any

from imageprep.codec import ImageCodec, PillowCodec
from imageprep.config import load_config, validate_config
from imageprep.edits import Edit, EditSet
from imageprep.errors import (
    ConfigError,
    ConversionError,
    EditError,
    ImagePrepError,
    TemplateParseError,
)
from imageprep.gate import ConversionGate
from imageprep.locator import ElementLocator
from imageprep.logging import get_logger, setup_logging
from imageprep.markup import HtmlMarkupParser, MarkupParser, parse_template
from imageprep.models import (
    AttributeValue,
    Binding,
    ConversionRequest,
    ConversionResult,
    ElementNode,
    ImageMatch,
    PreprocessorConfig,
    ScriptRegion,
    Span,
    TemplateSource,
    TemplateTree,
    TransformResult,
)
from imageprep.plugin import ImagePreprocessorPlugin, create_preprocessor
from imageprep.preprocessor import ImagePreprocessor, PreprocessorContext, transform
from imageprep.resolver import FileSystemResolver, PathResolver
from imageprep.rewriter import BindingNamer, RewriteEngine
from imageprep.sourcemap import SourceMap, decode_mappings


def __getattr__(name: str) -> Any:
    """Lazy loading for the FastAPI-dependent service factory."""
    if name == "create_app":
        from imageprep.service import create_app

        return create_app
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")


__all__ = [
    "AttributeValue",
    "Binding",
    "BindingNamer",
    "ConfigError",
    "ConversionError",
    "ConversionGate",
    "ConversionRequest",
    "ConversionResult",
    "Edit",
    "EditError",
    "EditSet",
    "ElementLocator",
    "ElementNode",
    "FileSystemResolver",
    "HtmlMarkupParser",
    "ImageCodec",
    "ImageMatch",
    "ImagePrepError",
    "ImagePreprocessor",
    "ImagePreprocessorPlugin",
    "MarkupParser",
    "PathResolver",
    "PillowCodec",
    "PreprocessorConfig",
    "PreprocessorContext",
    "RewriteEngine",
    "ScriptRegion",
    "SourceMap",
    "Span",
    "TemplateParseError",
    "TemplateSource",
    "TemplateTree",
    "TransformResult",
    "create_app",
    "create_preprocessor",
    "decode_mappings",
    "get_logger",
    "load_config",
    "parse_template",
    "setup_logging",
    "transform",
    "validate_config",
]
