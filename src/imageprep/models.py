"""Pydantic data models for templates, image references, conversions and config."""

from __future__ import annotations

import re
from pathlib import Path
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from imageprep.sourcemap import SourceMap

_INTERPOLATION = re.compile(r"\{")


class Span(BaseModel):
    """Half-open ``[start, end)`` range of string offsets into a template.

    Attributes:
        start: Offset of the first character.
        end: Offset one past the last character.
    """

    model_config = ConfigDict(frozen=True)

    start: int = Field(..., ge=0)
    end: int = Field(..., ge=0)

    @model_validator(mode="after")
    def _end_not_before_start(self) -> "Span":
        if self.end < self.start:
            raise ValueError(f"span end ({self.end}) precedes start ({self.start})")
        return self

    @property
    def length(self) -> int:
        return self.end - self.start

    def contains(self, other: "Span") -> bool:
        """Return True when *other* lies entirely within this span."""
        return self.start <= other.start and other.end <= self.end


class TemplateSource(BaseModel):
    """Immutable input to one transform pass."""

    model_config = ConfigDict(frozen=True)

    text: str
    filename: str = ""


class AttributeValue(BaseModel):
    """One attribute of an element, with the exact location of its value.

    Attributes:
        name: Attribute name as written (``src``, ``on:click``...).
        raw: Value text between the delimiters, or ``None`` for a bare
            boolean attribute.
        span: Location of ``raw`` in the template.
        outer_span: Location of the value including its delimiters.  Equal
            to ``span`` for unquoted values.
        delimiter: Opening delimiter: ``'"'``, ``"'"``, ``"{"`` or ``None``.
    """

    model_config = ConfigDict(frozen=True)

    name: str
    raw: str | None = None
    span: Span | None = None
    outer_span: Span | None = None
    delimiter: Literal['"', "'", "{"] | None = None

    @property
    def is_expression(self) -> bool:
        return self.delimiter == "{"

    @property
    def is_static(self) -> bool:
        """True for a literal string value with no ``{...}`` interpolation."""
        if self.raw is None or self.is_expression:
            return False
        return _INTERPOLATION.search(self.raw) is None


class ElementNode(BaseModel):
    """A markup element as produced by the parser.  Never mutated."""

    model_config = ConfigDict(frozen=True)

    name: str
    attributes: list[AttributeValue] = []
    span: Span
    children: list["ElementNode"] = []

    def attribute(self, name: str) -> AttributeValue | None:
        """Return the first attribute called *name*, if any."""
        for attr in self.attributes:
            if attr.name == name:
                return attr
        return None


class ScriptRegion(BaseModel):
    """A top-level ``<script>`` element of a template.

    Attributes:
        span: The whole element, tags included.
        content_start: Offset right after the opening tag.
        content_end: Offset of the closing ``</script>``.
        is_module: True for a module-context script.
    """

    model_config = ConfigDict(frozen=True)

    span: Span
    content_start: int = Field(..., ge=0)
    content_end: int = Field(..., ge=0)
    is_module: bool = False


class TemplateTree(BaseModel):
    """Parser output for one template."""

    model_config = ConfigDict(frozen=True)

    source: TemplateSource
    roots: list[ElementNode] = []
    instance_script: ScriptRegion | None = None
    module_script: ScriptRegion | None = None

    @property
    def has_script_region(self) -> bool:
        return self.instance_script is not None


class ImageMatch(BaseModel):
    """One image-reference element found by the locator."""

    model_config = ConfigDict(frozen=True)

    element_order: int = Field(..., ge=0)
    tag: str
    attribute: AttributeValue

    @model_validator(mode="after")
    def _attribute_has_value_span(self) -> "ImageMatch":
        if self.attribute.outer_span is None:
            raise ValueError(f"{self.attribute.name} attribute has no value to rewrite")
        return self

    @property
    def reference(self) -> str:
        return (self.attribute.raw or "").strip()

    @property
    def attribute_span(self) -> Span:
        span = self.attribute.outer_span
        if span is None:
            raise ValueError(f"{self.attribute.name} attribute has no value to rewrite")
        return span


class ConversionRequest(BaseModel):
    original_path: Path
    output_root: Path


class ConversionResult(BaseModel):
    """Outcome of a conversion-gate call.

    Attributes:
        new_path: Path of the (possibly not yet existing) converted artifact.
        converted: True only when the codec ran and succeeded in this call.
        error: Codec failure message; the artifact may be missing.
    """

    new_path: Path
    converted: bool = False
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


class Binding(BaseModel):
    """A generated import introduced into a template's script region."""

    name: str
    new_path: Path
    specifier: str


class TransformResult(BaseModel):
    """Rewritten template text plus its source map."""

    code: str
    map: SourceMap
    bindings: list[Binding] = []


class PreprocessorConfig(BaseModel):
    """Settings for the image preprocessor.

    Attributes:
        tags: Element names treated as image references.
        source_attribute: Attribute holding the image reference.
        source_extensions: Extensions converted by the gate.
        target_format: Pillow format name for converted artifacts.
        target_extension: Extension given to converted artifacts.
        binding_prefix: Prefix of generated binding names.
        on_conversion_error: ``"bind"`` keeps the rewrite pointing at the
            intended artifact, ``"skip"`` leaves the element untouched.
        specifier_style: ``"reference"`` swaps the extension on the written
            reference, ``"absolute"`` imports the artifact by absolute path.
        hires_source_map: One mapping segment per copied character.
        background: RGB colour transparent pixels are flattened onto for
            formats without alpha.
        aliases: Reference prefixes mapped to directories (``$lib`` ...).
        output_root: Default artifact root when none is supplied by a hook.
        template_glob: Pattern selecting templates for batch builds.
    """

    tags: list[str] = ["img"]
    source_attribute: str = "src"
    source_extensions: list[str] = [".png"]
    target_format: str = "JPEG"
    target_extension: str = ".jpg"
    binding_prefix: str = "image"
    on_conversion_error: Literal["bind", "skip"] = "bind"
    specifier_style: Literal["reference", "absolute"] = "reference"
    hires_source_map: bool = True
    background: tuple[int, int, int] = (255, 255, 255)
    aliases: dict[str, str] = {}
    output_root: str | None = None
    template_glob: str = "**/*.svelte"

    @field_validator("tags")
    @classmethod
    def _tags_not_empty(cls, v: list[str]) -> list[str]:
        if not v or any(not t.strip() for t in v):
            raise ValueError("tags must be a non-empty list of element names")
        return [t.strip() for t in v]

    @field_validator("source_extensions")
    @classmethod
    def _normalize_extensions(cls, v: list[str]) -> list[str]:
        normalized = []
        for ext in v:
            ext = ext.strip().lower()
            if not ext.startswith(".") or len(ext) < 2:
                raise ValueError(f"extension must look like '.png', got {ext!r}")
            normalized.append(ext)
        return normalized

    @field_validator("target_extension")
    @classmethod
    def _normalize_target_extension(cls, v: str) -> str:
        v = v.strip().lower()
        if not v.startswith(".") or len(v) < 2:
            raise ValueError(f"target_extension must look like '.jpg', got {v!r}")
        return v

    @field_validator("target_format")
    @classmethod
    def _upper_format(cls, v: str) -> str:
        return v.strip().upper()

    @field_validator("binding_prefix")
    @classmethod
    def _prefix_is_identifier(cls, v: str) -> str:
        if not v.isidentifier():
            raise ValueError(f"binding_prefix must be a valid identifier, got {v!r}")
        return v

    @field_validator("background")
    @classmethod
    def _channels_in_range(cls, v: tuple[int, int, int]) -> tuple[int, int, int]:
        if any(c < 0 or c > 255 for c in v):
            raise ValueError("background channels must be within 0-255")
        return v

    @model_validator(mode="after")
    def _target_not_a_source(self) -> "PreprocessorConfig":
        if self.target_extension in self.source_extensions:
            raise ValueError(
                f"target_extension {self.target_extension!r} is also a source extension"
            )
        return self

    @property
    def markers(self) -> list[str]:
        """Substrings whose absence lets a template skip parsing entirely."""
        return [f"<{tag}" for tag in self.tags]
