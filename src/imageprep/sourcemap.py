"""Source Map v3 generation and decoding.

Generated and original positions are zero-based lines and columns, with
columns counted in string characters.  Mappings are written with Base64
VLQ encoding as described by the Source Map Revision 3 proposal.
"""

from __future__ import annotations

import base64
import bisect
import json
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

_BASE64_ALPHABET = "ABCDEFGHIJKLMNOPQRSTUVWXYZabcdefghijklmnopqrstuvwxyz0123456789+/"
_BASE64_INDEX = {ch: i for i, ch in enumerate(_BASE64_ALPHABET)}
_VLQ_SHIFT = 5
_VLQ_MASK = (1 << _VLQ_SHIFT) - 1
_VLQ_CONTINUATION = 1 << _VLQ_SHIFT

# (generated column, source index, original line, original column)
Segment = tuple[int, int, int, int]


def encode_vlq(value: int) -> str:
    """Encode one signed integer as a Base64 VLQ string."""
    vlq = ((-value) << 1) | 1 if value < 0 else value << 1
    digits: list[str] = []
    while True:
        digit = vlq & _VLQ_MASK
        vlq >>= _VLQ_SHIFT
        if vlq:
            digit |= _VLQ_CONTINUATION
        digits.append(_BASE64_ALPHABET[digit])
        if not vlq:
            return "".join(digits)


def decode_vlq(segment: str) -> list[int]:
    """Decode every integer packed into one Base64 VLQ segment.

    Raises:
        ValueError: On characters outside the Base64 alphabet or a
            segment that ends in the middle of a value.
    """
    values: list[int] = []
    accumulator = 0
    shift = 0
    for ch in segment:
        digit = _BASE64_INDEX.get(ch)
        if digit is None:
            raise ValueError(f"Invalid Base64 VLQ character: {ch!r}")
        accumulator += (digit & _VLQ_MASK) << shift
        if digit & _VLQ_CONTINUATION:
            shift += _VLQ_SHIFT
            continue
        magnitude = accumulator >> 1
        values.append(-magnitude if accumulator & 1 else magnitude)
        accumulator = 0
        shift = 0
    if shift:
        raise ValueError(f"Truncated Base64 VLQ segment: {segment!r}")
    return values


def decode_mappings(mappings: str) -> list[list[Segment]]:
    """Decode a ``mappings`` string into absolute segments, one list per generated line.

    Segments without an original position are dropped.
    """
    lines: list[list[Segment]] = []
    source = original_line = original_column = 0
    for encoded_line in mappings.split(";"):
        column = 0
        segments: list[Segment] = []
        for encoded in encoded_line.split(","):
            if not encoded:
                continue
            fields = decode_vlq(encoded)
            column += fields[0]
            if len(fields) < 4:
                continue
            source += fields[1]
            original_line += fields[2]
            original_column += fields[3]
            segments.append((column, source, original_line, original_column))
        lines.append(segments)
    return lines


class SourceMap(BaseModel):
    """A version 3 source map for one rewritten template."""

    model_config = ConfigDict(populate_by_name=True)

    version: int = 3
    file: str = ""
    sources: list[str] = []
    sources_content: list[str | None] = Field(default=[], alias="sourcesContent")
    names: list[str] = []
    mappings: str = ""

    def to_dict(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True)

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), ensure_ascii=False)

    def to_url(self) -> str:
        """Return the map as a base64 ``data:`` URL for inline comments."""
        encoded = base64.b64encode(self.to_json().encode("utf-8")).decode("ascii")
        return f"data:application/json;charset=utf-8;base64,{encoded}"

    def lookup(self, line: int, column: int) -> tuple[int, int] | None:
        """Return the original ``(line, column)`` of an exact generated position."""
        lines = decode_mappings(self.mappings)
        if line < 0 or line >= len(lines):
            return None
        for gen_column, _source, orig_line, orig_column in lines[line]:
            if gen_column == column:
                return orig_line, orig_column
        return None


class SourceMapBuilder:
    """Accumulate mapping segments while output text is assembled in order.

    Text is fed in generated order: ``add_original`` for characters copied
    verbatim from the original, ``add_inserted`` for new text anchored to
    one original offset.
    """

    def __init__(self, original: str, source_name: str, *, hires: bool = True) -> None:
        self._original = original
        self._source_name = source_name
        self._hires = hires
        self._line_starts = [0]
        self._line_starts.extend(i + 1 for i, ch in enumerate(original) if ch == "\n")
        self._lines: list[list[Segment]] = [[]]
        self._column = 0

    def position(self, offset: int) -> tuple[int, int]:
        """Convert an original string offset to a ``(line, column)`` pair."""
        line = bisect.bisect_right(self._line_starts, offset) - 1
        return line, offset - self._line_starts[line]

    def _emit(self, offset: int) -> None:
        segments = self._lines[-1]
        if segments and segments[-1][0] == self._column:
            return
        line, column = self.position(offset)
        segments.append((self._column, 0, line, column))

    def _newline(self) -> None:
        self._lines.append([])
        self._column = 0

    def add_original(self, text: str, offset: int) -> None:
        at_line_start = True
        for i, ch in enumerate(text):
            if ch == "\n":
                self._newline()
                at_line_start = True
                continue
            if self._hires or at_line_start:
                self._emit(offset + i)
                at_line_start = False
            self._column += 1

    def add_inserted(self, text: str, anchor: int) -> None:
        at_line_start = True
        for ch in text:
            if ch == "\n":
                self._newline()
                at_line_start = True
                continue
            if at_line_start:
                self._emit(anchor)
                at_line_start = False
            self._column += 1

    def _encode(self) -> str:
        prev_source = prev_line = prev_column = 0
        encoded_lines: list[str] = []
        for segments in self._lines:
            prev_generated = 0
            parts: list[str] = []
            for generated, source, line, column in segments:
                parts.append(
                    encode_vlq(generated - prev_generated)
                    + encode_vlq(source - prev_source)
                    + encode_vlq(line - prev_line)
                    + encode_vlq(column - prev_column)
                )
                prev_generated = generated
                prev_source, prev_line, prev_column = source, line, column
            encoded_lines.append(",".join(parts))
        return ";".join(encoded_lines)

    def build(self, file: str = "") -> SourceMap:
        return SourceMap(
            file=file,
            sources=[self._source_name],
            sources_content=[self._original],
            mappings=self._encode(),
        )
