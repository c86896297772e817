"""Ordered text edits against an immutable template, applied in one pass.

Every offset refers to the original text.  Edits are only recorded while a
pass runs; ``finalize`` sorts them, splices the output together and builds
the matching source map, exactly once.
"""

from __future__ import annotations

from dataclasses import dataclass

from imageprep.errors import EditError
from imageprep.models import Span, TemplateSource
from imageprep.sourcemap import SourceMap, SourceMapBuilder


@dataclass(frozen=True)
class Edit:
    """One recorded operation.  An insertion has ``start == end``."""

    start: int
    end: int
    text: str
    seq: int

    @property
    def is_insert(self) -> bool:
        return self.start == self.end

    def sort_key(self) -> tuple[int, int, int]:
        # Insertions at an offset precede a replacement starting there.
        return (self.start, 0 if self.is_insert else 1, self.seq)


class EditSet:
    """Append-only collection of insert/replace operations for one template."""

    def __init__(self, source: TemplateSource) -> None:
        self.source = source
        self._edits: list[Edit] = []
        self._finalized = False

    def __len__(self) -> int:
        return len(self._edits)

    @property
    def edits(self) -> tuple[Edit, ...]:
        return tuple(self._edits)

    @property
    def finalized(self) -> bool:
        return self._finalized

    def _check_open(self) -> None:
        if self._finalized:
            raise EditError(f"Edit set for {self.source.filename!r} is already finalized")

    def _check_bounds(self, start: int, end: int) -> None:
        size = len(self.source.text)
        if start < 0 or end > size or start > end:
            raise EditError(
                f"Edit range [{start}, {end}) outside template bounds [0, {size})"
            )

    def _record(self, start: int, end: int, text: str) -> Edit:
        edit = Edit(start=start, end=end, text=text, seq=len(self._edits))
        self._edits.append(edit)
        return edit

    def insert(self, offset: int, text: str) -> Edit:
        """Insert *text* before the original character at *offset*."""
        self._check_open()
        self._check_bounds(offset, offset)
        for other in self._edits:
            if not other.is_insert and other.start < offset < other.end:
                raise EditError(
                    f"Insertion at {offset} falls inside replaced range "
                    f"[{other.start}, {other.end})"
                )
        return self._record(offset, offset, text)

    def append(self, text: str) -> Edit:
        """Insert *text* at the very end of the template."""
        return self.insert(len(self.source.text), text)

    def replace(self, start: int, end: int, text: str) -> Edit:
        """Replace the original characters in ``[start, end)`` with *text*."""
        self._check_open()
        self._check_bounds(start, end)
        if start == end:
            raise EditError(f"Replacement range [{start}, {end}) is empty")
        for other in self._edits:
            if other.is_insert:
                if start < other.start < end:
                    raise EditError(
                        f"Replacement [{start}, {end}) would swallow insertion at {other.start}"
                    )
            elif start < other.end and other.start < end:
                raise EditError(
                    f"Replacement [{start}, {end}) overlaps [{other.start}, {other.end})"
                )
        return self._record(start, end, text)

    def replace_span(self, span: Span, text: str) -> Edit:
        return self.replace(span.start, span.end, text)

    def finalize(self, *, hires: bool = True) -> tuple[str, SourceMap]:
        """Apply every edit and return ``(code, source_map)``.

        Raises:
            EditError: If called a second time.
        """
        self._check_open()
        self._finalized = True

        original = self.source.text
        builder = SourceMapBuilder(original, self.source.filename, hires=hires)
        last = max(len(original) - 1, 0)
        parts: list[str] = []
        cursor = 0
        for edit in sorted(self._edits, key=Edit.sort_key):
            if edit.start > cursor:
                chunk = original[cursor : edit.start]
                parts.append(chunk)
                builder.add_original(chunk, cursor)
                cursor = edit.start
            parts.append(edit.text)
            builder.add_inserted(edit.text, min(edit.start, last))
            cursor = max(cursor, edit.end)
        if cursor < len(original):
            parts.append(original[cursor:])
            builder.add_original(original[cursor:], cursor)

        return "".join(parts), builder.build(file=self.source.filename)
