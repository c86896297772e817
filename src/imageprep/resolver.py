"""Path resolution for image references written in templates."""

from __future__ import annotations

import asyncio
import os
import re
from abc import ABC, abstractmethod
from collections.abc import Mapping
from pathlib import Path

from imageprep.logging import get_logger

logger = get_logger("resolver")

_URL_SCHEME = re.compile(r"^[a-zA-Z][a-zA-Z\d+.\-]*:")


class PathResolver(ABC):
    """Turns the raw text of a reference into a concrete file path."""

    @abstractmethod
    async def resolve(self, reference: str, importer: str) -> Path | None:
        """Resolve *reference* as written in the template *importer*.

        Returns:
            The path of an existing file, or ``None`` when the reference
            cannot be resolved (remote URL, missing file...).
        """


def strip_query(reference: str) -> str:
    """Drop a ``?query`` or ``#fragment`` suffix."""
    for marker in ("?", "#"):
        index = reference.find(marker)
        if index >= 0:
            reference = reference[:index]
    return reference


def is_remote(reference: str) -> bool:
    return reference.startswith("//") or _URL_SCHEME.match(reference) is not None


class FileSystemResolver(PathResolver):
    """Resolve references against the local file system.

    Resolution order:

    1. Remote URLs (``https:``, ``data:``, ``//host``) are never resolved.
    2. Alias prefixes (``$lib/img.png``) map onto their directory.
    3. ``/``-rooted references resolve under ``public_dir``, falling back
       to ``root``.
    4. Anything else is relative to the importing template's directory.

    Args:
        root: Project root; defaults to the working directory.
        public_dir: Directory served at ``/``.
        aliases: Reference prefix → directory.
    """

    def __init__(
        self,
        root: Path | str | None = None,
        public_dir: Path | str | None = None,
        aliases: Mapping[str, Path | str] | None = None,
    ) -> None:
        self.root = Path(root) if root is not None else Path.cwd()
        self.public_dir = Path(public_dir) if public_dir is not None else None
        # Longest prefix first so ``$lib/assets`` wins over ``$lib``.
        self.aliases = sorted(
            ((prefix, Path(target)) for prefix, target in (aliases or {}).items()),
            key=lambda item: len(item[0]),
            reverse=True,
        )

    def candidates(self, reference: str, importer: str) -> list[Path]:
        """Return the paths *reference* may point to, most specific first."""
        for prefix, target in self.aliases:
            if reference == prefix or reference.startswith(prefix.rstrip("/") + "/"):
                rest = reference[len(prefix) :].lstrip("/")
                return [target / rest]
        if reference.startswith("/"):
            rest = reference.lstrip("/")
            found = [self.public_dir / rest] if self.public_dir is not None else []
            return found + [self.root / rest]
        base = Path(importer).parent if importer else self.root
        if not base.is_absolute():
            base = self.root / base
        return [base / reference]

    async def resolve(self, reference: str, importer: str) -> Path | None:
        reference = strip_query(reference.strip())
        if not reference or is_remote(reference):
            return None
        for candidate in self.candidates(reference, importer):
            # Collapse ``..`` lexically; intermediate directories may not exist.
            candidate = Path(os.path.normpath(candidate))
            if await asyncio.to_thread(candidate.is_file):
                return candidate.resolve()
        logger.debug("Could not resolve %r from %s", reference, importer)
        return None
