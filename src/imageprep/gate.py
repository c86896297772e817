"""Conversion gate: convert a source image once, then reuse the artifact.

The gate derives the artifact path by swapping the extension (same
directory, same stem) and only calls the codec when no file exists there
yet.  Skipping existing artifacts matters beyond speed: under a file
watcher, writing a fresh artifact on every pass would itself be seen as a
change and trigger the next pass.

The existence check and the write are not atomic.  Two passes racing on
the same image may both convert it; the output bytes are identical.
"""

from __future__ import annotations

import asyncio
from collections.abc import Sequence
from pathlib import Path

from imageprep.codec import ImageCodec
from imageprep.errors import ConversionError
from imageprep.logging import get_logger
from imageprep.models import ConversionRequest, ConversionResult

logger = get_logger("gate")


class ConversionGate:
    """Idempotent front door to an ``ImageCodec``.

    Args:
        codec: Codec used for the actual conversion.
        source_extensions: Lower-case extensions that get converted.
        target_extension: Extension of converted artifacts.
        target_format: Codec format name for converted artifacts.
    """

    def __init__(
        self,
        codec: ImageCodec,
        source_extensions: Sequence[str] = (".png",),
        target_extension: str = ".jpg",
        target_format: str = "JPEG",
    ) -> None:
        self.codec = codec
        self.source_extensions = frozenset(ext.lower() for ext in source_extensions)
        self.target_extension = target_extension
        self.target_format = target_format

    def accepts(self, path: Path) -> bool:
        return path.suffix.lower() in self.source_extensions

    def derive_output_path(self, original_path: Path) -> Path:
        """Return *original_path* with the target extension."""
        return Path(original_path).with_suffix(self.target_extension)

    def artifact_path(self, original_path: Path, output_root: Path) -> Path:
        # Joining keeps an absolute derived path as-is.
        return Path(output_root) / self.derive_output_path(original_path)

    async def convert(
        self, original_path: Path | str, output_root: Path | str
    ) -> ConversionResult:
        """Make sure a converted artifact exists for *original_path*.

        Returns the artifact path in every case.  A codec failure is logged
        and reported through ``ConversionResult.error``; it never raises.
        Paths with a non-source extension are returned unchanged.
        """
        original = Path(original_path)
        if not self.accepts(original):
            logger.debug("Not a source format, leaving as-is: %s", original)
            return ConversionResult(new_path=original)

        target = self.artifact_path(original, Path(output_root))
        if await asyncio.to_thread(target.exists):
            logger.debug("Artifact already present: %s", target)
            return ConversionResult(new_path=target)

        try:
            image = await self.codec.read_image(original)
            await self.codec.write_image(image, target, self.target_format)
        except ConversionError as exc:
            logger.error("Failed to convert %s to %s: %s", original, target, exc)
            return ConversionResult(new_path=target, error=str(exc))

        logger.info("Converted %s to %s", original, target)
        return ConversionResult(new_path=target, converted=True)

    async def convert_request(self, request: ConversionRequest) -> ConversionResult:
        return await self.convert(request.original_path, request.output_root)
