"""Image codec abstraction and the Pillow implementation.

Pillow calls are blocking, so ``PillowCodec`` runs them in worker threads
with ``asyncio.to_thread``.  Every failure is raised as ``ConversionError``.
"""

from __future__ import annotations

import asyncio
import io
import os
import threading
from abc import ABC, abstractmethod
from pathlib import Path

from PIL import Image, UnidentifiedImageError

from imageprep.errors import ConversionError

# Formats that cannot store an alpha channel.
OPAQUE_FORMATS = frozenset({"JPEG", "BMP", "PPM"})


class ImageCodec(ABC):
    """Reads source images and writes converted artifacts."""

    @abstractmethod
    async def read_image(self, path: Path) -> Image.Image:
        """Load and decode the image at *path*.

        Raises:
            ConversionError: If the file is missing or not a decodable image.
        """

    @abstractmethod
    async def write_image(
        self, image: Image.Image, path: Path, target_format: str
    ) -> None:
        """Encode *image* as *target_format* and write it to *path*.

        Raises:
            ConversionError: If encoding or writing fails.
        """


class PillowCodec(ImageCodec):
    """Pillow-backed codec.

    Args:
        background: RGB colour that transparent pixels are composited onto
            when the target format has no alpha channel.
    """

    def __init__(self, background: tuple[int, int, int] = (255, 255, 255)) -> None:
        self.background = background

    async def read_image(self, path: Path) -> Image.Image:
        return await asyncio.to_thread(self._read, Path(path))

    async def write_image(
        self, image: Image.Image, path: Path, target_format: str
    ) -> None:
        data = await asyncio.to_thread(self.encode_image, image, target_format)
        await asyncio.to_thread(self._write_bytes, Path(path), data)

    def _read(self, path: Path) -> Image.Image:
        if not path.is_file():
            raise ConversionError(f"Image not found: {path}")
        try:
            img = Image.open(path)
            img.load()
        except (UnidentifiedImageError, OSError) as exc:
            raise ConversionError(f"Cannot decode image {path}: {exc}") from exc
        return img

    def flatten(self, image: Image.Image) -> Image.Image:
        """Composite transparency onto the background and return an RGB image."""
        has_alpha = image.mode in ("RGBA", "LA") or (
            image.mode == "P" and "transparency" in image.info
        )
        if not has_alpha:
            return image.convert("RGB") if image.mode != "RGB" else image
        rgba = image.convert("RGBA")
        canvas = Image.new("RGBA", rgba.size, (*self.background, 255))
        canvas.alpha_composite(rgba)
        return canvas.convert("RGB")

    def encode_image(self, image: Image.Image, target_format: str) -> bytes:
        """Encode *image* in memory; used by the gate and the conversion service."""
        fmt = target_format.upper()
        if fmt in OPAQUE_FORMATS:
            image = self.flatten(image)
        buf = io.BytesIO()
        try:
            image.save(buf, format=fmt)
        except (KeyError, ValueError, OSError) as exc:
            raise ConversionError(f"Cannot encode image as {fmt}: {exc}") from exc
        return buf.getvalue()

    def _write_bytes(self, path: Path, data: bytes) -> None:
        # Same-directory temp file so a watcher never sees a half-written artifact.
        tmp_path = path.with_name(
            f".{path.name}.tmp-{os.getpid()}-{threading.get_ident()}"
        )
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            tmp_path.write_bytes(data)
            tmp_path.replace(path)
        except OSError as exc:
            if tmp_path.exists():
                tmp_path.unlink()
            raise ConversionError(f"Cannot write {path}: {exc}") from exc
