"""HTTP conversion service.

Exposes the codec over HTTP for builds that convert images remotely: post a
PNG as multipart ``file`` to ``/api/convert`` and receive the converted
bytes back with a matching download filename.
"""

from __future__ import annotations

import asyncio
import io
from pathlib import PurePath

from fastapi import APIRouter, FastAPI, File, HTTPException, UploadFile
from fastapi.responses import Response
from PIL import Image, UnidentifiedImageError

from imageprep.codec import PillowCodec
from imageprep.errors import ConversionError
from imageprep.logging import get_logger
from imageprep.models import PreprocessorConfig

logger = get_logger("service")

_MEDIA_TYPES = {
    "JPEG": "image/jpeg",
    "PNG": "image/png",
    "WEBP": "image/webp",
    "GIF": "image/gif",
    "BMP": "image/bmp",
}


def _decode(data: bytes) -> Image.Image:
    img = Image.open(io.BytesIO(data))
    img.load()
    return img


def create_app(
    config: PreprocessorConfig | None = None, codec: PillowCodec | None = None
) -> FastAPI:
    """Build the conversion service app."""
    config = config or PreprocessorConfig()
    codec = codec or PillowCodec(background=config.background)
    router = APIRouter(prefix="/api")

    @router.get("/health")
    async def health() -> dict[str, str]:
        return {
            "status": "ok",
            "target_format": config.target_format,
        }

    @router.post("/convert")
    async def convert(file: UploadFile = File(...)) -> Response:
        data = await file.read()
        try:
            image = await asyncio.to_thread(_decode, data)
        except (UnidentifiedImageError, OSError) as exc:
            raise HTTPException(
                status_code=422, detail=f"Not a decodable image: {file.filename}"
            ) from exc
        try:
            payload = await asyncio.to_thread(
                codec.encode_image, image, config.target_format
            )
        except ConversionError as exc:
            logger.error("Conversion of upload %s failed: %s", file.filename, exc)
            raise HTTPException(status_code=500, detail=str(exc)) from exc

        stem = PurePath(file.filename or "image").stem or "image"
        download_name = f"{stem}{config.target_extension}"
        logger.info("Converted upload %s (%d bytes)", file.filename, len(payload))
        return Response(
            content=payload,
            media_type=_MEDIA_TYPES.get(config.target_format, "application/octet-stream"),
            headers={"Content-Disposition": f'attachment; filename="{download_name}"'},
        )

    app = FastAPI(
        title="imageprep",
        description="Image conversion service for template builds",
        version="0.1.0",
    )
    app.include_router(router)
    return app
