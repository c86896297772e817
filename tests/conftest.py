"""Shared fixtures for imageprep tests."""

from __future__ import annotations

from pathlib import Path

import pytest

from fake_codec import RecordingCodec, StaticResolver, write_png
from imageprep.models import PreprocessorConfig
from imageprep.preprocessor import ImagePreprocessor, PreprocessorContext

# ---------------------------------------------------------------------------
# Image fixtures
# ---------------------------------------------------------------------------


@pytest.fixture()
def png_file(tmp_path: Path) -> Path:
    """A fully transparent 8x8 PNG at ``tmp_path/a.png``."""
    return write_png(tmp_path / "a.png")


# ---------------------------------------------------------------------------
# Preprocessor fixtures
# ---------------------------------------------------------------------------


@pytest.fixture()
def codec() -> RecordingCodec:
    return RecordingCodec()


@pytest.fixture()
def config() -> PreprocessorConfig:
    return PreprocessorConfig()


@pytest.fixture()
def make_preprocessor(tmp_path: Path, codec: RecordingCodec, config: PreprocessorConfig):
    """Factory building an ``ImagePreprocessor`` over a ``StaticResolver``."""

    def _make(
        mapping: dict[str, Path] | None = None,
        *,
        config_override: PreprocessorConfig | None = None,
        parser=None,
    ) -> ImagePreprocessor:
        context = PreprocessorContext(
            config=config_override or config,
            output_root=tmp_path,
            resolver=StaticResolver(mapping),
            codec=codec,
        )
        return ImagePreprocessor(context, parser=parser)

    return _make
