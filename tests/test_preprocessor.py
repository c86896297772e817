"""Tests for imageprep.preprocessor."""

from __future__ import annotations

import asyncio
from pathlib import Path
from unittest.mock import MagicMock

import pytest

from fake_codec import RecordingCodec, StaticResolver
from imageprep.errors import TemplateParseError
from imageprep.markup import HtmlMarkupParser
from imageprep.models import PreprocessorConfig
from imageprep.preprocessor import PreprocessorContext, transform


def _position(text: str, offset: int) -> tuple[int, int]:
    line = text.count("\n", 0, offset)
    return line, offset - (text.rfind("\n", 0, offset) + 1)


class TestFastPath:
    """Templates without an image tag are never parsed."""

    @pytest.mark.asyncio
    async def test_no_marker_skips_parser(self, make_preprocessor) -> None:
        parser = MagicMock(spec=HtmlMarkupParser)
        preprocessor = make_preprocessor(parser=parser)
        result = await preprocessor.transform("<p>No pictures here</p>", "A.svelte")
        assert result is None
        parser.parse.assert_not_called()

    @pytest.mark.asyncio
    async def test_marker_triggers_parser(self, make_preprocessor) -> None:
        parser = MagicMock(wraps=HtmlMarkupParser())
        preprocessor = make_preprocessor(parser=parser)
        await preprocessor.transform('<img src="./a.png">', "A.svelte")
        parser.parse.assert_called_once()

    def test_should_process_uses_configured_tags(self, make_preprocessor) -> None:
        preprocessor = make_preprocessor(
            config_override=PreprocessorConfig(tags=["Image"])
        )
        assert preprocessor.should_process('<Image src="a.png" />')
        assert not preprocessor.should_process('<img src="a.png">')


class TestTransform:
    @pytest.mark.asyncio
    async def test_basic_rewrite(self, make_preprocessor, tmp_path: Path) -> None:
        preprocessor = make_preprocessor({"./a.png": tmp_path / "a.png"})
        result = await preprocessor.transform('<img src="./a.png">', "Page.svelte")
        assert result is not None
        assert result.code == (
            '<img src={image1}>\n<script>\n\timport image1 from "./a.jpg";\n</script>\n'
        )
        assert [b.specifier for b in result.bindings] == ["./a.jpg"]
        assert result.map.sources == ["Page.svelte"]

    @pytest.mark.asyncio
    async def test_arrow_function_handler_before_src(
        self, make_preprocessor, tmp_path: Path
    ) -> None:
        preprocessor = make_preprocessor({"./a.png": tmp_path / "a.png"})
        template = '<img on:load={() => ready = true} src="./a.png">'
        result = await preprocessor.transform(template, "Page.svelte")
        assert result is not None
        assert result.code.startswith("<img on:load={() => ready = true} src={image1}>")
        assert [b.specifier for b in result.bindings] == ["./a.jpg"]

    @pytest.mark.asyncio
    async def test_element_without_source_unchanged(self, make_preprocessor) -> None:
        preprocessor = make_preprocessor()
        assert await preprocessor.transform('<img alt="decorative">', "A.svelte") is None

    @pytest.mark.asyncio
    async def test_other_elements_byte_identical(
        self, make_preprocessor, tmp_path: Path
    ) -> None:
        preprocessor = make_preprocessor({"./a.png": tmp_path / "a.png"})
        text = '<img alt="x">\n<img src={dynamic}>\n<img src="./a.png">\n'
        result = await preprocessor.transform(text, "A.svelte")
        assert result is not None
        assert result.code.startswith('<img alt="x">\n<img src={dynamic}>\n<img src={image1}>\n')

    @pytest.mark.asyncio
    async def test_unresolvable_only_returns_none(self, make_preprocessor) -> None:
        preprocessor = make_preprocessor()
        assert await preprocessor.transform('<img src="./gone.png">', "A.svelte") is None

    @pytest.mark.asyncio
    async def test_reruns_are_identical(
        self, make_preprocessor, codec: RecordingCodec, tmp_path: Path
    ) -> None:
        preprocessor = make_preprocessor(
            {"./a.png": tmp_path / "a.png", "./b.png": tmp_path / "b.png"}
        )
        text = '<img src="./a.png"><img src="./b.png">'
        first = await preprocessor.transform(text, "A.svelte")
        second = await preprocessor.transform(text, "A.svelte")
        assert first is not None and second is not None
        assert first.code == second.code
        assert first.map == second.map
        assert len(codec.writes) == 2

    @pytest.mark.asyncio
    async def test_existing_artifact_not_reconverted(
        self, make_preprocessor, codec: RecordingCodec, tmp_path: Path
    ) -> None:
        (tmp_path / "a.jpg").write_bytes(b"done")
        preprocessor = make_preprocessor({"./a.png": tmp_path / "a.png"})
        result = await preprocessor.transform('<img src="./a.png">', "A.svelte")
        assert result is not None
        assert codec.writes == []

    @pytest.mark.asyncio
    async def test_parse_error_propagates(self, make_preprocessor) -> None:
        preprocessor = make_preprocessor()
        with pytest.raises(TemplateParseError):
            await preprocessor.transform('<p>\n<img src="./a.png"', "Broken.svelte")

    @pytest.mark.asyncio
    async def test_concurrent_passes_are_independent(
        self, make_preprocessor, tmp_path: Path
    ) -> None:
        preprocessor = make_preprocessor(
            {"./a.png": tmp_path / "a.png", "./b.png": tmp_path / "b.png"}
        )
        results = await asyncio.gather(
            preprocessor.transform('<img src="./a.png">', "A.svelte"),
            preprocessor.transform('<img src="./b.png">', "B.svelte"),
        )
        assert all(r is not None for r in results)
        assert [r.bindings[0].name for r in results] == ["image1", "image1"]
        assert [r.bindings[0].specifier for r in results] == ["./a.jpg", "./b.jpg"]

    @pytest.mark.asyncio
    async def test_lowres_map(self, make_preprocessor, tmp_path: Path) -> None:
        preprocessor = make_preprocessor(
            {"./a.png": tmp_path / "a.png"},
            config_override=PreprocessorConfig(hires_source_map=False),
        )
        result = await preprocessor.transform('<p>x</p>\n<img src="./a.png">', "A.svelte")
        assert result is not None
        assert result.map.lookup(0, 1) is None
        assert result.map.lookup(1, 0) == (1, 0)


class TestSourceMapRoundTrip:
    """Every character copied from the template maps back to where it came from."""

    @pytest.mark.asyncio
    async def test_copied_text_maps_to_original(
        self, make_preprocessor, tmp_path: Path
    ) -> None:
        preprocessor = make_preprocessor({"./a.png": tmp_path / "a.png"})
        text = '<p>Hello</p>\n<img src="./a.png" alt="logo">\n<p>Bye</p>\n'
        result = await preprocessor.transform(text, "A.svelte")
        assert result is not None
        for fragment in ("<p>Hello</p>", ' alt="logo">', "<p>Bye</p>"):
            original = text.index(fragment)
            generated = result.code.index(fragment)
            for i in range(len(fragment)):
                assert result.map.lookup(
                    *_position(result.code, generated + i)
                ) == _position(text, original + i)

    @pytest.mark.asyncio
    async def test_copied_text_maps_through_script_insertion(
        self, make_preprocessor, tmp_path: Path
    ) -> None:
        preprocessor = make_preprocessor({"./a.png": tmp_path / "a.png"})
        text = "<script>\n\tlet n = 1;\n</script>\n<img src=\"./a.png\">\n"
        result = await preprocessor.transform(text, "A.svelte")
        assert result is not None
        fragment = "\tlet n = 1;"
        generated = result.code.index(fragment)
        assert result.map.lookup(*_position(result.code, generated + 1)) == (1, 1)


class TestTransformFunction:
    @pytest.mark.asyncio
    async def test_function_form(self, codec: RecordingCodec, tmp_path: Path) -> None:
        context = PreprocessorContext(
            config=PreprocessorConfig(),
            output_root=tmp_path,
            resolver=StaticResolver({"./a.png": tmp_path / "a.png"}),
            codec=codec,
        )
        result = await transform('<img src="./a.png">', "A.svelte", context)
        assert result is not None
        assert "import image1" in result.code
