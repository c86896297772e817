"""Tests for imageprep.rewriter."""

from __future__ import annotations

from pathlib import Path

import pytest

from fake_codec import RecordingCodec, StaticResolver
from imageprep.edits import EditSet
from imageprep.gate import ConversionGate
from imageprep.locator import ElementLocator
from imageprep.markup import parse_template
from imageprep.models import Binding
from imageprep.rewriter import (
    BindingNamer,
    RewriteEngine,
    identifiers_with_prefix,
    render_declaration,
    render_script_region,
)


async def _rewrite(
    engine: RewriteEngine, text: str, filename: str = "Page.svelte"
) -> tuple[str, list[Binding], EditSet]:
    tree = parse_template(text, filename=filename)
    edit_set = EditSet(tree.source)
    bindings = await engine.apply_bindings(edit_set, ElementLocator().locate(tree), tree)
    code, _ = edit_set.finalize()
    return code, bindings, edit_set


def _engine(tmp_path: Path, references: list[str], codec: RecordingCodec | None = None, **kwargs) -> RewriteEngine:
    mapping = {ref: tmp_path / Path(ref).name for ref in references}
    return RewriteEngine(
        StaticResolver(mapping),
        ConversionGate(codec or RecordingCodec()),
        tmp_path,
        **kwargs,
    )


class TestHelpers:
    def test_namer_counts_from_one(self) -> None:
        namer = BindingNamer("image")
        assert [namer.next_name() for _ in range(3)] == ["image1", "image2", "image3"]

    def test_namer_skips_taken(self) -> None:
        namer = BindingNamer("image", {"image1", "image3"})
        assert [namer.next_name() for _ in range(2)] == ["image2", "image4"]

    def test_identifiers_with_prefix(self) -> None:
        text = "let image1 = 1; const myimage2 = 2; image3x; $image4; image5"
        assert identifiers_with_prefix(text, "image") == {"image1", "image5"}

    def test_render_declaration_escapes(self) -> None:
        binding = Binding(name="image1", new_path=Path("/x/a.jpg"), specifier='./a "b".jpg')
        assert render_declaration(binding) == 'import image1 from "./a \\"b\\".jpg";'

    def test_render_script_region(self) -> None:
        assert render_script_region(["import a from 'a';"], "<p></p>") == (
            "\n<script>\n\timport a from 'a';\n</script>\n"
        )
        assert render_script_region(["x;"], "<p></p>\n").startswith("<script>")


class TestSpecifier:
    def test_extension_swapped_on_reference(self, tmp_path: Path) -> None:
        engine = _engine(tmp_path, [])
        assert (
            engine.specifier_for("./a.png", tmp_path / "a.png", tmp_path / "a.jpg")
            == "./a.jpg"
        )

    def test_uppercase_source_extension(self, tmp_path: Path) -> None:
        engine = _engine(tmp_path, [])
        assert (
            engine.specifier_for("./A.PNG", tmp_path / "A.PNG", tmp_path / "A.jpg")
            == "./A.jpg"
        )

    def test_unconverted_keeps_reference(self, tmp_path: Path) -> None:
        engine = _engine(tmp_path, [])
        gif = tmp_path / "a.gif"
        assert engine.specifier_for("./a.gif", gif, gif) == "./a.gif"

    def test_query_falls_back_to_absolute(self, tmp_path: Path) -> None:
        engine = _engine(tmp_path, [])
        specifier = engine.specifier_for(
            "./a.png?inline", tmp_path / "a.png", tmp_path / "a.jpg"
        )
        assert specifier == (tmp_path / "a.jpg").as_posix()

    def test_artifact_elsewhere_is_absolute(self, tmp_path: Path) -> None:
        engine = _engine(tmp_path, [])
        new_path = tmp_path / "dist" / "a.jpg"
        assert engine.specifier_for("./a.png", tmp_path / "a.png", new_path) == new_path.as_posix()

    def test_absolute_style(self, tmp_path: Path) -> None:
        engine = _engine(tmp_path, [], specifier_style="absolute")
        new_path = tmp_path / "a.jpg"
        assert engine.specifier_for("./a.png", tmp_path / "a.png", new_path) == new_path.as_posix()


class TestApplyBindings:
    @pytest.mark.asyncio
    async def test_new_script_region(self, tmp_path: Path) -> None:
        engine = _engine(tmp_path, ["./a.png"])
        code, bindings, _ = await _rewrite(engine, '<img src="./a.png">')
        assert code == (
            '<img src={image1}>\n<script>\n\timport image1 from "./a.jpg";\n</script>\n'
        )
        assert [b.name for b in bindings] == ["image1"]
        assert bindings[0].new_path == tmp_path / "a.jpg"

    @pytest.mark.asyncio
    async def test_one_region_for_many_images(self, tmp_path: Path) -> None:
        engine = _engine(tmp_path, ["./a.png", "./b.png"])
        code, _, _ = await _rewrite(engine, '<img src="./a.png">\n<img src="./b.png">\n')
        assert code == (
            "<img src={image1}>\n<img src={image2}>\n"
            "<script>\n"
            '\timport image1 from "./a.jpg";\n'
            '\timport image2 from "./b.jpg";\n'
            "</script>\n"
        )
        assert code.count("<script>") == 1

    @pytest.mark.asyncio
    async def test_existing_instance_script(self, tmp_path: Path) -> None:
        engine = _engine(tmp_path, ["./a.png"])
        text = '<script>\n\tlet title = "x";\n</script>\n<img src="./a.png">'
        code, _, _ = await _rewrite(engine, text)
        assert code == (
            '<script>\nimport image1 from "./a.jpg";\n\tlet title = "x";\n'
            "</script>\n<img src={image1}>"
        )

    @pytest.mark.asyncio
    async def test_declarations_keep_document_order(self, tmp_path: Path) -> None:
        engine = _engine(tmp_path, ["./a.png", "./b.png"])
        text = '<script>\n</script>\n<img src="./a.png"><img src="./b.png">'
        code, _, _ = await _rewrite(engine, text)
        assert code.index("import image1") < code.index("import image2")

    @pytest.mark.asyncio
    async def test_module_script_is_not_used(self, tmp_path: Path) -> None:
        engine = _engine(tmp_path, ["./a.png"])
        text = '<script context="module">export const x = 1;</script>\n<img src="./a.png">\n'
        code, _, _ = await _rewrite(engine, text)
        assert code.startswith('<script context="module">export const x = 1;</script>')
        assert code.endswith('<script>\n\timport image1 from "./a.jpg";\n</script>\n')

    @pytest.mark.asyncio
    async def test_single_quotes_replaced_with_delimiters(self, tmp_path: Path) -> None:
        engine = _engine(tmp_path, ["./a.png"])
        code, _, _ = await _rewrite(engine, "<img alt='x' src='./a.png' width=10>\n")
        assert code.startswith("<img alt='x' src={image1} width=10>\n")

    @pytest.mark.asyncio
    async def test_unresolved_reference_left_untouched(self, tmp_path: Path) -> None:
        engine = _engine(tmp_path, ["./a.png", "./c.png"])
        text = '<img src="./a.png"><img src="./missing.png"><img src="./c.png">'
        code, bindings, _ = await _rewrite(engine, text)
        assert [b.name for b in bindings] == ["image1", "image2"]
        assert '<img src={image1}><img src="./missing.png"><img src={image2}>' in code

    @pytest.mark.asyncio
    async def test_no_matches_records_nothing(self, tmp_path: Path) -> None:
        engine = _engine(tmp_path, [])
        code, bindings, edit_set = await _rewrite(engine, '<img src="./x.png">')
        assert bindings == []
        assert len(edit_set) == 0
        assert code == '<img src="./x.png">'

    @pytest.mark.asyncio
    async def test_two_edits_per_binding_with_script(self, tmp_path: Path) -> None:
        engine = _engine(tmp_path, ["./a.png", "./b.png"])
        text = '<script></script><img src="./a.png"><img src="./b.png">'
        _, _, edit_set = await _rewrite(engine, text)
        inserts = [e for e in edit_set.edits if e.is_insert]
        replaces = [e for e in edit_set.edits if not e.is_insert]
        assert len(inserts) == 2
        assert len(replaces) == 2
        for edit in replaces:
            assert text[edit.start : edit.end] in ('"./a.png"', '"./b.png"')

    @pytest.mark.asyncio
    async def test_existing_identifier_not_reused(self, tmp_path: Path) -> None:
        engine = _engine(tmp_path, ["./a.png"])
        text = '<script>let image1 = "taken";</script><img src="./a.png">'
        code, bindings, _ = await _rewrite(engine, text)
        assert bindings[0].name == "image2"
        assert "<img src={image2}>" in code

    @pytest.mark.asyncio
    async def test_custom_prefix(self, tmp_path: Path) -> None:
        engine = _engine(tmp_path, ["./a.png"], binding_prefix="__img")
        code, _, _ = await _rewrite(engine, '<img src="./a.png">')
        assert "<img src={__img1}>" in code

    @pytest.mark.asyncio
    async def test_conversion_failure_still_binds(self, tmp_path: Path) -> None:
        engine = _engine(tmp_path, ["./a.png"], codec=RecordingCodec(fail=True))
        code, bindings, _ = await _rewrite(engine, '<img src="./a.png">')
        assert bindings[0].new_path == tmp_path / "a.jpg"
        assert "<img src={image1}>" in code

    @pytest.mark.asyncio
    async def test_conversion_failure_skip_policy(self, tmp_path: Path) -> None:
        engine = _engine(
            tmp_path,
            ["./a.png"],
            codec=RecordingCodec(fail=True),
            on_conversion_error="skip",
        )
        code, bindings, _ = await _rewrite(engine, '<img src="./a.png">')
        assert bindings == []
        assert code == '<img src="./a.png">'

    @pytest.mark.asyncio
    async def test_resolver_receives_importer(self, tmp_path: Path) -> None:
        resolver = StaticResolver({"./a.png": tmp_path / "a.png"})
        engine = RewriteEngine(resolver, ConversionGate(RecordingCodec()), tmp_path)
        await _rewrite(engine, '<img src=" ./a.png ">', filename="src/Page.svelte")
        assert resolver.calls == [("./a.png", "src/Page.svelte")]

    @pytest.mark.asyncio
    async def test_conversions_follow_document_order(self, tmp_path: Path) -> None:
        codec = RecordingCodec()
        engine = _engine(tmp_path, ["./b.png", "./a.png"], codec=codec)
        await _rewrite(engine, '<div><img src="./b.png"></div><img src="./a.png">')
        assert [p.name for p in codec.reads] == ["b.png", "a.png"]
