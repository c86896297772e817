"""Rewrite engine: turn located image references into generated imports.

For each match, in the order the locator yields them, the engine resolves
the reference, runs it through the conversion gate, names a binding, and
records two edits: an import declaration in the template's script region
and the replacement of the attribute value (delimiters included) with a
``{binding}`` expression.  Nothing is applied until ``EditSet.finalize``.
"""

from __future__ import annotations

import json
import re
from collections.abc import AsyncIterator, Iterable
from pathlib import Path
from typing import Literal

from imageprep.edits import EditSet
from imageprep.gate import ConversionGate
from imageprep.logging import TemplateLoggerAdapter, template_logger
from imageprep.models import Binding, ImageMatch, TemplateTree
from imageprep.resolver import PathResolver


class BindingNamer:
    """Hand out ``prefix1``, ``prefix2``... skipping names already taken."""

    def __init__(self, prefix: str, taken: Iterable[str] = ()) -> None:
        self.prefix = prefix
        self._taken = set(taken)
        self._counter = 0

    def next_name(self) -> str:
        while True:
            self._counter += 1
            name = f"{self.prefix}{self._counter}"
            if name not in self._taken:
                self._taken.add(name)
                return name


def identifiers_with_prefix(text: str, prefix: str) -> set[str]:
    """Return every ``<prefix><digits>`` identifier already present in *text*."""
    pattern = re.compile(rf"(?<![\w$]){re.escape(prefix)}\d+(?![\w$])")
    return set(pattern.findall(text))


def render_declaration(binding: Binding) -> str:
    return f"import {binding.name} from {json.dumps(binding.specifier)};"


def render_script_region(declarations: list[str], text: str) -> str:
    """Build a new ``<script>`` element appended after *text*."""
    lead = "" if not text or text.endswith("\n") else "\n"
    body = "\n".join(f"\t{declaration}" for declaration in declarations)
    return f"{lead}<script>\n{body}\n</script>\n"


class RewriteEngine:
    """Record the edits that bind every image reference to its converted artifact.

    Args:
        resolver: Resolves raw references to files.
        gate: Converts resolved files.
        output_root: Root under which artifacts are checked and written.
        binding_prefix: Prefix of generated binding names.
        on_conversion_error: ``"bind"`` still binds the intended artifact
            after a codec failure; ``"skip"`` leaves the element untouched.
        specifier_style: How the import specifier is written, see
            ``specifier_for``.
    """

    def __init__(
        self,
        resolver: PathResolver,
        gate: ConversionGate,
        output_root: Path | str,
        *,
        binding_prefix: str = "image",
        on_conversion_error: Literal["bind", "skip"] = "bind",
        specifier_style: Literal["reference", "absolute"] = "reference",
    ) -> None:
        self.resolver = resolver
        self.gate = gate
        self.output_root = Path(output_root)
        self.binding_prefix = binding_prefix
        self.on_conversion_error = on_conversion_error
        self.specifier_style = specifier_style

    def specifier_for(self, reference: str, resolved: Path, new_path: Path) -> str:
        """Return the module specifier the generated import uses.

        With the ``"reference"`` style the reference keeps its written form
        and only its extension changes (``./a.png`` → ``./a.jpg``), as long
        as the artifact sits next to the source image.  Otherwise, and with
        the ``"absolute"`` style, the artifact's absolute POSIX path is used.
        """
        if self.specifier_style == "absolute":
            return new_path.as_posix()
        if new_path == resolved:
            return reference
        old_suffix = resolved.suffix
        if (
            "?" not in reference
            and "#" not in reference
            and new_path.parent == resolved.parent
            and old_suffix
            and reference.lower().endswith(old_suffix.lower())
        ):
            return reference[: -len(old_suffix)] + new_path.suffix
        return new_path.as_posix()

    async def _bind(
        self,
        match: ImageMatch,
        filename: str,
        namer: BindingNamer,
        log: TemplateLoggerAdapter,
    ) -> Binding | None:
        reference = match.reference
        resolved = await self.resolver.resolve(reference, filename)
        if resolved is None:
            log.debug("Unresolved reference %r, element left untouched", reference)
            return None

        result = await self.gate.convert(resolved, self.output_root)
        if not result.ok and self.on_conversion_error == "skip":
            log.warning("Conversion of %s failed, keeping %r", resolved, reference)
            return None

        return Binding(
            name=namer.next_name(),
            new_path=result.new_path,
            specifier=self.specifier_for(reference, resolved, result.new_path),
        )

    async def apply_bindings(
        self,
        edit_set: EditSet,
        matches: AsyncIterator[ImageMatch],
        tree: TemplateTree,
    ) -> list[Binding]:
        """Record declaration and replacement edits for every match.

        Declarations go to the start of the instance script when the
        template has one; otherwise a single new script region holding all
        of them is appended once every match has been processed.

        Returns:
            The bindings created, in document order.
        """
        filename = tree.source.filename
        log = template_logger("rewriter", filename or "<template>")
        namer = BindingNamer(
            self.binding_prefix,
            identifiers_with_prefix(tree.source.text, self.binding_prefix),
        )
        script = tree.instance_script
        pending: list[str] = []
        bindings: list[Binding] = []

        async for match in matches:
            binding = await self._bind(match, filename, namer, log)
            if binding is None:
                continue
            declaration = render_declaration(binding)
            if script is not None:
                edit_set.insert(script.content_start, f"\n{declaration}")
            else:
                pending.append(declaration)
            edit_set.replace_span(match.attribute_span, f"{{{binding.name}}}")
            bindings.append(binding)
            log.debug("Bound %r to %s as %s", match.reference, binding.specifier, binding.name)

        if pending:
            edit_set.append(render_script_region(pending, tree.source.text))
        return bindings
