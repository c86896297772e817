"""Command-line interface for imageprep.

Provides commands for rewriting one template, building a whole template
tree, converting a single image and validating a config file.
"""

from __future__ import annotations

import asyncio
import logging
import sys
from dataclasses import dataclass
from pathlib import Path

import click
from pydantic import ValidationError
from rich.console import Console
from rich.markup import escape
from rich.progress import (
    BarColumn,
    MofNCompleteColumn,
    Progress,
    SpinnerColumn,
    TextColumn,
    TimeElapsedColumn,
)

from imageprep.codec import PillowCodec
from imageprep.config import load_config, validate_config
from imageprep.errors import ImagePrepError
from imageprep.gate import ConversionGate
from imageprep.logging import setup_logging
from imageprep.models import PreprocessorConfig, TransformResult
from imageprep.plugin import create_preprocessor
from imageprep.preprocessor import ImagePreprocessor

console = Console()
err_console = Console(stderr=True)


def _setup_logging(verbose: bool) -> None:
    setup_logging(level=logging.DEBUG if verbose else logging.WARNING, verbose=verbose)


def _load(config_path: Path | None) -> PreprocessorConfig:
    return load_config(config_path) if config_path else PreprocessorConfig()


def _write_result(result: TransformResult, destination: Path, with_map: bool) -> None:
    destination.parent.mkdir(parents=True, exist_ok=True)
    destination.write_text(result.code, encoding="utf-8")
    if with_map:
        map_path = destination.with_name(destination.name + ".map")
        map_path.write_text(result.map.to_json(), encoding="utf-8")


@click.group()
@click.version_option(package_name="imageprep")
def main() -> None:
    """imageprep: convert template images and rewrite their references."""


@main.command()
@click.argument(
    "template",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
)
@click.option(
    "--output-root",
    "-r",
    type=click.Path(file_okay=False, path_type=Path),
    help="Directory converted images are checked under (overrides config)",
)
@click.option(
    "--config",
    "-c",
    "config_path",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    help="YAML config file",
)
@click.option(
    "--output",
    "-o",
    type=click.Path(dir_okay=False, path_type=Path),
    help="Write the rewritten template here instead of stdout",
)
@click.option(
    "--map/--no-map",
    "with_map",
    default=True,
    help="Write a .map file next to --output",
)
@click.option("--verbose", "-v", is_flag=True, help="Enable detailed logging")
def transform(
    template: Path,
    output_root: Path | None,
    config_path: Path | None,
    output: Path | None,
    with_map: bool,
    verbose: bool,
) -> None:
    """Rewrite the image references of a single TEMPLATE.

    Example:

        \b
        imageprep transform src/routes/+page.svelte -r static -o out/+page.svelte
    """
    _setup_logging(verbose)
    try:
        config = _load(config_path)
        preprocessor = create_preprocessor(
            config,
            output_root=output_root,
            root=Path.cwd(),
            public_dir=output_root,
        )
        content = template.read_text(encoding="utf-8")
        result = asyncio.run(preprocessor.transform(content, str(template)))
    except (ImagePrepError, ValidationError, ValueError, OSError) as e:
        err_console.print(f"[bold red]✗[/] {template}: {escape(str(e))}")
        sys.exit(1)

    if result is None:
        if output:
            output.parent.mkdir(parents=True, exist_ok=True)
            output.write_text(content, encoding="utf-8")
        else:
            click.echo(content, nl=False)
        err_console.print(f"[dim]{template}: unchanged[/]")
        return

    if output:
        _write_result(result, output, with_map)
        err_console.print(
            f"[bold green]✓[/] {template}: {len(result.bindings)} image(s) bound → {output}"
        )
    else:
        click.echo(result.code, nl=False)


@dataclass
class _BuildOutcome:
    template: Path
    bindings: int = 0
    error: str | None = None


async def _build_one(
    preprocessor: ImagePreprocessor,
    template: Path,
    source_dir: Path,
    out_dir: Path,
    with_map: bool,
    semaphore: asyncio.Semaphore | None,
) -> _BuildOutcome:
    destination = out_dir / template.relative_to(source_dir)
    try:
        if semaphore is not None:
            async with semaphore:
                content = template.read_text(encoding="utf-8")
                result = await preprocessor.transform(content, str(template))
        else:
            content = template.read_text(encoding="utf-8")
            result = await preprocessor.transform(content, str(template))

        if result is None:
            destination.parent.mkdir(parents=True, exist_ok=True)
            destination.write_text(content, encoding="utf-8")
            return _BuildOutcome(template)
        _write_result(result, destination, with_map)
        return _BuildOutcome(template, bindings=len(result.bindings))
    except (ImagePrepError, OSError) as e:
        return _BuildOutcome(template, error=str(e))
    except Exception as e:
        return _BuildOutcome(template, error=f"{type(e).__name__}: {e}")


async def _run_build(
    preprocessor: ImagePreprocessor,
    templates: list[Path],
    source_dir: Path,
    out_dir: Path,
    with_map: bool,
    max_concurrent: int,
) -> list[_BuildOutcome]:
    semaphore = asyncio.Semaphore(max_concurrent) if max_concurrent > 0 else None
    with Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        BarColumn(),
        MofNCompleteColumn(),
        TimeElapsedColumn(),
        console=err_console,
        transient=True,
    ) as progress:
        task = progress.add_task("Transforming templates", total=len(templates))

        async def tracked(template: Path) -> _BuildOutcome:
            try:
                return await _build_one(
                    preprocessor, template, source_dir, out_dir, with_map, semaphore
                )
            finally:
                progress.advance(task)

        return list(await asyncio.gather(*(tracked(t) for t in templates)))


@main.command()
@click.argument(
    "source_dir",
    type=click.Path(exists=True, file_okay=False, path_type=Path),
)
@click.option(
    "--output-root",
    "-r",
    type=click.Path(file_okay=False, path_type=Path),
    help="Directory converted images are checked under (overrides config)",
)
@click.option(
    "--out-dir",
    "-o",
    type=click.Path(file_okay=False, path_type=Path),
    required=True,
    help="Directory the rewritten templates are written to",
)
@click.option(
    "--config",
    "-c",
    "config_path",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    help="YAML config file",
)
@click.option("--pattern", "-p", help="Template glob (overrides config)")
@click.option(
    "--max-concurrent",
    "-j",
    type=int,
    default=0,
    help="Maximum templates processed in parallel (0 = unlimited)",
)
@click.option("--map/--no-map", "with_map", default=True, help="Write .map files")
@click.option("--verbose", "-v", is_flag=True, help="Enable detailed logging")
def build(
    source_dir: Path,
    output_root: Path | None,
    out_dir: Path,
    config_path: Path | None,
    pattern: str | None,
    max_concurrent: int,
    with_map: bool,
    verbose: bool,
) -> None:
    """Transform every template under SOURCE_DIR into --out-dir.

    A template that fails does not stop the others; failures are listed at
    the end and make the command exit with status 1.
    """
    _setup_logging(verbose)
    try:
        config = _load(config_path)
        preprocessor = create_preprocessor(
            config,
            output_root=output_root,
            root=source_dir,
            public_dir=output_root,
        )
    except (ImagePrepError, ValidationError, ValueError, OSError) as e:
        err_console.print(f"[bold red]✗[/] {escape(str(e))}")
        sys.exit(1)

    templates = sorted(p for p in source_dir.glob(pattern or config.template_glob) if p.is_file())
    if not templates:
        console.print(f"[bold yellow]⚠[/] No templates matched in {source_dir}")
        return

    outcomes = asyncio.run(
        _run_build(preprocessor, templates, source_dir, out_dir, with_map, max_concurrent)
    )

    failed = [o for o in outcomes if o.error]
    rewritten = [o for o in outcomes if not o.error and o.bindings]
    console.print(
        f"[bold green]✓[/] {len(outcomes) - len(failed)} template(s) processed, "
        f"{len(rewritten)} rewritten, "
        f"{sum(o.bindings for o in rewritten)} image reference(s) bound"
    )
    for outcome in failed:
        console.print(f"[bold red]✗[/] {outcome.template}: {escape(outcome.error)}")
    if failed:
        sys.exit(1)


@main.command()
@click.argument(
    "image",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
)
@click.option(
    "--output-root",
    "-r",
    type=click.Path(file_okay=False, path_type=Path),
    default=Path("."),
    show_default=True,
    help="Directory the artifact is checked under",
)
@click.option(
    "--config",
    "-c",
    "config_path",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    help="YAML config file",
)
@click.option("--verbose", "-v", is_flag=True, help="Enable detailed logging")
def convert(
    image: Path, output_root: Path, config_path: Path | None, verbose: bool
) -> None:
    """Convert a single IMAGE unless its artifact already exists."""
    _setup_logging(verbose)
    try:
        config = _load(config_path)
    except (ValidationError, ValueError, OSError) as e:
        err_console.print(f"[bold red]✗[/] {escape(str(e))}")
        sys.exit(1)

    gate = ConversionGate(
        PillowCodec(background=config.background),
        source_extensions=config.source_extensions,
        target_extension=config.target_extension,
        target_format=config.target_format,
    )
    result = asyncio.run(gate.convert(image.resolve(), output_root))
    if result.error:
        console.print(f"[bold red]✗[/] {image}: {escape(result.error)}")
        sys.exit(1)
    if result.converted:
        console.print(f"[bold green]✓[/] Converted {image} → {result.new_path}")
    else:
        console.print(f"[bold blue]•[/] Up to date: {result.new_path}")


@main.command()
@click.argument(
    "config_path",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
)
def validate(config_path: Path) -> None:
    """Validate a YAML config file without converting anything."""
    try:
        warnings = validate_config(config_path)
    except (ValidationError, ValueError) as e:
        console.print(f"[bold red]✗[/] Invalid config: {escape(str(e))}")
        sys.exit(1)

    console.print(f"[bold green]✓[/] {config_path} is valid")
    for warning in warnings:
        console.print(f"[bold yellow]⚠[/] {warning}")


if __name__ == "__main__":
    main()
