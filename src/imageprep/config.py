"""YAML configuration loading and validation for the image preprocessor."""

from __future__ import annotations

from pathlib import Path
from typing import Any

import yaml

from imageprep.logging import get_logger
from imageprep.models import PreprocessorConfig

logger = get_logger("config")

SECTION = "preprocessor"


def validate_config_path(path: str | Path) -> Path:
    """Return *path* as a ``Path`` after checking the file exists.

    Raises:
        FileNotFoundError: If the file does not exist.
    """
    resolved = Path(path)
    if not resolved.is_file():
        raise FileNotFoundError(f"Config file not found: {resolved}")
    return resolved


def _parse_yaml(path: Path) -> dict[str, Any]:
    """Read a YAML file that must hold a mapping at top level.

    Raises:
        ValueError: If the YAML is malformed or not a mapping.
    """
    with open(path, "r", encoding="utf-8") as fh:
        try:
            data = yaml.safe_load(fh)
        except yaml.YAMLError as exc:
            raise ValueError(f"Malformed YAML in {path}: {exc}") from exc

    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValueError(
            f"Expected a YAML mapping at top level, got {type(data).__name__}"
        )
    return data


def load_config(path: str | Path) -> PreprocessorConfig:
    """Load a ``PreprocessorConfig`` from YAML.

    Settings may sit at top level or under a ``preprocessor:`` section::

        preprocessor:
          tags: [img]
          source_extensions: [.png]
          target_format: JPEG
          target_extension: .jpg
          on_conversion_error: skip

    An empty file yields the defaults.  A relative ``output_root`` is taken
    relative to the config file.

    Raises:
        FileNotFoundError: If the YAML file doesn't exist.
        ValidationError: If a setting fails Pydantic validation.
        ValueError: If the YAML is malformed or the section is not a mapping.
    """
    resolved = validate_config_path(path)
    data = _parse_yaml(resolved)

    if SECTION in data:
        data = data[SECTION]
        if data is None:
            data = {}
        if not isinstance(data, dict):
            raise ValueError(
                f"'{SECTION}' section must be a YAML mapping, "
                f"got {type(data).__name__}"
            )

    # YAML has no tuple type.
    if isinstance(data.get("background"), list):
        data["background"] = tuple(data["background"])

    output_root = data.get("output_root")
    if isinstance(output_root, str) and not Path(output_root).is_absolute():
        data["output_root"] = str(resolved.parent / output_root)

    config = PreprocessorConfig(**data)
    logger.info(
        "Loaded config from %s: tags=%s, %s -> %s",
        resolved,
        ",".join(config.tags),
        ",".join(config.source_extensions),
        config.target_extension,
    )
    return config


def validate_config(path: str | Path) -> list[str]:
    """Load a config file and return non-fatal warnings about it.

    Raises:
        FileNotFoundError: If the config file doesn't exist.
        ValueError: If the YAML is malformed.
        ValidationError: If Pydantic schema validation fails.
    """
    config = load_config(path)
    warnings: list[str] = []

    if config.output_root is None:
        warnings.append("No output_root set; it must be supplied at build time")
    elif not Path(config.output_root).is_dir():
        warnings.append(f"output_root does not exist yet: {config.output_root}")

    if config.target_format == "JPEG" and config.target_extension not in (".jpg", ".jpeg"):
        warnings.append(
            f"target_extension {config.target_extension!r} is unusual for JPEG output"
        )

    if config.on_conversion_error == "bind":
        warnings.append(
            "on_conversion_error is 'bind': a failed conversion still rewrites "
            "the element to an artifact that may not exist"
        )

    for prefix, target in config.aliases.items():
        if not Path(target).is_dir():
            warnings.append(f"Alias {prefix!r} points to a missing directory: {target}")

    return warnings
