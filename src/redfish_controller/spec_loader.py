"""Loading desired-state documents from YAML.

Documents are size-checked before they are read and parsed with
yaml.safe_load; everything past that point is pydantic validation of the
model registered for the document's kind.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError

from .config import MAX_SPEC_FILE_SIZE_BYTES
from .models import ResourceSpec, get_spec_class

logger = logging.getLogger(__name__)

SPEC_FILE_SUFFIXES = (".yaml", ".yml")


class SpecLoadError(Exception):
    """A spec document could not be read, parsed or validated."""

    pass


def _parse(path: Path) -> dict[str, Any]:
    if not path.exists():
        raise SpecLoadError(f"Spec file not found: {path}")

    try:
        size = path.stat().st_size
        if size > MAX_SPEC_FILE_SIZE_BYTES:
            raise SpecLoadError(
                f"{path} exceeds maximum size of {MAX_SPEC_FILE_SIZE_BYTES} bytes ({size})"
            )
        text = path.read_text(encoding="utf-8")
    except OSError as e:
        raise SpecLoadError(f"Cannot read {path}: {e}") from e

    try:
        document = yaml.safe_load(text)
    except yaml.YAMLError as e:
        raise SpecLoadError(f"Invalid YAML in {path}: {e}") from e

    if not isinstance(document, dict):
        raise SpecLoadError(f"{path} must hold a single YAML mapping")
    return document


def _unwrap(document: dict[str, Any], path: Path) -> tuple[str, dict[str, Any]]:
    """Split a document into its kind and the fields of that kind.

    apiVersion/kind/metadata/spec documents carry the fields under spec;
    flat documents carry them next to kind.
    """
    kind = document.get("kind")
    if not isinstance(kind, str) or not kind:
        raise SpecLoadError(f"{path} must declare a kind")

    if "apiVersion" not in document or "spec" not in document:
        return kind, {key: value for key, value in document.items() if key != "kind"}

    fields = document["spec"] or {}
    if not isinstance(fields, dict):
        raise SpecLoadError(f"The spec section of {path} must be a mapping")
    return kind, fields


def _describe(error: ValidationError) -> str:
    lines = []
    for detail in error.errors():
        location = ".".join(str(part) for part in detail["loc"]) or "<document>"
        lines.append(f"  - {location}: {detail['msg']}")
    return "\n".join(lines)


def load_spec(spec_path: Path) -> ResourceSpec:
    """Load and validate one resource spec.

    Args:
        spec_path: YAML file naming its resource with a top-level kind.

    Returns:
        The validated spec model for that kind.

    Raises:
        SpecLoadError: On a missing, oversized or malformed file, an unknown
            kind, or field validation errors (listed with their field path).
    """
    kind, fields = _unwrap(_parse(spec_path), spec_path)

    try:
        spec_class = get_spec_class(kind)
    except ValueError as e:
        raise SpecLoadError(str(e)) from e

    try:
        spec = spec_class.model_validate(fields)
    except ValidationError as e:
        raise SpecLoadError(f"Validation failed for {spec_path}:\n{_describe(e)}") from e

    logger.info("Loaded spec", extra={"kind": kind, "path": str(spec_path)})
    return spec


def load_specs(specs_dir: Path) -> list[tuple[Path, ResourceSpec]]:
    """Load every YAML spec in a directory, in file name order.

    Raises:
        SpecLoadError: If the directory is missing or any spec is invalid.
    """
    if not specs_dir.is_dir():
        raise SpecLoadError(f"Specs directory not found: {specs_dir}")

    paths = sorted(
        path for path in specs_dir.iterdir() if path.is_file() and path.suffix in SPEC_FILE_SUFFIXES
    )
    return [(path, load_spec(path)) for path in paths]
