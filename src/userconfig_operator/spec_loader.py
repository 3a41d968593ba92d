"""UserConfig manifest loading with validation.

Used by the offline CLI commands. All file operations enforce a size limit,
and input validation is performed at the boundary.
"""

from __future__ import annotations

import logging
from pathlib import Path

import yaml
from pydantic import ValidationError

from .config import MAX_SPEC_FILE_SIZE_BYTES, USERCONFIG_KIND
from .models import UserConfig

logger = logging.getLogger(__name__)


class SpecLoadError(Exception):
    """Raised when manifest loading or validation fails."""

    pass


def format_validation_error(e: ValidationError) -> str:
    """Render pydantic errors as one ``loc: msg`` line each."""
    errors = []
    for error in e.errors():
        loc = ".".join(str(x) for x in error["loc"])
        errors.append(f"  - {loc}: {error['msg']}")
    return "\n".join(errors)


def load_user_config(path: Path, name: str | None = None) -> UserConfig:
    """Load and validate a UserConfig manifest from YAML.

    Both a full manifest (apiVersion/kind/metadata/spec) and a bare spec
    mapping are accepted. A bare spec takes its name from ``name`` or,
    failing that, the file stem.

    Args:
        path: Manifest file.
        name: Entity name for bare specs; overrides nothing in full manifests.

    Returns:
        Validated UserConfig.

    Raises:
        SpecLoadError: If the file cannot be loaded or fails validation.
    """
    if not path.exists():
        raise SpecLoadError(f"Manifest not found: {path}")

    # Check size before reading
    try:
        file_size = path.stat().st_size
    except OSError as e:
        raise SpecLoadError(f"Failed to stat manifest {path}: {e}") from e

    if file_size > MAX_SPEC_FILE_SIZE_BYTES:
        raise SpecLoadError(
            f"Manifest exceeds maximum size of {MAX_SPEC_FILE_SIZE_BYTES} bytes: {path}"
        )

    try:
        content = path.read_text(encoding="utf-8")
    except OSError as e:
        raise SpecLoadError(f"Failed to read manifest {path}: {e}") from e

    try:
        raw_data = yaml.safe_load(content)
    except yaml.YAMLError as e:
        raise SpecLoadError(f"Invalid YAML in {path}: {e}") from e

    if not isinstance(raw_data, dict):
        raise SpecLoadError(f"Manifest must contain a YAML mapping: {path}")

    if "spec" in raw_data:
        kind = raw_data.get("kind", USERCONFIG_KIND)
        if kind != USERCONFIG_KIND:
            raise SpecLoadError(f"Expected kind {USERCONFIG_KIND}, got {kind}: {path}")
        document = raw_data
    else:
        document = {
            "kind": USERCONFIG_KIND,
            "metadata": {"name": name or path.stem},
            "spec": raw_data,
        }

    try:
        uc = UserConfig.model_validate(document)
    except ValidationError as e:
        raise SpecLoadError(
            f"Validation failed for {path}:\n{format_validation_error(e)}"
        ) from e

    logger.info("Loaded UserConfig '%s' from %s", uc.name, path)
    return uc
