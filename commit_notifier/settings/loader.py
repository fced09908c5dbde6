"""YAML loader for declarative service documents."""

from __future__ import annotations

from pathlib import Path

import msgspec
from ruamel.yaml import YAML
from ruamel.yaml.constructor import DuplicateKeyError
from ruamel.yaml.error import YAMLError

from .models import ServiceDocument
from .validation import ConfigError, ConfigIssueKind, validate_document

YAML_VERSION = (1, 2)


def load_service_document(path: Path | str) -> ServiceDocument:
    """Parse and validate a YAML service document from ``path``."""
    path_obj = Path(path)
    try:
        text = path_obj.read_text(encoding="utf-8")
    except OSError as exc:
        raise ConfigError.single(
            ConfigIssueKind.INVALID_DOCUMENT, f"failed to read {path_obj}: {exc}"
        ) from exc
    return parse_service_document(text)


def parse_service_document(text: str) -> ServiceDocument:
    """Parse and validate a YAML service document held in memory.

    Duplicate mapping keys are rejected, which is how two conditions or two
    repositories sharing a name in one document surface as
    ``duplicate_name`` issues.
    """
    try:
        loaded = _yaml().load(text)
    except DuplicateKeyError as exc:
        raise ConfigError.single(
            ConfigIssueKind.DUPLICATE_NAME, f"duplicate key in document: {exc}"
        ) from exc
    except YAMLError as exc:
        raise ConfigError.single(
            ConfigIssueKind.INVALID_DOCUMENT, f"failed to parse YAML: {exc}"
        ) from exc

    if loaded is None:
        raise ConfigError.single(ConfigIssueKind.INVALID_DOCUMENT, "document is empty")

    try:
        document = msgspec.convert(loaded, type=ServiceDocument)
    except msgspec.ValidationError as exc:
        raise ConfigError.single(
            ConfigIssueKind.INVALID_DOCUMENT, f"schema validation failed: {exc}"
        ) from exc

    return validate_document(document)


def _yaml() -> YAML:
    yaml = YAML(typ="safe")
    yaml.version = YAML_VERSION
    yaml.allow_duplicate_keys = False
    return yaml


__all__ = ["load_service_document", "parse_service_document"]
