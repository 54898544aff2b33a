"""
YAML/JSON descriptor files.

Extra entity types can be declared in a file instead of code. The file is
read once at startup, before the registry is frozen.

Example file:
    entities:
      - name: Room
        table: rooms
        default_order: ["-floor", "number"]
        version_field: version
        fields:
          - name: id
            kind: integer
            primary_key: true
            auto: true
          - name: number
            kind: text
            indexed: true
          - name: floor
            kind: integer
          - name: version
            kind: integer
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any

import yaml

from .types import EntityDescriptor

logger = logging.getLogger(__name__)


class DescriptorFileError(ValueError):
    """Descriptor file could not be parsed or holds invalid descriptors.

    Attributes:
        errors: One message per invalid entry
    """

    def __init__(self, message: str, errors: list[str] | None = None) -> None:
        self.errors = errors or []
        if self.errors:
            message = message + ":\n" + "\n".join(f"  - {e}" for e in self.errors)
        super().__init__(message)


def parse_descriptors(data: dict[str, Any]) -> list[EntityDescriptor]:
    """Build descriptors from an already-decoded document.

    Raises:
        DescriptorFileError: If any entry is invalid
    """
    if not isinstance(data, dict):
        raise DescriptorFileError("Descriptor document must be a mapping")

    entries = data.get("entities", [])
    if not isinstance(entries, list):
        raise DescriptorFileError("'entities' must be a list")

    descriptors: list[EntityDescriptor] = []
    errors: list[str] = []
    for index, entry in enumerate(entries):
        label = entry.get("name", f"#{index}") if isinstance(entry, dict) else f"#{index}"
        try:
            descriptors.append(EntityDescriptor.from_dict(entry))
        except (KeyError, TypeError, AttributeError) as e:
            errors.append(f"entity {label}: missing or malformed attribute {e}")
        except ValueError as e:
            errors.append(f"entity {label}: {e}")

    if errors:
        raise DescriptorFileError("Invalid entity descriptors", errors)
    return descriptors


def parse_yaml(yaml_str: str) -> list[EntityDescriptor]:
    """Parse descriptors from YAML string."""
    try:
        data = yaml.safe_load(yaml_str)
    except yaml.YAMLError as e:
        raise DescriptorFileError(f"Invalid YAML: {e}") from e
    return parse_descriptors(data or {})


def parse_json(json_str: str) -> list[EntityDescriptor]:
    """Parse descriptors from JSON string."""
    try:
        data = json.loads(json_str)
    except json.JSONDecodeError as e:
        raise DescriptorFileError(f"Invalid JSON: {e}") from e
    return parse_descriptors(data or {})


def load_descriptors(path: str | Path) -> list[EntityDescriptor]:
    """Load descriptors from a .yaml/.yml or .json file."""
    path = Path(path)
    content = path.read_text(encoding="utf-8")
    if path.suffix.lower() == ".json":
        descriptors = parse_json(content)
    else:
        descriptors = parse_yaml(content)
    logger.info(f"Loaded {len(descriptors)} entity descriptors from {path}")
    return descriptors
