"""
YAML/JSON declaration format for the itemstore schema compiler.

A declaration document holds the base item types, optional type aliases
and the ordered migration history:

    aliases:
      UserID: uuid
      LeaseID: uuid

    item_types:
      - name: Lease
        keyPath:
          - /user-:user_id/lease-:id
          - /lease-:id
        ttl:
          source: fromLastModified
          field: duration
        fields:
          id: {type: LeaseID, initialValue: uuid}
          user_id: {type: UserID}
          duration: {type: durationSeconds, required: false}

    migrations:
      - version: 1
        description: Rename duration
        changes:
          - type: Lease
            operations:
              - {op: renameField, from: duration, to: duration_seconds}

Loading only checks the document shape; all schema rules are enforced by
the compiler.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Union

import yaml

from .errors import DeclarationFormatError

_DOCUMENT_KEYS = frozenset({"aliases", "item_types", "migrations"})


def check_document(data: Any) -> dict[str, Any]:
    """Validate the top-level shape of a declaration document.

    Returns:
        The document with every section present

    Raises:
        DeclarationFormatError: If a section has the wrong shape
    """
    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise DeclarationFormatError("Declaration document must be a mapping")
    unknown = set(data) - _DOCUMENT_KEYS
    if unknown:
        raise DeclarationFormatError(f"Unknown top-level section(s) {sorted(unknown)}")

    aliases = data.get("aliases") or {}
    if not isinstance(aliases, dict):
        raise DeclarationFormatError("'aliases' must map alias names to primitive types")
    item_types = data.get("item_types") or []
    if not isinstance(item_types, list):
        raise DeclarationFormatError("'item_types' must be a list")
    migrations = data.get("migrations") or []
    if not isinstance(migrations, list):
        raise DeclarationFormatError("'migrations' must be a list")

    return {"aliases": aliases, "item_types": item_types, "migrations": migrations}


def parse_yaml(yaml_str: str) -> dict[str, Any]:
    """Parse a declaration document from YAML string."""
    try:
        data = yaml.safe_load(yaml_str)
    except yaml.YAMLError as e:
        raise DeclarationFormatError(f"Invalid YAML: {e}") from e
    return check_document(data)


def parse_json(json_str: str) -> dict[str, Any]:
    """Parse a declaration document from JSON string."""
    try:
        data = json.loads(json_str)
    except json.JSONDecodeError as e:
        raise DeclarationFormatError(f"Invalid JSON: {e}") from e
    return check_document(data)


def load_file(path: Union[str, Path]) -> dict[str, Any]:
    """Load a declaration document from a .yaml/.yml or .json file."""
    path = Path(path)
    text = path.read_text(encoding="utf-8")
    if path.suffix.lower() == ".json":
        return parse_json(text)
    if path.suffix.lower() in (".yaml", ".yml"):
        return parse_yaml(text)
    raise DeclarationFormatError(f"Unsupported declaration file type '{path.suffix}'")
