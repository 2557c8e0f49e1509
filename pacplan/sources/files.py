"""Reading desired-state documents from a folder tree."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Iterator

import yaml

from pacplan.errors import ConfigurationError

DOCUMENT_SUFFIXES = {".json", ".yaml", ".yml"}


def load_document(path: str | Path) -> Any:
    """Parse a JSON or YAML document.

    Raises:
        ConfigurationError: If the file cannot be parsed.
    """
    path = Path(path)
    try:
        text = path.read_text(encoding="utf-8")
        if path.suffix.lower() == ".json":
            return json.loads(text)
        return yaml.safe_load(text)
    except (json.JSONDecodeError, yaml.YAMLError, UnicodeDecodeError) as e:
        raise ConfigurationError(f"Cannot parse {path}: {e}") from e


def iter_documents(folder: str | Path) -> Iterator[tuple[Path, Any]]:
    """Yield ``(path, document)`` for every document below a folder, in path order."""
    folder = Path(folder)
    if not folder.is_dir():
        return
    for path in sorted(folder.rglob("*")):
        if path.is_file() and path.suffix.lower() in DOCUMENT_SUFFIXES:
            yield path, load_document(path)


def iter_items(folder: str | Path, list_key: str) -> Iterator[tuple[Path, dict]]:
    """Yield each item mapping of every document below a folder.

    A document may hold one item, a list of items, or a mapping with the
    items under ``list_key``.
    """
    for path, document in iter_documents(folder):
        if document is None:
            continue
        if isinstance(document, dict) and isinstance(document.get(list_key), list):
            items = document[list_key]
        elif isinstance(document, list):
            items = document
        elif isinstance(document, dict):
            items = [document]
        else:
            raise ConfigurationError(f"{path} must contain a mapping or a list of mappings")

        for i, item in enumerate(items):
            if not isinstance(item, dict):
                raise ConfigurationError(f"{path}: item {i} is not a mapping")
            yield path, item
