"""Shared helpers for CLI commands."""

from __future__ import annotations

import json
from collections.abc import Iterable
from pathlib import Path
from typing import Any

from entitymigrate import console
from entitymigrate.discovery import discover_entities
from entitymigrate.models import Diagnostic, EntityFileSet, to_jsonable


def resolve_root(root: Path | None) -> Path:
    return root.resolve() if root else Path.cwd()


def resolve_module(root: Path, path: Path) -> Path:
    return path if path.is_absolute() else root / path


def find_entity(
    root: Path, path: Path, entity: str | None
) -> EntityFileSet | None:
    """The single entity a read-only command works on.

    Reports an error and returns None when the module holds no legacy
    entity, or several and none was picked.
    """
    module_path = resolve_module(root, path)
    found = discover_entities(module_path, entity)
    if not found:
        console.error(f"no legacy entity found in {path}")
        return None
    if len(found) > 1:
        names = ", ".join(f.entity_name for f in found)
        console.error(f"multiple entities in {path} ({names}), use --entity")
        return None
    return found[0]


def print_json(value: Any) -> None:
    console.raw(json.dumps(to_jsonable(value), indent=2))


def print_diagnostics(diagnostics: Iterable[Diagnostic], root: Path) -> None:
    for diag in diagnostics:
        where = ""
        if diag.path is not None:
            try:
                where = f" ({diag.path.relative_to(root)})"
            except ValueError:
                where = f" ({diag.path})"
        text = f"{diag.entity}: {diag.message}{where}"
        if diag.level == "warning":
            console.warning(text)
        else:
            console.dim(text)
