"""Locate legacy entity file sets and module directories."""

from __future__ import annotations

import re
from pathlib import Path

import structlog

from entitymigrate.config import (
    DEFAULT_SOURCE_ROOT,
    ENTITY_SUFFIX,
    MAP_SUFFIX,
    META_SUFFIX,
    MIGRATED_MARKER,
    MODEL_SUFFIX,
    MODULE_CONTAINERS,
    SERIALISER_SUFFIX,
    SERIALISERS_DIR,
)
from entitymigrate.models import EntityFileSet
from entitymigrate.sources import DiskView, FileView, should_ignore_path

logger = structlog.get_logger(__name__)

_MODULE_PATH_RE = re.compile(
    r"^(.*?/"
    + re.escape(DEFAULT_SOURCE_ROOT)
    + r"/(?:"
    + "|".join(MODULE_CONTAINERS)
    + r")/[^/]+)"
)


def get_module_path(path: Path) -> Path:
    """Module directory owning a file, e.g. src/features/article.

    Falls back to the file's own directory outside the known containers.
    """
    posix = path.as_posix()
    m = _MODULE_PATH_RE.match(posix if posix.startswith("/") else "/" + posix)
    if m:
        found = m.group(1)
        return Path(found if posix.startswith("/") else found[1:])
    return path.parent


def _existing(path: Path) -> Path | None:
    return path if path.is_file() else None


def _find_serialiser(
    module_path: Path, entity_dir: Path, name: str
) -> Path | None:
    candidates = [
        module_path / SERIALISERS_DIR / f"{name}{SERIALISER_SUFFIX}",
        module_path / f"{name}{SERIALISER_SUFFIX}",
        module_path / "entities" / f"{name}{SERIALISER_SUFFIX}",
        entity_dir / f"{name}{SERIALISER_SUFFIX}",
    ]
    for candidate in candidates:
        if candidate.is_file():
            return candidate
    return None


def build_file_set(meta_path: Path) -> EntityFileSet:
    """Collect the siblings of one ``{name}.meta.ts`` file."""
    name = meta_path.name[: -len(META_SUFFIX)]
    entity_dir = meta_path.parent
    module_path = get_module_path(meta_path)
    base = entity_dir / name

    entity = _existing(Path(f"{base}{ENTITY_SUFFIX}")) or _existing(
        Path(f"{base}.ts")
    )
    return EntityFileSet(
        entity_name=name,
        entity_dir=entity_dir,
        meta=meta_path,
        module_path=module_path,
        entity=entity,
        model=_existing(Path(f"{base}{MODEL_SUFFIX}")),
        map=_existing(Path(f"{base}{MAP_SUFFIX}")),
        serialiser=_find_serialiser(module_path, entity_dir, name),
    )


def discover_entities(
    module_path: Path, entity_name: str | None = None
) -> list[EntityFileSet]:
    """Every entity file set under a module, optionally one by name."""
    if not module_path.is_dir():
        logger.warning("module path not found", path=str(module_path))
        return []

    pattern = f"{entity_name or '*'}{META_SUFFIX}"
    metas = sorted(
        p
        for p in module_path.rglob(pattern)
        if not should_ignore_path(p.relative_to(module_path))
    )
    found = [build_file_set(p) for p in metas]
    logger.debug(
        "discovered entities",
        module=str(module_path),
        entities=[f.entity_name for f in found],
    )
    return found


def discover_all_module_paths(source_dir: Path) -> list[Path]:
    """Distinct module directories containing at least one meta file."""
    if not source_dir.is_dir():
        return []
    modules = {
        get_module_path(p)
        for p in source_dir.rglob(f"*{META_SUFFIX}")
        if not should_ignore_path(p.relative_to(source_dir))
    }
    return sorted(modules)


def is_already_migrated(
    files: EntityFileSet, view: FileView | None = None
) -> bool:
    """True when the type file already calls the descriptor builder."""
    view = view or DiskView()
    candidates = [files.entity, files.target_path]
    for path in candidates:
        if path is None or not view.exists(path):
            continue
        if MIGRATED_MARKER in view.read_text(path):
            return True
    return False
