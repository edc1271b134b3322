"""Source tree enumeration respecting .gitignore and build directories."""

from __future__ import annotations

import subprocess
from collections.abc import Iterable
from pathlib import Path
from typing import Protocol

import structlog

from entitymigrate.config import SOURCE_EXTENSIONS

logger = structlog.get_logger(__name__)


class FileView(Protocol):
    """Read access to source files, possibly ahead of the disk."""

    def exists(self, path: Path) -> bool: ...

    def read_text(self, path: Path) -> str: ...

    def staged_paths(self) -> list[Path]:
        """Files that exist in this view but not yet on disk."""
        ...


class DiskView:
    """Files exactly as they are on disk."""

    def exists(self, path: Path) -> bool:
        return path.is_file()

    def read_text(self, path: Path) -> str:
        return path.read_text(encoding="utf-8")

    def staged_paths(self) -> list[Path]:
        return []


# directories never holding hand-written application sources
EXCLUDED_DIR_NAMES: frozenset[str] = frozenset(
    {
        "node_modules",
        ".git",
        "dist",
        "build",
        "coverage",
        ".next",
        ".nuxt",
        ".turbo",
        ".cache",
        "out",
        "tmp",
        "__fixtures__",
    }
)


def should_ignore_path(path: Path) -> bool:
    """True if any component of the path is an excluded directory."""
    return any(part in EXCLUDED_DIR_NAMES for part in path.parts[:-1])


def get_tracked_files(
    root: Path,
    extensions: Iterable[str] | None = None,
) -> list[Path] | None:
    """List files git knows about under root, respecting .gitignore.

    Uses `git ls-files --cached --others --exclude-standard` so untracked
    but not ignored files are included.

    Returns:
        List of paths, or None if root is not in a git repo or git fails.
    """
    wanted = set(extensions) if extensions is not None else None
    try:
        result = subprocess.run(
            [
                "git",
                "ls-files",
                "--cached",
                "--others",
                "--exclude-standard",
            ],
            cwd=root,
            capture_output=True,
            text=True,
            timeout=30,
        )
    except (subprocess.TimeoutExpired, FileNotFoundError, OSError):
        return None
    if result.returncode != 0:
        return None

    files = []
    for line in result.stdout.splitlines():
        if not line:
            continue
        path = root / line
        if not path.is_file():
            continue
        if wanted is None or path.suffix.lower() in wanted:
            files.append(path)
    return files


def iter_source_files(
    root: Path,
    extensions: Iterable[str] = SOURCE_EXTENSIONS,
    exclude: Iterable[Path] = (),
    view: FileView | None = None,
) -> list[Path]:
    """Sorted source files under root, minus excluded and ignored paths.

    With a view, files it deletes are skipped and files it stages are
    included.
    """
    if not root.is_dir():
        return []
    wanted = set(extensions)
    excluded = {p.resolve() for p in exclude}

    files = get_tracked_files(root, wanted)
    if files is None:
        logger.debug("git unavailable, walking tree", root=str(root))
        files = [
            p
            for p in root.rglob("*")
            if p.is_file() and p.suffix.lower() in wanted
        ]
    if view is not None:
        files = [p for p in files if view.exists(p)]
        known = set(files)
        files.extend(
            p
            for p in view.staged_paths()
            if p.suffix.lower() in wanted
            and p.is_relative_to(root)
            and p not in known
        )

    selected = []
    for path in files:
        rel = path.relative_to(root)
        if should_ignore_path(rel) or path.resolve() in excluded:
            continue
        selected.append(path)
    return sorted(selected)
