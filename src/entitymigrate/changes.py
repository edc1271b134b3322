"""Staged file changes for one entity migration.

Every step of a migration records its writes here instead of touching the
disk. Later steps read through the pending plan, so a dry run and a real
run compute the same plan; only :meth:`ChangeSet.apply` writes.

A plan can sit on top of another view. The orchestrator keeps one
run-level ChangeSet that absorbs every finished entity plan, so later
entities see earlier edits whether or not they were written.
"""

from __future__ import annotations

import os
import tempfile
from pathlib import Path

import structlog

from entitymigrate.config import BACKUP_SUFFIX
from entitymigrate.errors import ApplyError
from entitymigrate.models import FileChange
from entitymigrate.sources import DiskView, FileView

logger = structlog.get_logger(__name__)


class ChangeSet:
    def __init__(
        self, root: Path | None = None, base: FileView | None = None
    ) -> None:
        self.root = root
        self.base = base or DiskView()
        self.changes: list[FileChange] = []
        self.directories: list[Path] = []
        self._pending: dict[Path, str | None] = {}

    def __len__(self) -> int:
        return len(self.changes)

    def __iter__(self):
        return iter(self.changes)

    # -- overlay ----------------------------------------------------------

    def exists(self, path: Path) -> bool:
        if path in self._pending:
            return self._pending[path] is not None
        return self.base.exists(path)

    def read_text(self, path: Path) -> str:
        """Content of path as it will be once the plan is applied."""
        if path in self._pending:
            content = self._pending[path]
            if content is None:
                raise FileNotFoundError(path)
            return content
        return self.base.read_text(path)

    # -- staging ----------------------------------------------------------

    def write(self, path: Path, content: str) -> FileChange:
        """Stage a create or update; repeated writes to a path merge."""
        for index, existing in enumerate(self.changes):
            if existing.path == path and existing.type != "delete":
                merged = FileChange(existing.type, path, content)
                self.changes[index] = merged
                self._pending[path] = content
                return merged
        kind = "update" if self.exists(path) else "create"
        change = FileChange(kind, path, content)
        self.changes.append(change)
        self._pending[path] = content
        return change

    def delete(self, path: Path) -> FileChange | None:
        if not self.exists(path):
            return None
        change = FileChange("delete", path)
        self.changes.append(change)
        self._pending[path] = None
        return change

    def backup(
        self, path: Path, suffix: str = BACKUP_SUFFIX
    ) -> FileChange | None:
        """Stage a copy of the file's content before this plan."""
        if not self.base.exists(path):
            return None
        target = path.with_name(path.name + suffix)
        if any(c.path == target for c in self.changes):
            return None
        change = FileChange(
            "create", target, self.base.read_text(path), backup=True
        )
        self.changes.append(change)
        self._pending[target] = change.content
        return change

    def remove_dir_if_empty(self, directory: Path) -> bool:
        """Schedule directory removal if the plan leaves it empty."""
        if not directory.is_dir() or self.removes_directory(directory):
            return False
        remaining = [
            p for p in directory.iterdir() if p.is_dir() or self.exists(p)
        ]
        if remaining or self._stages_into(directory):
            return False
        if directory not in self.directories:
            self.directories.append(directory)
        return True

    def removes_directory(self, directory: Path) -> bool:
        if directory in self.directories:
            return True
        base = self.base
        return isinstance(base, ChangeSet) and base.removes_directory(directory)

    def _stages_into(self, directory: Path) -> bool:
        for path, content in self._pending.items():
            if content is not None and path.parent == directory:
                return True
        base = self.base
        return isinstance(base, ChangeSet) and base._stages_into(directory)

    def staged_paths(self) -> list[Path]:
        paths = [p for p in self.base.staged_paths() if self.exists(p)]
        paths.extend(
            p
            for p, content in self._pending.items()
            if content is not None and p not in paths
        )
        return paths

    def absorb(self, other: ChangeSet) -> None:
        """Take over another plan's pending state, as if it were applied."""
        self._pending.update(other._pending)
        for directory in other.directories:
            if directory not in self.directories:
                self.directories.append(directory)

    # -- applying ---------------------------------------------------------

    def _display(self, path: Path) -> str:
        if self.root is not None:
            try:
                return str(path.relative_to(self.root))
            except ValueError:
                pass
        return str(path)

    def log_plan(self, dry_run: bool, **context) -> None:
        for change in self.changes:
            logger.info(
                change.describe(dry_run),
                path=self._display(change.path),
                **context,
            )
        for directory in self.directories:
            event = "would remove directory" if dry_run else "removed directory"
            logger.info(event, path=self._display(directory), **context)

    def apply(self) -> None:
        """Write the plan to disk.

        Backups go first. Creates and updates are staged to temporary
        siblings and then moved into place in plan order, so a failure while
        staging leaves every original untouched. Deletions and directory
        cleanup run last.
        """
        writes = [c for c in self.changes if c.type != "delete"]
        backups = [c for c in writes if c.backup]
        regular = [c for c in writes if not c.backup]

        for change in backups:
            _write_direct(change.path, change.content or "")

        staged: list[tuple[str, FileChange]] = []
        for change in regular:
            try:
                staged.append((_stage(change), change))
            except OSError as e:
                for temp_path, _change in staged:
                    Path(temp_path).unlink(missing_ok=True)
                raise ApplyError(change.path, e) from e

        for index, (temp_path, change) in enumerate(staged):
            try:
                os.replace(temp_path, change.path)
            except OSError as e:
                for leftover, _change in staged[index:]:
                    Path(leftover).unlink(missing_ok=True)
                raise ApplyError(change.path, e) from e

        for change in self.changes:
            if change.type != "delete":
                continue
            try:
                change.path.unlink(missing_ok=True)
            except OSError as e:
                raise ApplyError(change.path, e) from e

        for directory in self.directories:
            try:
                directory.rmdir()
            except OSError as e:
                raise ApplyError(directory, e) from e


def _write_direct(path: Path, content: str) -> None:
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(content, encoding="utf-8")
    except OSError as e:
        raise ApplyError(path, e) from e


def _stage(change: FileChange) -> str:
    change.path.parent.mkdir(parents=True, exist_ok=True)
    temp_fd, temp_path = tempfile.mkstemp(
        suffix=".tmp",
        prefix=f".{change.path.name}.",
        dir=change.path.parent,
    )
    try:
        with open(temp_fd, "w", encoding="utf-8") as f:
            f.write(change.content or "")
    except OSError:
        Path(temp_path).unlink(missing_ok=True)
        raise
    return temp_path
