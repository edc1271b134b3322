"""Exception hierarchy for entity migration."""

from __future__ import annotations

from pathlib import Path


class EntityMigrateError(Exception):
    """Base error for everything raised by entitymigrate."""


class MissingMetaFileError(EntityMigrateError):
    """A discovered entity has no readable meta file."""

    def __init__(self, entity_name: str, path: Path | None = None):
        self.entity_name = entity_name
        self.path = path
        where = f" at {path}" if path else ""
        super().__init__(f"meta file not found for {entity_name}{where}")


class ParseError(EntityMigrateError):
    """A legacy source file could not be read."""

    def __init__(self, path: Path, reason: str):
        self.path = path
        self.reason = reason
        super().__init__(f"failed to parse {path}: {reason}")


class ApplyError(EntityMigrateError):
    """Writing a planned change to disk failed."""

    def __init__(self, path: Path, cause: OSError):
        self.path = path
        self.cause = cause
        super().__init__(f"failed to write {path}: {cause}")
