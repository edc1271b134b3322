from entitymigrate.changes import ChangeSet
from entitymigrate.discovery import (
    discover_all_module_paths,
    discover_entities,
    is_already_migrated,
)
from entitymigrate.errors import (
    ApplyError,
    EntityMigrateError,
    MissingMetaFileError,
    ParseError,
)
from entitymigrate.generator import (
    generate_descriptor,
    generate_entity_file,
    generate_meta_file,
)
from entitymigrate.migrator import EntityMigrator
from entitymigrate.models import (
    Diagnostic,
    EntityFileSet,
    EntityMigrationResult,
    FileChange,
    MigrationResult,
    MigratorOptions,
    ParsedEntity,
)
from entitymigrate.module_updater import find_module_file, update_module
from entitymigrate.parser import parse_entity
from entitymigrate.references import (
    find_external_references,
    summarize_references,
    update_file_references,
)

__all__ = [
    "ApplyError",
    "ChangeSet",
    "Diagnostic",
    "EntityFileSet",
    "EntityMigrateError",
    "EntityMigrationResult",
    "EntityMigrator",
    "FileChange",
    "MigrationResult",
    "MigratorOptions",
    "MissingMetaFileError",
    "ParseError",
    "ParsedEntity",
    "discover_all_module_paths",
    "discover_entities",
    "find_external_references",
    "find_module_file",
    "generate_descriptor",
    "generate_entity_file",
    "generate_meta_file",
    "is_already_migrated",
    "parse_entity",
    "summarize_references",
    "update_file_references",
    "update_module",
]
