"""Migrate command - rewrite legacy entities into descriptors."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path

from entitymigrate import console
from entitymigrate.cli._common import (
    print_diagnostics,
    print_json,
    resolve_root,
)
from entitymigrate.config import DEFAULT_SOURCE_ROOT
from entitymigrate.logging_config import configure_logging
from entitymigrate.migrator import EntityMigrator
from entitymigrate.models import MigrationResult, MigratorOptions


@dataclass
class Migrate:
    """Migrate legacy entities to the descriptor pattern."""

    path: Path | None = field(
        default=None,
        metadata={"help": "Module directory, e.g. src/features/article"},
    )
    entity: str | None = field(
        default=None,
        metadata={"help": "Entity name when the module holds several"},
    )
    all: bool = field(
        default=False,
        metadata={"help": "Migrate every module under the source root"},
    )
    dry_run: bool = field(
        default=False,
        metadata={"help": "Compute the plan without writing files"},
    )
    skip_backup: bool = field(
        default=False,
        metadata={"help": "Do not write .bak copies before overwriting"},
    )
    verbose: bool = field(
        default=False,
        metadata={"help": "Debug logging"},
    )
    root: Path | None = field(
        default=None,
        metadata={"help": "Project root (default: current directory)"},
    )
    source_root: str = field(
        default=DEFAULT_SOURCE_ROOT,
        metadata={"help": "Source directory relative to the root"},
    )
    json: bool = field(
        default=False,
        metadata={"help": "Print the result as JSON"},
    )

    def run(self) -> int:
        """Execute the migrate command."""
        if (self.path is None) == (not self.all):
            console.error("specify exactly one of --path or --all")
            return 1

        if self.verbose:
            configure_logging(verbose=True, force=True)

        root = resolve_root(self.root)
        options = MigratorOptions(
            root=root,
            path=self.path,
            entity=self.entity,
            all=self.all,
            dry_run=self.dry_run,
            skip_backup=self.skip_backup,
            verbose=self.verbose,
            source_root=self.source_root,
        )

        if not self.json:
            console.header("Entity Migration")
            if self.dry_run:
                console.warning("dry run, no files will be modified")

        result = EntityMigrator(options).run()

        if self.json:
            print_json(result.to_dict())
        else:
            for entity in result.results:
                print_diagnostics(entity.diagnostics, root)
            print_summary(result)

        return 1 if result.failure_count > 0 else 0


def print_summary(result: MigrationResult) -> None:
    console.header("Migration Summary")
    console.key_value("total entities", result.total_entities)
    console.key_value("successful", result.success_count)
    console.key_value("failed", result.failure_count)
    if result.failures:
        console.table(
            "Failed migrations",
            ["entity", "error"],
            [[r.entity_name, r.error or ""] for r in result.failures],
        )
    elif result.total_entities:
        console.success("all entities migrated")
