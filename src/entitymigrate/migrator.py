"""Migration orchestrator: one legacy entity at a time.

Each entity runs inside its own failure boundary and builds its own
:class:`~entitymigrate.changes.ChangeSet`. Nothing is written until the
whole plan for that entity has been computed, and in dry-run mode nothing
is written at all.
"""

from __future__ import annotations

from pathlib import Path

import structlog

from entitymigrate.changes import ChangeSet
from entitymigrate.config import SERIALISERS_DIR
from entitymigrate.cypher import find_service_warnings
from entitymigrate.discovery import (
    discover_all_module_paths,
    discover_entities,
    is_already_migrated,
)
from entitymigrate.generator import (
    GeneratorOptions,
    generate_descriptor,
    generate_meta_file,
    render_entity_file,
)
from entitymigrate.models import (
    Diagnostic,
    EntityFileSet,
    EntityMigrationResult,
    EntityState,
    MigrationResult,
    MigratorOptions,
)
from entitymigrate.module_updater import find_module_file, update_module
from entitymigrate.parser import parse_entity
from entitymigrate.references import (
    find_external_references,
    rewrite_references,
    summarize_references,
)

logger = structlog.get_logger(__name__)


class EntityMigrator:
    """Runs the per-entity pipeline for a module or the whole source tree."""

    def __init__(self, options: MigratorOptions | None = None) -> None:
        self.options = options or MigratorOptions()
        # every finished entity plan, written or not; later entities read
        # through it so a dry run plans exactly what a real run applies
        self.view = ChangeSet(root=self.options.root)

    # -- entry points -----------------------------------------------------

    def run(self) -> MigrationResult:
        self.view = ChangeSet(root=self.options.root)
        if self.options.all:
            return self.migrate_all()
        if self.options.path is None:
            raise ValueError("either a module path or --all is required")
        return self.migrate(self.options.path, self.options.entity)

    def migrate(
        self, module_path: Path, entity_name: str | None = None
    ) -> MigrationResult:
        """Migrate every legacy entity found under one module directory."""
        module_path = self._resolve(module_path)
        logger.info("migrating module", module=self._display(module_path))

        result = MigrationResult(dry_run=self.options.dry_run)
        file_sets = discover_entities(module_path, entity_name)
        if not file_sets:
            logger.info(
                "no legacy entities found", module=self._display(module_path)
            )
            return result

        for files in file_sets:
            result.results.append(self._migrate_isolated(files, module_path))
        return result

    def migrate_all(self) -> MigrationResult:
        source_dir = self.options.source_dir
        module_paths = discover_all_module_paths(source_dir)
        logger.info("discovered modules", count=len(module_paths))

        result = MigrationResult(dry_run=self.options.dry_run)
        for module_path in module_paths:
            result.extend(self.migrate(module_path))
        return result

    # -- per entity -------------------------------------------------------

    def _migrate_isolated(
        self, files: EntityFileSet, module_path: Path
    ) -> EntityMigrationResult:
        result = EntityMigrationResult(entity_name=files.entity_name)
        try:
            self.migrate_entity(files, module_path, result)
        except Exception as e:
            result.success = False
            result.error = str(e)
            self._transition(result, EntityState.FAILED)
            logger.error(
                "entity migration failed",
                entity=files.entity_name,
                error=str(e),
            )
        return result

    def migrate_entity(
        self,
        files: EntityFileSet,
        module_path: Path,
        result: EntityMigrationResult | None = None,
    ) -> EntityMigrationResult:
        """Plan (and unless dry-running, apply) one entity's migration.

        Exceptions propagate; :meth:`migrate` turns them into failed
        results.
        """
        result = result or EntityMigrationResult(entity_name=files.entity_name)
        name = files.entity_name
        self._transition(result, EntityState.DISCOVERED)

        if is_already_migrated(files, self.view):
            logger.info("already migrated, skipping", entity=name)
            self._transition(result, EntityState.ALREADY_MIGRATED)
            return result

        parsed = parse_entity(files, self.view)
        self._transition(result, EntityState.PARSED)

        generated = generate_descriptor(
            parsed,
            files.entity_dir,
            GeneratorOptions(
                root=self.options.root,
                source_root=self.options.source_root,
                module_path=module_path,
                view=self.view,
            ),
        )
        result.diagnostics.extend(generated.diagnostics)
        meta_content = generate_meta_file(parsed.meta, parsed.alias_metas)
        entity_content = render_entity_file(parsed, generated)
        self._transition(result, EntityState.GENERATED)

        plan = ChangeSet(root=self.options.root, base=self.view)
        meta_target = files.meta_target_path
        target = files.target_path
        if not self.options.skip_backup:
            plan.backup(meta_target)
            plan.backup(target)
        plan.write(meta_target, meta_content)
        plan.write(target, entity_content)
        self._transition(result, EntityState.WRITTEN)

        self._plan_references(files, parsed, plan, result)
        self._transition(result, EntityState.REFERENCES_UPDATED)

        module_file = find_module_file(module_path)
        if module_file is not None and plan.exists(module_file):
            update = update_module(
                module_file,
                parsed.meta.label_name,
                content=plan.read_text(module_file),
            )
            if update is not None:
                plan.write(module_file, update.content)
        self._transition(result, EntityState.MODULE_UPDATED)

        for old in self._old_files(files):
            plan.delete(old)
        plan.remove_dir_if_empty(module_path / SERIALISERS_DIR)
        self._transition(result, EntityState.OLD_FILES_DELETED)

        for warning in find_service_warnings(module_path, plan):
            self._diagnose(
                result,
                Diagnostic(
                    level="warning",
                    message=f"{warning.description}; {warning.action}",
                    path=warning.file_path,
                    entity=name,
                ),
            )

        plan.log_plan(self.options.dry_run, entity=name)
        if not self.options.dry_run:
            plan.apply()
        self.view.absorb(plan)
        result.changes = list(plan)
        self._transition(result, EntityState.DONE)
        return result

    def _plan_references(self, files, parsed, plan, result) -> None:
        exclude = [
            p
            for p in (
                files.meta,
                files.entity,
                files.model,
                files.map,
                files.serialiser,
                files.target_path,
                files.meta_target_path,
            )
            if p is not None
        ]
        references = find_external_references(
            files.entity_name,
            parsed.meta.label_name,
            self.options.source_dir,
            exclude_paths=exclude,
            alias_models=parsed.alias_models,
            node_name=parsed.meta.node_name or None,
            view=plan,
        )
        if self.options.verbose:
            logger.debug(
                "reference summary",
                entity=files.entity_name,
                **summarize_references(references),
            )
        for ref in references:
            if ref.orphaned_names:
                names = ", ".join(ref.orphaned_names)
                self._diagnose(
                    result,
                    Diagnostic(
                        level="warning",
                        message=(
                            f"{names} imported from a legacy file that is "
                            "deleted; re-export or move it manually"
                        ),
                        path=ref.file_path,
                        entity=files.entity_name,
                    ),
                )
            if ref.import_path_guessed:
                self._diagnose(
                    result,
                    Diagnostic(
                        level="warning",
                        message=f"import path guessed: {ref.new_import}",
                        path=ref.file_path,
                        entity=files.entity_name,
                    ),
                )
            content = rewrite_references(plan.read_text(ref.file_path), ref)
            plan.write(ref.file_path, content)

    def _old_files(self, files: EntityFileSet) -> list[Path]:
        old = [p for p in (files.model, files.map, files.serialiser) if p]
        if files.meta != files.meta_target_path:
            old.append(files.meta)
        if files.entity is not None and files.entity != files.target_path:
            old.append(files.entity)
        return old

    # -- helpers ----------------------------------------------------------

    def _resolve(self, path: Path) -> Path:
        path = Path(path)
        return path if path.is_absolute() else self.options.root / path

    def _display(self, path: Path) -> str:
        try:
            return str(path.relative_to(self.options.root))
        except ValueError:
            return str(path)

    def _transition(
        self, result: EntityMigrationResult, state: EntityState
    ) -> None:
        result.state = state
        logger.debug(
            "entity state", entity=result.entity_name, state=state.value
        )

    def _diagnose(
        self, result: EntityMigrationResult, diagnostic: Diagnostic
    ) -> None:
        result.diagnostics.append(diagnostic)
        log = logger.warning if diagnostic.level == "warning" else logger.info
        log(
            diagnostic.message,
            entity=diagnostic.entity,
            path=str(diagnostic.path) if diagnostic.path else None,
        )
