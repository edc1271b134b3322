"""Refs command - list external references to an entity's old symbols."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path

from entitymigrate import console
from entitymigrate.cli._common import find_entity, print_json, resolve_root
from entitymigrate.config import DEFAULT_SOURCE_ROOT
from entitymigrate.parser import parse_entity
from entitymigrate.references import (
    find_external_references,
    summarize_references,
)


@dataclass
class Refs:
    """List the files a migration of this entity would rewrite."""

    path: Path = field(
        metadata={"help": "Module directory, e.g. src/features/article"},
    )
    entity: str | None = field(
        default=None,
        metadata={"help": "Entity name when the module holds several"},
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
        metadata={"help": "Output as JSON"},
    )

    def run(self) -> int:
        """Execute the refs command."""
        root = resolve_root(self.root)
        files = find_entity(root, self.path, self.entity)
        if files is None:
            return 1

        parsed = parse_entity(files)
        exclude = [
            p
            for p in (
                files.meta,
                files.entity,
                files.model,
                files.map,
                files.serialiser,
                files.target_path,
            )
            if p is not None
        ]
        references = find_external_references(
            files.entity_name,
            parsed.meta.label_name,
            root / self.source_root,
            exclude_paths=exclude,
            alias_models=parsed.alias_models,
            node_name=parsed.meta.node_name or None,
        )

        if self.json:
            print_json(
                {
                    "summary": summarize_references(references),
                    "references": references,
                }
            )
            return 0

        console.header(f"References to {parsed.meta.label_name}")
        if not references:
            console.dim("no external references")
            return 0

        rows = []
        for ref in references:
            rel = ref.file_path.relative_to(root)
            guessed = "yes" if ref.import_path_guessed else ""
            rows.append([rel, len(ref.usages), ref.new_import, guessed])
        console.table(None, ["file", "usages", "new import", "guessed"], rows)

        summary = summarize_references(references)
        console.key_value("files", summary["files"])
        console.key_value("usages", summary["usages"])
        for path in summary["guessed_paths"]:
            console.warning(f"import path guessed in {path}")
        return 0
