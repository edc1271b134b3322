"""Inspect command - show what the parser recovers from a legacy entity."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path

from entitymigrate.cli._common import find_entity, print_json, resolve_root
from entitymigrate.generator import GeneratorOptions, generate_descriptor
from entitymigrate.parser import parse_entity


@dataclass
class Inspect:
    """Print the parsed form of one legacy entity as JSON."""

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
    descriptor: bool = field(
        default=False,
        metadata={"help": "Also include the generated field tables"},
    )

    def run(self) -> int:
        """Execute the inspect command."""
        root = resolve_root(self.root)
        files = find_entity(root, self.path, self.entity)
        if files is None:
            return 1

        parsed = parse_entity(files)
        payload: dict = {"entity": parsed}
        if self.descriptor:
            generated = generate_descriptor(
                parsed,
                files.entity_dir,
                GeneratorOptions(root=root, module_path=files.module_path),
            )
            payload["fields"] = generated.fields
            payload["computed"] = generated.computed
            payload["relationships"] = generated.relationships
            payload["diagnostics"] = generated.diagnostics
        print_json(payload)
        return 0
