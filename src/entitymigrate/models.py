"""Data model shared by every migration stage.

Stage outputs (file sets, parsed IR, generated code, reference plans) are
frozen snapshots. Only the orchestrator accumulates state, in the
``EntityMigrationResult`` records it builds per entity.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field, is_dataclass
from enum import Enum
from pathlib import Path
from typing import Any, Literal

from entitymigrate.config import DEFAULT_SOURCE_ROOT

Direction = Literal["in", "out"]
Cardinality = Literal["one", "many"]
ChangeType = Literal["create", "update", "delete"]
DiagnosticLevel = Literal["info", "warning"]


# ---------------------------------------------------------------------------
# Discovery
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class EntityFileSet:
    """Paths of the legacy files that make up one entity."""

    entity_name: str  # kebab-case base name, e.g. "test-entity"
    entity_dir: Path
    meta: Path
    module_path: Path
    entity: Path | None = None
    model: Path | None = None
    map: Path | None = None
    serialiser: Path | None = None

    @property
    def target_path(self) -> Path:
        """Where the consolidated descriptor is written."""
        return self.entity_dir / f"{self.entity_name}.ts"

    @property
    def meta_target_path(self) -> Path:
        return self.entity_dir / f"{self.entity_name}.meta.ts"


# ---------------------------------------------------------------------------
# Parsed intermediate representation
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ParsedMeta:
    """The four identity strings of an entity."""

    type: str = ""
    endpoint: str = ""
    node_name: str = ""
    label_name: str = ""

    @property
    def is_complete(self) -> bool:
        return all((self.type, self.endpoint, self.node_name, self.label_name))


@dataclass(frozen=True)
class ParsedField:
    name: str
    type: str
    optional: bool = False


@dataclass(frozen=True)
class ParsedEntityType:
    """The ``X = Entity & {...}`` type shape."""

    name: str
    fields: tuple[ParsedField, ...] = ()
    relationship_fields: tuple[ParsedField, ...] = ()
    imports: tuple[str, ...] = ()


@dataclass(frozen=True)
class ParsedMapperField:
    name: str
    mapping: str  # property path or verbatim expression
    is_computed: bool = False


@dataclass(frozen=True)
class ParsedSerialiserAttribute:
    name: str
    mapping: str


@dataclass(frozen=True)
class ParsedSerialiserRelationship:
    name: str
    model_import: str  # "UserModel" or "UserDescriptor.model"
    dto_key: str | None = None


@dataclass(frozen=True)
class S3Transform:
    """An attribute whose value is produced by a URL-signing call."""

    field_name: str
    is_array: bool = False
    is_public: bool = False


@dataclass(frozen=True)
class ParsedSerialiser:
    attributes: tuple[ParsedSerialiserAttribute, ...] = ()
    meta: tuple[ParsedSerialiserAttribute, ...] = ()
    relationships: tuple[ParsedSerialiserRelationship, ...] = ()
    imports: tuple[str, ...] = ()
    services: tuple[str, ...] = ()
    custom_methods: tuple[str, ...] = ()
    s3_transforms: tuple[S3Transform, ...] = ()

    @property
    def attribute_names(self) -> frozenset[str]:
        return frozenset(a.name for a in self.attributes)

    @property
    def meta_names(self) -> frozenset[str]:
        return frozenset(m.name for m in self.meta)


@dataclass(frozen=True)
class AliasModelInfo:
    """A secondary exported view over the base entity."""

    model_name: str  # OwnerModel
    meta_name: str  # ownerMeta
    descriptor_name: str  # OwnerDescriptor


@dataclass(frozen=True)
class ParsedEntity:
    files: EntityFileSet
    meta: ParsedMeta
    entity_type: ParsedEntityType
    mapper: tuple[ParsedMapperField, ...] = ()
    serialiser: ParsedSerialiser = field(default_factory=ParsedSerialiser)
    alias_models: tuple[AliasModelInfo, ...] = ()
    # alias meta constant name -> resolved identity strings
    alias_metas: tuple[tuple[str, ParsedMeta], ...] = ()


# ---------------------------------------------------------------------------
# Relationship extraction
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class CypherRelationship:
    """An edge recovered from query text."""

    name: str
    relationship_type: str
    direction: Direction
    related_label: str


class WarningKind(str, Enum):
    RETURN_STATEMENT_PARAMS = "returnStatementParams"
    USER_HAS_ACCESS_PARAMS = "userHasAccessParams"
    CUSTOM_METHOD = "customMethod"


@dataclass(frozen=True)
class CypherServiceWarning:
    """Query-construction logic the descriptor cannot express."""

    file_path: Path
    kind: WarningKind
    description: str
    action: str


# ---------------------------------------------------------------------------
# Generation
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class FieldConfig:
    name: str
    kind: str
    required: bool = False
    default: str | None = None
    meta: bool = False
    transform: S3Transform | None = None


@dataclass(frozen=True)
class ComputedConfig:
    name: str
    compute: str
    meta: bool = False


@dataclass(frozen=True)
class RelationshipConfig:
    name: str
    model: str  # xMeta or XDescriptor.model
    direction: Direction
    relationship: str
    cardinality: Cardinality
    required: bool | None = None
    context_key: str | None = None
    dto_key: str | None = None
    fields: tuple[str, ...] = ()
    source: str = "heuristic"  # which resolver produced direction/edge label


@dataclass(frozen=True)
class Diagnostic:
    """A non-fatal finding reported by a stage."""

    level: DiagnosticLevel
    message: str
    path: Path | None = None
    entity: str | None = None


@dataclass(frozen=True)
class GeneratedDescriptor:
    code: str
    imports: tuple[str, ...] = ()
    fields: tuple[FieldConfig, ...] = ()
    computed: tuple[ComputedConfig, ...] = ()
    relationships: tuple[RelationshipConfig, ...] = ()
    diagnostics: tuple[Diagnostic, ...] = ()


# ---------------------------------------------------------------------------
# Reference rewriting
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ReferenceUsage:
    line: int  # first line (1-based) where the pattern was seen
    old_text: str
    new_text: str


@dataclass(frozen=True)
class Reference:
    file_path: Path
    old_imports: tuple[str, ...]
    new_import: str
    usages: tuple[ReferenceUsage, ...] = ()
    import_path_guessed: bool = False
    # per old import, what stays once the entity names are removed
    retained_imports: tuple[str, ...] = ()
    # names left importing from a deleted legacy file
    orphaned_names: tuple[str, ...] = ()

    @property
    def old_import(self) -> str:
        return self.old_imports[0] if self.old_imports else ""


# ---------------------------------------------------------------------------
# Changes and results
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class FileChange:
    type: ChangeType
    path: Path
    content: str | None = None
    backup: bool = False  # a .bak copy written before any overwrite

    def describe(self, dry_run: bool) -> str:
        if dry_run:
            return f"would {self.type}"
        return f"{self.type}d"


class EntityState(str, Enum):
    DISCOVERED = "discovered"
    ALREADY_MIGRATED = "already_migrated"
    PARSED = "parsed"
    GENERATED = "generated"
    WRITTEN = "written"
    REFERENCES_UPDATED = "references_updated"
    MODULE_UPDATED = "module_updated"
    OLD_FILES_DELETED = "old_files_deleted"
    DONE = "done"
    FAILED = "failed"


@dataclass
class EntityMigrationResult:
    entity_name: str
    success: bool = True
    state: EntityState = EntityState.DISCOVERED
    error: str | None = None
    changes: list[FileChange] = field(default_factory=list)
    diagnostics: list[Diagnostic] = field(default_factory=list)

    @property
    def warnings(self) -> list[Diagnostic]:
        return [d for d in self.diagnostics if d.level == "warning"]


@dataclass
class MigrationResult:
    results: list[EntityMigrationResult] = field(default_factory=list)
    dry_run: bool = False

    @property
    def total_entities(self) -> int:
        return len(self.results)

    @property
    def success_count(self) -> int:
        return sum(1 for r in self.results if r.success)

    @property
    def failure_count(self) -> int:
        return sum(1 for r in self.results if not r.success)

    @property
    def failures(self) -> list[EntityMigrationResult]:
        return [r for r in self.results if not r.success]

    def extend(self, other: MigrationResult) -> None:
        self.results.extend(other.results)

    def to_dict(self) -> dict:
        """Convert to dictionary for serialization."""
        return {
            "dry_run": self.dry_run,
            "total_entities": self.total_entities,
            "success_count": self.success_count,
            "failure_count": self.failure_count,
            "results": [to_jsonable(r) for r in self.results],
        }


@dataclass
class MigratorOptions:
    """Runtime options for one migration run."""

    root: Path = field(default_factory=Path.cwd)
    path: Path | None = None
    entity: str | None = None
    all: bool = False
    dry_run: bool = False
    skip_backup: bool = False
    verbose: bool = False
    source_root: str = DEFAULT_SOURCE_ROOT

    @property
    def source_dir(self) -> Path:
        return self.root / self.source_root


def to_jsonable(value: Any) -> Any:
    """Recursively convert dataclasses, enums and paths for json.dumps."""
    if is_dataclass(value) and not isinstance(value, type):
        return to_jsonable(asdict(value))
    if isinstance(value, dict):
        return {str(k): to_jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple, frozenset, set)):
        return [to_jsonable(v) for v in value]
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, Path):
        return str(value)
    return value
