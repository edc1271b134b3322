"""Synthesize descriptor, meta and entity files from a parsed entity.

Generation is pure: every function here builds strings and returns them,
together with the diagnostics raised on the way. Output is deterministic:
entries follow source order and nothing iterates an unordered collection.
"""

from __future__ import annotations

import os
import re
from dataclasses import dataclass
from pathlib import Path

import structlog

from entitymigrate.config import (
    ALIAS_FUNCTION,
    BASE_ENTITY_TYPE,
    BUILDER_FUNCTION,
    CONTEXT_KEYS,
    DEFAULT_SOURCE_ROOT,
    FALLBACK_KIND,
    FRAMEWORK_BARREL_DIR,
    FRAMEWORK_BARREL_FALLBACK,
    FRAMEWORK_PACKAGE,
    FRAMEWORK_TYPES,
    KNOWN_DEFAULTS,
    META_TYPE,
    MODULE_CONTAINERS,
    PRIMITIVE_KINDS,
    RELATIONSHIP_META_NAMES,
    SIGNING_CALL,
    SIGNING_SERVICE,
)
from entitymigrate.cypher import find_cypher_relationships
from entitymigrate.imports import ImportBlock, ImportGroup
from entitymigrate.models import (
    ComputedConfig,
    CypherRelationship,
    Diagnostic,
    DiagnosticLevel,
    FieldConfig,
    GeneratedDescriptor,
    ParsedEntity,
    ParsedField,
    ParsedMeta,
    ParsedSerialiserRelationship,
    RelationshipConfig,
    S3Transform,
)
from entitymigrate.parser import normalize_type
from entitymigrate.resolvers import ResolverChain, default_chain
from entitymigrate.sources import DiskView, FileView
from entitymigrate.syntax import ImportStatement, parse_import_line

logger = structlog.get_logger(__name__)

INDENT = "  "
_STRING_UNION_RE = re.compile(r"""^(?:\s*\|?\s*(?:"[^"]*"|'[^']*'))+$""")


@dataclass
class GeneratorOptions:
    """Inputs beyond the parsed entity itself."""

    # project root, used to validate guessed import paths
    root: Path | None = None
    source_root: str = DEFAULT_SOURCE_ROOT
    # module scanned for query text; None disables extraction
    module_path: Path | None = None
    # pre-extracted edges; takes precedence over module_path scanning
    cypher_relationships: tuple[CypherRelationship, ...] | None = None
    # file contents ahead of the disk; defaults to the disk
    view: FileView | None = None


# ---------------------------------------------------------------------------
# Naming helpers
# ---------------------------------------------------------------------------


def lower_first(text: str) -> str:
    return text[:1].lower() + text[1:]


def kebab_case(name: str) -> str:
    return re.sub(r"(?<!^)(?=[A-Z])", "-", name).lower()


def meta_const_name(meta: ParsedMeta) -> str:
    return f"{meta.node_name}Meta"


def descriptor_name(label: str) -> str:
    return f"{label}Descriptor"


def model_to_meta_name(relationship_name: str, model_import: str) -> str:
    """Meta constant for a legacy target model (``UserModel`` -> userMeta)."""
    if relationship_name in RELATIONSHIP_META_NAMES:
        return RELATIONSHIP_META_NAMES[relationship_name]
    base = model_import.removesuffix("Model")
    return f"{lower_first(base)}Meta"


def is_plural(key: str) -> bool:
    return key.endswith("s")


# ---------------------------------------------------------------------------
# Field kinds
# ---------------------------------------------------------------------------


def field_kind(type_text: str) -> tuple[str, bool]:
    """Descriptor kind for a TypeScript type, and whether it was recognised."""
    text = normalize_type(type_text)
    suffix = ""
    if text.endswith("[]"):
        text = text[:-2].strip()
        suffix = "[]"
    if text in PRIMITIVE_KINDS:
        return PRIMITIVE_KINDS[text] + suffix, True
    generic = text.split("<", 1)[0]
    if generic in PRIMITIVE_KINDS and "<" in text:
        return PRIMITIVE_KINDS[generic] + suffix, True
    if _STRING_UNION_RE.match(text):
        return "string" + suffix, True
    if text.startswith("{"):
        return "json" + suffix, True
    if re.match(r"^[A-Z]\w*$", text):
        # enum-like scalar
        return "string" + suffix, True
    return FALLBACK_KIND + suffix, False


# ---------------------------------------------------------------------------
# Generator
# ---------------------------------------------------------------------------


class DescriptorGenerator:
    """Builds config tables and renders source text for one entity."""

    def __init__(
        self,
        parsed: ParsedEntity,
        entity_dir: Path,
        options: GeneratorOptions | None = None,
    ):
        self.parsed = parsed
        self.entity_dir = entity_dir
        self.options = options or GeneratorOptions()
        self.diagnostics: list[Diagnostic] = []
        self.label = parsed.meta.label_name or parsed.entity_type.name
        self.type_name = parsed.entity_type.name or self.label
        self.descriptor = descriptor_name(self.label)
        self._chain = self._build_chain()
        # relationship target symbol -> import path
        self._target_imports: list[tuple[str, str]] = []

    # -- diagnostics -------------------------------------------------------

    def _note(
        self, level: DiagnosticLevel, message: str, path: Path | None = None
    ) -> None:
        diag = Diagnostic(
            level=level,
            message=message,
            path=path,
            entity=self.parsed.files.entity_name,
        )
        self.diagnostics.append(diag)
        log = logger.warning if level == "warning" else logger.info
        log(message, entity=diag.entity, path=str(path) if path else None)

    # -- relationships source ------------------------------------------------

    def _build_chain(self) -> ResolverChain:
        extracted: tuple[CypherRelationship, ...] = ()
        if self.options.cypher_relationships is not None:
            extracted = self.options.cypher_relationships
        elif self.options.module_path is not None:
            extracted = tuple(
                find_cypher_relationships(
                    self.options.module_path,
                    self.parsed.meta.node_name,
                    self.options.view,
                )
            )
        return default_chain(extracted)

    # -- config tables -----------------------------------------------------

    def build_fields(self) -> list[FieldConfig]:
        serialiser = self.parsed.serialiser
        computed = {f.name for f in self.parsed.mapper if f.is_computed}
        attributes = serialiser.attribute_names
        meta_names = serialiser.meta_names
        transforms = {t.field_name: t for t in serialiser.s3_transforms}

        fields = []
        for parsed_field in self.parsed.entity_type.fields:
            if parsed_field.name in computed:
                continue
            kind, recognised = field_kind(parsed_field.type)
            if not recognised:
                self._note(
                    "info",
                    f"field {parsed_field.name} has unrecognised type "
                    f"{parsed_field.type!r}, using {kind!r}",
                )
            default = KNOWN_DEFAULTS.get(parsed_field.name)
            fields.append(
                FieldConfig(
                    name=parsed_field.name,
                    kind=kind,
                    required=(
                        not parsed_field.optional
                        and parsed_field.name in attributes
                    ),
                    default=default[0] if default else None,
                    meta=parsed_field.name in meta_names,
                    transform=transforms.get(parsed_field.name),
                )
            )

        known = {f.name for f in self.parsed.entity_type.fields}
        for transform in serialiser.s3_transforms:
            if transform.field_name not in known:
                self._note(
                    "warning",
                    f"signed attribute {transform.field_name} has no field "
                    "in the entity type; transform dropped",
                    self.parsed.files.serialiser,
                )
        return fields

    def build_computed(self) -> list[ComputedConfig]:
        meta_names = self.parsed.serialiser.meta_names
        return [
            ComputedConfig(f.name, f.mapping, meta=f.name in meta_names)
            for f in self.parsed.mapper
            if f.is_computed
        ]

    def build_relationships(self) -> list[RelationshipConfig]:
        configs = []
        for rel in self.parsed.serialiser.relationships:
            resolution = self._chain.resolve(rel.name)
            logger.info(
                "relationship resolved",
                entity=self.parsed.files.entity_name,
                relationship=rel.name,
                direction=resolution.direction,
                edge=resolution.relationship,
                source=resolution.source,
            )
            if resolution.source == "default":
                self._note(
                    "info",
                    f"relationship {rel.name} matched no query or heuristic, "
                    f"defaulting to {resolution.relationship}",
                )
            key = rel.dto_key or rel.name
            configs.append(
                RelationshipConfig(
                    name=rel.name,
                    model=self._target_model(rel),
                    direction=resolution.direction,
                    relationship=resolution.relationship,
                    cardinality="many" if is_plural(key) else "one",
                    context_key=CONTEXT_KEYS.get(rel.name),
                    dto_key=rel.dto_key if rel.dto_key != rel.name else None,
                    source=resolution.source,
                )
            )
        return configs

    # -- relationship targets ----------------------------------------------

    def _known_imports(self) -> list[ImportStatement]:
        statements = []
        parsed = self.parsed
        for text in parsed.serialiser.imports + parsed.entity_type.imports:
            stmt = parse_import_line(text)
            if stmt is not None:
                statements.append(stmt)
        return statements

    def _import_path_for(self, symbol: str) -> str | None:
        for stmt in self._known_imports():
            if symbol in stmt.names:
                return stmt.path
        return None

    def _target_model(self, rel: ParsedSerialiserRelationship) -> str:
        model = rel.model_import
        if model.endswith(".model"):
            symbol = model[: -len(".model")]
            if symbol != self.descriptor:
                path = self._import_path_for(symbol)
                if path is None:
                    base = symbol[: -len("Descriptor")] or symbol
                    path = self._guess_path(base, "", rel.name)
                self._target_imports.append((symbol, path))
            return model

        meta_name = model_to_meta_name(rel.name, model)
        if meta_name == meta_const_name(self.parsed.meta):
            return meta_name
        path = self._import_path_for(meta_name)
        if path is None:
            model_path = self._import_path_for(model)
            if model_path is not None and model_path.endswith(".model"):
                path = model_path[: -len(".model")] + ".meta"
        if path is None:
            base = model.removesuffix("Model")
            path = self._guess_path(base, ".meta", rel.name)
        self._target_imports.append((meta_name, path))
        return meta_name

    def _guess_path(self, base: str, suffix: str, rel_name: str) -> str:
        """Conventional location of a target entity, checked on disk."""
        name = kebab_case(base)
        source_root = self.options.source_root
        candidates = [
            f"{source_root}/{container}/{name}/entities/{name}{suffix}"
            for container in MODULE_CONTAINERS
        ]
        root = self.options.root
        view = self.options.view or DiskView()
        for candidate in candidates:
            if root is not None and view.exists(root / f"{candidate}.ts"):
                self._note(
                    "info",
                    f"import path for relationship {rel_name} guessed as "
                    f"{candidate}",
                )
                return candidate
        self._note(
            "warning",
            f"import path for relationship {rel_name} guessed as "
            f"{candidates[0]} but no such file exists; verify manually",
        )
        return candidates[0]

    # -- imports -----------------------------------------------------------

    def barrel_path(self) -> str:
        source_dir = None
        if self.options.root is not None:
            source_dir = self.options.root / self.options.source_root
        else:
            for parent in (self.entity_dir, *self.entity_dir.parents):
                if parent.name == self.options.source_root:
                    source_dir = parent
                    break
        if source_dir is None:
            return FRAMEWORK_BARREL_FALLBACK
        try:
            self.entity_dir.resolve().relative_to(source_dir.resolve())
        except ValueError:
            return FRAMEWORK_BARREL_FALLBACK
        rel = os.path.relpath(
            source_dir.resolve() / FRAMEWORK_BARREL_DIR,
            self.entity_dir.resolve(),
        )
        rel = Path(rel).as_posix()
        return rel if rel.startswith(".") else f"./{rel}"

    def _relationship_type_names(self) -> list[str]:
        names = []
        for rel_field in self.parsed.entity_type.relationship_fields:
            base = normalize_type(rel_field.type).removesuffix("[]")
            if base != self.type_name and base not in names:
                names.append(base)
        return names

    def _is_external(self, stmt: ImportStatement) -> bool:
        if stmt.path == FRAMEWORK_PACKAGE:
            return False
        if stmt.path.startswith("."):
            return False
        return not stmt.path.startswith(f"{self.options.source_root}/")

    def build_imports(self, fields: list[FieldConfig]) -> list[str]:
        block = ImportBlock()
        uses_transforms = any(f.transform for f in fields)
        barrel = [BASE_ENTITY_TYPE, BUILDER_FUNCTION]
        if self.parsed.alias_models:
            barrel.append(ALIAS_FUNCTION)
        if uses_transforms:
            barrel.append(SIGNING_SERVICE)
        for field_config in fields:
            default = KNOWN_DEFAULTS.get(field_config.name)
            if default and default[1] not in barrel:
                barrel.append(default[1])
        relationship_types = self._relationship_type_names()
        barrel.extend(t for t in relationship_types if t in FRAMEWORK_TYPES)
        block.add(ImportGroup.BARREL, barrel, self.barrel_path())

        scalar_words = set()
        for parsed_field in self.parsed.entity_type.fields:
            scalar_words.update(re.findall(r"[A-Za-z_]\w*", parsed_field.type))
        for text in self.parsed.entity_type.imports:
            stmt = parse_import_line(text)
            if stmt is None or stmt.path == FRAMEWORK_PACKAGE:
                continue
            if self._is_external(stmt):
                block.add_verbatim(ImportGroup.EXTERNAL, text)
                continue
            # local imports survive only for names the scalar fields use
            used = [n for n in stmt.names if n in scalar_words]
            if not used:
                continue
            if len(used) == len(stmt.names):
                block.add_verbatim(ImportGroup.EXTERNAL, text)
            else:
                block.add(
                    ImportGroup.EXTERNAL,
                    stmt.specifiers(used),
                    stmt.path,
                    stmt.type_only,
                )

        for type_name in relationship_types:
            if type_name in FRAMEWORK_TYPES or type_name in block:
                continue
            path = self._import_path_for(type_name)
            if path is None:
                self._note(
                    "info",
                    f"no import found for relationship type {type_name}",
                    self.parsed.files.entity,
                )
                continue
            block.add(ImportGroup.TYPE_ONLY, [type_name], path, type_only=True)

        for symbol, path in self._target_imports:
            block.add(ImportGroup.TARGETS, [symbol], path)

        own = [meta_const_name(self.parsed.meta)]
        own.extend(alias.meta_name for alias in self.parsed.alias_models)
        block.add(
            ImportGroup.OWN_META, own, f"./{self.parsed.files.entity_name}.meta"
        )
        return block.statements()

    # -- rendering ---------------------------------------------------------

    def generate(self) -> GeneratedDescriptor:
        fields = self.build_fields()
        computed = self.build_computed()
        relationships = self.build_relationships()
        imports = self.build_imports(fields)

        for method in self.parsed.serialiser.custom_methods:
            self._note(
                "warning",
                f"serialiser method {method}() has no descriptor equivalent; "
                "migrate it manually",
                self.parsed.files.serialiser,
            )

        injected: set[str] = set()
        if any(f.transform for f in fields):
            injected.add(SIGNING_SERVICE)
        for service in self.parsed.serialiser.services:
            if service not in injected:
                self._note(
                    "warning",
                    f"serialiser injects {service}, which the descriptor "
                    "does not inject; wire it manually",
                    self.parsed.files.serialiser,
                )

        code = render_descriptor(
            label=self.label,
            type_name=self.type_name,
            meta_name=meta_const_name(self.parsed.meta),
            fields=fields,
            computed=computed,
            relationships=relationships,
        )
        aliases = [
            f"export const {alias.descriptor_name} = "
            f"{ALIAS_FUNCTION}({self.descriptor}, {alias.meta_name});"
            for alias in self.parsed.alias_models
        ]
        if aliases:
            code = code + "\n\n" + "\n".join(aliases)
        return GeneratedDescriptor(
            code=code,
            imports=tuple(imports),
            fields=tuple(fields),
            computed=tuple(computed),
            relationships=tuple(relationships),
            diagnostics=tuple(self.diagnostics),
        )


# ---------------------------------------------------------------------------
# Rendering
# ---------------------------------------------------------------------------


def _quote(value: str) -> str:
    return '"' + value.replace("\\", "\\\\").replace('"', '\\"') + '"'


def render_transform(transform: S3Transform, indent: str) -> list[str]:
    name = transform.field_name
    extra = ", isPublic: true" if transform.is_public else ""
    call = f"services.{SIGNING_SERVICE}.{SIGNING_CALL}"
    if transform.is_array:
        body = [
            f"if (!data.{name}?.length) return [];",
            f"return await Promise.all(data.{name}.map((url: string) => "
            f"{call}({{ key: url{extra} }})));",
        ]
    else:
        body = [
            f"if (!data.{name}) return undefined;",
            f"return await {call}({{ key: data.{name}{extra} }});",
        ]
    lines = [f"{indent}transform: async (data, services) => {{"]
    lines.extend(f"{indent}{INDENT}{line}" for line in body)
    lines.append(f"{indent}}},")
    return lines


def render_field(field_config: FieldConfig, indent: str) -> list[str]:
    props = [f"type: {_quote(field_config.kind)}"]
    if field_config.required:
        props.append("required: true")
    if field_config.default is not None:
        props.append(f"default: {field_config.default}")
    if field_config.meta:
        props.append("meta: true")

    if field_config.transform is None:
        return [f"{indent}{field_config.name}: {{ {', '.join(props)} }},"]

    inner = indent + INDENT
    lines = [f"{indent}{field_config.name}: {{"]
    lines.extend(f"{inner}{prop}," for prop in props)
    lines.extend(render_transform(field_config.transform, inner))
    lines.append(f"{indent}}},")
    return lines


def render_computed(config: ComputedConfig, indent: str) -> list[str]:
    inner = indent + INDENT
    lines = [f"{indent}{config.name}: {{"]
    lines.append(f"{inner}compute: (params) => {config.compute},")
    if config.meta:
        lines.append(f"{inner}meta: true,")
    lines.append(f"{indent}}},")
    return lines


def render_relationship(config: RelationshipConfig, indent: str) -> list[str]:
    inner = indent + INDENT
    lines = [
        f"{indent}{config.name}: {{",
        f"{inner}model: {config.model},",
        f"{inner}direction: {_quote(config.direction)},",
        f"{inner}relationship: {_quote(config.relationship)},",
        f"{inner}cardinality: {_quote(config.cardinality)},",
    ]
    if config.required is not None:
        lines.append(f"{inner}required: {str(config.required).lower()},")
    if config.context_key:
        lines.append(f"{inner}contextKey: {_quote(config.context_key)},")
    if config.dto_key:
        lines.append(f"{inner}dtoKey: {_quote(config.dto_key)},")
    if config.fields:
        quoted = ", ".join(_quote(f) for f in config.fields)
        lines.append(f"{inner}fields: [{quoted}],")
    lines.append(f"{indent}}},")
    return lines


def render_descriptor(
    label: str,
    type_name: str,
    meta_name: str,
    fields: list[FieldConfig],
    computed: list[ComputedConfig],
    relationships: list[RelationshipConfig],
) -> str:
    name = descriptor_name(label)
    lines = [
        "/**",
        f" * {label} Entity Descriptor",
        " *",
        f" * Single source of truth for the {label} entity configuration.",
        " * Generates mapper, childrenTokens, and DataModelInterface "
        "automatically.",
        " */",
        f"export const {name} = {BUILDER_FUNCTION}<{type_name}>()({{",
        f"{INDENT}...{meta_name},",
    ]
    if any(f.transform for f in fields):
        lines.append("")
        lines.append(f"{INDENT}injectServices: [{SIGNING_SERVICE}],")

    sections = (
        ("Field definitions", "fields", fields, render_field),
        ("Computed fields", "computed", computed, render_computed),
        (
            "Relationship definitions",
            "relationships",
            relationships,
            render_relationship,
        ),
    )
    for comment, key, entries, render in sections:
        if not entries:
            continue
        lines.append("")
        lines.append(f"{INDENT}// {comment}")
        lines.append(f"{INDENT}{key}: {{")
        for entry in entries:
            lines.extend(render(entry, INDENT * 2))
        lines.append(f"{INDENT}}},")

    lines.append("});")
    lines.append("")
    lines.append("// Type export for the descriptor")
    lines.append(f"export type {name}Type = typeof {name};")
    return "\n".join(lines)


def render_meta_constant(name: str, meta: ParsedMeta) -> str:
    lines = [f"export const {name}: {META_TYPE} = {{"]
    values = (
        ("type", meta.type),
        ("endpoint", meta.endpoint),
        ("nodeName", meta.node_name),
        ("labelName", meta.label_name),
    )
    for key, value in values:
        if value:
            lines.append(f"{INDENT}{key}: {_quote(value)},")
    lines.append("};")
    return "\n".join(lines)


def render_type_definition(
    type_name: str,
    fields: tuple[ParsedField, ...],
    relationship_fields: tuple[ParsedField, ...],
) -> str:
    def member(f: ParsedField) -> str:
        return f"{INDENT}{f.name}{'?' if f.optional else ''}: {f.type};"

    lines = [f"export type {type_name} = {BASE_ENTITY_TYPE} & {{"]
    lines.extend(member(f) for f in fields)
    if fields and relationship_fields:
        lines.append("")
    lines.extend(member(f) for f in relationship_fields)
    lines.append("};")
    return "\n".join(lines)


# ---------------------------------------------------------------------------
# Public entry points
# ---------------------------------------------------------------------------


def generate_descriptor(
    parsed: ParsedEntity,
    entity_dir: Path,
    options: GeneratorOptions | None = None,
) -> GeneratedDescriptor:
    """Descriptor code plus the import block it needs."""
    return DescriptorGenerator(parsed, entity_dir, options).generate()


def generate_meta_file(
    meta: ParsedMeta,
    alias_metas: tuple[tuple[str, ParsedMeta], ...] = (),
) -> str:
    """Standalone meta file: the entity's constant, then any alias metas."""
    parts = [
        f'import {{ {META_TYPE} }} from "{FRAMEWORK_PACKAGE}";',
        render_meta_constant(meta_const_name(meta), meta),
    ]
    for name, alias_meta in alias_metas:
        parts.append(render_meta_constant(name, alias_meta))
    return "\n\n".join(parts) + "\n"


def render_entity_file(
    parsed: ParsedEntity, generated: GeneratedDescriptor
) -> str:
    entity_type = parsed.entity_type
    type_name = entity_type.name or parsed.meta.label_name
    parts = [
        "\n".join(generated.imports),
        render_type_definition(
            type_name, entity_type.fields, entity_type.relationship_fields
        ),
        generated.code,
    ]
    return "\n\n".join(p for p in parts if p) + "\n"


def generate_entity_file(
    parsed: ParsedEntity,
    entity_dir: Path,
    options: GeneratorOptions | None = None,
) -> str:
    """Full replacement for ``{name}.ts``: imports, type, descriptor."""
    return render_entity_file(
        parsed, generate_descriptor(parsed, entity_dir, options)
    )
