"""Migration configuration constants and environment overrides."""

from __future__ import annotations

import os

# Environment variable names
ENV_SOURCE_ROOT = "ENTITYMIGRATE_SOURCE_ROOT"
ENV_FRAMEWORK_PACKAGE = "ENTITYMIGRATE_FRAMEWORK_PACKAGE"
ENV_BACKUP_SUFFIX = "ENTITYMIGRATE_BACKUP_SUFFIX"
ENV_DEBUG = "ENTITYMIGRATE_DEBUG"

# Directory (relative to the project root) holding all TypeScript sources
DEFAULT_SOURCE_ROOT = os.environ.get(ENV_SOURCE_ROOT, "src")

# Public entry point of the descriptor runtime; only the meta file imports it
FRAMEWORK_PACKAGE = os.environ.get(
    ENV_FRAMEWORK_PACKAGE, "@carlonicora/nestjs-neo4jsonapi"
)

BACKUP_SUFFIX = os.environ.get(ENV_BACKUP_SUFFIX, ".bak")

# ---------------------------------------------------------------------------
# Layout
# ---------------------------------------------------------------------------

# Top-level groupings under the source root that contain modules
MODULE_CONTAINERS: tuple[str, ...] = ("features", "foundations")

META_SUFFIX = ".meta.ts"
ENTITY_SUFFIX = ".entity.ts"
MODEL_SUFFIX = ".model.ts"
MAP_SUFFIX = ".map.ts"
SERIALISER_SUFFIX = ".serialiser.ts"
MODULE_SUFFIX = ".module.ts"
SERIALISERS_DIR = "serialisers"

# Internal barrel (under the source root) re-exporting the descriptor runtime
FRAMEWORK_BARREL_DIR = "common"
FRAMEWORK_BARREL_FALLBACK = "../../../common"

SOURCE_EXTENSIONS: frozenset[str] = frozenset({".ts", ".tsx"})

# ---------------------------------------------------------------------------
# Descriptor runtime symbols
# ---------------------------------------------------------------------------

MIGRATED_MARKER = "defineEntity<"
BUILDER_FUNCTION = "defineEntity"
ALIAS_FUNCTION = "defineEntityAlias"
BASE_ENTITY_TYPE = "Entity"
META_TYPE = "DataMeta"

# ---------------------------------------------------------------------------
# Serialiser conventions
# ---------------------------------------------------------------------------

# Constructor dependencies consumed by the base serialiser, not the entity
FRAMEWORK_SERIALISER_DEPS: frozenset[str] = frozenset(
    {"JsonApiSerialiserFactory", "SerialiserFactory", "ConfigService"}
)
STANDARD_SERIALISER_METHODS: frozenset[str] = frozenset(
    {"constructor", "create", "type"}
)

SIGNING_SERVICE = "S3Service"
SIGNING_CALL = "generateSignedUrl"
# serialiser helpers wrapping the signing call
SIGNING_CALLS: tuple[str, ...] = (SIGNING_CALL, "getSignedUrl", "getSignedUrls")
BATCH_COMBINATOR = "Promise.all"

# ---------------------------------------------------------------------------
# Type classification
# ---------------------------------------------------------------------------

PRIMITIVE_KINDS: dict[str, str] = {
    "string": "string",
    "number": "number",
    "boolean": "boolean",
    "Date": "datetime",
    "any": "json",
    "object": "json",
    "unknown": "json",
    "Record": "json",
    "JSON": "json",
}
FALLBACK_KIND = "string"

# Capitalized names that never denote a related entity
SCALAR_TYPE_NAMES: frozenset[str] = frozenset(
    {
        "Date",
        "Record",
        "Object",
        "String",
        "Number",
        "Boolean",
        "JSON",
        "Buffer",
    }
)
SCALAR_TYPE_SUFFIXES: tuple[str, ...] = ("Status", "Enum", "Kind")

# Relationship types re-exported by the internal barrel
FRAMEWORK_TYPES: frozenset[str] = frozenset({"User", "Company"})

# Field name -> default expression, with the barrel symbol it needs
KNOWN_DEFAULTS: dict[str, tuple[str, str]] = {
    "aiStatus": ("AiStatus.Pending", "AiStatus"),
}

# ---------------------------------------------------------------------------
# Relationship inference
# ---------------------------------------------------------------------------

# Tenant-scoping edge present in most queries; never a domain relationship
OWNERSHIP_EDGE = "BELONGS_TO"
DEFAULT_RELATIONSHIP = "RELATED_TO"
DEFAULT_DIRECTION = "out"

# name -> (direction, edge label)
HEURISTIC_RELATIONSHIPS: dict[str, tuple[str, str]] = {
    "author": ("in", "PUBLISHED"),
    "user": ("out", "ACCESSIBLE_BY"),
    "topic": ("out", "RELEVANT_FOR"),
    "expertise": ("out", "RELEVANT_FOR"),
    "company": ("out", "BELONGS_TO"),
}

# name -> context key injected at query time
CONTEXT_KEYS: dict[str, str] = {"author": "userId"}

# relationship name -> meta constant of the target view
RELATIONSHIP_META_NAMES: dict[str, str] = {
    "author": "authorMeta",
    "user": "userMeta",
    "editors": "userMeta",
}

# alias -> label used when a query node carries no explicit label
ALIAS_LABELS: dict[str, str] = {
    "author": "User",
    "user": "User",
    "editor": "User",
    "topic": "Topic",
    "expertise": "Expertise",
    "company": "Company",
}

QUERY_SOURCE_GLOBS: tuple[str, ...] = (
    "services/*.service.ts",
    "repositories/*.repository.ts",
)

# ---------------------------------------------------------------------------
# Reference rewriting
# ---------------------------------------------------------------------------

FACTORY_CALL = "serialiserFactory.create"
REGISTRY_CALL = "modelRegistry.register"


def is_debug_enabled() -> bool:
    """Check whether debug logging was requested through the environment."""
    return os.environ.get(ENV_DEBUG, "").lower() in ("1", "true", "yes")
