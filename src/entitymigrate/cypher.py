"""Recover relationship facts from query text in services and repositories.

Query strings are pattern-matched, never executed. Edges found here are
ground truth for direction and edge label; anything missing falls back to
the heuristics in :mod:`entitymigrate.resolvers`.
"""

from __future__ import annotations

import re
from pathlib import Path

import structlog

from entitymigrate.config import (
    ALIAS_LABELS,
    OWNERSHIP_EDGE,
    QUERY_SOURCE_GLOBS,
)
from entitymigrate.models import (
    CypherRelationship,
    CypherServiceWarning,
    WarningKind,
)
from entitymigrate.sources import DiskView, FileView

logger = structlog.get_logger(__name__)

# node alias, optionally labelled; either part may be an interpolation
_SELF_NODE = r"\(\s*((?:\$\{[^}]+\}|\w+))(?::[^)]*)?\s*\)"
_RELATED_NODE = r"\(\s*([^:)]+?)\s*(?::\s*([^)]+?))?\s*\)"

_INCOMING_RE = re.compile(
    _SELF_NODE
    + r"(?=\s*<-\[\s*\w*\s*:(\w+)[^\]]*\]-\s*"
    + _RELATED_NODE
    + ")"
)
_OUTGOING_RE = re.compile(
    _SELF_NODE
    + r"(?=\s*-\[\s*\w*\s*:(\w+)[^\]]*\]->\s*"
    + _RELATED_NODE
    + ")"
)

_META_TEMPLATE_RE = re.compile(r"\$\{(\w+?)Meta\.\w+\}")
_PLAIN_NAME_RE = re.compile(r"^\w+$")

_RETURN_PARAMS_RE = re.compile(
    r"returnStatement\s*=?\s*\(\s*params\s*\??\s*:\s*\{([^}]+)\}"
)
_USER_ACCESS_PARAMS_RE = re.compile(
    r"userHasAccess\s*=?\s*\(\s*params\s*\??\s*:\s*\{([^}]+)\}"
)
_PARAM_NAME_RE = re.compile(r"(\w+)\s*\??\s*:")
_AGGREGATE_RE = re.compile(r"\btotalScore\b|\b(COUNT|SUM|AVG|COLLECT)\s*\(")


def _lower_first(text: str) -> str:
    return text[:1].lower() + text[1:]


def _name_from_template(text: str) -> str | None:
    """``${topicMeta.labelName}`` -> topic, ``Topic`` -> topic."""
    m = _META_TEMPLATE_RE.search(text)
    if m:
        return _lower_first(m.group(1))
    if _PLAIN_NAME_RE.match(text):
        return _lower_first(text)
    return None


def derive_relationship_name(
    alias: str, label: str | None, relationship_type: str
) -> str:
    """Property name for an edge: label first, then alias, then edge label.

    A generic ``user`` label defers to the alias (``author``, ``editor``)
    since several roles share that label.
    """
    if label:
        name = _name_from_template(label)
        if name and name != "user":
            return name
    if alias:
        tail = alias.split("_")[-1]
        name = _name_from_template(tail)
        if name:
            return name
    if label and _PLAIN_NAME_RE.match(label):
        return _lower_first(label)
    if alias and "$" not in alias and _PLAIN_NAME_RE.match(alias):
        return _lower_first(alias)
    return relationship_type.lower()


def infer_label(alias: str, label: str | None) -> str:
    if label:
        m = _META_TEMPLATE_RE.search(label)
        if m:
            return m.group(1)[:1].upper() + m.group(1)[1:]
        return label
    tail = alias.split("_")[-1].lower()
    if tail in ALIAS_LABELS:
        return ALIAS_LABELS[tail]
    return tail[:1].upper() + tail[1:]


def _is_self_alias(alias: str, node_name: str) -> bool:
    return "${" in alias or alias.lower() == node_name.lower()


def extract_relationships(
    text: str, node_name: str
) -> list[CypherRelationship]:
    """Edges touching the entity's own node in one source text."""
    found: list[CypherRelationship] = []
    for direction, pattern in (("in", _INCOMING_RE), ("out", _OUTGOING_RE)):
        for m in pattern.finditer(text):
            self_alias, rel_type, alias, label = m.groups()
            if rel_type == OWNERSHIP_EDGE:
                continue
            if not _is_self_alias(self_alias, node_name):
                continue
            alias = alias.strip()
            found.append(
                CypherRelationship(
                    name=derive_relationship_name(alias, label, rel_type),
                    relationship_type=rel_type,
                    direction=direction,
                    related_label=infer_label(alias, label),
                )
            )
    return found


def query_sources(
    module_path: Path, view: FileView | None = None
) -> list[Path]:
    view = view or DiskView()
    files: set[Path] = set()
    for pattern in QUERY_SOURCE_GLOBS:
        files.update(p for p in module_path.glob(pattern) if view.exists(p))
    return sorted(p for p in files if not p.name.endswith(".spec.ts"))


def find_cypher_relationships(
    module_path: Path, node_name: str, view: FileView | None = None
) -> list[CypherRelationship]:
    """Deduplicated edges from every query-bearing file of a module."""
    view = view or DiskView()
    seen: set[tuple[str, str, str]] = set()
    result: list[CypherRelationship] = []
    for path in query_sources(module_path, view):
        text = view.read_text(path)
        for rel in extract_relationships(text, node_name):
            key = (rel.name, rel.relationship_type, rel.direction)
            if key in seen:
                continue
            seen.add(key)
            result.append(rel)
    logger.debug(
        "extracted query relationships",
        module=str(module_path),
        count=len(result),
    )
    return result


# ---------------------------------------------------------------------------
# Service warnings
# ---------------------------------------------------------------------------


def _param_names(block: str) -> list[str]:
    return _PARAM_NAME_RE.findall(block)


def detect_service_warnings(
    path: Path, text: str
) -> list[CypherServiceWarning]:
    """Query-building logic in one file that a descriptor cannot express."""
    warnings: list[CypherServiceWarning] = []

    m = _RETURN_PARAMS_RE.search(text)
    if m:
        names = ", ".join(_param_names(m.group(1)))
        warnings.append(
            CypherServiceWarning(
                file_path=path,
                kind=WarningKind.RETURN_STATEMENT_PARAMS,
                description=f"returnStatement takes parameters ({names})",
                action=(
                    "move the parameterised RETURN clause into a custom "
                    "repository method"
                ),
            )
        )

    m = _USER_ACCESS_PARAMS_RE.search(text)
    if m:
        names = ", ".join(_param_names(m.group(1)))
        warnings.append(
            CypherServiceWarning(
                file_path=path,
                kind=WarningKind.USER_HAS_ACCESS_PARAMS,
                description=f"userHasAccess takes parameters ({names})",
                action=(
                    "re-implement the access check in the repository; "
                    "generated checks take no parameters"
                ),
            )
        )

    already_flagged = any(
        w.kind == WarningKind.RETURN_STATEMENT_PARAMS for w in warnings
    )
    m = _AGGREGATE_RE.search(text)
    if m and not already_flagged:
        warnings.append(
            CypherServiceWarning(
                file_path=path,
                kind=WarningKind.CUSTOM_METHOD,
                description=f"query computes aggregates ({m.group(0).strip()})",
                action=(
                    "keep the aggregate in a custom repository method and "
                    "expose it as a computed field"
                ),
            )
        )
    return warnings


def find_service_warnings(
    module_path: Path, view: FileView | None = None
) -> list[CypherServiceWarning]:
    view = view or DiskView()
    warnings: list[CypherServiceWarning] = []
    for path in query_sources(module_path, view):
        warnings.extend(detect_service_warnings(path, view.read_text(path)))
    return warnings
