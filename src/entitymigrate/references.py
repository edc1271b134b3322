"""Find and rewrite references to a migrated entity's old symbols.

Every source file outside the migrated entity is scanned for the old model
and meta symbols (and alias models). Each hit becomes a replacement rule,
deduplicated by the text it replaces, and the file's old imports collapse
into one import of the new descriptor.
"""

from __future__ import annotations

import re
from collections.abc import Iterable
from dataclasses import dataclass
from pathlib import Path

import structlog

from entitymigrate.config import (
    DEFAULT_SOURCE_ROOT,
    FACTORY_CALL,
    MODULE_CONTAINERS,
    REGISTRY_CALL,
)
from entitymigrate.imports import render_import
from entitymigrate.models import AliasModelInfo, Reference, ReferenceUsage
from entitymigrate.sources import DiskView, FileView, iter_source_files
from entitymigrate.syntax import ImportStatement, parse_imports

logger = structlog.get_logger(__name__)

_LEGACY_SUFFIX_RE = re.compile(r"\.(?:meta|model|entity)$")
# legacy files a migration deletes
_DELETED_SUFFIXES = (".model", ".map", ".entity", ".serialiser")
_REEXPORT_RE = re.compile(r"^\s*export\s+(?:type\s+)?(?:\*|\{[^}]*\})\s*from\s")


def _boundary(text: str) -> re.Pattern[str]:
    return re.compile(r"(?<![\w$.])" + re.escape(text) + r"(?![\w$])")


@dataclass(frozen=True)
class RewriteTarget:
    """One old symbol and the descriptor that replaces it."""

    symbol: str
    descriptor: str

    @property
    def replacement(self) -> str:
        return f"{self.descriptor}.model"

    def match_line(self, line: str) -> list[tuple[str, str]]:
        """(old text, new text) pairs for every rewrite shape on a line."""
        found: list[tuple[str, str]] = []
        sym = re.escape(self.symbol)
        prop = r"(?<![\w$.])" + sym + r"\.([A-Za-z_$][\w$]*)"
        for m in re.finditer(prop, line):
            found.append((m.group(0), f"{self.replacement}.{m.group(1)}"))
        for call in (FACTORY_CALL, REGISTRY_CALL):
            pattern = re.escape(call) + r"\(\s*" + sym + r"\s*\)"
            for m in re.finditer(pattern, line):
                found.append((m.group(0), f"{call}({self.replacement})"))
        for m in re.finditer(r"(?<![\w$.])" + sym + r"(?![\w$.])", line):
            found.append((m.group(0), self.replacement))
        return found


@dataclass(frozen=True)
class EntitySymbols:
    """Old and new names for one entity."""

    entity_name: str
    label_name: str
    meta_name: str
    aliases: tuple[AliasModelInfo, ...] = ()

    @property
    def model_name(self) -> str:
        return f"{self.label_name}Model"

    @property
    def descriptor(self) -> str:
        return f"{self.label_name}Descriptor"

    @property
    def old_symbols(self) -> frozenset[str]:
        names = {self.model_name, self.meta_name}
        names.update(a.model_name for a in self.aliases)
        return frozenset(names)

    def mentions(self, content: str) -> bool:
        """Cheap substring test before any per-line work."""
        needles = [
            self.model_name,
            f"{self.entity_name}.entity",
            f"{self.entity_name}.model",
        ]
        needles.extend(a.model_name for a in self.aliases)
        return any(n in content for n in needles)

    def imports_meta_file(self, content: str) -> bool:
        return (
            f'{self.entity_name}.meta"' in content
            or f"{self.entity_name}.meta'" in content
        )

    def is_old_import(self, stmt: ImportStatement) -> bool:
        if stmt.path.endswith(f"{self.entity_name}.meta"):
            return False
        if stmt.path.endswith(
            (f"{self.entity_name}.entity", f"{self.entity_name}.model")
        ):
            return True
        names = {self.model_name, *(a.model_name for a in self.aliases)}
        return any(n in names for n in stmt.imported_names)

    def is_deleted_path(self, path: str) -> bool:
        return path.endswith(
            tuple(f"{self.entity_name}{s}" for s in _DELETED_SUFFIXES)
        )

    def renamed_targets(
        self, old: Iterable[ImportStatement]
    ) -> list[RewriteTarget]:
        """Targets for old symbols imported under another local name."""
        descriptors = {
            self.model_name: self.descriptor,
            self.meta_name: self.descriptor,
        }
        descriptors.update(
            (a.model_name, a.descriptor_name) for a in self.aliases
        )
        result = []
        for stmt in old:
            for imported, local in stmt.bindings():
                if imported != local and imported in descriptors:
                    result.append(RewriteTarget(local, descriptors[imported]))
        return result

    def targets(self, include_meta: bool) -> list[RewriteTarget]:
        result = [RewriteTarget(self.model_name, self.descriptor)]
        if include_meta:
            result.append(RewriteTarget(self.meta_name, self.descriptor))
        result.extend(
            RewriteTarget(a.model_name, a.descriptor_name) for a in self.aliases
        )
        return result


def _import_line_numbers(
    content: str, stmts: Iterable[ImportStatement]
) -> set[int]:
    lines: set[int] = set()
    for stmt in stmts:
        first = content.count("\n", 0, stmt.start)
        last = content.count("\n", 0, stmt.end)
        lines.update(range(first, last + 1))
    return lines


def find_usages(
    content: str,
    symbols: EntitySymbols,
    include_meta: bool,
    extra_targets: Iterable[RewriteTarget] = (),
) -> list[ReferenceUsage]:
    """Rewrite rules for a file body, deduplicated by old text."""
    skip = _import_line_numbers(content, parse_imports(content))
    targets = [*symbols.targets(include_meta), *extra_targets]
    usages: dict[str, ReferenceUsage] = {}
    for index, line in enumerate(content.splitlines()):
        if index in skip or _REEXPORT_RE.match(line):
            continue
        for target in targets:
            for old_text, new_text in target.match_line(line):
                if old_text not in usages:
                    usages[old_text] = ReferenceUsage(
                        line=index + 1,
                        old_text=old_text,
                        new_text=new_text,
                    )
    return list(usages.values())


def _body_without_imports(content: str, stmts: list[ImportStatement]) -> str:
    parts = []
    pos = 0
    for stmt in sorted(stmts, key=lambda s: s.start):
        parts.append(content[pos : stmt.start])
        pos = stmt.end
    parts.append(content[pos:])
    return "".join(parts)


def fallback_import_path(
    entity_name: str,
    source_dir: Path | None,
    view: FileView | None = None,
) -> str:
    """Conventional descriptor path for an entity, preferring one on disk."""
    view = view or DiskView()
    source_root = source_dir.name if source_dir else DEFAULT_SOURCE_ROOT
    candidates = [
        f"{source_root}/{container}/{entity_name}/entities/{entity_name}"
        for container in MODULE_CONTAINERS
    ]
    if source_dir is not None:
        for candidate in candidates:
            if view.exists(source_dir.parent / f"{candidate}.ts"):
                return candidate
    return candidates[0]


def calculate_new_import(
    content: str,
    stmts: list[ImportStatement],
    old: list[ImportStatement],
    usages: list[ReferenceUsage],
    symbols: EntitySymbols,
    source_dir: Path | None = None,
    view: FileView | None = None,
) -> tuple[str, bool]:
    """One consolidated import for a file, and whether its path is a guess."""
    names: list[str] = []
    old_names = {n for stmt in old for n in stmt.imported_names}

    new_texts = [u.new_text for u in usages]
    if symbols.model_name in old_names or any(
        t.startswith(f"{symbols.descriptor}.") for t in new_texts
    ):
        names.append(symbols.descriptor)
    for alias in symbols.aliases:
        if alias.model_name in old_names or any(
            t.startswith(f"{alias.descriptor_name}.") for t in new_texts
        ):
            names.append(alias.descriptor_name)

    # the bare entity type, also inside generics and annotations
    bound_elsewhere = any(
        symbols.label_name in stmt.names for stmt in stmts if stmt not in old
    )
    body = _body_without_imports(content, stmts)
    if not bound_elsewhere and _boundary(symbols.label_name).search(body):
        names.append(symbols.label_name)

    if not names:
        names.append(symbols.descriptor)

    guessed = False
    path = None
    for stmt in old:
        if stmt.path:
            path = _LEGACY_SUFFIX_RE.sub("", stmt.path)
            break
    if path is None:
        path = fallback_import_path(symbols.entity_name, source_dir, view)
        guessed = True
    return render_import(names, path), guessed


def _retained(
    stmt: ImportStatement, symbols: EntitySymbols
) -> tuple[str, list[str]]:
    """What is left of an old import once the entity's names are removed.

    Names imported from a legacy file the migration deletes cannot stay;
    they are returned as orphaned instead.
    """
    legacy_path = _LEGACY_SUFFIX_RE.search(stmt.path) is not None
    drop = set(symbols.old_symbols)
    if legacy_path:
        drop.add(symbols.label_name)
    keep = [
        local
        for imported, local in stmt.bindings()
        if imported not in drop
    ]
    if not keep:
        return "", []
    if symbols.is_deleted_path(stmt.path):
        return "", keep
    return render_import(stmt.specifiers(keep), stmt.path, stmt.type_only), []


def analyze_file(
    path: Path,
    content: str,
    symbols: EntitySymbols,
    source_dir: Path | None = None,
    view: FileView | None = None,
) -> Reference | None:
    if not symbols.mentions(content):
        return None
    stmts = parse_imports(content)
    old = [s for s in stmts if symbols.is_old_import(s)]
    include_meta = not symbols.imports_meta_file(content)
    usages = find_usages(
        content, symbols, include_meta, symbols.renamed_targets(old)
    )
    if not old and not usages:
        return None

    new_import, guessed = calculate_new_import(
        content, stmts, old, usages, symbols, source_dir, view
    )
    if guessed:
        logger.debug(
            "import path guessed",
            file=str(path),
            entity=symbols.entity_name,
            new_import=new_import,
        )
    retained = [_retained(s, symbols) for s in old]
    return Reference(
        file_path=path,
        old_imports=tuple(s.text for s in old),
        new_import=new_import,
        usages=tuple(usages),
        import_path_guessed=guessed,
        retained_imports=tuple(text for text, _orphans in retained),
        orphaned_names=tuple(n for _text, orphans in retained for n in orphans),
    )


def find_external_references(
    entity_name: str,
    label_name: str,
    source_root: Path,
    exclude_paths: Iterable[Path] = (),
    alias_models: Iterable[AliasModelInfo] = (),
    node_name: str | None = None,
    view: FileView | None = None,
) -> list[Reference]:
    """References to an entity's old symbols anywhere under source_root.

    ``view`` supplies file contents, so pending edits from the same run
    are seen.
    """
    symbols = EntitySymbols(
        entity_name=entity_name,
        label_name=label_name,
        meta_name=f"{node_name or label_name[:1].lower() + label_name[1:]}Meta",
        aliases=tuple(alias_models),
    )
    view = view or DiskView()
    references = []
    files = iter_source_files(source_root, exclude=exclude_paths, view=view)
    for path in files:
        ref = analyze_file(
            path, view.read_text(path), symbols, source_root, view
        )
        if ref is not None:
            references.append(ref)
    logger.debug(
        "external references",
        entity=entity_name,
        files=len(references),
    )
    return references


# ---------------------------------------------------------------------------
# Applying
# ---------------------------------------------------------------------------


def _remove_span(content: str, start: int, end: int, replacement: str) -> str:
    if replacement:
        return content[:start] + replacement + content[end:]
    line_start = content.rfind("\n", 0, start) + 1
    if content[line_start:start].strip() == "":
        nl = content.find("\n", end)
        if nl != -1 and content[end:nl].strip() == "":
            return content[:line_start] + content[nl + 1 :]
    return content[:start] + content[end:]


def rewrite_references(content: str, reference: Reference) -> str:
    """Apply a reference plan to file content and return the new text."""
    stmts = parse_imports(content)
    planned = list(zip(reference.old_imports, _retained_list(reference)))
    spans = []
    for stmt in stmts:
        for old_text, retained in planned:
            if stmt.text == old_text:
                spans.append((stmt.start, stmt.end, retained))
                break

    # first old import becomes the consolidated import
    spans.sort()
    edits = []
    for index, (start, end, retained) in enumerate(spans):
        if index == 0:
            text = reference.new_import
            if retained:
                text = f"{retained}\n{text}"
        else:
            text = retained
        edits.append((start, end, text))
    for start, end, text in reversed(edits):
        content = _remove_span(content, start, end, text)
    if not edits and reference.new_import not in content:
        content = _insert_import(content, stmts, reference.new_import)

    if not reference.usages:
        return content

    stmts = parse_imports(content)
    skip = _import_line_numbers(content, stmts)
    ordered = sorted(
        reference.usages, key=lambda u: len(u.old_text), reverse=True
    )
    patterns = [(_boundary(u.old_text), u.new_text) for u in ordered]
    lines = content.split("\n")
    for index, line in enumerate(lines):
        if index in skip or _REEXPORT_RE.match(line):
            continue
        for pattern, new_text in patterns:
            line = pattern.sub(lambda _m, t=new_text: t, line)
        lines[index] = line
    return "\n".join(lines)


def _insert_import(
    content: str, stmts: list[ImportStatement], statement: str
) -> str:
    """Add an import after the last existing one, or at the top."""
    if not stmts:
        return f"{statement}\n{content}"
    end = max(s.end for s in stmts)
    return f"{content[:end]}\n{statement}{content[end:]}"


def _retained_list(reference: Reference) -> list[str]:
    if len(reference.retained_imports) == len(reference.old_imports):
        return list(reference.retained_imports)
    return [""] * len(reference.old_imports)


def update_file_references(path: Path, reference: Reference) -> str:
    """New content for a file on disk; writing is left to the caller."""
    return rewrite_references(path.read_text(encoding="utf-8"), reference)


def summarize_references(references: Iterable[Reference]) -> dict:
    refs = list(references)
    return {
        "files": len(refs),
        "usages": sum(len(r.usages) for r in refs),
        "imports": sum(len(r.old_imports) for r in refs),
        "guessed_paths": [
            str(r.file_path) for r in refs if r.import_path_guessed
        ],
    }
