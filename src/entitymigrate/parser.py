"""Parse legacy entity files into the intermediate representation.

Each file is parsed on its own. A missing optional file degrades to an
empty structure; only a missing meta file is fatal for the entity.
"""

from __future__ import annotations

import re
from pathlib import Path

import structlog

from entitymigrate.config import (
    BATCH_COMBINATOR,
    FACTORY_CALL,
    FRAMEWORK_SERIALISER_DEPS,
    SCALAR_TYPE_NAMES,
    SCALAR_TYPE_SUFFIXES,
    SIGNING_CALLS,
    STANDARD_SERIALISER_METHODS,
)
from entitymigrate.errors import MissingMetaFileError, ParseError
from entitymigrate.models import (
    AliasModelInfo,
    EntityFileSet,
    ParsedEntity,
    ParsedEntityType,
    ParsedField,
    ParsedMapperField,
    ParsedMeta,
    ParsedSerialiser,
    ParsedSerialiserAttribute,
    ParsedSerialiserRelationship,
    S3Transform,
)
from entitymigrate.sources import DiskView, FileView
from entitymigrate.syntax import (
    IDENT,
    STRING,
    TEMPLATE,
    Group,
    Member,
    Node,
    SourceTree,
    Token,
    call_argument,
    contains_token,
    members,
    parse,
    parse_imports,
)

logger = structlog.get_logger(__name__)

META_KEYS = {
    "type": "type",
    "endpoint": "endpoint",
    "nodeName": "node_name",
    "labelName": "label_name",
}

_RELATIONSHIP_TYPE_RE = re.compile(r"^[A-Z]\w*$")
_ARRAY_GENERIC_RE = re.compile(r"^(?:Readonly)?Array<\s*(\w+)\s*>$")
_NULLISH_RE = re.compile(r"\s*\|\s*(?:null|undefined)\b")

_METHOD_MODIFIERS = frozenset(
    {"async", "get", "set", "static", "public", "private", "protected"}
)
_NOT_A_METHOD_BEFORE = frozenset({".", "=", "new", "await", "return", "?."})


def _read(path: Path, view: FileView | None = None) -> str:
    try:
        return (view or DiskView()).read_text(path)
    except (OSError, UnicodeDecodeError) as e:
        raise ParseError(path, str(e)) from e


def _exists(path: Path | None, view: FileView | None) -> bool:
    return path is not None and (view or DiskView()).exists(path)


# ---------------------------------------------------------------------------
# Meta
# ---------------------------------------------------------------------------


def _meta_from_members(
    entries: list[Member], known: dict[str, ParsedMeta]
) -> ParsedMeta:
    values: dict[str, str] = {}
    for member in entries:
        if member.spread and member.spread in known:
            base = known[member.spread]
            values.update(
                type=base.type,
                endpoint=base.endpoint,
                node_name=base.node_name,
                label_name=base.label_name,
            )
            continue
        if member.key not in META_KEYS or len(member.value) != 1:
            continue
        tok = member.value[0]
        if isinstance(tok, Token) and tok.literal is not None:
            values[META_KEYS[member.key]] = tok.literal
    return ParsedMeta(**values)


def _const_objects(tree: SourceTree) -> list[tuple[str, Group]]:
    """``const NAME[: T] = { ... }`` declarations at file level."""
    found = []
    children = tree.root.children
    for i, node in enumerate(children[:-1]):
        if not (isinstance(node, Token) and node.is_ident("const")):
            continue
        name_tok = children[i + 1]
        if not (isinstance(name_tok, Token) and name_tok.kind == IDENT):
            continue
        seen_assign = False
        for nxt in children[i + 2 :]:
            if isinstance(nxt, Token):
                if nxt.is_punct("="):
                    seen_assign = True
                    continue
                if nxt.is_punct(";") or nxt.is_ident("const"):
                    break
                if seen_assign:
                    break
            elif seen_assign:
                if nxt.is_brace:
                    found.append((name_tok.value, nxt))
                break
    return found


def parse_meta_declarations(source: str) -> list[tuple[str, ParsedMeta]]:
    """Every meta constant in a meta file, with spreads resolved."""
    tree = parse(source)
    known: dict[str, ParsedMeta] = {}
    ordered = []
    for name, group in _const_objects(tree):
        meta = _meta_from_members(members(group), known)
        known[name] = meta
        ordered.append((name, meta))
    return ordered


def parse_meta_text(source: str) -> ParsedMeta:
    """First value of each identity key; an absent key yields ""."""
    declarations = parse_meta_declarations(source)
    if declarations:
        return declarations[0][1]

    values: dict[str, str] = {}
    tokens = list(parse(source).root.tokens())
    for i in range(len(tokens) - 2):
        key, colon, value = tokens[i], tokens[i + 1], tokens[i + 2]
        if key.value not in META_KEYS or not colon.is_punct(":"):
            continue
        field_name = META_KEYS[key.value]
        if field_name not in values and value.literal is not None:
            values[field_name] = value.literal
    return ParsedMeta(**values)


def parse_meta_file(
    path: Path, entity_name: str = "", view: FileView | None = None
) -> ParsedMeta:
    if not _exists(path, view):
        raise MissingMetaFileError(entity_name or path.name, path)
    return parse_meta_text(_read(path, view))


def split_alias_metas(
    source: str, primary: ParsedMeta
) -> tuple[tuple[str, ParsedMeta], ...]:
    """Meta constants other than the primary one, in declaration order."""
    declarations = parse_meta_declarations(source)
    return tuple(decl for decl in declarations[1:] if decl[1] != primary)


# ---------------------------------------------------------------------------
# Entity type
# ---------------------------------------------------------------------------


def _type_block(tree: SourceTree) -> tuple[str, Group] | None:
    """Locate ``type NAME = Entity & { ... }``."""
    children = tree.root.children
    for i, node in enumerate(children):
        if not (isinstance(node, Token) and node.is_ident("type")):
            continue
        window = children[i + 1 : i + 6]
        if len(window) < 5:
            continue
        name, eq, base, amp, block = window
        if (
            isinstance(name, Token)
            and name.kind == IDENT
            and isinstance(eq, Token)
            and eq.is_punct("=")
            and isinstance(base, Token)
            and base.is_ident("Entity")
            and isinstance(amp, Token)
            and amp.is_punct("&")
            and isinstance(block, Group)
            and block.is_brace
        ):
            return name.value, block
    return None


def _type_members(
    tree: SourceTree, block: Group
) -> list[tuple[str, bool, str]]:
    """(name, optional, type text) for each member of a type literal.

    Members may be separated by ``;``, ``,`` or just a line break.
    """
    runs: list[list[Node]] = [[]]
    children = block.children
    angle = 0  # generic arguments are not bracket groups
    for i, child in enumerate(children):
        if isinstance(child, Token) and child.is_punct("<", ">"):
            angle += 1 if child.value == "<" else -1
            angle = max(angle, 0)
        elif isinstance(child, Token) and child.is_punct(";", ","):
            if angle == 0 or child.value == ";":
                angle = 0
                runs.append([])
                continue
        if runs[-1] and _starts_line_member(tree, children, i):
            runs.append([])
        runs[-1].append(child)

    result = []
    for run in runs:
        if len(run) < 3 or not isinstance(run[0], Token):
            continue
        name = run[0]
        rest = run[1:]
        optional = False
        if isinstance(rest[0], Token) and rest[0].is_punct("?"):
            optional = True
            rest = rest[1:]
        if not rest or not isinstance(rest[0], Token):
            continue
        if not rest[0].is_punct(":"):
            continue
        type_text = tree.text(rest[1:])
        if name.kind in (IDENT, STRING) and type_text:
            key = name.literal if name.kind == STRING else name.value
            result.append((key, optional, " ".join(type_text.split())))
    return result


def _starts_line_member(
    tree: SourceTree, children: list[Node], i: int
) -> bool:
    """``name:`` or ``name?:`` at the start of a new line."""
    child = children[i]
    if i == 0 or not (isinstance(child, Token) and child.kind == IDENT):
        return False
    if "\n" not in tree.source[children[i - 1].end : child.start]:
        return False
    nxt = children[i + 1] if i + 1 < len(children) else None
    return isinstance(nxt, Token) and nxt.is_punct(":", "?")


def normalize_type(type_text: str) -> str:
    """Drop nullish unions and rewrite ``Array<T>`` as ``T[]``."""
    text = _NULLISH_RE.sub("", type_text).strip()
    m = _ARRAY_GENERIC_RE.match(text)
    if m:
        return f"{m.group(1)}[]"
    return text


def is_relationship_type(
    type_text: str, scalar_names: frozenset[str] = frozenset()
) -> bool:
    """Capitalized entity name, optionally array-suffixed."""
    base = normalize_type(type_text)
    if base.endswith("[]"):
        base = base[:-2]
    if not _RELATIONSHIP_TYPE_RE.match(base):
        return False
    if base in SCALAR_TYPE_NAMES or base in scalar_names:
        return False
    return not base.endswith(SCALAR_TYPE_SUFFIXES)


def _scalar_imports(source: str) -> frozenset[str]:
    """Capitalized names imported from enum modules."""
    names = set()
    for stmt in parse_imports(source):
        if "/enums/" in stmt.path or stmt.path.endswith(".enum"):
            names.update(stmt.names)
    return frozenset(names)


def parse_entity_text(
    source: str, fallback_name: str = ""
) -> ParsedEntityType:
    tree = parse(source)
    imports = tuple(stmt.text for stmt in parse_imports(source, tree))
    found = _type_block(tree)
    if found is None:
        return ParsedEntityType(name=fallback_name, imports=imports)

    name, block = found
    scalar_names = _scalar_imports(source)
    fields = []
    relationship_fields = []
    for member_name, optional, type_text in _type_members(tree, block):
        parsed = ParsedField(member_name, type_text, optional)
        if is_relationship_type(type_text, scalar_names):
            relationship_fields.append(parsed)
        else:
            fields.append(parsed)
    return ParsedEntityType(
        name=name,
        fields=tuple(fields),
        relationship_fields=tuple(relationship_fields),
        imports=imports,
    )


def parse_entity_file(
    path: Path | None, fallback_name: str, view: FileView | None = None
) -> ParsedEntityType:
    if not _exists(path, view):
        return ParsedEntityType(name=fallback_name)
    return parse_entity_text(_read(path, view), fallback_name)


# ---------------------------------------------------------------------------
# Mapper
# ---------------------------------------------------------------------------


def _returned_object(tree: SourceTree) -> Group | None:
    for group in tree.root.groups():
        children = group.children
        for i, node in enumerate(children[:-1]):
            nxt = children[i + 1]
            if not isinstance(node, Token) or not isinstance(nxt, Group):
                continue
            if node.is_ident("return") and nxt.is_brace:
                return nxt
            if node.is_punct("=>") and nxt.is_paren and nxt.children:
                inner = nxt.children[0]
                if isinstance(inner, Group) and inner.is_brace:
                    return inner
    return None


def _is_computed(value: list[Node]) -> bool:
    tokens: list[Token] = []
    for node in value:
        tokens.extend(node.tokens() if isinstance(node, Group) else [node])
    for i, tok in enumerate(tokens):
        if tok.is_punct("?", "??"):
            return True
        if tok.is_ident("record") and i > 0 and tokens[i - 1].is_punct("."):
            return True
        if tok.is_ident("low") and i > 0 and tokens[i - 1].is_punct(".", "?."):
            return True
    return False


def _is_data_path(value: list[Node]) -> bool:
    if len(value) != 5 or not all(isinstance(n, Token) for n in value):
        return False
    return (
        value[0].is_ident("params")
        and value[1].is_punct(".")
        and value[2].is_ident("data")
        and value[3].is_punct(".")
        and value[4].kind == IDENT
    )


def parse_map_text(source: str) -> tuple[ParsedMapperField, ...]:
    tree = parse(source)
    block = _returned_object(tree)
    if block is None:
        return ()
    fields = []
    for member in members(block, (",",)):
        if member.spread or member.key is None or member.is_method:
            continue
        if not member.value:
            continue
        text = tree.text(member.value)
        if _is_computed(member.value):
            fields.append(ParsedMapperField(member.key, text, is_computed=True))
        elif _is_data_path(member.value):
            fields.append(ParsedMapperField(member.key, text))
    return tuple(fields)


def parse_map_file(
    path: Path | None, view: FileView | None = None
) -> tuple[ParsedMapperField, ...]:
    if not _exists(path, view):
        return ()
    return parse_map_text(_read(path, view))


# ---------------------------------------------------------------------------
# Serialiser
# ---------------------------------------------------------------------------


def _class_body(tree: SourceTree) -> Group | None:
    children = tree.root.children
    for i, node in enumerate(children):
        if isinstance(node, Token) and node.is_ident("class"):
            for nxt in children[i + 1 :]:
                if isinstance(nxt, Group) and nxt.is_brace:
                    return nxt
    return None


def _constructor_services(body: Group) -> list[str]:
    children = body.children
    for i, node in enumerate(children[:-1]):
        params = children[i + 1]
        if not (isinstance(node, Token) and node.is_ident("constructor")):
            continue
        if not (isinstance(params, Group) and params.is_paren):
            continue
        services: list[str] = []
        for param in _split_params(params):
            type_name = _param_type(param)
            if type_name and type_name not in FRAMEWORK_SERIALISER_DEPS:
                if type_name not in services:
                    services.append(type_name)
        return services
    return []


def _split_params(params: Group) -> list[list[Node]]:
    parts: list[list[Node]] = [[]]
    for child in params.children:
        if isinstance(child, Token) and child.is_punct(","):
            parts.append([])
        else:
            parts[-1].append(child)
    return [p for p in parts if p]


def _param_type(param: list[Node]) -> str | None:
    for i, node in enumerate(param):
        if isinstance(node, Token) and node.is_punct(":"):
            for nxt in param[i + 1 :]:
                if isinstance(nxt, Token) and nxt.kind == IDENT:
                    return nxt.value
            return None
    return None


def _custom_methods(body: Group) -> list[str]:
    children = body.children
    methods: list[str] = []
    for i, node in enumerate(children[:-1]):
        if not (isinstance(node, Token) and node.kind == IDENT):
            continue
        if node.value in _METHOD_MODIFIERS:
            continue
        params = children[i + 1]
        if not (isinstance(params, Group) and params.is_paren):
            continue
        prev = children[i - 1] if i > 0 else None
        if isinstance(prev, Token) and prev.value in _NOT_A_METHOD_BEFORE:
            continue
        if not _has_body(children[i + 2 :]):
            continue
        if node.value in STANDARD_SERIALISER_METHODS or node.value in methods:
            continue
        methods.append(node.value)
    return methods


def _has_body(rest: list[Node]) -> bool:
    """A brace group follows before the member ends."""
    for node in rest:
        if isinstance(node, Group):
            if node.is_brace:
                return True
            continue
        if node.is_punct(";", "=", "=>"):
            return False
    return False


def _detect_transform(
    tree: SourceTree, name: str, value: list[Node]
) -> S3Transform | None:
    if not any(contains_token(value, call) for call in SIGNING_CALLS):
        return None
    text = tree.text(value)
    is_array = BATCH_COMBINATOR in text or contains_token(
        value, "getSignedUrls"
    )
    is_public = re.search(r"\bisPublic\s*:\s*true\b", text) is not None
    return S3Transform(name, is_array=is_array, is_public=is_public)


def _relationship(
    tree: SourceTree, member: Member
) -> ParsedSerialiserRelationship | None:
    if member.key is None or not member.value:
        return None
    block = member.value[0]
    if not (isinstance(block, Group) and block.is_brace):
        return None
    dto_key = None
    model_import = ""
    for entry in members(block, (",",)):
        if entry.key == "name" and len(entry.value) == 1:
            tok = entry.value[0]
            if isinstance(tok, Token) and tok.kind in (STRING, TEMPLATE):
                dto_key = tok.literal
        elif entry.key == "data":
            call = call_argument(entry.value, FACTORY_CALL)
            if call is None:
                call = call_argument(entry.value, "create")
            if call is not None and call.children:
                model_import = tree.text(call.children)
            else:
                model_import = tree.text(entry.value)
    if not model_import:
        return None
    return ParsedSerialiserRelationship(
        name=member.key, model_import=model_import, dto_key=dto_key
    )


def parse_serialiser_text(source: str) -> ParsedSerialiser:
    tree = parse(source)
    attributes: list[ParsedSerialiserAttribute] = []
    transforms: list[S3Transform] = []
    meta: list[ParsedSerialiserAttribute] = []
    relationships: list[ParsedSerialiserRelationship] = []

    block = tree.object_after("this", ".", "attributes", "=")
    if block is not None:
        for member in members(block, (",",)):
            if member.key is None:
                continue
            literal = _literal(member.value)
            if literal is not None:
                attributes.append(
                    ParsedSerialiserAttribute(member.key, literal)
                )
                continue
            transform = _detect_transform(tree, member.key, member.value)
            if transform is not None:
                transforms.append(transform)

    block = tree.object_after("this", ".", "meta", "=")
    if block is not None:
        for member in members(block, (",",)):
            if member.key is not None:
                literal = _literal(member.value)
                meta.append(
                    ParsedSerialiserAttribute(member.key, literal or "")
                )

    block = tree.object_after("this", ".", "relationships", "=")
    if block is not None:
        for member in members(block, (",",)):
            rel = _relationship(tree, member)
            if rel is not None:
                relationships.append(rel)

    body = _class_body(tree)
    services = _constructor_services(body) if body else []
    custom = _custom_methods(body) if body else []

    return ParsedSerialiser(
        attributes=tuple(attributes),
        meta=tuple(meta),
        relationships=tuple(relationships),
        imports=tuple(stmt.text for stmt in parse_imports(source, tree)),
        services=tuple(services),
        custom_methods=tuple(custom),
        s3_transforms=tuple(transforms),
    )


def _literal(value: list[Node]) -> str | None:
    if len(value) == 1 and isinstance(value[0], Token):
        return value[0].literal
    return None


def parse_serialiser_file(
    path: Path | None, view: FileView | None = None
) -> ParsedSerialiser:
    if not _exists(path, view):
        return ParsedSerialiser()
    return parse_serialiser_text(_read(path, view))


# ---------------------------------------------------------------------------
# Alias models
# ---------------------------------------------------------------------------


def parse_alias_models(
    source: str, base_model: str, base_meta: str
) -> tuple[AliasModelInfo, ...]:
    """Model exports spreading a model and a meta other than the base meta."""
    aliases = []
    for name, group in _const_objects(parse(source)):
        if name == base_model or not name.endswith("Model"):
            continue
        spreads = [m.spread for m in members(group) if m.spread]
        model_spreads = [s for s in spreads if s.endswith("Model")]
        meta_spreads = [
            s for s in spreads if s.endswith("Meta") and s != base_meta
        ]
        if model_spreads and meta_spreads:
            aliases.append(
                AliasModelInfo(
                    model_name=name,
                    meta_name=meta_spreads[0],
                    descriptor_name=name[: -len("Model")] + "Descriptor",
                )
            )
    return tuple(aliases)


def parse_model_file(
    path: Path | None,
    base_model: str,
    base_meta: str,
    view: FileView | None = None,
) -> tuple[AliasModelInfo, ...]:
    if not _exists(path, view):
        return ()
    return parse_alias_models(_read(path, view), base_model, base_meta)


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------


def parse_entity(
    files: EntityFileSet, view: FileView | None = None
) -> ParsedEntity:
    """Parse all legacy files of one entity.

    ``view`` supplies file contents; it defaults to the disk. The
    orchestrator passes its run overlay so edits planned for earlier
    entities are parsed as if already written.
    """
    if not _exists(files.meta, view):
        raise MissingMetaFileError(files.entity_name, files.meta)
    meta_source = _read(files.meta, view)
    meta = parse_meta_text(meta_source)
    if not meta.is_complete:
        logger.warning(
            "incomplete meta",
            entity=files.entity_name,
            path=str(files.meta),
        )

    entity_type = parse_entity_file(files.entity, meta.label_name, view)
    base_meta = f"{meta.node_name}Meta"
    aliases = parse_model_file(
        files.model, f"{meta.label_name}Model", base_meta, view
    )
    parsed = ParsedEntity(
        files=files,
        meta=meta,
        entity_type=entity_type,
        mapper=parse_map_file(files.map, view),
        serialiser=parse_serialiser_file(files.serialiser, view),
        alias_models=aliases,
        alias_metas=split_alias_metas(meta_source, meta),
    )
    logger.debug(
        "parsed entity",
        entity=files.entity_name,
        fields=len(entity_type.fields),
        relationships=len(parsed.serialiser.relationships),
        computed=sum(1 for f in parsed.mapper if f.is_computed),
        aliases=len(aliases),
    )
    return parsed
