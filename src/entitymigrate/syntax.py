"""Lightweight TypeScript syntax tree.

Tokenizes TypeScript source (aware of strings, template literals and
comments) and nests the tokens into a bracket tree. Callers walk object
literals, call arguments and class bodies as nodes instead of counting
braces in raw text, and slice the original source for anything that must
be emitted verbatim.
"""

from __future__ import annotations

import re
from collections.abc import Iterable, Iterator
from dataclasses import dataclass, field

# ---------------------------------------------------------------------------
# Tokens
# ---------------------------------------------------------------------------

IDENT = "ident"
STRING = "string"
TEMPLATE = "template"
NUMBER = "number"
PUNCT = "punct"

_OPENERS = {"{": "}", "(": ")", "[": "]"}
_CLOSERS = {v: k for k, v in _OPENERS.items()}

# longest first
_MULTI_PUNCT = ("...", "===", "!==", "=>", "?.", "??", "==", "!=", "&&", "||")

_IDENT_RE = re.compile(r"[A-Za-z_$][\w$]*")
_NUMBER_RE = re.compile(r"\d[\w.]*")


@dataclass(frozen=True)
class Token:
    kind: str
    value: str
    start: int
    end: int

    def is_punct(self, *values: str) -> bool:
        return self.kind == PUNCT and self.value in values

    def is_ident(self, *values: str) -> bool:
        if self.kind != IDENT:
            return False
        return not values or self.value in values

    @property
    def literal(self) -> str | None:
        """Unquoted value of a string or interpolation-free template."""
        if self.kind == STRING:
            return self.value[1:-1]
        if self.kind == TEMPLATE and "${" not in self.value:
            return self.value[1:-1]
        return None


def _scan_string(source: str, i: int) -> int:
    quote = source[i]
    i += 1
    n = len(source)
    while i < n:
        ch = source[i]
        if ch == "\\":
            i += 2
            continue
        if ch == quote:
            return i + 1
        if ch == "\n":
            # unterminated; JS strings cannot span lines
            return i
        i += 1
    return n


def _scan_template(source: str, i: int) -> int:
    i += 1
    n = len(source)
    while i < n:
        ch = source[i]
        if ch == "\\":
            i += 2
            continue
        if ch == "`":
            return i + 1
        if source.startswith("${", i):
            i = _scan_interpolation(source, i + 2)
            continue
        i += 1
    return n


def _scan_interpolation(source: str, i: int) -> int:
    depth = 1
    n = len(source)
    while i < n:
        ch = source[i]
        if ch in "'\"":
            i = _scan_string(source, i)
            continue
        if ch == "`":
            i = _scan_template(source, i)
            continue
        if ch == "{":
            depth += 1
        elif ch == "}":
            depth -= 1
            if depth == 0:
                return i + 1
        i += 1
    return n


def tokenize(source: str) -> list[Token]:
    """Split source into tokens, dropping whitespace and comments."""
    tokens: list[Token] = []
    i = 0
    n = len(source)
    while i < n:
        ch = source[i]
        if ch.isspace():
            i += 1
            continue
        if source.startswith("//", i):
            nl = source.find("\n", i)
            i = n if nl == -1 else nl + 1
            continue
        if source.startswith("/*", i):
            close = source.find("*/", i + 2)
            i = n if close == -1 else close + 2
            continue
        if ch in "'\"":
            end = _scan_string(source, i)
            tokens.append(Token(STRING, source[i:end], i, end))
            i = end
            continue
        if ch == "`":
            end = _scan_template(source, i)
            tokens.append(Token(TEMPLATE, source[i:end], i, end))
            i = end
            continue
        m = _IDENT_RE.match(source, i)
        if m:
            tokens.append(Token(IDENT, m.group(), i, m.end()))
            i = m.end()
            continue
        m = _NUMBER_RE.match(source, i)
        if m:
            tokens.append(Token(NUMBER, m.group(), i, m.end()))
            i = m.end()
            continue
        for op in _MULTI_PUNCT:
            if source.startswith(op, i):
                tokens.append(Token(PUNCT, op, i, i + len(op)))
                i += len(op)
                break
        else:
            tokens.append(Token(PUNCT, ch, i, i + 1))
            i += 1
    return tokens


# ---------------------------------------------------------------------------
# Bracket tree
# ---------------------------------------------------------------------------


@dataclass
class Group:
    """A bracketed region; ``open`` is empty for the file root."""

    open: str
    start: int
    end: int
    children: list[Token | Group] = field(default_factory=list)

    @property
    def is_brace(self) -> bool:
        return self.open == "{"

    @property
    def is_paren(self) -> bool:
        return self.open == "("

    def tokens(self) -> Iterator[Token]:
        """All tokens below this group, in source order."""
        for child in self.children:
            if isinstance(child, Group):
                yield from child.tokens()
            else:
                yield child

    def groups(self) -> Iterator[Group]:
        """This group and every nested group, depth first."""
        yield self
        for child in self.children:
            if isinstance(child, Group):
                yield from child.groups()


Node = Token | Group


def build_tree(tokens: list[Token], length: int) -> Group:
    root = Group("", 0, length)
    stack = [root]
    for tok in tokens:
        if tok.kind == PUNCT and tok.value in _OPENERS:
            group = Group(tok.value, tok.start, length)
            stack[-1].children.append(group)
            stack.append(group)
        elif tok.kind == PUNCT and tok.value in _CLOSERS:
            if len(stack) > 1 and stack[-1].open == _CLOSERS[tok.value]:
                stack.pop().end = tok.end
            else:
                # stray closer, keep it as a plain token
                stack[-1].children.append(tok)
        else:
            stack[-1].children.append(tok)
    return root


@dataclass
class SourceTree:
    source: str
    root: Group

    def text(self, nodes: Node | list[Node]) -> str:
        """Original source text spanned by one node or a run of nodes."""
        if not isinstance(nodes, list):
            nodes = [nodes]
        if not nodes:
            return ""
        return self.source[nodes[0].start : nodes[-1].end].strip()

    def line_of(self, pos: int) -> int:
        return self.source.count("\n", 0, pos) + 1

    def find_sequence(self, *values: str) -> Iterator[tuple[Group, int]]:
        """Yield (group, index) just past each child run matching values.

        Values are compared against token text; "{", "(" and "[" match a
        nested group with that opener.
        """
        width = len(values)
        for group in self.root.groups():
            children = group.children
            for i in range(len(children) - width + 1):
                window = children[i : i + width]
                if all(_matches(n, v) for n, v in zip(window, values)):
                    yield group, i + width

    def object_after(self, *values: str) -> Group | None:
        """First brace group directly following the given token run."""
        for group, idx in self.find_sequence(*values):
            nxt = group.children[idx] if idx < len(group.children) else None
            if isinstance(nxt, Group) and nxt.is_brace:
                return nxt
        return None


def _matches(node: Node, value: str) -> bool:
    if isinstance(node, Group):
        return node.open == value
    return node.value == value


def parse(source: str) -> SourceTree:
    return SourceTree(source, build_tree(tokenize(source), len(source)))


# ---------------------------------------------------------------------------
# Object literal / type literal members
# ---------------------------------------------------------------------------


@dataclass
class Member:
    """One entry of an object literal or type literal."""

    key: str | None
    value: list[Node]
    optional: bool = False
    spread: str | None = None  # name after "..." for spread entries
    is_method: bool = False


def split_top_level(
    group: Group, separators: tuple[str, ...] = (",",)
) -> list[list[Node]]:
    parts: list[list[Node]] = [[]]
    for child in group.children:
        if isinstance(child, Token) and child.is_punct(*separators):
            parts.append([])
        else:
            parts[-1].append(child)
    return [p for p in parts if p]


def members(
    group: Group, separators: tuple[str, ...] = (",", ";")
) -> list[Member]:
    """Entries of ``{ ... }``, in source order."""
    result: list[Member] = []
    for part in split_top_level(group, separators):
        first = part[0]
        if isinstance(first, Token) and first.is_punct("..."):
            name = None
            if len(part) > 1 and isinstance(part[1], Token):
                name = part[1].value
            result.append(Member(None, part[1:], spread=name))
            continue
        if isinstance(first, Group):
            continue
        if first.kind not in (IDENT, STRING, NUMBER):
            continue
        key = first.literal if first.kind == STRING else first.value
        rest = part[1:]
        optional = False
        if rest and isinstance(rest[0], Token) and rest[0].is_punct("?"):
            optional = True
            rest = rest[1:]
        if rest and isinstance(rest[0], Token) and rest[0].is_punct(":"):
            result.append(Member(key, rest[1:], optional=optional))
        elif rest and isinstance(rest[0], Group) and rest[0].is_paren:
            result.append(Member(key, rest, is_method=True))
        elif not rest:
            # shorthand property
            result.append(Member(key, [first]))
    return result


def call_argument(nodes: list[Node], callee: str) -> Group | None:
    """Paren group of the first ``callee(...)`` call found in nodes.

    ``callee`` may be dotted (``serialiserFactory.create``); the match is on
    the trailing token run.
    """
    parts = callee.split(".")
    pattern: list[str] = []
    for i, part in enumerate(parts):
        if i:
            pattern.append(".")
        pattern.append(part)
    flat = list(_walk(nodes))
    for idx in range(len(flat)):
        window = flat[idx : idx + len(pattern)]
        if len(window) < len(pattern):
            break
        if all(
            isinstance(node, Token) and node.value == want
            for node, want in zip(window, pattern)
        ):
            after = idx + len(pattern)
            nxt = flat[after] if after < len(flat) else None
            if isinstance(nxt, Group) and nxt.is_paren:
                return nxt
    return None


def _walk(nodes: list[Node]) -> Iterator[Node]:
    """Flatten nodes, yielding each group before its own contents."""
    for node in nodes:
        yield node
        if isinstance(node, Group):
            yield from _walk(node.children)


def contains_token(nodes: list[Node], value: str) -> bool:
    return any(isinstance(n, Token) and n.value == value for n in _walk(nodes))


# ---------------------------------------------------------------------------
# Import statements
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ImportStatement:
    text: str
    path: str
    names: tuple[str, ...] = ()  # local bindings
    type_only: bool = False
    start: int = 0
    end: int = 0
    # exported names, parallel to names; empty when none are renamed
    imported: tuple[str, ...] = ()

    def bindings(self) -> list[tuple[str, str]]:
        """(imported, local) name pairs."""
        return list(zip(self.imported or self.names, self.names))

    @property
    def imported_names(self) -> tuple[str, ...]:
        return self.imported or self.names

    def specifiers(self, keep: Iterable[str] | None = None) -> list[str]:
        """Braced-list entries for the kept local names, renames included."""
        wanted = set(self.names if keep is None else keep)
        return [
            local if imported == local else f"{imported} as {local}"
            for imported, local in self.bindings()
            if local in wanted
        ]


def parse_imports(
    source: str, tree: SourceTree | None = None
) -> list[ImportStatement]:
    """Top-level ``import ... from "x"`` statements with their bound names."""
    tree = tree or parse(source)
    children = tree.root.children
    statements: list[ImportStatement] = []
    i = 0
    while i < len(children):
        node = children[i]
        if not (isinstance(node, Token) and node.is_ident("import")):
            i += 1
            continue
        j = i + 1
        names: list[tuple[str, str]] = []
        type_only = False
        path = None
        end_tok: Token | None = None
        while j < len(children):
            cur = children[j]
            if isinstance(cur, Group):
                if not cur.is_brace:
                    break
                names.extend(_import_names(cur))
            elif cur.kind == STRING:
                path = cur.literal
                end_tok = cur
                break
            elif cur.is_ident("type") and j == i + 1:
                type_only = True
            elif cur.is_ident("from", "as"):
                pass
            elif cur.kind == IDENT:
                names.append((cur.value, cur.value))
            elif cur.is_punct(";"):
                break
            j += 1
        if path is None or end_tok is None:
            i = j + 1
            continue
        end = end_tok.end
        if j + 1 < len(children):
            nxt = children[j + 1]
            if isinstance(nxt, Token) and nxt.is_punct(";"):
                end = nxt.end
                j += 1
        statements.append(
            ImportStatement(
                text=source[node.start : end],
                path=path,
                names=tuple(local for _imported, local in names),
                type_only=type_only,
                start=node.start,
                end=end,
                imported=(
                    tuple(imported for imported, _local in names)
                    if any(a != b for a, b in names)
                    else ()
                ),
            )
        )
        i = j + 1
    return statements


def _import_names(group: Group) -> list[tuple[str, str]]:
    """(imported, local) pairs of a braced import list."""
    names = []
    for part in split_top_level(group):
        idents = [
            t.value
            for t in part
            if isinstance(t, Token) and t.is_ident() and t.value != "type"
        ]
        if not idents:
            continue
        if "as" in idents:
            at = idents.index("as")
            imported = idents[at - 1] if at else idents[-1]
            names.append((imported, idents[-1]))
        else:
            names.append((idents[-1], idents[-1]))
    return names


def parse_import_line(line: str) -> ImportStatement | None:
    found = parse_imports(line)
    return found[0] if found else None
