"""Ordered, de-duplicated import block for generated files."""

from __future__ import annotations

from collections.abc import Iterable
from enum import IntEnum

from entitymigrate.syntax import parse_import_line


class ImportGroup(IntEnum):
    """Emission order of the generated import block."""

    BARREL = 1  # framework runtime through the internal barrel
    EXTERNAL = 2  # verbatim imports kept from the old type file
    TYPE_ONLY = 3  # relationship field types, erased at runtime
    TARGETS = 4  # meta constants / descriptors of relationship targets
    OWN_META = 5  # the entity's own meta constants


def render_import(
    names: Iterable[str], path: str, type_only: bool = False
) -> str:
    keyword = "import type" if type_only else "import"
    return f'{keyword} {{ {", ".join(names)} }} from "{path}";'


class ImportBlock:
    """Collects import statements; every bound name is imported once.

    The first statement binding a name keeps it, later statements drop it
    (or are skipped entirely when nothing is left).
    """

    def __init__(self) -> None:
        self._entries: list[tuple[int, int, str]] = []
        self._seen: set[str] = set()

    def __contains__(self, name: str) -> bool:
        return name in self._seen

    @property
    def names(self) -> frozenset[str]:
        return frozenset(self._seen)

    def add(
        self,
        group: ImportGroup,
        names: Iterable[str],
        path: str,
        type_only: bool = False,
    ) -> str | None:
        fresh = self._claim(names)
        if not fresh:
            return None
        statement = render_import(fresh, path, type_only)
        self._push(group, statement)
        return statement

    def add_verbatim(self, group: ImportGroup, statement: str) -> str | None:
        """Keep an existing statement as written unless a name clashes."""
        parsed = parse_import_line(statement)
        if parsed is None:
            return None
        if not parsed.names:
            # side-effect import
            if statement not in (s for _, _, s in self._entries):
                self._push(group, statement)
                return statement
            return None
        fresh = self._claim(parsed.names)
        if not fresh:
            return None
        if len(fresh) != len(parsed.names):
            statement = render_import(
                parsed.specifiers(fresh), parsed.path, parsed.type_only
            )
        self._push(group, statement)
        return statement

    def statements(self) -> list[str]:
        return [s for _, _, s in sorted(self._entries)]

    def render(self) -> str:
        return "\n".join(self.statements())

    def _claim(self, names: Iterable[str]) -> list[str]:
        fresh = []
        for name in names:
            # "A as B" binds B
            local = name.rsplit(" as ", 1)[-1].strip()
            if local and local not in self._seen:
                self._seen.add(local)
                fresh.append(name)
        return fresh

    def _push(self, group: ImportGroup, statement: str) -> None:
        self._entries.append((int(group), len(self._entries), statement))
