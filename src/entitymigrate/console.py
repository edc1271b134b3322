"""User-facing terminal output."""

from __future__ import annotations

from typing import Any

from rich.console import Console
from rich.table import Table

_out = Console(highlight=False)
_err = Console(stderr=True, highlight=False)


def header(title: str) -> None:
    _out.print(f"\n[bold]{title}[/bold]")
    _out.rule(style="dim")


def key_value(key: str, value: Any, indent: int = 2) -> None:
    _out.print(f"{' ' * indent}[cyan]{key}[/cyan]: {value}")


def info(message: str) -> None:
    _out.print(message)


def dim(message: str) -> None:
    _out.print(f"[dim]{message}[/dim]")


def success(message: str) -> None:
    _out.print(f"[green]✓[/green] {message}")


def warning(message: str) -> None:
    _err.print(f"[yellow]warning:[/yellow] {message}")


def error(message: str) -> None:
    _err.print(f"[bold red]error:[/bold red] {message}")


def table(
    title: str | None,
    columns: list[str],
    rows: list[list[Any]],
) -> None:
    """Render rows as a rich table on stdout."""
    tbl = Table(title=title, show_header=True, header_style="bold")
    for column in columns:
        tbl.add_column(column)
    for row in rows:
        tbl.add_row(*(str(cell) for cell in row))
    _out.print(tbl)


def raw(text: str) -> None:
    """Print text without markup interpretation."""
    _out.print(text, markup=False, emoji=False, soft_wrap=True)
