"""Rewrite an entity's module registration file for the descriptor."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from pathlib import Path

import structlog

from entitymigrate.config import MODULE_SUFFIX, REGISTRY_CALL

logger = structlog.get_logger(__name__)


@dataclass
class ModuleUpdate:
    path: Path
    content: str
    changes: list[str] = field(default_factory=list)


def find_module_file(module_path: Path) -> Path | None:
    """First ``*.module.ts`` directly inside the module directory."""
    if not module_path.is_dir():
        return None
    found = sorted(module_path.glob(f"*{MODULE_SUFFIX}"))
    return found[0] if found else None


def format_module_content(content: str) -> str:
    content = re.sub(r"\n{3,}", "\n\n", content)
    return content.rstrip() + "\n"


def rewrite_module(content: str, label_name: str) -> tuple[str, list[str]]:
    """Apply the descriptor rewrites to module source.

    Returns the new text and a list of human-readable change notes; an
    empty list means nothing matched.
    """
    descriptor = f"{label_name}Descriptor"
    model = f"{label_name}Model"
    serialiser = f"{label_name}Serialiser"
    changes: list[str] = []

    model_import = re.compile(
        r"import\s*\{\s*" + model
        + r"\s*\}\s*from\s*([\"'])([^\"']+)\.model\1;?"
    )
    if model_import.search(content):
        content = model_import.sub(
            lambda m: f"import {{ {descriptor} }} from {m.group(1)}"
            f"{m.group(2)}{m.group(1)};",
            content,
        )
        changes.append(f"import {model} -> {descriptor}")

    serialiser_import = re.compile(
        r"import\s*\{\s*" + serialiser
        + r"\s*\}\s*from\s*[\"'][^\"']+[\"'];?\n?"
    )
    if serialiser_import.search(content):
        content = serialiser_import.sub("", content)
        changes.append(f"removed import {serialiser}")

    provider = re.compile(r"\b" + serialiser + r"\b(?!\.)")
    if provider.search(content):
        content = provider.sub(f"{descriptor}.model.serialiser", content)
        changes.append(
            f"provider {serialiser} -> {descriptor}.model.serialiser"
        )

    registry = re.compile(
        re.escape(REGISTRY_CALL) + r"\(\s*" + model + r"\s*\)"
    )
    if registry.search(content):
        content = registry.sub(f"{REGISTRY_CALL}({descriptor}.model)", content)
        changes.append(f"registry {model} -> {descriptor}.model")

    standalone = re.compile(r"\b" + model + r"\b(?!\.)")
    if standalone.search(content):
        content = standalone.sub(f"{descriptor}.model", content)
        changes.append(f"standalone {model} -> {descriptor}.model")

    return content, changes


def update_module(
    path: Path, label_name: str, content: str | None = None
) -> ModuleUpdate | None:
    """Planned module rewrite, or None when the file needs no change.

    ``content`` lets the caller supply pending text for the file instead of
    what is on disk.
    """
    if content is None:
        content = path.read_text(encoding="utf-8")
    updated, changes = rewrite_module(content, label_name)
    if not changes:
        return None
    for note in changes:
        logger.debug("module rewrite", file=str(path), change=note)
    return ModuleUpdate(path, format_module_content(updated), changes)
