"""Seed file loading utilities."""

from __future__ import annotations

from pathlib import Path
from typing import Any, Iterable

import yaml
from pydantic import ValidationError

from .models import TaskDraft


class SeedLoadError(RuntimeError):
    """Raised when one or more seed files cannot be parsed."""


def _entries(document: Any, path: Path) -> list[Any]:
    if isinstance(document, dict):
        document = document.get("tasks")
    if document is None:
        return []
    if not isinstance(document, list):
        raise SeedLoadError(f"Seed file {path} must contain a list of tasks or a 'tasks' list")
    return document


def load_seed_file(path: Path) -> list[TaskDraft]:
    """Load and validate every task draft in a single YAML file."""

    try:
        document = yaml.safe_load(Path(path).read_text(encoding="utf-8"))
    except yaml.YAMLError as exc:
        raise SeedLoadError(f"Failed to parse YAML in {path}: {exc}") from exc

    drafts: list[TaskDraft] = []
    errors: list[str] = []
    for index, entry in enumerate(_entries(document, path)):
        try:
            drafts.append(TaskDraft.model_validate(entry))
        except ValidationError as exc:
            errors.append(f"Task #{index + 1} in {path}: {exc}")
    if errors:
        raise SeedLoadError("; ".join(errors))
    return drafts


class SeedLoader:
    """Loads task drafts from YAML seed files on disk."""

    def __init__(self, search_paths: Iterable[Path] | None = None) -> None:
        paths = [Path(path) for path in (search_paths or [])]
        self._search_paths: list[Path] = [path for path in paths if path.exists()]

    @property
    def search_paths(self) -> list[Path]:
        return list(self._search_paths)

    def _files(self) -> list[Path]:
        files: list[Path] = []
        for base in self._search_paths:
            if base.is_file():
                files.append(base)
                continue
            files.extend(sorted(base.glob("*.yml")) + sorted(base.glob("*.yaml")))
        return files

    def load_all(self) -> list[TaskDraft]:
        """Load drafts from all search paths in order.

        Errors from every file are collected and raised together so a single
        run reports everything that needs fixing.
        """

        drafts: list[TaskDraft] = []
        errors: list[str] = []
        for path in self._files():
            try:
                drafts.extend(load_seed_file(path))
            except SeedLoadError as exc:
                errors.append(str(exc))
        if errors:
            raise SeedLoadError("; ".join(errors))
        return drafts


__all__ = ["SeedLoadError", "SeedLoader", "load_seed_file"]
