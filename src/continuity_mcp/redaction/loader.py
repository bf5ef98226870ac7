"""Reads operator-supplied secret patterns from YAML files."""

from __future__ import annotations

from pathlib import Path
from typing import Iterable, Iterator

import yaml
from pydantic import ValidationError

from .models import SecretPattern, SecretPatternFile


class PatternLoadError(RuntimeError):
    """A pattern file was unreadable YAML or failed validation."""


def _pattern_files(location: Path) -> Iterator[Path]:
    if location.is_file():
        yield location
        return
    for suffix in ("*.yml", "*.yaml"):
        yield from sorted(location.glob(suffix))


class SecretPatternLoader:
    """Merges pattern files into the extra patterns handed to the sanitizer.

    Locations may be single files or directories of ``*.yml``/``*.yaml``
    files; missing locations are skipped. Every bad file is reported at once
    so an operator can fix them in one pass.
    """

    def __init__(self, search_paths: Iterable[Path] | None = None) -> None:
        self._locations = [Path(path) for path in (search_paths or []) if Path(path).exists()]

    @property
    def search_paths(self) -> list[Path]:
        return list(self._locations)

    def load_all(self) -> list[SecretPattern]:
        merged: dict[str, SecretPattern] = {}
        problems: list[str] = []

        for location in self._locations:
            for pattern_file in _pattern_files(location):
                try:
                    document = yaml.safe_load(pattern_file.read_text(encoding="utf-8"))
                except yaml.YAMLError as exc:
                    problems.append(f"{pattern_file}: not valid YAML ({exc})")
                    continue
                if not document:
                    continue
                try:
                    declared = SecretPatternFile.model_validate(document).patterns
                except ValidationError as exc:
                    problems.append(f"{pattern_file}: {exc}")
                    continue
                # a pattern name redefined in a later file overrides the earlier one
                merged.update((pattern.name, pattern) for pattern in declared)

        if problems:
            raise PatternLoadError("Invalid secret pattern files: " + "; ".join(problems))
        return [pattern for pattern in merged.values() if pattern.enabled]


__all__ = ["PatternLoadError", "SecretPatternLoader"]
