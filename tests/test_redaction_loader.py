from pathlib import Path
import textwrap

import pytest

from continuity_mcp.redaction import PatternLoadError, Sanitizer, SecretPatternLoader


def write_patterns(path: Path, *, replacement: str, enabled: bool = True) -> None:
    path.write_text(
        textwrap.dedent(
            """
            patterns:
              - name: internal_ticket
                regex: "INT-[0-9]{{4}}"
                replacement: "{replacement}"
                enabled: {enabled}
            """
        ).strip().format(replacement=replacement, enabled="true" if enabled else "false"),
        encoding="utf-8",
    )


def test_loader_merges_paths(tmp_path: Path) -> None:
    base = tmp_path / "base"
    base.mkdir()
    override = tmp_path / "override"
    override.mkdir()

    write_patterns(base / "patterns.yaml", replacement="[BASE]")
    write_patterns(override / "patterns.yml", replacement="[OVERRIDE]")

    patterns = SecretPatternLoader([base, override]).load_all()

    assert [pattern.name for pattern in patterns] == ["internal_ticket"]
    assert Sanitizer(patterns).sanitize_text("see INT-1234") == "see [OVERRIDE]"


def test_loader_skips_disabled_and_missing_paths(tmp_path: Path) -> None:
    file_path = tmp_path / "patterns.yaml"
    write_patterns(file_path, replacement="[X]", enabled=False)

    loader = SecretPatternLoader([file_path, tmp_path / "missing"])

    assert loader.search_paths == [file_path]
    assert loader.load_all() == []


def test_loader_reports_invalid_regex(tmp_path: Path) -> None:
    (tmp_path / "broken.yaml").write_text(
        "patterns:\n  - name: broken\n    regex: '([a-z'\n",
        encoding="utf-8",
    )

    with pytest.raises(PatternLoadError) as excinfo:
        SecretPatternLoader([tmp_path]).load_all()

    assert "broken.yaml" in str(excinfo.value)


def test_loader_reports_every_bad_file_at_once(tmp_path: Path) -> None:
    (tmp_path / "a_syntax.yml").write_text("patterns: [unterminated\n", encoding="utf-8")
    (tmp_path / "b_shape.yaml").write_text("patterns:\n  - regex: 'INT-[0-9]+'\n", encoding="utf-8")
    (tmp_path / "empty.yaml").write_text("", encoding="utf-8")

    with pytest.raises(PatternLoadError) as excinfo:
        SecretPatternLoader([tmp_path]).load_all()

    message = str(excinfo.value)
    assert "a_syntax.yml: not valid YAML" in message
    assert "b_shape.yaml" in message
    assert "empty.yaml" not in message
