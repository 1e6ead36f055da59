"""Tests for run workspace layout helpers."""

from __future__ import annotations

from pathlib import Path

import pytest

from tag_mixer.pipeline.workspace import (
    GITIGNORE_LINES,
    copy_pipeline_assets,
    create_workspace,
    missing_artifacts,
    render_onboarding_doc,
    slugify_tag,
    workspace_dirname,
    write_gitignore,
    write_onboarding_doc,
)

pytestmark = pytest.mark.unit


@pytest.mark.parametrize(
    ("tag", "slug"),
    [
        ("Roguelike", "roguelike"),
        ("Pixel Graphics", "pixel-graphics"),
        ("Rogue-lite", "rogue-lite"),
        ("Choose Your Own Adventure!", "choose-your-own-adventure-"),
        ("2D", "2d"),
        ("Shoot 'Em Up", "shoot-em-up"),
    ],
)
def test_slugify_tag(tag: str, slug: str) -> None:
    assert slugify_tag(tag) == slug


def test_workspace_dirname_joins_slugs_with_underscores() -> None:
    assert workspace_dirname(["Roguelike", "Cooking"], "2026-10-19") == "2026-10-19_roguelike_cooking"


def test_create_workspace_makes_specs_dir_and_is_reusable(tmp_path: Path) -> None:
    first = create_workspace(tmp_path / "outputs", ["Roguelike", "Cooking"], "2026-10-19")
    assert first.name == "2026-10-19_roguelike_cooking"
    assert (first / "specs").is_dir()

    (first / "proposal.md").write_text("# Keep me\n", encoding="utf-8")
    second = create_workspace(tmp_path / "outputs", ["Roguelike", "Cooking"], "2026-10-19")
    assert second == first
    assert (second / "proposal.md").read_text(encoding="utf-8") == "# Keep me\n"


def test_copy_pipeline_assets_copies_known_files_and_skips_missing(tmp_path: Path) -> None:
    assets = tmp_path / "assets"
    (assets / "skills" / "creative-director").mkdir(parents=True)
    (assets / "skills" / "creative-director" / "SKILL.md").write_text("cd", encoding="utf-8")
    (assets / "skills" / "creative-director" / "LICENSE.txt").write_text("mit", encoding="utf-8")
    (assets / "skills" / "creative-director" / "notes.md").write_text("skip", encoding="utf-8")
    (assets / "skills" / "unrelated").mkdir(parents=True)
    (assets / "skills" / "unrelated" / "SKILL.md").write_text("no", encoding="utf-8")
    (assets / "agents").mkdir()
    (assets / "agents" / "game-designer.md").write_text("designer", encoding="utf-8")

    workspace = tmp_path / "ws"
    workspace.mkdir()
    copied = copy_pipeline_assets(assets, workspace)

    rel = sorted(p.relative_to(workspace).as_posix() for p in copied)
    assert rel == [
        ".claude/agents/game-designer.md",
        ".claude/skills/creative-director/LICENSE.txt",
        ".claude/skills/creative-director/SKILL.md",
    ]
    assert not (workspace / ".claude" / "skills" / "creative-director" / "notes.md").exists()
    assert not (workspace / ".claude" / "skills" / "unrelated").exists()


def test_copy_pipeline_assets_tolerates_missing_assets_dir(tmp_path: Path) -> None:
    workspace = tmp_path / "ws"
    workspace.mkdir()
    assert copy_pipeline_assets(tmp_path / "nowhere", workspace) == []


def test_onboarding_doc_lists_tags_and_date(tmp_path: Path) -> None:
    path = write_onboarding_doc(tmp_path, ["Roguelike", "Cooking"], "2026-10-19")
    text = path.read_text(encoding="utf-8")
    assert path.name == "CLAUDE.md"
    assert "Roguelike, Cooking" in text
    assert "2026-10-19" in text
    assert "npx tsc --noEmit" in text
    assert text == render_onboarding_doc(["Roguelike", "Cooking"], "2026-10-19")


def test_write_gitignore_is_written_once(tmp_path: Path) -> None:
    assert write_gitignore(tmp_path) is True
    lines = (tmp_path / ".gitignore").read_text(encoding="utf-8").splitlines()
    assert lines == list(GITIGNORE_LINES)

    (tmp_path / ".gitignore").write_text("custom\n", encoding="utf-8")
    assert write_gitignore(tmp_path) is False
    assert (tmp_path / ".gitignore").read_text(encoding="utf-8") == "custom\n"


def test_missing_artifacts_reports_unmatched_patterns(tmp_path: Path) -> None:
    (tmp_path / "specs").mkdir()
    (tmp_path / "specs" / "guide-combat.md").write_text("g", encoding="utf-8")

    assert missing_artifacts(tmp_path, ["specs/guide-*.md", "specs/design-plan.md"]) == [
        "specs/design-plan.md"
    ]
