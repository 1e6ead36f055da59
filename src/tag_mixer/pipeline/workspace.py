"""Per-run workspace layout: directory naming, pipeline assets and onboarding files."""

from __future__ import annotations

import datetime as dt
import logging
import re
from pathlib import Path

from tag_mixer.file_io import atomic_write_text, copy_if_exists, write_text_if_absent

logger = logging.getLogger(__name__)

SPECS_DIRNAME = "specs"
ONBOARDING_FILENAME = "CLAUDE.md"
GITIGNORE_FILENAME = ".gitignore"

PIPELINE_SKILLS = (
    "creative-director",
    "game-design-lead",
    "game-implementer",
    "frontend-design",
)
PIPELINE_AGENTS = ("game-designer",)
SKILL_FILES = ("SKILL.md", "LICENSE.txt")

GITIGNORE_LINES = (
    "node_modules/",
    "dist/",
    ".env",
    ".env.*",
    "!.env.example",
    ".DS_Store",
    "Thumbs.db",
)

_SLUG_RE = re.compile(r"[^a-z0-9]+")


def today_iso() -> str:
    """Return the current UTC date as ``YYYY-MM-DD``."""
    return dt.datetime.now(dt.timezone.utc).date().isoformat()


def slugify_tag(tag: str) -> str:
    """Lowercase *tag* and replace each run of non-alphanumerics with ``-``."""
    return _SLUG_RE.sub("-", tag.lower())


def workspace_dirname(tags: list[str], run_date: str) -> str:
    """Return ``<run_date>_<slug1>_<slug2>...`` for the given tags."""
    return f"{run_date}_" + "_".join(slugify_tag(t) for t in tags)


def create_workspace(outputs_dir: str | Path, tags: list[str], run_date: str) -> Path:
    """Create (or reuse) the run workspace and its ``specs/`` sub-directory."""
    workspace = Path(outputs_dir).resolve() / workspace_dirname(tags, run_date)
    (workspace / SPECS_DIRNAME).mkdir(parents=True, exist_ok=True)
    logger.info("Workspace: %s", workspace)
    return workspace


def copy_pipeline_assets(assets_dir: str | Path, workspace: Path) -> list[Path]:
    """Copy skill and agent definitions into ``<workspace>/.claude``.

    The generated repository then records the process that produced it.
    Missing sources are skipped. Returns the destination paths written.
    """
    source_root = Path(assets_dir)
    dest_root = workspace / ".claude"
    copied: list[Path] = []

    for skill in PIPELINE_SKILLS:
        src_dir = source_root / "skills" / skill
        if not src_dir.is_dir():
            logger.debug("Skill not found, skipping: %s", src_dir)
            continue
        for filename in SKILL_FILES:
            dst = dest_root / "skills" / skill / filename
            if copy_if_exists(src_dir / filename, dst):
                copied.append(dst)

    for agent in PIPELINE_AGENTS:
        dst = dest_root / "agents" / f"{agent}.md"
        if copy_if_exists(source_root / "agents" / f"{agent}.md", dst):
            copied.append(dst)

    logger.info("Copied %s pipeline asset(s) into %s", len(copied), dest_root)
    return copied


def render_onboarding_doc(tags: list[str], run_date: str) -> str:
    """Render the ``CLAUDE.md`` guide the agent reads when started in the workspace."""
    lines = [
        "# Steam Tag Mixer Game Project",
        "",
        "This web game prototype was generated automatically by the **Steam Tag Mixer** pipeline.",
        "",
        "## Project info",
        "",
        "- **Stack**: Vite + TypeScript",
        f"- **Selected tags**: {', '.join(tags)}",
        f"- **Created**: {run_date}",
        "",
        "## Project structure",
        "",
        "```",
        ".",
        "├── src/              # game source code",
        "│   ├── main.ts       # entry point",
        "│   ├── types.ts      # type definitions",
        "│   └── constants.ts  # numeric constants",
        "├── specs/            # game specification documents",
        "│   ├── spec-*.md     # detailed specs",
        "│   ├── guide-*.md    # design guides",
        "│   └── review-*.md   # review results",
        "├── proposal.md       # game proposal",
        "├── index.html        # HTML entry point",
        "├── package.json      # dependencies",
        "└── tsconfig.json     # TypeScript config",
        "```",
        "",
        "## Skills",
        "",
        "This project ships the following skill and agent definitions:",
        "",
        "| Skill | Location | Purpose |",
        "|------|------|------|",
        "| game-implementer | .claude/skills/game-implementer/ | spec-driven game implementation (phases A-I) |",
        "| frontend-design | .claude/skills/frontend-design/ | UI aesthetics principles |",
        "| creative-director | .claude/skills/creative-director/ | game concept (reference) |",
        "| game-design-lead | .claude/skills/game-design-lead/ | spec design process (reference) |",
        "| game-designer | .claude/agents/game-designer.md | detailed spec sub-agent (reference) |",
        "",
        "## Working guidelines",
        "",
        "1. The documents in `specs/` are the source of truth for this game's design",
        "2. `proposal.md` defines the core concept and experience",
        "3. After code changes, verify with `npx tsc --noEmit` + `npm run build`",
        "4. Do not modify the spec documents (`specs/`) or `proposal.md`",
        "5. Run the game with `npm run dev`",
        "",
    ]
    return "\n".join(lines)


def write_onboarding_doc(workspace: Path, tags: list[str], run_date: str) -> Path:
    path = workspace / ONBOARDING_FILENAME
    atomic_write_text(path, render_onboarding_doc(tags, run_date))
    logger.info("Wrote %s", path)
    return path


def write_gitignore(workspace: Path) -> bool:
    """Write the default ``.gitignore`` unless one already exists."""
    return write_text_if_absent(workspace / GITIGNORE_FILENAME, "\n".join(GITIGNORE_LINES) + "\n")


def missing_artifacts(workspace: Path, patterns: list[str]) -> list[str]:
    """Return the glob patterns under *workspace* that match no file."""
    return [pattern for pattern in patterns if not any(workspace.glob(pattern))]
