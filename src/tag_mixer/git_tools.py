"""Git and GitHub CLI helpers for publishing a run workspace."""

from __future__ import annotations

import logging
import os
import subprocess
from pathlib import Path

logger = logging.getLogger(__name__)

_NETWORK_TIMEOUT_SECONDS = 120


def _subprocess_isolation_kwargs() -> dict[str, object]:
    """Return kwargs that prevent child console events from reaching the parent on Windows."""
    if os.name != "nt":
        return {}
    new_pg = int(getattr(subprocess, "CREATE_NEW_PROCESS_GROUP", 0))
    no_win = int(getattr(subprocess, "CREATE_NO_WINDOW", 0))
    flags = new_pg | no_win
    return {"creationflags": flags} if flags else {}


class GitError(RuntimeError):
    """Raised when a git or gh command fails."""


def _run(
    program: str,
    *args: str,
    cwd: Path,
    check: bool = True,
    timeout: int = 30,
) -> subprocess.CompletedProcess[str]:
    cmd = [program, *args]
    logger.debug("%s %s (cwd=%s)", program, " ".join(args), cwd)
    try:
        result = subprocess.run(
            cmd,
            cwd=cwd,
            capture_output=True,
            text=True,
            timeout=timeout,
            **_subprocess_isolation_kwargs(),
        )
    except (OSError, subprocess.TimeoutExpired) as exc:
        raise GitError(f"`{program} {' '.join(args)}` could not run: {exc}") from exc
    if check and result.returncode != 0:
        raise GitError(
            f"`{program} {' '.join(args)}` failed (rc={result.returncode}): {result.stderr.strip()}"
        )
    return result


def _run_git(
    *args: str,
    cwd: Path,
    check: bool = True,
    timeout: int = 30,
) -> subprocess.CompletedProcess[str]:
    """Run a git command and return the CompletedProcess."""
    return _run("git", *args, cwd=cwd, check=check, timeout=timeout)


def _run_gh(
    *args: str,
    cwd: Path,
    check: bool = True,
    timeout: int = _NETWORK_TIMEOUT_SECONDS,
) -> subprocess.CompletedProcess[str]:
    """Run a GitHub CLI command and return the CompletedProcess."""
    return _run("gh", *args, cwd=cwd, check=check, timeout=timeout)


# ---------------------------------------------------------------------------
# Query helpers
# ---------------------------------------------------------------------------


def status_porcelain(repo: str | Path) -> str:
    """Return ``git status --porcelain`` output."""
    return _run_git("status", "--porcelain", cwd=Path(repo)).stdout.strip()


def is_clean(repo: str | Path) -> bool:
    """Return True when the working tree has no staged, unstaged or untracked changes."""
    return status_porcelain(repo) == ""


def head_sha(repo: str | Path) -> str:
    """Return the short SHA of HEAD."""
    return _run_git("rev-parse", "--short", "HEAD", cwd=Path(repo)).stdout.strip()


def is_repository(repo: str | Path) -> bool:
    """Return True when *repo* is the top of a git working tree."""
    result = _run_git("rev-parse", "--show-toplevel", cwd=Path(repo), check=False)
    if result.returncode != 0:
        return False
    return Path(result.stdout.strip()).resolve() == Path(repo).resolve()


# ---------------------------------------------------------------------------
# Mutation helpers
# ---------------------------------------------------------------------------


def init_repo(repo: str | Path) -> None:
    """Initialise a git repository in *repo* (a no-op for an existing one)."""
    _run_git("init", cwd=Path(repo))


def ensure_git_identity(repo: str | Path) -> None:
    """Ensure the repo has a git identity configured for commits.

    Generated workspaces often run on hosts without a global identity; a
    local default keeps ``git commit`` from failing.
    """
    cwd = Path(repo)
    for key, fallback in [
        ("user.name", "Tag Mixer"),
        ("user.email", "tag-mixer@localhost"),
    ]:
        result = _run_git("config", key, cwd=cwd, check=False)
        if result.returncode != 0 or not result.stdout.strip():
            _run_git("config", key, fallback, cwd=cwd)
            logger.info("Set %s = %s in %s", key, fallback, cwd)


def stage_all(repo: str | Path) -> None:
    """Stage every change, including deletions and untracked files."""
    _run_git("add", "-A", cwd=Path(repo))


def commit(repo: str | Path, message: str) -> str:
    """Commit what is staged and return the new commit SHA."""
    _run_git("commit", "-m", message, cwd=Path(repo))
    return head_sha(repo)


def push(repo: str | Path) -> None:
    """Push the current branch to its upstream."""
    _run_git("push", cwd=Path(repo), timeout=_NETWORK_TIMEOUT_SECONDS)


def gh_repo_create(repo: str | Path, name: str, *, public: bool = True) -> None:
    """Create a GitHub repository from *repo* and push its current branch."""
    visibility = "--public" if public else "--private"
    _run_gh("repo", "create", name, visibility, "--source", ".", "--push", cwd=Path(repo))


def gh_repo_url(repo: str | Path) -> str:
    """Return the canonical URL of the GitHub repository behind *repo*."""
    return _run_gh("repo", "view", "--json", "url", "-q", ".url", cwd=Path(repo)).stdout.strip()
