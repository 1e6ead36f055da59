"""Remote repository lifecycle for a run workspace.

The repository is created once, right after the first phase produces a
proposal; every later phase adds one commit and the run ends with a push.
None of these steps may stop the pipeline: failures come back as
:class:`PublishOutcome` values with ``Severity.WARNING``.
"""

from __future__ import annotations

import logging
import re
from pathlib import Path

from pydantic import BaseModel

from tag_mixer import git_tools
from tag_mixer.file_io import read_text_lenient
from tag_mixer.git_tools import GitError
from tag_mixer.pipeline.workspace import write_gitignore
from tag_mixer.schemas import PublishOutcome, Severity

logger = logging.getLogger(__name__)

PROPOSAL_FILENAME = "proposal.md"
FALLBACK_REPO_NAME = "untitled-game"
INITIAL_COMMIT_MESSAGE = "feat: Phase 1 - game proposal & pipeline assets"

_TITLE_RE = re.compile(r"^#\s+(.+)$", re.MULTILINE)


def extract_title(markdown: str) -> str:
    """Return the first level-one heading in *markdown*, or the fallback name."""
    match = _TITLE_RE.search(markdown)
    if not match:
        return FALLBACK_REPO_NAME
    return match.group(1).strip() or FALLBACK_REPO_NAME


def slugify_for_repo(title: str) -> str:
    """Convert a title into a repository-safe slug.

    Lowercases, drops everything but ``[a-z0-9]``, whitespace and ``-``,
    turns whitespace runs into ``-``, then collapses and trims hyphens.
    """
    slug = title.lower()
    slug = re.sub(r"[^a-z0-9\s-]", "", slug)
    slug = re.sub(r"\s+", "-", slug)
    slug = re.sub(r"-+", "-", slug)
    slug = slug.strip("-")
    return slug or FALLBACK_REPO_NAME


def repo_name_from_proposal(workspace: str | Path) -> str:
    """Derive the repository name from ``proposal.md`` in *workspace*."""
    path = Path(workspace) / PROPOSAL_FILENAME
    if not path.is_file():
        return FALLBACK_REPO_NAME
    title = extract_title(read_text_lenient(path))
    name = slugify_for_repo(title)
    logger.info('Game title "%s" -> repository name "%s"', title, name)
    return name


class RepositoryState(BaseModel):
    """What has been published so far for one workspace."""

    local_initialized: bool = False
    remote_url: str | None = None
    repo_name: str = ""


class RepositoryManager:
    """Create, commit to and push the repository backing one workspace."""

    def __init__(self, workspace: str | Path, run_date: str) -> None:
        self.workspace = Path(workspace)
        self.run_date = run_date
        self.state = RepositoryState()

    @property
    def has_remote(self) -> bool:
        return self.state.remote_url is not None

    def create_repository(
        self,
        desired_name: str,
        *,
        initial_message: str = INITIAL_COMMIT_MESSAGE,
    ) -> PublishOutcome:
        """Initialise git, make the initial commit and create the remote.

        A name collision (or any other ``gh repo create`` failure) is retried
        exactly once with ``<name>-<run_date>``. Calling this again after a
        remote exists returns the existing URL.
        """
        if self.has_remote:
            return PublishOutcome(detail="repository already created", url=self.state.remote_url)

        try:
            if write_gitignore(self.workspace):
                logger.info("Wrote default .gitignore")
            if not git_tools.is_repository(self.workspace):
                git_tools.init_repo(self.workspace)
            self.state.local_initialized = True
            git_tools.ensure_git_identity(self.workspace)
            git_tools.stage_all(self.workspace)
            if not git_tools.is_clean(self.workspace):
                git_tools.commit(self.workspace, initial_message)
        except (GitError, OSError) as exc:
            logger.warning("Local repository setup failed: %s", exc)
            return PublishOutcome.failed(str(exc))

        name = desired_name
        try:
            git_tools.gh_repo_create(self.workspace, name)
        except GitError as first_exc:
            name = f"{desired_name}-{self.run_date}"
            logger.info("Repository name collision (%s); retrying as %s", first_exc, name)
            try:
                git_tools.gh_repo_create(self.workspace, name)
            except GitError as exc:
                logger.warning("Repository creation failed: %s", exc)
                return PublishOutcome.failed(str(exc))

        try:
            url = git_tools.gh_repo_url(self.workspace)
        except GitError as exc:
            logger.warning("Repository created but its URL could not be read: %s", exc)
            return PublishOutcome.failed(str(exc))

        self.state.repo_name = name
        self.state.remote_url = url
        logger.info("Repository created: %s", url)
        return PublishOutcome(detail=f"created {name}", url=url)

    def commit_phase(self, label: str, message: str) -> PublishOutcome:
        """Stage everything and commit, skipping when nothing changed."""
        try:
            git_tools.stage_all(self.workspace)
            if git_tools.is_clean(self.workspace):
                logger.info("%s: no changes, skipping commit", label)
                return PublishOutcome(skipped=True, detail="no changes")
            sha = git_tools.commit(self.workspace, message)
        except GitError as exc:
            logger.warning("%s: commit failed (pipeline continues): %s", label, exc)
            return PublishOutcome.failed(str(exc))
        logger.info("%s: committed %s", label, sha)
        return PublishOutcome(detail=sha)

    def push_all(self) -> PublishOutcome:
        """Push every local commit to the remote."""
        try:
            git_tools.push(self.workspace)
        except GitError as exc:
            logger.warning("Push failed (the game was still generated): %s", exc)
            return PublishOutcome(ok=False, severity=Severity.WARNING, detail=str(exc))
        logger.info("Pushed to %s", self.state.remote_url or "remote")
        return PublishOutcome(url=self.state.remote_url)
