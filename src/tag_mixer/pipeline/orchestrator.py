"""Pipeline orchestrator - drives one tag-to-game generation run.

A run executes every phase once, in order:

    Creative Director -> Design Lead guides -> CD review
    -> Design Lead dispatch -> DL spec review -> Implementer

The orchestrator integrates with:
- Agent runners (Claude Code) for each phase's work
- The prompt catalog for phase-specific prompts
- The refinement loop for the final phase
- The repository manager for per-phase commits and the final push

The first failed phase halts the run; earlier output is left in place.
"""

from __future__ import annotations

import datetime as dt
import logging
import random
from collections.abc import Callable
from pathlib import Path

from tag_mixer.agent_runner import AgentRunner
from tag_mixer.claude_code import ClaudeCodeRunner
from tag_mixer.pipeline.phases import (
    DEFAULT_PHASE_ORDER,
    PHASE_SPECS,
    PhaseResult,
    PhaseSpec,
    PipelineConfig,
    PipelineResult,
)
from tag_mixer.pipeline.refinement import RefinementLoop, build_refinement_loop
from tag_mixer.pipeline.repository import RepositoryManager, repo_name_from_proposal
from tag_mixer.pipeline.workspace import (
    copy_pipeline_assets,
    create_workspace,
    missing_artifacts,
    today_iso,
    write_onboarding_doc,
)
from tag_mixer.prompts.catalog import PromptCatalog
from tag_mixer.schemas import AgentResult, RunMetadata, utc_now_iso
from tag_mixer.tags import TagSelection, select_tags

logger = logging.getLogger(__name__)

LogCallback = Callable[[str, str], None]


class PipelineOrchestrator:
    """Run the six generation phases against one workspace.

    Parameters
    ----------
    config:
        Run configuration; defaults to :class:`PipelineConfig` defaults.
    runner:
        Agent runner used for every phase. Defaults to a
        :class:`ClaudeCodeRunner` built from *config*.
    catalog:
        Prompt source. Defaults to the bundled catalog plus user overrides.
    refinement:
        Final-phase loop strategy. Defaults to the one named by
        ``config.refinement_mode``.
    log_callback:
        Called as ``log_callback(level, message)`` for every pipeline log line.
    """

    def __init__(
        self,
        config: PipelineConfig | None = None,
        *,
        runner: AgentRunner | None = None,
        catalog: PromptCatalog | None = None,
        refinement: RefinementLoop | None = None,
        log_callback: LogCallback | None = None,
        rng: random.Random | None = None,
        run_date: str | None = None,
    ) -> None:
        self.config = config or PipelineConfig()
        self.runner = runner or ClaudeCodeRunner(
            claude_binary=self.config.claude_binary,
            model=self.config.model,
            full_auto=self.config.full_auto,
        )
        self.catalog = catalog or PromptCatalog()
        self.refinement = refinement or build_refinement_loop(self.config)
        self._log_callback = log_callback
        self._rng = rng
        self._run_date = run_date

        self.meta: RunMetadata | None = None
        self.repository: RepositoryManager | None = None
        self.last_log_time: str = ""
        self.last_log_level: str = ""
        self.last_log_message: str = ""

    # ------------------------------------------------------------------
    # Logging
    # ------------------------------------------------------------------

    def _log(self, level: str, message: str) -> None:
        self.last_log_time = dt.datetime.now().strftime("%H:%M:%S")
        self.last_log_level = level
        self.last_log_message = message
        if self._log_callback:
            self._log_callback(level, message)
        getattr(logger, level if level != "warn" else "warning", logger.info)(
            "[pipeline] %s", message
        )

    # ------------------------------------------------------------------
    # Run
    # ------------------------------------------------------------------

    def run(self) -> PipelineResult:
        """Execute the full pipeline synchronously and return its outcome."""
        config = self.config
        run_date = self._run_date or today_iso()

        selection = self._resolve_tags()
        tag_names = selection.tag_names
        result = PipelineResult(date=run_date, tags=selection)
        self._log("info", f"Selected tags ({selection.count}): {', '.join(tag_names)}")

        workspace = create_workspace(config.outputs_dir, tag_names, run_date)
        result.output_dir = str(workspace)
        self._log("info", f"Output directory: {workspace}")

        meta = RunMetadata.start(run_date, tag_names, [p.value for p in DEFAULT_PHASE_ORDER])
        meta.save(workspace)
        self.meta = meta

        copy_pipeline_assets(config.assets_dir, workspace)
        write_onboarding_doc(workspace, tag_names, run_date)

        publishing = config.publish
        repository = RepositoryManager(workspace, run_date) if publishing else None
        self.repository = repository
        prior_artifacts: list[str] = []

        for phase in DEFAULT_PHASE_ORDER:
            spec = PHASE_SPECS[phase]
            key = phase.value
            self._log("info", f"Phase {spec.number}: {spec.title} starting...")

            prompt = self.catalog.build_phase_prompt(
                key,
                tag_names,
                workspace,
                prior_artifacts,
                completion_marker=config.completion_marker,
            )
            agent_result = self._invoke_phase(spec, prompt, workspace)

            if not agent_result.success:
                error = agent_result.error or "unknown error"
                result.phases[key] = PhaseResult(success=False, error=error)
                meta.phases[key].error = error
                meta.save(workspace)
                result.error = f"Phase {spec.number} ({spec.title}) failed: {error}"
                self._log("error", result.error)
                return result

            result.phases[key] = PhaseResult(success=True)
            meta.phases[key].completed = True
            meta.save(workspace)
            self._log("info", f"Phase {spec.number}: {spec.title} complete")
            self._warn_missing_artifacts(spec, workspace)
            prior_artifacts.extend(spec.artifacts)

            if not publishing or repository is None:
                continue
            if spec.number == 1:
                publishing = self._create_repository(repository, meta, spec, workspace, result)
            else:
                repository.commit_phase(f"Phase {spec.number}", spec.commit_message)

        if publishing and repository is not None:
            repository.push_all()

        meta.completed_at = utc_now_iso()
        meta.success = True
        meta.save(workspace)
        result.success = True
        self._log("info", "Pipeline complete")
        return result

    # ------------------------------------------------------------------
    # Steps
    # ------------------------------------------------------------------

    def _resolve_tags(self) -> TagSelection:
        if self.config.tags:
            return TagSelection.from_names(self.config.tags)
        return select_tags(self.config.min_tags, self.config.max_tags, rng=self._rng)

    def _invoke_phase(self, spec: PhaseSpec, prompt: str, workspace: Path) -> AgentResult:
        if spec.refinement:
            self._log(
                "info",
                f"Refinement loop: max {self.refinement.max_iterations} iteration(s), "
                f"{self.refinement.iteration_timeout_seconds}s each",
            )
            return self.refinement.run(workspace, prompt, self.runner, spec.turn_budget)
        return self.runner.invoke(
            prompt,
            workspace,
            turn_budget=spec.turn_budget,
            timeout_seconds=self.config.phase_timeout_seconds,
        )

    def _create_repository(
        self,
        repository: RepositoryManager,
        meta: RunMetadata,
        spec: PhaseSpec,
        workspace: Path,
        result: PipelineResult,
    ) -> bool:
        """Create the remote after the first phase. Returns whether publishing stays on."""
        self._log("info", "Creating GitHub repository...")
        outcome = repository.create_repository(
            repo_name_from_proposal(workspace),
            initial_message=spec.commit_message,
        )
        if not outcome.ok:
            self._log("warn", f"Repository creation failed (continuing locally): {outcome.detail}")
            return False
        result.repo_url = outcome.url
        meta.repository_url = outcome.url
        meta.save(workspace)
        self._log("info", f"Repository created: {outcome.url}")
        return True

    def _warn_missing_artifacts(self, spec: PhaseSpec, workspace: Path) -> None:
        missing = missing_artifacts(workspace, spec.artifacts)
        if missing:
            self._log(
                "warn",
                f"Phase {spec.number} reported success but expected output is missing: "
                + ", ".join(missing),
            )


def run_pipeline(
    config: PipelineConfig | None = None,
    *,
    runner: AgentRunner | None = None,
    log_callback: LogCallback | None = None,
) -> PipelineResult:
    """Run one pipeline with *config* and return the result."""
    return PipelineOrchestrator(config, runner=runner, log_callback=log_callback).run()
