"""Tests for the pipeline orchestrator."""

from __future__ import annotations

import json
import logging
import random
from pathlib import Path

import pytest

import tag_mixer.pipeline.orchestrator as orchestrator_module
from tag_mixer.pipeline.orchestrator import PipelineOrchestrator, run_pipeline
from tag_mixer.pipeline.phases import DEFAULT_PHASE_ORDER, PipelineConfig
from tag_mixer.pipeline.refinement import loop_state_path
from tag_mixer.schemas import AgentResult, PublishOutcome

RUN_DATE = "2026-10-19"
PHASE_KEYS = [p.value for p in DEFAULT_PHASE_ORDER]
DONE = AgentResult(success=True, exit_code=0, output="<promise>IMPLEMENTATION COMPLETE</promise>")


def _config(tmp_path: Path, **overrides) -> PipelineConfig:
    data = {
        "tags": ["Roguelike", "Cooking"],
        "publish": False,
        "outputs_dir": str(tmp_path / "outputs"),
        "assets_dir": str(tmp_path / "assets"),
    }
    data.update(overrides)
    return PipelineConfig(**data)


def _load_meta(workspace: Path) -> dict:
    return json.loads((workspace / "meta.json").read_text(encoding="utf-8"))


def _write_phase_outputs(index: int, call) -> None:
    """Pretend to be the agent: leave each phase's expected files behind."""
    ws = call.working_dir
    outputs = {
        0: ["proposal.md"],
        1: ["specs/design-plan.md", "specs/guide-core.md"],
        2: ["specs/review-guides.md"],
        3: ["specs/spec-core.md"],
        4: ["specs/review-specs.md"],
        5: ["package.json", "index.html", "src/main.ts"],
    }
    for rel in outputs.get(index, []):
        path = ws / rel
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text("# Dungeon Chef\n" if rel == "proposal.md" else "x", encoding="utf-8")


# ---------------------------------------------------------------------------
# End-to-end scenarios
# ---------------------------------------------------------------------------


def test_full_run_with_publishing_disabled(tmp_path: Path, stub_runner_cls) -> None:
    runner = stub_runner_cls(results=[DONE], on_invoke=_write_phase_outputs)
    orchestrator = PipelineOrchestrator(_config(tmp_path), runner=runner, run_date=RUN_DATE)

    result = orchestrator.run()

    assert result.success is True
    assert result.error is None
    assert result.repo_url is None
    assert result.date == RUN_DATE
    assert result.tags.tag_names == ["Roguelike", "Cooking"]
    workspace = Path(result.output_dir)
    assert workspace.name == "2026-10-19_roguelike_cooking"
    assert (workspace / "specs").is_dir()
    assert (workspace / "CLAUDE.md").is_file()
    assert not (workspace / ".git").exists()
    assert not loop_state_path(workspace).exists()

    assert list(result.phases) == PHASE_KEYS
    assert all(p.success and p.error is None for p in result.phases.values())
    assert [c.turn_budget for c in runner.calls] == [15, 20, 15, 30, 20, 50]
    assert [c.timeout_seconds for c in runner.calls[:5]] == [600] * 5
    assert runner.calls[5].timeout_seconds == 900

    meta = _load_meta(workspace)
    assert meta["success"] is True
    assert meta["completed_at"]
    assert meta["selected_inputs"] == ["Roguelike", "Cooking"]
    assert all(meta["phases"][k]["completed"] for k in PHASE_KEYS)


def test_phase_failure_halts_the_run(tmp_path: Path, stub_runner_cls) -> None:
    runner = stub_runner_cls(
        results=[DONE, AgentResult(success=False, exit_code=-1, errors=["timeout"], timed_out=True)]
    )
    result = PipelineOrchestrator(_config(tmp_path), runner=runner, run_date=RUN_DATE).run()

    assert result.success is False
    assert "Phase 2" in (result.error or "")
    assert result.error == "Phase 2 (Design Lead guides) failed: timeout"
    assert result.phases["creativeDirector"].success is True
    assert result.phases["designLeadGuides"].error == "timeout"
    assert set(result.phases) == {"creativeDirector", "designLeadGuides"}
    assert len(runner.calls) == 2

    meta = _load_meta(Path(result.output_dir))
    assert meta["success"] is False
    assert meta["completed_at"] is None
    assert meta["phases"]["creativeDirector"]["completed"] is True
    assert meta["phases"]["designLeadGuides"] == {
        "name": "designLeadGuides",
        "completed": False,
        "error": "timeout",
    }
    assert not any(meta["phases"][k]["completed"] for k in PHASE_KEYS[1:])


def test_final_phase_failure_is_reported_and_loop_state_cleared(tmp_path: Path, stub_runner_cls) -> None:
    results = [DONE] * 5 + [AgentResult(success=False, exit_code=1, errors=["tsc failed"])]
    runner = stub_runner_cls(results=results)

    result = PipelineOrchestrator(_config(tmp_path), runner=runner, run_date=RUN_DATE).run()

    assert result.success is False
    assert result.error == "Phase 6 (Implementer) failed: tsc failed"
    assert not loop_state_path(Path(result.output_dir)).exists()


def test_completed_phases_form_a_prefix_at_every_call(tmp_path: Path, stub_runner_cls) -> None:
    snapshots: list[list[bool]] = []

    def _snapshot(_index, call):
        meta = _load_meta(call.working_dir)
        snapshots.append([meta["phases"][k]["completed"] for k in PHASE_KEYS])

    runner = stub_runner_cls(results=[DONE], on_invoke=_snapshot)
    PipelineOrchestrator(_config(tmp_path), runner=runner, run_date=RUN_DATE).run()

    assert len(snapshots) == 6
    for index, flags in enumerate(snapshots):
        assert flags == [True] * index + [False] * (6 - index)


def test_random_tags_are_selected_when_none_given(tmp_path: Path, stub_runner_cls) -> None:
    runner = stub_runner_cls(results=[DONE])
    config = _config(tmp_path, tags=[], min_tags=3, max_tags=3)

    result = PipelineOrchestrator(
        config, runner=runner, rng=random.Random(7), run_date=RUN_DATE
    ).run()

    assert result.tags.count == 3
    assert len(set(result.tags.tag_names)) == 3
    assert Path(result.output_dir).name.count("_") >= 3


def test_prompts_carry_tags_and_workspace(tmp_path: Path, stub_runner_cls) -> None:
    runner = stub_runner_cls(results=[DONE])
    result = PipelineOrchestrator(_config(tmp_path), runner=runner, run_date=RUN_DATE).run()

    first = runner.calls[0].instruction
    assert "- Roguelike\n- Cooking" in first
    assert f"{result.output_dir}/proposal.md" in first
    assert "proposal.md" in runner.calls[2].instruction
    assert all(c.working_dir == Path(result.output_dir) for c in runner.calls)


def test_missing_artifacts_only_warn(tmp_path: Path, stub_runner_cls, caplog) -> None:
    runner = stub_runner_cls(results=[DONE])
    with caplog.at_level(logging.WARNING, logger="tag_mixer.pipeline.orchestrator"):
        result = PipelineOrchestrator(_config(tmp_path), runner=runner, run_date=RUN_DATE).run()

    assert result.success is True
    assert "expected output is missing: proposal.md" in caplog.text


def test_log_callback_receives_pipeline_messages(tmp_path: Path, stub_runner_cls) -> None:
    lines: list[tuple[str, str]] = []
    runner = stub_runner_cls(results=[DONE], on_invoke=_write_phase_outputs)
    orchestrator = PipelineOrchestrator(
        _config(tmp_path),
        runner=runner,
        log_callback=lambda level, msg: lines.append((level, msg)),
        run_date=RUN_DATE,
    )

    orchestrator.run()

    messages = [m for _level, m in lines]
    assert messages[0].startswith("Selected tags (2): Roguelike, Cooking")
    assert "Phase 6: Implementer complete" in messages
    assert orchestrator.last_log_message == "Pipeline complete"


def test_assets_are_copied_into_workspace(tmp_path: Path, stub_runner_cls) -> None:
    skill = tmp_path / "assets" / "skills" / "game-implementer"
    skill.mkdir(parents=True)
    (skill / "SKILL.md").write_text("implement", encoding="utf-8")
    runner = stub_runner_cls(results=[DONE])

    result = PipelineOrchestrator(_config(tmp_path), runner=runner, run_date=RUN_DATE).run()

    copied = Path(result.output_dir) / ".claude" / "skills" / "game-implementer" / "SKILL.md"
    assert copied.read_text(encoding="utf-8") == "implement"


# ---------------------------------------------------------------------------
# Publishing
# ---------------------------------------------------------------------------


class _FakeRepository:
    instances: list[_FakeRepository] = []
    create_ok = True

    def __init__(self, workspace, run_date) -> None:
        self.workspace = Path(workspace)
        self.run_date = run_date
        self.calls: list[tuple] = []
        _FakeRepository.instances.append(self)

    def create_repository(self, desired_name, *, initial_message):
        self.calls.append(("create", desired_name, initial_message))
        if not self.create_ok:
            return PublishOutcome.failed("gh: not logged in")
        return PublishOutcome(url=f"https://github.com/me/{desired_name}")

    def commit_phase(self, label, message):
        self.calls.append(("commit", label, message))
        return PublishOutcome()

    def push_all(self):
        self.calls.append(("push",))
        return PublishOutcome()


@pytest.fixture
def fake_repository(monkeypatch):
    _FakeRepository.instances = []
    _FakeRepository.create_ok = True
    monkeypatch.setattr(orchestrator_module, "RepositoryManager", _FakeRepository)
    return _FakeRepository


def test_publishing_creates_commits_and_pushes(tmp_path: Path, stub_runner_cls, fake_repository) -> None:
    runner = stub_runner_cls(results=[DONE], on_invoke=_write_phase_outputs)

    orchestrator = PipelineOrchestrator(_config(tmp_path, publish=True), runner=runner, run_date=RUN_DATE)
    result = orchestrator.run()

    assert result.success is True
    assert result.repo_url == "https://github.com/me/dungeon-chef"
    (repo,) = fake_repository.instances
    assert orchestrator.repository is repo
    assert orchestrator.meta.repository_url == result.repo_url
    assert repo.calls == [
        ("create", "dungeon-chef", "feat: Phase 1 - game proposal & pipeline assets"),
        ("commit", "Phase 2", "docs: Phase 2 - design guides"),
        ("commit", "Phase 3", "docs: Phase 3 - guide review & revisions"),
        ("commit", "Phase 4", "docs: Phase 4 - detailed specs"),
        ("commit", "Phase 5", "docs: Phase 5 - spec review & revisions"),
        ("commit", "Phase 6", "feat: Phase 6 - game implementation"),
        ("push",),
    ]
    assert _load_meta(Path(result.output_dir))["repository_url"] == result.repo_url


def test_repository_creation_failure_continues_locally(tmp_path: Path, stub_runner_cls, fake_repository) -> None:
    fake_repository.create_ok = False
    runner = stub_runner_cls(results=[DONE])

    result = PipelineOrchestrator(
        _config(tmp_path, publish=True), runner=runner, run_date=RUN_DATE
    ).run()

    assert result.success is True
    assert result.repo_url is None
    (repo,) = fake_repository.instances
    assert [c[0] for c in repo.calls] == ["create"]
    assert repo.calls[0][1] == "untitled-game"
    assert len(runner.calls) == 6


def test_failed_run_with_publishing_never_pushes(tmp_path: Path, stub_runner_cls, fake_repository) -> None:
    runner = stub_runner_cls(results=[DONE, DONE, AgentResult(success=False, errors=["boom"])])

    result = PipelineOrchestrator(
        _config(tmp_path, publish=True), runner=runner, run_date=RUN_DATE
    ).run()

    assert result.success is False
    (repo,) = fake_repository.instances
    assert [c[0] for c in repo.calls] == ["create", "commit"]


def test_run_pipeline_wrapper(tmp_path: Path, stub_runner_cls) -> None:
    runner = stub_runner_cls(results=[DONE])
    result = run_pipeline(_config(tmp_path), runner=runner)
    assert result.success is True
    assert len(runner.calls) == 6


def test_publishing_disabled_never_builds_a_repository(tmp_path: Path, stub_runner_cls, fake_repository) -> None:
    runner = stub_runner_cls(results=[DONE], on_invoke=_write_phase_outputs)
    orchestrator = PipelineOrchestrator(_config(tmp_path), runner=runner, run_date=RUN_DATE)

    result = orchestrator.run()

    assert result.success is True
    assert fake_repository.instances == []
    assert orchestrator.repository is None
    assert orchestrator.meta.repository_url is None
