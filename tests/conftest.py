"""Shared pytest configuration: markers, execution ordering and pipeline fixtures."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path

import pytest

import tag_mixer.prompts.catalog as catalog_module
from tag_mixer.agent_runner import AgentRunner
from tag_mixer.schemas import AgentResult


def pytest_configure(config: pytest.Config) -> None:
    config.addinivalue_line("markers", "unit: fast isolated unit tests")
    config.addinivalue_line("markers", "integration: filesystem/subprocess integration tests")
    config.addinivalue_line("markers", "slow: expensive tests that may call external APIs")


def pytest_collection_modifyitems(items: list[pytest.Item]) -> None:
    """Run fast unit tests first, integration tests second, slow tests last."""

    def sort_key(item: pytest.Item) -> tuple[int, str]:
        if item.get_closest_marker("slow"):
            return (2, item.nodeid)
        if item.get_closest_marker("integration"):
            return (1, item.nodeid)
        return (0, item.nodeid)

    items.sort(key=sort_key)


@pytest.fixture(autouse=True)
def _isolate_environment(monkeypatch, tmp_path: Path) -> None:
    """Keep user prompt overrides and TAG_MIXER_* variables out of tests."""
    monkeypatch.setattr(catalog_module, "_USER_OVERRIDE", tmp_path / "no-overrides.yaml")
    for name in (
        "TAG_MIXER_OUTPUTS_DIR",
        "TAG_MIXER_ASSETS_DIR",
        "TAG_MIXER_CLAUDE_BIN",
        "TAG_MIXER_MODEL",
        "WEBHOOK_SECRET",
        "PORT",
    ):
        monkeypatch.delenv(name, raising=False)


@dataclass
class RecordedCall:
    instruction: str
    working_dir: Path
    turn_budget: int
    timeout_seconds: int


class StubRunner(AgentRunner):
    """Scripted agent runner.

    ``results`` are returned in order (the last one repeats); ``on_invoke``
    runs before each return with the call index and record, which lets tests
    write files or observe the workspace mid-run.
    """

    name = "stub"

    def __init__(
        self,
        results: list[AgentResult] | None = None,
        on_invoke: Callable[[int, RecordedCall], None] | None = None,
    ) -> None:
        self.results = list(results or [])
        self.on_invoke = on_invoke
        self.calls: list[RecordedCall] = []

    def invoke(self, instruction, working_dir, *, turn_budget=30, timeout_seconds=600):
        call = RecordedCall(instruction, Path(working_dir), turn_budget, timeout_seconds)
        index = len(self.calls)
        self.calls.append(call)
        if self.on_invoke is not None:
            self.on_invoke(index, call)
        if not self.results:
            return AgentResult(success=True, exit_code=0, output="done")
        return self.results[min(index, len(self.results) - 1)]


@pytest.fixture
def stub_runner_cls() -> type[StubRunner]:
    return StubRunner


def ok(output: str = "done") -> AgentResult:
    return AgentResult(success=True, exit_code=0, output=output)


def failed(error: str) -> AgentResult:
    return AgentResult(success=False, exit_code=1, errors=[error])


@pytest.fixture
def agent_results() -> tuple[Callable[..., AgentResult], Callable[[str], AgentResult]]:
    """Return ``(ok, failed)`` constructors for scripted runner results."""
    return ok, failed
