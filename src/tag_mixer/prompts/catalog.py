"""Centralized prompt catalog for the pipeline phases.

Loads prompts from ``templates.yaml`` (next to this module). Each phase
entry carries a ``name``, a ``description`` and a ``prompt`` template with
``str.format`` placeholders:

* ``{tags}``: the selected tags as a bullet list
* ``{workspace}``: absolute path of the run workspace
* ``{prior_artifacts}``: files earlier phases were expected to produce
* ``{completion_marker}``: phrase the implementer prints when done

Supports a user-override file at ``~/.tag_mixer/prompt_overrides.yaml``
that is merged on top of the built-in defaults.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from pathlib import Path
from typing import Any

import yaml

logger = logging.getLogger(__name__)

_BUILTIN_YAML = Path(__file__).resolve().parent / "templates.yaml"
_USER_OVERRIDE = Path.home() / ".tag_mixer" / "prompt_overrides.yaml"


def _load_yaml(path: Path) -> dict[str, Any]:
    """Load a YAML mapping, returning an empty dict on failure."""
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8"))
    except (OSError, yaml.YAMLError) as exc:
        logger.warning("Failed to load %s: %s", path, exc)
        return {}
    if not isinstance(data, dict):
        logger.warning("Ignoring %s: top level is not a mapping", path)
        return {}
    return data


def _deep_merge(base: dict, override: dict) -> dict:
    """Recursively merge *override* into *base* (override wins)."""
    merged = dict(base)
    for k, v in override.items():
        if k in merged and isinstance(merged[k], dict) and isinstance(v, dict):
            merged[k] = _deep_merge(merged[k], v)
        else:
            merged[k] = v
    return merged


def _bullets(items: Iterable[str], empty: str = "(none)") -> str:
    lines = [f"- {item}" for item in items]
    return "\n".join(lines) if lines else empty


class PromptCatalog:
    """Loads and serves phase prompts from the YAML catalog.

    Usage::

        catalog = PromptCatalog()
        prompt = catalog.build_phase_prompt("creativeDirector", ["Roguelike"], workspace)
    """

    def __init__(self, extra_path: Path | None = None, *, user_override: Path | None = None) -> None:
        self._data: dict[str, Any] = {}
        self._extra_path = extra_path
        self._user_override = _USER_OVERRIDE if user_override is None else user_override
        self._load()

    def _load(self) -> None:
        """Load built-in templates, then merge user overrides."""
        self._data = _load_yaml(_BUILTIN_YAML)

        if self._user_override.exists():
            overrides = _load_yaml(self._user_override)
            if overrides:
                self._data = _deep_merge(self._data, overrides)
                logger.info("Loaded prompt overrides from %s", self._user_override)

        # Project-specific overrides
        if self._extra_path and self._extra_path.exists():
            extra = _load_yaml(self._extra_path)
            if extra:
                self._data = _deep_merge(self._data, extra)
                logger.info("Loaded extra prompts from %s", self._extra_path)

    # ── Phase prompts ────────────────────────────────────────────

    def phase(self, key: str) -> str:
        """Return the raw prompt template for a phase key (e.g. ``creativeDirector``)."""
        entry = self._data.get("phases", {}).get(key, {})
        return (entry.get("prompt") or "").strip()

    def build_phase_prompt(
        self,
        phase: str,
        tags: list[str],
        workspace: str | Path,
        prior_artifacts: list[str] | None = None,
        *,
        completion_marker: str = "IMPLEMENTATION COMPLETE",
    ) -> str:
        """Fill the phase template for one run.

        Raises ``KeyError`` when the catalog has no prompt for *phase*, and
        ``ValueError`` when the template references an unknown placeholder.
        """
        template = self.phase(phase)
        if not template:
            raise KeyError(f"No prompt found for phase: {phase}")
        try:
            return template.format(
                tags=_bullets(tags),
                workspace=str(workspace),
                prior_artifacts=_bullets(prior_artifacts or []),
                completion_marker=completion_marker,
            )
        except (KeyError, IndexError) as exc:
            raise ValueError(f"Prompt template for {phase} has an unknown placeholder: {exc}") from exc
