"""Steam tag catalog and random tag selection."""

from __future__ import annotations

import json
import logging
import random
from functools import lru_cache
from pathlib import Path

from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)

_BUILTIN_CATALOG = Path(__file__).resolve().parent / "data" / "steam_tags.json"


class SteamTag(BaseModel):
    """One entry in the tag catalog."""

    id: int
    name: str


class TagSelection(BaseModel):
    """Tags chosen for one pipeline run."""

    count: int = 0
    tags: list[SteamTag] = Field(default_factory=list)

    @property
    def tag_names(self) -> list[str]:
        return [t.name for t in self.tags]

    @classmethod
    def from_names(cls, names: list[str]) -> TagSelection:
        """Wrap pre-selected tag names, numbering them by position."""
        tags = [SteamTag(id=i, name=name) for i, name in enumerate(names)]
        return cls(count=len(tags), tags=tags)


def load_tags(path: Path | None = None) -> list[SteamTag]:
    """Load the tag catalog (the bundled one unless *path* is given)."""
    if path is None:
        return list(_builtin_tags())
    return _parse_catalog(path)


@lru_cache(maxsize=1)
def _builtin_tags() -> tuple[SteamTag, ...]:
    return tuple(_parse_catalog(_BUILTIN_CATALOG))


def _parse_catalog(path: Path) -> list[SteamTag]:
    data = json.loads(path.read_text(encoding="utf-8"))
    return [SteamTag.model_validate(entry) for entry in data.get("tags", [])]


def select_tags(
    min_count: int = 2,
    max_count: int = 5,
    *,
    catalog: list[SteamTag] | None = None,
    rng: random.Random | None = None,
) -> TagSelection:
    """Pick a uniformly random number of tags in ``[min_count, max_count]``.

    Tags are sampled without replacement, so a selection never repeats an
    entry. The count is capped at the catalog size.
    """
    if min_count < 0 or max_count < 0:
        raise ValueError("tag counts must be non-negative")
    if min_count > max_count:
        raise ValueError(f"min_count ({min_count}) must be <= max_count ({max_count})")

    pool = list(catalog) if catalog is not None else load_tags()
    rng = rng or random.Random()
    count = min(rng.randint(min_count, max_count), len(pool))
    selected = rng.sample(pool, count)
    logger.debug("Selected %s tag(s): %s", count, ", ".join(t.name for t in selected))
    return TagSelection(count=count, tags=selected)
