"""Steam Tag Mixer - turn random Steam tag combinations into generated web games."""

from importlib.metadata import PackageNotFoundError, version

from tag_mixer.schemas import AgentResult, PublishOutcome, RunMetadata

__all__ = ["AgentResult", "PublishOutcome", "RunMetadata"]

try:
    __version__ = version("tag-mixer")
except PackageNotFoundError:
    __version__ = "0.0.0"
