"""Tag-to-game generation pipeline.

The pipeline drives a coding agent through six phases:

    Creative Director → Design Lead guides → CD review
    → Design Lead dispatch → DL spec review → Implementer

Every phase writes into a dated workspace under ``outputs/``; progress is
checkpointed in ``meta.json`` and, when publishing is enabled, committed to a
GitHub repository created after the first phase.

Usage::

    from tag_mixer.pipeline import PipelineConfig, PipelineOrchestrator

    result = PipelineOrchestrator(PipelineConfig(tags=["Roguelike", "Cooking"])).run()
"""

from tag_mixer.pipeline.orchestrator import PipelineOrchestrator, run_pipeline
from tag_mixer.pipeline.phases import (
    PipelineConfig,
    PipelinePhase,
    PipelineResult,
)

__all__ = [
    "PipelineConfig",
    "PipelineOrchestrator",
    "PipelinePhase",
    "PipelineResult",
    "run_pipeline",
]
