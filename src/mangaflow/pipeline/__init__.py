"""Scene list generation and refinement pipeline."""

from .refinement import OutcomeStatus, ScenePipeline, StageResult

__all__ = ["OutcomeStatus", "ScenePipeline", "StageResult"]
