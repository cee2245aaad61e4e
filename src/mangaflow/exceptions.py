"""Exception hierarchy for manga-flow.

Services raise these internally. The tool protocol and the refinement
pipeline turn them into structured results at their entry points.
"""

from typing import Optional


class MangaFlowError(Exception):
    """Base exception for all manga-flow errors."""

    def __init__(self, message: str, details: Optional[dict] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self):
        if self.details:
            return f"{self.message} | Details: {self.details}"
        return self.message


class ConfigurationError(MangaFlowError):
    """Raised when configuration is missing or invalid."""
    pass


class ProjectNotFoundError(MangaFlowError):
    """Raised when a project cannot be resolved."""

    def __init__(self, project_id: Optional[str] = None, thread_id: Optional[str] = None):
        if project_id:
            message = f"Project not found: '{project_id}'"
        elif thread_id:
            message = f"No project bound to thread '{thread_id}'"
        else:
            message = "No project in scope. Create a project first."
        super().__init__(message)
        self.project_id = project_id
        self.thread_id = thread_id


class SceneNotFoundError(MangaFlowError):
    """Raised when a scene id is unknown within a project."""

    def __init__(self, scene_id: str, project_id: Optional[str] = None):
        super().__init__(f"Scene not found: '{scene_id}'")
        self.scene_id = scene_id
        self.project_id = project_id


class PreconditionError(MangaFlowError):
    """Raised when an operation's inputs or required state are missing."""
    pass


class InvalidTransitionError(MangaFlowError):
    """Raised when a workflow transition is not allowed from the current state."""

    def __init__(self, current: str, target: str):
        super().__init__(
            f"Cannot move workflow from {current} to {target}",
            {"current": current, "target": target},
        )
        self.current = current
        self.target = target


class GenerationError(MangaFlowError):
    """Raised when an external generation call fails or times out."""
    pass


class CheckpointStoreError(MangaFlowError):
    """Raised when the checkpoint store cannot read or write."""
    pass
