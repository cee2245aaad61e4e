"""Workflow state machine and state merge helpers."""

from .state_machine import (
    TRANSITIONS,
    WorkflowStep,
    can_transition,
    transition,
    restore,
    enter_refinement,
    apply_basic_info_rule,
    finish_scene_generation,
    require_scene_generation_ready,
    require_exportable,
    sync_completion,
    current_step,
    can_enter_step,
    is_processing,
    to_wizard_state,
    from_wizard_state,
    parse_state,
)
from .updates import apply_update
from .scene_status import (
    CONTENT_FIELDS,
    require_stage_ready,
    check_stage_gating,
    stable_status,
    rollback_status,
    mark_stale_downstream,
)

__all__ = [
    "TRANSITIONS",
    "WorkflowStep",
    "can_transition",
    "transition",
    "restore",
    "enter_refinement",
    "apply_basic_info_rule",
    "finish_scene_generation",
    "require_scene_generation_ready",
    "require_exportable",
    "sync_completion",
    "current_step",
    "can_enter_step",
    "is_processing",
    "to_wizard_state",
    "from_wizard_state",
    "parse_state",
    "apply_update",
    "CONTENT_FIELDS",
    "require_stage_ready",
    "check_stage_gating",
    "stable_status",
    "rollback_status",
    "mark_stale_downstream",
]
