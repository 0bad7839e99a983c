# /flowchat/workflows/validator.py

"""
Pure validation functions for the turn and task state machines.

All functions are:
- Pure (no side effects)
- Deterministic (same input = same output)
- No logging
- No state mutation
"""

from typing import Optional, TypedDict

from flowchat.models.task import TaskStatus, TurnStage
from flowchat.workflows.definitions import (
    TASK_TERMINAL_STATUSES,
    TASK_TRANSITIONS,
    TURN_TRANSITIONS,
)


class ValidationResult(TypedDict):
    """Result of a validation check."""
    is_valid: bool
    error_code: Optional[str]
    message: Optional[str]


_VALID: ValidationResult = {"is_valid": True, "error_code": None, "message": None}


def validate_task_event(event: str, status: TaskStatus) -> ValidationResult:
    """
    Validate that a task event is accepted in the given status.

    Args:
        event: Event name from TASK_TRANSITIONS (e.g. "pause")
        status: Current status of the task

    Returns:
        ValidationResult with is_valid=True if the transition is allowed
    """
    if event not in TASK_TRANSITIONS:
        return {
            "is_valid": False,
            "error_code": "UNKNOWN_EVENT",
            "message": f"Task event '{event}' is not defined",
        }

    if status in TASK_TERMINAL_STATUSES:
        return {
            "is_valid": False,
            "error_code": "TERMINAL_STATUS",
            "message": f"Cannot {event} task in terminal {status.value} status",
        }

    if status not in TASK_TRANSITIONS[event]["from_statuses"]:
        return {
            "is_valid": False,
            "error_code": "ILLEGAL_TRANSITION",
            "message": f"Cannot {event} task in {status.value} status",
        }

    return dict(_VALID)


def validate_turn_transition(current: TurnStage, target: TurnStage) -> ValidationResult:
    """Validate that a turn may move from one stage to another."""
    allowed = TURN_TRANSITIONS.get(current, frozenset())
    if not allowed:
        return {
            "is_valid": False,
            "error_code": "TERMINAL_STAGE",
            "message": f"Turn already finished in {current.value}",
        }

    if target not in allowed:
        return {
            "is_valid": False,
            "error_code": "ILLEGAL_TRANSITION",
            "message": f"Turn cannot move from {current.value} to {target.value}",
        }

    return dict(_VALID)


def validate_message_count(message_count: int) -> ValidationResult:
    if message_count < 0:
        return {
            "is_valid": False,
            "error_code": "NEGATIVE_MESSAGE_COUNT",
            "message": "Message count at pause cannot be negative",
        }
    return dict(_VALID)
