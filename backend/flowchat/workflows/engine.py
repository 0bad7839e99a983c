# /flowchat/workflows/engine.py

"""
Pure state machine engine for tasks and turns.

This module:
- Validates proposed transitions using validator functions
- Returns a new snapshot on success and never mutates its input
- Stamps updated_at on every applied transition

All functions are deterministic apart from timestamps and ids, perform no
I/O and do no logging.
"""

import uuid
from typing import Any, Dict, Optional, TypedDict

from flowchat.errors import IllegalTransition
from flowchat.models.conversation import now_millis
from flowchat.models.task import (
    SavedContext,
    TaskState,
    TaskStatus,
    TaskType,
    TurnStage,
    TurnState,
)
from flowchat.workflows.definitions import (
    TASK_STATUS_DESCRIPTIONS,
    TASK_STATUS_EMOJI,
    TASK_TERMINAL_STATUSES,
    TASK_TRANSITIONS,
    TURN_TERMINAL_STAGES,
)
from flowchat.workflows.validator import (
    validate_message_count,
    validate_task_event,
    validate_turn_transition,
)


class EngineResult(TypedDict):
    """Result of a task transition attempt."""
    applied: bool
    reason: Optional[str]
    updated_task: Optional[TaskState]


def _next_timestamp(task: TaskState) -> int:
    # Guarantees updated_at moves forward even within the same millisecond.
    return max(now_millis(), task.updated_at + 1)


def new_task_id() -> str:
    return f"task_{now_millis()}_{uuid.uuid4().hex[:9]}"


def create_task(flow_key: str, task_type: TaskType, current_step: str) -> TaskState:
    """Creates an IDLE task for a flow."""
    timestamp = now_millis()
    return TaskState(
        task_id=new_task_id(),
        status=TaskStatus.IDLE,
        task_type=task_type,
        flow_key=flow_key,
        current_step=current_step,
        saved_context=SavedContext(),
        created_at=timestamp,
        updated_at=timestamp,
    )


def apply_task_event(task: TaskState, event: str, **changes: Any) -> EngineResult:
    """
    Apply a named event to a task snapshot.

    Args:
        task: Current snapshot
        event: Event name from TASK_TRANSITIONS
        changes: Extra fields to set on the new snapshot

    Returns:
        EngineResult with applied=True and the new snapshot, or applied=False
        with the validation message. The input snapshot is never modified.
    """
    result = validate_task_event(event, task.status)
    if not result["is_valid"]:
        return {"applied": False, "reason": result["message"], "updated_task": None}

    update: Dict[str, Any] = {
        "status": TASK_TRANSITIONS[event]["to_status"],
        "updated_at": _next_timestamp(task),
    }
    update.update(changes)
    return {"applied": True, "reason": None, "updated_task": task.model_copy(update=update)}


def _transition(task: TaskState, event: str, **changes: Any) -> TaskState:
    result = apply_task_event(task, event, **changes)
    if not result["applied"]:
        raise IllegalTransition(result["reason"])
    return result["updated_task"]


def start_task(task: TaskState, current_step: Optional[str] = None) -> TaskState:
    changes = {"current_step": current_step} if current_step else {}
    return _transition(task, "start", **changes)


def pause_task(
    task: TaskState,
    message_count: int,
    last_message_id: Optional[str] = None,
    custom_data: Optional[Dict[str, Any]] = None,
) -> TaskState:
    """RUNNING -> PAUSED, recording the resumption point."""
    count_check = validate_message_count(message_count)
    if not count_check["is_valid"]:
        raise IllegalTransition(count_check["message"])
    saved = SavedContext(
        message_count_at_pause=message_count,
        last_message_id=last_message_id,
        custom_data=dict(custom_data or {}),
    )
    return _transition(task, "pause", saved_context=saved)


def resume_task(task: TaskState) -> TaskState:
    """PAUSED -> RUNNING. The saved context is kept for the caller to inspect."""
    return _transition(task, "resume")


def await_input(task: TaskState, current_step: Optional[str] = None, custom_data: Optional[Dict[str, Any]] = None) -> TaskState:
    changes: Dict[str, Any] = {}
    if current_step:
        changes["current_step"] = current_step
    if custom_data is not None:
        changes["saved_context"] = task.saved_context.model_copy(update={"custom_data": dict(custom_data)})
    return _transition(task, "await_input", **changes)


def receive_input(task: TaskState) -> TaskState:
    return _transition(task, "receive_input")


def advance_step(task: TaskState, current_step: str) -> TaskState:
    """Records progress inside RUNNING without changing the status."""
    if task.status != TaskStatus.RUNNING:
        raise IllegalTransition(f"Cannot advance task in {task.status.value} status")
    return task.model_copy(update={"current_step": current_step, "updated_at": _next_timestamp(task)})


def complete_task(task: TaskState) -> TaskState:
    timestamp = _next_timestamp(task)
    return _transition(task, "complete", completed_at=timestamp, updated_at=timestamp)


def fail_task(task: TaskState, error: Optional[str] = None) -> TaskState:
    return _transition(task, "fail", error=error or "Unknown error")


def can_pause(task: TaskState) -> bool:
    return task.status == TaskStatus.RUNNING


def can_resume(task: TaskState) -> bool:
    return task.status == TaskStatus.PAUSED


def is_terminal(task: TaskState) -> bool:
    return task.status in TASK_TERMINAL_STATUSES


def status_emoji(status: TaskStatus) -> str:
    return TASK_STATUS_EMOJI.get(status, "❓")


def describe_status(status: TaskStatus) -> str:
    return TASK_STATUS_DESCRIPTIONS.get(status, "Unknown")


# --- Turn stages ---

def new_turn(turn_id: Optional[str] = None) -> TurnState:
    return TurnState(turn_id=turn_id or f"turn_{uuid.uuid4().hex[:12]}")


def advance_turn(turn: TurnState, target: TurnStage) -> TurnState:
    """Moves a turn to the next stage or raises IllegalTransition."""
    result = validate_turn_transition(turn.stage, target)
    if not result["is_valid"]:
        raise IllegalTransition(result["message"])
    return turn.model_copy(update={"stage": target, "history": [*turn.history, target]})


def turn_finished(turn: TurnState) -> bool:
    return turn.stage in TURN_TERMINAL_STAGES
