# /flowchat/workflows/definitions.py

"""
State machine definitions as pure data (no logic).

TURN_TRANSITIONS maps each per-turn stage to the stages it may move to.
FAILED is reachable from every non-terminal stage.

TASK_TRANSITIONS maps each task event to:
- from_statuses: statuses the event is accepted in
- to_status: the resulting status
"""

from typing import Dict, Any, FrozenSet

from flowchat.models.task import TaskStatus, TurnStage

TURN_TERMINAL_STAGES: FrozenSet[TurnStage] = frozenset({TurnStage.DONE, TurnStage.FAILED})

TURN_TRANSITIONS: Dict[TurnStage, FrozenSet[TurnStage]] = {
    TurnStage.RECEIVED: frozenset({TurnStage.PLACEHOLDER_SHOWN, TurnStage.FAILED}),
    TurnStage.PLACEHOLDER_SHOWN: frozenset({TurnStage.DETECTING_LANGUAGE, TurnStage.FAILED}),
    TurnStage.DETECTING_LANGUAGE: frozenset(
        {TurnStage.RETRIEVING, TurnStage.COMPLETING, TurnStage.FAILED}
    ),
    TurnStage.RETRIEVING: frozenset({TurnStage.COMPLETING, TurnStage.FAILED}),
    TurnStage.COMPLETING: frozenset({TurnStage.FINALIZING, TurnStage.FAILED}),
    TurnStage.FINALIZING: frozenset({TurnStage.DONE, TurnStage.FAILED}),
    TurnStage.DONE: frozenset(),
    TurnStage.FAILED: frozenset(),
}

TASK_TERMINAL_STATUSES: FrozenSet[TaskStatus] = frozenset({TaskStatus.COMPLETED, TaskStatus.FAILED})

TASK_TRANSITIONS: Dict[str, Dict[str, Any]] = {
    "start": {
        "from_statuses": frozenset({TaskStatus.IDLE}),
        "to_status": TaskStatus.RUNNING,
    },
    "pause": {
        "from_statuses": frozenset({TaskStatus.RUNNING}),
        "to_status": TaskStatus.PAUSED,
    },
    "resume": {
        "from_statuses": frozenset({TaskStatus.PAUSED}),
        "to_status": TaskStatus.RUNNING,
    },
    "await_input": {
        "from_statuses": frozenset({TaskStatus.RUNNING}),
        "to_status": TaskStatus.WAITING_INPUT,
    },
    "receive_input": {
        "from_statuses": frozenset({TaskStatus.WAITING_INPUT}),
        "to_status": TaskStatus.RUNNING,
    },
    "complete": {
        "from_statuses": frozenset({TaskStatus.RUNNING, TaskStatus.PAUSED}),
        "to_status": TaskStatus.COMPLETED,
    },
    "fail": {
        "from_statuses": frozenset(
            {TaskStatus.IDLE, TaskStatus.RUNNING, TaskStatus.PAUSED, TaskStatus.WAITING_INPUT}
        ),
        "to_status": TaskStatus.FAILED,
    },
}

TASK_STATUS_EMOJI: Dict[TaskStatus, str] = {
    TaskStatus.IDLE: "⏸️",
    TaskStatus.RUNNING: "⏳",
    TaskStatus.PAUSED: "⏸️",
    TaskStatus.WAITING_INPUT: "⏳",
    TaskStatus.FAILED: "❌",
    TaskStatus.COMPLETED: "✅",
}

TASK_STATUS_DESCRIPTIONS: Dict[TaskStatus, str] = {
    TaskStatus.IDLE: "Ready",
    TaskStatus.RUNNING: "Processing...",
    TaskStatus.PAUSED: "Paused",
    TaskStatus.WAITING_INPUT: "Waiting for input",
    TaskStatus.FAILED: "Failed",
    TaskStatus.COMPLETED: "Completed",
}
