# /flowchat/models/task.py

from enum import Enum
from typing import Optional, List, Dict, Any
from pydantic import BaseModel, ConfigDict, Field

from flowchat.models.conversation import now_millis


class TaskStatus(str, Enum):
    IDLE = "IDLE"
    RUNNING = "RUNNING"
    PAUSED = "PAUSED"
    WAITING_INPUT = "WAITING_INPUT"
    FAILED = "FAILED"
    COMPLETED = "COMPLETED"


class TaskType(str, Enum):
    ANALYSIS = "analysis"
    WORKFLOW = "workflow"
    ACTION = "action"


class TurnStage(str, Enum):
    RECEIVED = "RECEIVED"
    PLACEHOLDER_SHOWN = "PLACEHOLDER_SHOWN"
    DETECTING_LANGUAGE = "DETECTING_LANGUAGE"
    RETRIEVING = "RETRIEVING"
    COMPLETING = "COMPLETING"
    FINALIZING = "FINALIZING"
    DONE = "DONE"
    FAILED = "FAILED"


class SavedContext(BaseModel):
    """Resumption point recorded when a task is paused."""
    model_config = ConfigDict(frozen=True)

    message_count_at_pause: int = 0
    last_message_id: Optional[str] = None
    custom_data: Dict[str, Any] = Field(default_factory=dict)


class TaskState(BaseModel):
    """Immutable snapshot; transitions in workflows.engine return a new one."""
    model_config = ConfigDict(frozen=True)

    task_id: str
    status: TaskStatus = TaskStatus.IDLE
    task_type: TaskType = TaskType.ANALYSIS
    flow_key: str
    current_step: str
    saved_context: SavedContext = Field(default_factory=SavedContext)
    created_at: int = Field(default_factory=now_millis)
    updated_at: int = Field(default_factory=now_millis)
    completed_at: Optional[int] = None
    error: Optional[str] = None


class TurnState(BaseModel):
    model_config = ConfigDict(frozen=True)

    turn_id: str
    stage: TurnStage = TurnStage.RECEIVED
    history: List[TurnStage] = Field(default_factory=lambda: [TurnStage.RECEIVED])
