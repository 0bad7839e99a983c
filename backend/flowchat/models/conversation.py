# /flowchat/models/conversation.py

import time
import uuid
from enum import Enum
from typing import Optional, List, Dict, Any
from pydantic import BaseModel, ConfigDict, Field

from flowchat.models.domain import Citation, TokenUsage


class Role(str, Enum):
    USER = "user"
    ASSISTANT = "assistant"
    TOOL = "tool"


class Step(str, Enum):
    """Pipeline step a message was produced in."""
    RETRIEVE = "retrieve"
    ANALYZE = "analyze"
    ACTION = "action"
    RESPOND = "respond"


def now_millis() -> int:
    return int(time.time() * 1000)


def new_message_id(prefix: str = "msg") -> str:
    return f"{prefix}_{uuid.uuid4().hex[:12]}"


class MessageMetadata(BaseModel):
    """Tags attached to every message for filtering and analytics."""
    model_config = ConfigDict(frozen=True)

    flow_key: str
    domain_category: str
    prompt_id: str
    step: Step
    detected_language: Optional[str] = None
    timestamp_millis: int = Field(default_factory=now_millis)
    model_id: Optional[str] = None
    token_usage: Optional[TokenUsage] = None
    finish_reason: Optional[str] = None
    retrieval_status: Optional[str] = None
    action_type: Optional[str] = None
    action_status: Optional[str] = None
    extra: Dict[str, Any] = Field(default_factory=dict)


class ConversationMessage(BaseModel):
    """
    One entry of the transcript.

    User messages are immutable. An assistant message starts as a placeholder
    and is swapped for its final version exactly once by the store.
    """
    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=new_message_id)
    role: Role
    content: str
    metadata: MessageMetadata
    citations: List[Citation] = Field(default_factory=list)
    is_placeholder: bool = False
    is_error: bool = False
