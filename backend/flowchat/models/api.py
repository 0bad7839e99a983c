# /flowchat/models/api.py

from pydantic import BaseModel, Field
from typing import Dict, Optional, Any
from datetime import datetime, timezone

# Pydantic models for API request and response bodies.


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class APIResponse(BaseModel):
    success: bool
    message: str
    data: Optional[Dict[str, Any]] = None
    timestamp: datetime = Field(default_factory=_utcnow)
    version: str


class CreateSessionRequest(BaseModel):
    flow_key: Optional[str] = Field(default=None, max_length=64)


class SelectFlowRequest(BaseModel):
    flow_key: str = Field(..., min_length=1, max_length=64)


class AskRequest(BaseModel):
    # Length rules live in the orchestrator so they surface as INVALID_INPUT.
    message: str


class PauseTaskRequest(BaseModel):
    custom_data: Dict[str, Any] = Field(default_factory=dict)


class ConfirmRecordRequest(BaseModel):
    overrides: Dict[str, str] = Field(default_factory=dict)
