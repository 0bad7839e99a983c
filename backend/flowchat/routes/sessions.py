# /flowchat/routes/sessions.py

from typing import Optional
from fastapi import APIRouter, Depends, Query

from flowchat.config.settings import settings
from flowchat.dependencies.session import get_conversation_service, get_session
from flowchat.models.api import (
    APIResponse,
    AskRequest,
    CreateSessionRequest,
    PauseTaskRequest,
    SelectFlowRequest,
)
from flowchat.models.conversation import Step
from flowchat.models.task import TurnStage
from flowchat.services.conversation_service import ConversationService
from flowchat.services.session_store import ChatSession
from flowchat.workflows import engine

# Session lifecycle, chat turns, transcript access and task pause/resume.

router = APIRouter(prefix="/sessions", tags=["Sessions"])


def _session_summary(session: ChatSession) -> dict:
    return {
        "session_id": session.session_id,
        "flow_key": session.flow_key,
        "host_mode": "host-integrated" if session.host_mode else "demo",
        "identity": session.identity.model_dump(mode="json") if session.identity else None,
        "message_count": session.store.count(),
        "turn_in_progress": session.turn_in_progress,
    }


def _task_summary(task) -> dict:
    data = task.model_dump(mode="json")
    data["status_emoji"] = engine.status_emoji(task.status)
    data["status_description"] = engine.describe_status(task.status)
    data["can_pause"] = engine.can_pause(task)
    data["can_resume"] = engine.can_resume(task)
    return data


@router.post("", response_model=APIResponse, status_code=201)
async def create_session(
    body: CreateSessionRequest,
    service: ConversationService = Depends(get_conversation_service),
):
    session = await service.start_session(body.flow_key)
    return APIResponse(
        success=True,
        message="Session created.",
        data=_session_summary(session),
        version=settings.api_version,
    )


@router.get("/{session_id}", response_model=APIResponse)
async def get_session_state(session: ChatSession = Depends(get_session)):
    return APIResponse(
        success=True,
        message="Session retrieved.",
        data=_session_summary(session),
        version=settings.api_version,
    )


@router.delete("/{session_id}", response_model=APIResponse)
async def delete_session(
    session: ChatSession = Depends(get_session),
    service: ConversationService = Depends(get_conversation_service),
):
    service.end_session(session.session_id)
    return APIResponse(success=True, message="Session ended.", version=settings.api_version)


@router.put("/{session_id}/flow", response_model=APIResponse)
async def select_flow(
    body: SelectFlowRequest,
    session: ChatSession = Depends(get_session),
    service: ConversationService = Depends(get_conversation_service),
):
    flow = service.select_flow(session, body.flow_key)
    return APIResponse(
        success=True,
        message=f"Flow switched to {flow.name}.",
        data={**_session_summary(session), "suggested_prompts": list(flow.suggested_prompts)},
        version=settings.api_version,
    )


@router.get("/{session_id}/messages", response_model=APIResponse)
async def list_messages(
    session: ChatSession = Depends(get_session),
    flow_key: Optional[str] = Query(default=None),
    step: Optional[Step] = Query(default=None),
    last: Optional[int] = Query(default=None, ge=1, le=500),
):
    if flow_key:
        messages = session.store.filter_by_flow(flow_key)
    elif step:
        messages = session.store.filter_by_step(step)
    else:
        messages = session.store.all()
    if last:
        messages = messages[-last:]
    return APIResponse(
        success=True,
        message=f"{len(messages)} messages retrieved.",
        data={"messages": [m.model_dump(mode="json") for m in messages]},
        version=settings.api_version,
    )


@router.post("/{session_id}/ask", response_model=APIResponse)
async def ask(
    body: AskRequest,
    session: ChatSession = Depends(get_session),
    service: ConversationService = Depends(get_conversation_service),
):
    """Runs one chat turn. A failed completion still answers 200 with success=false."""
    result = await service.handle_turn(session, body.message)
    succeeded = result.status == TurnStage.DONE
    return APIResponse(
        success=succeeded,
        message="Answer generated." if succeeded else "The answer could not be generated.",
        data={
            "turn_id": result.turn_id,
            "status": result.status.value,
            "stages": [stage.value for stage in result.stages],
            "message": result.message.model_dump(mode="json"),
            "task": _task_summary(result.task),
            "language": result.detection.model_dump(mode="json"),
            "retrieval_status": result.retrieval_status,
            "hints": result.hints,
        },
        version=settings.api_version,
    )


@router.get("/{session_id}/tasks/{task_id}", response_model=APIResponse)
async def get_task(task_id: str, session: ChatSession = Depends(get_session)):
    return APIResponse(
        success=True,
        message="Task retrieved.",
        data={"task": _task_summary(session.get_task(task_id))},
        version=settings.api_version,
    )


@router.post("/{session_id}/tasks/{task_id}/pause", response_model=APIResponse)
async def pause_task(
    task_id: str,
    body: Optional[PauseTaskRequest] = None,
    session: ChatSession = Depends(get_session),
    service: ConversationService = Depends(get_conversation_service),
):
    task = service.pause_task(session, task_id, body.custom_data if body else None)
    return APIResponse(
        success=True,
        message="Task paused.",
        data={"task": _task_summary(task)},
        version=settings.api_version,
    )


@router.post("/{session_id}/tasks/{task_id}/resume", response_model=APIResponse)
async def resume_task(
    task_id: str,
    session: ChatSession = Depends(get_session),
    service: ConversationService = Depends(get_conversation_service),
):
    task = service.resume_task(session, task_id)
    return APIResponse(
        success=True,
        message="Task resumed.",
        data={"task": _task_summary(task)},
        version=settings.api_version,
    )
