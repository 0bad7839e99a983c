# /flowchat/routes/actions.py

from typing import Optional
from fastapi import APIRouter, Depends

from flowchat.config.settings import settings
from flowchat.dependencies.session import get_conversation_service, get_session
from flowchat.models.api import APIResponse, ConfirmRecordRequest
from flowchat.services.conversation_service import ConversationService
from flowchat.services.session_store import ChatSession

# Host-platform actions: record drafting and creation, related-record popups
# and the leave balance lookup. Each one is guarded by the flow's allow-list.

router = APIRouter(prefix="/sessions/{session_id}", tags=["Actions"])


@router.post("/records/draft", response_model=APIResponse)
async def draft_record(
    session: ChatSession = Depends(get_session),
    service: ConversationService = Depends(get_conversation_service),
):
    draft = await service.propose_record(session)
    return APIResponse(
        success=True,
        message="Record draft ready for confirmation.",
        data={
            "task_id": draft.task.task_id,
            "status": draft.task.status.value,
            "fields": draft.fields,
            "message": draft.message.model_dump(mode="json"),
        },
        version=settings.api_version,
    )


@router.post("/records/{task_id}/confirm", response_model=APIResponse)
async def confirm_record(
    task_id: str,
    body: Optional[ConfirmRecordRequest] = None,
    session: ChatSession = Depends(get_session),
    service: ConversationService = Depends(get_conversation_service),
):
    """Host rejections come back as success=false with a dismissible notice."""
    outcome = await service.confirm_record(session, task_id, body.overrides if body else None)
    created = outcome.receipt is not None
    return APIResponse(
        success=created,
        message="Record created." if created else (outcome.notice or "Record creation failed."),
        data={
            "task_id": outcome.task.task_id,
            "status": outcome.task.status.value,
            "receipt": outcome.receipt.model_dump(mode="json") if outcome.receipt else None,
            "notice": outcome.notice,
            "message": outcome.message.model_dump(mode="json"),
        },
        version=settings.api_version,
    )


@router.post("/messages/{message_id}/open-related", response_model=APIResponse)
async def open_related(
    message_id: str,
    session: ChatSession = Depends(get_session),
    service: ConversationService = Depends(get_conversation_service),
):
    popup = await service.open_related_records(session, message_id)
    return APIResponse(
        success=popup.opened,
        message="Popup ready." if popup.opened else (popup.notice or "Popup unavailable."),
        data=popup.model_dump(mode="json"),
        version=settings.api_version,
    )


@router.get("/leave-balance", response_model=APIResponse)
async def leave_balance(
    session: ChatSession = Depends(get_session),
    service: ConversationService = Depends(get_conversation_service),
):
    lookup = await service.lookup_leave_balance(session)
    return APIResponse(
        success=True,
        message=lookup.message.content,
        data={"email": lookup.email, "balances": lookup.balances},
        version=settings.api_version,
    )
