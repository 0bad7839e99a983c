# /flowchat/dependencies/session.py

from fastapi import Depends, Path

from flowchat.services.conversation_service import ConversationService, conversation_service
from flowchat.services.session_store import ChatSession


def get_conversation_service() -> ConversationService:
    """Orchestrator dependency; tests override it with app.dependency_overrides."""
    return conversation_service


def get_session(
    session_id: str = Path(..., min_length=1, max_length=64),
    service: ConversationService = Depends(get_conversation_service),
) -> ChatSession:
    """
    Resolve the in-memory chat session named in the path.

    Raises:
        SessionNotFound: rendered as 404 by the application error handler
    """
    return service.sessions.get(session_id)
