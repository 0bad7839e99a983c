# /flowchat/services/session_store.py

import asyncio
import logging
import uuid
from typing import Dict, List, Optional

from flowchat.errors import IllegalTransition, SessionNotFound, TaskNotFound
from flowchat.models.conversation import ConversationMessage, Step
from flowchat.models.domain import UserIdentity
from flowchat.models.task import TaskState
from flowchat.utils.metrics import active_sessions_gauge

# In-memory, non-persistent conversation state. The orchestrator is the only
# writer; nothing here survives a process restart.

logger = logging.getLogger(__name__)


class ConversationStore:
    """Ordered, append-only transcript with a one-shot placeholder swap."""

    def __init__(self):
        self._messages: List[ConversationMessage] = []
        self._index: Dict[str, int] = {}

    def append(self, message: ConversationMessage) -> ConversationMessage:
        if message.id in self._index:
            raise ValueError(f"Duplicate message id: {message.id}")
        self._index[message.id] = len(self._messages)
        self._messages.append(message)
        return message

    def replace_placeholder(self, message_id: str, final: ConversationMessage) -> ConversationMessage:
        """Swaps a placeholder for its final version. Allowed exactly once."""
        position = self._index.get(message_id)
        if position is None:
            raise KeyError(message_id)
        current = self._messages[position]
        if not current.is_placeholder:
            raise IllegalTransition(f"Message {message_id} was already finalized")
        if final.is_placeholder:
            raise IllegalTransition("A placeholder cannot replace a placeholder")
        final = final.model_copy(update={"id": message_id})
        self._messages[position] = final
        return final

    def get(self, message_id: str) -> Optional[ConversationMessage]:
        position = self._index.get(message_id)
        return self._messages[position] if position is not None else None

    def recent_window(self, n: int) -> List[ConversationMessage]:
        if n <= 0:
            return []
        return list(self._messages[-n:])

    def filter_by_flow(self, flow_key: str) -> List[ConversationMessage]:
        return [m for m in self._messages if m.metadata.flow_key == flow_key]

    def filter_by_step(self, step: Step) -> List[ConversationMessage]:
        return [m for m in self._messages if m.metadata.step == step]

    def all(self) -> List[ConversationMessage]:
        return list(self._messages)

    def count(self) -> int:
        return len(self._messages)

    def __len__(self) -> int:
        return len(self._messages)


class ChatSession:
    """State of one embedded chat: transcript, active flow, identity and tasks."""

    def __init__(self, session_id: str, identity: Optional[UserIdentity] = None, host_mode: bool = False):
        self.session_id = session_id
        self.store = ConversationStore()
        self.flow_key: Optional[str] = None
        self.identity = identity
        self.host_mode = host_mode
        self.tasks: Dict[str, TaskState] = {}
        self.turn_lock = asyncio.Lock()

    def save_task(self, task: TaskState) -> TaskState:
        self.tasks[task.task_id] = task
        return task

    def get_task(self, task_id: str) -> TaskState:
        task = self.tasks.get(task_id)
        if task is None:
            raise TaskNotFound(f"Task {task_id} not found in session {self.session_id}")
        return task

    @property
    def turn_in_progress(self) -> bool:
        return self.turn_lock.locked()


class SessionRegistry:
    def __init__(self):
        self._sessions: Dict[str, ChatSession] = {}

    def create(self, identity: Optional[UserIdentity] = None, host_mode: bool = False) -> ChatSession:
        session = ChatSession(f"sess_{uuid.uuid4().hex}", identity=identity, host_mode=host_mode)
        self._sessions[session.session_id] = session
        active_sessions_gauge.set(len(self._sessions))
        logger.info(f"Session {session.session_id} created (host_mode={host_mode})")
        return session

    def get(self, session_id: str) -> ChatSession:
        session = self._sessions.get(session_id)
        if session is None:
            raise SessionNotFound(f"Session {session_id} not found")
        return session

    def remove(self, session_id: str) -> bool:
        removed = self._sessions.pop(session_id, None) is not None
        active_sessions_gauge.set(len(self._sessions))
        return removed

    def clear(self):
        self._sessions.clear()
        active_sessions_gauge.set(0)

    def __len__(self) -> int:
        return len(self._sessions)


# Globally accessible instance
session_registry = SessionRegistry()
