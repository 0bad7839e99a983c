# backend/tests/conftest.py
import os
import pytest
from typing import Any, Dict, List, Optional
from unittest.mock import AsyncMock, MagicMock
from dotenv import load_dotenv
from fastapi.testclient import TestClient

# Load the test environment FIRST, before any flowchat imports, so Settings
# finds the required variables when the modules are imported.
load_dotenv(dotenv_path=os.path.join(os.path.dirname(os.path.dirname(__file__)), ".env.test"))

from flowchat.dependencies.session import get_conversation_service  # noqa: E402
from flowchat.errors import SdkError  # noqa: E402
from flowchat.main import app  # noqa: E402
from flowchat.models.domain import CompletionResult, TokenUsage  # noqa: E402
from flowchat.services.conversation_service import ConversationService  # noqa: E402
from flowchat.services.flow_registry import flow_registry  # noqa: E402
from flowchat.services.host_gateway import HostGateway  # noqa: E402
from flowchat.services.language_service import ScriptPatternDetector  # noqa: E402
from flowchat.services.retrieval_service import RetrievalService  # noqa: E402
from flowchat.services.session_store import SessionRegistry  # noqa: E402


class FakeHostSDK:
    """In-memory stand-in for the host platform that records every call."""

    def __init__(
        self,
        available: bool = True,
        user: Optional[Dict[str, Any]] = None,
        created: Optional[Dict[str, Any]] = None,
        rows: Optional[List[Dict[str, Any]]] = None,
        fail_create: bool = False,
        fail_popup: bool = False,
    ):
        self.available = available
        self.user = user or {
            "user_id": "U-100",
            "account_id": "AC-1",
            "display_name": "Somchai",
            "email": "somchai@example.com",
        }
        self.created = created or {"_id": "Pk_001", "_activity_instance_id": "Ai_001"}
        self.rows = rows or []
        self.fail_create = fail_create
        self.fail_popup = fail_popup
        self.calls: List[tuple] = []

    async def ping(self) -> bool:
        self.calls.append(("ping",))
        if not self.available:
            raise SdkError("host unreachable")
        return True

    async def current_user(self) -> Dict[str, Any]:
        self.calls.append(("current_user",))
        return dict(self.user)

    async def create_item(self, process_id: str, fields: Dict[str, Any]) -> Dict[str, Any]:
        self.calls.append(("create_item", process_id, dict(fields)))
        if self.fail_create:
            raise SdkError("Kissflow API error: 400 invalid field")
        return dict(self.created)

    async def list_dataset(self, dataset_id, view_id, filters, limit):
        self.calls.append(("list_dataset", dataset_id, view_id, dict(filters), limit))
        return list(self.rows)

    async def open_popup(self, popup_ref, params):
        self.calls.append(("open_popup", popup_ref, dict(params)))
        if self.fail_popup:
            raise SdkError("popup blocked")
        return {"popup_ref": popup_ref, "params": dict(params)}

    def called(self, name: str) -> bool:
        return any(call[0] == name for call in self.calls)


def make_completion(content: str = "Employees receive 15 vacation days per year [1].") -> CompletionResult:
    return CompletionResult(
        content=content,
        token_usage=TokenUsage(prompt=120, completion=30, total=150),
        model_id="gpt-4o-mini",
        finish_reason="stop",
    )


@pytest.fixture
def fake_sdk():
    return FakeHostSDK()


@pytest.fixture
def host_gateway(fake_sdk):
    return HostGateway(fake_sdk, flow_registry)


@pytest.fixture
def demo_gateway():
    return HostGateway(None, flow_registry)


@pytest.fixture
def mock_ai():
    """AIService double: every network-facing method is an AsyncMock."""
    ai = MagicMock()
    ai.embed = AsyncMock(return_value=[0.1, 0.2, 0.3])
    ai.complete = AsyncMock(return_value=make_completion())
    ai.translate = AsyncMock(side_effect=lambda text, target: f"[{target}] {text}")
    ai.draft_record_fields = AsyncMock(return_value={
        "Case_Title": "Printer broken",
        "Case_Type": "Technical Support",
        "Case_Description": "The office printer does not turn on.",
        "AI_Suggestions": "Check the power cable.",
        "Solution_Description": "Replace the fuse.",
    })
    return ai


@pytest.fixture
def mock_weaviate():
    client = MagicMock()
    client.search = AsyncMock(return_value=[])
    client.aclose = AsyncMock()
    return client


@pytest.fixture
def retrieval(mock_ai, mock_weaviate):
    return RetrievalService(flow_registry, mock_ai, mock_weaviate)


@pytest.fixture
def conversation(mock_ai, retrieval, host_gateway):
    return ConversationService(
        flow_registry,
        mock_ai,
        retrieval,
        ScriptPatternDetector(0.4),
        gateway_provider=lambda: host_gateway,
        sessions=SessionRegistry(),
        history_window=6,
        max_input_chars=5000,
    )


@pytest.fixture
def demo_conversation(mock_ai, retrieval, demo_gateway):
    return ConversationService(
        flow_registry,
        mock_ai,
        retrieval,
        ScriptPatternDetector(0.4),
        gateway_provider=lambda: demo_gateway,
        sessions=SessionRegistry(),
    )


@pytest.fixture
def sdk_factory():
    """Builds FakeHostSDK instances with per-test behaviour."""
    return FakeHostSDK


@pytest.fixture
def completion_factory():
    return make_completion


@pytest.fixture(scope="function")
def test_client(conversation):
    """
    TestClient wired to the test orchestrator. The lifespan still runs, so the
    host probe and shutdown cleanup are exercised in demo mode.
    """
    app.dependency_overrides[get_conversation_service] = lambda: conversation
    with TestClient(app) as client:
        yield client
    app.dependency_overrides.clear()
