# backend/tests/unit/test_session_store.py
import pytest

from flowchat.errors import IllegalTransition, SessionNotFound, TaskNotFound
from flowchat.models.conversation import ConversationMessage, MessageMetadata, Role, Step
from flowchat.services.session_store import ConversationStore, SessionRegistry


def make_message(content, role=Role.USER, flow_key="HR", step=Step.ANALYZE, placeholder=False):
    return ConversationMessage(
        role=role,
        content=content,
        is_placeholder=placeholder,
        metadata=MessageMetadata(flow_key=flow_key, domain_category=flow_key, prompt_id=f"{flow_key}:default", step=step),
    )


def test_append_preserves_order_and_rejects_duplicates():
    store = ConversationStore()
    first = store.append(make_message("one"))
    store.append(make_message("two"))

    assert [m.content for m in store.all()] == ["one", "two"]
    with pytest.raises(ValueError):
        store.append(first)


def test_placeholder_is_replaced_exactly_once():
    store = ConversationStore()
    placeholder = store.append(make_message("processing…", role=Role.ASSISTANT, placeholder=True))

    final = store.replace_placeholder(placeholder.id, make_message("Fifteen days.", role=Role.ASSISTANT, step=Step.RESPOND))
    assert final.id == placeholder.id
    assert store.get(placeholder.id).content == "Fifteen days."
    assert len(store) == 1

    with pytest.raises(IllegalTransition):
        store.replace_placeholder(placeholder.id, make_message("again", role=Role.ASSISTANT))


def test_replace_placeholder_requires_known_id():
    with pytest.raises(KeyError):
        ConversationStore().replace_placeholder("msg_missing", make_message("x", role=Role.ASSISTANT))


def test_user_messages_cannot_be_replaced():
    store = ConversationStore()
    user = store.append(make_message("question"))
    with pytest.raises(IllegalTransition):
        store.replace_placeholder(user.id, make_message("edited"))


def test_recent_window_and_filters():
    store = ConversationStore()
    store.append(make_message("hr question"))
    store.append(make_message("crm question", flow_key="CRM"))
    store.append(make_message("hr answer", role=Role.ASSISTANT, step=Step.RESPOND))

    assert [m.content for m in store.recent_window(2)] == ["crm question", "hr answer"]
    assert store.recent_window(0) == []
    assert [m.content for m in store.filter_by_flow("HR")] == ["hr question", "hr answer"]
    assert [m.content for m in store.filter_by_step(Step.RESPOND)] == ["hr answer"]
    assert store.count() == 3


def test_session_registry_lifecycle():
    registry = SessionRegistry()
    session = registry.create()
    assert registry.get(session.session_id) is session
    assert len(registry) == 1

    assert registry.remove(session.session_id) is True
    assert registry.remove(session.session_id) is False
    with pytest.raises(SessionNotFound):
        registry.get(session.session_id)


def test_session_unknown_task():
    session = SessionRegistry().create()
    with pytest.raises(TaskNotFound):
        session.get_task("task_missing")
    assert session.turn_in_progress is False
