# backend/tests/integration/test_api.py
from flowchat.config import strings
from flowchat.config.settings import settings
from flowchat.errors import ProviderError

API_PREFIX = f"/api/{settings.api_version}"


def hr_hit():
    return {
        "instanceID": "HR-1",
        "documentDetail": "Employees receive 15 vacation days per year.",
        "requesterName": "Vacation Policy",
        "_additional": {"certainty": 0.82},
    }


def create_session(client, flow_key="HR"):
    response = client.post(f"{API_PREFIX}/sessions", json={"flow_key": flow_key})
    assert response.status_code == 201
    return response.json()["data"]["session_id"]


# --- Public endpoints ---

def test_root_and_health(test_client):
    assert test_client.get("/").json()["status"] == "operational"
    assert test_client.get("/health").json()["status"] == "healthy"


def test_detailed_health_reports_demo_mode(test_client):
    response = test_client.get("/health/detailed")
    assert response.status_code == 200
    data = response.json()["data"]
    assert data["services"]["host_platform"] == "demo"
    assert data["flows"] == 4


def test_metrics_endpoint(test_client):
    response = test_client.get("/metrics")
    assert response.status_code == 200
    assert "flowchat_turns_total" in response.text


# --- Flows ---

def test_list_flows(test_client):
    response = test_client.get(f"{API_PREFIX}/flows")
    assert response.status_code == 200
    flows = response.json()["data"]["flows"]
    assert [f["key"] for f in flows] == ["HR", "TOR", "CRM", "LEAVE"]
    assert flows[0]["permitted_actions"] == ["ANSWER_ONLY"]


def test_unknown_flow_is_404(test_client):
    response = test_client.get(f"{API_PREFIX}/flows/FINANCE")
    assert response.status_code == 404
    assert response.json() == {"success": False, "error": "UNKNOWN_FLOW", "message": "Unknown flow: FINANCE"}


# --- Sessions and turns ---

def test_create_session_resolves_identity(test_client):
    response = test_client.post(f"{API_PREFIX}/sessions", json={"flow_key": "HR"})
    assert response.status_code == 201
    data = response.json()["data"]
    assert data["flow_key"] == "HR"
    assert data["host_mode"] == "host-integrated"
    assert data["identity"]["email"] == "somchai@example.com"


def test_ask_returns_grounded_answer(test_client, mock_weaviate):
    mock_weaviate.search.return_value = [hr_hit()]
    session_id = create_session(test_client)

    response = test_client.post(f"{API_PREFIX}/sessions/{session_id}/ask", json={"message": "What is the vacation policy?"})

    assert response.status_code == 200
    body = response.json()
    assert body["success"] is True
    assert body["data"]["status"] == "DONE"
    assert body["data"]["message"]["citations"][0]["index"] == 1
    assert body["data"]["message"]["metadata"]["step"] == "respond"
    assert body["data"]["task"]["status"] == "COMPLETED"
    assert body["data"]["retrieval_status"] == "ok"


def test_ask_with_provider_failure_reports_error_message(test_client, mock_ai):
    mock_ai.complete.side_effect = ProviderError("OpenAI API error: timeout")
    session_id = create_session(test_client)

    response = test_client.post(f"{API_PREFIX}/sessions/{session_id}/ask", json={"message": "What is the vacation policy?"})

    assert response.status_code == 200
    body = response.json()
    assert body["success"] is False
    assert body["data"]["status"] == "FAILED"
    assert body["data"]["message"]["content"].startswith(strings.ERROR_PREFIX)
    assert body["data"]["message"]["citations"] == []


def test_ask_with_empty_message_is_invalid(test_client):
    session_id = create_session(test_client)
    response = test_client.post(f"{API_PREFIX}/sessions/{session_id}/ask", json={"message": "  "})
    assert response.status_code == 422
    assert response.json()["error"] == "INVALID_INPUT"


def test_ask_before_selecting_flow_is_conflict(test_client):
    response = test_client.post(f"{API_PREFIX}/sessions", json={})
    session_id = response.json()["data"]["session_id"]

    response = test_client.post(f"{API_PREFIX}/sessions/{session_id}/ask", json={"message": "hello"})
    assert response.status_code == 409
    assert response.json()["error"] == "NOT_INITIALIZED"


def test_unknown_session_is_404(test_client):
    response = test_client.post(f"{API_PREFIX}/sessions/sess_missing/ask", json={"message": "hello"})
    assert response.status_code == 404
    assert response.json()["error"] == "SESSION_NOT_FOUND"


def test_switch_flow_returns_suggested_prompts(test_client):
    session_id = create_session(test_client)
    response = test_client.put(f"{API_PREFIX}/sessions/{session_id}/flow", json={"flow_key": "CRM"})
    assert response.status_code == 200
    data = response.json()["data"]
    assert data["flow_key"] == "CRM"
    assert "ระบบล่ม" in data["suggested_prompts"]


def test_list_messages_with_filters(test_client):
    session_id = create_session(test_client)
    test_client.post(f"{API_PREFIX}/sessions/{session_id}/ask", json={"message": "What is the vacation policy?"})

    all_messages = test_client.get(f"{API_PREFIX}/sessions/{session_id}/messages").json()["data"]["messages"]
    assert [m["role"] for m in all_messages] == ["user", "assistant"]

    responses = test_client.get(
        f"{API_PREFIX}/sessions/{session_id}/messages", params={"step": "respond"}
    ).json()["data"]["messages"]
    assert len(responses) == 1
    assert responses[0]["role"] == "assistant"


def test_delete_session(test_client):
    session_id = create_session(test_client)
    assert test_client.delete(f"{API_PREFIX}/sessions/{session_id}").status_code == 200
    assert test_client.get(f"{API_PREFIX}/sessions/{session_id}").status_code == 404


# --- Tasks ---

def test_pause_finished_task_is_conflict(test_client):
    session_id = create_session(test_client)
    ask = test_client.post(f"{API_PREFIX}/sessions/{session_id}/ask", json={"message": "What is the vacation policy?"})
    task_id = ask.json()["data"]["task"]["task_id"]

    response = test_client.post(
        f"{API_PREFIX}/sessions/{session_id}/tasks/{task_id}/pause", json={"custom_data": {"note": "later"}}
    )
    assert response.status_code == 409
    assert response.json()["error"] == "ILLEGAL_TRANSITION"

    task = test_client.get(f"{API_PREFIX}/sessions/{session_id}/tasks/{task_id}").json()["data"]["task"]
    assert task["status"] == "COMPLETED"
    assert task["status_emoji"] == "✅"


def test_unknown_task_is_404(test_client):
    session_id = create_session(test_client)
    response = test_client.get(f"{API_PREFIX}/sessions/{session_id}/tasks/task_missing")
    assert response.status_code == 404


# --- Host actions ---

def test_record_draft_forbidden_for_hr(test_client, fake_sdk):
    session_id = create_session(test_client)
    test_client.post(f"{API_PREFIX}/sessions/{session_id}/ask", json={"message": "What is the vacation policy?"})

    response = test_client.post(f"{API_PREFIX}/sessions/{session_id}/records/draft")

    assert response.status_code == 403
    assert response.json()["error"] == "ACTION_NOT_PERMITTED"
    assert not fake_sdk.called("create_item")


def test_record_draft_and_confirm_for_crm(test_client, fake_sdk):
    session_id = create_session(test_client, "CRM")
    test_client.post(f"{API_PREFIX}/sessions/{session_id}/ask", json={"message": "เครื่องพิมพ์เสีย"})

    draft = test_client.post(f"{API_PREFIX}/sessions/{session_id}/records/draft")
    assert draft.status_code == 200
    task_id = draft.json()["data"]["task_id"]
    assert draft.json()["data"]["status"] == "WAITING_INPUT"

    confirm = test_client.post(
        f"{API_PREFIX}/sessions/{session_id}/records/{task_id}/confirm",
        json={"overrides": {"Case_Title": "Printer fuse"}},
    )
    assert confirm.status_code == 200
    body = confirm.json()
    assert body["success"] is True
    assert body["data"]["receipt"]["record_id"] == "Pk_001"
    assert fake_sdk.called("create_item")


def test_leave_balance_endpoint(test_client, fake_sdk):
    fake_sdk.rows = [{
        "Employee_Email": "somchai@example.com",
        "Vacation_Leave_Balance": 7,
        "Personal_Leave_Balance": 3,
        "Sick_Leave_Balance": 30,
    }]
    session_id = create_session(test_client, "LEAVE")

    response = test_client.get(f"{API_PREFIX}/sessions/{session_id}/leave-balance")

    assert response.status_code == 200
    assert response.json()["data"]["balances"] == {"Vacation": 7, "Personal": 3, "Sick": 30}
