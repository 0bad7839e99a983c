# backend/tests/unit/test_task_engine.py
import pytest

from flowchat.errors import IllegalTransition
from flowchat.models.task import TaskStatus, TaskType, TurnStage
from flowchat.workflows import engine
from flowchat.workflows.validator import validate_task_event, validate_turn_transition


def running_task():
    return engine.start_task(engine.create_task("HR", TaskType.ANALYSIS, "analyze"))


def test_create_task_starts_idle():
    task = engine.create_task("CRM", TaskType.WORKFLOW, "draft_record")
    assert task.status == TaskStatus.IDLE
    assert task.task_id.startswith("task_")
    assert task.created_at == task.updated_at


def test_pause_running_task_records_context():
    """RUNNING -> PAUSED stores the message count and a later timestamp."""
    task = running_task()
    paused = engine.pause_task(task, 4, last_message_id="msg_abc", custom_data={"note": "later"})

    assert paused.status == TaskStatus.PAUSED
    assert paused.saved_context.message_count_at_pause == 4
    assert paused.saved_context.last_message_id == "msg_abc"
    assert paused.saved_context.custom_data == {"note": "later"}
    assert paused.updated_at > task.updated_at


@pytest.mark.parametrize("prepare", [
    lambda t: engine.pause_task(t, 1),
    lambda t: engine.complete_task(t),
    lambda t: engine.fail_task(t, "boom"),
])
def test_pause_outside_running_is_illegal(prepare):
    """The rejected snapshot is left exactly as it was."""
    task = prepare(running_task())
    before = task.model_copy()
    with pytest.raises(IllegalTransition):
        engine.pause_task(task, 2)
    assert task == before


def test_pause_rejects_negative_message_count():
    with pytest.raises(IllegalTransition):
        engine.pause_task(running_task(), -1)


def test_resume_requires_paused():
    task = running_task()
    with pytest.raises(IllegalTransition):
        engine.resume_task(task)

    resumed = engine.resume_task(engine.pause_task(task, 2))
    assert resumed.status == TaskStatus.RUNNING
    assert resumed.saved_context.message_count_at_pause == 2


def test_paused_task_can_still_complete():
    """Pause is bookkeeping only; the in-flight turn still finishes."""
    done = engine.complete_task(engine.pause_task(running_task(), 3))
    assert done.status == TaskStatus.COMPLETED
    assert done.completed_at is not None


def test_terminal_tasks_accept_no_events():
    for task in (engine.complete_task(running_task()), engine.fail_task(running_task(), "x")):
        assert engine.is_terminal(task)
        for event in ("start", "pause", "resume", "complete", "fail", "await_input"):
            assert validate_task_event(event, task.status)["is_valid"] is False


def test_waiting_input_round_trip():
    task = engine.await_input(running_task(), current_step="confirm_record", custom_data={"draft": {"a": "b"}})
    assert task.status == TaskStatus.WAITING_INPUT
    assert task.current_step == "confirm_record"
    assert task.saved_context.custom_data["draft"] == {"a": "b"}

    with pytest.raises(IllegalTransition):
        engine.pause_task(task, 1)
    assert engine.receive_input(task).status == TaskStatus.RUNNING


def test_advance_step_only_while_running():
    task = engine.advance_step(running_task(), "respond")
    assert task.current_step == "respond"
    with pytest.raises(IllegalTransition):
        engine.advance_step(engine.pause_task(task, 1), "retrieve")


def test_updated_at_strictly_increases():
    task = running_task()
    stamps = [task.updated_at]
    task = engine.pause_task(task, 1)
    stamps.append(task.updated_at)
    task = engine.resume_task(task)
    stamps.append(task.updated_at)
    task = engine.complete_task(task)
    stamps.append(task.updated_at)
    assert stamps == sorted(set(stamps))


def test_unknown_event_is_reported():
    result = engine.apply_task_event(running_task(), "explode")
    assert result["applied"] is False
    assert "explode" in result["reason"]


def test_status_helpers():
    task = running_task()
    assert engine.can_pause(task)
    assert not engine.can_resume(task)
    assert engine.describe_status(TaskStatus.PAUSED) == "Paused"
    assert engine.status_emoji(TaskStatus.COMPLETED) == "✅"


# --- Turn stages ---

def test_turn_happy_path():
    turn = engine.new_turn()
    for stage in (
        TurnStage.PLACEHOLDER_SHOWN,
        TurnStage.DETECTING_LANGUAGE,
        TurnStage.RETRIEVING,
        TurnStage.COMPLETING,
        TurnStage.FINALIZING,
        TurnStage.DONE,
    ):
        turn = engine.advance_turn(turn, stage)
    assert engine.turn_finished(turn)
    assert turn.history[0] == TurnStage.RECEIVED
    assert turn.history[-1] == TurnStage.DONE


def test_turn_may_skip_retrieval():
    turn = engine.new_turn()
    turn = engine.advance_turn(turn, TurnStage.PLACEHOLDER_SHOWN)
    turn = engine.advance_turn(turn, TurnStage.DETECTING_LANGUAGE)
    turn = engine.advance_turn(turn, TurnStage.COMPLETING)
    assert turn.stage == TurnStage.COMPLETING


def test_turn_cannot_skip_stages_or_leave_terminal():
    with pytest.raises(IllegalTransition):
        engine.advance_turn(engine.new_turn(), TurnStage.COMPLETING)

    failed = engine.advance_turn(engine.new_turn(), TurnStage.FAILED)
    assert engine.turn_finished(failed)
    assert validate_turn_transition(TurnStage.FAILED, TurnStage.DONE)["is_valid"] is False
    with pytest.raises(IllegalTransition):
        engine.advance_turn(failed, TurnStage.DONE)
