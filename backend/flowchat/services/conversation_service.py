# /flowchat/services/conversation_service.py

import json
import time
from typing import Any, Callable, Dict, List, Optional, Tuple

import structlog
from pydantic import BaseModel, Field

from flowchat.config import strings
from flowchat.config.prompts import LANGUAGE_INSTRUCTION
from flowchat.config.settings import settings
from flowchat.errors import (
    ActionNotPermitted,
    FlowChatError,
    IllegalTransition,
    InvalidInput,
    NotInitialized,
    ProviderError,
    RetrievalError,
    SdkError,
    SdkUnavailable,
    TurnInProgress,
    ValidationError,
)
from flowchat.models.conversation import (
    ConversationMessage,
    MessageMetadata,
    Role,
    Step,
)
from flowchat.models.domain import (
    Citation,
    CompletionResult,
    LanguageDetection,
    PopupResult,
    RecordReceipt,
    RetrievalResult,
    UserIdentity,
)
from flowchat.models.flow import Action, FlowDefinition
from flowchat.models.task import TaskState, TaskStatus, TaskType, TurnStage, TurnState
from flowchat.services.ai_service import AIService, ai_service
from flowchat.services.flow_registry import FlowRegistry, flow_registry
from flowchat.services.host_gateway import HostGateway, get_host_gateway
from flowchat.services.language_service import LanguageDetector, get_language_name, language_detector
from flowchat.services.retrieval_service import RetrievalService, retrieval_service
from flowchat.services.session_store import ChatSession, SessionRegistry, session_registry
from flowchat.utils.metrics import turn_counter, turn_latency_histogram
from flowchat.workflows import engine

# Conversation orchestrator. One turn runs
# RECEIVED -> PLACEHOLDER_SHOWN -> DETECTING_LANGUAGE -> [RETRIEVING] ->
# COMPLETING -> FINALIZING -> DONE, with FAILED reachable from any stage.
# Each turn owns a TaskState that the user may pause and resume; pausing is
# bookkeeping only and never interrupts the in-flight request.

logger = structlog.get_logger(__name__)


class TurnResult(BaseModel):
    turn_id: str
    status: TurnStage
    stages: List[TurnStage]
    user_message: ConversationMessage
    message: ConversationMessage
    task: TaskState
    detection: LanguageDetection
    retrieval_status: str
    hints: List[str] = Field(default_factory=list)


class RecordDraft(BaseModel):
    task: TaskState
    fields: Dict[str, str]
    message: ConversationMessage


class RecordOutcome(BaseModel):
    task: TaskState
    receipt: Optional[RecordReceipt] = None
    message: ConversationMessage
    notice: Optional[str] = None


class BalanceLookup(BaseModel):
    email: str
    balances: Dict[str, Any]
    message: ConversationMessage


def parse_structured_answer(raw: str) -> Optional[Dict[str, Any]]:
    """Parses a JSON answer, tolerating a fenced code block around it."""
    text = raw.strip()
    if text.startswith("```"):
        text = text.strip("`")
        if text.lower().startswith("json"):
            text = text[4:]
    try:
        payload = json.loads(text)
    except (json.JSONDecodeError, TypeError):
        return None
    return payload if isinstance(payload, dict) else None


def narrow_citations(citations: List[Citation], references: List[Dict[str, Any]]) -> List[Citation]:
    """Keeps citations whose case number or title the answer referenced, re-indexed from 1."""
    wanted_numbers = {str(ref["caseNumber"]).strip() for ref in references if ref.get("caseNumber")}
    wanted_titles = {str(ref["caseTitle"]).strip().casefold() for ref in references if ref.get("caseTitle")}
    kept = [
        c for c in citations
        if str(c.metadata.get("caseNumber", "")).strip() in wanted_numbers
        or c.title.strip().casefold() in wanted_titles
    ]
    return [c.model_copy(update={"index": i}) for i, c in enumerate(kept, start=1)]


class ConversationService:
    def __init__(
        self,
        registry: FlowRegistry,
        ai: AIService,
        retrieval: RetrievalService,
        detector: LanguageDetector,
        gateway_provider: Callable[[], HostGateway] = get_host_gateway,
        sessions: Optional[SessionRegistry] = None,
        history_window: Optional[int] = None,
        max_input_chars: Optional[int] = None,
    ):
        self.registry = registry
        self.ai = ai
        self.retrieval = retrieval
        self.detector = detector
        self.gateway_provider = gateway_provider
        self.sessions = sessions if sessions is not None else session_registry
        self.history_window = history_window or settings.history_window
        self.max_input_chars = max_input_chars or settings.max_input_chars

    @property
    def gateway(self) -> HostGateway:
        return self.gateway_provider()

    # --- Sessions ---

    async def start_session(self, flow_key: Optional[str] = None) -> ChatSession:
        """
        Creates a session, resolving identity (or the demo identity) once.
        An unknown flow_key raises UnknownFlow before anything is registered.
        """
        if flow_key:
            self.registry.resolve(flow_key)
        gateway = self.gateway
        host_mode = await gateway.is_available()
        identity: UserIdentity
        try:
            identity = await gateway.get_identity()
        except SdkUnavailable:
            identity = gateway.demo_identity()
        except SdkError as e:
            logger.warning("identity_lookup_failed", error=str(e))
            identity = gateway.demo_identity()

        session = self.sessions.create(identity=identity, host_mode=host_mode)
        if flow_key:
            self.select_flow(session, flow_key)
        return session

    def select_flow(self, session: ChatSession, flow_key: str) -> FlowDefinition:
        if session.turn_in_progress:
            raise TurnInProgress("Cannot switch flows while a turn is in progress")
        flow = self.registry.resolve(flow_key)
        session.flow_key = flow.key
        logger.info("flow_selected", session_id=session.session_id, flow=flow.key)
        return flow

    def end_session(self, session_id: str) -> bool:
        return self.sessions.remove(session_id)

    # --- Turns ---

    async def handle_turn(self, session: ChatSession, text: str) -> TurnResult:
        """
        Processes one user message end to end.

        Raises InvalidInput / NotInitialized before any network call and
        TurnInProgress when the session is already busy. A completion failure
        does not raise: the turn ends FAILED with an error-formatted message.
        """
        if session.turn_lock.locked():
            raise TurnInProgress("A turn is already in progress for this session")
        async with session.turn_lock:
            return await self._run_turn(session, text)

    def _validate_input(self, session: ChatSession, text: Optional[str]) -> FlowDefinition:
        if text is None or not text.strip():
            raise InvalidInput("Message must not be empty")
        if len(text) > self.max_input_chars:
            raise InvalidInput(f"Message exceeds {self.max_input_chars} characters")
        if not session.flow_key or session.identity is None:
            raise NotInitialized("Select a flow before sending messages")
        return self.registry.resolve(session.flow_key)

    def _metadata(self, flow: FlowDefinition, step: Step, **extra: Any) -> MessageMetadata:
        return MessageMetadata(
            flow_key=flow.key,
            domain_category=flow.category,
            prompt_id=flow.prompt_id,
            step=step,
            **extra,
        )

    def _track_step(self, session: ChatSession, task_id: str, step: Step):
        task = session.get_task(task_id)
        # A paused task keeps its recorded step
        if task.status == TaskStatus.RUNNING:
            session.save_task(engine.advance_step(task, step.value))

    def _system_prompt(self, flow: FlowDefinition, detection: LanguageDetection) -> str:
        if flow.response_schema is None and detection.is_reliable:
            return flow.prompt_template + LANGUAGE_INSTRUCTION.format(
                language_name=get_language_name(detection.main_language)
            )
        return flow.prompt_template

    def _should_translate(self, flow: FlowDefinition, detection: LanguageDetection) -> bool:
        return (
            flow.translate_query_before_embedding
            and detection.is_reliable
            and detection.main_language != flow.canonical_language
        )

    async def _run_turn(self, session: ChatSession, text: str) -> TurnResult:
        started = time.perf_counter()
        flow = self._validate_input(session, text)
        turn: TurnState = engine.new_turn()
        log = logger.bind(session_id=session.session_id, turn_id=turn.turn_id, flow=flow.key)

        history = session.store.recent_window(self.history_window)
        task = engine.start_task(engine.create_task(flow.key, TaskType.ANALYSIS, Step.ANALYZE.value))
        session.save_task(task)

        user_message = session.store.append(
            ConversationMessage(role=Role.USER, content=text, metadata=self._metadata(flow, Step.ANALYZE))
        )
        placeholder = session.store.append(
            ConversationMessage(
                role=Role.ASSISTANT,
                content=strings.PLACEHOLDER_TEXT,
                metadata=self._metadata(flow, Step.ANALYZE, extra={"task_id": task.task_id}),
                is_placeholder=True,
            )
        )
        turn = engine.advance_turn(turn, TurnStage.PLACEHOLDER_SHOWN)

        try:
            turn = engine.advance_turn(turn, TurnStage.DETECTING_LANGUAGE)
            detection = self.detector.detect(text)
            hints: List[str] = []
            if not detection.is_reliable:
                hints.append(strings.LOW_CONFIDENCE_LANGUAGE_HINT)

            retrieval: Optional[RetrievalResult] = None
            retrieval_status = "skipped"
            context = ""
            if flow.has_retrieval:
                turn = engine.advance_turn(turn, TurnStage.RETRIEVING)
                self._track_step(session, task.task_id, Step.RETRIEVE)
                try:
                    retrieval = await self.retrieval.retrieve(
                        flow.key, text, translate=self._should_translate(flow, detection)
                    )
                except RetrievalError as e:
                    log.warning("retrieval_degraded", error=str(e))
                    retrieval_status = "failed"
                    hints.append(strings.RETRIEVAL_DEGRADED_HINT)
                    context = strings.NO_RESULTS_MARKER
                else:
                    if retrieval.documents:
                        retrieval_status = "ok"
                        context = retrieval.formatted_context
                    else:
                        retrieval_status = "empty"
                        hints.append(strings.RETRIEVAL_EMPTY_HINT)
                        context = strings.NO_RESULTS_MARKER

            turn = engine.advance_turn(turn, TurnStage.COMPLETING)
            self._track_step(session, task.task_id, Step.ANALYZE)
            try:
                completion = await self.ai.complete(
                    self._system_prompt(flow, detection),
                    text,
                    chat_history=history,
                    grounding_context=context,
                    response_schema=flow.response_schema,
                    history_window=self.history_window,
                )
            except (ProviderError, ValidationError) as e:
                log.error("completion_failed", error=str(e))
                return self._fail_turn(
                    session, flow, turn, task.task_id, user_message, placeholder, detection,
                    retrieval_status, hints, str(e), started,
                )

            turn = engine.advance_turn(turn, TurnStage.FINALIZING)
            self._track_step(session, task.task_id, Step.RESPOND)
            content, citations = self._finalize_content(flow, completion, retrieval)
            final = session.store.replace_placeholder(
                placeholder.id,
                ConversationMessage(
                    role=Role.ASSISTANT,
                    content=content,
                    citations=citations,
                    metadata=self._metadata(
                        flow,
                        Step.RESPOND,
                        detected_language=detection.main_language,
                        model_id=completion.model_id,
                        token_usage=completion.token_usage,
                        finish_reason=completion.finish_reason,
                        retrieval_status=retrieval_status,
                        extra={"task_id": task.task_id},
                    ),
                ),
            )
            turn = engine.advance_turn(turn, TurnStage.DONE)
            done_task = session.save_task(engine.complete_task(session.get_task(task.task_id)))
        except Exception as e:
            # The placeholder and the task always reach a terminal state
            if not session.store.get(placeholder.id).is_placeholder:
                raise
            if not isinstance(e, FlowChatError):
                log.exception("turn_crashed", error=str(e))
            self._fail_turn(
                session, flow, turn, task.task_id, user_message, placeholder, None,
                "unknown", [], str(e), started,
            )
            raise

        elapsed = time.perf_counter() - started
        turn_counter.labels(flow=flow.key, status="done").inc()
        turn_latency_histogram.labels(flow=flow.key).observe(elapsed)
        log.info(
            "turn_completed",
            citations=len(citations),
            retrieval_status=retrieval_status,
            language=detection.main_language,
            tokens=completion.token_usage.total,
            elapsed_ms=int(elapsed * 1000),
        )
        return TurnResult(
            turn_id=turn.turn_id,
            status=turn.stage,
            stages=list(turn.history),
            user_message=user_message,
            message=final,
            task=done_task,
            detection=detection,
            retrieval_status=retrieval_status,
            hints=hints,
        )

    def _fail_turn(
        self,
        session: ChatSession,
        flow: FlowDefinition,
        turn: TurnState,
        task_id: str,
        user_message: ConversationMessage,
        placeholder: ConversationMessage,
        detection: Optional[LanguageDetection],
        retrieval_status: str,
        hints: List[str],
        error: str,
        started: float,
    ) -> TurnResult:
        turn = engine.advance_turn(turn, TurnStage.FAILED)
        final = session.store.replace_placeholder(
            placeholder.id,
            ConversationMessage(
                role=Role.ASSISTANT,
                content=f"{strings.ERROR_PREFIX}{strings.ERROR_COMPLETION_FAILED}",
                citations=[],
                is_error=True,
                metadata=self._metadata(
                    flow,
                    Step.RESPOND,
                    detected_language=detection.main_language if detection else None,
                    retrieval_status=retrieval_status,
                    extra={"task_id": task_id, "error": error},
                ),
            ),
        )
        failed_task = session.save_task(engine.fail_task(session.get_task(task_id), error))
        turn_counter.labels(flow=flow.key, status="failed").inc()
        turn_latency_histogram.labels(flow=flow.key).observe(time.perf_counter() - started)
        return TurnResult(
            turn_id=turn.turn_id,
            status=turn.stage,
            stages=list(turn.history),
            user_message=user_message,
            message=final,
            task=failed_task,
            detection=detection or self.detector.detect(user_message.content),
            retrieval_status=retrieval_status,
            hints=hints,
        )

    def _finalize_content(
        self,
        flow: FlowDefinition,
        completion: CompletionResult,
        retrieval: Optional[RetrievalResult],
    ) -> Tuple[str, List[Citation]]:
        citations = list(retrieval.citations) if retrieval else []
        if flow.response_schema is None:
            return completion.content, citations

        payload = parse_structured_answer(completion.content)
        if payload is None:
            logger.warning("structured_answer_unparseable", flow=flow.key)
            return completion.content, citations

        solution = str(payload.get("solution") or "").strip()
        if not payload.get("hasSimilarCase"):
            return solution or strings.NO_SIMILAR_CASE_TEXT, []
        references = payload.get("referenceCaseTitle") or []
        if references:
            citations = narrow_citations(citations, [r for r in references if isinstance(r, dict)])
        return solution or completion.content, citations

    # --- Pause / resume ---

    def pause_task(self, session: ChatSession, task_id: str, custom_data: Optional[Dict[str, Any]] = None) -> TaskState:
        task = session.get_task(task_id)
        last = session.store.recent_window(1)
        paused = engine.pause_task(
            task,
            session.store.count(),
            last_message_id=last[0].id if last else None,
            custom_data=custom_data,
        )
        logger.info("task_paused", session_id=session.session_id, task_id=task_id)
        return session.save_task(paused)

    def resume_task(self, session: ChatSession, task_id: str) -> TaskState:
        resumed = engine.resume_task(session.get_task(task_id))
        logger.info("task_resumed", session_id=session.session_id, task_id=task_id)
        return session.save_task(resumed)

    # --- Host actions ---

    def _require_flow(self, session: ChatSession) -> FlowDefinition:
        if not session.flow_key or session.identity is None:
            raise NotInitialized("Select a flow first")
        return self.registry.resolve(session.flow_key)

    def _require_permission(self, flow: FlowDefinition, action: Action):
        if not self.registry.is_action_permitted(flow.key, action):
            raise ActionNotPermitted(flow.key, action.value)

    def _last_exchange(self, session: ChatSession, flow_key: str) -> Tuple[ConversationMessage, ConversationMessage]:
        messages = session.store.filter_by_flow(flow_key)
        answer = next(
            (m for m in reversed(messages) if m.role == Role.ASSISTANT and not m.is_error and not m.is_placeholder),
            None,
        )
        if answer is None:
            raise InvalidInput("Ask a question before drafting a record")
        position = messages.index(answer)
        question = next((m for m in reversed(messages[:position]) if m.role == Role.USER), None)
        if question is None:
            raise InvalidInput("Ask a question before drafting a record")
        return question, answer

    def _tool_message(self, flow: FlowDefinition, content: str, action: Action, status: str, is_error: bool = False, **extra: Any) -> ConversationMessage:
        return ConversationMessage(
            role=Role.TOOL,
            content=content,
            is_error=is_error,
            metadata=self._metadata(
                flow, Step.ACTION, action_type=action.value, action_status=status, extra=extra
            ),
        )

    async def propose_record(self, session: ChatSession) -> RecordDraft:
        """
        Drafts host-record fields from the last exchange and parks a workflow
        task in WAITING_INPUT until the user confirms.
        """
        flow = self._require_flow(session)
        self._require_permission(flow, Action.CREATE)
        if flow.record_draft is None:
            raise ValidationError(f"Flow {flow.key} has no record template")
        if not await self.gateway.is_available():
            raise SdkUnavailable("Record creation is disabled in demo mode")
        if session.turn_lock.locked():
            raise TurnInProgress("A turn is already in progress for this session")

        async with session.turn_lock:
            question, answer = self._last_exchange(session, flow.key)
            context = "\n".join(f"[{c.index}] {c.title}" for c in answer.citations)
            fields = await self.ai.draft_record_fields(question.content, context, answer.content, flow.record_draft)
            if "Requester_Email" in flow.record_field_mapping and session.identity.email:
                fields["Requester_Email"] = session.identity.email

            task = engine.start_task(engine.create_task(flow.key, TaskType.WORKFLOW, "draft_record"))
            task = engine.await_input(
                task,
                current_step="confirm_record",
                custom_data={"draft": fields, "source_message_id": answer.id},
            )
            session.save_task(task)
            message = session.store.append(
                self._tool_message(flow, strings.RECORD_DRAFT_READY, Action.CREATE, "draft", task_id=task.task_id)
            )
        return RecordDraft(task=task, fields=fields, message=message)

    async def confirm_record(self, session: ChatSession, task_id: str, overrides: Optional[Dict[str, str]] = None) -> RecordOutcome:
        """
        Submits a drafted record. Host failures end the task FAILED and are
        reported as a notice; earlier answers are never touched.
        """
        task = session.get_task(task_id)
        if task.task_type != TaskType.WORKFLOW:
            raise IllegalTransition(f"Task {task_id} is not a record draft")
        flow = self.registry.resolve(task.flow_key)
        self._require_permission(flow, Action.CREATE)

        draft: Dict[str, str] = dict(task.saved_context.custom_data.get("draft") or {})
        unknown = sorted(set(overrides or {}) - set(draft))
        if unknown:
            raise InvalidInput(f"Unknown record fields: {', '.join(unknown)}")
        if session.turn_lock.locked():
            raise TurnInProgress("A turn is already in progress for this session")

        async with session.turn_lock:
            task = session.save_task(engine.receive_input(session.get_task(task_id)))
            task = session.save_task(engine.advance_step(task, "submit_record"))
            fields = {**draft, **(overrides or {})}
            try:
                receipt = await self.gateway.create_record(flow.key, fields)
            except (SdkError, SdkUnavailable) as e:
                failed = session.save_task(engine.fail_task(task, e.message))
                notice = strings.RECORD_FAILED_NOTICE.format(reason=e.message)
                message = session.store.append(
                    self._tool_message(flow, notice, Action.CREATE, "failed", is_error=True, task_id=task_id)
                )
                logger.warning("record_create_failed", session_id=session.session_id, task_id=task_id, error=e.message)
                return RecordOutcome(task=failed, message=message, notice=notice)
            except ActionNotPermitted:
                session.save_task(engine.fail_task(task, "CREATE not permitted"))
                raise

            done = session.save_task(engine.complete_task(task))
            message = session.store.append(
                self._tool_message(
                    flow,
                    strings.RECORD_CREATED.format(record_id=receipt.record_id, process_id=receipt.process_id),
                    Action.CREATE,
                    "created",
                    task_id=task_id,
                    record_id=receipt.record_id,
                )
            )
        logger.info("record_created", session_id=session.session_id, record_id=receipt.record_id)
        return RecordOutcome(task=done, receipt=receipt, message=message)

    async def open_related_records(self, session: ChatSession, message_id: str) -> PopupResult:
        """Opens the flow's popup for the records cited by an answer."""
        message = session.store.get(message_id)
        if message is None:
            raise InvalidInput(f"Message {message_id} not found")
        flow = self.registry.resolve(message.metadata.flow_key)
        self._require_permission(flow, Action.READ)

        identifiers: List[str] = []
        for citation in message.citations:
            if citation.source_identifier and citation.source_identifier not in identifiers:
                identifiers.append(citation.source_identifier)
        if not identifiers:
            return PopupResult(opened=False, popup_ref=flow.popup_ref, notice=strings.POPUP_NO_RECORDS_NOTICE)
        return await self.gateway.open_record_popup(flow.popup_ref, {"instanceidreport": ",".join(identifiers)})

    async def lookup_leave_balance(self, session: ChatSession) -> BalanceLookup:
        """Reads the user's balances from the flow's dataset binding."""
        flow = self._require_flow(session)
        self._require_permission(flow, Action.QUERY)
        if flow.dataset is None:
            raise ValidationError(f"Flow {flow.key} has no balance dataset")
        email = session.identity.email
        if not email:
            raise NotInitialized("The current user has no e-mail address")
        if session.turn_lock.locked():
            raise TurnInProgress("A turn is already in progress for this session")

        async with session.turn_lock:
            rows = await self.gateway.query_dataset(
                flow.dataset.dataset_id,
                {flow.dataset.identity_field: email},
                limit=1,
                flow_key=flow.key,
                view_id=flow.dataset.view_id,
            )
            balances: Dict[str, Any] = {}
            if rows:
                row = rows[0]
                balances = {label: row.get(field) for label, field in flow.dataset.value_fields.items()}
                summary = ", ".join(f"{label} {value}" for label, value in balances.items())
                content = strings.LEAVE_BALANCE_SUMMARY.format(email=email, balances=summary)
            else:
                content = strings.LEAVE_BALANCE_NOT_FOUND.format(email=email)
            message = session.store.append(
                self._tool_message(flow, content, Action.QUERY, "ok" if rows else "empty")
            )
        return BalanceLookup(email=email, balances=balances, message=message)


# Globally accessible instance
conversation_service = ConversationService(
    flow_registry,
    ai_service,
    retrieval_service,
    language_detector,
)
