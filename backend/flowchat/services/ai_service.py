# /flowchat/services/ai_service.py

import json
import logging
from typing import Optional, List, Dict, Any, Sequence

import openai
from openai import AsyncOpenAI

from flowchat.config.settings import settings
from flowchat.config.prompts import TRANSLATION_PROMPT, RECORD_DRAFT_PROMPT, RECORD_DRAFT_USER_TEMPLATE
from flowchat.errors import ProviderError, ValidationError
from flowchat.models.conversation import ConversationMessage, Role
from flowchat.models.domain import CompletionResult, TokenUsage
from flowchat.models.flow import RecordDraftSpec
from flowchat.services.language_service import get_language_name
from flowchat.utils.alerting import alerting_service
from flowchat.utils.metrics import ai_requests_counter

# This service wraps the OpenAI-compatible provider for embeddings, chat
# completions, translation and record drafting. Every method issues exactly
# one request; retries are left to the caller.

logger = logging.getLogger(__name__)


def build_chat_messages(
    system_prompt: str,
    user_message: str,
    chat_history: Sequence[ConversationMessage],
    grounding_context: str,
    history_window: int,
) -> List[Dict[str, str]]:
    """[system, last N history turns, user turn with context prefix when present]."""
    messages = [{"role": "system", "content": system_prompt}]
    window = list(chat_history)[-history_window:] if history_window > 0 else []
    for message in window:
        if message.is_placeholder or message.role == Role.TOOL:
            continue
        messages.append({"role": message.role.value, "content": message.content})

    if grounding_context:
        messages.append({"role": "user", "content": f"Context:\n{grounding_context}\n\nQuestion: {user_message}"})
    else:
        messages.append({"role": "user", "content": user_message})
    return messages


class AIService:
    def __init__(self, api_key: Optional[str] = None, base_url: Optional[str] = None, client: Optional[AsyncOpenAI] = None):
        self.api_key = api_key if api_key is not None else settings.openai_api_key
        if client is not None:
            self.openai_client = client
        elif self.api_key:
            # max_retries=0: the SDK must not retry behind the caller's back
            self.openai_client = AsyncOpenAI(
                api_key=self.api_key,
                base_url=base_url or settings.openai_base_url,
                timeout=settings.openai_timeout_seconds,
                max_retries=0,
            )
        else:
            self.openai_client = None
        self.chat_model = settings.openai_chat_model
        self.embed_model = settings.openai_embed_model

    def _require_client(self) -> AsyncOpenAI:
        if not self.openai_client:
            raise ProviderError("OpenAI API key not configured")
        return self.openai_client

    async def _provider_failed(self, operation: str, error: Exception) -> ProviderError:
        ai_requests_counter.labels(operation=operation, status="error").inc()
        logger.error(f"OpenAI {operation} failed: {error}")
        if isinstance(error, openai.AuthenticationError):
            await alerting_service.send_critical_alert(
                "Model provider rejected the API credential", {"operation": operation}
            )
        return ProviderError(f"OpenAI API error: {error}")

    async def embed(self, text: str, model: Optional[str] = None) -> List[float]:
        """Returns the embedding vector for a non-empty text."""
        if not text or not text.strip():
            raise ValidationError("Text required for embedding")
        client = self._require_client()
        model = model or self.embed_model

        try:
            response = await client.embeddings.create(model=model, input=text)
        except openai.APIError as e:
            raise await self._provider_failed("embed", e) from e

        vector = response.data[0].embedding if response.data else []
        if not vector:
            ai_requests_counter.labels(operation="embed", status="error").inc()
            raise ProviderError("Provider returned an empty embedding")
        ai_requests_counter.labels(operation="embed", status="success").inc()
        return list(vector)

    async def complete(
        self,
        system_prompt: str,
        user_message: str,
        chat_history: Sequence[ConversationMessage] = (),
        grounding_context: str = "",
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
        response_schema: Optional[Dict[str, Any]] = None,
        history_window: Optional[int] = None,
    ) -> CompletionResult:
        """
        Runs one chat completion.

        When response_schema is given the provider is asked for strict JSON
        matching it; the raw JSON text is returned as content.
        """
        client = self._require_client()
        messages = build_chat_messages(
            system_prompt,
            user_message,
            chat_history,
            grounding_context,
            history_window if history_window is not None else settings.history_window,
        )

        request: Dict[str, Any] = {
            "model": self.chat_model,
            "messages": messages,
            "temperature": settings.openai_temperature if temperature is None else temperature,
            "max_tokens": max_tokens or settings.openai_max_tokens,
        }
        if response_schema:
            request["response_format"] = {
                "type": "json_schema",
                "json_schema": {
                    "name": response_schema.get("title", "StructuredResponse"),
                    "schema": response_schema,
                    "strict": True,
                },
            }

        try:
            response = await client.chat.completions.create(**request)
        except openai.APIError as e:
            raise await self._provider_failed("complete", e) from e

        choice = response.choices[0] if response.choices else None
        content = (choice.message.content or "") if choice else ""
        usage = response.usage
        ai_requests_counter.labels(operation="complete", status="success").inc()
        return CompletionResult(
            content=content.strip(),
            token_usage=TokenUsage(
                prompt=getattr(usage, "prompt_tokens", 0) or 0,
                completion=getattr(usage, "completion_tokens", 0) or 0,
                total=getattr(usage, "total_tokens", 0) or 0,
            ),
            model_id=getattr(response, "model", None) or self.chat_model,
            finish_reason=(choice.finish_reason if choice and choice.finish_reason else "stop"),
        )

    async def translate(self, text: str, target_language: str) -> str:
        """Best-effort translation. Any failure returns the original text."""
        if not text or not text.strip():
            return text
        language_name = get_language_name(target_language)
        if language_name == "Unknown":
            language_name = target_language

        try:
            result = await self.complete(
                TRANSLATION_PROMPT.format(language_name=language_name),
                text,
                temperature=0.0,
                max_tokens=min(max(256, len(text) * 4), settings.openai_max_tokens),
                history_window=0,
            )
        except (ProviderError, openai.OpenAIError) as e:
            logger.warning(f"Translation to {target_language} failed, using original text: {e}")
            return text

        translated = result.content.strip()
        if not translated:
            logger.warning(f"Translation to {target_language} returned nothing, using original text")
            return text
        ai_requests_counter.labels(operation="translate", status="success").inc()
        return translated

    async def draft_record_fields(
        self,
        question: str,
        context: str,
        answer: str,
        draft_spec: RecordDraftSpec,
    ) -> Dict[str, str]:
        """
        Drafts host-record fields from the last exchange using JSON mode.
        Falls back to a deterministic draft when the provider fails or
        returns something that does not match the draft schema.
        """
        field_lines = "\n".join(
            f"- {name}" + (f" (max {draft_spec.field_limits[name]} characters)" if name in draft_spec.field_limits else "")
            + (f" - must be one of: {', '.join(repr(c) for c in draft_spec.allowed_choices)}" if name == draft_spec.choice_field else "")
            for name in draft_spec.required_fields
        )
        try:
            client = self._require_client()
            response = await client.chat.completions.create(
                model=self.chat_model,
                temperature=settings.record_draft_temperature,
                response_format={"type": "json_object"},
                messages=[
                    {"role": "system", "content": RECORD_DRAFT_PROMPT.format(field_lines=field_lines)},
                    {"role": "user", "content": RECORD_DRAFT_USER_TEMPLATE.format(
                        question=question, context=context or "(none)", answer=answer
                    )},
                ],
            )
            payload = json.loads(response.choices[0].message.content or "")
            draft = validate_record_draft(payload, draft_spec)
            ai_requests_counter.labels(operation="draft_record", status="success").inc()
            return draft
        except (openai.APIError, ProviderError, json.JSONDecodeError, ValueError, IndexError) as e:
            ai_requests_counter.labels(operation="draft_record", status="fallback").inc()
            logger.warning(f"Record draft generation failed, using default draft: {e}")
            return fallback_record_draft(question, answer, draft_spec)


def _truncate(value: str, draft_spec: RecordDraftSpec, field: str) -> str:
    limit = draft_spec.field_limits.get(field)
    return value[:limit] if limit else value


def validate_record_draft(payload: Any, draft_spec: RecordDraftSpec) -> Dict[str, str]:
    """Checks required fields and the choice field; raises ValueError otherwise."""
    if not isinstance(payload, dict):
        raise ValueError("Draft must be a JSON object")
    missing = [name for name in draft_spec.required_fields if name not in payload]
    if missing:
        raise ValueError(f"Missing required field: {', '.join(missing)}")
    if draft_spec.choice_field and draft_spec.allowed_choices:
        choice = payload.get(draft_spec.choice_field)
        if choice not in draft_spec.allowed_choices:
            raise ValueError(
                f"Invalid {draft_spec.choice_field}: {choice}. Must be one of: {', '.join(draft_spec.allowed_choices)}"
            )
    return {name: _truncate(str(payload[name]), draft_spec, name) for name in draft_spec.required_fields}


def fallback_record_draft(question: str, answer: str, draft_spec: RecordDraftSpec) -> Dict[str, str]:
    draft: Dict[str, str] = {}
    for name in draft_spec.required_fields:
        if name == draft_spec.choice_field:
            draft[name] = draft_spec.default_choice or (draft_spec.allowed_choices[0] if draft_spec.allowed_choices else "")
        elif "title" in name.lower() or ("description" in name.lower() and "solution" not in name.lower()):
            draft[name] = _truncate(question, draft_spec, name)
        else:
            draft[name] = _truncate(answer, draft_spec, name)
    return draft


# Globally accessible instance
ai_service = AIService()
