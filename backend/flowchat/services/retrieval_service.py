# /flowchat/services/retrieval_service.py

import json
import logging
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence, Tuple

import httpx

from flowchat.config.settings import settings
from flowchat.errors import ProviderError, RetrievalError, ValidationError
from flowchat.models.domain import Citation, RetrievalResult, RetrievedDocument
from flowchat.models.flow import FlowDefinition, PartitionSpec, RelevanceMetric
from flowchat.services.ai_service import AIService, ai_service
from flowchat.services.flow_registry import FlowRegistry, flow_registry
from flowchat.utils.metrics import retrieval_counter

# Retrieval engine: translate -> embed -> search -> normalize -> sort -> filter ->
# truncate -> deduplicate -> cite -> format. The helpers below are pure so the
# ranking rules can be tested without a search backend.

logger = logging.getLogger(__name__)

HYBRID_ALPHA = 0.5


def _clamp(value: float) -> float:
    return max(0.0, min(1.0, value))


def _as_float(value: Any) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return 0.0


# Metric tag -> (name of the _additional field to request, normalizer)
NORMALIZERS: Dict[RelevanceMetric, Tuple[str, Callable[[Any], float]]] = {
    RelevanceMetric.CERTAINTY: ("certainty", lambda raw: _clamp(_as_float(raw))),
    RelevanceMetric.DISTANCE: ("distance", lambda raw: _clamp(1.0 - _as_float(raw)) if raw is not None else 0.0),
    RelevanceMetric.SCORE: ("score", lambda raw: _clamp(_as_float(raw))),
}


def normalize_score(metric: RelevanceMetric, additional: Dict[str, Any]) -> float:
    field, normalizer = NORMALIZERS[metric]
    return normalizer((additional or {}).get(field))


def sort_by_score(documents: Sequence[RetrievedDocument]) -> List[RetrievedDocument]:
    """Highest score first; ties keep the backend's order."""
    return sorted(documents, key=lambda doc: doc.score, reverse=True)


def filter_by_score(documents: Sequence[RetrievedDocument], threshold: float) -> List[RetrievedDocument]:
    """Drops documents below the threshold, keeping relative order. 0 disables."""
    if threshold <= 0:
        return list(documents)
    return [doc for doc in documents if doc.score >= threshold]


def deduplicate_documents(documents: Iterable[RetrievedDocument]) -> List[RetrievedDocument]:
    """
    Keeps one document per identifier, the highest-scoring one, at the position
    the identifier first appeared. Documents without an identifier are kept.
    """
    result: List[RetrievedDocument] = []
    positions: Dict[str, int] = {}
    for doc in documents:
        if not doc.identifier:
            result.append(doc)
            continue
        if doc.identifier in positions:
            index = positions[doc.identifier]
            if doc.score > result[index].score:
                result[index] = doc
            continue
        positions[doc.identifier] = len(result)
        result.append(doc)
    return result


def _block_header(doc: RetrievedDocument, context_fields: Sequence[str]) -> str:
    details = ", ".join(
        f"{name}: {doc.domain_metadata[name]}" for name in context_fields if name in doc.domain_metadata
    )
    return f"{doc.title} ({details})\n" if details else f"{doc.title}\n"


def format_context(
    documents: Sequence[RetrievedDocument],
    excerpt_chars: Optional[int] = None,
    context_chars: Optional[int] = None,
    context_fields: Sequence[str] = (),
) -> Tuple[str, List[RetrievedDocument]]:
    """
    Joins numbered excerpts into a bounded context block.

    With context_fields, each block opens with the document title and those
    metadata values so the model can name the records it relies on.

    Returns the context and the documents that actually appear in it; a
    document whose block starts past the overall cap is not cited.
    """
    excerpt_chars = excerpt_chars or settings.retrieval_excerpt_chars
    context_chars = context_chars or settings.retrieval_context_chars

    blocks: List[str] = []
    used: List[RetrievedDocument] = []
    length = 0
    for doc in documents:
        separator = 2 if blocks else 0
        if length + separator >= context_chars:
            break
        header = _block_header(doc, context_fields) if context_fields else ""
        block = f"[{len(blocks) + 1}] {header}{doc.content[:excerpt_chars]}..."
        blocks.append(block)
        used.append(doc)
        length += separator + len(block)

    return "\n\n".join(blocks)[:context_chars], used


def build_citations(documents: Sequence[RetrievedDocument], source: str = "Weaviate") -> List[Citation]:
    return [
        Citation(
            index=i,
            title=doc.title,
            source_identifier=doc.identifier,
            relevance_score=doc.score,
            source=source,
            metadata=dict(doc.domain_metadata),
        )
        for i, doc in enumerate(documents, start=1)
    ]


def parse_hits(partition: PartitionSpec, hits: Sequence[Dict[str, Any]]) -> List[RetrievedDocument]:
    documents = []
    for hit in hits:
        additional = hit.get("_additional") or {}
        identifier = hit.get(partition.id_field) if partition.id_field else None
        if identifier is None and partition.id_field is None:
            identifier = additional.get("id")
        documents.append(
            RetrievedDocument(
                identifier=str(identifier) if identifier not in (None, "") else None,
                content=str(hit.get(partition.content_field) or ""),
                title=str(hit.get(partition.title_field) or "Untitled"),
                domain_metadata={
                    name: hit.get(name)
                    for name in partition.metadata_fields
                    if hit.get(name) is not None
                },
                score=normalize_score(partition.metric, additional),
                partition=partition.collection,
            )
        )
    return documents


class WeaviateClient:
    """Minimal GraphQL client for nearVector and hybrid searches."""

    def __init__(self, base_url: str, api_key: Optional[str] = None, http_client: Optional[httpx.AsyncClient] = None):
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.http_client = http_client or httpx.AsyncClient(
            timeout=httpx.Timeout(settings.weaviate_timeout_seconds, connect=5.0)
        )

    def _headers(self) -> Dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        return headers

    @staticmethod
    def build_query(partition: PartitionSpec, vector: Sequence[float], limit: int, query_text: str = "") -> str:
        additional_field, _ = NORMALIZERS[partition.metric]
        fields = " ".join(partition.return_fields)
        vector_literal = ", ".join(repr(float(v)) for v in vector)
        if partition.metric == RelevanceMetric.SCORE:
            search = f"hybrid: {{query: {json.dumps(query_text, ensure_ascii=False)}, vector: [{vector_literal}], alpha: {HYBRID_ALPHA}}}"
        else:
            search = f"nearVector: {{vector: [{vector_literal}]}}"
        return (
            f"{{ Get {{ {partition.collection}({search}, limit: {int(limit)}) "
            f"{{ {fields} _additional {{ {additional_field} id }} }} }} }}"
        )

    async def search(self, partition: PartitionSpec, vector: Sequence[float], limit: int, query_text: str = "") -> List[Dict[str, Any]]:
        query = self.build_query(partition, vector, limit, query_text)
        try:
            response = await self.http_client.post(
                f"{self.base_url}/v1/graphql", json={"query": query}, headers=self._headers()
            )
            response.raise_for_status()
            payload = response.json()
        except httpx.HTTPStatusError as e:
            raise RetrievalError(f"Weaviate query failed: HTTP {e.response.status_code}") from e
        except httpx.HTTPError as e:
            raise RetrievalError(f"Weaviate query failed: {e}") from e
        except ValueError as e:
            raise RetrievalError("Weaviate returned a non-JSON response") from e

        if not isinstance(payload, dict):
            raise RetrievalError("Weaviate returned an unexpected response shape")
        if payload.get("errors"):
            message = "; ".join(
                str(err.get("message", err)) if isinstance(err, dict) else str(err) for err in payload["errors"]
            )
            raise RetrievalError(f"Weaviate query failed: {message}")

        data = payload.get("data") or {}
        collections = (data.get("Get") or {}) if isinstance(data, dict) else None
        if not isinstance(collections, dict):
            raise RetrievalError("Weaviate returned an unexpected response shape")
        hits = collections.get(partition.collection) or []
        if not isinstance(hits, list) or not all(isinstance(hit, dict) for hit in hits):
            raise RetrievalError(f"Weaviate returned malformed hits for {partition.collection}")
        return hits

    async def aclose(self):
        await self.http_client.aclose()


class RetrievalService:
    def __init__(
        self,
        registry: FlowRegistry,
        ai: AIService,
        client: WeaviateClient,
    ):
        self.registry = registry
        self.ai = ai
        self.client = client

    async def retrieve(
        self,
        flow_key: str,
        query_text: str,
        limit: Optional[int] = None,
        score_threshold: Optional[float] = None,
        *,
        translate: Optional[bool] = None,
    ) -> RetrievalResult:
        """
        Searches the flow's partition and returns documents, context and citations.

        Raises RetrievalError when embedding or search fails and UnknownFlow for
        an unregistered key. translate=None follows the flow's own flag.
        """
        flow: FlowDefinition = self.registry.resolve(flow_key)
        partition = flow.retrieval_partition
        if partition is None:
            raise RetrievalError(f"No retrieval partition configured for {flow_key} flow")

        should_translate = flow.translate_query_before_embedding if translate is None else translate
        query_used = query_text
        if should_translate:
            query_used = await self.ai.translate(query_text, flow.canonical_language)

        try:
            vector = await self.ai.embed(query_used)
        except (ProviderError, ValidationError) as e:
            retrieval_counter.labels(flow=flow_key, status="embed_error").inc()
            raise RetrievalError(f"Embedding failed: {e}") from e

        limit = limit or flow.retrieval_limit
        threshold = flow.score_threshold if score_threshold is None else score_threshold

        try:
            hits = await self.client.search(partition, vector, limit, query_used)
        except RetrievalError:
            retrieval_counter.labels(flow=flow_key, status="search_error").inc()
            raise

        documents = sort_by_score(parse_hits(partition, hits))
        documents = filter_by_score(documents, threshold)
        documents = documents[: flow.max_documents]
        documents = deduplicate_documents(documents)
        context, used = format_context(documents, context_fields=partition.context_fields)
        citations = build_citations(used)

        retrieval_counter.labels(flow=flow_key, status="success" if used else "empty").inc()
        logger.info(
            f"Retrieved {len(hits)} hits from {partition.collection}, "
            f"{len(used)} used for {flow_key} (threshold={threshold})"
        )
        return RetrievalResult(
            documents=used,
            formatted_context=context,
            citations=citations,
            total_retrieved=len(hits),
            query_used=query_used,
        )


# Globally accessible instance
retrieval_service = RetrievalService(
    flow_registry,
    ai_service,
    WeaviateClient(settings.weaviate_url, settings.weaviate_api_key),
)
