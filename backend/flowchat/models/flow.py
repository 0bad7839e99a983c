# /flowchat/models/flow.py

from enum import Enum
from typing import Optional, List, Dict, Any, FrozenSet, Tuple
from pydantic import BaseModel, ConfigDict, Field, model_validator


class Action(str, Enum):
    """Capabilities a flow may grant to the conversation."""
    ANSWER_ONLY = "ANSWER_ONLY"
    CREATE = "CREATE"
    READ = "READ"
    QUERY = "QUERY"
    UPDATE = "UPDATE"


class RelevanceMetric(str, Enum):
    """Native relevance indicator a knowledge partition returns."""
    CERTAINTY = "certainty"  # cosine-derived, already in [0, 1]
    DISTANCE = "distance"    # vector distance, lower is better
    SCORE = "score"          # hybrid/lexical score, clamped to [0, 1]


class PartitionSpec(BaseModel):
    """
    A knowledge-base partition and the roles of its fields.

    Partitions have heterogeneous schemas, so every flow declares which field
    carries the record identifier, the title, the content and the metadata.
    The metric tag selects the score normalizer.
    """
    model_config = ConfigDict(frozen=True)

    collection: str
    metric: RelevanceMetric
    content_field: str = "content"
    title_field: str = "title"
    id_field: Optional[str] = None
    metadata_fields: Tuple[str, ...] = ()
    # Metadata rendered next to the title in each grounding block
    context_fields: Tuple[str, ...] = ()

    @model_validator(mode="after")
    def check_context_fields(self):
        unknown = [name for name in self.context_fields if name not in self.metadata_fields]
        if unknown:
            raise ValueError(f"context_fields must be metadata fields, got: {', '.join(unknown)}")
        return self

    @property
    def return_fields(self) -> Tuple[str, ...]:
        fields: List[str] = []
        for name in (self.id_field, self.content_field, self.title_field, *self.metadata_fields):
            if name and name not in fields:
                fields.append(name)
        return tuple(fields)


class DatasetBinding(BaseModel):
    """Host dataset a flow reads numeric balances from."""
    model_config = ConfigDict(frozen=True)

    dataset_id: str
    view_id: str
    identity_field: str
    value_fields: Dict[str, str] = Field(default_factory=dict)


class RecordDraftSpec(BaseModel):
    """Shape of a host record the assistant can draft from an exchange."""
    model_config = ConfigDict(frozen=True)

    required_fields: Tuple[str, ...]
    choice_field: Optional[str] = None
    allowed_choices: Tuple[str, ...] = ()
    default_choice: Optional[str] = None
    field_limits: Dict[str, int] = Field(default_factory=dict)


class FlowDefinition(BaseModel):
    """A configured business domain. Immutable for the process lifetime."""
    model_config = ConfigDict(frozen=True)

    key: str
    category: str
    name: str
    description: str = ""
    retrieval_partition: Optional[PartitionSpec] = None
    permitted_actions: FrozenSet[Action] = frozenset({Action.ANSWER_ONLY})
    prompt_template: str
    prompt_id: str
    translate_query_before_embedding: bool = False
    canonical_language: str = "en"
    suggested_prompts: Tuple[str, ...] = ()
    retrieval_limit: int = 8
    max_documents: int = 5
    score_threshold: float = 0.0
    host_process_ids: Tuple[str, ...] = ()
    record_field_mapping: Dict[str, str] = Field(default_factory=dict)
    record_draft: Optional[RecordDraftSpec] = None
    popup_ref: Optional[str] = None
    dataset: Optional[DatasetBinding] = None
    response_schema: Optional[Dict[str, Any]] = None

    @property
    def has_retrieval(self) -> bool:
        return self.retrieval_partition is not None
