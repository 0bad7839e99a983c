# /flowchat/models/domain.py

from typing import Optional, List, Dict, Any
from pydantic import BaseModel, ConfigDict, Field

# Value objects exchanged between services during a single turn.


class RetrievedDocument(BaseModel):
    model_config = ConfigDict(frozen=True)

    identifier: Optional[str] = None
    content: str = ""
    title: str = "Untitled"
    domain_metadata: Dict[str, Any] = Field(default_factory=dict)
    score: float = Field(default=0.0, ge=0.0, le=1.0)
    partition: str = ""


class Citation(BaseModel):
    model_config = ConfigDict(frozen=True)

    index: int
    title: str
    source_identifier: Optional[str] = None
    relevance_score: float
    source: str = "Weaviate"
    metadata: Dict[str, Any] = Field(default_factory=dict)


class RetrievalResult(BaseModel):
    documents: List[RetrievedDocument] = Field(default_factory=list)
    formatted_context: str = ""
    citations: List[Citation] = Field(default_factory=list)
    total_retrieved: int = 0
    query_used: str = ""


class LanguageDetection(BaseModel):
    model_config = ConfigDict(frozen=True)

    main_language: str
    confidence: float = Field(ge=0.0, le=1.0)
    per_language_scores: Dict[str, float] = Field(default_factory=dict)
    is_reliable: bool = False


class TokenUsage(BaseModel):
    prompt: int = 0
    completion: int = 0
    total: int = 0


class CompletionResult(BaseModel):
    content: str
    token_usage: TokenUsage = Field(default_factory=TokenUsage)
    model_id: str
    finish_reason: str = "stop"


class UserIdentity(BaseModel):
    model_config = ConfigDict(frozen=True)

    user_id: str
    account_id: Optional[str] = None
    display_name: str = ""
    email: Optional[str] = None
    is_demo: bool = False


class RecordReceipt(BaseModel):
    record_id: str
    activity_instance_id: Optional[str] = None
    flow_key: str
    process_id: str


class PopupResult(BaseModel):
    """Outcome of a popup request. Failures travel as a dismissible notice."""
    opened: bool
    popup_ref: Optional[str] = None
    params: Dict[str, str] = Field(default_factory=dict)
    notice: Optional[str] = None
