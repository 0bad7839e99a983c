# /flowchat/config/settings.py

import sys
from typing import Dict, List, Optional
from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # App Metadata
    environment: str = "production"
    api_version: str = "v1"
    service_name: str = "flowchat-assistant"

    # OpenAI-compatible provider
    openai_api_key: str
    openai_base_url: Optional[str] = None
    openai_chat_model: str = "gpt-4o-mini"
    openai_embed_model: str = "text-embedding-3-large"
    openai_temperature: float = Field(default=0.2, ge=0.0, le=2.0)
    openai_max_tokens: int = Field(default=2048, gt=0)
    openai_timeout_seconds: float = Field(default=60.0, gt=0)

    # Weaviate retrieval
    weaviate_url: str
    weaviate_api_key: Optional[str] = None
    weaviate_top_k: int = Field(default=8, ge=1, le=50)
    weaviate_score_threshold: float = Field(default=0.0, ge=0.0, le=1.0)
    weaviate_timeout_seconds: float = Field(default=15.0, gt=0)
    # Per-flow overrides, keyed by flow key (JSON objects in the environment)
    weaviate_classes: Dict[str, str] = {}
    weaviate_score_thresholds: Dict[str, float] = {}
    retrieval_excerpt_chars: int = Field(default=500, gt=0)
    retrieval_context_chars: int = Field(default=3000, gt=0)

    # Kissflow host platform (all optional: absent means demo mode)
    kissflow_domain: Optional[str] = None
    kissflow_account_id: Optional[str] = None
    kissflow_access_key_id: Optional[str] = None
    kissflow_access_key_secret: Optional[str] = None
    kissflow_process_ids: Dict[str, str] = {}
    host_probe_attempts: int = Field(default=3, ge=1, le=10)

    # Conversation behaviour
    history_window: int = Field(default=6, ge=1, le=20)
    max_input_chars: int = Field(default=5000, gt=0)
    language_reliability_threshold: float = Field(default=0.4, ge=0.0, le=1.0)
    flow_prompt_overrides: Dict[str, str] = {}
    record_draft_temperature: float = Field(default=0.3, ge=0.0, le=2.0)

    # Observability
    alerting_webhook_url: Optional[str] = None

    # Limits & CORS
    rate_limit_per_minute: int = 60
    cors_allowed_origins: List[str] = Field(default=["http://localhost:3000"])

    # ---------------- Validators ---------------- #

    @field_validator("cors_allowed_origins", mode="before")
    @classmethod
    def parse_cors_allowed_origins(cls, v):
        """Accept comma-separated strings as well as JSON lists."""
        if isinstance(v, str):
            return [origin.strip() for origin in v.split(",") if origin.strip()]
        return v

    @field_validator("openai_api_key", "weaviate_url")
    @classmethod
    def must_not_be_blank(cls, v: str) -> str:
        if not v or not v.strip():
            raise ValueError("value must not be blank")
        return v.strip()

    @field_validator("weaviate_url")
    @classmethod
    def weaviate_url_must_be_http(cls, v: str) -> str:
        if not v.startswith(("http://", "https://")):
            raise ValueError("WEAVIATE_URL must start with http:// or https://")
        return v.rstrip("/")

    @field_validator("weaviate_score_thresholds")
    @classmethod
    def thresholds_in_unit_range(cls, v: Dict[str, float]) -> Dict[str, float]:
        for key, threshold in v.items():
            if not 0.0 <= threshold <= 1.0:
                raise ValueError(f"score threshold for {key} must be within [0, 1]")
        return v

    @model_validator(mode="after")
    def kissflow_credentials_come_in_pairs(self):
        if bool(self.kissflow_access_key_id) != bool(self.kissflow_access_key_secret):
            raise ValueError("KISSFLOW_ACCESS_KEY_ID and KISSFLOW_ACCESS_KEY_SECRET must be set together")
        return self

    @property
    def host_configured(self) -> bool:
        return bool(
            self.kissflow_domain
            and self.kissflow_account_id
            and self.kissflow_access_key_id
            and self.kissflow_access_key_secret
        )

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        extra = "ignore"


def validate_environment(settings_obj: Settings):
    try:
        if settings_obj.environment == "production":
            if "*" in settings_obj.cors_allowed_origins:
                raise ValueError("Wildcard CORS origins are not allowed in production")
            if settings_obj.kissflow_domain and not settings_obj.host_configured:
                raise ValueError("KISSFLOW_DOMAIN is set but the account id or access keys are missing")

        return settings_obj

    except Exception as e:
        print(f"--- [ERROR] Environment validation failed: {e}")
        sys.exit(1)


settings = Settings()
validate_environment(settings)
