"""Configuration management using Pydantic settings."""

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Qdrant Configuration
    qdrant_url: str | None = Field(
        default=None,
        description="Qdrant server URL. When unset (and not in-memory) no retrieval backend is configured.",
    )
    qdrant_api_key: str | None = Field(
        default=None,
        description="Qdrant API key (required for cloud instances)",
    )
    qdrant_in_memory: bool = Field(
        default=False,
        description="Use in-memory Qdrant (for testing, no Docker needed)",
    )
    qdrant_text_collection: str = Field(
        default="faq_docs",
        description="Collection queried as the primary full-text index",
    )
    qdrant_vector_collection: str = Field(
        default="faq_embeddings",
        description="Tenant-scoped collection holding FAQ embeddings",
    )

    # Embedding Model Configuration
    embedding_model_name: str = Field(
        default="intfloat/multilingual-e5-small",
        description="Hugging Face model name for query embeddings",
    )
    vector_search_enabled: bool = Field(
        default=True,
        description="Query the tenant vector store alongside the full-text index when a tenant is known.",
    )

    # Hybrid Retrieval Configuration
    hybrid_timeout_ms: int = Field(
        default=600,
        ge=50,
        le=30000,
        description="Time budget per retrieval call in milliseconds",
    )
    hybrid_mock_on_failure: bool = Field(
        default=False,
        description="Return labeled placeholder hits when no backend is configured or nothing is found.",
    )
    hybrid_enforce_budget: bool = Field(
        default=False,
        description=(
            "Treat hybrid_timeout_ms as a hard per-source timeout. "
            "When False the budget is advisory and only reported in fallback notes."
        ),
    )
    hybrid_result_window: int = Field(
        default=50,
        ge=1,
        le=500,
        description="Result window for the primary full-text query",
    )
    hybrid_probe_query: str = Field(
        default="返品 送料",
        description="Fixed sanity-check query issued once when the primary query returns no hits.",
    )
    hybrid_probe_window: int = Field(
        default=5,
        ge=1,
        le=50,
        description="Result window for the sanity-check query",
    )
    hybrid_max_results: int = Field(
        default=80,
        ge=1,
        le=500,
        description="Maximum merged hits handed to the reranker",
    )
    vector_top_k: int = Field(
        default=20,
        ge=1,
        le=200,
        description="Number of neighbours requested from the vector store",
    )

    # Reranker Configuration
    reranker_model_path: str | None = Field(
        default=None,
        description="Cross-encoder model name or local path. Unset keeps the heuristic-only reranker.",
    )
    reranker_candidates: int = Field(
        default=24,
        ge=1,
        le=200,
        description="Candidate window kept after the heuristic stage (all the precision stage ever sees)",
    )
    reranker_min_query_chars: int = Field(
        default=8,
        ge=0,
        le=200,
        description="Minimum trimmed query length before precision reranking runs",
    )
    reranker_max_batch_size: int = Field(
        default=16,
        ge=1,
        le=256,
        description="Maximum query/candidate pairs scored per cross-encoder batch",
    )

    # LLM Configuration (via OpenRouter)
    openrouter_api_key: str | None = Field(
        default=None,
        description="OpenRouter API key for LLM access. Without it answers are synthesized from hits.",
    )
    openrouter_base_url: str = Field(
        default="https://openrouter.ai/api/v1",
        description="OpenRouter API base URL",
    )
    llm_economy_model: str = Field(
        default="openai/gpt-oss-20b",
        description="Model used for the economy tier",
    )
    llm_premium_model: str = Field(
        default="openai/gpt-oss-120b",
        description="Model used for the premium tier",
    )
    llm_temperature: float = Field(
        default=0.2,
        ge=0.0,
        le=2.0,
        description="LLM temperature (lower = more factual)",
    )
    llm_timeout_seconds: float = Field(
        default=20.0,
        gt=0.0,
        le=300.0,
        description="Request timeout for answer generation",
    )

    # Model Routing Configuration
    router_forced_tier: str | None = Field(
        default=None,
        description="Debug override: 'economy' or 'premium' forces every routing decision.",
    )
    router_max_premium_per_request: int = Field(
        default=1,
        ge=1,
        le=10,
        description="Maximum premium-tier invocations allowed within one request",
    )

    # Dialog Configuration
    dialog_top_k: int = Field(
        default=5,
        ge=1,
        le=20,
        description="Default number of reranked hits passed to answer generation",
    )
    dialog_history_window: int = Field(
        default=6,
        ge=0,
        le=50,
        description="Number of history messages considered for turn signals",
    )
    session_history_max_messages: int = Field(
        default=20,
        ge=1,
        le=500,
        description="Messages retained per session in the in-memory history store",
    )

    log_level: str = Field(
        default="INFO",
        description="Root log level",
    )

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    @field_validator("openrouter_api_key")
    @classmethod
    def validate_openrouter_key(cls, v: str | None) -> str | None:
        """Treat a blank key as missing."""
        if v is None or v.strip() == "":
            return None
        return v.strip()

    @field_validator("router_forced_tier")
    @classmethod
    def validate_forced_tier(cls, v: str | None) -> str | None:
        """Accept only known tiers; blank means no override."""
        if v is None or v.strip() == "":
            return None
        normalized = v.strip().lower()
        if normalized not in {"economy", "premium"}:
            raise ValueError("ROUTER_FORCED_TIER must be 'economy' or 'premium'.")
        return normalized

    @property
    def retrieval_backend_configured(self) -> bool:
        return bool(self.qdrant_url) or self.qdrant_in_memory


# Singleton instance
_settings_instance: Settings | None = None


def get_settings() -> Settings:
    """
    Get application settings instance (singleton pattern).

    Returns:
        Settings instance (cached after first call)
    """
    global _settings_instance
    if _settings_instance is None:
        _settings_instance = Settings()
    return _settings_instance
