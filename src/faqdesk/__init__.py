"""faqdesk - Commerce FAQ assistant: hybrid retrieval, reranking, and tiered model routing."""

__version__ = "0.1.0"

# Configuration
from .config import Settings, get_settings

# Types
from .types import (
    Hit,
    HitSource,
    RetrievalResult,
    RetrievalStatus,
    RerankResult,
    RerankEngineName,
    RouteContext,
    RoutingDecision,
    ModelTier,
    Complexity,
    QueryPlan,
    DialogTurnResult,
)

# Scoring
from .scoring import zscore_normalizer, normalize_zscores, sigmoid, normalize_sigmoid_scores

# Pipeline components
from .retrieval import HybridRetriever, QdrantTextBackend, QdrantVectorBackend
from .reranking import RerankEngine, WarmupReport, RerankerStatus
from .routing import ModelRouter
from .signals import TurnSignals, build_route_context
from .generation import (
    GenerationError,
    TieredAnswerGenerator,
    NO_RESULTS_RESPONSE,
    synthesize_fallback_answer,
)
from .dialog import DialogOrchestrator, DialogOptions, DialogSession, SessionHistoryStore
from .utils import configure_logging, extract_chat_history

__all__ = [
    # config
    "Settings",
    "get_settings",
    # types
    "Hit",
    "HitSource",
    "RetrievalResult",
    "RetrievalStatus",
    "RerankResult",
    "RerankEngineName",
    "RouteContext",
    "RoutingDecision",
    "ModelTier",
    "Complexity",
    "QueryPlan",
    "DialogTurnResult",
    # scoring
    "zscore_normalizer",
    "normalize_zscores",
    "sigmoid",
    "normalize_sigmoid_scores",
    # pipeline
    "HybridRetriever",
    "QdrantTextBackend",
    "QdrantVectorBackend",
    "RerankEngine",
    "WarmupReport",
    "RerankerStatus",
    "ModelRouter",
    "TurnSignals",
    "build_route_context",
    "GenerationError",
    "TieredAnswerGenerator",
    "NO_RESULTS_RESPONSE",
    "synthesize_fallback_answer",
    "DialogOrchestrator",
    "DialogOptions",
    "DialogSession",
    "SessionHistoryStore",
    # utils
    "configure_logging",
    "extract_chat_history",
]
