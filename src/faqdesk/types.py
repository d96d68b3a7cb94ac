"""Shared dataclasses used across retrieval, reranking, routing, and dialog modules.

No imports from other faqdesk modules, so any module can import this one.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field, replace
from enum import Enum
from typing import Any, Optional, Union


class HitSource(str, Enum):
    """Which retrieval source produced a hit."""

    PRIMARY_TEXT = "primary_text"
    RELATIONAL = "relational"
    VECTOR = "vector"


class RetrievalStatus(str, Enum):
    """Outcome class of a hybrid retrieval call."""

    OK = "ok"
    DEGRADED = "degraded"
    EMPTY = "empty"


class RerankEngineName(str, Enum):
    HEURISTIC = "heuristic"
    PRECISION = "precision"
    PRECISION_WITH_FALLBACK = "precision_with_fallback"


class ModelTier(str, Enum):
    """Cost/quality level of the text-generation collaborator."""

    ECONOMY = "economy"
    PREMIUM = "premium"


class Complexity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


@dataclass(frozen=True)
class Hit:
    """One retrieved candidate passage."""

    id: str
    text: str
    score: float
    source: HitSource

    def with_score(self, score: float) -> "Hit":
        """Return a copy carrying a different score."""
        return replace(self, score=float(score))

    def to_dict(self) -> dict[str, Any]:
        return {"id": self.id, "text": self.text, "score": self.score, "source": self.source.value}


@dataclass
class RetrievalResult:
    """Result of a hybrid retrieval call. Created per call, never persisted."""

    items: list[Hit]
    """Merged hits, strictly descending by normalized score."""

    elapsed_ms: int
    """Wall-clock time from call entry to return."""

    notes: list[str] = field(default_factory=list)
    """Ordered, human-readable diagnostics. Never parsed by callers."""

    status: RetrievalStatus = RetrievalStatus.OK
    """OK for real hits, DEGRADED when a backend failed or mock/probe data was used,
    EMPTY when nothing was obtained."""

    is_mock: bool = False
    """True when ``items`` are placeholder hits."""


@dataclass
class RerankResult:
    """Result of a rerank call.

    ``items`` is a subset of the input hits, at most ``top_k`` long, ordered by
    the engine's internal score (ties broken by original retrieval score).
    """

    items: list[Hit]
    elapsed_ms: int
    engine: RerankEngineName


@dataclass(frozen=True)
class RouteContext:
    """Per-turn routing signals. Never mutated; routing returns a new counter."""

    context_tokens: int = 0
    recall: Optional[float] = None
    complexity: Optional[Complexity] = None
    safety_tag: str = "none"
    conversation_depth: int = 0
    used_premium_count: int = 0
    max_premium_per_request: int = 1
    intent_type: Optional[str] = None
    requires_safe_mode: bool = False

    def __post_init__(self) -> None:
        if self.context_tokens < 0:
            raise ValueError(f"context_tokens must be >= 0, got {self.context_tokens}")
        if self.recall is not None and not 0.0 <= self.recall <= 1.0:
            raise ValueError(f"recall must be within [0, 1], got {self.recall}")
        if self.conversation_depth < 0:
            raise ValueError(f"conversation_depth must be >= 0, got {self.conversation_depth}")
        if self.used_premium_count < 0:
            raise ValueError(f"used_premium_count must be >= 0, got {self.used_premium_count}")
        if self.max_premium_per_request < 1:
            raise ValueError(
                f"max_premium_per_request must be >= 1, got {self.max_premium_per_request}"
            )
        if self.complexity is not None and not isinstance(self.complexity, Complexity):
            object.__setattr__(self, "complexity", Complexity(self.complexity))


@dataclass
class RoutingDecision:
    """Tier chosen for a turn plus the audit trail of rules that fired."""

    tier: ModelTier
    reasons: list[str]
    used_premium_count: int


# ---------------------------------------------------------------------------
# Query plan (produced by the external planner)
# ---------------------------------------------------------------------------


@dataclass
class ClarifyStep:
    id: str
    questions: list[str]
    description: Optional[str] = None
    type: str = "clarify"


@dataclass
class SearchStep:
    id: str
    query: str
    top_k: int = 5
    filters: Optional[dict[str, Any]] = None
    description: Optional[str] = None
    type: str = "search"


@dataclass
class FollowupSearchStep:
    id: str
    query: str
    top_k: int = 5
    based_on: str = "user"
    description: Optional[str] = None
    type: str = "followup_search"


@dataclass
class AnswerStep:
    id: str
    style: str = "faq"
    include_sources: bool = True
    description: Optional[str] = None
    type: str = "answer"


PlanStep = Union[ClarifyStep, SearchStep, FollowupSearchStep, AnswerStep]


def _plan_step_from_dict(raw: dict[str, Any], index: int) -> PlanStep:
    step_type = raw.get("type")
    step_id = str(raw.get("id") or f"step_{index + 1}")
    description = raw.get("description")
    if step_type == "clarify":
        return ClarifyStep(
            id=step_id,
            questions=[str(q) for q in raw.get("questions") or []],
            description=description,
        )
    if step_type == "search":
        return SearchStep(
            id=step_id,
            query=str(raw.get("query") or ""),
            top_k=int(raw.get("topK", raw.get("top_k", 5))),
            filters=raw.get("filters"),
            description=description,
        )
    if step_type == "followup_search":
        return FollowupSearchStep(
            id=step_id,
            query=str(raw.get("query") or ""),
            top_k=int(raw.get("topK", raw.get("top_k", 5))),
            based_on=str(raw.get("basedOn", raw.get("based_on", "user"))),
            description=description,
        )
    if step_type == "answer":
        return AnswerStep(
            id=step_id,
            style=str(raw.get("style") or "faq"),
            include_sources=bool(raw.get("includeSources", raw.get("include_sources", True))),
            description=description,
        )
    raise ValueError(f"Unknown plan step type: {step_type!r}")


@dataclass
class QueryPlan:
    """Multi-step query plan handed to the dialog orchestrator."""

    steps: list[PlanStep] = field(default_factory=list)
    needs_clarification: bool = False
    clarifying_questions: list[str] = field(default_factory=list)
    followup_queries: list[str] = field(default_factory=list)
    confidence: str = "medium"
    language: Optional[str] = None

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> "QueryPlan":
        """Build a plan from planner JSON (camelCase or snake_case keys)."""
        steps = [_plan_step_from_dict(step, idx) for idx, step in enumerate(raw.get("steps") or [])]
        return cls(
            steps=steps,
            needs_clarification=bool(
                raw.get("needsClarification", raw.get("needs_clarification", False))
            ),
            clarifying_questions=list(
                raw.get("clarifyingQuestions", raw.get("clarifying_questions")) or []
            ),
            followup_queries=list(raw.get("followupQueries", raw.get("followup_queries")) or []),
            confidence=str(raw.get("confidence") or "medium"),
            language=raw.get("language"),
        )


# ---------------------------------------------------------------------------
# Orchestrator trace steps and turn result
# ---------------------------------------------------------------------------


@dataclass
class ClarifyPlanStep:
    questions: list[str]
    type: str = "clarify_plan"


@dataclass
class SearchExecutedStep:
    query: str
    hits: list[Hit]
    retrieval_status: RetrievalStatus = RetrievalStatus.OK
    retrieval_notes: list[str] = field(default_factory=list)
    rerank_engine: RerankEngineName = RerankEngineName.HEURISTIC
    search_ms: int = 0
    rerank_ms: int = 0
    type: str = "search_executed"


@dataclass
class ModelRoutedStep:
    tier: ModelTier
    reasons: list[str]
    used_premium_count: int
    type: str = "model_routed"


@dataclass
class AnswerGeneratedStep:
    tier: ModelTier
    fallback_used: bool
    elapsed_ms: int
    type: str = "answer_generated"


TraceStep = Union[ClarifyPlanStep, SearchExecutedStep, ModelRoutedStep, AnswerGeneratedStep]


def _jsonable(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, dict):
        return {key: _jsonable(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [_jsonable(item) for item in value]
    return value


@dataclass
class DialogTurnResult:
    """Outcome of one dialog turn: either a clarification or a final answer."""

    session_id: str
    needs_clarification: bool
    clarifying_questions: list[str]
    final: bool
    answer: Optional[str]
    steps: list[TraceStep] = field(default_factory=list)
    meta: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Plain-JSON view handed to the transport layer."""
        return _jsonable(asdict(self))
