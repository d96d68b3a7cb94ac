"""Dialog orchestration: clarify, or search, rerank, route, and answer.

One call to ``DialogOrchestrator.run`` handles exactly one turn. The state
machine is linear (start, clarify check, then either the clarify branch or the
search branch, then done) and never retries within a turn.
"""

from __future__ import annotations

import logging
import threading
import time
import uuid
from dataclasses import dataclass, replace
from typing import Any, Dict, Optional

from .config import Settings, get_settings
from .generation import (
    NO_RESULTS_RESPONSE,
    GenerationError,
    TextGenerator,
    build_answer_generator,
    synthesize_fallback_answer,
)
from .reranking import RerankEngine
from .retrieval import HybridRetriever
from .routing import ModelRouter
from .signals import TurnSignals, build_route_context
from .types import (
    AnswerGeneratedStep,
    ClarifyPlanStep,
    ClarifyStep,
    DialogTurnResult,
    FollowupSearchStep,
    ModelRoutedStep,
    ModelTier,
    QueryPlan,
    RetrievalStatus,
    SearchExecutedStep,
    SearchStep,
)
from .utils import configure_logging, extract_chat_history

logger = logging.getLogger(__name__)


@dataclass
class DialogOptions:
    """Per-turn options supplied by the transport layer."""

    top_k: Optional[int] = None
    tenant_id: Optional[str] = None
    user_message: Optional[str] = None
    debug: bool = False
    """Attach retrieval and routing diagnostics under ``meta["debug"]``."""


def _resolve_search(plan: QueryPlan) -> tuple[str, Optional[int]]:
    """Pick the effective query (and the step's top_k, if the query came from a step)."""
    if plan.followup_queries and (plan.followup_queries[0] or "").strip():
        return plan.followup_queries[0].strip(), None
    for step_type in (SearchStep, FollowupSearchStep):
        for step in plan.steps:
            if isinstance(step, step_type) and step.query.strip():
                return step.query.strip(), step.top_k
    return "", None


def _clarifying_questions(plan: QueryPlan) -> list[str]:
    if plan.clarifying_questions:
        return list(plan.clarifying_questions)
    questions: list[str] = []
    for step in plan.steps:
        if isinstance(step, ClarifyStep):
            questions.extend(step.questions)
    return questions


class DialogOrchestrator:
    """Run one dialog turn against retrieval, rerank, routing, and generation."""

    def __init__(
        self,
        retriever: HybridRetriever,
        reranker: RerankEngine,
        router: ModelRouter,
        generator: TextGenerator | None = None,
        settings: Settings | None = None,
    ):
        self.settings = settings or get_settings()
        self.retriever = retriever
        self.reranker = reranker
        self.router = router
        self.generator = generator

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> "DialogOrchestrator":
        """Configure logging, wire every collaborator from settings, and warm up the reranker."""
        settings = settings or get_settings()
        configure_logging(settings.log_level)
        reranker = RerankEngine(settings)
        reranker.warmup()
        return cls(
            retriever=HybridRetriever.from_settings(settings),
            reranker=reranker,
            router=ModelRouter.from_settings(settings),
            generator=build_answer_generator(settings),
            settings=settings,
        )

    def run(
        self,
        plan: QueryPlan,
        session_id: str,
        history: list[Dict[str, Any]] | None = None,
        options: DialogOptions | None = None,
        signals: TurnSignals | None = None,
    ) -> DialogTurnResult:
        """
        Execute one turn of the plan.

        Args:
            plan: Query plan from the planner
            session_id: Conversation id echoed in the result
            history: Prior user/assistant messages, oldest first
            options: Per-turn overrides (top_k, tenant, original user message, debug)
            signals: Upstream routing signals overriding derived ones

        Returns:
            DialogTurnResult with the trace steps in execution order
        """
        options = options or DialogOptions()
        history = list(history or [])

        if plan.needs_clarification:
            questions = _clarifying_questions(plan)
            logger.debug("Session %s: asking %s clarifying question(s)", session_id, len(questions))
            return DialogTurnResult(
                session_id=session_id,
                needs_clarification=True,
                clarifying_questions=questions,
                final=False,
                answer=None,
                steps=[ClarifyPlanStep(questions=questions)],
                meta={"plan_confidence": plan.confidence},
            )

        query, step_top_k = _resolve_search(plan)
        if not query:
            logger.warning("Session %s: plan carries no search query; answering with no results", session_id)
            return DialogTurnResult(
                session_id=session_id,
                needs_clarification=False,
                clarifying_questions=[],
                final=True,
                answer=NO_RESULTS_RESPONSE,
                steps=[
                    SearchExecutedStep(query="", hits=[], retrieval_status=RetrievalStatus.EMPTY)
                ],
                meta={"plan_confidence": plan.confidence},
            )

        top_k = options.top_k if options.top_k is not None else step_top_k
        if top_k is None:
            top_k = self.settings.dialog_top_k

        retrieval = self.retriever.search(query, tenant_id=options.tenant_id)
        reranked = self.reranker.rerank(query, retrieval.items, top_k)
        hits = reranked.items
        steps: list = [
            SearchExecutedStep(
                query=query,
                hits=hits,
                retrieval_status=retrieval.status,
                retrieval_notes=list(retrieval.notes),
                rerank_engine=reranked.engine,
                search_ms=retrieval.elapsed_ms,
                rerank_ms=reranked.elapsed_ms,
            )
        ]

        question = (options.user_message or "").strip() or query
        route_ctx = build_route_context(
            question,
            hits,
            history,
            max_premium_per_request=self.settings.router_max_premium_per_request,
            signals=signals,
        )
        decision = self.router.route(route_ctx)
        steps.append(
            ModelRoutedStep(
                tier=decision.tier,
                reasons=list(decision.reasons),
                used_premium_count=decision.used_premium_count,
            )
        )

        answer, fallback_used, generation_ms = self._answer(question, hits, decision.tier)
        steps.append(
            AnswerGeneratedStep(tier=decision.tier, fallback_used=fallback_used, elapsed_ms=generation_ms)
        )
        logger.debug(
            "Session %s: answered with %s tier (%s hits, fallback=%s)",
            session_id,
            decision.tier.value,
            len(hits),
            fallback_used,
        )

        meta: dict[str, Any] = {
            "plan_confidence": plan.confidence,
            "tier": decision.tier.value,
            "used_premium_count": decision.used_premium_count,
            "retrieval_status": retrieval.status.value,
            "is_mock": retrieval.is_mock,
            "rerank_engine": reranked.engine.value,
        }
        if options.debug:
            meta["debug"] = {
                "query": query,
                "top_k": top_k,
                "retrieval_notes": list(retrieval.notes),
                "route_reasons": list(decision.reasons),
                "route_context": {
                    "context_tokens": route_ctx.context_tokens,
                    "complexity": route_ctx.complexity.value if route_ctx.complexity else None,
                    "conversation_depth": route_ctx.conversation_depth,
                    "intent_type": route_ctx.intent_type,
                    "requires_safe_mode": route_ctx.requires_safe_mode,
                },
                "search_ms": retrieval.elapsed_ms,
                "rerank_ms": reranked.elapsed_ms,
                "generation_ms": generation_ms,
            }
            logger.debug("Session %s: turn diagnostics %s", session_id, meta["debug"])

        return DialogTurnResult(
            session_id=session_id,
            needs_clarification=False,
            clarifying_questions=[],
            final=True,
            answer=answer,
            steps=steps,
            meta=meta,
        )

    def close(self) -> None:
        """Release the retriever's worker pool."""
        self.retriever.close()

    def __enter__(self) -> "DialogOrchestrator":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def _answer(self, question: str, hits: list, tier: ModelTier) -> tuple[str, bool, int]:
        """Return (answer, fallback_used, elapsed_ms); generation failures fall back to synthesis."""
        started = time.perf_counter()
        if self.generator is None or not hits:
            answer = synthesize_fallback_answer(question, hits)
            return answer, True, int(round((time.perf_counter() - started) * 1000))
        try:
            answer = self.generator.generate(question, hits, tier)
            fallback_used = False
        except GenerationError as exc:
            logger.warning("Answer generation failed, using synthesized answer: %s", exc)
            answer = synthesize_fallback_answer(question, hits)
            fallback_used = True
        return answer, fallback_used, int(round((time.perf_counter() - started) * 1000))


class SessionHistoryStore:
    """In-memory per-session message history, capped to the most recent messages."""

    def __init__(self, max_messages: int = 20):
        if max_messages < 1:
            raise ValueError(f"max_messages must be >= 1, got {max_messages}")
        self.max_messages = max_messages
        self._sessions: dict[str, list[Dict[str, Any]]] = {}
        self._lock = threading.Lock()

    def get(self, session_id: str) -> list[Dict[str, Any]]:
        with self._lock:
            return list(self._sessions.get(session_id, []))

    def append(self, session_id: str, *messages: Dict[str, Any]) -> None:
        with self._lock:
            history = self._sessions.setdefault(session_id, [])
            history.extend(dict(message) for message in messages)
            del history[: max(0, len(history) - self.max_messages)]

    def overwrite(self, session_id: str, messages: list[Dict[str, Any]]) -> None:
        with self._lock:
            self._sessions[session_id] = [dict(message) for message in messages][-self.max_messages :]

    def clear(self, session_id: str) -> None:
        with self._lock:
            self._sessions.pop(session_id, None)


class DialogSession:
    """Turn handler that keeps conversation history between orchestrator calls."""

    def __init__(
        self,
        orchestrator: DialogOrchestrator,
        store: SessionHistoryStore | None = None,
        settings: Settings | None = None,
    ):
        self.settings = settings or orchestrator.settings
        self.orchestrator = orchestrator
        self.store = store or SessionHistoryStore(self.settings.session_history_max_messages)

    def handle_turn(
        self,
        message: str,
        plan: QueryPlan,
        session_id: str | None = None,
        options: DialogOptions | None = None,
        signals: TurnSignals | None = None,
    ) -> DialogTurnResult:
        """Run one turn for ``message`` and record it (and any answer) in the session history."""
        session_id = session_id or str(uuid.uuid4())
        history = extract_chat_history(
            self.store.get(session_id),
            window_size=self.settings.dialog_history_window,
        )
        options = replace(options or DialogOptions(), user_message=message)

        result = self.orchestrator.run(
            plan, session_id, history=history, options=options, signals=signals
        )

        self.store.append(session_id, {"role": "user", "content": message})
        if result.answer:
            self.store.append(session_id, {"role": "assistant", "content": result.answer})
        return result
