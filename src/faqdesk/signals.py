"""Turn signal extraction for routing (context size, complexity, safety, intent)."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Optional, Sequence

from .types import Complexity, Hit, RouteContext

MIN_CONTEXT_TOKENS = 128
MAX_CONTEXT_TOKENS = 4096
CHARS_PER_TOKEN = 4

SAFE_MODE_KEYWORDS = (
    "自殺",
    "死にたい",
    "リストカット",
    "自傷",
    "suicide",
    "kill myself",
    "暴力",
    "虐待",
    "暴行",
    "assault",
    "abuse",
    "違法",
    "犯罪",
    "drug",
)

INTENT_KEYWORDS: tuple[tuple[str, tuple[str, ...]], ...] = (
    ("legal", ("法律", "弁護士", "訴訟", "契約違反", "特定商取引法", "legal", "lawsuit", "lawyer")),
    (
        "shipping",
        ("送料", "配送料", "配送", "お届け", "届く", "到着", "何日", "when will it arrive", "delivery", "shipping"),
    ),
    ("returns", ("返品", "返金", "キャンセル", "交換", "不良品", "return", "refund", "cancel")),
    ("payment", ("支払", "決済", "クレジット", "カード", "請求", "領収書", "invoice", "payment")),
    (
        "product-info",
        ("在庫", "入荷", "サイズ", "カラー", "素材", "仕様", "stock", "size", "color", "material"),
    ),
)


@dataclass
class TurnSignals:
    """Upstream-provided signals; set fields override the derived values."""

    recall: Optional[float] = None
    complexity: Optional[Complexity] = None
    safety_tag: Optional[str] = None
    intent_type: Optional[str] = None
    requires_safe_mode: Optional[bool] = None
    used_premium_count: int = 0


def estimate_context_tokens(hits: Sequence[Hit]) -> int:
    """Rough token count of the hit texts (chars / 4), clamped to [128, 4096]."""
    total_chars = sum(len(hit.text or "") for hit in hits)
    tokens = total_chars // CHARS_PER_TOKEN
    return max(MIN_CONTEXT_TOKENS, min(MAX_CONTEXT_TOKENS, tokens))


def derive_complexity(context_tokens: int, conversation_depth: int) -> Complexity:
    if context_tokens < 512 and conversation_depth <= 1:
        return Complexity.LOW
    if context_tokens > 2048 or conversation_depth > 6:
        return Complexity.HIGH
    return Complexity.MEDIUM


def _joined_text(message: str, history: Sequence[dict[str, Any]] | None) -> str:
    parts = [message or ""]
    parts.extend(str(item.get("content") or "") for item in history or [])
    return " ".join(parts).lower()


def detect_safe_mode(message: str, history: Sequence[dict[str, Any]] | None = None) -> bool:
    """True when the conversation touches self-harm, violence, or illegal activity."""
    text = _joined_text(message, history)
    return any(keyword in text for keyword in SAFE_MODE_KEYWORDS)


def detect_intent(message: str, history: Sequence[dict[str, Any]] | None = None) -> str:
    """Coarse intent label from keywords; ``general`` when nothing matches."""
    text = _joined_text(message, history)
    for intent, keywords in INTENT_KEYWORDS:
        if any(keyword in text for keyword in keywords):
            return intent
    return "general"


def build_route_context(
    question: str,
    hits: Sequence[Hit],
    history: Sequence[dict[str, Any]] | None,
    max_premium_per_request: int,
    signals: TurnSignals | None = None,
) -> RouteContext:
    """Combine derived turn signals with upstream overrides into a RouteContext."""
    signals = signals or TurnSignals()
    history = list(history or [])
    context_tokens = estimate_context_tokens(hits)
    depth = len(history)

    requires_safe_mode = signals.requires_safe_mode
    if requires_safe_mode is None:
        requires_safe_mode = detect_safe_mode(question, history)

    safety_tag = signals.safety_tag
    if safety_tag is None:
        safety_tag = "sensitive" if requires_safe_mode else "none"

    return RouteContext(
        context_tokens=context_tokens,
        recall=signals.recall,
        complexity=signals.complexity or derive_complexity(context_tokens, depth),
        safety_tag=safety_tag,
        conversation_depth=depth,
        used_premium_count=signals.used_premium_count,
        max_premium_per_request=max_premium_per_request,
        intent_type=signals.intent_type or detect_intent(question, history),
        requires_safe_mode=requires_safe_mode,
    )
