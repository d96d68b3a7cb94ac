"""Tiered model routing: pick economy or premium generation per turn.

Rules are applied in a fixed order and every rule that fires appends a reason,
so the returned reasons double as an audit trail of the decision.
"""

from __future__ import annotations

import logging

from .config import Settings
from .types import Complexity, ModelTier, RouteContext, RoutingDecision

logger = logging.getLogger(__name__)

PREMIUM_SAFETY_TAGS = frozenset({"legal", "security", "policy"})
PREMIUM_CONTEXT_TOKENS = 2000
LOW_RECALL_THRESHOLD = 0.6
DOWNGRADE_MAX_DEPTH = 2
DOWNGRADE_MIN_RECALL = 0.8


def base_rule_triggers(ctx: RouteContext) -> list[str]:
    """Return the base-rule conditions that call for the premium tier."""
    triggers: list[str] = []
    if ctx.safety_tag in PREMIUM_SAFETY_TAGS:
        triggers.append(f"safety:{ctx.safety_tag}")
    if ctx.context_tokens > PREMIUM_CONTEXT_TOKENS:
        triggers.append(f"context-tokens>{PREMIUM_CONTEXT_TOKENS}")
    if ctx.recall is not None and ctx.recall < LOW_RECALL_THRESHOLD:
        triggers.append(f"recall<{LOW_RECALL_THRESHOLD}")
    if ctx.complexity == Complexity.HIGH:
        triggers.append("complexity:high")
    return triggers


class ModelRouter:
    """Deterministic tier router with a per-request premium budget."""

    def __init__(self, forced_tier: ModelTier | str | None = None):
        self.forced_tier = ModelTier(forced_tier) if forced_tier else None

    @classmethod
    def from_settings(cls, settings: Settings) -> "ModelRouter":
        return cls(forced_tier=settings.router_forced_tier)

    def route(self, ctx: RouteContext) -> RoutingDecision:
        """
        Decide the tier for one generation call.

        Args:
            ctx: Turn signals plus the premium counter threaded through the request

        Returns:
            RoutingDecision with the tier, ordered reasons, and the updated counter
        """
        used = ctx.used_premium_count

        if self.forced_tier is not None:
            tier = self.forced_tier
            decision = RoutingDecision(
                tier=tier,
                reasons=[f"forced:{tier.value}"],
                used_premium_count=used + 1 if tier == ModelTier.PREMIUM else used,
            )
            logger.debug("Routing forced to %s", tier.value)
            return decision

        if used >= ctx.max_premium_per_request:
            return RoutingDecision(
                tier=ModelTier.ECONOMY,
                reasons=[
                    f"limit-premium-per-request:used={used},max={ctx.max_premium_per_request}"
                ],
                used_premium_count=used,
            )

        reasons: list[str] = []
        triggers = base_rule_triggers(ctx)
        reasons.extend(f"base:{trigger}" for trigger in triggers)
        tier = ModelTier.PREMIUM if triggers else ModelTier.ECONOMY
        reasons.append(f"base-rule:{tier.value}")

        intent_legal = ctx.intent_type == "legal"
        if ctx.requires_safe_mode and tier == ModelTier.ECONOMY:
            tier = ModelTier.PREMIUM
            reasons.append("safe-mode:upgrade-to-premium")

        if intent_legal and tier == ModelTier.ECONOMY:
            tier = ModelTier.PREMIUM
            reasons.append("intent:legal-upgrade-to-premium")

        if (
            triggers
            and tier == ModelTier.PREMIUM
            and not ctx.requires_safe_mode
            and not intent_legal
            and ctx.conversation_depth <= DOWNGRADE_MAX_DEPTH
            and ctx.recall is not None
            and ctx.recall >= DOWNGRADE_MIN_RECALL
        ):
            tier = ModelTier.ECONOMY
            reasons.append("downgrade-to-economy:short-conversation-and-good-recall")

        decision = RoutingDecision(
            tier=tier,
            reasons=reasons,
            used_premium_count=used + 1 if tier == ModelTier.PREMIUM else used,
        )
        logger.debug("Routed to %s (%s)", tier.value, ", ".join(reasons))
        return decision
