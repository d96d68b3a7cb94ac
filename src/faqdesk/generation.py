"""Tier-aware answer generation via OpenRouter, plus the offline fallback answer."""

from __future__ import annotations

import logging
import re
from typing import Mapping, Protocol, Sequence

from langchain_core.language_models.chat_models import BaseChatModel
from langchain_core.prompts import ChatPromptTemplate
from langchain_openai import ChatOpenAI

from .config import Settings, get_settings
from .types import Hit, ModelTier

logger = logging.getLogger(__name__)

FALLBACK_MAX_CHARS = 420
CONTEXT_HITS = 5

NO_RESULTS_RESPONSE = (
    "ご質問の内容に完全に一致するFAQは見つかりませんでした。"
    "キーワード（商品名・機能名・「返品」「送料」など）を含めて、もう一度お試しください。"
)

SYSTEM_PROMPT = """あなたはECサイトのカスタマーサポート担当です。以下のFAQ抜粋だけを根拠に、日本語で簡潔に回答してください。

ルール:
- 3〜4文以内で要点を答える
- FAQに記載のない条件や金額を推測しない
- 根拠が不十分な場合は、その旨を伝えて問い合わせ窓口の利用を案内する
- 自傷・暴力・違法行為につながる具体的な手順は決して提示しない

FAQ抜粋:
{context}"""


class GenerationError(RuntimeError):
    """Raised when the language model could not produce an answer."""


class TextGenerator(Protocol):
    def generate(self, question: str, hits: Sequence[Hit], tier: ModelTier) -> str: ...


def _truncate(text: str, max_chars: int) -> str:
    if len(text) <= max_chars:
        return text
    return text[: max_chars - 1] + "…"


def _sanitize(text: str) -> str:
    return re.sub(r"\s+", " ", text or "").strip()


def synthesize_fallback_answer(
    query: str, hits: Sequence[Hit], max_chars: int = FALLBACK_MAX_CHARS
) -> str:
    """
    Compose a short answer from the top two hits without calling a model.

    Returns the no-results message when there are no hits.
    """
    if not hits:
        return _truncate(NO_RESULTS_RESPONSE, max_chars)

    bullets = "\n".join(f"・{_sanitize(hit.text)}" for hit in hits[:2])
    answer = (
        f"ご質問「{query}」に対して、関連性の高いFAQから要点をまとめました。\n"
        f"{bullets}\n\n"
        "具体的な手順や最新の条件は、各FAQ本文をご確認ください。"
    )
    return _truncate(answer, max_chars)


def format_context(hits: Sequence[Hit], limit: int = CONTEXT_HITS) -> str:
    """Numbered FAQ excerpts for the prompt."""
    blocks = [f"[{idx}] {_sanitize(hit.text)}" for idx, hit in enumerate(hits[:limit], start=1)]
    return "\n\n".join(blocks)


class TieredAnswerGenerator:
    """Answer questions with the chat model configured for the requested tier."""

    def __init__(
        self,
        settings: Settings | None = None,
        llms: Mapping[ModelTier, BaseChatModel] | None = None,
    ):
        self.settings = settings or get_settings()
        if llms is None:
            llms = {
                ModelTier.ECONOMY: self._build_llm(self.settings.llm_economy_model),
                ModelTier.PREMIUM: self._build_llm(self.settings.llm_premium_model),
            }
        self.llms = dict(llms)
        self.prompt_template = ChatPromptTemplate.from_messages(
            [
                ("system", SYSTEM_PROMPT),
                ("human", "{input}"),
            ]
        )

    def _build_llm(self, model: str) -> ChatOpenAI:
        return ChatOpenAI(
            model=model,
            temperature=self.settings.llm_temperature,
            api_key=self.settings.openrouter_api_key,
            base_url=self.settings.openrouter_base_url,
            timeout=self.settings.llm_timeout_seconds,
            default_headers={
                "X-Title": "faqdesk",
            },
        )

    def generate(self, question: str, hits: Sequence[Hit], tier: ModelTier) -> str:
        """
        Generate an answer grounded in the given hits.

        Raises:
            GenerationError: If the model call fails or returns no text
        """
        llm = self.llms.get(ModelTier(tier))
        if llm is None:
            raise GenerationError(f"No model configured for tier {tier}")

        messages = self.prompt_template.format_messages(context=format_context(hits), input=question)
        try:
            response = llm.invoke(messages)
        except Exception as exc:
            raise GenerationError(f"{ModelTier(tier).value} model call failed: {exc}") from exc

        answer = response.content if hasattr(response, "content") else str(response)
        if not isinstance(answer, str) or not answer.strip():
            raise GenerationError(f"{ModelTier(tier).value} model returned an empty answer")
        return answer.strip()


def build_answer_generator(settings: Settings | None = None) -> TieredAnswerGenerator | None:
    """Create the OpenRouter-backed generator, or None when no API key is configured."""
    settings = settings or get_settings()
    if not settings.openrouter_api_key:
        logger.info("OPENROUTER_API_KEY not set; answers will be synthesized from FAQ hits")
        return None
    return TieredAnswerGenerator(settings)
