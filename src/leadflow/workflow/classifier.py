"""Reply classification capability.

The engine only depends on the ``ReplyClassifier`` protocol. Two
implementations ship here:

- ``KeywordReplyClassifier``: regex, zero network calls, the default
- ``LLMReplyClassifier``: one model call through litellm, used when
  ``LEADFLOW_CLASSIFIER_MODEL`` is set

A NOT_INTERESTED decision drops the lead for good, so the keyword
classifier only returns it for an explicit, un-negated phrase with no
competing follow-up signal.
"""

from __future__ import annotations

import re
from typing import Any, Protocol, runtime_checkable

import structlog
from litellm import acompletion

from leadflow.config import settings
from leadflow.workflow.types import AIResult, ReplyDecision

logger = structlog.get_logger()


@runtime_checkable
class ReplyClassifier(Protocol):
    async def classify(self, lead_id: str, reply_text: str) -> AIResult: ...


_NOT_INTERESTED = re.compile(
    r"\b(not\s+interested|no\s+longer\s+interested|declined|no\s+requirement|"
    r"do(?:es)?\s*n[o']t\s+want\s+to\s+proceed|"
    r"do(?:es)?\s*n[o']t\s+(?:want|need)\s+(?:the\s+)?(?:financing|funding|loan|facility)|"
    r"drop\s+(?:the\s+)?lead)\b"
)
_ADMIN_REVIEW = re.compile(
    r"\b(wrong\s+(?:rm|dealer|mapping|lead)|not\s+my\s+(?:client|dealer|lead)|"
    r"incorrect(?:ly)?\s+(?:mapped|assigned)|duplicate|reassign|escalate\s+to\s+admin|"
    r"admin\s+review)\b"
)
_FOLLOW_UP = re.compile(
    r"\b(follow[\s-]?up|call(?:ed)?\s+back|meeting|scheduled|will\s+(?:connect|call|visit)|"
    r"in\s+progress|next\s+week|tomorrow|documents?\s+(?:pending|awaited))\b"
)
# A negator up to two words before a match, within the same clause.
_NEGATED_TAIL = re.compile(r"(?:\b(?:not|never|no|cannot)|n't)\s+(?:\w+\s+){0,2}$")


def _has_unnegated(pattern: re.Pattern[str], text: str) -> bool:
    for match in pattern.finditer(text):
        if not _NEGATED_TAIL.search(text[: match.start()]):
            return True
    return False


class KeywordReplyClassifier:
    """Regex-based reply classifier.

    Pure regex, zero network calls. A not-interested phrase only counts
    when nothing negates it; if the reply also talks about a follow-up
    the decision is left to a human (UNCLASSIFIED).
    """

    async def classify(self, lead_id: str, reply_text: str) -> AIResult:
        lower = (reply_text or "").lower().strip()
        if not lower:
            return AIResult(summary="", decision=ReplyDecision.UNCLASSIFIED)

        summary = _summarize(reply_text)
        not_interested = _has_unnegated(_NOT_INTERESTED, lower)
        follow_up = bool(_FOLLOW_UP.search(lower))
        if not_interested and follow_up:
            decision = ReplyDecision.UNCLASSIFIED
        elif not_interested:
            decision = ReplyDecision.NOT_INTERESTED
        elif _has_unnegated(_ADMIN_REVIEW, lower):
            decision = ReplyDecision.NEEDS_ADMIN_REVIEW
        elif follow_up:
            decision = ReplyDecision.FOLLOW_UP
        else:
            decision = ReplyDecision.UNCLASSIFIED

        logger.debug(
            "reply_classified",
            lead_id=lead_id,
            decision=decision.value,
        )
        return AIResult(summary=summary, decision=decision, tokens_consumed=0)


def _summarize(text: str, limit: int = 200) -> str:
    collapsed = " ".join(text.split())
    if len(collapsed) <= limit:
        return collapsed
    return collapsed[: limit - 3].rstrip() + "..."


_LLM_SYSTEM_PROMPT = (
    "You triage replies from relationship managers about dealer leads.\n"
    "Answer with exactly two lines:\n"
    "SUMMARY=<a 2-5 word summary of the reply>\n"
    "DECISION=<one of: FollowUp, Dealer Not Interested, Admin Review>\n"
    "Use 'Dealer Not Interested' only when the dealer clearly rejects the offer. "
    "Use 'Admin Review' when the lead is mapped to the wrong RM or dealer."
)


class LLMReplyClassifier:
    """Model-backed reply classifier (one litellm call per reply)."""

    def __init__(
        self,
        model: str,
        api_key: str = "",
        api_base: str = "",
        max_tokens: int = 60,
    ) -> None:
        self.model = model
        self.api_key = api_key
        self.api_base = api_base
        self.max_tokens = max_tokens

    async def classify(self, lead_id: str, reply_text: str) -> AIResult:
        kwargs: dict[str, Any] = {
            "model": self.model,
            "messages": [
                {"role": "system", "content": _LLM_SYSTEM_PROMPT},
                {"role": "user", "content": reply_text},
            ],
            "max_tokens": self.max_tokens,
            "temperature": 0,
        }
        if self.api_key:
            kwargs["api_key"] = self.api_key
        if self.api_base:
            kwargs["api_base"] = self.api_base

        response = await acompletion(**kwargs)
        content = (response.choices[0].message.content or "").strip()
        summary, decision = _parse_llm_answer(content)
        usage = getattr(response, "usage", None)
        tokens = int(getattr(usage, "total_tokens", 0) or 0)

        logger.info(
            "reply_classified",
            lead_id=lead_id,
            decision=decision.value,
            model=self.model,
            tokens=tokens,
        )
        return AIResult(
            summary=summary or _summarize(reply_text),
            decision=decision,
            tokens_consumed=tokens,
        )


def _parse_llm_answer(content: str) -> tuple[str, ReplyDecision]:
    summary = ""
    label = ""
    for line in content.splitlines():
        key, _, value = line.partition("=")
        key = key.strip().upper()
        if key == "SUMMARY":
            summary = value.strip()
        elif key == "DECISION":
            label = value.strip()
    return summary, ReplyDecision.from_label(label)


_classifier: ReplyClassifier | None = None


def get_classifier() -> ReplyClassifier:
    """Get or create the default reply classifier."""
    global _classifier
    if _classifier is None:
        if settings.classifier_model:
            _classifier = LLMReplyClassifier(
                settings.classifier_model,
                api_key=settings.classifier_api_key,
                api_base=settings.classifier_api_base,
            )
        else:
            _classifier = KeywordReplyClassifier()
    return _classifier
