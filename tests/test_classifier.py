"""Tests for reply label normalization and the reply classifiers."""

from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from leadflow.workflow import classifier as classifier_module
from leadflow.workflow.classifier import (
    KeywordReplyClassifier,
    LLMReplyClassifier,
    ReplyClassifier,
    get_classifier,
)
from leadflow.workflow.types import ReplyDecision


class TestFromLabel:
    @pytest.mark.parametrize(
        "label, expected",
        [
            ("Dealer Not Interested", ReplyDecision.NOT_INTERESTED),
            ("not interested", ReplyDecision.NOT_INTERESTED),
            ("Admin Review", ReplyDecision.NEEDS_ADMIN_REVIEW),
            ("needs admin review", ReplyDecision.NEEDS_ADMIN_REVIEW),
            ("FollowUp", ReplyDecision.FOLLOW_UP),
            ("follow-up", ReplyDecision.FOLLOW_UP),
            ("Follow up", ReplyDecision.FOLLOW_UP),
            ("maybe", ReplyDecision.UNCLASSIFIED),
            ("", ReplyDecision.UNCLASSIFIED),
            (None, ReplyDecision.UNCLASSIFIED),
        ],
    )
    def test_labels(self, label, expected):
        assert ReplyDecision.from_label(label) is expected


class TestKeywordReplyClassifier:
    @pytest.fixture
    def classifier(self):
        return KeywordReplyClassifier()

    @pytest.mark.parametrize(
        "text, expected",
        [
            ("Dealer is not interested in the program", ReplyDecision.NOT_INTERESTED),
            ("They declined the offer", ReplyDecision.NOT_INTERESTED),
            ("The dealer doesn't want financing", ReplyDecision.NOT_INTERESTED),
            ("Dealer does not want to proceed", ReplyDecision.NOT_INTERESTED),
            ("This is the wrong RM for this dealer", ReplyDecision.NEEDS_ADMIN_REVIEW),
            ("Looks like a duplicate lead", ReplyDecision.NEEDS_ADMIN_REVIEW),
            ("Meeting scheduled for next week", ReplyDecision.FOLLOW_UP),
            ("Will call tomorrow", ReplyDecision.FOLLOW_UP),
            ("Received, thanks", ReplyDecision.UNCLASSIFIED),
        ],
    )
    async def test_decisions(self, classifier, text, expected):
        result = await classifier.classify("L1", text)
        assert result.decision is expected
        assert result.tokens_consumed == 0

    async def test_not_interested_with_follow_up_is_left_to_a_human(self, classifier):
        result = await classifier.classify("L1", "Had a meeting, dealer not interested")
        assert result.decision is ReplyDecision.UNCLASSIFIED

    @pytest.mark.parametrize(
        "text, expected",
        [
            ("The dealer has not declined, meeting scheduled tomorrow", ReplyDecision.FOLLOW_UP),
            ("Dealer hasn't declined yet", ReplyDecision.UNCLASSIFIED),
            ("Dealer doesn't want to delay, send the papers", ReplyDecision.UNCLASSIFIED),
            ("He is not not interested, follow up next week", ReplyDecision.FOLLOW_UP),
            ("They never declined the offer", ReplyDecision.UNCLASSIFIED),
            ("This is not a duplicate lead", ReplyDecision.UNCLASSIFIED),
        ],
    )
    async def test_negated_phrases_do_not_drop(self, classifier, text, expected):
        result = await classifier.classify("L1", text)
        assert result.decision is expected

    async def test_empty_reply(self, classifier):
        result = await classifier.classify("L1", "   ")
        assert result.decision is ReplyDecision.UNCLASSIFIED
        assert result.summary == ""

    async def test_summary_is_collapsed_and_truncated(self, classifier):
        result = await classifier.classify("L1", "word\n\n" * 200)
        assert len(result.summary) <= 200
        assert result.summary.endswith("...")
        assert "\n" not in result.summary


def test_get_classifier_is_singleton():
    first = get_classifier()
    assert first is get_classifier()
    assert isinstance(first, ReplyClassifier)


def _model_response(content: str, total_tokens: int = 0) -> MagicMock:
    response = MagicMock()
    response.choices = [MagicMock()]
    response.choices[0].message.content = content
    response.usage.total_tokens = total_tokens
    return response


@pytest.fixture
def mock_acompletion():
    """Mock litellm.acompletion as seen by the classifier module."""
    with patch("leadflow.workflow.classifier.acompletion", new_callable=AsyncMock) as mock:
        yield mock


class TestLLMReplyClassifier:
    async def test_parses_answer_and_reports_tokens(self, mock_acompletion):
        mock_acompletion.return_value = _model_response(
            "SUMMARY=Dealer rejected offer\nDECISION=Dealer Not Interested", total_tokens=42
        )
        result = await LLMReplyClassifier("gpt-4o-mini").classify("L1", "We are not going ahead")

        assert result.decision is ReplyDecision.NOT_INTERESTED
        assert result.summary == "Dealer rejected offer"
        assert result.tokens_consumed == 42
        kwargs = mock_acompletion.call_args.kwargs
        assert kwargs["model"] == "gpt-4o-mini"
        assert kwargs["messages"][-1]["content"] == "We are not going ahead"
        assert "api_key" not in kwargs

    async def test_passes_credentials_when_configured(self, mock_acompletion):
        mock_acompletion.return_value = _model_response("DECISION=FollowUp", total_tokens=9)
        clf = LLMReplyClassifier("openrouter/some-model", api_key="k", api_base="https://llm.local")
        result = await clf.classify("L1", "Meeting on Monday")

        assert result.decision is ReplyDecision.FOLLOW_UP
        assert result.summary == "Meeting on Monday"
        assert mock_acompletion.call_args.kwargs["api_key"] == "k"
        assert mock_acompletion.call_args.kwargs["api_base"] == "https://llm.local"

    async def test_unknown_label_is_unclassified(self, mock_acompletion):
        mock_acompletion.return_value = _model_response("I am not sure", total_tokens=5)
        result = await LLMReplyClassifier("m").classify("L1", "hmm")
        assert result.decision is ReplyDecision.UNCLASSIFIED
        assert result.tokens_consumed == 5

    async def test_model_errors_propagate(self, mock_acompletion):
        mock_acompletion.side_effect = RuntimeError("rate limited")
        with pytest.raises(RuntimeError):
            await LLMReplyClassifier("m").classify("L1", "hello")


def test_get_classifier_uses_model_when_configured(monkeypatch):
    monkeypatch.setattr(classifier_module, "_classifier", None)
    monkeypatch.setattr(classifier_module.settings, "classifier_model", "gpt-4o-mini")
    clf = get_classifier()
    assert isinstance(clf, LLMReplyClassifier)
    assert clf.model == "gpt-4o-mini"
