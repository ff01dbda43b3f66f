"""Tests for ConfidenceAggregator."""

import pytest

from aware_chat.inference.aggregator import ConfidenceAggregator, confidence_percent
from aware_chat.models.chat import Conversation, Message, MessageRole


def scored_conversation(*scores):
    conversation = Conversation()
    for score in scores:
        conversation.append(Message(role=MessageRole.USER, content="q"))
        conversation.append(
            Message(role=MessageRole.ASSISTANT, content="a", hallucination_score=score)
        )
    return conversation


class TestConfidenceAggregator:
    """Tests for ConfidenceAggregator class."""

    @pytest.fixture
    def aggregator(self):
        return ConfidenceAggregator()

    def test_average_includes_new_score(self, aggregator):
        conversation = scored_conversation(0.9, 0.3)
        message = conversation.append(Message(role=MessageRole.ASSISTANT, content="b"))
        message.set_score(0.6)

        average = aggregator.update(conversation, 0.6)

        assert average == pytest.approx(0.6)
        assert conversation.average_confidence == pytest.approx(0.6)

    def test_update_is_idempotent(self, aggregator):
        conversation = scored_conversation(0.2, 0.5)

        first = aggregator.update(conversation, 0.5)
        second = aggregator.update(conversation, 0.5)

        assert first == second == pytest.approx(0.35)

    def test_unscored_messages_ignored(self, aggregator):
        conversation = scored_conversation(0.4)
        conversation.append(Message(role=MessageRole.ASSISTANT, content="unscored"))

        assert aggregator.update(conversation) == pytest.approx(0.4)

    def test_no_scores_is_none(self, aggregator):
        conversation = Conversation()
        conversation.append(Message(role=MessageRole.USER, content="Hi"))
        conversation.average_confidence = 0.5

        assert aggregator.update(conversation) is None
        assert conversation.average_confidence is None

    def test_breakdown_bands(self, aggregator):
        # confidences 0.9, 0.8, 0.5, 0.45, 0.1
        conversation = scored_conversation(0.1, 0.2, 0.5, 0.55, 0.9)

        breakdown = aggregator.breakdown(conversation)

        assert breakdown.to_dict() == {"high": 2, "medium": 2, "low": 1}
        assert breakdown.total == 5

    def test_trend_in_order(self, aggregator):
        conversation = scored_conversation(0.25, 0.75)

        trend = aggregator.trend(conversation)

        assert [p.index for p in trend] == [0, 1]
        assert [p.confidence for p in trend] == pytest.approx([0.75, 0.25])

    def test_invalid_thresholds(self):
        with pytest.raises(ValueError):
            ConfidenceAggregator(high_threshold=0.3, low_threshold=0.6)


@pytest.mark.parametrize("score,percent", [(0.0, 100), (0.25, 75), (1.0, 0)])
def test_confidence_percent(score, percent):
    assert confidence_percent(score) == percent
