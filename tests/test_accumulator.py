"""
Unit tests for message accumulation.

Tests delta folding, metadata attachment and finalize idempotence.
"""

import pytest

from chat_ledger.core.accumulator import (
    ChatMessage,
    Conversation,
    MessageAccumulator,
    Role,
)
from chat_ledger.core.errors import InFlightMessageError
from chat_ledger.core.stream_decoder import ContentDelta, MetadataEnvelope
from chat_ledger.core.token_counter import ModelUsage


def _envelope(tools=None, breakdown=None) -> MetadataEnvelope:
    return MetadataEnvelope(executed_tools=tools or [], usage_breakdown=breakdown or [])


class TestMessageAccumulator:
    """Test the in-flight assistant message lifecycle."""

    def setup_method(self):
        """Set up a conversation with one user message."""
        self.conversation = Conversation()
        self.conversation.add_user_message("What is new?")
        self.accumulator = MessageAccumulator(self.conversation)

    def test_deltas_concatenate(self):
        """Verify finalized content is the concatenation of deltas."""
        self.accumulator.begin()
        for text in ["The ", "answer ", "is 42."]:
            self.accumulator.apply_delta(text)
        message = self.accumulator.finalize()
        assert message.content == "The answer is 42."
        assert message.role == Role.ASSISTANT

    def test_chunking_does_not_change_result(self):
        """Verify "He" + "llo" equals a single "Hello" delta."""
        results = []
        for deltas in (["Hello"], ["He", "llo"], list("Hello")):
            accumulator = MessageAccumulator(Conversation())
            accumulator.begin()
            for text in deltas:
                accumulator.apply_delta(text)
            results.append(accumulator.finalize().content)
        assert results == ["Hello", "Hello", "Hello"]

    def test_apply_delta_returns_partial_message(self):
        """Verify each delta returns a snapshot for live display."""
        self.accumulator.begin()
        first = self.accumulator.apply_delta("Hi")
        second = self.accumulator.apply_delta(" there")
        assert first.content == "Hi"
        assert second.content == "Hi there"
        # Nothing reaches the conversation until finalize
        assert len(self.conversation) == 1

    def test_metadata_does_not_alter_content(self):
        """Verify metadata attaches without touching text."""
        self.accumulator.begin()
        self.accumulator.apply_delta("Result")
        partial = self.accumulator.apply_metadata(_envelope(tools=["web_search"]))
        assert partial.content == "Result"
        assert partial.metadata.executed_tools == ["web_search"]

    def test_later_metadata_keeps_earlier_fields(self):
        """Verify an envelope without tools keeps the tools already attached."""
        usage = ModelUsage("llama-3.1-8b-instant", 10, 5, 15)
        self.accumulator.begin()
        self.accumulator.apply_metadata(_envelope(tools=["visit_website"]))
        message = self.accumulator.apply_metadata(_envelope(breakdown=[usage]))
        assert message.metadata.executed_tools == ["visit_website"]
        assert message.metadata.usage_breakdown == [usage]

    def test_apply_dispatches_records(self):
        """Verify apply routes deltas and envelopes."""
        self.accumulator.begin()
        self.accumulator.apply(ContentDelta("x"))
        message = self.accumulator.apply(_envelope(tools=["wolfram_alpha"]))
        assert message.content == "x"
        assert message.metadata.executed_tools == ["wolfram_alpha"]

    def test_apply_rejects_unknown_records(self):
        """Verify unsupported record types raise TypeError."""
        self.accumulator.begin()
        with pytest.raises(TypeError):
            self.accumulator.apply("not a record")

    def test_finalize_is_idempotent(self):
        """Verify finalize twice appends once and returns the same message."""
        self.accumulator.begin()
        self.accumulator.apply_delta("once")
        first = self.accumulator.finalize()
        second = self.accumulator.finalize()
        assert first is second
        assert [m.content for m in self.conversation.messages] == ["What is new?", "once"]

    def test_finalize_without_begin_raises(self):
        """Verify finalize needs a message."""
        with pytest.raises(RuntimeError, match="No assistant message"):
            self.accumulator.finalize()

    def test_second_begin_while_in_flight_raises(self):
        """Verify only one in-flight message per conversation."""
        self.accumulator.begin()
        with pytest.raises(InFlightMessageError):
            self.accumulator.begin()

    def test_begin_after_finalize_starts_fresh(self):
        """Verify a new turn starts with empty content and no metadata."""
        self.accumulator.begin()
        self.accumulator.apply_delta("first")
        self.accumulator.apply_metadata(_envelope(tools=["web_search"]))
        self.accumulator.finalize()

        message = self.accumulator.begin()
        assert message.content == ""
        assert message.metadata is None

    def test_discard_leaves_conversation_untouched(self):
        """Verify discarded partial content never reaches the conversation."""
        self.accumulator.begin()
        self.accumulator.apply_delta("partial")
        self.accumulator.discard()
        assert not self.accumulator.in_flight
        assert len(self.conversation) == 1
        with pytest.raises(RuntimeError):
            self.accumulator.apply_delta("more")

    def test_finalized_message_is_immutable(self):
        """Verify finalized messages cannot be edited."""
        self.accumulator.begin()
        self.accumulator.apply_delta("fixed")
        message = self.accumulator.finalize()
        with pytest.raises(AttributeError):
            message.content = "changed"


class TestConversation:
    """Test conversation history handling."""

    def test_history_shape(self):
        """Verify history is role/content pairs."""
        conversation = Conversation()
        conversation.add_user_message("hi")
        conversation.append(ChatMessage(Role.ASSISTANT, "hello"))
        assert conversation.history() == [
            {"role": "user", "content": "hi"},
            {"role": "assistant", "content": "hello"},
        ]

    def test_clear(self):
        """Verify clear removes all messages."""
        conversation = Conversation()
        conversation.add_user_message("hi")
        conversation.clear()
        assert len(conversation) == 0

    def test_payload_keeps_metadata(self):
        """Verify cached conversations keep tool and usage metadata."""
        usage = ModelUsage("llama-3.1-8b-instant", 10, 5, 15, total_time=0.3)
        conversation = Conversation()
        conversation.add_user_message("hi")
        conversation.append(ChatMessage(
            Role.ASSISTANT, "hello", _envelope(tools=["web_search"], breakdown=[usage])
        ))

        restored = Conversation.from_payload(conversation.to_payload())
        assert restored.messages == conversation.messages
