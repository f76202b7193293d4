"""
Chat session: one conversation driven turn by turn.

Turn states:
    IDLE -> STREAMING -> FINALIZING -> IDLE
    STREAMING -> ERRORED -> IDLE

Transport failures end the turn through the ``on_stream_error`` callback,
called exactly once per failed request. Cancellation discards the partial
reply without calling it. Nothing is retried; the user resubmits.
"""

import logging
from enum import Enum, auto
from typing import Callable, Optional

from ..config.loader import RequestConfig
from ..core.accumulator import ChatMessage, Conversation, MessageAccumulator
from ..core.errors import ChatCancelled, ChatTransportError, InFlightMessageError
from ..core.ledger import MessageUsage, UsageLedger
from ..storage.repository import ConversationRepository
from .chat_client import ChatStreamClient

logger = logging.getLogger(__name__)


class TurnState(Enum):
    """Lifecycle of a single chat turn."""
    IDLE = auto()
    STREAMING = auto()
    FINALIZING = auto()
    ERRORED = auto()


class ChatSession:
    """Sends user messages and accounts for the streamed replies."""

    def __init__(
        self,
        client: ChatStreamClient,
        ledger: UsageLedger,
        model: str,
        request: Optional[RequestConfig] = None,
        conversation: Optional[Conversation] = None,
        on_stream_error: Optional[Callable[[Exception], None]] = None,
        conversations: Optional[ConversationRepository] = None,
        conversation_id: Optional[str] = None,
    ):
        """Initialize the session.

        Args:
            client: Streaming client for the chat endpoint
            ledger: Usage ledger updated after every completed reply
            model: Model identifier sent with each request
            request: Optional generation parameters
            conversation: Existing conversation to continue
            on_stream_error: Called once with the error when a request fails
            conversations: Cache to persist the conversation into
            conversation_id: Key of this conversation in the cache

        Raises:
            ValueError: If model is empty, or a cache is given without an id
        """
        if not model or not model.strip():
            raise ValueError("model is required and cannot be empty")
        if conversations is not None and not conversation_id:
            raise ValueError("conversation_id is required when caching conversations")

        self.client = client
        self.ledger = ledger
        self.model = model
        self.request = request
        self.conversations = conversations
        self.conversation_id = conversation_id
        if conversation is None:
            if conversations is not None:
                conversation = Conversation.from_payload(conversations.load(conversation_id))
            else:
                conversation = Conversation()
        self.conversation = conversation
        self.accumulator = MessageAccumulator(self.conversation)
        self.on_stream_error = on_stream_error
        self.state = TurnState.IDLE
        self.last_usage: Optional[MessageUsage] = None
        self.last_skipped_records = 0

    @property
    def loading(self) -> bool:
        return self.state is not TurnState.IDLE

    def send(
        self,
        text: str,
        on_update: Optional[Callable[[ChatMessage], None]] = None,
    ) -> Optional[ChatMessage]:
        """Send a user message and stream the assistant reply.

        Args:
            text: User message; blank input is ignored
            on_update: Called with the partial reply after every record

        Returns:
            The finalized assistant message, or None if the input was blank,
            the request failed, or it was cancelled

        Raises:
            InFlightMessageError: If a turn is already in progress
        """
        text = text.strip()
        if not text:
            return None
        if self.loading:
            raise InFlightMessageError("A chat request is already in progress")

        history = self.conversation.history()
        # Resets the client's cancel flag; cancel() only acts once STREAMING is set
        records = self.client.stream(text, self.model, history, self.request)
        self.ledger.record_user_message(text)
        self.conversation.add_user_message(text)
        self.accumulator.begin()
        self.state = TurnState.STREAMING

        try:
            for record in records:
                partial = self.accumulator.apply(record)
                if on_update is not None:
                    on_update(partial)
        except ChatCancelled:
            logger.info("Chat request cancelled, discarding partial reply")
            self._end_turn()
            return None
        except ChatTransportError as e:
            self.state = TurnState.ERRORED
            logger.error("Chat request failed: %s", e)
            self.accumulator.discard()
            self._persist()
            try:
                if self.on_stream_error is not None:
                    self.on_stream_error(e)
            finally:
                self.state = TurnState.IDLE
            return None
        except Exception:
            self._end_turn()
            raise
        finally:
            if self.client.last_decoder is not None:
                self.last_skipped_records = self.client.last_decoder.skipped_records

        self.state = TurnState.FINALIZING
        try:
            message = self.accumulator.finalize()
            breakdown = message.metadata.usage_breakdown if message.metadata else None
            self.last_usage = self.ledger.record_ai_message(message.content, self.model, breakdown)
            self._persist()
        finally:
            self.state = TurnState.IDLE
        return message

    def cancel(self) -> None:
        """Abort the in-flight request, if any."""
        if self.state is TurnState.STREAMING:
            self.client.cancel()

    def clear(self) -> None:
        """Start the conversation over. Usage stats are kept."""
        if self.loading:
            raise InFlightMessageError("Cannot clear while a chat request is in progress")
        self.conversation.clear()
        self._persist()

    def _end_turn(self) -> None:
        self.accumulator.discard()
        self._persist()
        self.state = TurnState.IDLE

    def _persist(self) -> None:
        if self.conversations is not None:
            self.conversations.save(self.conversation_id, self.conversation.to_payload())
