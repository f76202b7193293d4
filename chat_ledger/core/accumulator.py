"""
Message accumulation for streamed assistant replies.

Folds decoded stream records into the in-flight assistant message and moves
it into the conversation once the stream completes.
"""

from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Dict, List, Optional

from .errors import InFlightMessageError
from .stream_decoder import ContentDelta, MetadataEnvelope, StreamRecord

# Metadata on a finished message has the same shape as the envelope that carried it
MessageMetadata = MetadataEnvelope


class Role(Enum):
    """Author of a chat message."""
    USER = "user"
    ASSISTANT = "assistant"


@dataclass(frozen=True)
class ChatMessage:
    """One message of a conversation.

    Instances are immutable; the accumulator hands out a fresh snapshot for
    every delta while a reply is streaming.
    """
    role: Role
    content: str
    metadata: Optional[MessageMetadata] = None

    def to_payload(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"role": self.role.value, "content": self.content}
        if self.metadata is not None:
            payload["metadata"] = self.metadata.to_payload()
        return payload

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> "ChatMessage":
        metadata = payload.get("metadata")
        return cls(
            role=Role(payload["role"]),
            content=str(payload.get("content", "")),
            metadata=MetadataEnvelope.from_payload(metadata) if metadata else None,
        )


@dataclass
class Conversation:
    """Ordered list of finalized messages.

    Messages are only ever removed all at once through ``clear()``.
    """
    messages: List[ChatMessage] = field(default_factory=list)

    def __len__(self) -> int:
        return len(self.messages)

    def add_user_message(self, text: str) -> ChatMessage:
        message = ChatMessage(role=Role.USER, content=text)
        self.messages.append(message)
        return message

    def append(self, message: ChatMessage) -> None:
        self.messages.append(message)

    def clear(self) -> None:
        self.messages.clear()

    def history(self) -> List[Dict[str, str]]:
        """Role/content pairs in the form the chat endpoint expects."""
        return [{"role": m.role.value, "content": m.content} for m in self.messages]

    def to_payload(self) -> List[Dict[str, Any]]:
        return [m.to_payload() for m in self.messages]

    @classmethod
    def from_payload(cls, payload: List[Dict[str, Any]]) -> "Conversation":
        return cls(messages=[ChatMessage.from_payload(item) for item in payload])


class MessageAccumulator:
    """Builds the in-flight assistant message for a conversation.

    Only one message may be in flight at a time. ``finalize()`` is
    idempotent: repeated calls return the same message and append it once.
    """

    def __init__(self, conversation: Conversation):
        self.conversation = conversation
        self._parts: Optional[List[str]] = None
        self._metadata: Optional[MessageMetadata] = None
        self._finalized: Optional[ChatMessage] = None

    @property
    def in_flight(self) -> bool:
        return self._parts is not None

    def begin(self) -> ChatMessage:
        """Start a new, empty assistant message.

        Raises:
            InFlightMessageError: If a message is already in flight
        """
        if self.in_flight:
            raise InFlightMessageError("An assistant message is already streaming")
        self._parts = []
        self._metadata = None
        self._finalized = None
        return self.current()

    def current(self) -> ChatMessage:
        """Snapshot of the in-flight message."""
        self._require_in_flight()
        return ChatMessage(
            role=Role.ASSISTANT,
            content="".join(self._parts),
            metadata=self._metadata,
        )

    def apply_delta(self, text: str) -> ChatMessage:
        """Append a content fragment and return the updated partial message."""
        self._require_in_flight()
        self._parts.append(text)
        return self.current()

    def apply_metadata(self, envelope: MetadataEnvelope) -> ChatMessage:
        """Attach tool and usage metadata without touching content.

        Fields left empty by a later envelope keep the earlier values.
        """
        self._require_in_flight()
        if self._metadata is None:
            self._metadata = envelope
        else:
            self._metadata = replace(
                self._metadata,
                executed_tools=envelope.executed_tools or self._metadata.executed_tools,
                usage_breakdown=envelope.usage_breakdown or self._metadata.usage_breakdown,
            )
        return self.current()

    def apply(self, record: StreamRecord) -> ChatMessage:
        if isinstance(record, ContentDelta):
            return self.apply_delta(record.text)
        if isinstance(record, MetadataEnvelope):
            return self.apply_metadata(record)
        raise TypeError(f"Unsupported stream record: {type(record).__name__}")

    def finalize(self) -> ChatMessage:
        """Freeze the in-flight message and append it to the conversation.

        Raises:
            RuntimeError: If no message was ever started
        """
        if not self.in_flight:
            if self._finalized is not None:
                return self._finalized
            raise RuntimeError("No assistant message in flight")

        message = self.current()
        self.conversation.append(message)
        self._finalized = message
        self._parts = None
        self._metadata = None
        return message

    def discard(self) -> None:
        """Drop the in-flight message, leaving the conversation untouched."""
        self._parts = None
        self._metadata = None

    def _require_in_flight(self) -> None:
        if self._parts is None:
            raise RuntimeError("No assistant message in flight")
