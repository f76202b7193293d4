"""
Stream decoding for chat completions.

The chat endpoint answers with a ``text/event-stream`` style body:

    data: {"content": "Hel"}

    data: {"content": "lo"}

    data: {"metadata": {"executedTools": [...], "usageBreakdown": {...}}}

    data: [DONE]

Each ``data:`` line carries either the sentinel or a JSON object. Records
that fail to parse are skipped and counted instead of aborting the stream;
invalid usage entries are dropped from their envelope and counted the same way.
"""

import codecs
import json
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, Iterator, List, Optional, Union

from .token_counter import ModelUsage

logger = logging.getLogger(__name__)

DATA_PREFIX = "data:"
DONE_SENTINEL = "[DONE]"


@dataclass(frozen=True)
class ContentDelta:
    """An incremental fragment of assistant text."""
    text: str


@dataclass(frozen=True)
class MetadataEnvelope:
    """Side-channel information attached to the assistant message."""
    executed_tools: List[str] = field(default_factory=list)
    usage_breakdown: List[ModelUsage] = field(default_factory=list)

    @classmethod
    def from_payload(
        cls,
        payload: Dict[str, Any],
        on_invalid_entry: Optional[Callable[[Any, str], None]] = None,
    ) -> "MetadataEnvelope":
        """Parse the ``metadata`` object of a stream record.

        ``usageBreakdown`` arrives as ``{"models": [{"model": ..., "usage": {...}}]}``.

        Args:
            payload: The ``metadata`` object
            on_invalid_entry: Called with each usage entry that fails
                validation; the entry is dropped and the rest of the envelope
                is kept. Without it an invalid entry raises.

        Raises:
            ValueError: If the object does not have the expected shape
        """
        if not isinstance(payload, dict):
            raise ValueError("metadata must be an object")

        tools = payload.get("executedTools") or []
        if not isinstance(tools, list):
            raise ValueError("executedTools must be a list")

        breakdown = payload.get("usageBreakdown") or {}
        if not isinstance(breakdown, dict):
            raise ValueError("usageBreakdown must be an object")
        models = breakdown.get("models") or []
        if not isinstance(models, list):
            raise ValueError("usageBreakdown.models must be a list")

        usage_breakdown = []
        for entry in models:
            try:
                usage_breakdown.append(ModelUsage.from_payload(entry))
            except (ValueError, TypeError) as e:
                if on_invalid_entry is None:
                    raise
                on_invalid_entry(entry, str(e))

        return cls(
            executed_tools=[str(tool) for tool in tools],
            usage_breakdown=usage_breakdown,
        )

    def to_payload(self) -> Dict[str, Any]:
        return {
            "executedTools": list(self.executed_tools),
            "usageBreakdown": {"models": [u.to_payload() for u in self.usage_breakdown]},
        }


StreamRecord = Union[ContentDelta, MetadataEnvelope]


class StreamDecoder:
    """Decodes one chat response stream into ContentDelta/MetadataEnvelope records.

    A decoder is single-use: it tracks whether the sentinel was seen and how
    many records were skipped for the stream it consumed.
    """

    def __init__(self):
        self.skipped_records = 0
        self.finished = False
        self._started = False

    def decode_lines(self, lines: Iterable[str]) -> Iterator[StreamRecord]:
        """Decode an iterable of already-split text lines.

        Args:
            lines: Lines of the response body, with or without trailing newlines

        Yields:
            Decoded records in stream order

        Raises:
            RuntimeError: If the decoder was already used
        """
        self._claim()
        for line in lines:
            yield from self._decode_line(line)
            if self.finished:
                return

    def decode_chunks(self, chunks: Iterable[Union[bytes, str]]) -> Iterator[StreamRecord]:
        """Decode raw transport chunks whose boundaries may fall anywhere.

        Partial lines are buffered until their newline arrives; UTF-8 is
        decoded incrementally so split multi-byte characters are safe.

        Raises:
            RuntimeError: If the decoder was already used
        """
        self._claim()
        utf8 = codecs.getincrementaldecoder("utf-8")(errors="replace")
        # Fragments of the current line; only new text is searched for newlines
        pending: List[str] = []
        for chunk in chunks:
            text = utf8.decode(chunk) if isinstance(chunk, bytes) else chunk
            first, *rest = text.split("\n")
            pending.append(first)
            if not rest:
                continue

            *complete, tail = rest
            lines = ["".join(pending)] + complete
            pending = [tail]
            for line in lines:
                yield from self._decode_line(line)
                if self.finished:
                    return

        remainder = "".join(pending) + utf8.decode(b"", final=True)
        if remainder:
            yield from self._decode_line(remainder)

    def _claim(self) -> None:
        if self._started:
            raise RuntimeError("StreamDecoder instances cannot be reused")
        self._started = True

    def _decode_line(self, line: str) -> Iterator[StreamRecord]:
        line = line.rstrip("\r\n")
        if not line.startswith(DATA_PREFIX):
            # Blank separators, SSE comments and event/id fields
            return

        data = line[len(DATA_PREFIX):]
        if data.startswith(" "):
            data = data[1:]

        if data.strip() == DONE_SENTINEL:
            self.finished = True
            return

        payload = self._parse(data)
        if payload is None:
            return

        content = payload.get("content")
        if isinstance(content, str) and content:
            yield ContentDelta(content)

        if payload.get("metadata") is not None:
            try:
                envelope = MetadataEnvelope.from_payload(
                    payload["metadata"],
                    on_invalid_entry=lambda entry, reason: self._skip(json.dumps(entry), reason),
                )
            except (ValueError, TypeError) as e:
                self._skip(data, str(e))
                return
            yield envelope

    def _parse(self, data: str) -> Optional[Dict[str, Any]]:
        try:
            payload = json.loads(data)
        except json.JSONDecodeError as e:
            self._skip(data, str(e))
            return None
        if not isinstance(payload, dict):
            self._skip(data, "record is not a JSON object")
            return None
        return payload

    def _skip(self, data: str, reason: str) -> None:
        self.skipped_records += 1
        logger.debug("Skipping malformed stream record (%s): %.80r", reason, data)
