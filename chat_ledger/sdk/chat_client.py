"""
Streaming chat client.

Posts a message to the chat endpoint and yields the decoded stream records.
Failures are raised, never retried.
"""

import logging
import threading
from typing import Any, Dict, Iterator, List, Optional

import httpx

from ..config.loader import RequestConfig
from ..core.errors import ChatCancelled, ChatTransportError
from ..core.stream_decoder import StreamDecoder, StreamRecord

logger = logging.getLogger(__name__)

# Connecting may time out; a slow stream may not
DEFAULT_TIMEOUT = httpx.Timeout(None, connect=10.0)


def build_request_body(
    message: str,
    model: str,
    conversation_history: List[Dict[str, str]],
    request: Optional[RequestConfig] = None,
) -> Dict[str, Any]:
    """Build the JSON body for a chat request.

    Optional parameters are only included when set.
    """
    body: Dict[str, Any] = {
        "message": message,
        "model": model,
        "conversationHistory": conversation_history,
    }
    if request is not None:
        if request.temperature is not None:
            body["temperature"] = request.temperature
        if request.max_tokens is not None:
            body["maxTokens"] = request.max_tokens
        if request.system_prompt is not None:
            body["systemPrompt"] = request.system_prompt
        if request.enable_tools is not None:
            body["enableTools"] = request.enable_tools
    return body


class ChatStreamClient:
    """Client for the streaming chat-completion endpoint.

    One request may be in flight at a time. ``cancel()`` may be called from
    another thread; the stream stops at the next chunk.
    """

    def __init__(
        self,
        endpoint: str,
        http_client: Optional[httpx.Client] = None,
        timeout: httpx.Timeout = DEFAULT_TIMEOUT,
    ):
        """Initialize the client.

        Args:
            endpoint: URL of the chat endpoint (required)
            http_client: Pre-configured httpx client; one is created if omitted
            timeout: Timeout for the created client

        Raises:
            ValueError: If endpoint is missing/empty
        """
        if not endpoint or not endpoint.strip():
            raise ValueError("endpoint is required and cannot be empty")

        self.endpoint = endpoint
        self._owns_client = http_client is None
        self.http_client = http_client or httpx.Client(timeout=timeout)
        self._cancelled = threading.Event()
        self.last_decoder: Optional[StreamDecoder] = None

    def __enter__(self) -> "ChatStreamClient":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def close(self) -> None:
        if self._owns_client:
            self.http_client.close()

    def cancel(self) -> None:
        """Abort the in-flight request."""
        self._cancelled.set()

    def stream(
        self,
        message: str,
        model: str,
        conversation_history: List[Dict[str, str]],
        request: Optional[RequestConfig] = None,
    ) -> Iterator[StreamRecord]:
        """Send a message and yield decoded records as they arrive.

        The cancel flag is reset when this is called, not when iteration
        starts, so a cancel() issued before the first record still applies.

        Args:
            message: User message text (required)
            model: Model identifier
            conversation_history: Previous messages as role/content pairs
            request: Optional generation parameters

        Returns:
            Iterator of ContentDelta and MetadataEnvelope records in stream order

        Raises:
            ValueError: If message is empty
            ChatTransportError: On network failure or a non-2xx status, while iterating
            ChatCancelled: If cancel() was called during the request, while iterating
        """
        if not message or not message.strip():
            raise ValueError("message is required and cannot be empty")

        self._cancelled.clear()
        body = build_request_body(message, model, conversation_history, request)
        self.last_decoder = StreamDecoder()
        logger.debug("POST %s model=%s history=%d", self.endpoint, model, len(conversation_history))
        return self._stream(body, self.last_decoder)

    def _stream(self, body: Dict[str, Any], decoder: StreamDecoder) -> Iterator[StreamRecord]:
        self._check_cancelled()
        try:
            with self.http_client.stream("POST", self.endpoint, json=body) as response:
                if response.is_error:
                    raise ChatTransportError(
                        f"Chat request failed with status {response.status_code}",
                        status_code=response.status_code,
                    )
                for record in decoder.decode_chunks(self._iter_chunks(response)):
                    self._check_cancelled()
                    yield record
        except httpx.HTTPError as e:
            raise ChatTransportError(f"Chat request failed: {e}") from e

        if decoder.skipped_records:
            logger.warning("Skipped %d malformed stream records", decoder.skipped_records)

    def _iter_chunks(self, response: httpx.Response) -> Iterator[bytes]:
        for chunk in response.iter_bytes():
            self._check_cancelled()
            yield chunk

    def _check_cancelled(self) -> None:
        if self._cancelled.is_set():
            raise ChatCancelled("Chat request cancelled")
