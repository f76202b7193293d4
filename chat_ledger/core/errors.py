"""
Exception hierarchy for chat-ledger.
"""

from typing import Optional


class ChatLedgerError(Exception):
    """Base class for all chat-ledger errors."""


class InFlightMessageError(ChatLedgerError):
    """Raised when a new assistant message is started while one is still streaming."""


class ChatTransportError(ChatLedgerError):
    """Raised when the chat request fails: network error or non-2xx status."""
    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class ChatCancelled(ChatLedgerError):
    """Raised when the caller cancels an in-flight request.

    Cancellation is an early termination, not a failure.
    """
