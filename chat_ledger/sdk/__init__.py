"""
SDK for chat-ledger.

Provides the streaming chat client and the session that accounts for it.
"""

from .chat_client import ChatStreamClient
from .session import ChatSession, TurnState

__all__ = ["ChatStreamClient", "ChatSession", "TurnState"]
