"""
Core modules for chat-ledger.

This package contains stream decoding, message accumulation, cost
estimation and the usage ledger.
"""
