"""
chat-ledger: streaming chat accumulation with usage and cost accounting.
"""

__version__ = "0.1.0"
