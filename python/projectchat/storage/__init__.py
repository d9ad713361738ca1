"""
Storage module for projectchat.

Provides the store interface the real-time core reads and writes through.
"""

from __future__ import annotations

from .base import ChatRoom, ChatStore, MemoryStore, StoreError, UserProfile
from .postgres import PostgresStore

__all__ = [
    "ChatRoom",
    "ChatStore",
    "MemoryStore",
    "PostgresStore",
    "StoreError",
    "UserProfile",
]
