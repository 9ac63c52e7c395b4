"""Conversation log and its storage backends."""

from .entries import ConversationEntry, EntryKind
from .log import ConversationLog, history_key
from .storage import InMemoryStorage, KeyValueStorage, SQLiteStorage

__all__ = [
    "ConversationEntry",
    "ConversationLog",
    "EntryKind",
    "InMemoryStorage",
    "KeyValueStorage",
    "SQLiteStorage",
    "history_key",
]
