"""Sessions, conversation storage and context compaction."""

from wayfarer.session.compactor import (
    CompactionConfig,
    CompactionResult,
    ContextCompactor,
    ReActHistoryCompaction,
    is_summary_message,
)
from wayfarer.session.manager import SessionConfig, SessionData, SessionManager
from wayfarer.session.store import ConversationRepository, InMemoryConversationRepository

__all__ = [
    # Compaction
    "CompactionConfig",
    "CompactionResult",
    "ContextCompactor",
    "ReActHistoryCompaction",
    "is_summary_message",
    # Sessions
    "SessionConfig",
    "SessionData",
    "SessionManager",
    # Storage
    "ConversationRepository",
    "InMemoryConversationRepository",
]
