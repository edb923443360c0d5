"""Conversations, messages and notifications."""

from .conversations import ConversationStore, advance_status
from .notifications import NotificationCenter

__all__ = [
    "ConversationStore",
    "advance_status",
    "NotificationCenter"
]
