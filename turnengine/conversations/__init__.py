"""Conversations, messages and rolling summaries."""

from turnengine.conversations.models import Conversation, ConversationSummary, Message
from turnengine.conversations.store import ConversationStore

__all__ = ["Conversation", "ConversationStore", "ConversationSummary", "Message"]
