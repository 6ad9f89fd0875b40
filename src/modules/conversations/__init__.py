from src.modules.conversations.models import Conversation, Message

__all__ = [
    "Conversation",
    "Message",
]
