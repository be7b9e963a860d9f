"""
Chat completion services used by the conversation routes.
"""

from .client import (
    ChatConfig,
    ChatService,
    ConfigurableChatService,
    GPTChatService,
    MOTIVATIONAL_MESSAGES,
)

__all__ = [
    "ChatConfig",
    "ChatService",
    "ConfigurableChatService",
    "GPTChatService",
    "MOTIVATIONAL_MESSAGES",
]
