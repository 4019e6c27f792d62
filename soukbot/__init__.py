"""
SoukBot - conversational shopping assistant

Finds partner shops for a product type, budget and city through a
slot-filling interview, and answers questions about the service from a
knowledge base while rejecting out-of-context queries.
"""

from soukbot.core.chat_service import ChatService, SendMessageResponse, create_chat_service
from soukbot.core.config import SoukBotConfig, get_config, set_config

__all__ = [
    'ChatService',
    'SendMessageResponse',
    'create_chat_service',
    'SoukBotConfig',
    'get_config',
    'set_config',
]

__version__ = '0.1.0'
