"""
Discord Synchronization

Bridges one Discord channel with the game network: inbound chat relay,
an ordered outbound send queue and a rate-limited channel topic.

Key Components:
- MessagingService: Discord client glue, send worker and topic updates
- TopicThrottle: Current/pending topic with a cooldown timer
- text_filters: Mention, character set and formatting code handling
"""

from .messaging_service import MessagingService, OutboundMessage
from .topic_throttle import TopicThrottle

__all__ = [
    'MessagingService',
    'OutboundMessage',
    'TopicThrottle'
]
