"""LINE messaging channel integration.

Provides:
- Broadcast text templates
- LineBroadcaster for one-to-many notifications
- Verified webhook event parsing and recording
"""

from .broadcast import BroadcastResult, LineBroadcaster
from .formatters import ACK_REMINDER, build_broadcast_text
from .webhook import ParsedEvent, parse_webhook_body, record_webhook_events

__all__ = [
    "BroadcastResult",
    "LineBroadcaster",
    "ACK_REMINDER",
    "build_broadcast_text",
    "ParsedEvent",
    "parse_webhook_body",
    "record_webhook_events",
]
