"""Inbound LINE webhook ingestion.

Runs only after the request signature has been verified. Parses the
delivery, checks each event's source, and records the valid ones so that
operators can see which users, groups and rooms talk to the channel.

Provides:
- ParsedEvent: Event source plus its raw payload
- parse_webhook_body: Decode a verified delivery into events
- record_webhook_events: Persist parsed events
"""

import json
import re
from dataclasses import dataclass
from typing import Any

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from kypipeline.core.errors import ValidationError
from kypipeline.core.persistence.models import WebhookEvent

logger = structlog.get_logger()

# userId: U + 32hex, groupId: C + 32hex, roomId: R + 32hex
SOURCE_ID_FIELDS = {
    "user": ("userId", "U"),
    "group": ("groupId", "C"),
    "room": ("roomId", "R"),
}
_ID_BODY = re.compile(r"^[0-9a-f]{32}$", re.IGNORECASE)


@dataclass(frozen=True)
class ParsedEvent:
    source_type: str
    source_id: str
    event_type: str
    payload: dict[str, Any]


def is_valid_source_id(source_type: str, source_id: str) -> bool:
    """Check that an id has the LINE shape for its source type."""
    shape = SOURCE_ID_FIELDS.get(source_type)
    if shape is None or not source_id:
        return False
    prefix = shape[1]
    return source_id[:1].upper() == prefix and bool(_ID_BODY.match(source_id[1:]))


def _parse_event(raw: Any) -> ParsedEvent | None:
    if not isinstance(raw, dict):
        return None
    source = raw.get("source")
    if not isinstance(source, dict):
        return None

    source_type = source.get("type")
    shape = SOURCE_ID_FIELDS.get(source_type)
    if shape is None:
        return None

    source_id = str(source.get(shape[0]) or "")
    if not is_valid_source_id(source_type, source_id):
        return None

    return ParsedEvent(
        source_type=source_type,
        source_id=source_id,
        event_type=str(raw.get("type") or "unknown"),
        payload=raw,
    )


def parse_webhook_body(raw_body: bytes) -> list[ParsedEvent]:
    """Decode a verified webhook delivery.

    Events with a missing or malformed source are logged and skipped; they
    do not fail the delivery, since LINE redelivers on non-200 responses.

    Args:
        raw_body: Exact request body bytes

    Returns:
        Valid events in delivery order

    Raises:
        ValidationError: If the body is not a JSON object
    """
    try:
        body = json.loads(raw_body.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError):
        raise ValidationError("malformed JSON body") from None
    if not isinstance(body, dict):
        raise ValidationError("malformed JSON body")

    raw_events = body.get("events") or []
    if not isinstance(raw_events, list):
        raise ValidationError("events must be a list")

    events = []
    for index, raw in enumerate(raw_events):
        parsed = _parse_event(raw)
        if parsed is None:
            logger.warning("webhook_event_skipped", index=index, reason="invalid source")
            continue
        events.append(parsed)
    return events


async def record_webhook_events(session: AsyncSession, events: list[ParsedEvent]) -> int:
    """Persist parsed events.

    Args:
        session: Database session
        events: Events returned by parse_webhook_body

    Returns:
        Number of events recorded
    """
    for parsed in events:
        session.add(
            WebhookEvent(
                source_type=parsed.source_type,
                source_id=parsed.source_id,
                event_type=parsed.event_type,
                payload=json.dumps(parsed.payload, ensure_ascii=False, sort_keys=True),
            )
        )
        logger.info(
            "webhook_event_received",
            source_type=parsed.source_type,
            source_id=parsed.source_id,
            event_type=parsed.event_type,
        )

    await session.flush()
    return len(events)
