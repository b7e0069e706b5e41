"""Async persistence layer: KY entries, approval trail, webhook events."""

from .audit import append_approval_log, list_approval_log, verify_approval_chain
from .database import create_session_factory, get_session, init_database, shutdown
from .models import ApprovalLogRecord, Base, KyEntry, WebhookEvent

__all__ = [
    "append_approval_log",
    "list_approval_log",
    "verify_approval_chain",
    "create_session_factory",
    "get_session",
    "init_database",
    "shutdown",
    "ApprovalLogRecord",
    "Base",
    "KyEntry",
    "WebhookEvent",
]
