"""SQLAlchemy ORM models for the KY approval pipeline.

Models:
- KyEntry: Safety assessment record with cached approval state
- ApprovalLogRecord: Immutable approval audit trail, hash-chained per entry
- WebhookEvent: Authenticated inbound messaging-channel events
"""

import hashlib
import json
from datetime import datetime, timezone
from typing import Optional
from uuid import uuid4

from sqlalchemy import (
    Boolean,
    DateTime,
    Index,
    Integer,
    String,
    Text,
    event,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Attach UTC to naive datetimes (SQLite drops tzinfo on round trip)."""
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class Base(DeclarativeBase):
    """Base class for all ORM models."""
    pass


class KyEntry(Base):
    """A danger-prediction (KY) entry for one work task.

    ``is_approved`` is a cache of the latest ApprovalLogRecord action for the
    entry. It is only written by the approval state store, in the same
    transaction as the log append.
    """
    __tablename__ = "ky_entries"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid4()))
    project_id: Mapped[str] = mapped_column(String(36), index=True, nullable=False)
    title: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    is_approved: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    approved_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    approved_by: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    unapproved_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    unapproved_by: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)


class ApprovalLogRecord(Base):
    """Immutable approval audit entry.

    Records are append-only. Each record is linked to the previous record of
    the same KY entry via SHA-256, so edits or deletions inside one entry's
    trail are detectable. No foreign key to ky_entries: the trail outlives
    the entry it describes.

    Attributes:
        id: Auto-incrementing sequence number; defines log order
        ky_entry_id: Entry the action applied to (indexed)
        project_id: Owning project of the entry
        actor_id: Who performed the action, None if unattributed
        action: "approve" or "unapprove"
        note: Optional free text
        created_at: Server-assigned append time
        previous_hash: entry_hash of the previous record for this entry
        entry_hash: SHA-256 hash of this record (unique)
    """
    __tablename__ = "ky_approval_logs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    ky_entry_id: Mapped[str] = mapped_column(String(36), nullable=False)
    project_id: Mapped[str] = mapped_column(String(36), nullable=False)
    actor_id: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    action: Mapped[str] = mapped_column(String(20), nullable=False)
    note: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    previous_hash: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    entry_hash: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)

    __table_args__ = (
        Index("ix_approval_log_entry_id", "ky_entry_id", "id"),
    )

    def compute_hash(self) -> str:
        """Compute SHA-256 hash of this record.

        Hash includes: ky_entry_id, project_id, actor_id, action, note,
        created_at, previous_hash

        Returns:
            Hexadecimal hash string (64 characters)
        """
        created_at = as_utc(self.created_at)

        hash_input = {
            "ky_entry_id": self.ky_entry_id,
            "project_id": self.project_id,
            "actor_id": self.actor_id or "",
            "action": self.action,
            "note": self.note or "",
            "created_at": created_at.isoformat() if created_at else "",
            "previous_hash": self.previous_hash or "",
        }

        canonical = json.dumps(hash_input, sort_keys=True, separators=(",", ":"))
        return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


class WebhookEvent(Base):
    """Inbound LINE webhook event that passed signature verification."""
    __tablename__ = "line_webhook_events"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    source_type: Mapped[str] = mapped_column(String(10), nullable=False)  # user/group/room
    source_id: Mapped[str] = mapped_column(String(64), index=True, nullable=False)
    event_type: Mapped[str] = mapped_column(String(50), nullable=False)
    received_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    payload: Mapped[str] = mapped_column(Text, nullable=False)  # JSON


# Event listener to auto-compute hash before insert
@event.listens_for(ApprovalLogRecord, "before_insert")
def compute_approval_log_hash(mapper, connection, target):
    """Automatically compute entry_hash before inserting an approval record."""
    if not target.entry_hash:
        target.entry_hash = target.compute_hash()
