"""Append-only approval log with per-entry hash chaining.

Provides:
- append_approval_log: Append a record linked to the entry's previous record
- latest_approval_log: Most recent record for an entry
- list_approval_log: Full trail for an entry, oldest first
- verify_approval_chain: Verify cryptographic integrity of an entry's trail
"""

from datetime import timedelta
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from .models import ApprovalLogRecord, as_utc, utcnow


async def latest_approval_log(
    session: AsyncSession,
    ky_entry_id: str,
) -> Optional[ApprovalLogRecord]:
    """Return the most recent approval record for an entry, or None."""
    stmt = (
        select(ApprovalLogRecord)
        .where(ApprovalLogRecord.ky_entry_id == ky_entry_id)
        .order_by(ApprovalLogRecord.id.desc())
        .limit(1)
    )
    result = await session.execute(stmt)
    return result.scalar_one_or_none()


async def append_approval_log(
    session: AsyncSession,
    ky_entry_id: str,
    project_id: str,
    action: str,
    actor_id: Optional[str] = None,
    note: Optional[str] = None,
) -> ApprovalLogRecord:
    """Append new record to an entry's approval log with hash chaining.

    Must run inside the same transaction as the state write it describes,
    after that write, so the predecessor read here is the record committed
    just before this one. Timestamps are strictly increasing per entry even
    when the wall clock does not advance between two appends.

    Args:
        session: Database session (the caller's transaction)
        ky_entry_id: Entry the action applied to
        project_id: Owning project
        action: "approve" or "unapprove"
        actor_id: Who performed the action (None if unattributed)
        note: Optional free text

    Returns:
        Created ApprovalLogRecord with computed hash
    """
    previous = await latest_approval_log(session, ky_entry_id)

    created_at = utcnow()
    if previous is not None:
        floor = as_utc(previous.created_at) + timedelta(microseconds=1)
        if created_at < floor:
            created_at = floor

    record = ApprovalLogRecord(
        ky_entry_id=ky_entry_id,
        project_id=project_id,
        actor_id=actor_id,
        action=action,
        note=note,
        created_at=created_at,
        previous_hash=previous.entry_hash if previous else None,
        entry_hash="",  # Computed by before_insert event listener
    )

    session.add(record)
    await session.flush()

    return record


async def list_approval_log(
    session: AsyncSession,
    ky_entry_id: str,
) -> list[ApprovalLogRecord]:
    """Return an entry's approval trail in append order."""
    stmt = (
        select(ApprovalLogRecord)
        .where(ApprovalLogRecord.ky_entry_id == ky_entry_id)
        .order_by(ApprovalLogRecord.id.asc())
    )
    result = await session.execute(stmt)
    return list(result.scalars().all())


async def verify_approval_chain(session: AsyncSession, ky_entry_id: str) -> bool:
    """Verify cryptographic integrity of an entry's approval trail.

    Validates that:
    1. Each record's hash matches its computed hash
    2. Each record's previous_hash matches the previous record's hash
    3. The chain is unbroken from the first record to the last

    Args:
        session: Database session
        ky_entry_id: Entry whose trail to verify

    Returns:
        True if chain is valid (or empty), False if tampered
    """
    previous_hash = None

    for record in await list_approval_log(session, ky_entry_id):
        if record.entry_hash != record.compute_hash():
            return False

        if record.previous_hash != previous_hash:
            return False

        previous_hash = record.entry_hash

    return True
