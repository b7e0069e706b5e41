"""Approval state machine with an append-only audit trail.

A KY entry is either Unapproved (initial) or Approved. approve and
unapprove are allowed from either state; repeating the current state is
a no-op on the entry but still appends a log record, so the trail shows
every invocation. The entry's ``is_approved`` column is a cache of the
latest record's action and is only ever written together with that
record, inside the caller's transaction.

Deletion is not a state transition: it is only permitted while the entry
is Unapproved, so an approved safety record is never silently discarded.

Provides:
- ApprovalAction: Enum for approve/unapprove
- TransitionResult: Outcome of a transition
- transition: Atomically flip state and append the log record
- delete_entry: Delete an entry, guarded on its approval state
"""

from dataclasses import dataclass
from enum import Enum
from typing import Optional

import structlog
from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from kypipeline.core.errors import ApprovedEntryImmutable, EntryNotFound, ValidationError
from kypipeline.core.persistence.audit import append_approval_log
from kypipeline.core.persistence.models import KyEntry, utcnow

logger = structlog.get_logger()


class ApprovalAction(str, Enum):
    """Supervisory action on a KY entry."""

    APPROVE = "approve"
    UNAPPROVE = "unapprove"


@dataclass(frozen=True)
class TransitionResult:
    """Outcome of an approve/unapprove call.

    Attributes:
        is_approved: Entry state after the transition
        changed: False when the entry was already in the target state
        log_id: Sequence number of the appended log record
    """

    is_approved: bool
    changed: bool
    log_id: int


def parse_action(action: object) -> ApprovalAction:
    """Validate an action value.

    Raises:
        ValidationError: Unless action is exactly "approve" or "unapprove"
    """
    try:
        return ApprovalAction(action)
    except ValueError:
        raise ValidationError("action must be approve|unapprove") from None


def _require_id(value: Optional[str], name: str) -> str:
    cleaned = (value or "").strip()
    if not cleaned:
        raise ValidationError(f"{name} required")
    return cleaned


async def _load_entry_for_update(
    session: AsyncSession,
    entry_id: str,
    project_id: Optional[str] = None,
) -> KyEntry:
    # FOR UPDATE serializes concurrent transitions on row-locking stores;
    # SQLite ignores it and serializes on its database writer lock instead.
    stmt = select(KyEntry).where(KyEntry.id == entry_id).with_for_update()
    if project_id is not None:
        stmt = stmt.where(KyEntry.project_id == project_id)

    result = await session.execute(stmt)
    entry = result.scalar_one_or_none()
    if entry is None:
        raise EntryNotFound(entry_id)
    return entry


async def transition(
    session: AsyncSession,
    entry_id: str,
    project_id: str,
    action: ApprovalAction | str,
    actor_id: Optional[str] = None,
    note: Optional[str] = None,
) -> TransitionResult:
    """Approve or unapprove a KY entry and record it in the audit trail.

    Both the state write and the log append happen in ``session``'s
    transaction; the caller commits them together (get_session does this)
    or neither becomes visible.

    Args:
        session: Database session (one unit of work)
        entry_id: KY entry identifier
        project_id: Project the entry must belong to
        action: "approve" or "unapprove"
        actor_id: Authenticated actor, None if unattributed
        note: Optional free text stored on the log record

    Returns:
        TransitionResult with the resulting state

    Raises:
        ValidationError: Missing ids or unknown action (nothing touched)
        EntryNotFound: No entry with that id in that project
    """
    entry_id = _require_id(entry_id, "kyEntryId")
    project_id = _require_id(project_id, "projectId")
    action = parse_action(action)

    entry = await _load_entry_for_update(session, entry_id, project_id)

    target = action is ApprovalAction.APPROVE
    changed = entry.is_approved != target

    if changed:
        now = utcnow()
        entry.is_approved = target
        if target:
            entry.approved_at = now
            entry.approved_by = actor_id
        else:
            entry.unapproved_at = now
            entry.unapproved_by = actor_id
        await session.flush()

    record = await append_approval_log(
        session,
        ky_entry_id=entry_id,
        project_id=project_id,
        action=action.value,
        actor_id=actor_id,
        note=note,
    )

    logger.info(
        "approval_transition",
        ky_entry_id=entry_id,
        project_id=project_id,
        action=action.value,
        actor_id=actor_id,
        changed=changed,
        log_id=record.id,
    )

    return TransitionResult(is_approved=target, changed=changed, log_id=record.id)


async def delete_entry(session: AsyncSession, entry_id: str) -> None:
    """Delete a KY entry that is not approved.

    Args:
        session: Database session (one unit of work)
        entry_id: KY entry identifier

    Raises:
        ValidationError: Missing id
        EntryNotFound: No entry with that id
        ApprovedEntryImmutable: Entry is approved; nothing is deleted
    """
    entry_id = _require_id(entry_id, "kyId")

    entry = await _load_entry_for_update(session, entry_id)
    if entry.is_approved:
        logger.warning("delete_refused_approved", ky_entry_id=entry_id)
        raise ApprovedEntryImmutable(entry_id)

    # Conditional on is_approved so a concurrent approve cannot be lost
    result = await session.execute(
        delete(KyEntry)
        .where(KyEntry.id == entry_id, KyEntry.is_approved.is_(False))
        .execution_options(synchronize_session=False)
    )
    session.expunge(entry)
    if result.rowcount == 0:
        raise ApprovedEntryImmutable(entry_id)

    logger.info("ky_entry_deleted", ky_entry_id=entry_id, project_id=entry.project_id)
