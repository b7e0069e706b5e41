"""Tests for the approval state store and its audit trail."""

import asyncio
import os
import tempfile
from unittest.mock import patch

import pytest
from sqlalchemy import select, update

from kypipeline.core.errors import ApprovedEntryImmutable, EntryNotFound, PersistenceError, ValidationError
from kypipeline.core.persistence.audit import latest_approval_log, list_approval_log, verify_approval_chain
from kypipeline.core.persistence.database import create_session_factory, get_session, init_database
from kypipeline.core.persistence.models import ApprovalLogRecord, KyEntry
from kypipeline.core.safety.approval import ApprovalAction, delete_entry, transition


@pytest.fixture
async def in_memory_db():
    """Create in-memory SQLite database for testing."""
    engine = await init_database("sqlite+aiosqlite:///:memory:")
    create_session_factory(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
async def file_db():
    """Temporary file database; concurrent sessions need separate connections."""
    fd, db_path = tempfile.mkstemp(suffix=".db")
    os.close(fd)
    engine = await init_database(f"sqlite+aiosqlite:///{db_path}")
    create_session_factory(engine)
    yield engine
    await engine.dispose()
    os.unlink(db_path)


async def seed_entry(project_id: str = "proj-1", approved: bool = False) -> str:
    async with get_session() as session:
        entry = KyEntry(project_id=project_id, title="足場点検", is_approved=approved)
        session.add(entry)
        await session.flush()
        return entry.id


async def load_entry(entry_id: str) -> KyEntry | None:
    async with get_session() as session:
        result = await session.execute(select(KyEntry).where(KyEntry.id == entry_id))
        return result.scalar_one_or_none()


async def load_log(entry_id: str) -> list[ApprovalLogRecord]:
    async with get_session() as session:
        return await list_approval_log(session, entry_id)


@pytest.mark.asyncio
async def test_new_entry_starts_unapproved(in_memory_db):
    entry_id = await seed_entry()
    entry = await load_entry(entry_id)
    assert entry.is_approved is False
    assert await load_log(entry_id) == []


@pytest.mark.asyncio
async def test_approve_sets_state_and_appends_log(in_memory_db):
    entry_id = await seed_entry()

    async with get_session() as session:
        result = await transition(session, entry_id, "proj-1", "approve", actor_id="user-1", note="OK")

    assert result.is_approved is True
    assert result.changed is True

    entry = await load_entry(entry_id)
    assert entry.is_approved is True
    assert entry.approved_by == "user-1"
    assert entry.approved_at is not None

    records = await load_log(entry_id)
    assert len(records) == 1
    assert records[0].action == "approve"
    assert records[0].actor_id == "user-1"
    assert records[0].note == "OK"
    assert records[0].project_id == "proj-1"
    assert records[0].id == result.log_id


@pytest.mark.asyncio
async def test_round_trip_approve_unapprove_approve(in_memory_db):
    """Final state Approved with exactly three records in action order."""
    entry_id = await seed_entry()

    for action in ("approve", "unapprove", "approve"):
        async with get_session() as session:
            await transition(session, entry_id, "proj-1", action, actor_id="user-1")

    entry = await load_entry(entry_id)
    assert entry.is_approved is True
    assert entry.unapproved_by == "user-1"

    records = await load_log(entry_id)
    assert [r.action for r in records] == ["approve", "unapprove", "approve"]
    timestamps = [r.created_at for r in records]
    assert timestamps[0] < timestamps[1] < timestamps[2]


@pytest.mark.asyncio
async def test_repeat_approve_is_state_noop_but_logged(in_memory_db):
    entry_id = await seed_entry()

    async with get_session() as session:
        await transition(session, entry_id, "proj-1", ApprovalAction.APPROVE, actor_id="user-1")
    first_approved_at = (await load_entry(entry_id)).approved_at

    async with get_session() as session:
        result = await transition(session, entry_id, "proj-1", ApprovalAction.APPROVE, actor_id="user-2")

    assert result.is_approved is True
    assert result.changed is False

    entry = await load_entry(entry_id)
    assert entry.is_approved is True
    assert entry.approved_by == "user-1"
    assert entry.approved_at == first_approved_at

    records = await load_log(entry_id)
    assert [r.actor_id for r in records] == ["user-1", "user-2"]


@pytest.mark.asyncio
async def test_unapprove_on_unapproved_entry_is_logged(in_memory_db):
    entry_id = await seed_entry()

    async with get_session() as session:
        result = await transition(session, entry_id, "proj-1", "unapprove")

    assert result.is_approved is False
    assert result.changed is False
    records = await load_log(entry_id)
    assert len(records) == 1
    assert records[0].actor_id is None


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "entry_id,project_id,action",
    [
        ("", "proj-1", "approve"),
        ("abc", "  ", "approve"),
        ("abc", "proj-1", "approved"),
        ("abc", "proj-1", None),
        ("abc", "proj-1", "APPROVE"),
    ],
)
async def test_invalid_arguments_rejected_before_any_read(in_memory_db, entry_id, project_id, action):
    async with get_session() as session:
        with pytest.raises(ValidationError):
            await transition(session, entry_id, project_id, action)


@pytest.mark.asyncio
async def test_unknown_entry_is_not_found(in_memory_db):
    with pytest.raises(EntryNotFound):
        async with get_session() as session:
            await transition(session, "missing", "proj-1", "approve")


@pytest.mark.asyncio
async def test_entry_in_other_project_is_not_found(in_memory_db):
    entry_id = await seed_entry(project_id="proj-1")

    with pytest.raises(EntryNotFound):
        async with get_session() as session:
            await transition(session, entry_id, "proj-2", "approve")

    assert (await load_entry(entry_id)).is_approved is False
    assert await load_log(entry_id) == []


@pytest.mark.asyncio
async def test_failed_log_append_rolls_back_state_flip(in_memory_db):
    """A state flip without its log record is never committed."""
    entry_id = await seed_entry()

    async with get_session() as session:
        await transition(session, entry_id, "proj-1", "approve")
    existing_hash = (await load_log(entry_id))[0].entry_hash

    async def colliding_append(session, **kwargs):
        session.add(ApprovalLogRecord(entry_hash=existing_hash, **kwargs))
        await session.flush()

    with patch("kypipeline.core.safety.approval.append_approval_log", new=colliding_append):
        with pytest.raises(PersistenceError):
            async with get_session() as session:
                await transition(session, entry_id, "proj-1", "unapprove")

    assert (await load_entry(entry_id)).is_approved is True
    assert len(await load_log(entry_id)) == 1


@pytest.mark.asyncio
async def test_delete_approved_entry_refused(in_memory_db):
    entry_id = await seed_entry()
    async with get_session() as session:
        await transition(session, entry_id, "proj-1", "approve")

    with pytest.raises(ApprovedEntryImmutable):
        async with get_session() as session:
            await delete_entry(session, entry_id)

    assert await load_entry(entry_id) is not None


@pytest.mark.asyncio
async def test_delete_unapproved_entry(in_memory_db):
    entry_id = await seed_entry()
    async with get_session() as session:
        await transition(session, entry_id, "proj-1", "approve")
    async with get_session() as session:
        await transition(session, entry_id, "proj-1", "unapprove")

    async with get_session() as session:
        await delete_entry(session, entry_id)

    assert await load_entry(entry_id) is None
    # The audit trail outlives the entry
    assert [r.action for r in await load_log(entry_id)] == ["approve", "unapprove"]


@pytest.mark.asyncio
async def test_delete_missing_entry(in_memory_db):
    with pytest.raises(EntryNotFound):
        async with get_session() as session:
            await delete_entry(session, "missing")


@pytest.mark.asyncio
async def test_hash_chain_verifies_and_detects_tampering(in_memory_db):
    entry_id = await seed_entry()
    for action in ("approve", "unapprove", "approve"):
        async with get_session() as session:
            await transition(session, entry_id, "proj-1", action, actor_id="user-1")

    records = await load_log(entry_id)
    assert records[0].previous_hash is None
    assert records[1].previous_hash == records[0].entry_hash
    assert records[2].previous_hash == records[1].entry_hash

    async with get_session() as session:
        assert await verify_approval_chain(session, entry_id) is True

    async with get_session() as session:
        await session.execute(
            update(ApprovalLogRecord)
            .where(ApprovalLogRecord.id == records[1].id)
            .values(actor_id="someone-else")
        )

    async with get_session() as session:
        assert await verify_approval_chain(session, entry_id) is False


@pytest.mark.asyncio
async def test_chains_are_per_entry(in_memory_db):
    first = await seed_entry()
    second = await seed_entry()

    async with get_session() as session:
        await transition(session, first, "proj-1", "approve")
    async with get_session() as session:
        await transition(session, second, "proj-1", "approve")

    second_log = await load_log(second)
    assert second_log[0].previous_hash is None


@pytest.mark.asyncio
async def test_concurrent_transitions_keep_state_and_log_consistent(file_db):
    """Interleaved approve/unapprove from two actors never leaves the cached
    state disagreeing with the latest log record."""
    entry_id = await seed_entry()

    async def run(action: str, actor: str):
        async with get_session() as session:
            await transition(session, entry_id, "proj-1", action, actor_id=actor)

    for _ in range(3):
        await asyncio.gather(
            *(
                run("approve" if i % 2 == 0 else "unapprove", f"actor-{i % 2}")
                for i in range(8)
            )
        )

        entry = await load_entry(entry_id)
        async with get_session() as session:
            latest = await latest_approval_log(session, entry_id)
            assert await verify_approval_chain(session, entry_id) is True

        assert entry.is_approved == (latest.action == "approve")

    records = await load_log(entry_id)
    assert len(records) == 24
    timestamps = [r.created_at for r in records]
    assert timestamps == sorted(timestamps)
    assert len(set(timestamps)) == len(timestamps)
