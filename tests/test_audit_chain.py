"""Audit chain tests — hashing rules, appends, verification and tamper detection."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from decimal import Decimal

import pytest
from sqlalchemy import select, update

from expenseflow.audit.hashing import canonical_json, compute_entry_hash, format_timestamp
from expenseflow.audit.models import AuditLogEntry, AuditLogImmutableError
from expenseflow.audit.service import AuditChain
from expenseflow.common.constants import UserRole
from expenseflow.common.exceptions import AuditIntegrityViolationException
from tests.conftest import auth_headers, make_employee


async def _append(db, n: int, actor_id=None) -> list[AuditLogEntry]:
    entries = []
    for i in range(n):
        entries.append(
            await AuditChain.record_event(
                db,
                actor_id=actor_id,
                entity_type="ExpenseRequest",
                entity_id=uuid.uuid4(),
                event_type="UPDATE",
                event_data={"index": i, "amount": Decimal("10.50")},
            )
        )
    await db.commit()
    return entries


# ═════════════════════════════════════════════════════════════════════
# 1. HASHING
# ═════════════════════════════════════════════════════════════════════


def test_canonical_json_sorts_keys_recursively_and_keeps_array_order():
    data = {"b": 1, "a": {"z": [3, 1, 2], "y": None}}
    assert canonical_json(data) == '{"a":{"y":null,"z":[3,1,2]},"b":1}'


def test_canonical_json_renders_special_values_as_strings():
    rid = uuid.UUID("00000000-0000-0000-0000-000000000001")
    out = canonical_json({"amount": Decimal("1.50"), "id": rid, "role": UserRole.approver})
    assert out == (
        '{"amount":"1.50","id":"00000000-0000-0000-0000-000000000001","role":"approver"}'
    )


def test_format_timestamp_is_utc_with_microseconds():
    ts = datetime(2026, 1, 2, 3, 4, 5, 6, tzinfo=timezone.utc)
    assert format_timestamp(ts) == "2026-01-02T03:04:05.000006Z"
    # Naive values are taken as UTC
    assert format_timestamp(ts.replace(tzinfo=None)) == "2026-01-02T03:04:05.000006Z"


def test_entry_hash_treats_missing_actor_as_empty_string():
    ts = datetime(2026, 1, 2, tzinfo=timezone.utc)
    without_actor = compute_entry_hash("GENESIS", "{}", None, "Employee", "x", ts)
    blank_actor = compute_entry_hash("GENESIS", "{}", "", "Employee", "x", ts)
    assert without_actor == blank_actor
    assert len(without_actor) == 64


def test_entry_hash_changes_with_every_component():
    ts = datetime(2026, 1, 2, tzinfo=timezone.utc)
    base = compute_entry_hash("GENESIS", "{}", None, "Employee", "x", ts)
    assert compute_entry_hash("other", "{}", None, "Employee", "x", ts) != base
    assert compute_entry_hash("GENESIS", '{"a":1}', None, "Employee", "x", ts) != base
    assert compute_entry_hash("GENESIS", "{}", None, "Employee", "y", ts) != base


# ═════════════════════════════════════════════════════════════════════
# 2. APPEND + VERIFY
# ═════════════════════════════════════════════════════════════════════


async def test_empty_chain_is_valid(db):
    outcome = await AuditChain.verify_chain(db)
    assert outcome.valid is True
    assert outcome.count == 0
    assert outcome.failed_at_entry_id is None


async def test_first_entry_links_to_genesis(db):
    [entry] = await _append(db, 1)
    assert entry.seq == 1
    assert entry.prev_hash == "GENESIS"


async def test_entries_link_and_verify(db):
    entries = await _append(db, 5)
    for prev, nxt in zip(entries, entries[1:]):
        assert nxt.prev_hash == prev.hash
        assert nxt.seq == prev.seq + 1
        assert nxt.created_at > prev.created_at

    outcome = await AuditChain.verify_chain(db)
    assert outcome.valid is True
    assert outcome.count == 5


async def test_entry_hash_matches_recomputation(db):
    actor = await make_employee(db)
    [entry] = await _append(db, 1, actor_id=actor.id)
    assert entry.hash == compute_entry_hash(
        entry.prev_hash,
        entry.event_data_json,
        actor.id,
        entry.entity_type,
        entry.entity_id,
        entry.created_at,
    )


async def test_orm_update_of_entry_is_refused(db):
    [entry] = await _append(db, 1)
    entry.event_type = "TAMPERED"
    with pytest.raises(AuditLogImmutableError):
        await db.flush()
    await db.rollback()


# ═════════════════════════════════════════════════════════════════════
# 3. TAMPER DETECTION
# ═════════════════════════════════════════════════════════════════════


async def test_modified_payload_reports_first_tampered_entry(db):
    entries = await _append(db, 4)
    await db.execute(
        update(AuditLogEntry)
        .where(AuditLogEntry.id == entries[2].id)
        .values(event_data_json='{"amount":"999.00","index":2}')
    )
    await db.commit()

    outcome = await AuditChain.verify_chain(db)
    assert outcome.valid is False
    assert outcome.failed_at_entry_id == entries[2].id


async def test_first_of_several_tampered_entries_is_reported(db):
    entries = await _append(db, 5)
    for victim in (entries[1], entries[3]):
        await db.execute(
            update(AuditLogEntry)
            .where(AuditLogEntry.id == victim.id)
            .values(event_data_json='{"amount":"0.01","eventType":"UPDATE"}', hash="f" * 64)
        )
    await db.commit()

    outcome = await AuditChain.verify_chain(db)
    assert outcome.valid is False
    assert outcome.failed_at_entry_id == entries[1].id


async def test_event_type_is_part_of_the_hashed_payload(db):
    [entry] = await _append(db, 1)
    assert '"eventType":"UPDATE"' in entry.event_data_json


async def test_relabelled_event_type_is_detected(db):
    entries = await _append(db, 3)
    await db.execute(
        update(AuditLogEntry)
        .where(AuditLogEntry.id == entries[1].id)
        .values(event_type="PAID")
    )
    await db.commit()

    outcome = await AuditChain.verify_chain(db)
    assert outcome.valid is False
    assert outcome.failed_at_entry_id == entries[1].id


async def test_modified_hash_breaks_the_link_of_the_next_entry(db):
    entries = await _append(db, 3)
    await db.execute(
        update(AuditLogEntry)
        .where(AuditLogEntry.id == entries[0].id)
        .values(hash="0" * 64)
    )
    await db.commit()

    outcome = await AuditChain.verify_chain(db)
    assert outcome.valid is False
    assert outcome.failed_at_entry_id == entries[0].id


async def test_ensure_intact_raises_on_broken_chain(db):
    entries = await _append(db, 2)
    await db.execute(
        update(AuditLogEntry)
        .where(AuditLogEntry.id == entries[1].id)
        .values(entity_type="Employee")
    )
    await db.commit()

    with pytest.raises(AuditIntegrityViolationException):
        await AuditChain.ensure_intact(db)


async def test_new_appends_continue_from_stored_tail(db):
    await _append(db, 2)
    [third] = await _append(db, 1)
    result = await db.execute(select(AuditLogEntry).order_by(AuditLogEntry.seq))
    stored = result.scalars().all()
    assert [e.seq for e in stored] == [1, 2, 3]
    assert third.prev_hash == stored[1].hash


# ═════════════════════════════════════════════════════════════════════
# 4. API
# ═════════════════════════════════════════════════════════════════════


async def test_verify_endpoint_requires_system_admin(client, db):
    employee = await make_employee(db)
    resp = await client.get("/api/v1/audit/verify", headers=auth_headers(employee))
    assert resp.status_code == 403


async def test_verify_endpoint_reports_chain_state(client, db):
    admin = await make_employee(db, role=UserRole.system_admin)
    entries = await _append(db, 3)

    resp = await client.get("/api/v1/audit/verify", headers=auth_headers(admin))
    assert resp.status_code == 200
    assert resp.json()["valid"] is True
    assert resp.json()["count"] == 3

    await db.execute(
        update(AuditLogEntry)
        .where(AuditLogEntry.id == entries[1].id)
        .values(event_type="PAID")
    )
    await db.commit()

    resp = await client.get("/api/v1/audit/verify", headers=auth_headers(admin))
    assert resp.json()["valid"] is False
    assert resp.json()["failed_at_entry_id"] == str(entries[1].id)

    resp = await client.get(
        "/api/v1/audit/verify", params={"strict": "true"}, headers=auth_headers(admin),
    )
    assert resp.status_code == 409
    assert resp.headers["content-type"].startswith("application/problem+json")


async def test_entries_endpoint_filters_by_entity(client, db):
    admin = await make_employee(db, role=UserRole.system_admin)
    target = uuid.uuid4()
    await AuditChain.record_event(
        db, actor_id=admin.id, entity_type="ExpenseRequest", entity_id=target,
        event_type="CREATE", event_data={},
    )
    await _append(db, 2)

    resp = await client.get(
        "/api/v1/audit/entries",
        params={"entity_type": "ExpenseRequest", "entity_id": str(target)},
        headers=auth_headers(admin),
    )
    assert resp.status_code == 200
    body = resp.json()
    assert body["meta"]["total"] == 1
    assert body["data"][0]["event_type"] == "CREATE"
