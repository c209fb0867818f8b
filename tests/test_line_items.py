"""Line item tests — owner-only edits while the request is editable, audited."""

from __future__ import annotations

import uuid
from datetime import date
from decimal import Decimal

import pytest
from sqlalchemy import select

from expenseflow.audit.models import AuditLogEntry
from expenseflow.audit.service import AuditChain
from expenseflow.common.constants import ExpenseType
from expenseflow.common.exceptions import (
    ForbiddenException,
    InvalidTransitionException,
    NotFoundException,
    UnsupportedCurrencyException,
    ValidationException,
)
from expenseflow.expenses.line_items import LineItemService
from expenseflow.expenses.models import ExpenseLineItem
from expenseflow.expenses.service import ApprovalWorkflow
from tests.conftest import actor_for, auth_headers, make_category

BASE = "/api/v1/requests"


async def _draft(db, owner):
    travel = await make_category(db, expense_type=ExpenseType.travel)
    expense_request = await ApprovalWorkflow.create_request(
        db, actor_for(owner),
        category_id=travel.id,
        total_amount=Decimal("120"),
        reason="Conference trip",
        invoice_number="INV-9",
        invoice_date=date(2026, 4, 2),
        supplier="RailCo",
    )
    await db.commit()
    return expense_request


async def _add(db, owner, expense_request, **fields):
    data = {
        "item_date": date(2026, 4, 1),
        "description": "Train ticket",
        "amount": Decimal("45.50"),
        **fields,
    }
    item = await LineItemService.add_line_item(db, actor_for(owner), expense_request.id, **data)
    await db.commit()
    return item


async def _line_item_events(db) -> list[tuple[str, str]]:
    result = await db.execute(
        select(AuditLogEntry.event_type, AuditLogEntry.entity_id)
        .where(AuditLogEntry.entity_type == "ExpenseLineItem")
        .order_by(AuditLogEntry.seq)
    )
    return [tuple(row) for row in result.all()]


# ═════════════════════════════════════════════════════════════════════
# 1. SERVICE
# ═════════════════════════════════════════════════════════════════════


async def test_owner_adds_updates_and_deletes_items(db, team):
    owner = team["employee"]
    expense_request = await _draft(db, owner)

    item = await _add(db, owner, expense_request)
    assert item.request_id == expense_request.id
    assert item.currency == "EUR"

    await LineItemService.update_line_item(
        db, actor_for(owner), expense_request.id, item.id,
        amount=Decimal("50"), description="  Train ticket (return)  ",
    )
    await db.commit()
    assert item.amount == Decimal("50")
    assert item.description == "Train ticket (return)"

    await LineItemService.delete_line_item(db, actor_for(owner), expense_request.id, item.id)
    await db.commit()

    remaining = await db.execute(
        select(ExpenseLineItem).where(ExpenseLineItem.request_id == expense_request.id)
    )
    assert remaining.scalars().all() == []
    assert await _line_item_events(db) == [
        ("CREATE", str(item.id)),
        ("UPDATE", str(item.id)),
        ("DELETE", str(item.id)),
    ]
    assert (await AuditChain.verify_chain(db)).valid is True


async def test_line_item_audit_entry_names_its_request(db, team):
    owner = team["employee"]
    expense_request = await _draft(db, owner)
    item = await _add(db, owner, expense_request)

    result = await db.execute(
        select(AuditLogEntry).where(AuditLogEntry.entity_id == str(item.id))
    )
    entry = result.scalar_one()
    assert str(expense_request.id) in entry.event_data_json
    assert entry.actor_id == owner.id


async def test_unchanged_update_writes_no_audit_entry(db, team):
    owner = team["employee"]
    expense_request = await _draft(db, owner)
    item = await _add(db, owner, expense_request)

    await LineItemService.update_line_item(
        db, actor_for(owner), expense_request.id, item.id, description="Train ticket",
    )
    await db.commit()
    assert [event for event, _ in await _line_item_events(db)] == ["CREATE"]


async def test_someone_else_cannot_touch_items(db, team):
    owner = team["employee"]
    expense_request = await _draft(db, owner)
    item = await _add(db, owner, expense_request)

    for actor in (actor_for(team["manager"]), actor_for(team["admin"])):
        with pytest.raises(ForbiddenException):
            await LineItemService.update_line_item(
                db, actor, expense_request.id, item.id, amount=Decimal("1"),
            )
        with pytest.raises(ForbiddenException):
            await LineItemService.delete_line_item(db, actor, expense_request.id, item.id)


async def test_items_are_frozen_once_submitted(db, team):
    owner = team["employee"]
    expense_request = await _draft(db, owner)
    item = await _add(db, owner, expense_request)
    await ApprovalWorkflow.submit_request(db, actor_for(owner), expense_request.id)
    await db.commit()

    with pytest.raises(InvalidTransitionException):
        await _add(db, owner, expense_request)
    with pytest.raises(InvalidTransitionException):
        await LineItemService.update_line_item(
            db, actor_for(owner), expense_request.id, item.id, amount=Decimal("1"),
        )
    with pytest.raises(InvalidTransitionException):
        await LineItemService.delete_line_item(db, actor_for(owner), expense_request.id, item.id)


async def test_returned_request_items_are_editable_again(db, team):
    owner = team["employee"]
    expense_request = await _draft(db, owner)
    await ApprovalWorkflow.submit_request(db, actor_for(owner), expense_request.id)
    await ApprovalWorkflow.return_request(
        db, actor_for(team["manager"]), expense_request.id, "split the costs",
    )
    await db.commit()

    item = await _add(db, owner, expense_request, description="Hotel", amount=Decimal("74.50"))
    assert item.description == "Hotel"


async def test_item_validation(db, team):
    owner = team["employee"]
    expense_request = await _draft(db, owner)

    with pytest.raises(ValidationException) as exc_info:
        await LineItemService.add_line_item(
            db, actor_for(owner), expense_request.id, description="Taxi",
        )
    assert set(exc_info.value.errors) == {"item_date", "amount"}

    with pytest.raises(UnsupportedCurrencyException):
        await _add(db, owner, expense_request, currency="GBP")

    item = await _add(db, owner, expense_request)
    with pytest.raises(ValidationException):
        await LineItemService.update_line_item(
            db, actor_for(owner), expense_request.id, item.id, request_id=uuid.uuid4(),
        )
    with pytest.raises(ValidationException):
        await LineItemService.update_line_item(
            db, actor_for(owner), expense_request.id, item.id, description="   ",
        )


async def test_item_of_another_request_is_not_found(db, team):
    owner = team["employee"]
    first = await _draft(db, owner)
    second = await _draft(db, owner)
    item = await _add(db, owner, first)

    with pytest.raises(NotFoundException):
        await LineItemService.delete_line_item(db, actor_for(owner), second.id, item.id)


async def test_described_request_lists_its_items(db, team):
    owner = team["employee"]
    expense_request = await _draft(db, owner)
    await _add(db, owner, expense_request, item_date=date(2026, 4, 3), description="Hotel")
    await _add(db, owner, expense_request, item_date=date(2026, 4, 1), description="Train")

    detail = await ApprovalWorkflow.get_request(db, actor_for(owner), expense_request.id)
    assert [i.description for i in detail.line_items] == ["Train", "Hotel"]


# ═════════════════════════════════════════════════════════════════════
# 2. API
# ═════════════════════════════════════════════════════════════════════


async def test_line_items_over_http(client, db, team):
    owner = team["employee"]
    expense_request = await _draft(db, owner)
    url = f"{BASE}/{expense_request.id}/line-items"

    resp = await client.post(
        url,
        json={"item_date": "2026-04-01", "description": "Taxi", "amount": "18.40"},
        headers=auth_headers(owner),
    )
    assert resp.status_code == 201
    item = resp.json()
    assert item["currency"] == "EUR"
    assert Decimal(item["amount"]) == Decimal("18.40")

    resp = await client.patch(
        f"{url}/{item['id']}", json={"amount": "20.00"}, headers=auth_headers(owner),
    )
    assert resp.status_code == 200
    assert Decimal(resp.json()["amount"]) == Decimal("20.00")

    resp = await client.get(f"{BASE}/{expense_request.id}", headers=auth_headers(owner))
    assert [i["description"] for i in resp.json()["line_items"]] == ["Taxi"]

    resp = await client.patch(
        f"{url}/{item['id']}", json={"amount": "1"}, headers=auth_headers(team["manager"]),
    )
    assert resp.status_code == 403

    resp = await client.delete(f"{url}/{item['id']}", headers=auth_headers(owner))
    assert resp.status_code == 204


async def test_adding_items_after_submit_is_409(client, db, team):
    owner = team["employee"]
    expense_request = await _draft(db, owner)
    await ApprovalWorkflow.submit_request(db, actor_for(owner), expense_request.id)
    await db.commit()

    resp = await client.post(
        f"{BASE}/{expense_request.id}/line-items",
        json={"item_date": "2026-04-01", "description": "Taxi", "amount": "18.40"},
        headers=auth_headers(owner),
    )
    assert resp.status_code == 409
    assert resp.headers["content-type"].startswith("application/problem+json")
