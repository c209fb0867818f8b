"""Requests router — CRUD, line items and approval workflow for expense requests.

All endpoints require authentication; role and ownership checks live in
the workflow itself.
"""

import uuid
from typing import Optional

from fastapi import APIRouter, BackgroundTasks, Depends, Query, Request
from sqlalchemy.ext.asyncio import AsyncSession

from expenseflow.auth.dependencies import Actor, get_current_actor
from expenseflow.common.constants import RequestStatus
from expenseflow.common.pagination import PaginationParams, build_meta
from expenseflow.common.rate_limit import WORKFLOW_WRITE_LIMIT, limiter
from expenseflow.database import get_db
from expenseflow.expenses.line_items import LineItemService
from expenseflow.expenses.schemas import (
    ActionComment,
    ExpenseRequestCreate,
    ExpenseRequestListResponse,
    ExpenseRequestOut,
    ExpenseRequestUpdate,
    LineItemCreate,
    LineItemOut,
    LineItemUpdate,
)
from expenseflow.expenses.service import ApprovalWorkflow
from expenseflow.notifications.service import dispatch_notices, take_pending_notices

router = APIRouter(prefix="", tags=["requests"])


async def _commit_and_notify(db: AsyncSession, background_tasks: BackgroundTasks) -> None:
    """Commit, then send the owner emails the transition queued."""
    await db.commit()
    notices = take_pending_notices(db)
    if notices:
        background_tasks.add_task(dispatch_notices, notices)


# ── POST / ───────────────────────────────────────────────────────────

@router.post("/", response_model=ExpenseRequestOut, status_code=201)
@limiter.limit(WORKFLOW_WRITE_LIMIT)
async def create_request(
    request: Request,
    body: ExpenseRequestCreate,
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
):
    """Open a new DRAFT request."""
    expense_request = await ApprovalWorkflow.create_request(
        db,
        actor,
        category_id=body.category_id,
        currency=body.currency,
        total_amount=body.total_amount,
        reason=body.reason,
        invoice_number=body.invoice_number,
        invoice_date=body.invoice_date,
        supplier=body.supplier,
    )
    out = await ApprovalWorkflow.describe(db, expense_request)
    await db.commit()
    return out


# ── GET / ────────────────────────────────────────────────────────────

@router.get("/", response_model=ExpenseRequestListResponse)
async def list_requests(
    status: Optional[RequestStatus] = Query(None),
    pagination: PaginationParams = Depends(),
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
):
    """Requests visible to the caller, each with its action history."""
    items, total = await ApprovalWorkflow.list_requests(
        db, actor, status=status, page=pagination.page, page_size=pagination.page_size,
    )
    return ExpenseRequestListResponse(
        data=items,
        meta=build_meta(total, pagination.page, pagination.page_size),
    )


# ── GET /{request_id} ────────────────────────────────────────────────

@router.get("/{request_id}", response_model=ExpenseRequestOut)
async def get_request(
    request_id: uuid.UUID,
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
):
    return await ApprovalWorkflow.get_request(db, actor, request_id)


# ── PATCH /{request_id} ──────────────────────────────────────────────

@router.patch("/{request_id}", response_model=ExpenseRequestOut)
async def edit_request(
    request_id: uuid.UUID,
    body: ExpenseRequestUpdate,
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
):
    """Edit a DRAFT or RETURNED request (owner only)."""
    expense_request = await ApprovalWorkflow.edit_request(
        db, actor, request_id, **body.model_dump(exclude_unset=True),
    )
    out = await ApprovalWorkflow.describe(db, expense_request)
    await db.commit()
    return out


# ── DELETE /{request_id} ─────────────────────────────────────────────

@router.delete("/{request_id}", status_code=204)
async def cancel_request(
    request_id: uuid.UUID,
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
):
    """Cancel a DRAFT request."""
    await ApprovalWorkflow.cancel_request(db, actor, request_id)
    await db.commit()


# ── Owner transitions ────────────────────────────────────────────────

@router.post("/{request_id}/submit", response_model=ExpenseRequestOut)
@limiter.limit(WORKFLOW_WRITE_LIMIT)
async def submit_request(
    request: Request,
    request_id: uuid.UUID,
    background_tasks: BackgroundTasks,
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
):
    expense_request = await ApprovalWorkflow.submit_request(db, actor, request_id)
    out = await ApprovalWorkflow.describe(db, expense_request)
    await _commit_and_notify(db, background_tasks)
    return out


@router.post("/{request_id}/withdraw", response_model=ExpenseRequestOut)
async def withdraw_request(
    request_id: uuid.UUID,
    background_tasks: BackgroundTasks,
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
):
    expense_request = await ApprovalWorkflow.withdraw_request(db, actor, request_id)
    out = await ApprovalWorkflow.describe(db, expense_request)
    await _commit_and_notify(db, background_tasks)
    return out


# ── Review ───────────────────────────────────────────────────────────

@router.post("/{request_id}/approve", response_model=ExpenseRequestOut)
async def approve_request(
    request_id: uuid.UUID,
    body: ActionComment,
    background_tasks: BackgroundTasks,
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
):
    expense_request = await ApprovalWorkflow.approve_request(db, actor, request_id, body.comment)
    out = await ApprovalWorkflow.describe(db, expense_request)
    await _commit_and_notify(db, background_tasks)
    return out


@router.post("/{request_id}/reject", response_model=ExpenseRequestOut)
async def reject_request(
    request_id: uuid.UUID,
    body: ActionComment,
    background_tasks: BackgroundTasks,
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
):
    expense_request = await ApprovalWorkflow.reject_request(db, actor, request_id, body.comment)
    out = await ApprovalWorkflow.describe(db, expense_request)
    await _commit_and_notify(db, background_tasks)
    return out


@router.post("/{request_id}/return", response_model=ExpenseRequestOut)
async def return_request(
    request_id: uuid.UUID,
    body: ActionComment,
    background_tasks: BackgroundTasks,
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
):
    """Send the request back to its owner for changes."""
    expense_request = await ApprovalWorkflow.return_request(db, actor, request_id, body.comment)
    out = await ApprovalWorkflow.describe(db, expense_request)
    await _commit_and_notify(db, background_tasks)
    return out


# ── Finance ──────────────────────────────────────────────────────────

@router.post("/{request_id}/process", response_model=ExpenseRequestOut)
async def finance_process(
    request_id: uuid.UUID,
    background_tasks: BackgroundTasks,
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
):
    expense_request = await ApprovalWorkflow.finance_process(db, actor, request_id)
    out = await ApprovalWorkflow.describe(db, expense_request)
    await _commit_and_notify(db, background_tasks)
    return out


@router.post("/{request_id}/paid", response_model=ExpenseRequestOut)
async def finance_paid(
    request_id: uuid.UUID,
    background_tasks: BackgroundTasks,
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
):
    """Mark paid; benefit requests are charged to the owner's budget."""
    expense_request = await ApprovalWorkflow.finance_paid(db, actor, request_id)
    out = await ApprovalWorkflow.describe(db, expense_request)
    await _commit_and_notify(db, background_tasks)
    return out


# ── Line items ───────────────────────────────────────────────────────

@router.post("/{request_id}/line-items", response_model=LineItemOut, status_code=201)
async def add_line_item(
    request_id: uuid.UUID,
    body: LineItemCreate,
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
):
    """Add a line to a DRAFT or RETURNED request (owner only)."""
    item = await LineItemService.add_line_item(db, actor, request_id, **body.model_dump())
    out = LineItemOut.model_validate(item)
    await db.commit()
    return out


@router.patch("/{request_id}/line-items/{item_id}", response_model=LineItemOut)
async def update_line_item(
    request_id: uuid.UUID,
    item_id: uuid.UUID,
    body: LineItemUpdate,
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
):
    item = await LineItemService.update_line_item(
        db, actor, request_id, item_id, **body.model_dump(exclude_unset=True),
    )
    out = LineItemOut.model_validate(item)
    await db.commit()
    return out


@router.delete("/{request_id}/line-items/{item_id}", status_code=204)
async def delete_line_item(
    request_id: uuid.UUID,
    item_id: uuid.UUID,
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
):
    await LineItemService.delete_line_item(db, actor, request_id, item_id)
    await db.commit()
