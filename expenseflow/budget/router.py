"""Budget router — ledger reads and capacity queries.

All endpoints require authentication.
"""

import uuid
from decimal import Decimal
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from expenseflow.auth.dependencies import Actor, get_current_actor
from expenseflow.budget.schemas import (
    BudgetAllocationOut,
    BudgetListResponse,
    CapacityCheck,
)
from expenseflow.budget.service import BudgetLedger, budget_year
from expenseflow.common.constants import UserRole
from expenseflow.common.exceptions import ForbiddenException
from expenseflow.database import get_db
from expenseflow.employees.service import EmployeeService
from expenseflow.expenses.policy import TeamMembershipPolicy

router = APIRouter(prefix="", tags=["budget"])


# ── GET / ────────────────────────────────────────────────────────────

@router.get("/", response_model=BudgetListResponse)
async def my_budgets(
    year: Optional[int] = Query(None, ge=2000, le=2100),
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
):
    """Allocation rows of the current user."""
    target_year = year or budget_year()
    rows = await BudgetLedger.get_budgets(db, actor.id, target_year)
    return BudgetListResponse(
        data=[BudgetAllocationOut.model_validate(r) for r in rows],
        year=target_year,
    )


# ── GET /capacity ────────────────────────────────────────────────────

@router.get("/capacity", response_model=CapacityCheck)
async def capacity(
    category_id: uuid.UUID = Query(...),
    amount: Decimal = Query(..., ge=0),
    currency: str = Query(..., max_length=10),
    year: Optional[int] = Query(None, ge=2000, le=2100),
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
):
    """Would *amount* fit the current user's remaining benefit budget?"""
    return await BudgetLedger.check_capacity(
        db, actor.id, category_id, amount, currency, year=year,
    )


# ── GET /{employee_id} ───────────────────────────────────────────────

@router.get("/{employee_id}", response_model=BudgetListResponse)
async def employee_budgets(
    employee_id: uuid.UUID,
    year: Optional[int] = Query(None, ge=2000, le=2100),
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
):
    """Allocation rows of another employee (their manager, finance, admins)."""
    employee = await EmployeeService.get_employee(db, employee_id)
    if actor.id != employee.id and actor.role not in (
        UserRole.finance_admin,
        UserRole.system_admin,
    ):
        if not TeamMembershipPolicy.is_direct_manager(actor.id, employee):
            raise ForbiddenException("Not authorized to view this employee's budget.")

    target_year = year or budget_year()
    rows = await BudgetLedger.get_budgets(db, employee.id, target_year)
    return BudgetListResponse(
        data=[BudgetAllocationOut.model_validate(r) for r in rows],
        year=target_year,
    )
