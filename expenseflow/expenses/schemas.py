"""Expenses Pydantic v2 schemas — request/response validation."""

import uuid
from datetime import date, datetime
from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field

from expenseflow.common.constants import ApprovalActionType, ExpenseType, RequestStatus
from expenseflow.common.pagination import PaginationMeta


# ═════════════════════════════════════════════════════════════════════
# Expense Request
# ═════════════════════════════════════════════════════════════════════


class ExpenseRequestCreate(BaseModel):
    """Open a new DRAFT request. Only the category is needed up front."""

    category_id: uuid.UUID
    reason: Optional[str] = Field(None, max_length=2000)
    currency: str = Field("EUR", max_length=10)
    total_amount: Decimal = Field(Decimal("0"), ge=0, max_digits=12, decimal_places=2)
    invoice_number: Optional[str] = Field(None, max_length=100)
    invoice_date: Optional[date] = None
    supplier: Optional[str] = Field(None, max_length=200)


class ExpenseRequestUpdate(BaseModel):
    """Partial update of a DRAFT / RETURNED request."""

    category_id: Optional[uuid.UUID] = None
    reason: Optional[str] = Field(None, max_length=2000)
    currency: Optional[str] = Field(None, max_length=10)
    total_amount: Optional[Decimal] = Field(None, ge=0, max_digits=12, decimal_places=2)
    invoice_number: Optional[str] = Field(None, max_length=100)
    invoice_date: Optional[date] = None
    supplier: Optional[str] = Field(None, max_length=200)


# ═════════════════════════════════════════════════════════════════════
# Line Items
# ═════════════════════════════════════════════════════════════════════


class LineItemCreate(BaseModel):
    item_date: date
    description: str = Field(..., min_length=1, max_length=500)
    amount: Decimal = Field(..., ge=0, max_digits=12, decimal_places=2)
    currency: str = Field("EUR", max_length=10)


class LineItemUpdate(BaseModel):
    item_date: Optional[date] = None
    description: Optional[str] = Field(None, min_length=1, max_length=500)
    amount: Optional[Decimal] = Field(None, ge=0, max_digits=12, decimal_places=2)
    currency: Optional[str] = Field(None, max_length=10)


class LineItemOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    request_id: uuid.UUID
    item_date: date
    description: str
    amount: Decimal
    currency: str
    created_at: datetime


# ═════════════════════════════════════════════════════════════════════
# Workflow actions
# ═════════════════════════════════════════════════════════════════════


class ActionComment(BaseModel):
    """Body of approve / reject / return; the workflow enforces presence."""

    comment: Optional[str] = Field(None, max_length=2000)


class ApprovalActionOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    position: int
    actor_id: Optional[uuid.UUID] = None
    actor_name: Optional[str] = None
    action_type: ApprovalActionType
    from_status: RequestStatus
    to_status: RequestStatus
    comment: Optional[str] = None
    created_at: datetime


class ExpenseRequestOut(BaseModel):
    """Full request representation."""

    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    request_number: str
    employee_id: uuid.UUID
    employee_name: Optional[str] = None
    category_id: uuid.UUID
    expense_type: ExpenseType
    reason: Optional[str] = None
    currency: str
    total_amount: Decimal
    invoice_number: Optional[str] = None
    invoice_date: Optional[date] = None
    supplier: Optional[str] = None
    status: RequestStatus
    submitted_at: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime
    line_items: List[LineItemOut] = Field(default_factory=list)
    actions: List[ApprovalActionOut] = Field(default_factory=list)


class ExpenseRequestListResponse(BaseModel):
    data: List[ExpenseRequestOut]
    meta: PaginationMeta
