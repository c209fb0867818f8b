"""Budget Pydantic v2 schemas."""

import uuid
from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field

from expenseflow.common.constants import ExpenseType


class CapacityCheck(BaseModel):
    """Whether a prospective benefit amount fits the remaining allocation."""

    allowed: bool
    remaining: Decimal
    converted_amount: Decimal
    allocation_exists: bool = True
    currency: str = "EUR"


class CategoryBrief(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    name: str
    expense_type: ExpenseType


class BudgetAllocationOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    employee_id: uuid.UUID
    category_id: uuid.UUID
    year: int
    allocated: Decimal
    spent: Decimal
    remaining: Decimal
    category: Optional[CategoryBrief] = None


class BudgetListResponse(BaseModel):
    data: List[BudgetAllocationOut]
    year: int


class CapacityQuery(BaseModel):
    category_id: uuid.UUID
    amount: Decimal = Field(..., ge=0, max_digits=12, decimal_places=2)
    currency: str = Field(..., max_length=10)
    year: Optional[int] = Field(None, ge=2000, le=2100)
