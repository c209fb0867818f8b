"""Category Pydantic v2 schemas."""

import uuid
from decimal import Decimal
from typing import List

from pydantic import BaseModel, ConfigDict, Field

from expenseflow.common.constants import ExpenseType


class CategoryCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    expense_type: ExpenseType
    default_allocation: Decimal = Field(Decimal("0"), ge=0, max_digits=12, decimal_places=2)
    requires_receipt: bool = False


class CategoryOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    name: str
    expense_type: ExpenseType
    default_allocation: Decimal
    requires_receipt: bool
    active: bool


class CategoryListResponse(BaseModel):
    data: List[CategoryOut]
