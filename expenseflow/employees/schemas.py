"""Employee Pydantic v2 schemas."""

import uuid
from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from expenseflow.common.constants import UserRole


class EmployeeCreate(BaseModel):
    email: str = Field(..., min_length=3, max_length=255, pattern=r"^[^@\s]+@[^@\s]+$")
    full_name: str = Field(..., min_length=1, max_length=200)
    role: UserRole = UserRole.employee
    manager_id: Optional[uuid.UUID] = None


class EmployeeUpdate(BaseModel):
    full_name: Optional[str] = Field(None, min_length=1, max_length=200)
    role: Optional[UserRole] = None
    manager_id: Optional[uuid.UUID] = None
    is_active: Optional[bool] = None


class EmployeeOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    email: str
    full_name: str
    role: UserRole
    manager_id: Optional[uuid.UUID] = None
    is_active: bool = True
    created_at: Optional[datetime] = None
