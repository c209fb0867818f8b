"""Employees router — identity administration (system admins)."""

import uuid

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from expenseflow.auth.dependencies import Actor, get_current_actor, require_role
from expenseflow.common.constants import UserRole
from expenseflow.common.exceptions import ForbiddenException
from expenseflow.database import get_db
from expenseflow.employees.schemas import EmployeeCreate, EmployeeOut, EmployeeUpdate
from expenseflow.employees.service import EmployeeService

router = APIRouter(prefix="", tags=["employees"])


@router.post("/", response_model=EmployeeOut, status_code=201)
async def create_employee(
    body: EmployeeCreate,
    actor: Actor = Depends(require_role(UserRole.system_admin)),
    db: AsyncSession = Depends(get_db),
):
    """Provision an employee and seed their benefit budgets."""
    employee = await EmployeeService.provision_employee(
        db,
        actor.id,
        email=body.email,
        full_name=body.full_name,
        role=body.role,
        manager_id=body.manager_id,
    )
    await db.commit()
    return EmployeeOut.model_validate(employee)


@router.get("/{employee_id}", response_model=EmployeeOut)
async def get_employee(
    employee_id: uuid.UUID,
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
):
    employee = await EmployeeService.get_employee(db, employee_id)
    if actor.id not in (employee.id, employee.manager_id) and actor.role not in (
        UserRole.finance_admin,
        UserRole.system_admin,
    ):
        raise ForbiddenException("Not authorized to view this employee.")
    return EmployeeOut.model_validate(employee)


@router.patch("/{employee_id}", response_model=EmployeeOut)
async def update_employee(
    employee_id: uuid.UUID,
    body: EmployeeUpdate,
    actor: Actor = Depends(require_role(UserRole.system_admin)),
    db: AsyncSession = Depends(get_db),
):
    employee = await EmployeeService.update_employee(
        db, actor.id, employee_id, **body.model_dump(exclude_unset=True),
    )
    await db.commit()
    return EmployeeOut.model_validate(employee)


@router.post("/{employee_id}/deactivate", response_model=EmployeeOut)
async def deactivate_employee(
    employee_id: uuid.UUID,
    actor: Actor = Depends(require_role(UserRole.system_admin)),
    db: AsyncSession = Depends(get_db),
):
    employee = await EmployeeService.deactivate_employee(db, actor.id, employee_id)
    await db.commit()
    return EmployeeOut.model_validate(employee)
