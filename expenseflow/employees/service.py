"""Employee service — provisioning, reporting line, display names."""

from __future__ import annotations

import uuid
from typing import Iterable, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from expenseflow.audit.service import AuditChain
from expenseflow.budget.service import BudgetLedger
from expenseflow.common.constants import AuditEventType, EntityType, UserRole
from expenseflow.common.exceptions import (
    ConflictError,
    NotFoundException,
    ValidationException,
)
from expenseflow.employees.models import Employee

_UNSET = object()


class EmployeeService:
    """Identity records the workflow's guards depend on."""

    @staticmethod
    async def get_employee(db: AsyncSession, employee_id: uuid.UUID) -> Employee:
        result = await db.execute(select(Employee).where(Employee.id == employee_id))
        employee = result.scalars().first()
        if employee is None:
            raise NotFoundException("Employee", str(employee_id))
        return employee

    @staticmethod
    async def get_display_names(
        db: AsyncSession,
        employee_ids: Iterable[Optional[uuid.UUID]],
    ) -> dict[uuid.UUID, str]:
        """Map each known id to a display name; unknown ids are omitted."""
        ids = {i for i in employee_ids if i is not None}
        if not ids:
            return {}
        result = await db.execute(
            select(Employee.id, Employee.full_name, Employee.email).where(Employee.id.in_(ids))
        )
        return {row.id: row.full_name or row.email for row in result.all()}

    @staticmethod
    async def get_direct_report_ids(
        db: AsyncSession,
        manager_id: uuid.UUID,
    ) -> list[uuid.UUID]:
        result = await db.execute(
            select(Employee.id).where(Employee.manager_id == manager_id)
        )
        return list(result.scalars().all())

    # ── Provisioning ──────────────────────────────────────────────────

    @staticmethod
    async def provision_employee(
        db: AsyncSession,
        actor_id: Optional[uuid.UUID],
        *,
        email: str,
        full_name: str,
        role: UserRole = UserRole.employee,
        manager_id: Optional[uuid.UUID] = None,
    ) -> Employee:
        """Create an identity and seed its benefit allocations for this year."""
        existing = await db.execute(select(Employee.id).where(Employee.email == email))
        if existing.scalar() is not None:
            raise ConflictError("email", email)
        if manager_id is not None:
            await EmployeeService.get_employee(db, manager_id)

        employee = Employee(
            email=email,
            full_name=full_name,
            role=role,
            manager_id=manager_id,
            is_active=True,
        )
        db.add(employee)
        await db.flush()

        await BudgetLedger.seed_defaults_for_employee(db, employee.id)

        await AuditChain.record_event(
            db,
            actor_id=actor_id,
            entity_type=EntityType.employee.value,
            entity_id=employee.id,
            event_type=AuditEventType.admin_create_user.value,
            event_data={"email": email, "role": role.value, "managerId": manager_id},
        )
        return employee

    @staticmethod
    async def update_employee(
        db: AsyncSession,
        actor_id: Optional[uuid.UUID],
        employee_id: uuid.UUID,
        *,
        full_name: Optional[str] = None,
        role: Optional[UserRole] = None,
        manager_id=_UNSET,
        is_active: Optional[bool] = None,
    ) -> Employee:
        """Change name, role, manager or active flag.

        ``manager_id=None`` clears the manager; leaving it out keeps it.
        """
        employee = await EmployeeService.get_employee(db, employee_id)
        changes: dict[str, object] = {}

        if full_name is not None:
            employee.full_name = full_name
            changes["fullName"] = full_name
        if role is not None:
            employee.role = role
            changes["role"] = role.value
        if manager_id is not _UNSET:
            if manager_id == employee.id:
                raise ValidationException(
                    {"manager_id": ["An employee cannot be their own manager."]}
                )
            if manager_id is not None:
                await EmployeeService.get_employee(db, manager_id)
            employee.manager_id = manager_id
            changes["managerId"] = manager_id
        if is_active is not None:
            employee.is_active = is_active
            changes["active"] = is_active

        await db.flush()

        await AuditChain.record_event(
            db,
            actor_id=actor_id,
            entity_type=EntityType.employee.value,
            entity_id=employee.id,
            event_type=AuditEventType.admin_update_user.value,
            event_data=changes,
        )
        return employee

    @staticmethod
    async def deactivate_employee(
        db: AsyncSession,
        actor_id: Optional[uuid.UUID],
        employee_id: uuid.UUID,
    ) -> Employee:
        employee = await EmployeeService.get_employee(db, employee_id)
        employee.is_active = False
        await db.flush()

        await AuditChain.record_event(
            db,
            actor_id=actor_id,
            entity_type=EntityType.employee.value,
            entity_id=employee.id,
            event_type=AuditEventType.admin_deactivate_user.value,
            event_data={"email": employee.email},
        )
        return employee
