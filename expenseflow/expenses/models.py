"""Expenses ORM models: ExpenseRequest, ExpenseLineItem, ApprovalAction.

SQLAlchemy 2.0 async-compatible models.
"""

from __future__ import annotations

import uuid
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Optional

import sqlalchemy as sa
from sqlalchemy import event
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column

from expenseflow.common.constants import (
    ApprovalActionType,
    ExpenseType,
    RequestStatus,
)
from expenseflow.database import Base


class ExpenseRequest(Base):
    """Employee reimbursement / benefit claim."""

    __tablename__ = "expense_requests"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4,
    )
    request_number: Mapped[str] = mapped_column(sa.String(50), unique=True, nullable=False)
    employee_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        sa.ForeignKey("employees.id"),
        nullable=False,
    )
    category_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        sa.ForeignKey("expense_categories.id"),
        nullable=False,
    )
    # Copied from the category at creation; never changes afterwards
    expense_type: Mapped[ExpenseType] = mapped_column(
        sa.Enum(ExpenseType, name="expense_type", native_enum=False, length=20),
        nullable=False,
    )
    reason: Mapped[Optional[str]] = mapped_column(sa.Text)
    currency: Mapped[str] = mapped_column(sa.String(10), nullable=False)
    total_amount: Mapped[Decimal] = mapped_column(
        sa.Numeric(12, 2), nullable=False, default=Decimal("0"),
    )
    invoice_number: Mapped[Optional[str]] = mapped_column(sa.String(100))
    invoice_date: Mapped[Optional[date]] = mapped_column(sa.Date)
    supplier: Mapped[Optional[str]] = mapped_column(sa.String(200))
    status: Mapped[RequestStatus] = mapped_column(
        sa.Enum(RequestStatus, name="request_status", native_enum=False, length=30),
        nullable=False,
        default=RequestStatus.draft,
    )
    submitted_at: Mapped[Optional[datetime]] = mapped_column(sa.DateTime(timezone=True))
    spend_recorded_at: Mapped[Optional[datetime]] = mapped_column(sa.DateTime(timezone=True))
    deleted_at: Mapped[Optional[datetime]] = mapped_column(sa.DateTime(timezone=True))
    version: Mapped[int] = mapped_column(sa.Integer, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc),
    )
    updated_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    __mapper_args__ = {"version_id_col": version}

    __table_args__ = (
        sa.Index("ix_expense_requests_employee_id", "employee_id"),
        sa.Index("ix_expense_requests_status", "status"),
        sa.CheckConstraint("total_amount >= 0", name="ck_expense_requests_amount_non_negative"),
    )

    @property
    def is_benefit(self) -> bool:
        return self.expense_type == ExpenseType.benefit

    def __repr__(self) -> str:
        return f"<ExpenseRequest #{self.request_number} {self.status.value} {self.total_amount} {self.currency}>"


class ExpenseLineItem(Base):
    """One dated expense line on a request; editable while the request is."""

    __tablename__ = "expense_line_items"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4,
    )
    request_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        sa.ForeignKey("expense_requests.id"),
        nullable=False,
    )
    item_date: Mapped[date] = mapped_column(sa.Date, nullable=False)
    description: Mapped[str] = mapped_column(sa.String(500), nullable=False)
    amount: Mapped[Decimal] = mapped_column(sa.Numeric(12, 2), nullable=False)
    currency: Mapped[str] = mapped_column(sa.String(10), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc),
    )
    updated_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    __table_args__ = (
        sa.Index("ix_expense_line_items_request_id", "request_id"),
        sa.CheckConstraint("amount >= 0", name="ck_expense_line_items_amount_non_negative"),
    )

    def __repr__(self) -> str:
        return f"<ExpenseLineItem {self.item_date} {self.amount} {self.currency}>"


class ApprovalAction(Base):
    """Immutable record of one workflow state change."""

    __tablename__ = "approval_actions"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4,
    )
    request_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        sa.ForeignKey("expense_requests.id"),
        nullable=False,
    )
    # 1-based order of the action within its request
    position: Mapped[int] = mapped_column(sa.Integer, nullable=False)
    actor_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True), sa.ForeignKey("employees.id"), nullable=True,
    )
    action_type: Mapped[ApprovalActionType] = mapped_column(
        sa.Enum(ApprovalActionType, name="approval_action_type", native_enum=False, length=30),
        nullable=False,
    )
    from_status: Mapped[RequestStatus] = mapped_column(
        sa.Enum(RequestStatus, name="request_status", native_enum=False, length=30),
        nullable=False,
    )
    to_status: Mapped[RequestStatus] = mapped_column(
        sa.Enum(RequestStatus, name="request_status", native_enum=False, length=30),
        nullable=False,
    )
    comment: Mapped[Optional[str]] = mapped_column(sa.Text)
    audit_entry_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True), sa.ForeignKey("audit_log.id"), nullable=True,
    )
    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc),
    )

    __table_args__ = (
        sa.UniqueConstraint("request_id", "position", name="uq_approval_actions_request_position"),
    )

    def __repr__(self) -> str:
        return (
            f"<ApprovalAction {self.action_type.value} "
            f"{self.from_status.value}→{self.to_status.value}>"
        )


@event.listens_for(ApprovalAction, "before_update")
def _reject_action_update(mapper, connection, target: ApprovalAction) -> None:
    raise RuntimeError(f"Approval action {target.id} is immutable.")
