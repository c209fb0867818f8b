"""Expense category catalog ORM model."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from decimal import Decimal

import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column

from expenseflow.common.constants import ExpenseType
from expenseflow.database import Base


class ExpenseCategory(Base):
    """A reimbursable category; BENEFIT categories carry an annual budget."""

    __tablename__ = "expense_categories"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4,
    )
    name: Mapped[str] = mapped_column(sa.String(100), unique=True, nullable=False)
    expense_type: Mapped[ExpenseType] = mapped_column(
        sa.Enum(ExpenseType, name="expense_type", native_enum=False, length=20),
        nullable=False,
    )
    # Per-employee annual allocation in the canonical currency
    default_allocation: Mapped[Decimal] = mapped_column(
        sa.Numeric(12, 2), nullable=False, default=Decimal("0"),
    )
    requires_receipt: Mapped[bool] = mapped_column(sa.Boolean, nullable=False, default=False)
    active: Mapped[bool] = mapped_column(sa.Boolean, nullable=False, default=True)
    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc),
    )

    @property
    def is_benefit(self) -> bool:
        return self.expense_type == ExpenseType.benefit

    def __repr__(self) -> str:
        return f"<ExpenseCategory {self.name!r} ({self.expense_type.value})>"
