"""Budget ledger ORM model: one row per (employee, benefit category, year)."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from decimal import Decimal

import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from expenseflow.categories.models import ExpenseCategory
from expenseflow.database import Base


class BudgetAllocation(Base):
    """Allocated and spent amounts, both in the canonical currency."""

    __tablename__ = "budget_allocations"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4,
    )
    employee_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        sa.ForeignKey("employees.id", ondelete="CASCADE"),
        nullable=False,
    )
    category_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        sa.ForeignKey("expense_categories.id"),
        nullable=False,
    )
    year: Mapped[int] = mapped_column(sa.Integer, nullable=False)
    allocated: Mapped[Decimal] = mapped_column(
        sa.Numeric(12, 2), nullable=False, default=Decimal("0"),
    )
    spent: Mapped[Decimal] = mapped_column(
        sa.Numeric(12, 2), nullable=False, default=Decimal("0"),
    )
    updated_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    # Relationships
    category: Mapped[ExpenseCategory] = relationship(lazy="joined")

    __table_args__ = (
        sa.UniqueConstraint(
            "employee_id", "category_id", "year", name="uq_budget_employee_category_year",
        ),
        sa.CheckConstraint("allocated >= 0", name="ck_budget_allocated_non_negative"),
        sa.CheckConstraint("spent >= 0", name="ck_budget_spent_non_negative"),
    )

    @property
    def remaining(self) -> Decimal:
        return self.allocated - self.spent

    def __repr__(self) -> str:
        return (
            f"<BudgetAllocation {self.employee_id}/{self.category_id}/{self.year} "
            f"{self.spent}/{self.allocated}>"
        )
