"""Append-only, hash-chained audit log."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Optional

import sqlalchemy as sa
from sqlalchemy import event
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column

from expenseflow.database import Base


class AuditLogImmutableError(RuntimeError):
    """Raised when the ORM is asked to modify or delete an audit entry."""


class AuditLogEntry(Base):
    """One link of the tamper-evident chain.

    ``seq`` gives the total order; the unique constraint on ``prev_hash``
    means two writers can never both extend the same tail.
    """

    __tablename__ = "audit_log"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4,
    )
    seq: Mapped[int] = mapped_column(sa.BigInteger, nullable=False, unique=True)
    actor_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True), nullable=True,
    )
    entity_type: Mapped[str] = mapped_column(sa.String(100), nullable=False)
    entity_id: Mapped[str] = mapped_column(sa.String(64), nullable=False)
    event_type: Mapped[str] = mapped_column(sa.String(100), nullable=False)
    event_data_json: Mapped[str] = mapped_column(sa.Text, nullable=False)
    prev_hash: Mapped[str] = mapped_column(sa.String(64), nullable=False, unique=True)
    hash: Mapped[str] = mapped_column(sa.String(64), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )

    __table_args__ = (
        sa.Index("ix_audit_log_entity", "entity_type", "entity_id"),
        sa.Index("ix_audit_log_created_at", "created_at"),
    )

    def __repr__(self) -> str:
        return (
            f"<AuditLogEntry #{self.seq} {self.event_type} {self.entity_type}"
            f"/{self.entity_id} by {self.actor_id}>"
        )


@event.listens_for(AuditLogEntry, "before_update")
def _reject_update(mapper, connection, target: AuditLogEntry) -> None:
    raise AuditLogImmutableError(f"Audit entry {target.id} cannot be modified.")


@event.listens_for(AuditLogEntry, "before_delete")
def _reject_delete(mapper, connection, target: AuditLogEntry) -> None:
    raise AuditLogImmutableError(f"Audit entry {target.id} cannot be deleted.")
