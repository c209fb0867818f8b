"""Audit chain service — serialized appends and full-chain verification."""

from __future__ import annotations

import json
import logging
import uuid
from datetime import datetime, timedelta, timezone
from typing import Any, Optional, Sequence

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from expenseflow.audit.hashing import canonical_json, compute_entry_hash
from expenseflow.audit.models import AuditLogEntry
from expenseflow.audit.schemas import ChainVerification
from expenseflow.common.exceptions import AuditIntegrityViolationException
from expenseflow.common.pagination import fetch_page
from expenseflow.config import settings
from expenseflow.database import advisory_xact_lock

logger = logging.getLogger(__name__)

EVENT_TYPE_KEY = "eventType"


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _payload_event_type(entry: AuditLogEntry) -> Optional[str]:
    try:
        payload = json.loads(entry.event_data_json)
    except ValueError:
        return None
    return payload.get(EVENT_TYPE_KEY) if isinstance(payload, dict) else None


class AuditChain:
    """Single logical append-only log shared by every entity type.

    Does not commit: the entry lands in the caller's transaction, so a
    transition and its audit entries persist or vanish together.
    """

    # ── Append ────────────────────────────────────────────────────────

    @staticmethod
    async def _lock_chain(db: AsyncSession) -> None:
        """Serialize "read tail, hash, insert" across all writers.

        PostgreSQL holds a transaction-scoped advisory lock until commit or
        rollback. SQLite serializes writers itself; on every backend the
        unique ``seq``/``prev_hash`` constraints reject a forked tail.
        """
        await advisory_xact_lock(db, settings.AUDIT_CHAIN_LOCK_KEY)

    @staticmethod
    async def _get_tail(db: AsyncSession) -> Optional[AuditLogEntry]:
        result = await db.execute(
            select(AuditLogEntry).order_by(AuditLogEntry.seq.desc()).limit(1)
        )
        return result.scalars().first()

    @staticmethod
    async def record_event(
        db: AsyncSession,
        *,
        actor_id: Optional[uuid.UUID],
        entity_type: str,
        entity_id: Any,
        event_type: str,
        event_data: Optional[dict[str, Any]] = None,
    ) -> AuditLogEntry:
        """
        Append one entry to the chain and flush it.

        Args:
            db: Async SQLAlchemy session (caller owns the transaction).
            actor_id: Who performed the action; ``None`` for system actions.
            entity_type: e.g. "ExpenseRequest".
            entity_id: Identifier of the affected entity.
            event_type: e.g. "SUBMIT", "APPROVE".
            event_data: Arbitrary JSON-able payload, canonicalised before hashing.
        """
        await AuditChain._lock_chain(db)

        tail = await AuditChain._get_tail(db)
        prev_hash = tail.hash if tail else settings.AUDIT_GENESIS_HASH
        seq = tail.seq + 1 if tail else 1

        # Creation time must stay strictly increasing along the chain
        created_at = datetime.now(timezone.utc)
        if tail is not None:
            tail_at = _as_utc(tail.created_at)
            if created_at <= tail_at:
                created_at = tail_at + timedelta(microseconds=1)

        # The event type rides inside the hashed payload
        event_data_json = canonical_json({**(event_data or {}), EVENT_TYPE_KEY: event_type})
        entity_id_str = str(entity_id)
        entry = AuditLogEntry(
            seq=seq,
            actor_id=actor_id,
            entity_type=entity_type,
            entity_id=entity_id_str,
            event_type=event_type,
            event_data_json=event_data_json,
            prev_hash=prev_hash,
            hash=compute_entry_hash(
                prev_hash,
                event_data_json,
                actor_id,
                entity_type,
                entity_id_str,
                created_at,
            ),
            created_at=created_at,
        )
        db.add(entry)
        await db.flush()

        logger.info(
            "audit entry #%d %s %s/%s appended",
            seq, event_type, entity_type, entity_id_str,
        )
        return entry

    # ── Verify ────────────────────────────────────────────────────────

    @staticmethod
    async def verify_chain(db: AsyncSession) -> ChainVerification:
        """Recompute every hash from the genesis sentinel. Read-only.

        Returns the id of the first entry whose stored hash, back-link or
        ``event_type`` column disagrees with the recomputation, or the entry
        count when intact.
        """
        result = await db.execute(
            select(AuditLogEntry)
            .order_by(AuditLogEntry.seq)
            .execution_options(populate_existing=True)
        )
        entries: Sequence[AuditLogEntry] = result.scalars().all()

        prev_hash = settings.AUDIT_GENESIS_HASH
        for entry in entries:
            expected = compute_entry_hash(
                prev_hash,
                entry.event_data_json,
                entry.actor_id,
                entry.entity_type,
                entry.entity_id,
                entry.created_at,
            )
            if (
                entry.prev_hash != prev_hash
                or entry.hash != expected
                or _payload_event_type(entry) != entry.event_type
            ):
                logger.warning(
                    "audit chain broken at entry %s (seq %d)", entry.id, entry.seq,
                )
                return ChainVerification(valid=False, failed_at_entry_id=entry.id)
            prev_hash = entry.hash

        logger.info("audit chain verified (%d entries)", len(entries))
        return ChainVerification(valid=True, count=len(entries))

    @staticmethod
    async def ensure_intact(db: AsyncSession) -> ChainVerification:
        """Like ``verify_chain`` but raises ``AuditIntegrityViolationException``."""
        outcome = await AuditChain.verify_chain(db)
        if not outcome.valid:
            raise AuditIntegrityViolationException(outcome.failed_at_entry_id)
        return outcome

    # ── Read ──────────────────────────────────────────────────────────

    @staticmethod
    async def list_entries(
        db: AsyncSession,
        *,
        entity_type: Optional[str] = None,
        entity_id: Optional[str] = None,
        page: int = 1,
        page_size: int = 50,
    ) -> tuple[Sequence[AuditLogEntry], int]:
        """Entries in chain order, optionally narrowed to one entity."""
        query = select(AuditLogEntry)
        if entity_type:
            query = query.where(AuditLogEntry.entity_type == entity_type)
        if entity_id:
            query = query.where(AuditLogEntry.entity_id == entity_id)
        query = query.order_by(AuditLogEntry.seq)
        return await fetch_page(db, query, page, page_size)
