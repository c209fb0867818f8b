"""Audit router — chain verification and entry browsing (system admins)."""

from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from expenseflow.audit.schemas import (
    AuditLogEntryOut,
    AuditLogListResponse,
    ChainVerification,
)
from expenseflow.audit.service import AuditChain
from expenseflow.auth.dependencies import Actor, require_role
from expenseflow.common.constants import UserRole
from expenseflow.common.pagination import PaginationParams, build_meta
from expenseflow.database import get_db

router = APIRouter(prefix="", tags=["audit"])


@router.get("/verify", response_model=ChainVerification)
async def verify_chain(
    strict: bool = Query(False, description="Respond 409 when the chain is broken"),
    actor: Actor = Depends(require_role(UserRole.system_admin)),
    db: AsyncSession = Depends(get_db),
):
    """Recompute the whole hash chain."""
    if strict:
        return await AuditChain.ensure_intact(db)
    return await AuditChain.verify_chain(db)


@router.get("/entries", response_model=AuditLogListResponse)
async def list_entries(
    entity_type: Optional[str] = Query(None),
    entity_id: Optional[str] = Query(None),
    pagination: PaginationParams = Depends(),
    actor: Actor = Depends(require_role(UserRole.system_admin)),
    db: AsyncSession = Depends(get_db),
):
    """Browse audit entries in chain order."""
    entries, total = await AuditChain.list_entries(
        db,
        entity_type=entity_type,
        entity_id=entity_id,
        page=pagination.page,
        page_size=pagination.page_size,
    )
    return AuditLogListResponse(
        data=[AuditLogEntryOut.model_validate(e) for e in entries],
        meta=build_meta(total, pagination.page, pagination.page_size),
    )
