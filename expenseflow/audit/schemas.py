"""Audit Pydantic v2 schemas."""

import uuid
from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict

from expenseflow.common.pagination import PaginationMeta


class ChainVerification(BaseModel):
    """Outcome of walking the whole chain from the genesis sentinel."""

    valid: bool
    failed_at_entry_id: Optional[uuid.UUID] = None
    count: Optional[int] = None


class AuditLogEntryOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    seq: int
    actor_id: Optional[uuid.UUID] = None
    entity_type: str
    entity_id: str
    event_type: str
    event_data_json: str
    prev_hash: str
    hash: str
    created_at: datetime


class AuditLogListResponse(BaseModel):
    data: List[AuditLogEntryOut]
    meta: PaginationMeta
