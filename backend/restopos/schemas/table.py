"""Table and table session schemas."""

from datetime import datetime
from typing import List, Optional

from pydantic import Field

from restopos.models import SessionStatus, TableStatus
from restopos.schemas.base import CamelModel


class SessionStartRequest(CamelModel):
    guest_count: int = Field(default=1, ge=1)
    guest_name: Optional[str] = Field(default=None, max_length=100)
    guest_phone: Optional[str] = Field(default=None, max_length=20)
    notes: Optional[str] = None


class TransferRequest(CamelModel):
    new_staff_id: int


class MergeRequest(CamelModel):
    table_ids: List[int] = Field(..., min_length=1)


class TableSessionResponse(CamelModel):
    id: int
    table_id: int
    order_id: Optional[int] = None
    guest_count: int
    guest_name: Optional[str] = None
    guest_phone: Optional[str] = None
    owner_id: int
    notes: Optional[str] = None
    status: SessionStatus
    started_at: datetime
    ended_at: Optional[datetime] = None


class TableResponse(CamelModel):
    id: int
    outlet_id: int
    table_number: str
    capacity: int
    original_capacity: int
    shape: Optional[str] = None
    status: TableStatus
    merged_into_id: Optional[int] = None
    current_order_id: Optional[int] = None


class TableDetailResponse(TableResponse):
    session: Optional[TableSessionResponse] = None
    merged_tables: List[TableResponse] = []


class UnmergeResponse(CamelModel):
    primary_table_id: int
    restored_table_ids: List[int]
