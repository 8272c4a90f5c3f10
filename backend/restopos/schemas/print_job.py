"""Print agent queue schemas."""

from datetime import datetime
from typing import List, Optional

from pydantic import Field

from restopos.models import PrintJobStatus, PrintJobType
from restopos.schemas.base import CamelModel


class ClaimRequest(CamelModel):
    agent_id: str = Field(..., min_length=1, max_length=100)
    stations: List[str] = []


class FailureReport(CamelModel):
    error: str = Field(..., min_length=1)


class PrintJobResponse(CamelModel):
    id: int
    job_type: PrintJobType
    station: str
    outlet_id: int
    kot_id: Optional[int] = None
    order_id: Optional[int] = None
    invoice_id: Optional[int] = None
    reference_number: str
    content: str
    priority: int
    status: PrintJobStatus
    attempts: int
    max_attempts: int
    last_error: Optional[str] = None
    claimed_by: Optional[str] = None
    claimed_at: Optional[datetime] = None
    printed_at: Optional[datetime] = None


class ClaimResponse(CamelModel):
    job: Optional[PrintJobResponse] = None
