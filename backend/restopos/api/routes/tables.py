"""Table session, transfer and merge routes."""

from fastapi import APIRouter, Depends

from restopos.core.rbac import TokenData
from restopos.core.rbac_policy import Capability, require_capability
from restopos.db.session import DbSession
from restopos.schemas.table import (
    MergeRequest,
    SessionStartRequest,
    TableDetailResponse,
    TableResponse,
    TableSessionResponse,
    TransferRequest,
    UnmergeResponse,
)
from restopos.services.table_session_service import GuestInfo, TableSessionService

router = APIRouter()


@router.get("/{table_id}", response_model=TableDetailResponse)
def get_table(
    table_id: int,
    db: DbSession,
    current_user: TokenData = Depends(require_capability(Capability.TABLE_VIEW)),
):
    service = TableSessionService(db)
    table = service.get_table(table_id)
    detail = TableDetailResponse.model_validate(table)
    session = service.get_open_session(table.id)
    detail.session = TableSessionResponse.model_validate(session) if session else None
    detail.merged_tables = [TableResponse.model_validate(t) for t in service.get_merge_members(table.id)]
    return detail


@router.post("/{table_id}/session", response_model=TableSessionResponse, status_code=201)
def start_session(
    table_id: int,
    body: SessionStartRequest,
    db: DbSession,
    current_user: TokenData = Depends(require_capability(Capability.SESSION_MANAGE)),
):
    guest = GuestInfo(
        guest_count=body.guest_count,
        guest_name=body.guest_name,
        guest_phone=body.guest_phone,
        notes=body.notes,
    )
    return TableSessionService(db).start_session(table_id, current_user, guest)


@router.delete("/{table_id}/session", response_model=TableSessionResponse)
def end_session(
    table_id: int,
    db: DbSession,
    current_user: TokenData = Depends(require_capability(Capability.SESSION_MANAGE)),
):
    service = TableSessionService(db)
    session = service.get_open_session(table_id)
    if session is not None:
        service.ensure_owner(session, current_user)
    return service.end_session(table_id, current_user)


@router.post("/{table_id}/session/transfer", response_model=TableSessionResponse)
def transfer_session(
    table_id: int,
    body: TransferRequest,
    db: DbSession,
    current_user: TokenData = Depends(require_capability(Capability.SESSION_TRANSFER)),
):
    return TableSessionService(db).transfer_ownership(table_id, body.new_staff_id, current_user)


@router.post("/{table_id}/merge", response_model=TableResponse)
def merge_tables(
    table_id: int,
    body: MergeRequest,
    db: DbSession,
    current_user: TokenData = Depends(require_capability(Capability.TABLE_MERGE)),
):
    return TableSessionService(db).merge_tables(table_id, body.table_ids, current_user)


@router.delete("/{table_id}/merge", response_model=UnmergeResponse)
def unmerge_tables(
    table_id: int,
    db: DbSession,
    current_user: TokenData = Depends(require_capability(Capability.TABLE_MERGE)),
):
    result = TableSessionService(db).unmerge_tables(table_id, current_user)
    return UnmergeResponse(
        primary_table_id=result.primary_table_id,
        restored_table_ids=result.restored_table_ids,
    )
