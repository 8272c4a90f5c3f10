"""
Table Session Manager.

Owns table occupancy: seating, release, ownership transfer and table merges.
Ownership checks are advisory (a status check at operation time, no row
lock): a transfer racing an order create resolves as last writer wins.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import List, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from restopos.core.errors import Conflict, NotFound, PermissionDenied, ValidationError
from restopos.core.rbac import TokenData
from restopos.core.rbac_policy import Capability, RBACPolicy
from restopos.models import (
    OPEN_SESSION_STATUSES,
    SETTLED_ORDER_STATUSES,
    Order,
    SessionStatus,
    Staff,
    Table,
    TableMerge,
    TableSession,
    TableStatus,
)
from restopos.services.notification_service import NotificationFanout, fanout
from restopos.services.websocket_service import Channel, EventType

logger = logging.getLogger(__name__)


@dataclass
class GuestInfo:
    guest_count: int = 1
    guest_name: Optional[str] = None
    guest_phone: Optional[str] = None
    notes: Optional[str] = None


@dataclass
class UnmergeResult:
    primary_table_id: int
    restored_table_ids: List[int]

    @property
    def changed(self) -> bool:
        return bool(self.restored_table_ids)


def table_payload(table: Table, session: Optional[TableSession] = None) -> dict:
    payload = {
        "table_id": table.id,
        "table_number": table.table_number,
        "status": table.status.value,
        "capacity": table.capacity,
        "merged_into_id": table.merged_into_id,
        "current_order_id": table.current_order_id,
    }
    if session is not None:
        payload["session_id"] = session.id
        payload["session_status"] = session.status.value
        payload["owner_id"] = session.owner_id
    return payload


class TableSessionService:
    """Seating, release and merge operations on tables."""

    def __init__(self, db: Session, notifier: Optional[NotificationFanout] = None):
        self.db = db
        self.notifier = notifier or fanout

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    def get_table(self, table_id: int, lock: bool = False) -> Table:
        query = self.db.query(Table).filter(Table.id == table_id)
        if lock:
            query = query.with_for_update()
        table = query.first()
        if table is None:
            raise NotFound("Table", table_id)
        return table

    def get_open_session(self, table_id: int) -> Optional[TableSession]:
        return (
            self.db.query(TableSession)
            .filter(
                TableSession.table_id == table_id,
                TableSession.status.in_(OPEN_SESSION_STATUSES),
            )
            .first()
        )

    def get_session_if_open(self, session_id: Optional[int]) -> Optional[TableSession]:
        if session_id is None:
            return None
        session = self.db.get(TableSession, session_id)
        return session if session is not None and session.is_open else None

    def get_merge_members(self, primary_id: int) -> List[Table]:
        return (
            self.db.query(Table)
            .join(TableMerge, TableMerge.member_table_id == Table.id)
            .filter(TableMerge.primary_table_id == primary_id, TableMerge.unmerged_at.is_(None))
            .order_by(Table.id)
            .all()
        )

    def governing_table(self, table: Table) -> Table:
        """The table whose session governs ``table``: its merge primary, if merged."""
        if table.status == TableStatus.MERGED and table.merged_into_id:
            return self.get_table(table.merged_into_id)
        return table

    # ------------------------------------------------------------------
    # Ownership
    # ------------------------------------------------------------------

    @staticmethod
    def ensure_owner(session: TableSession, actor: TokenData) -> None:
        """Only the owning staff member, or a role allowed to override, may act on a session."""
        if session.owner_id == actor.id:
            return
        if RBACPolicy.allows(actor.role, Capability.ORDER_OVERRIDE_OWNERSHIP):
            return
        raise PermissionDenied(
            f"Table session {session.id} is owned by staff {session.owner_id}",
            owner_id=session.owner_id,
        )

    def ensure_order_access(self, order: Order, actor: TokenData) -> None:
        """Apply the session ownership rule to an order placed against a table."""
        if order.session_id is None:
            return
        session = self.db.get(TableSession, order.session_id)
        if session is not None and session.is_open:
            self.ensure_owner(session, actor)

    # ------------------------------------------------------------------
    # Session lifecycle
    # ------------------------------------------------------------------

    def start_session(self, table_id: int, actor: TokenData, guest: GuestInfo) -> TableSession:
        if guest.guest_count < 1:
            raise ValidationError("guest_count must be at least 1")

        table = self.get_table(table_id, lock=True)
        if table.status == TableStatus.BLOCKED:
            raise Conflict(f"Table {table.table_number} is blocked")
        if table.status == TableStatus.MERGED:
            raise Conflict(
                f"Table {table.table_number} is merged into table {table.merged_into_id}; "
                "seat the primary table instead"
            )
        if self.get_open_session(table_id) is not None:
            raise Conflict(f"Table {table.table_number} already has an active session")
        if table.status not in (TableStatus.AVAILABLE, TableStatus.RESERVED):
            raise Conflict(f"Table {table.table_number} is {table.status.value}")

        session = TableSession(
            table_id=table.id,
            guest_count=guest.guest_count,
            guest_name=guest.guest_name,
            guest_phone=guest.guest_phone,
            notes=guest.notes,
            owner_id=actor.id,
            status=SessionStatus.ACTIVE,
            started_at=datetime.now(timezone.utc),
        )
        self.db.add(session)
        table.status = TableStatus.OCCUPIED
        try:
            self.db.commit()
        except IntegrityError:
            # Lost the race against a concurrent seating of the same table
            self.db.rollback()
            raise Conflict(f"Table {table_id} already has an active session")

        logger.info(f"Session {session.id} started on table {table.table_number} by staff {actor.id}")
        self._publish_table(table, session)
        return session

    def end_session(
        self,
        table_id: int,
        actor: Optional[TokenData] = None,
        commit: bool = True,
        session_id: Optional[int] = None,
    ) -> TableSession:
        """Complete the open session, auto-unmerge and release the table.

        A session whose order is still unpaid cannot be ended. With
        ``session_id`` the open session must be that one. With ``commit=False``
        the changes join the caller's transaction and nothing is published.
        """
        table = self.get_table(table_id, lock=True)
        session = self.get_open_session(table_id)
        if session is None:
            raise NotFound("Active session for table", table_id)
        if session_id is not None and session.id != session_id:
            raise Conflict(
                f"Session {session_id} is no longer open on table {table.table_number}",
                open_session_id=session.id,
            )
        if session.order_id is not None:
            order = self.db.get(Order, session.order_id)
            if order is not None and order.status not in SETTLED_ORDER_STATUSES:
                raise Conflict(
                    f"Order {order.order_number} on table {table.table_number} is {order.status.value}; "
                    "settle or cancel it before releasing the table",
                    order_id=order.id,
                )

        session.status = SessionStatus.COMPLETED
        session.ended_at = datetime.now(timezone.utc)
        table.current_order_id = None
        self._unmerge(table, actor)
        if table.status != TableStatus.BLOCKED:
            table.status = TableStatus.AVAILABLE

        if commit:
            try:
                self.db.commit()
            except Exception as e:
                self.db.rollback()
                logger.error(f"Failed to end session on table {table_id}: {e}")
                raise
            logger.info(f"Session {session.id} on table {table.table_number} completed")
            self._publish_table(table)
        return session

    def transfer_ownership(self, table_id: int, new_staff_id: int, actor: TokenData) -> TableSession:
        RBACPolicy.ensure(actor, Capability.SESSION_TRANSFER)
        session = self.get_open_session(table_id)
        if session is None:
            raise NotFound("Active session for table", table_id)
        staff = self.db.get(Staff, new_staff_id)
        if staff is None or not staff.is_active:
            raise ValidationError(f"Staff {new_staff_id} does not exist or is inactive")

        previous = session.owner_id
        session.owner_id = new_staff_id
        self.db.commit()
        logger.info(
            f"Session {session.id} on table {table_id} transferred from staff {previous} "
            f"to {new_staff_id} by {actor.id}"
        )
        self._publish_table(self.get_table(table_id), session)
        return session

    # ------------------------------------------------------------------
    # Merge groups
    # ------------------------------------------------------------------

    def merge_tables(self, primary_id: int, member_ids: List[int], actor: TokenData) -> Table:
        member_ids = list(dict.fromkeys(member_ids))
        if not member_ids:
            raise ValidationError("At least one table to merge is required")
        if primary_id in member_ids:
            raise ValidationError("A table cannot be merged into itself")

        primary = self.get_table(primary_id, lock=True)
        if primary.status in (TableStatus.MERGED, TableStatus.BLOCKED):
            raise Conflict(f"Table {primary.table_number} is {primary.status.value} and cannot be a merge primary")

        members = []
        for member_id in member_ids:
            member = self.get_table(member_id, lock=True)
            if member.status != TableStatus.AVAILABLE:
                raise Conflict(
                    f"Table {member.table_number} is {member.status.value}; only available tables can be merged"
                )
            if self.get_merge_members(member.id):
                raise Conflict(
                    f"Table {member.table_number} heads its own merge group; unmerge it first",
                    table_id=member.id,
                )
            members.append(member)

        now = datetime.now(timezone.utc)
        for member in members:
            self.db.add(TableMerge(
                primary_table_id=primary.id,
                member_table_id=member.id,
                member_capacity=member.capacity,
                merged_by=actor.id,
                merged_at=now,
            ))
            primary.capacity += member.capacity
            member.status = TableStatus.MERGED
            member.merged_into_id = primary.id

        try:
            self.db.commit()
        except Exception as e:
            self.db.rollback()
            logger.error(f"Failed to merge tables {member_ids} into {primary_id}: {e}")
            raise

        logger.info(f"Merged tables {member_ids} into {primary.table_number} (capacity {primary.capacity})")
        self._publish_table(primary)
        for member in members:
            self._publish_table(member)
        return primary

    def unmerge_tables(self, table_id: int, actor: Optional[TokenData] = None) -> UnmergeResult:
        """Dissolve the merge group containing ``table_id``. No open group is a no-op."""
        table = self.get_table(table_id, lock=True)
        primary = self.governing_table(table)
        result = self._unmerge(primary, actor)
        if not result.changed:
            return result

        self.db.commit()
        logger.info(f"Unmerged tables {result.restored_table_ids} from {primary.table_number}")
        self._publish_table(primary)
        for member_id in result.restored_table_ids:
            self._publish_table(self.get_table(member_id))
        return result

    def _unmerge(self, primary: Table, actor: Optional[TokenData]) -> UnmergeResult:
        open_merges = (
            self.db.query(TableMerge)
            .filter(TableMerge.primary_table_id == primary.id, TableMerge.unmerged_at.is_(None))
            .all()
        )
        if not open_merges:
            return UnmergeResult(primary_table_id=primary.id, restored_table_ids=[])

        now = datetime.now(timezone.utc)
        restored = []
        for merge in open_merges:
            member = self.get_table(merge.member_table_id, lock=True)
            member.capacity = member.original_capacity
            member.merged_into_id = None
            if member.status == TableStatus.MERGED:
                member.status = TableStatus.AVAILABLE
            merge.unmerged_at = now
            merge.unmerged_by = actor.id if actor else None
            restored.append(member.id)
        primary.capacity = primary.original_capacity
        return UnmergeResult(primary_table_id=primary.id, restored_table_ids=restored)

    # ------------------------------------------------------------------
    # Status changes driven by orders and bills
    # ------------------------------------------------------------------

    def set_table_status(self, order: Order, status: TableStatus,
                         session_status: Optional[SessionStatus] = None) -> None:
        """Move the order's table along occupied, running and billing. Joins the caller's transaction.

        Nothing changes unless the order's own session is still the one open on the table.
        """
        if order.table_id is None or order.session_id is None:
            return
        session = self.get_open_session(order.table_id)
        if session is None or session.id != order.session_id:
            return
        table = self.get_table(order.table_id)
        if table.status in (TableStatus.BLOCKED, TableStatus.MERGED, TableStatus.AVAILABLE):
            return
        table.status = status
        if session_status is not None:
            session.status = session_status

    def release_for_order(self, order: Order, actor: TokenData) -> bool:
        """End the order's own session if it is still open. Joins the caller's transaction."""
        session = self.get_session_if_open(order.session_id)
        if session is None:
            return False
        self.end_session(session.table_id, actor, commit=False, session_id=session.id)
        return True

    def publish_table(self, table_id: Optional[int]) -> None:
        if table_id is None:
            return
        table = self.get_table(table_id)
        self._publish_table(table, self.get_open_session(table_id))

    def _publish_table(self, table: Table, session: Optional[TableSession] = None) -> None:
        self.notifier.publish(
            EventType.TABLE_UPDATED,
            table_payload(table, session),
            channels=(Channel.TABLES, Channel.ORDERS),
        )
