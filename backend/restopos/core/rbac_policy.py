"""
Capability-based authorization.

Every operation declares the capability it needs; ``RBACPolicy`` is the only
place that maps roles to capabilities and decides allow or deny.

Roles:
- admin: everything
- manager: floor operations plus overrides, approvals and bill cancellation
- cashier: billing, payments, ownership override for settling tables
- captain: seating, order capture, ticket dispatch, bill generation
- kitchen / bar: ticket progress at their display
- print_agent: drains the print job queue
"""

import logging
from enum import Enum
from typing import Dict, FrozenSet, Union

from fastapi import Depends

from restopos.core.errors import PermissionDenied
from restopos.core.rbac import StaffRole, TokenData, get_current_user

logger = logging.getLogger(__name__)


class Capability(str, Enum):
    """Capabilities checked by API operations."""

    # Tables
    TABLE_VIEW = "table:view"
    SESSION_MANAGE = "session:manage"
    SESSION_TRANSFER = "session:transfer"
    TABLE_MERGE = "table:merge"

    # Orders
    ORDER_VIEW = "order:view"
    ORDER_CREATE = "order:create"
    ORDER_MODIFY = "order:modify"
    ORDER_CANCEL = "order:cancel"
    ORDER_OVERRIDE_OWNERSHIP = "order:override_ownership"
    ORDER_APPROVE_CANCEL = "order:approve_cancel"

    # Kitchen / bar tickets
    KOT_VIEW = "kot:view"
    KOT_SEND = "kot:send"
    KOT_UPDATE = "kot:update"
    KOT_REPRINT = "kot:reprint"

    # Billing
    BILL_GENERATE = "bill:generate"
    BILL_CANCEL = "bill:cancel"
    BILL_REPRINT = "bill:reprint"
    PAYMENT_PROCESS = "payment:process"

    # Printer agent
    PRINT_QUEUE = "print:queue"


_FLOOR = frozenset({
    Capability.TABLE_VIEW,
    Capability.SESSION_MANAGE,
    Capability.TABLE_MERGE,
    Capability.ORDER_VIEW,
    Capability.ORDER_CREATE,
    Capability.ORDER_MODIFY,
    Capability.ORDER_CANCEL,
    Capability.KOT_VIEW,
    Capability.KOT_SEND,
    Capability.KOT_REPRINT,
    Capability.BILL_GENERATE,
    Capability.BILL_REPRINT,
})

_STATION = frozenset({
    Capability.KOT_VIEW,
    Capability.KOT_UPDATE,
    Capability.KOT_REPRINT,
})

ROLE_CAPABILITIES: Dict[StaffRole, FrozenSet[Capability]] = {
    StaffRole.ADMIN: frozenset(Capability),
    StaffRole.MANAGER: _FLOOR | _STATION | {
        Capability.SESSION_TRANSFER,
        Capability.ORDER_OVERRIDE_OWNERSHIP,
        Capability.ORDER_APPROVE_CANCEL,
        Capability.BILL_CANCEL,
        Capability.PAYMENT_PROCESS,
    },
    StaffRole.CASHIER: _FLOOR | {
        Capability.ORDER_OVERRIDE_OWNERSHIP,
        Capability.PAYMENT_PROCESS,
    },
    StaffRole.CAPTAIN: _FLOOR | {Capability.KOT_UPDATE},
    StaffRole.KITCHEN: _STATION,
    StaffRole.BAR: _STATION,
    StaffRole.PRINT_AGENT: frozenset({Capability.PRINT_QUEUE}),
}


class RBACPolicy:
    """Single evaluator for role to capability decisions."""

    @staticmethod
    def capabilities_for(role: Union[StaffRole, str]) -> FrozenSet[Capability]:
        try:
            return ROLE_CAPABILITIES.get(StaffRole(role), frozenset())
        except ValueError:
            return frozenset()

    @staticmethod
    def allows(role: Union[StaffRole, str], capability: Capability) -> bool:
        return capability in RBACPolicy.capabilities_for(role)

    @staticmethod
    def ensure(actor: TokenData, capability: Capability) -> None:
        """Raise ``PermissionDenied`` unless the actor holds ``capability``."""
        if not RBACPolicy.allows(actor.role, capability):
            logger.info(f"Denied {capability.value} for user {actor.id} ({actor.role.value})")
            raise PermissionDenied(
                f"Role '{actor.role.value}' lacks capability '{capability.value}'"
            )


def require_capability(capability: Capability):
    """Dependency that resolves the caller and checks one capability.

    Usage:
        @router.post("/orders")
        def create_order(current_user: TokenData = Depends(require_capability(Capability.ORDER_CREATE))):
            ...
    """

    async def capability_checker(
        current_user: TokenData = Depends(get_current_user),
    ) -> TokenData:
        RBACPolicy.ensure(current_user, capability)
        return current_user

    return capability_checker
