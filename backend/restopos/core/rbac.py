"""Caller identity resolved from the bearer token."""

from enum import Enum
from typing import Annotated

from fastapi import Depends, HTTPException, Request, status

from restopos.core.security import decode_access_token


class StaffRole(str, Enum):
    """Staff roles carried in access tokens."""

    ADMIN = "admin"
    MANAGER = "manager"
    CASHIER = "cashier"
    CAPTAIN = "captain"
    KITCHEN = "kitchen"
    BAR = "bar"
    PRINT_AGENT = "print_agent"


class TokenData:
    """Decoded token data.

    Attributes:
        user_id: The staff member's database ID.
        id: Alias for user_id.
        role: The staff member's role.
        name: Display name used in tickets and audit rows.
    """

    def __init__(self, user_id: int, role: StaffRole, name: str = ""):
        self.user_id = user_id
        self.id = user_id
        self.role = StaffRole(role)
        self.name = name or f"staff-{user_id}"

    def __repr__(self) -> str:
        return f"TokenData(user_id={self.user_id}, role={self.role.value})"


async def get_current_user(request: Request) -> TokenData:
    """Get the current authenticated staff member from the JWT token.

    Checks the ``Authorization: Bearer`` header first, then the
    ``access_token`` cookie.
    """
    payload = None

    auth_header = request.headers.get("Authorization", "")
    if auth_header.startswith("Bearer "):
        token = auth_header.split(" ", 1)[1]
        if token:
            payload = decode_access_token(token)

    if payload is None:
        cookie_token = request.cookies.get("access_token")
        if cookie_token:
            payload = decode_access_token(cookie_token)

    if payload is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )

    user_id = payload.get("sub")
    role = payload.get("role")
    if user_id is None or role is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token payload",
        )

    try:
        staff_role = StaffRole(role)
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid role in token",
        )

    return TokenData(user_id=int(user_id), role=staff_role, name=payload.get("name", ""))


CurrentUser = Annotated[TokenData, Depends(get_current_user)]
