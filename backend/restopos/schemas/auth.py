"""Authentication schemas."""

from pydantic import Field

from restopos.schemas.base import CamelModel


class PinLoginRequest(CamelModel):
    """PIN login request body."""

    staff_id: int
    pin: str = Field(..., min_length=4, max_length=8)


class Token(CamelModel):
    """JWT token response."""

    access_token: str
    token_type: str = "bearer"
    staff_id: int
    name: str
    role: str
