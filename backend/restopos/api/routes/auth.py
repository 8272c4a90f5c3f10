"""Authentication routes."""

import logging

from fastapi import APIRouter, HTTPException, Request, status

from restopos.core.rate_limit import limiter
from restopos.core.rbac import CurrentUser
from restopos.core.security import create_staff_token, verify_pin
from restopos.db.session import DbSession
from restopos.models import Staff
from restopos.schemas.auth import PinLoginRequest, Token

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("/login/pin", response_model=Token)
@limiter.limit("5/minute")
def login_with_pin(request: Request, login_request: PinLoginRequest, db: DbSession):
    """Exchange a staff member's PIN for an access token."""
    client_ip = request.client.host if request.client else "unknown"
    staff = db.get(Staff, login_request.staff_id)

    if not staff or not staff.pin_hash or not verify_pin(login_request.pin, staff.pin_hash):
        logger.warning(f"Failed PIN login for staff {login_request.staff_id} from IP: {client_ip}")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid staff or PIN",
        )
    if not staff.is_active:
        logger.warning(f"PIN login attempt for inactive staff {staff.id} from IP: {client_ip}")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Staff account is inactive",
        )

    access_token = create_staff_token(staff.id, staff.role.value, staff.name)
    logger.info(f"Staff {staff.id} ({staff.role.value}) logged in from IP: {client_ip}")
    return Token(access_token=access_token, staff_id=staff.id, name=staff.name, role=staff.role.value)


@router.get("/me")
def whoami(current_user: CurrentUser):
    return {"id": current_user.id, "name": current_user.name, "role": current_user.role.value}
