import logging

from fastapi import HTTPException, status
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from medcheck.core.security import create_access_token, get_password_hash, verify_password
from medcheck.db.models import StaffUser
from medcheck.schemas.auth import LoginRequest, TokenResponse

logger = logging.getLogger("medcheck.auth")


def ensure_staff_user(db: Session, email: str, password: str) -> StaffUser:
    """Create the staff account, or reset its password and reactivate it."""
    email = email.lower()
    staff = db.scalar(select(StaffUser).where(StaffUser.email == email))
    if staff is None:
        staff = StaffUser(email=email, hashed_password=get_password_hash(password), is_active=True)
        db.add(staff)
    else:
        staff.hashed_password = get_password_hash(password)
        staff.is_active = True

    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        staff = db.scalar(select(StaffUser).where(StaffUser.email == email))
        if staff is None:
            raise
    db.refresh(staff)
    return staff


def login_staff(payload: LoginRequest, db: Session) -> TokenResponse:
    email = payload.email.lower()
    staff = db.scalar(select(StaffUser).where(StaffUser.email == email))
    if not staff or not staff.is_active or not verify_password(payload.password, staff.hashed_password):
        logger.warning("staff_login_rejected email=%s", email)
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid credentials",
        )

    logger.info("staff_login id=%s", staff.id)
    token = create_access_token(subject=str(staff.id), extra_claims={"email": staff.email})
    return TokenResponse(access_token=token)
