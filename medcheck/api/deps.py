from fastapi import Depends, HTTPException, status
from fastapi.security import OAuth2PasswordBearer
from sqlalchemy import select
from sqlalchemy.orm import Session

from medcheck.core.security import decode_access_token
from medcheck.db.models import StaffUser
from medcheck.db.session import get_db
from medcheck.services.booking_store import BookingStore
from medcheck.services.change_feed import change_feed

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/auth/login")


def get_booking_store(db: Session = Depends(get_db)) -> BookingStore:
    return BookingStore(db=db, feed=change_feed)


def get_current_staff(
    token: str = Depends(oauth2_scheme),
    db: Session = Depends(get_db),
) -> StaffUser:
    unauthorized_exc = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )
    try:
        payload = decode_access_token(token)
        staff_id = int(payload.get("sub", ""))
    except (ValueError, TypeError):
        raise unauthorized_exc

    staff = db.scalar(select(StaffUser).where(StaffUser.id == staff_id))
    if not staff or not staff.is_active:
        raise unauthorized_exc
    return staff
