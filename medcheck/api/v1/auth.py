from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from medcheck.db.session import get_db
from medcheck.schemas.auth import LoginRequest, TokenResponse
from medcheck.services.auth_service import login_staff

router = APIRouter(prefix="/auth", tags=["auth"])


@router.post("/login", response_model=TokenResponse, status_code=status.HTTP_200_OK)
def login(payload: LoginRequest, db: Session = Depends(get_db)) -> TokenResponse:
    return login_staff(payload=payload, db=db)
