from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session
import structlog

from ..config import settings
from ..db import get_db
from ..errors import AuthError, ForbiddenError
from ..models.models import User, utcnow
from ..schemas.auth import LoginRequest, TokenResponse, MeResponse
from .security import verify_password, create_access_token, get_current_user


router = APIRouter(prefix="/auth", tags=["auth"])
logger = structlog.get_logger(__name__)


@router.post("/login", response_model=TokenResponse)
def login(req: LoginRequest, db: Session = Depends(get_db)):
    ident = req.identifier.strip()
    user = db.query(User).filter((User.email == ident.lower()) | (User.phone == ident)).first()
    if not user or not verify_password(req.password, user.password_hash):
        logger.info("login_failed", identifier=ident)
        raise AuthError("Invalid credentials")
    if not user.is_active:
        raise ForbiddenError("Account is not active")
    access = create_access_token(user.id, user.role)
    user.last_login_at = utcnow()
    db.commit()
    logger.info("login_succeeded", user_id=user.id, role=user.role)
    return TokenResponse(access_token=access, expires_in=settings.jwt_ttl_seconds)


@router.get("/me", response_model=MeResponse)
def me(user: User = Depends(get_current_user)):
    return MeResponse(
        id=user.id,
        email=user.email,
        role=user.role,
        status=user.status,
        name=user.display_name,
        phone=user.phone,
    )
