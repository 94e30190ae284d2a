import uuid
import secrets
from datetime import datetime, timedelta, timezone
from typing import Optional

import jwt
from fastapi import Depends, Request
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from passlib.context import CryptContext
from sqlalchemy.orm import Session

from ..config import settings
from ..db import get_db
from ..errors import AuthError, ForbiddenError
from ..models.models import User
from ..services.booking_lifecycle import can_perform


pwd_context = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")
http_bearer = HTTPBearer(auto_error=False)

ADMIN_TOKEN_HEADER = "x-admin-token"
STAFF_TOKEN_HEADER = "x-staff-token"


def get_password_hash(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(plain: str, hashed: str) -> bool:
    try:
        return pwd_context.verify(plain, hashed)
    except (ValueError, TypeError):
        # Unknown or malformed hash
        return False


def _create_token(sub: str, ttl_seconds: int, extra: Optional[dict] = None) -> str:
    now = datetime.now(tz=timezone.utc)
    payload = {
        "sub": sub,
        "iat": int(now.timestamp()),
        "exp": int((now + timedelta(seconds=ttl_seconds)).timestamp()),
        "jti": str(uuid.uuid4()),
    }
    if extra:
        payload.update(extra)
    return jwt.encode(payload, settings.jwt_secret, algorithm=settings.jwt_algorithm)


def create_access_token(user_id: int, role: str) -> str:
    return _create_token(str(user_id), settings.jwt_ttl_seconds, extra={"role": role})


def decode_token(token: str) -> dict:
    try:
        return jwt.decode(token, settings.jwt_secret, algorithms=[settings.jwt_algorithm])
    except jwt.ExpiredSignatureError:
        raise AuthError("Token expired")
    except jwt.InvalidTokenError:
        raise AuthError("Invalid token")


def get_current_user(
    creds: Optional[HTTPAuthorizationCredentials] = Depends(http_bearer),
    db: Session = Depends(get_db),
) -> User:
    if creds is None:
        raise AuthError("Not authenticated")
    payload = decode_token(creds.credentials)
    try:
        user_id = int(payload.get("sub"))
    except (TypeError, ValueError):
        raise AuthError("Invalid subject")
    user = db.query(User).filter(User.id == user_id).first()
    if user is None:
        raise AuthError("User not found")
    if not user.is_active:
        raise ForbiddenError("Account is not active")
    return user


def require_roles(*allowed_roles: str):
    """Bearer user whose role is one of ``allowed_roles``."""
    def _dep(user: User = Depends(get_current_user)):
        if user.role not in allowed_roles:
            raise ForbiddenError("Forbidden")
        return user

    return _dep


def _matches(provided: Optional[str], expected: Optional[str]) -> bool:
    if not provided or not expected:
        return False
    return secrets.compare_digest(provided.encode(), expected.encode())


def resolve_header_role(request: Request) -> Optional[str]:
    """
    Role granted by the shared-secret headers, or None.

    The admin secret is honoured in either header; the staff secret only
    in ``x-staff-token``.
    """
    admin_header = request.headers.get(ADMIN_TOKEN_HEADER)
    staff_header = request.headers.get(STAFF_TOKEN_HEADER)
    if _matches(admin_header, settings.admin_token) or _matches(staff_header, settings.admin_token):
        return "admin"
    if _matches(staff_header, settings.staff_token):
        return "staff"
    return None


def require_header_action(action: str):
    """Header secret whose role may perform ``action`` (see ACTION_ROLES)."""
    def _dep(request: Request) -> str:
        role = resolve_header_role(request)
        if not can_perform(role, action):
            raise AuthError("Admin only")
        return role

    return _dep


def require_user_action(action: str):
    """Bearer user whose role may perform ``action`` (see ACTION_ROLES)."""
    def _dep(user: User = Depends(get_current_user)) -> User:
        if not can_perform(user.role, action):
            raise ForbiddenError(f"Not allowed to {action} bookings")
        return user

    return _dep


def is_admin_request(request: Request, user: Optional[User] = None) -> bool:
    """Admin either by bearer role or by the admin header secret."""
    if user is not None and user.role == "admin":
        return True
    return resolve_header_role(request) == "admin"
