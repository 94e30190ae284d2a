from pydantic import BaseModel
from typing import Optional


class LoginRequest(BaseModel):
    identifier: str  # email or phone
    password: str


class TokenResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    expires_in: int


class MeResponse(BaseModel):
    id: int
    email: str
    role: str
    status: str
    name: str
    phone: Optional[str] = None
