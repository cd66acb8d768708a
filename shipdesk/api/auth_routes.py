"""Auth API: operator login and identity."""

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel

from shipdesk.config import get_settings
from shipdesk.services.auth import (
    authenticate_operator,
    create_access_token,
    get_current_user,
)

router = APIRouter(prefix="/auth", tags=["auth"])
settings = get_settings()


class LoginRequest(BaseModel):
    email: str
    password: str


class TokenResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    expires_in: int


class OperatorInfo(BaseModel):
    email: str
    role: str = "operator"


@router.post("/login", response_model=TokenResponse)
async def login(data: LoginRequest):
    if not authenticate_operator(data.email, data.password):
        raise HTTPException(401, "Invalid credentials")

    token = create_access_token({"sub": data.email, "role": "operator"})
    return TokenResponse(
        access_token=token,
        expires_in=settings.jwt_expire_minutes * 60,
    )


@router.get("/me", response_model=OperatorInfo)
async def get_me(user: dict = Depends(get_current_user)):
    return OperatorInfo(
        email=user.get("sub", ""),
        role=user.get("role", "operator"),
    )
