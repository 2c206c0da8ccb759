"""
Authentication and account routes.

Endpoints:
    POST /auth/register  — Register a donor or recipient
    POST /auth/login     — Authenticate by email and password
    GET  /auth/me        — Current user's full profile
    PUT  /auth/profile   — Edit profile fields
    PUT  /auth/password  — Change password
"""

from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Request, status
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from bloodfinder.db.postgres import get_db
from bloodfinder.models.user import User, UserRole, BloodGroup, ApprovalStatus, DonationTimePreference
from bloodfinder.api.middleware.auth import (
    TokenResponse, get_current_user, hash_password, verify_password, create_token_for,
)
from bloodfinder.api.middleware.audit import log_audit
from bloodfinder.services import user_service

router = APIRouter()

EMAIL_PATTERN = r"^[^@\s]+@[^@\s]+\.[^@\s]+$"
PHONE_PATTERN = r"^\d{10}$"
PINCODE_PATTERN = r"^\d{6}$"


# ---------------------------------------------------------------------------
# Pydantic schemas
# ---------------------------------------------------------------------------

class RegisterRequest(BaseModel):
    name: str = Field(..., min_length=2, max_length=50)
    email: str = Field(..., pattern=EMAIL_PATTERN)
    phone: str = Field(..., pattern=PHONE_PATTERN)
    password: str = Field(..., min_length=6)
    role: UserRole = UserRole.DONOR
    city: str = Field(..., min_length=1, max_length=100)
    area: str = Field(..., min_length=1, max_length=100)
    pincode: Optional[str] = Field(default=None, pattern=PINCODE_PATTERN)
    latitude: Optional[float] = Field(default=None, ge=-90, le=90)
    longitude: Optional[float] = Field(default=None, ge=-180, le=180)
    blood_group: Optional[BloodGroup] = None
    date_of_birth: Optional[date] = None
    weight_kg: Optional[float] = Field(default=None, gt=0, le=300)
    medical_conditions: list[str] = Field(default_factory=list)
    medications: list[str] = Field(default_factory=list)


class LoginRequest(BaseModel):
    email: str
    password: str


class ProfileUpdateRequest(BaseModel):
    name: Optional[str] = Field(default=None, min_length=2, max_length=50)
    phone: Optional[str] = Field(default=None, pattern=PHONE_PATTERN)
    city: Optional[str] = Field(default=None, min_length=1, max_length=100)
    area: Optional[str] = Field(default=None, min_length=1, max_length=100)
    pincode: Optional[str] = Field(default=None, pattern=PINCODE_PATTERN)
    latitude: Optional[float] = Field(default=None, ge=-90, le=90)
    longitude: Optional[float] = Field(default=None, ge=-180, le=180)
    blood_group: Optional[BloodGroup] = None
    date_of_birth: Optional[date] = None
    preferred_donation_time: Optional[DonationTimePreference] = None


class PasswordChangeRequest(BaseModel):
    current_password: str
    new_password: str = Field(..., min_length=6)


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------

@router.post("/auth/register", response_model=TokenResponse, status_code=status.HTTP_201_CREATED)
async def register(
    payload: RegisterRequest,
    request: Request,
    db: AsyncSession = Depends(get_db),
):
    """Register a donor (pending approval) or a recipient (approved immediately)."""
    data = payload.model_dump(exclude={"password"})
    user = await user_service.register_user(db, data=data, hashed_password=hash_password(payload.password))

    await log_audit(
        action="register",
        resource="user",
        resource_id=user.id,
        user=user,
        details={"role": user.role.value},
        request=request,
        db=db,
    )
    return create_token_for(user)


@router.post("/auth/login", response_model=TokenResponse)
async def login(
    payload: LoginRequest,
    db: AsyncSession = Depends(get_db),
):
    user = await user_service.get_by_email(db, payload.email)
    if user is None or not verify_password(payload.password, user.hashed_password):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid email or password",
        )
    if user.status in (ApprovalStatus.SUSPENDED, ApprovalStatus.REJECTED):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail=f"Account is {user.status.value}",
        )
    await user_service.touch_last_active(db, user)
    return create_token_for(user)


@router.get("/auth/me")
async def me(current_user: User = Depends(get_current_user)):
    return user_service.user_to_dict(current_user, include_private=True)


@router.put("/auth/profile")
async def update_profile(
    payload: ProfileUpdateRequest,
    request: Request,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    changes = payload.model_dump(exclude_unset=True)
    result = await user_service.update_profile(db, current_user, changes)
    await log_audit(
        action="update",
        resource="user",
        resource_id=current_user.id,
        user=current_user,
        details={"fields": sorted(changes)},
        request=request,
        db=db,
    )
    return result


@router.put("/auth/password", status_code=status.HTTP_204_NO_CONTENT)
async def change_password(
    payload: PasswordChangeRequest,
    request: Request,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    if not verify_password(payload.current_password, current_user.hashed_password):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Current password is incorrect")
    await user_service.change_password(db, current_user, hash_password(payload.new_password))
    await log_audit(
        action="password_change",
        resource="user",
        resource_id=current_user.id,
        user=current_user,
        request=request,
        db=db,
    )
