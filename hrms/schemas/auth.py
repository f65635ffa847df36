"""
HRMS Core - Authentication Schemas

Pydantic schemas for authentication requests and responses.
"""

from datetime import datetime
from typing import List, Optional
from uuid import UUID

from pydantic import BaseModel, EmailStr, Field


# ===========================================
# REQUEST SCHEMAS
# ===========================================

class UserLoginRequest(BaseModel):
    """Schema for user login request."""
    email: EmailStr
    password: str = Field(..., min_length=1, max_length=100)


class TokenRefreshRequest(BaseModel):
    """Schema for token refresh request."""
    refresh_token: str = Field(..., min_length=1)


# ===========================================
# RESPONSE SCHEMAS
# ===========================================

class TokenResponse(BaseModel):
    """Schema for token response."""
    access_token: str
    refresh_token: str
    token_type: str = "bearer"
    expires_in: int


class UserResponse(BaseModel):
    """Schema for user response."""
    id: UUID
    email: str
    first_name: str
    last_name: str
    role: str
    company_id: Optional[UUID] = None
    employee_id: Optional[UUID] = None
    is_active: bool
    is_super_admin: bool
    last_login_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class LoginResponse(BaseModel):
    """User profile together with a fresh token pair."""
    user: UserResponse
    tokens: TokenResponse


class CurrentUserResponse(UserResponse):
    """Profile of the caller, with the permission codes resolved for them."""
    permissions: List[str] = []


class PermissionCodesResponse(BaseModel):
    """Resolved permission codes of the caller."""
    user_id: UUID
    is_super_admin: bool
    permissions: List[str]
