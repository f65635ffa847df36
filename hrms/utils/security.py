"""
HRMS Core - Security Utilities

Password hashing and JWT token management.

Access and refresh tokens are signed with different secrets and carry a
"type" claim so one can never be replayed as the other. Verification raises
instead of returning None so callers can tell an expired token from a
forged one.
"""

import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

from jose import ExpiredSignatureError, JWTError, jwt
from passlib.context import CryptContext

from hrms.config import settings
from hrms.utils.error_handling import TokenExpiredException, TokenInvalidException


# Password hashing context
pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")

ACCESS_TOKEN_TYPE = "access"
REFRESH_TOKEN_TYPE = "refresh"


def verify_password(plain_password: str, hashed_password: str) -> bool:
    """Verify a plain password against a hashed password."""
    return pwd_context.verify(plain_password, hashed_password)


def get_password_hash(password: str) -> str:
    """Hash a password for storing."""
    return pwd_context.hash(password)


# ===========================================
# IDENTITY CLAIMS
# ===========================================

@dataclass(frozen=True)
class TokenClaims:
    """Verified identity carried by a token. Immutable once issued."""

    user_id: uuid.UUID
    email: str
    role: str
    company_id: Optional[uuid.UUID] = None
    employee_id: Optional[uuid.UUID] = None
    is_super_admin: bool = False

    def to_payload(self) -> Dict[str, Any]:
        return {
            "sub": str(self.user_id),
            "email": self.email,
            "role": self.role,
            "company_id": str(self.company_id) if self.company_id else None,
            "employee_id": str(self.employee_id) if self.employee_id else None,
            "is_super_admin": self.is_super_admin,
        }

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> "TokenClaims":
        """
        Rebuild claims from a decoded payload.

        Raises:
            TokenInvalidException: If required claims are missing or malformed
        """
        try:
            company_id = payload.get("company_id")
            employee_id = payload.get("employee_id")
            return cls(
                user_id=uuid.UUID(payload["sub"]),
                email=payload["email"],
                role=payload["role"],
                company_id=uuid.UUID(company_id) if company_id else None,
                employee_id=uuid.UUID(employee_id) if employee_id else None,
                is_super_admin=bool(payload.get("is_super_admin", False)),
            )
        except (KeyError, TypeError, ValueError):
            raise TokenInvalidException("Invalid token payload")

    @classmethod
    def for_user(cls, user: Any) -> "TokenClaims":
        """Derive claims from a User row."""
        return cls(
            user_id=user.id,
            email=user.email,
            role=user.role,
            company_id=user.company_id,
            employee_id=user.employee_id,
            is_super_admin=user.is_super_admin,
        )


@dataclass(frozen=True)
class TokenPair:
    """Access/refresh pair handed out at login and refresh."""

    access_token: str
    refresh_token: str
    token_type: str = "bearer"
    expires_in: int = 0


# ===========================================
# ISSUE
# ===========================================

def _encode(
    claims: TokenClaims,
    token_type: str,
    secret: str,
    expires_delta: timedelta,
) -> str:
    now = datetime.now(timezone.utc)
    to_encode = claims.to_payload()
    to_encode.update({
        "iat": now,
        "exp": now + expires_delta,
        "jti": uuid.uuid4().hex,
        "type": token_type,
    })
    return jwt.encode(to_encode, secret, algorithm=settings.jwt_algorithm)


def create_access_token(
    claims: TokenClaims,
    expires_delta: Optional[timedelta] = None
) -> str:
    """
    Create a JWT access token.

    Args:
        claims: Identity to embed
        expires_delta: Optional custom expiration time

    Returns:
        Encoded JWT token string
    """
    return _encode(
        claims,
        ACCESS_TOKEN_TYPE,
        settings.jwt_secret_key,
        expires_delta or timedelta(minutes=settings.access_token_expire_minutes),
    )


def create_refresh_token(
    claims: TokenClaims,
    expires_delta: Optional[timedelta] = None
) -> str:
    """
    Create a JWT refresh token.

    Args:
        claims: Identity to embed
        expires_delta: Optional custom expiration time

    Returns:
        Encoded JWT refresh token string
    """
    return _encode(
        claims,
        REFRESH_TOKEN_TYPE,
        settings.jwt_refresh_secret_key,
        expires_delta or timedelta(days=settings.refresh_token_expire_days),
    )


def issue_token_pair(claims: TokenClaims) -> TokenPair:
    """Sign a fresh access/refresh pair for the given identity."""
    return TokenPair(
        access_token=create_access_token(claims),
        refresh_token=create_refresh_token(claims),
        expires_in=settings.access_token_expire_minutes * 60,
    )


# ===========================================
# VERIFY
# ===========================================

def _decode(
    token: str,
    secret: str,
    token_type: str,
    expired_message: str,
    invalid_message: str,
) -> TokenClaims:
    try:
        payload = jwt.decode(token, secret, algorithms=[settings.jwt_algorithm])
    except ExpiredSignatureError:
        raise TokenExpiredException(expired_message)
    except JWTError:
        raise TokenInvalidException(invalid_message)

    if payload.get("type") != token_type:
        raise TokenInvalidException(invalid_message)

    return TokenClaims.from_payload(payload)


def verify_access_token(token: str) -> TokenClaims:
    """
    Verify an access token and return its claims.

    Raises:
        TokenExpiredException: If the token's expiry has elapsed
        TokenInvalidException: If the signature or structure is invalid
    """
    return _decode(
        token,
        settings.jwt_secret_key,
        ACCESS_TOKEN_TYPE,
        "Token has expired",
        "Invalid token",
    )


def verify_refresh_token(token: str) -> TokenClaims:
    """
    Verify a refresh token and return its claims.

    Raises:
        TokenExpiredException: If the token's expiry has elapsed
        TokenInvalidException: If the signature or structure is invalid
    """
    return _decode(
        token,
        settings.jwt_refresh_secret_key,
        REFRESH_TOKEN_TYPE,
        "Refresh token has expired",
        "Invalid refresh token",
    )


def extract_bearer_token(header_value: Optional[str]) -> Optional[str]:
    """
    Parse an `Authorization: Bearer <token>` header value.

    Returns None when the header is absent or malformed; callers decide
    whether that is fatal.
    """
    if not header_value:
        return None
    parts = header_value.split(" ")
    if len(parts) != 2 or parts[0] != "Bearer" or not parts[1]:
        return None
    return parts[1]
