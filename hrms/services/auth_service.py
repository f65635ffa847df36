"""
HRMS Core - Authentication Service

Business logic for user authentication and token issuance.
"""

import logging
import uuid
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from hrms.models.user import User
from hrms.utils.error_handling import AuthenticationException
from hrms.utils.security import (
    TokenClaims,
    TokenPair,
    issue_token_pair,
    verify_password,
    verify_refresh_token,
)

logger = logging.getLogger(__name__)


class AuthService:
    """Service for authentication operations."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_user_by_email(self, email: str) -> Optional[User]:
        """Get user by email address."""
        result = await self.db.execute(
            select(User).where(User.email == email.lower())
        )
        return result.scalar_one_or_none()

    async def get_user_by_id(self, user_id: uuid.UUID) -> Optional[User]:
        """Get user by ID."""
        result = await self.db.execute(
            select(User).where(User.id == user_id)
        )
        return result.scalar_one_or_none()

    async def authenticate_user(self, email: str, password: str) -> Optional[User]:
        """
        Authenticate user with email and password.

        Returns:
            User if authentication successful, None otherwise
        """
        user = await self.get_user_by_email(email)

        if not user or not user.is_active:
            return None

        if not verify_password(password, user.hashed_password):
            return None

        return user

    async def login(self, email: str, password: str) -> tuple:
        """
        Verify credentials, stamp the login time and issue tokens.

        Raises:
            AuthenticationException: Unknown user, inactive user or wrong password
        """
        user = await self.authenticate_user(email, password)
        if user is None:
            logger.info(f"Failed login attempt for {email.lower()}")
            raise AuthenticationException("Invalid credentials")

        user.last_login_at = datetime.now(timezone.utc)
        await self.db.commit()
        await self.db.refresh(user)

        logger.info(f"User {user.id} logged in")
        return user, self.create_tokens(user)

    async def refresh(self, refresh_token: str) -> TokenPair:
        """
        Exchange a refresh token for a new pair.

        The claims are rebuilt from the current user row so role or company
        changes take effect on refresh.
        """
        claims = verify_refresh_token(refresh_token)
        user = await self.get_user_by_id(claims.user_id)
        if not user or not user.is_active:
            raise AuthenticationException("User not found or inactive")
        return self.create_tokens(user)

    def create_tokens(self, user: User) -> TokenPair:
        """Create access and refresh tokens for user."""
        return issue_token_pair(TokenClaims.for_user(user))
