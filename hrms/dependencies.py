"""
HRMS Core - FastAPI Dependencies

Shared dependencies for authentication, database sessions, and RBAC.

This module provides dependency injection for:
1. Verified identity claims (mandatory and optional)
2. Role-based access control
3. Permission-based access control (resolved through the permission cache)
4. Company-scope checks
5. Super-admin gating

Each check is a decision from hrms.services.authorization; denials are
raised here and rendered by the central exception handlers. The checks
compose: a route may stack require_roles, require_permissions and
require_company_access.
"""

import json
import uuid
from typing import Callable, Optional

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from hrms.database import get_async_session
from hrms.models.user import User
from hrms.services.authorization import (
    RequestContext,
    check_company_scope,
    check_permissions,
    check_role,
    check_super_admin,
    raise_for_decision,
    require_authenticated,
)
from hrms.services.permission_cache import (
    PermissionCache,
    PermissionResolver,
    get_permission_cache,
)
from hrms.utils.error_handling import AppException, AuthenticationException
from hrms.utils.security import TokenClaims, extract_bearer_token, verify_access_token


# HTTP Bearer token security
security = HTTPBearer(auto_error=False)


def _token_from_request(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials],
) -> Optional[str]:
    if credentials:
        return credentials.credentials
    return extract_bearer_token(request.headers.get("Authorization"))


async def get_permission_resolver(
    db: AsyncSession = Depends(get_async_session),
    cache: PermissionCache = Depends(get_permission_cache),
) -> PermissionResolver:
    return PermissionResolver(db, cache)


async def get_current_claims(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    db: AsyncSession = Depends(get_async_session),
) -> TokenClaims:
    """
    Get the verified claims of the caller.

    Raises:
        AuthenticationException: No token, or the user no longer exists or is inactive
        TokenExpiredException / TokenInvalidException: Token failed verification
    """
    token = _token_from_request(request, credentials)
    if not token:
        raise_for_decision(require_authenticated(None))

    claims = verify_access_token(token)

    user = await db.get(User, claims.user_id)
    if user is None or not user.is_active:
        raise AuthenticationException("User not found or inactive")

    return claims


async def get_optional_claims(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    db: AsyncSession = Depends(get_async_session),
) -> Optional[TokenClaims]:
    """Claims when a valid token is present, otherwise None. Never rejects."""
    token = _token_from_request(request, credentials)
    if not token:
        return None
    try:
        claims = verify_access_token(token)
    except AppException:
        return None

    user = await db.get(User, claims.user_id)
    if user is None or not user.is_active:
        return None
    return claims


async def get_request_context(
    claims: TokenClaims = Depends(get_current_claims),
) -> RequestContext:
    return RequestContext(claims=claims)


def require_roles(*roles: str) -> Callable:
    """
    Dependency factory: caller's role tag must be one of roles.

    Usage:
        @router.get("/", dependencies=[Depends(require_roles("admin", "hr"))])
    """
    async def role_checker(
        context: RequestContext = Depends(get_request_context),
    ) -> RequestContext:
        raise_for_decision(check_role(context.claims, roles))
        return context

    return role_checker


def require_permissions(*codes: str) -> Callable:
    """
    Dependency factory: caller must hold every permission code.

    The resolved set is attached to the returned context.
    """
    async def permission_checker(
        context: RequestContext = Depends(get_request_context),
        resolver: PermissionResolver = Depends(get_permission_resolver),
    ) -> RequestContext:
        decision = raise_for_decision(await check_permissions(context.claims, codes, resolver))
        context.permissions = decision.permissions
        return context

    return permission_checker


async def _requested_company_id(request: Request) -> Optional[uuid.UUID]:
    """company_id from the path, then the query string, then a JSON body."""
    raw = request.path_params.get("company_id") or request.query_params.get("company_id")
    if raw is None and request.method in ("POST", "PUT", "PATCH"):
        body = await request.body()
        if body:
            try:
                payload = json.loads(body)
            except ValueError:
                payload = None
            if isinstance(payload, dict):
                raw = payload.get("company_id") or payload.get("companyId")
    if raw is None:
        return None
    try:
        return uuid.UUID(str(raw))
    except ValueError:
        return None


def require_company_access() -> Callable:
    """
    Dependency factory: the company named by the request must be the caller's.

    Super admins may address any company.
    """
    async def company_checker(
        request: Request,
        context: RequestContext = Depends(get_request_context),
    ) -> RequestContext:
        company_id = await _requested_company_id(request)
        raise_for_decision(check_company_scope(context.claims, company_id))
        return context

    return company_checker


async def require_super_admin(
    context: RequestContext = Depends(get_request_context),
) -> RequestContext:
    raise_for_decision(check_super_admin(context.claims))
    return context
