"""
HRMS Core - Authorization Engine

Decision procedures over verified identity claims. Each check returns an
`Allow` or a `Deny` value and never raises; `raise_for_decision` turns a
denial into the matching exception at the HTTP boundary, where the central
handlers render it.

All checks share two rules:
    - no claims means Deny(unauthorized)
    - the super-admin flag always allows
"""

import logging
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Collection, FrozenSet, Optional, Union

from hrms.services.permission_cache import PermissionResolver
from hrms.utils.error_handling import AuthenticationException, AuthorizationException
from hrms.utils.security import TokenClaims

logger = logging.getLogger(__name__)


AUTHENTICATION_REQUIRED = "Authentication required"
INSUFFICIENT_PERMISSIONS = "Insufficient permissions"
COMPANY_ID_REQUIRED = "Company ID required"
COMPANY_ACCESS_DENIED = "Access denied to this company"
SUPER_ADMIN_REQUIRED = "Super admin access required"


class DenyKind(str, Enum):
    UNAUTHORIZED = "unauthorized"
    FORBIDDEN = "forbidden"


@dataclass(frozen=True)
class Allow:
    """Positive decision. Permission checks attach the resolved set."""
    permissions: Optional[FrozenSet[str]] = None


@dataclass(frozen=True)
class Deny:
    """Negative decision with the reason shown to the caller."""
    kind: DenyKind
    reason: str
    missing: FrozenSet[str] = field(default_factory=frozenset)


Decision = Union[Allow, Deny]


@dataclass
class RequestContext:
    """Typed per-request identity handed to route handlers."""
    claims: TokenClaims
    permissions: Optional[FrozenSet[str]] = None

    @property
    def user_id(self) -> uuid.UUID:
        return self.claims.user_id

    @property
    def company_id(self) -> Optional[uuid.UUID]:
        return self.claims.company_id

    @property
    def is_super_admin(self) -> bool:
        return self.claims.is_super_admin

    def scoped_company_id(self, requested: Optional[uuid.UUID] = None) -> Optional[uuid.UUID]:
        """Company filter to apply: super admins choose, everyone else gets their own."""
        if self.claims.is_super_admin:
            return requested
        return self.claims.company_id


# ===========================================
# DECISION PROCEDURES
# ===========================================

def require_authenticated(claims: Optional[TokenClaims]) -> Decision:
    if claims is None:
        return Deny(DenyKind.UNAUTHORIZED, AUTHENTICATION_REQUIRED)
    return Allow()


def check_role(claims: Optional[TokenClaims], allowed_roles: Collection[str]) -> Decision:
    """Allow when the caller's role tag is one of allowed_roles."""
    decision = require_authenticated(claims)
    if isinstance(decision, Deny):
        return decision
    if claims.is_super_admin or claims.role in allowed_roles:
        return Allow()
    logger.info(f"Role check denied user {claims.user_id}: role {claims.role} not in {sorted(allowed_roles)}")
    return Deny(DenyKind.FORBIDDEN, INSUFFICIENT_PERMISSIONS)


async def check_permissions(
    claims: Optional[TokenClaims],
    required: Collection[str],
    resolver: PermissionResolver,
) -> Decision:
    """
    Allow when the caller holds every required permission code.

    Super admins skip resolution entirely; for everyone else the resolved set
    is attached to the Allow so downstream consumers can reuse it.
    """
    decision = require_authenticated(claims)
    if isinstance(decision, Deny):
        return decision
    if claims.is_super_admin:
        return Allow()

    granted = await resolver.resolve(claims.user_id)
    missing = frozenset(required) - granted
    if missing:
        logger.info(f"Permission check denied user {claims.user_id}: missing {sorted(missing)}")
        return Deny(DenyKind.FORBIDDEN, INSUFFICIENT_PERMISSIONS, missing)
    return Allow(permissions=granted)


def check_company_scope(
    claims: Optional[TokenClaims],
    requested_company_id: Optional[uuid.UUID],
) -> Decision:
    """Allow when the requested company is the caller's own."""
    decision = require_authenticated(claims)
    if isinstance(decision, Deny):
        return decision
    if claims.is_super_admin:
        return Allow()
    if requested_company_id is None:
        return Deny(DenyKind.FORBIDDEN, COMPANY_ID_REQUIRED)
    if requested_company_id != claims.company_id:
        logger.info(f"Company scope denied user {claims.user_id} for company {requested_company_id}")
        return Deny(DenyKind.FORBIDDEN, COMPANY_ACCESS_DENIED)
    return Allow()


def check_super_admin(claims: Optional[TokenClaims]) -> Decision:
    decision = require_authenticated(claims)
    if isinstance(decision, Deny):
        return decision
    if claims.is_super_admin:
        return Allow()
    return Deny(DenyKind.FORBIDDEN, SUPER_ADMIN_REQUIRED)


def raise_for_decision(decision: Decision) -> Allow:
    """Return the Allow unchanged, or raise the exception matching the Deny."""
    if isinstance(decision, Allow):
        return decision
    if decision.kind == DenyKind.UNAUTHORIZED:
        raise AuthenticationException(decision.reason)
    details = {"missing_permissions": sorted(decision.missing)} if decision.missing else None
    raise AuthorizationException(decision.reason, details=details)


def ensure_company_access(context: RequestContext, company_id: Optional[uuid.UUID]) -> None:
    """Raise unless the caller may act on resources of company_id."""
    raise_for_decision(check_company_scope(context.claims, company_id))
