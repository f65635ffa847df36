"""
HRMS Core - Role Management Service

Business logic for tenant roles, their permission grants and their holders.

Scope rules:
- System roles (company_id NULL) are readable by everyone and writable only
  by super admins.
- Company roles are visible and writable only inside their company unless
  the caller is a super admin.

Every mutation that can change what a user holds evicts the affected users'
cached permission sets.
"""

import logging
import uuid
from typing import Dict, List, Optional, Sequence, Tuple

from sqlalchemy import func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from hrms.models.rbac import Permission, Role, RolePermission, UserRoleAssignment
from hrms.models.user import User
from hrms.services.authorization import RequestContext, ensure_company_access
from hrms.services.permission_cache import PermissionResolver
from hrms.utils.error_handling import (
    AuthorizationException,
    BadRequestException,
    ConflictException,
    NotFoundException,
)
from hrms.utils.permissions import DEFAULT_ROLES, expand_permission_patterns

logger = logging.getLogger(__name__)

SYSTEM_ROLE_DENIED = "System roles can only be modified by a super admin"


class RoleService:
    """Service for role management."""

    def __init__(self, db: AsyncSession, resolver: PermissionResolver):
        self.db = db
        self.resolver = resolver

    # =========================================================================
    # ACCESS HELPERS
    # =========================================================================

    async def get_role(self, role_id: uuid.UUID) -> Role:
        role = await self.db.get(Role, role_id)
        if role is None:
            raise NotFoundException("Role", role_id)
        return role

    def _ensure_can_read(self, context: RequestContext, role: Role) -> None:
        if role.company_id is None:
            return
        ensure_company_access(context, role.company_id)

    def _ensure_can_modify(self, context: RequestContext, role: Role) -> None:
        if context.is_super_admin:
            return
        if role.is_system or role.company_id is None:
            raise AuthorizationException(SYSTEM_ROLE_DENIED)
        ensure_company_access(context, role.company_id)

    async def _name_taken(self, company_id: Optional[uuid.UUID], name: str) -> bool:
        query = select(Role.id).where(Role.name == name)
        if company_id is None:
            query = query.where(Role.company_id.is_(None))
        else:
            query = query.where(Role.company_id == company_id)
        return await self.db.scalar(query) is not None

    async def _load_permissions(self, permission_ids: Sequence[uuid.UUID]) -> List[Permission]:
        """Fetch permissions by id; unknown ids are a BadRequest."""
        wanted = set(permission_ids)
        result = await self.db.execute(select(Permission).where(Permission.id.in_(wanted)))
        permissions = list(result.scalars().all())
        missing = wanted - {permission.id for permission in permissions}
        if missing:
            raise BadRequestException(
                "Unknown permission ids",
                details={"permission_ids": sorted(str(permission_id) for permission_id in missing)},
            )
        return permissions

    # =========================================================================
    # ROLES
    # =========================================================================

    async def list_roles(
        self,
        context: RequestContext,
        company_id: Optional[uuid.UUID] = None,
        search: Optional[str] = None,
        is_system: Optional[bool] = None,
        page: int = 1,
        limit: int = 50,
    ) -> Tuple[List[Role], int]:
        query = select(Role)
        if context.is_super_admin:
            if company_id:
                query = query.where(Role.company_id == company_id)
        else:
            query = query.where(
                or_(Role.company_id == context.company_id, Role.company_id.is_(None))
            )
        if search:
            pattern = f"%{search}%"
            query = query.where(or_(Role.name.ilike(pattern), Role.display_name.ilike(pattern)))
        if is_system is not None:
            query = query.where(Role.is_system == is_system)

        total = await self.db.scalar(select(func.count()).select_from(query.subquery()))
        result = await self.db.execute(
            query.order_by(Role.is_system.desc(), Role.name)
            .offset((page - 1) * limit)
            .limit(limit)
        )
        return list(result.scalars().all()), total or 0

    async def get_role_detail(
        self,
        context: RequestContext,
        role_id: uuid.UUID,
    ) -> Tuple[Role, List[Permission], int]:
        """Role, its granted permissions and how many users hold it."""
        role = await self.get_role(role_id)
        self._ensure_can_read(context, role)
        permissions = await self.list_role_permissions(context, role_id, role=role)
        user_count = await self.db.scalar(
            select(func.count()).select_from(UserRoleAssignment).where(UserRoleAssignment.role_id == role.id)
        )
        return role, permissions, user_count or 0

    async def create_role(
        self,
        context: RequestContext,
        name: str,
        display_name: str,
        description: Optional[str] = None,
        company_id: Optional[uuid.UUID] = None,
        is_system: bool = False,
        permission_ids: Sequence[uuid.UUID] = (),
    ) -> Role:
        """
        Create a role.

        Non-super-admins always create in their own company and never create
        system roles.

        Raises:
            ConflictException: If the company already has a role with this name
        """
        if context.is_super_admin:
            target_company = None if is_system else company_id
        else:
            if is_system:
                raise AuthorizationException(SYSTEM_ROLE_DENIED)
            target_company = context.company_id
            ensure_company_access(context, target_company)

        if await self._name_taken(target_company, name):
            raise ConflictException(f"Role '{name}' already exists", field="name")

        permissions = await self._load_permissions(permission_ids) if permission_ids else []

        role = Role(
            company_id=target_company,
            name=name,
            display_name=display_name,
            description=description,
            is_system=is_system,
            created_by_id=context.user_id,
        )
        self.db.add(role)
        await self.db.flush()
        for permission in permissions:
            self.db.add(RolePermission(role_id=role.id, permission_id=permission.id))

        await self.db.commit()
        await self.db.refresh(role)

        logger.info(f"Created role {role.name} ({role.id}) for company {role.company_id}")
        return role

    async def update_role(
        self,
        context: RequestContext,
        role_id: uuid.UUID,
        display_name: Optional[str] = None,
        description: Optional[str] = None,
    ) -> Role:
        role = await self.get_role(role_id)
        self._ensure_can_modify(context, role)

        if display_name is not None:
            role.display_name = display_name
        if description is not None:
            role.description = description
        role.updated_by_id = context.user_id

        await self.db.commit()
        await self.db.refresh(role)
        await self.resolver.invalidate_role_holders(role.id)
        return role

    async def delete_role(self, context: RequestContext, role_id: uuid.UUID) -> None:
        """
        Delete a role.

        Raises:
            BadRequestException: While the role is assigned to any user
        """
        role = await self.get_role(role_id)
        self._ensure_can_modify(context, role)

        holders = await self.db.scalar(
            select(func.count()).select_from(UserRoleAssignment).where(UserRoleAssignment.role_id == role.id)
        )
        if holders:
            raise BadRequestException(
                f"Role '{role.name}' is assigned to {holders} user(s)",
                details={"user_count": holders},
            )

        await self.db.delete(role)
        await self.db.commit()
        logger.info(f"Deleted role {role.name} ({role_id})")

    async def clone_role(
        self,
        context: RequestContext,
        role_id: uuid.UUID,
        name: str,
        display_name: str,
        description: Optional[str] = None,
    ) -> Role:
        """Copy a role and its grants into the caller's company. Clones are never system roles."""
        source = await self.get_role(role_id)
        self._ensure_can_read(context, source)

        target_company = source.company_id if source.company_id is not None else context.company_id
        if not context.is_super_admin:
            ensure_company_access(context, target_company)

        if await self._name_taken(target_company, name):
            raise ConflictException(f"Role '{name}' already exists", field="name")

        result = await self.db.execute(
            select(RolePermission.permission_id).where(RolePermission.role_id == source.id)
        )
        permission_ids = list(result.scalars().all())

        clone = Role(
            company_id=target_company,
            name=name,
            display_name=display_name,
            description=description if description is not None else source.description,
            is_system=False,
            created_by_id=context.user_id,
        )
        self.db.add(clone)
        await self.db.flush()
        for permission_id in permission_ids:
            self.db.add(RolePermission(role_id=clone.id, permission_id=permission_id))

        await self.db.commit()
        await self.db.refresh(clone)

        logger.info(f"Cloned role {source.name} into {clone.name} ({clone.id})")
        return clone

    # =========================================================================
    # ROLE PERMISSIONS
    # =========================================================================

    async def list_role_permissions(
        self,
        context: RequestContext,
        role_id: uuid.UUID,
        role: Optional[Role] = None,
    ) -> List[Permission]:
        if role is None:
            role = await self.get_role(role_id)
            self._ensure_can_read(context, role)
        result = await self.db.execute(
            select(Permission)
            .join(RolePermission, RolePermission.permission_id == Permission.id)
            .where(RolePermission.role_id == role.id)
            .order_by(Permission.module, Permission.action)
        )
        return list(result.scalars().all())

    async def grant_permissions(
        self,
        context: RequestContext,
        role_id: uuid.UUID,
        permission_ids: Sequence[uuid.UUID],
    ) -> Tuple[int, int]:
        """Grant permissions to a role. Returns (newly granted, already granted)."""
        role = await self.get_role(role_id)
        self._ensure_can_modify(context, role)
        permissions = await self._load_permissions(permission_ids)

        result = await self.db.execute(
            select(RolePermission.permission_id).where(RolePermission.role_id == role.id)
        )
        existing = set(result.scalars().all())

        granted = 0
        for permission in permissions:
            if permission.id in existing:
                continue
            self.db.add(RolePermission(role_id=role.id, permission_id=permission.id))
            granted += 1

        await self.db.commit()
        await self.resolver.invalidate_role_holders(role.id)

        logger.info(f"Granted {granted} permission(s) to role {role.name}")
        return granted, len(permissions) - granted

    async def revoke_permission(
        self,
        context: RequestContext,
        role_id: uuid.UUID,
        permission_id: uuid.UUID,
    ) -> None:
        role = await self.get_role(role_id)
        self._ensure_can_modify(context, role)

        grant = await self.db.scalar(
            select(RolePermission).where(
                RolePermission.role_id == role.id,
                RolePermission.permission_id == permission_id,
            )
        )
        if grant is None:
            raise NotFoundException(
                "RolePermission",
                permission_id,
                message="Permission is not granted to this role",
            )

        await self.db.delete(grant)
        await self.db.commit()
        await self.resolver.invalidate_role_holders(role.id)

    # =========================================================================
    # ROLE HOLDERS
    # =========================================================================

    async def list_role_users(
        self,
        context: RequestContext,
        role_id: uuid.UUID,
        page: int = 1,
        limit: int = 50,
    ) -> Tuple[List[Dict[str, object]], int]:
        role = await self.get_role(role_id)
        self._ensure_can_read(context, role)

        query = (
            select(User, UserRoleAssignment.created_at)
            .join(UserRoleAssignment, UserRoleAssignment.user_id == User.id)
            .where(UserRoleAssignment.role_id == role.id)
        )
        if not context.is_super_admin:
            query = query.where(User.company_id == context.company_id)

        total = await self.db.scalar(select(func.count()).select_from(query.subquery()))
        result = await self.db.execute(
            query.order_by(User.last_name, User.first_name)
            .offset((page - 1) * limit)
            .limit(limit)
        )
        users = [
            {
                "user_id": user.id,
                "email": user.email,
                "first_name": user.first_name,
                "last_name": user.last_name,
                "role": user.role,
                "assigned_at": assigned_at,
            }
            for user, assigned_at in result.all()
        ]
        return users, total or 0

    async def _role_and_user(
        self,
        context: RequestContext,
        role_id: uuid.UUID,
        user_id: uuid.UUID,
    ) -> Tuple[Role, User]:
        role = await self.get_role(role_id)
        self._ensure_can_read(context, role)

        user = await self.db.get(User, user_id)
        if user is None:
            raise NotFoundException("User", user_id)
        if not context.is_super_admin:
            ensure_company_access(context, user.company_id)
        if role.company_id is not None and user.company_id != role.company_id:
            raise BadRequestException("User and role belong to different companies")
        return role, user

    async def assign_role(
        self,
        context: RequestContext,
        role_id: uuid.UUID,
        user_id: uuid.UUID,
    ) -> UserRoleAssignment:
        """
        Assign a role to a user.

        Raises:
            ConflictException: If the user already holds the role
        """
        role, user = await self._role_and_user(context, role_id, user_id)

        existing = await self.db.scalar(
            select(UserRoleAssignment.id).where(
                UserRoleAssignment.role_id == role.id,
                UserRoleAssignment.user_id == user.id,
            )
        )
        if existing is not None:
            raise ConflictException("User already has this role", field="role_id")

        assignment = UserRoleAssignment(user_id=user.id, role_id=role.id)
        self.db.add(assignment)
        await self.db.commit()
        await self.db.refresh(assignment)
        await self.resolver.invalidate_users([user.id])

        logger.info(f"Assigned role {role.name} to user {user.id}")
        return assignment

    async def revoke_role(
        self,
        context: RequestContext,
        role_id: uuid.UUID,
        user_id: uuid.UUID,
    ) -> None:
        role, user = await self._role_and_user(context, role_id, user_id)

        assignment = await self.db.scalar(
            select(UserRoleAssignment).where(
                UserRoleAssignment.role_id == role.id,
                UserRoleAssignment.user_id == user.id,
            )
        )
        if assignment is None:
            raise NotFoundException(
                "UserRoleAssignment",
                user_id,
                message="User does not have this role",
            )

        await self.db.delete(assignment)
        await self.db.commit()
        await self.resolver.invalidate_users([user.id])

        logger.info(f"Revoked role {role.name} from user {user.id}")

    # =========================================================================
    # SEEDING
    # =========================================================================

    async def seed_default_roles(
        self,
        context: RequestContext,
        company_id: uuid.UUID,
    ) -> Tuple[int, int]:
        """
        Create the default roles for a company. Returns (created, already present).

        Grant patterns are expanded against the catalogue as it stands now.
        """
        result = await self.db.execute(select(Permission))
        permissions = {permission.code: permission for permission in result.scalars().all()}

        created = 0
        for name, definition in DEFAULT_ROLES.items():
            if await self._name_taken(company_id, name):
                continue

            role = Role(
                company_id=company_id,
                name=name,
                display_name=definition["display_name"],
                description=definition["description"],
                is_system=False,
                created_by_id=context.user_id,
            )
            self.db.add(role)
            await self.db.flush()

            codes = expand_permission_patterns(definition["permissions"], permissions)
            for code in sorted(codes):
                self.db.add(RolePermission(role_id=role.id, permission_id=permissions[code].id))
            created += 1

        await self.db.commit()
        logger.info(f"Seeded {created} default role(s) for company {company_id}")
        return created, len(DEFAULT_ROLES) - created
