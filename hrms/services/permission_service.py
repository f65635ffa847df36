"""
HRMS Core - Permission Catalogue Service

CRUD over the permission catalogue. Codes are derived from module and
action and never change after creation; only the description is editable.
"""

import logging
import uuid
from typing import Dict, List, Optional, Sequence, Tuple

from sqlalchemy import func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from hrms.models.rbac import Permission, RolePermission
from hrms.services.permission_cache import PermissionResolver
from hrms.utils.error_handling import BadRequestException, ConflictException, NotFoundException
from hrms.utils.permissions import DEFAULT_PERMISSIONS, permission_code

logger = logging.getLogger(__name__)


class PermissionService:
    """Service for the permission catalogue."""

    def __init__(self, db: AsyncSession, resolver: Optional[PermissionResolver] = None):
        self.db = db
        self.resolver = resolver

    # =========================================================================
    # READ
    # =========================================================================

    async def list_permissions(
        self,
        module: Optional[str] = None,
        action: Optional[str] = None,
        search: Optional[str] = None,
        page: int = 1,
        limit: int = 100,
    ) -> Tuple[List[Permission], int]:
        query = select(Permission)
        if module:
            query = query.where(Permission.module == module.lower())
        if action:
            query = query.where(Permission.action == action.lower())
        if search:
            pattern = f"%{search}%"
            query = query.where(
                or_(Permission.code.ilike(pattern), Permission.description.ilike(pattern))
            )

        total = await self.db.scalar(select(func.count()).select_from(query.subquery()))
        result = await self.db.execute(
            query.order_by(Permission.module, Permission.action)
            .offset((page - 1) * limit)
            .limit(limit)
        )
        return list(result.scalars().all()), total or 0

    async def get_permission(self, permission_id: uuid.UUID) -> Permission:
        permission = await self.db.get(Permission, permission_id)
        if permission is None:
            raise NotFoundException("Permission", permission_id)
        return permission

    async def group_by_module(self) -> Dict[str, List[Permission]]:
        result = await self.db.execute(
            select(Permission).order_by(Permission.module, Permission.action)
        )
        grouped: Dict[str, List[Permission]] = {}
        for permission in result.scalars().all():
            grouped.setdefault(permission.module, []).append(permission)
        return grouped

    async def list_modules(self) -> List[str]:
        result = await self.db.execute(
            select(Permission.module).distinct().order_by(Permission.module)
        )
        return list(result.scalars().all())

    async def list_actions(self) -> List[str]:
        result = await self.db.execute(
            select(Permission.action).distinct().order_by(Permission.action)
        )
        return list(result.scalars().all())

    # =========================================================================
    # WRITE
    # =========================================================================

    async def create_permission(
        self,
        module: str,
        action: str,
        description: Optional[str] = None,
    ) -> Permission:
        """
        Create a permission coded module.action.

        Raises:
            ConflictException: If the code already exists
        """
        code = permission_code(module, action)
        existing = await self.db.scalar(select(Permission.id).where(Permission.code == code))
        if existing is not None:
            raise ConflictException(f"Permission '{code}' already exists", field="code")

        permission = Permission(module=module, action=action, code=code, description=description)
        self.db.add(permission)
        await self.db.commit()
        await self.db.refresh(permission)

        logger.info(f"Created permission {code}")
        return permission

    async def bulk_create(self, items: Sequence[Tuple[str, str, Optional[str]]]) -> Tuple[List[Permission], List[Dict[str, str]]]:
        """
        Create several permissions in one transaction.

        Codes that already exist (or repeat within the batch) are reported in
        the error list instead of failing the batch.
        """
        result = await self.db.execute(select(Permission.code))
        taken = set(result.scalars().all())

        created: List[Permission] = []
        errors: List[Dict[str, str]] = []
        for module, action, description in items:
            code = permission_code(module, action)
            if code in taken:
                errors.append({"code": code, "error": "Permission already exists"})
                continue
            taken.add(code)
            permission = Permission(module=module, action=action, code=code, description=description)
            self.db.add(permission)
            created.append(permission)

        await self.db.commit()
        for permission in created:
            await self.db.refresh(permission)

        logger.info(f"Bulk created {len(created)} permissions ({len(errors)} skipped)")
        return created, errors

    async def update_permission(self, permission_id: uuid.UUID, description: Optional[str]) -> Permission:
        permission = await self.get_permission(permission_id)
        permission.description = description
        await self.db.commit()
        await self.db.refresh(permission)

        if self.resolver:
            await self.resolver.invalidate_permission_holders(permission.id)
        return permission

    async def delete_permission(self, permission_id: uuid.UUID) -> None:
        """
        Delete a permission.

        Raises:
            BadRequestException: While any role still grants it
        """
        permission = await self.get_permission(permission_id)
        grants = await self.db.scalar(
            select(func.count()).select_from(RolePermission).where(RolePermission.permission_id == permission.id)
        )
        if grants:
            raise BadRequestException(
                f"Permission '{permission.code}' is granted to {grants} role(s)",
                details={"role_count": grants},
            )

        await self.db.delete(permission)
        await self.db.commit()
        logger.info(f"Deleted permission {permission.code}")

    async def seed_defaults(self) -> Tuple[int, int]:
        """Insert the default catalogue. Returns (created, already present)."""
        result = await self.db.execute(select(Permission.code))
        taken = set(result.scalars().all())

        created = 0
        for module, action, description in DEFAULT_PERMISSIONS:
            code = permission_code(module, action)
            if code in taken:
                continue
            self.db.add(Permission(module=module, action=action, code=code, description=description))
            created += 1

        await self.db.commit()
        logger.info(f"Seeded {created} default permissions")
        return created, len(DEFAULT_PERMISSIONS) - created
