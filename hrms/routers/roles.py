"""
HRMS Core - Role Management Router

Reading roles needs the admin or hr tag; changing them needs admin.
Assigning roles to users additionally needs the role.assign permission.
"""

from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from hrms.config import settings
from hrms.database import get_async_session
from hrms.dependencies import (
    get_permission_resolver,
    require_company_access,
    require_permissions,
    require_roles,
)
from hrms.models.user import UserRole
from hrms.schemas.common import ApiResponse, MessageData, PaginatedResponse
from hrms.schemas.rbac import (
    GrantResult,
    PermissionResponse,
    RoleAssignRequest,
    RoleClone,
    RoleCreate,
    RoleDetailResponse,
    RolePermissionsRequest,
    RoleResponse,
    RoleUpdate,
    RoleUserResponse,
    SeedResult,
)
from hrms.services.authorization import RequestContext
from hrms.services.permission_cache import PermissionResolver
from hrms.services.role_service import RoleService
from hrms.utils.response import paginated_response, success_response


router = APIRouter()

ADMIN = UserRole.ADMIN.value
HR = UserRole.HR.value


async def get_role_service(
    db: AsyncSession = Depends(get_async_session),
    resolver: PermissionResolver = Depends(get_permission_resolver),
) -> RoleService:
    return RoleService(db, resolver)


# ===========================================
# ROLES
# ===========================================

@router.get(
    "",
    response_model=PaginatedResponse[RoleResponse],
    summary="List roles",
    description="Non-super-admins see their company's roles and the system roles.",
)
async def list_roles(
    company_id: Optional[UUID] = Query(None, description="Super admins only"),
    search: Optional[str] = Query(None, max_length=100),
    is_system: Optional[bool] = Query(None),
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=settings.max_page_size),
    context: RequestContext = Depends(require_roles(ADMIN, HR)),
    service: RoleService = Depends(get_role_service),
):
    roles, total = await service.list_roles(
        context, company_id=company_id, search=search, is_system=is_system, page=page, limit=limit,
    )
    return paginated_response([RoleResponse.model_validate(r) for r in roles], total, page, limit)


@router.post(
    "",
    response_model=ApiResponse[RoleResponse],
    status_code=status.HTTP_201_CREATED,
    summary="Create a role",
)
async def create_role(
    request: RoleCreate,
    context: RequestContext = Depends(require_roles(ADMIN)),
    service: RoleService = Depends(get_role_service),
):
    role = await service.create_role(
        context,
        name=request.name,
        display_name=request.display_name,
        description=request.description,
        company_id=request.company_id,
        is_system=request.is_system,
        permission_ids=request.permission_ids,
    )
    return success_response(RoleResponse.model_validate(role), message="Role created")


@router.post(
    "/companies/{company_id}/seed",
    response_model=ApiResponse[SeedResult],
    summary="Seed default roles for a company",
    dependencies=[Depends(require_roles(ADMIN))],
)
async def seed_default_roles(
    company_id: UUID,
    context: RequestContext = Depends(require_company_access()),
    service: RoleService = Depends(get_role_service),
):
    created, existing = await service.seed_default_roles(context, company_id)
    return success_response(SeedResult(created=created, existing=existing), message="Roles seeded")


@router.get(
    "/{role_id}",
    response_model=ApiResponse[RoleDetailResponse],
    summary="Get a role with its permissions",
)
async def get_role(
    role_id: UUID,
    context: RequestContext = Depends(require_roles(ADMIN, HR)),
    service: RoleService = Depends(get_role_service),
):
    role, permissions, user_count = await service.get_role_detail(context, role_id)
    detail = RoleDetailResponse(
        **RoleResponse.model_validate(role).model_dump(),
        permissions=[PermissionResponse.model_validate(p) for p in permissions],
        user_count=user_count,
    )
    return success_response(detail)


@router.put(
    "/{role_id}",
    response_model=ApiResponse[RoleResponse],
    summary="Update a role",
)
async def update_role(
    role_id: UUID,
    request: RoleUpdate,
    context: RequestContext = Depends(require_roles(ADMIN)),
    service: RoleService = Depends(get_role_service),
):
    role = await service.update_role(
        context, role_id, display_name=request.display_name, description=request.description,
    )
    return success_response(RoleResponse.model_validate(role), message="Role updated")


@router.delete(
    "/{role_id}",
    response_model=ApiResponse[MessageData],
    summary="Delete a role",
)
async def delete_role(
    role_id: UUID,
    context: RequestContext = Depends(require_roles(ADMIN)),
    service: RoleService = Depends(get_role_service),
):
    await service.delete_role(context, role_id)
    return success_response(MessageData(message="Role deleted"))


@router.post(
    "/{role_id}/clone",
    response_model=ApiResponse[RoleResponse],
    status_code=status.HTTP_201_CREATED,
    summary="Clone a role",
)
async def clone_role(
    role_id: UUID,
    request: RoleClone,
    context: RequestContext = Depends(require_roles(ADMIN)),
    service: RoleService = Depends(get_role_service),
):
    role = await service.clone_role(
        context, role_id, name=request.name, display_name=request.display_name, description=request.description,
    )
    return success_response(RoleResponse.model_validate(role), message="Role cloned")


# ===========================================
# ROLE PERMISSIONS
# ===========================================

@router.get(
    "/{role_id}/permissions",
    response_model=ApiResponse[List[PermissionResponse]],
    summary="List a role's permissions",
)
async def list_role_permissions(
    role_id: UUID,
    context: RequestContext = Depends(require_roles(ADMIN, HR)),
    service: RoleService = Depends(get_role_service),
):
    permissions = await service.list_role_permissions(context, role_id)
    return success_response([PermissionResponse.model_validate(p) for p in permissions])


@router.post(
    "/{role_id}/permissions",
    response_model=ApiResponse[GrantResult],
    summary="Grant permissions to a role",
)
async def grant_role_permissions(
    role_id: UUID,
    request: RolePermissionsRequest,
    context: RequestContext = Depends(require_roles(ADMIN)),
    service: RoleService = Depends(get_role_service),
):
    granted, already = await service.grant_permissions(context, role_id, request.permission_ids)
    return success_response(GrantResult(granted=granted, already_granted=already), message="Permissions granted")


@router.delete(
    "/{role_id}/permissions/{permission_id}",
    response_model=ApiResponse[MessageData],
    summary="Revoke a permission from a role",
)
async def revoke_role_permission(
    role_id: UUID,
    permission_id: UUID,
    context: RequestContext = Depends(require_roles(ADMIN)),
    service: RoleService = Depends(get_role_service),
):
    await service.revoke_permission(context, role_id, permission_id)
    return success_response(MessageData(message="Permission revoked"))


# ===========================================
# ROLE HOLDERS
# ===========================================

@router.get(
    "/{role_id}/users",
    response_model=PaginatedResponse[RoleUserResponse],
    summary="List users holding a role",
)
async def list_role_users(
    role_id: UUID,
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=settings.max_page_size),
    context: RequestContext = Depends(require_roles(ADMIN, HR)),
    service: RoleService = Depends(get_role_service),
):
    users, total = await service.list_role_users(context, role_id, page=page, limit=limit)
    return paginated_response([RoleUserResponse(**u) for u in users], total, page, limit)


@router.post(
    "/{role_id}/users",
    response_model=ApiResponse[MessageData],
    status_code=status.HTTP_201_CREATED,
    summary="Assign a role to a user",
    dependencies=[Depends(require_roles(ADMIN, HR))],
)
async def assign_role(
    role_id: UUID,
    request: RoleAssignRequest,
    context: RequestContext = Depends(require_permissions("role.assign")),
    service: RoleService = Depends(get_role_service),
):
    await service.assign_role(context, role_id, request.user_id)
    return success_response(MessageData(message="Role assigned"))


@router.delete(
    "/{role_id}/users/{user_id}",
    response_model=ApiResponse[MessageData],
    summary="Revoke a role from a user",
    dependencies=[Depends(require_roles(ADMIN, HR))],
)
async def revoke_role(
    role_id: UUID,
    user_id: UUID,
    context: RequestContext = Depends(require_permissions("role.assign")),
    service: RoleService = Depends(get_role_service),
):
    await service.revoke_role(context, role_id, user_id)
    return success_response(MessageData(message="Role revoked"))
