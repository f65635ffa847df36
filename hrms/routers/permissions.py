"""
HRMS Core - Permission Catalogue Router

Any authenticated user may browse the catalogue; changing it requires a
super admin.
"""

from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from hrms.config import settings
from hrms.database import get_async_session
from hrms.dependencies import get_permission_resolver, get_request_context, require_super_admin
from hrms.schemas.common import ApiResponse, MessageData, PaginatedResponse
from hrms.schemas.rbac import (
    BulkCreateResult,
    PermissionBulkCreate,
    PermissionCreate,
    PermissionModuleGroup,
    PermissionResponse,
    PermissionUpdate,
    SeedResult,
)
from hrms.services.authorization import RequestContext
from hrms.services.permission_cache import PermissionResolver
from hrms.services.permission_service import PermissionService
from hrms.utils.response import paginated_response, success_response


router = APIRouter()


@router.get(
    "",
    response_model=PaginatedResponse[PermissionResponse],
    summary="List permissions",
)
async def list_permissions(
    module: Optional[str] = Query(None),
    action: Optional[str] = Query(None),
    search: Optional[str] = Query(None, max_length=100),
    page: int = Query(1, ge=1),
    limit: int = Query(settings.max_page_size, ge=1, le=settings.max_page_size),
    context: RequestContext = Depends(get_request_context),
    db: AsyncSession = Depends(get_async_session),
):
    permissions, total = await PermissionService(db).list_permissions(
        module=module, action=action, search=search, page=page, limit=limit,
    )
    return paginated_response(
        [PermissionResponse.model_validate(p) for p in permissions], total, page, limit,
    )


@router.get(
    "/by-module",
    response_model=ApiResponse[List[PermissionModuleGroup]],
    summary="Permissions grouped by module",
)
async def permissions_by_module(
    context: RequestContext = Depends(get_request_context),
    db: AsyncSession = Depends(get_async_session),
):
    grouped = await PermissionService(db).group_by_module()
    return success_response([
        PermissionModuleGroup(
            module=module,
            permissions=[PermissionResponse.model_validate(p) for p in permissions],
        )
        for module, permissions in grouped.items()
    ])


@router.get(
    "/modules",
    response_model=ApiResponse[List[str]],
    summary="Distinct permission modules",
)
async def list_modules(
    context: RequestContext = Depends(get_request_context),
    db: AsyncSession = Depends(get_async_session),
):
    return success_response(await PermissionService(db).list_modules())


@router.get(
    "/actions",
    response_model=ApiResponse[List[str]],
    summary="Distinct permission actions",
)
async def list_actions(
    context: RequestContext = Depends(get_request_context),
    db: AsyncSession = Depends(get_async_session),
):
    return success_response(await PermissionService(db).list_actions())


@router.post(
    "/seed",
    response_model=ApiResponse[SeedResult],
    summary="Seed the default permission catalogue",
)
async def seed_permissions(
    context: RequestContext = Depends(require_super_admin),
    db: AsyncSession = Depends(get_async_session),
):
    created, existing = await PermissionService(db).seed_defaults()
    return success_response(SeedResult(created=created, existing=existing), message="Permissions seeded")


@router.post(
    "/bulk",
    response_model=ApiResponse[BulkCreateResult],
    status_code=status.HTTP_201_CREATED,
    summary="Create several permissions",
)
async def bulk_create_permissions(
    request: PermissionBulkCreate,
    context: RequestContext = Depends(require_super_admin),
    db: AsyncSession = Depends(get_async_session),
):
    created, errors = await PermissionService(db).bulk_create(
        [(item.module, item.action, item.description) for item in request.permissions]
    )
    return success_response(
        BulkCreateResult(
            created=len(created),
            failed=len(errors),
            permissions=[PermissionResponse.model_validate(p) for p in created],
            errors=errors,
        )
    )


@router.get(
    "/{permission_id}",
    response_model=ApiResponse[PermissionResponse],
    summary="Get a permission",
)
async def get_permission(
    permission_id: UUID,
    context: RequestContext = Depends(get_request_context),
    db: AsyncSession = Depends(get_async_session),
):
    permission = await PermissionService(db).get_permission(permission_id)
    return success_response(PermissionResponse.model_validate(permission))


@router.post(
    "",
    response_model=ApiResponse[PermissionResponse],
    status_code=status.HTTP_201_CREATED,
    summary="Create a permission",
)
async def create_permission(
    request: PermissionCreate,
    context: RequestContext = Depends(require_super_admin),
    db: AsyncSession = Depends(get_async_session),
):
    permission = await PermissionService(db).create_permission(
        request.module, request.action, request.description,
    )
    return success_response(PermissionResponse.model_validate(permission), message="Permission created")


@router.put(
    "/{permission_id}",
    response_model=ApiResponse[PermissionResponse],
    summary="Update a permission's description",
)
async def update_permission(
    permission_id: UUID,
    request: PermissionUpdate,
    context: RequestContext = Depends(require_super_admin),
    db: AsyncSession = Depends(get_async_session),
    resolver: PermissionResolver = Depends(get_permission_resolver),
):
    permission = await PermissionService(db, resolver).update_permission(permission_id, request.description)
    return success_response(PermissionResponse.model_validate(permission), message="Permission updated")


@router.delete(
    "/{permission_id}",
    response_model=ApiResponse[MessageData],
    summary="Delete a permission",
)
async def delete_permission(
    permission_id: UUID,
    context: RequestContext = Depends(require_super_admin),
    db: AsyncSession = Depends(get_async_session),
):
    await PermissionService(db).delete_permission(permission_id)
    return success_response(MessageData(message="Permission deleted"))
