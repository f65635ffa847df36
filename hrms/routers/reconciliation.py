"""
HRMS Core - Payment Reconciliation Router

Bank statement vs payroll payment reconciliation. Every route requires one
of the admin, finance or accounts tags; non-super-admins only ever see their
own company's runs.
"""

from datetime import date
from typing import Literal, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query, status
from fastapi.responses import JSONResponse, StreamingResponse
from fastapi.encoders import jsonable_encoder
from sqlalchemy.ext.asyncio import AsyncSession

from hrms.config import settings
from hrms.database import get_async_session
from hrms.dependencies import require_roles
from hrms.models.reconciliation import ReconciliationStatus
from hrms.models.user import UserRole
from hrms.schemas.common import ApiResponse, PaginatedResponse
from hrms.schemas.reconciliation import (
    AutoMatchRequest,
    AutoMatchResponse,
    ReconciliationCreate,
    ReconciliationDetailResponse,
    ReconciliationItemResponse,
    ReconciliationResponse,
    ReconciliationStatsResponse,
    ResolveRequest,
)
from hrms.services.authorization import RequestContext
from hrms.services.reconciliation_service import ReconciliationService
from hrms.utils.response import paginated_response, success_response


router = APIRouter()

reconciliation_access = require_roles(
    UserRole.ADMIN.value,
    UserRole.FINANCE.value,
    UserRole.ACCOUNTS.value,
)


@router.post(
    "",
    response_model=ApiResponse[ReconciliationDetailResponse],
    status_code=status.HTTP_201_CREATED,
    summary="Run a reconciliation",
    description="Match bank lines against the cycle's expected payments and store the result.",
)
async def create_reconciliation(
    request: ReconciliationCreate,
    context: RequestContext = Depends(reconciliation_access),
    db: AsyncSession = Depends(get_async_session),
):
    record = await ReconciliationService(db).create_reconciliation(
        context,
        payroll_cycle_id=request.payroll_cycle_id,
        bank_data=request.bank_data,
        erp_data=request.erp_data,
        reconciliation_date=request.reconciliation_date,
    )
    return success_response(
        ReconciliationDetailResponse.model_validate(record),
        message="Reconciliation completed",
    )


@router.get(
    "",
    response_model=PaginatedResponse[ReconciliationResponse],
    summary="List reconciliations",
)
async def list_reconciliations(
    company_id: Optional[UUID] = Query(None, description="Ignored for non-super-admins"),
    payroll_cycle_id: Optional[UUID] = Query(None),
    status_filter: Optional[ReconciliationStatus] = Query(None, alias="status"),
    start_date: Optional[date] = Query(None),
    end_date: Optional[date] = Query(None),
    page: int = Query(1, ge=1),
    limit: int = Query(settings.default_page_size, ge=1, le=settings.max_page_size),
    context: RequestContext = Depends(reconciliation_access),
    db: AsyncSession = Depends(get_async_session),
):
    records, total = await ReconciliationService(db).list_reconciliations(
        context,
        company_id=company_id,
        payroll_cycle_id=payroll_cycle_id,
        status=status_filter,
        start_date=start_date,
        end_date=end_date,
        page=page,
        limit=limit,
    )
    return paginated_response(
        [ReconciliationResponse.model_validate(r) for r in records], total, page, limit,
    )


@router.get(
    "/stats",
    response_model=ApiResponse[ReconciliationStatsResponse],
    summary="Reconciliation statistics",
)
async def get_reconciliation_stats(
    company_id: Optional[UUID] = Query(None, description="Ignored for non-super-admins"),
    start_date: Optional[date] = Query(None),
    end_date: Optional[date] = Query(None),
    context: RequestContext = Depends(reconciliation_access),
    db: AsyncSession = Depends(get_async_session),
):
    stats = await ReconciliationService(db).get_stats(
        context, company_id=company_id, start_date=start_date, end_date=end_date,
    )
    return success_response(ReconciliationStatsResponse(**stats))


@router.post(
    "/auto-match",
    response_model=ApiResponse[AutoMatchResponse],
    summary="Dry-run the matcher",
    description="Classify bank lines against the cycle's payslips without storing anything.",
)
async def auto_match(
    request: AutoMatchRequest,
    context: RequestContext = Depends(reconciliation_access),
    db: AsyncSession = Depends(get_async_session),
):
    preview = await ReconciliationService(db).preview_auto_match(
        context, request.payroll_cycle_id, request.bank_data,
    )
    return success_response(AutoMatchResponse(**preview))


@router.post(
    "/items/{item_id}/resolve",
    response_model=ApiResponse[ReconciliationItemResponse],
    summary="Resolve a discrepancy",
)
async def resolve_item(
    item_id: UUID,
    request: ResolveRequest,
    context: RequestContext = Depends(reconciliation_access),
    db: AsyncSession = Depends(get_async_session),
):
    item = await ReconciliationService(db).resolve_item(
        context, item_id, request.resolution, request.remarks,
    )
    return success_response(ReconciliationItemResponse.model_validate(item), message="Item resolved")


@router.get(
    "/{reconciliation_id}",
    response_model=ApiResponse[ReconciliationDetailResponse],
    summary="Get a reconciliation with its items",
)
async def get_reconciliation(
    reconciliation_id: UUID,
    context: RequestContext = Depends(reconciliation_access),
    db: AsyncSession = Depends(get_async_session),
):
    record = await ReconciliationService(db).get_reconciliation(context, reconciliation_id)
    return success_response(ReconciliationDetailResponse.model_validate(record))


@router.get(
    "/{reconciliation_id}/export",
    summary="Export a reconciliation",
    description="JSON summary with items, or the items as a CSV attachment.",
)
async def export_reconciliation(
    reconciliation_id: UUID,
    format: Literal["json", "csv"] = Query("json"),
    context: RequestContext = Depends(reconciliation_access),
    db: AsyncSession = Depends(get_async_session),
):
    service = ReconciliationService(db)
    record = await service.get_reconciliation(context, reconciliation_id)

    if format == "csv":
        filename, content = service.export_csv(record)
        return StreamingResponse(
            iter([content]),
            media_type="text/csv",
            headers={"Content-Disposition": f"attachment; filename={filename}"},
        )

    return JSONResponse(content=jsonable_encoder(success_response(service.export_json(record))))
