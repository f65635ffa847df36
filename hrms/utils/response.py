"""
HRMS Core - Response Helpers

Builders for the success envelope. Errors are enveloped by the exception
handlers in hrms.utils.error_handling.
"""

import math
from typing import Any, Optional, Sequence

from hrms.schemas.common import ApiResponse, PaginatedResponse, PaginationMeta


def build_pagination_meta(total: int, page: int, limit: int) -> PaginationMeta:
    total_pages = math.ceil(total / limit) if limit else 0
    return PaginationMeta(
        page=page,
        limit=limit,
        total=total,
        total_pages=total_pages,
        has_next=page < total_pages,
        has_prev=page > 1,
    )


def success_response(data: Any = None, message: Optional[str] = None) -> ApiResponse:
    return ApiResponse(success=True, message=message, data=data)


def paginated_response(
    items: Sequence[Any],
    total: int,
    page: int,
    limit: int,
    message: Optional[str] = None,
) -> PaginatedResponse:
    return PaginatedResponse(
        success=True,
        message=message,
        data=list(items),
        meta=build_pagination_meta(total, page, limit),
    )
