"""
HRMS Core - Authentication Router

API endpoints for user authentication.
"""

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from hrms.database import get_async_session
from hrms.dependencies import get_permission_resolver, get_request_context
from hrms.schemas.auth import (
    CurrentUserResponse,
    LoginResponse,
    PermissionCodesResponse,
    TokenRefreshRequest,
    TokenResponse,
    UserLoginRequest,
    UserResponse,
)
from hrms.schemas.common import ApiResponse, MessageData
from hrms.services.auth_service import AuthService
from hrms.services.authorization import RequestContext
from hrms.services.permission_cache import PermissionResolver
from hrms.utils.error_handling import AuthenticationException
from hrms.utils.response import success_response


router = APIRouter()


def _token_response(pair) -> TokenResponse:
    return TokenResponse(
        access_token=pair.access_token,
        refresh_token=pair.refresh_token,
        token_type=pair.token_type,
        expires_in=pair.expires_in,
    )


@router.post(
    "/login",
    response_model=ApiResponse[LoginResponse],
    summary="Login",
    description="Authenticate with email and password. Failed attempts are rate limited.",
)
async def login(
    request: UserLoginRequest,
    db: AsyncSession = Depends(get_async_session),
):
    auth_service = AuthService(db)
    user, pair = await auth_service.login(request.email, request.password)

    return success_response(
        LoginResponse(user=UserResponse.model_validate(user), tokens=_token_response(pair)),
        message="Login successful",
    )


@router.post(
    "/refresh",
    response_model=ApiResponse[TokenResponse],
    summary="Refresh tokens",
)
async def refresh_token(
    request: TokenRefreshRequest,
    db: AsyncSession = Depends(get_async_session),
):
    auth_service = AuthService(db)
    pair = await auth_service.refresh(request.refresh_token)
    return success_response(_token_response(pair), message="Token refreshed")


@router.post(
    "/logout",
    response_model=ApiResponse[MessageData],
    summary="Logout",
    description="Tokens are stateless; logout drops the caller's cached permissions.",
)
async def logout(
    context: RequestContext = Depends(get_request_context),
    resolver: PermissionResolver = Depends(get_permission_resolver),
):
    await resolver.invalidate_users([context.user_id])
    return success_response(MessageData(message="Logged out successfully"))


@router.get(
    "/me",
    response_model=ApiResponse[CurrentUserResponse],
    summary="Get current user",
)
async def get_me(
    context: RequestContext = Depends(get_request_context),
    db: AsyncSession = Depends(get_async_session),
    resolver: PermissionResolver = Depends(get_permission_resolver),
):
    user = await AuthService(db).get_user_by_id(context.user_id)
    if user is None:
        raise AuthenticationException("User not found or inactive")

    permissions = await resolver.resolve(context.user_id)
    profile = CurrentUserResponse.model_validate(user).model_copy(
        update={"permissions": sorted(permissions)}
    )
    return success_response(profile)


@router.get(
    "/permissions",
    response_model=ApiResponse[PermissionCodesResponse],
    summary="Get current user's permission codes",
)
async def get_my_permissions(
    context: RequestContext = Depends(get_request_context),
    resolver: PermissionResolver = Depends(get_permission_resolver),
):
    permissions = await resolver.resolve(context.user_id)
    return success_response(
        PermissionCodesResponse(
            user_id=context.user_id,
            is_super_admin=context.is_super_admin,
            permissions=sorted(permissions),
        )
    )
