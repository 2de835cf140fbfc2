"""认证接口。"""

from datetime import datetime, timezone

from fastapi import APIRouter, Depends, Request, status

from sqlauth.core.security import AuthenticatedPrincipal, issue_access_token, revoke_token_jti
from sqlauth.dependencies import get_current_principal, get_verifier_registry
from sqlauth.schemas.auth import AuthLoginData, AuthLoginRequest, AuthLogoutData
from sqlauth.schemas.common import ErrorResponse, SuccessResponse
from sqlauth.services.verifier import VerifierRegistry
from sqlauth.utils.response import success

router = APIRouter(prefix="/auth", tags=["auth"])


@router.post(
    "/{auth_id}/login",
    summary="账号表登录",
    description="使用指定认证源校验用户名口令，返回携带身份属性的 Bearer 访问令牌。",
    status_code=status.HTTP_200_OK,
    response_model=SuccessResponse[AuthLoginData],
    responses={
        401: {"model": ErrorResponse},
        404: {"model": ErrorResponse},
        503: {"model": ErrorResponse},
    },
)
def login(
    auth_id: str,
    payload: AuthLoginRequest,
    request: Request,
    registry: VerifierRegistry = Depends(get_verifier_registry),
):
    """校验凭据并签发访问令牌。"""
    verifier = registry.get(auth_id)
    attributes = verifier.authenticate(payload.username, payload.password)
    subject = attributes.get("uid", [payload.username])[0]

    token, exp_ts, expires_at = issue_access_token(subject, auth_id, attributes)
    return success(
        request,
        {
            "access_token": token,
            "token_type": "bearer",
            "expires_at": expires_at,
            "expires_in": max(0, exp_ts - int(datetime.now(timezone.utc).timestamp())),
            "attributes": attributes,
        },
    )


@router.post(
    "/logout",
    summary="登出",
    description="将当前访问令牌加入黑名单（优先 Redis），已登出的 token 立即失效。",
    status_code=status.HTTP_200_OK,
    response_model=SuccessResponse[AuthLogoutData],
    responses={401: {"model": ErrorResponse}},
)
def logout(request: Request, principal: AuthenticatedPrincipal = Depends(get_current_principal)):
    """登出并拉黑当前访问令牌。"""
    jti = principal.claims.get("jti")
    exp = principal.claims.get("exp")
    revoked = False
    if isinstance(jti, str) and jti and isinstance(exp, int):
        revoke_token_jti(jti, exp)
        revoked = True

    return success(request, {"logged_out": True, "revoked": revoked})
