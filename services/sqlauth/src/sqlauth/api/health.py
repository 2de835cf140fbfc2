"""健康检查接口。"""

from fastapi import APIRouter, Depends, Request, status

from sqlauth.core.config import get_settings
from sqlauth.dependencies import get_verifier_registry
from sqlauth.schemas.common import ErrorResponse, SuccessResponse
from sqlauth.schemas.passcode import HealthStatusData
from sqlauth.services.verifier import VerifierRegistry
from sqlauth.utils.response import success

router = APIRouter(prefix="/health", tags=["health"])


@router.get(
    "/live",
    summary="存活探针",
    status_code=status.HTTP_200_OK,
    response_model=SuccessResponse[HealthStatusData],
)
def live(request: Request):
    """仅表示进程存活，不校验外部依赖。"""
    return success(request, {"status": "ok"})


@router.get(
    "/ready",
    summary="就绪探针",
    description="检测重置流程所用认证源的数据库连通性。",
    status_code=status.HTTP_200_OK,
    response_model=SuccessResponse[HealthStatusData],
    responses={503: {"model": ErrorResponse}},
)
def ready(request: Request, registry: VerifierRegistry = Depends(get_verifier_registry)):
    """执行轻量探活语句验证数据库可用。"""
    registry.get(get_settings().authsource).store.ping()
    return success(request, {"status": "ready"})
