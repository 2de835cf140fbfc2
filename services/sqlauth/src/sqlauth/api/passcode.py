"""口令重置接口。

调用方已由宿主会话认证；登录标识取自会话属性 `user_identifier`。
"""

from fastapi import APIRouter, Depends, Request, status

from sqlauth.dependencies import get_passcode_delivery, get_reset_service, get_session_uid
from sqlauth.schemas.common import ErrorResponse, SuccessResponse
from sqlauth.schemas.passcode import AccountOverviewData, PasscodeResetData
from sqlauth.services.mailer import PasscodeDelivery
from sqlauth.services.passcode import PasscodeResetService
from sqlauth.utils.response import success

router = APIRouter(prefix="/passcode", tags=["passcode"])


@router.get(
    "/",
    summary="账号概览",
    description="返回当前身份的 uid、最近登录时间、口令设置时间与联系邮箱。",
    status_code=status.HTTP_200_OK,
    response_model=SuccessResponse[AccountOverviewData],
    responses={401: {"model": ErrorResponse}, 404: {"model": ErrorResponse}, 503: {"model": ErrorResponse}},
)
def overview(
    request: Request,
    uid: str = Depends(get_session_uid),
    service: PasscodeResetService = Depends(get_reset_service),
):
    """账号概览。"""
    return success(request, service.account_overview(uid))


@router.post(
    "/reset",
    summary="重置为一次性口令",
    description="生成 6 位数字口令覆盖原口令，并投递到账号联系邮箱。该操作非幂等。",
    status_code=status.HTTP_200_OK,
    response_model=SuccessResponse[PasscodeResetData],
    responses={401: {"model": ErrorResponse}, 404: {"model": ErrorResponse}, 503: {"model": ErrorResponse}},
)
def reset(
    request: Request,
    uid: str = Depends(get_session_uid),
    service: PasscodeResetService = Depends(get_reset_service),
    delivery: PasscodeDelivery = Depends(get_passcode_delivery),
):
    """签发新口令并投递。"""
    issue = service.reset(uid)
    delivery.send(issue.mail, issue.passcode)
    return success(request, {"uid": issue.uid, "mail": issue.mail, "passcode": issue.passcode})
