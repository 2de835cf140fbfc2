"""异常分类与应用异常处理注册。"""

import logging

from fastapi import FastAPI, HTTPException, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from sqlauth.utils.response import DEFAULT_ERROR_MESSAGE, error_payload

logger = logging.getLogger("sqlauth")


class SqlAuthError(Exception):
    """认证模块异常基类。"""


class ConfigurationError(SqlAuthError):
    """配置缺失或类型错误，构造阶段即失败。"""


class InfrastructureError(SqlAuthError):
    """存储或传输层故障（连接、执行、影响行数异常等）。"""


class InvalidCredentials(SqlAuthError):
    """用户名或口令错误。

    不区分具体原因（用户不存在、口令为空、校验失败），避免账号枚举。
    """

    code = "WRONGUSERPASS"

    def __init__(self) -> None:
        super().__init__(self.code)


class NotFound(SqlAuthError):
    """已认证身份的属性查询未命中唯一记录。"""


def _default_http_error_code(status_code: int) -> str:
    if status_code == status.HTTP_400_BAD_REQUEST:
        return "BAD_REQUEST"
    if status_code == status.HTTP_401_UNAUTHORIZED:
        return "UNAUTHORIZED"
    if status_code == status.HTTP_403_FORBIDDEN:
        return "FORBIDDEN"
    if status_code == status.HTTP_404_NOT_FOUND:
        return "NOT_FOUND"
    return "HTTP_ERROR"


def _default_http_message(status_code: int) -> str:
    if status_code == status.HTTP_400_BAD_REQUEST:
        return "请求参数不合法。"
    if status_code == status.HTTP_401_UNAUTHORIZED:
        return "未登录或登录状态已失效。"
    if status_code == status.HTTP_403_FORBIDDEN:
        return "无权限访问该资源。"
    if status_code == status.HTTP_404_NOT_FOUND:
        return "请求资源不存在。"
    return "请求处理失败。"


def _parse_http_detail(detail: object, status_code: int) -> tuple[str, str, dict[str, object]]:
    code = _default_http_error_code(status_code)
    message = _default_http_message(status_code)
    details: dict[str, object] = {"status_code": status_code, "reason": code.lower()}

    if isinstance(detail, dict):
        code = str(detail.get("code") or code)
        message = str(detail.get("message") or message)
        for key, value in detail.items():
            if key not in {"code", "message"}:
                details[key] = value
        return code, message, details

    if detail is not None:
        details["detail"] = detail
    return code, message, details


async def http_exception_handler(request: Request, exc: HTTPException):
    """将协议异常统一包装为标准错误结构。"""
    code, message, details = _parse_http_detail(exc.detail, exc.status_code)
    return JSONResponse(
        status_code=exc.status_code,
        content=error_payload(request, code=code, message=message, details=details),
        headers=getattr(exc, "headers", None),
    )


async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """统一处理请求参数校验错误。"""
    normalized_errors = [
        {
            "field": ".".join(str(item) for item in err.get("loc", []) if item != "body"),
            "message": err.get("msg"),
            "type": err.get("type"),
        }
        for err in exc.errors()
    ]
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_CONTENT,
        content=error_payload(
            request,
            code="VALIDATION_ERROR",
            message="请求参数校验失败。",
            details={"status_code": status.HTTP_422_UNPROCESSABLE_CONTENT, "errors": normalized_errors},
        ),
    )


async def invalid_credentials_handler(request: Request, exc: InvalidCredentials):
    """登录失败统一返回同一错误码，不暴露具体原因。"""
    return JSONResponse(
        status_code=status.HTTP_401_UNAUTHORIZED,
        content=error_payload(
            request,
            code=InvalidCredentials.code,
            message="用户名或口令错误。",
            details={"status_code": status.HTTP_401_UNAUTHORIZED},
        ),
    )


async def not_found_handler(request: Request, exc: NotFound):
    """已认证身份在存储中无唯一记录。"""
    return JSONResponse(
        status_code=status.HTTP_404_NOT_FOUND,
        content=error_payload(
            request,
            code="NOT_FOUND",
            message=str(exc) or _default_http_message(status.HTTP_404_NOT_FOUND),
            details={"status_code": status.HTTP_404_NOT_FOUND},
        ),
    )


async def infrastructure_error_handler(request: Request, exc: InfrastructureError):
    """存储/投递故障：记录上下文，对外只返回通用提示。"""
    logger.error(
        "infrastructure failure method=%s path=%s error=%s",
        request.method,
        request.url.path,
        exc,
        exc_info=exc,
    )
    return JSONResponse(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        content=error_payload(
            request,
            code="SERVICE_UNAVAILABLE",
            message="服务暂时不可用。",
            details={
                "status_code": status.HTTP_503_SERVICE_UNAVAILABLE,
                "suggestion": "请稍后重试，若持续失败请联系管理员并提供 request_id。",
            },
        ),
    )


async def unexpected_exception_handler(request: Request, exc: Exception):
    """处理未捕获异常（含运行期配置错误），避免内部细节泄露。"""
    logger.error("unexpected failure method=%s path=%s", request.method, request.url.path, exc_info=exc)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=error_payload(
            request,
            code="INTERNAL_ERROR",
            message=DEFAULT_ERROR_MESSAGE,
            details={"status_code": status.HTTP_500_INTERNAL_SERVER_ERROR, "reason": "unexpected_exception"},
        ),
    )


def register_exception_handlers(app: FastAPI) -> None:
    """集中注册异常处理器。"""
    app.exception_handler(HTTPException)(http_exception_handler)
    app.exception_handler(RequestValidationError)(validation_exception_handler)
    app.exception_handler(InvalidCredentials)(invalid_credentials_handler)
    app.exception_handler(NotFound)(not_found_handler)
    app.exception_handler(InfrastructureError)(infrastructure_error_handler)
    app.exception_handler(Exception)(unexpected_exception_handler)
