"""请求依赖。

职责:
1. 启动期一次性构建认证源表（配置错误在此处中止启动）。
2. 解析访问令牌并取出会话中的登录标识。
3. 为路由提供重置服务与投递协作方。
"""

from functools import lru_cache

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from sqlauth.core.config import get_settings
from sqlauth.core.security import AuthenticatedPrincipal, parse_authorization_header
from sqlauth.db.session import get_shared_engine
from sqlauth.services.mailer import PasscodeDelivery, SmtpPasscodeMailer
from sqlauth.services.passcode import PasscodeResetService
from sqlauth.services.verifier import VerifierRegistry

bearer_scheme = HTTPBearer(auto_error=False)


@lru_cache
def get_verifier_registry() -> VerifierRegistry:
    """返回进程级认证源表。"""
    settings = get_settings()
    return VerifierRegistry(
        settings.authsources,
        update_last_logon=settings.update_last_logon,
        shared_engine_factory=get_shared_engine,
    )


def get_reset_service(registry: VerifierRegistry = Depends(get_verifier_registry)) -> PasscodeResetService:
    """重置流程绑定到 `authsource` 指定的认证源。"""
    settings = get_settings()
    return PasscodeResetService(
        registry.get(settings.authsource),
        algorithm=settings.algorithm,
        iterations=settings.password_hash_iterations,
    )


def get_passcode_delivery() -> PasscodeDelivery:
    """返回口令投递协作方（默认 SMTP）。"""
    return SmtpPasscodeMailer(get_settings())


def get_current_principal(
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
) -> AuthenticatedPrincipal:
    """解析当前请求的会话主体。"""
    authorization = f"{credentials.scheme} {credentials.credentials}" if credentials else None
    return parse_authorization_header(authorization)


def get_session_uid(principal: AuthenticatedPrincipal = Depends(get_current_principal)) -> str:
    """从会话属性中取登录标识，缺失时视为未认证。"""
    attribute = get_settings().user_identifier
    uid = principal.identifier(attribute)
    if not uid:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail={
                "code": "AUTH_IDENTIFIER_MISSING",
                "message": "会话中缺少登录标识属性。",
                "attribute": attribute,
            },
        )
    return uid
