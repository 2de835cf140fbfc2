"""宿主会话令牌：签发、解析与吊销。"""

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from functools import lru_cache
import re
from threading import Lock
from typing import Any
from uuid import uuid4

import jwt
from fastapi import HTTPException, status
from jwt import InvalidTokenError, PyJWKClient
from redis import Redis
from redis.exceptions import RedisError

from sqlauth.core.config import get_settings

UNAUTHORIZED = HTTPException(
    status_code=status.HTTP_401_UNAUTHORIZED,
    detail="unauthorized",
    headers={"WWW-Authenticate": "Bearer"},
)

_LOCAL_BLACKLIST: dict[str, int] = {}
_LOCAL_LOCK = Lock()
_redis_client: Redis | None = None


@dataclass
class AuthenticatedPrincipal:
    """统一认证主体对象。"""

    # 会话主体标识（sub）。
    subject: str
    # 签发来源（认证源 ID 或外部签发方）。
    provider: str
    # 身份属性（属性名 -> 多值列表）。
    attributes: dict[str, list[str]]
    # 原始声明集，便于下游扩展。
    claims: dict[str, Any]

    def identifier(self, attribute: str) -> str | None:
        """取登录标识：优先身份属性（多值取最后一个），其次同名声明。"""
        values = self.attributes.get(attribute)
        if values:
            return values[-1]
        claim = self.claims.get(attribute)
        if isinstance(claim, list) and claim:
            claim = claim[-1]
        if isinstance(claim, str) and claim:
            return claim
        return None


@lru_cache
def _get_jwks_client(jwks_url: str) -> PyJWKClient:
    """缓存密钥集合客户端，减少重复网络开销。"""
    return PyJWKClient(jwks_url)


def issue_access_token(subject: str, provider: str, attributes: dict[str, list[str]]) -> tuple[str, int, datetime]:
    """签发访问令牌，声明中携带身份属性。"""
    settings = get_settings()
    now = datetime.now(timezone.utc)
    expires_at = now + timedelta(seconds=settings.auth_access_token_ttl_seconds)

    claims: dict[str, Any] = {
        "sub": subject,
        "provider": provider,
        "attributes": attributes,
        "iat": int(now.timestamp()),
        "exp": int(expires_at.timestamp()),
        "jti": str(uuid4()),
    }
    if settings.auth_jwt_issuer:
        claims["iss"] = settings.auth_jwt_issuer
    if settings.auth_jwt_audience:
        claims["aud"] = settings.auth_jwt_audience

    token = jwt.encode(claims, settings.auth_jwt_secret, algorithm=settings.auth_algorithms[0])
    return token, int(expires_at.timestamp()), expires_at


def _decode_jwt(token: str) -> dict[str, Any]:
    """按配置解码并校验令牌。"""
    settings = get_settings()
    options = {"verify_signature": True, "verify_aud": bool(settings.auth_jwt_audience)}

    try:
        if settings.auth_jwks_url:
            # 外部身份提供方签发的令牌，支持密钥轮换。
            key = _get_jwks_client(settings.auth_jwks_url).get_signing_key_from_jwt(token).key
        else:
            key = settings.auth_jwt_secret
        return jwt.decode(
            token,
            key=key,
            algorithms=settings.auth_algorithms,
            issuer=settings.auth_jwt_issuer,
            audience=settings.auth_jwt_audience,
            leeway=settings.auth_jwt_leeway_seconds,
            options=options,
        )
    except InvalidTokenError as exc:
        raise UNAUTHORIZED from exc


def _get_redis() -> Redis | None:
    global _redis_client
    settings = get_settings()
    if not settings.redis_url:
        return None
    if _redis_client is None:
        _redis_client = Redis.from_url(settings.redis_url, decode_responses=True)
    return _redis_client


def _key_for_jti(jti: str) -> str:
    return f"{get_settings().auth_token_blacklist_prefix}{jti}"


def _cleanup_local(now_ts: int) -> None:
    expired_keys = [key for key, expires_at in _LOCAL_BLACKLIST.items() if expires_at <= now_ts]
    for key in expired_keys:
        _LOCAL_BLACKLIST.pop(key, None)


def revoke_token_jti(jti: str, exp_ts: int) -> None:
    """将 token jti 拉黑到令牌过期时间。"""
    now_ts = int(datetime.now(timezone.utc).timestamp())
    ttl = max(1, exp_ts - now_ts)
    redis_client = _get_redis()
    if redis_client is not None:
        try:
            redis_client.setex(_key_for_jti(jti), ttl, "1")
            return
        except RedisError:
            # Redis 不可用时回退到本地缓存，保证登出语义尽量可用。
            pass

    with _LOCAL_LOCK:
        _cleanup_local(now_ts)
        _LOCAL_BLACKLIST[jti] = exp_ts


def is_token_jti_revoked(jti: str) -> bool:
    """判断 token jti 是否已被拉黑。"""
    redis_client = _get_redis()
    if redis_client is not None:
        try:
            return bool(redis_client.exists(_key_for_jti(jti)))
        except RedisError:
            pass

    now_ts = int(datetime.now(timezone.utc).timestamp())
    with _LOCAL_LOCK:
        _cleanup_local(now_ts)
        expires_at = _LOCAL_BLACKLIST.get(jti)
        return expires_at is not None and expires_at > now_ts


def reset_local_revocations() -> None:
    """清空本地黑名单与 Redis 客户端缓存。"""
    global _redis_client
    with _LOCAL_LOCK:
        _LOCAL_BLACKLIST.clear()
    _redis_client = None


def _extract_bearer_token(authorization: str | None) -> str:
    """从 Authorization 头中提取 Bearer token，兼容重复头被逗号拼接的场景。"""
    if not authorization:
        raise UNAUTHORIZED
    tokens = [token.strip() for token in re.findall(r"Bearer\s+([^,\s]+)", authorization, flags=re.IGNORECASE)]
    tokens = [token for token in tokens if token]
    if not tokens:
        raise UNAUTHORIZED
    return tokens[-1]


def _normalize_attributes(raw: object) -> dict[str, list[str]]:
    """声明中的属性统一为“属性名 -> 字符串列表”。"""
    if not isinstance(raw, dict):
        return {}
    attributes: dict[str, list[str]] = {}
    for name, values in raw.items():
        if isinstance(values, (list, tuple)):
            attributes[str(name)] = [str(value) for value in values]
        elif values is not None:
            attributes[str(name)] = [str(values)]
    return attributes


def parse_authorization_header(authorization: str | None) -> AuthenticatedPrincipal:
    """解析认证头并返回认证主体。"""
    token = _extract_bearer_token(authorization)
    claims = _decode_jwt(token)

    jti = claims.get("jti")
    if isinstance(jti, str) and jti and is_token_jti_revoked(jti):
        raise UNAUTHORIZED

    subject = str(claims.get("sub") or "").strip()
    if not subject:
        raise UNAUTHORIZED

    provider = claims.get("provider")
    issuer = str(provider if isinstance(provider, str) and provider else (claims.get("iss") or "jwt"))

    return AuthenticatedPrincipal(
        subject=subject,
        provider=issuer,
        attributes=_normalize_attributes(claims.get("attributes")),
        claims=claims,
    )
