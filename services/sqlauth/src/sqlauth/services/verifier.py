"""基于数据库账号表的口令认证源。

流程:
1) 按 uid 查询账号行（用户名始终作为绑定参数）
2) 必须恰好命中一行，且 password 非空
3) 恒定时间校验口令哈希
4) 可选回写 last_logon（必须恰好影响一行）
5) 以多值属性映射返回身份属性
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from datetime import date, datetime
from typing import Any

from sqlalchemy.engine import Engine

from sqlauth.db.connection import (
    ConnectionConfig,
    ConnectionMode,
    build_engine,
    quote_table_name,
    resolve_connection_config,
    substitute_table_name,
)
from sqlauth.db.store import SqlStore
from sqlauth.exceptions import ConfigurationError, InfrastructureError, InvalidCredentials, NotFound
from sqlauth.services.passwords import verify_password

logger = logging.getLogger("sqlauth")

UserAttributes = dict[str, list[str]]

SELECT_TEMPLATE = "SELECT * FROM :tablename WHERE uid = :username"
UPDATE_LAST_LOGON_TEMPLATE = "UPDATE :tablename SET last_logon = CURRENT_TIMESTAMP WHERE uid = :username"
RESET_TEMPLATE = (
    "UPDATE :tablename SET password = :password, password_last_set = CURRENT_TIMESTAMP WHERE uid = :username"
)

# 不随身份属性返回的列。
_HIDDEN_COLUMNS = frozenset({"password"})


@dataclass(frozen=True)
class QuerySet:
    """已替换表名的语句集合。"""

    select: str
    update_last_logon: str
    reset: str


def _build_queries(engine: Engine, config: ConnectionConfig) -> QuerySet:
    quoted = quote_table_name(engine, config.tablename)
    if config.mode is ConnectionMode.CUSTOM_QUERY:
        select, update = config.query, config.update_query
    else:
        select, update = SELECT_TEMPLATE, UPDATE_LAST_LOGON_TEMPLATE
    return QuerySet(
        select=substitute_table_name(select, quoted),
        update_last_logon=substitute_table_name(update, quoted),
        reset=substitute_table_name(config.reset_query or RESET_TEMPLATE, quoted),
    )


def _attribute_value(value: Any) -> str:
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, (bytes, bytearray)):
        return bytes(value).decode("utf-8", errors="replace")
    return str(value)


def to_attributes(row: Mapping[str, Any]) -> UserAttributes:
    """将账号行转为多值属性映射（口令列与空值不输出）。"""
    return {
        column: [_attribute_value(value)]
        for column, value in row.items()
        if column not in _HIDDEN_COLUMNS and value is not None
    }


class CredentialVerifier:
    """口令认证源。调用之间不保留任何状态。"""

    def __init__(
        self,
        auth_id: str,
        config: Mapping[str, Any] | ConnectionConfig,
        *,
        update_last_logon: bool = True,
        shared_engine: Engine | None = None,
    ) -> None:
        if not isinstance(update_last_logon, bool):
            raise ConfigurationError(f"update_last_logon for authentication source {auth_id} must be a boolean")

        self.auth_id = auth_id
        self.config = resolve_connection_config(auth_id, config)
        self.update_last_logon = update_last_logon

        if self.config.mode is ConnectionMode.SHARED_POOL:
            if shared_engine is None:
                raise ConfigurationError(f"authentication source {auth_id} requires a shared database engine")
            engine = shared_engine
        else:
            engine = build_engine(auth_id, self.config)

        self.store = SqlStore(engine, label=f"sqlauth:{auth_id}")
        self.queries = _build_queries(engine, self.config)

    @property
    def mode(self) -> ConnectionMode:
        return self.config.mode

    def _fetch(self, username: str) -> list[dict[str, Any]]:
        rows = self.store.read(self.queries.select, {"username": username})
        logger.debug("sqlauth:%s: got %d rows from database", self.auth_id, len(rows))
        return rows

    def authenticate(self, username: str, password: str) -> UserAttributes:
        """校验用户名口令并返回身份属性。

        任何拒绝原因都抛出同一个 InvalidCredentials；存储故障抛出
        InfrastructureError，调用方应视为“稍后重试”而非“凭据错误”。
        """
        if not isinstance(username, str) or not isinstance(password, str) or not username or not password:
            logger.error("sqlauth:%s: empty username or password", self.auth_id)
            raise InvalidCredentials()

        rows = self._fetch(username)
        if len(rows) != 1:
            # 无记录或多条记录均按用户名错误处理。
            logger.error("sqlauth:%s: wrong username given", self.auth_id)
            raise InvalidCredentials()

        row = rows[0]
        stored_hash = row.get("password")
        if stored_hash is None:
            logger.error("sqlauth:%s: no password", self.auth_id)
            raise InvalidCredentials()
        if isinstance(stored_hash, (bytes, bytearray)):
            stored_hash = bytes(stored_hash).decode("ascii", errors="replace")

        if not verify_password(password, str(stored_hash)):
            logger.error("sqlauth:%s: incorrect password", self.auth_id)
            raise InvalidCredentials()

        if self.update_last_logon:
            affected = self.store.write(self.queries.update_last_logon, {"username": username})
            if affected != 1:
                raise InfrastructureError(
                    f"sqlauth:{self.auth_id}: updating last_logon affected {affected} rows, expected 1"
                )

        logger.info("sqlauth:%s: authenticated uid=%s", self.auth_id, row.get("uid", username))
        return to_attributes(row)

    def get_attributes(self, uid: str) -> UserAttributes | None:
        """查询已认证身份的属性，不校验口令。

        未命中唯一记录时只记录日志并返回 None，不抛出异常。
        """
        rows = self._fetch(uid)
        if len(rows) != 1:
            logger.error("sqlauth:%s: wrong username given uid=%s rows=%d", self.auth_id, uid, len(rows))
            return None
        return to_attributes(rows[0])

    def require_attributes(self, uid: str) -> UserAttributes:
        """同 get_attributes，未命中时抛出 NotFound。"""
        attributes = self.get_attributes(uid)
        if attributes is None:
            raise NotFound(f"no unique account for uid {uid!r}")
        return attributes

    def store_password_hash(self, uid: str, password_hash: str) -> None:
        """整体覆盖口令哈希并刷新 password_last_set，必须恰好影响一行。"""
        affected = self.store.write(self.queries.reset, {"username": uid, "password": password_hash})
        if affected != 1:
            raise InfrastructureError(
                f"sqlauth:{self.auth_id}: updating the password affected {affected} rows, expected 1"
            )


class VerifierRegistry:
    """进程内认证源表（认证源 ID -> CredentialVerifier），启动时一次性构建。"""

    def __init__(
        self,
        authsources: Mapping[str, Mapping[str, Any]],
        *,
        update_last_logon: bool = True,
        shared_engine_factory: Callable[[], Engine] | None = None,
    ) -> None:
        self._verifiers: dict[str, CredentialVerifier] = {}
        for auth_id, raw in authsources.items():
            config = resolve_connection_config(auth_id, raw)
            shared_engine = None
            if config.mode is ConnectionMode.SHARED_POOL:
                if shared_engine_factory is None:
                    raise ConfigurationError(f"authentication source {auth_id} requires a shared database engine")
                shared_engine = shared_engine_factory()
            self._verifiers[auth_id] = CredentialVerifier(
                auth_id,
                config,
                update_last_logon=update_last_logon,
                shared_engine=shared_engine,
            )

    def __contains__(self, auth_id: object) -> bool:
        return auth_id in self._verifiers

    def get(self, auth_id: str) -> CredentialVerifier:
        """按 ID 取认证源，未配置时抛出 NotFound。"""
        try:
            return self._verifiers[auth_id]
        except KeyError:
            raise NotFound(f"unknown authentication source {auth_id!r}") from None
