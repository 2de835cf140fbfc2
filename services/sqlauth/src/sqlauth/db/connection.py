"""认证源连接配置解析。

同一认证能力的三种互斥部署形态：
1. shared_pool: 无连接参数，复用进程级共享引擎。
2. direct_dsn: 显式 dsn/username/password/options，每次调用新建连接。
3. custom_query: 在 direct_dsn 基础上自定义 query/update_query 模板。

形态由出现的可选字段决定，构造时一次性校验完成。
"""

from __future__ import annotations

import logging
import re
from collections.abc import Mapping
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, StrictStr, ValidationError, model_validator
from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.exc import ArgumentError
from sqlalchemy.pool import NullPool

from sqlauth.exceptions import ConfigurationError

logger = logging.getLogger("sqlauth")

# 表名无法作为绑定参数，只允许简单标识符（可带一级 schema）。
_IDENTIFIER_PATTERN = re.compile(r"[A-Za-z_][A-Za-z0-9_]*(\.[A-Za-z_][A-Za-z0-9_]*)?")
_TABLENAME_PLACEHOLDER = re.compile(r":tablename\b")

# 连接建立后按方言设置字符集。
_CHARSET_STATEMENTS = {
    "mysql": "SET NAMES utf8mb4",
    "mariadb": "SET NAMES utf8mb4",
    "postgresql": "SET client_encoding TO 'UTF8'",
    "sqlite": "PRAGMA encoding = 'UTF-8'",
}


class ConnectionMode(str, Enum):
    """连接部署形态。"""

    SHARED_POOL = "shared_pool"
    DIRECT_DSN = "direct_dsn"
    CUSTOM_QUERY = "custom_query"


class ConnectionConfig(BaseModel):
    """认证源连接配置（带标签的变体）。"""

    model_config = ConfigDict(extra="ignore", frozen=True)

    dsn: StrictStr | None = Field(default=None, description="数据库连接地址（SQLAlchemy URL）。")
    username: StrictStr | None = Field(default=None, description="数据库登录用户名。")
    password: StrictStr | None = Field(default=None, description="数据库登录口令。")
    options: dict[str, Any] | None = Field(default=None, description="驱动连接参数。")
    tablename: StrictStr = Field(description="账号表名。")
    query: StrictStr | None = Field(default=None, description="自定义查询模板。")
    update_query: StrictStr | None = Field(default=None, description="自定义 last_logon 更新模板。")
    reset_query: StrictStr | None = Field(default=None, description="自定义口令重置模板。")

    @model_validator(mode="after")
    def check_shape(self) -> "ConnectionConfig":
        """按出现的字段判定部署形态，并校验该形态的必填项。"""
        if not _IDENTIFIER_PATTERN.fullmatch(self.tablename):
            raise ValueError(f"tablename {self.tablename!r} is not a simple identifier")
        if self.reset_query is not None and not self.reset_query.strip():
            raise ValueError("'reset_query' must be a non-empty string")

        mode = self.mode
        if mode is ConnectionMode.SHARED_POOL:
            extras = [name for name in ("username", "password", "options") if getattr(self, name) is not None]
            if extras:
                raise ValueError(f"'dsn' is required when {', '.join(extras)} is configured")
            return self

        if not self.dsn:
            raise ValueError("'dsn' must be a non-empty string")
        for name in ("username", "password"):
            if getattr(self, name) is None:
                raise ValueError(f"missing required field '{name}'")

        if mode is ConnectionMode.CUSTOM_QUERY:
            for name in ("query", "update_query"):
                value = getattr(self, name)
                if value is None or not value.strip():
                    raise ValueError(f"'{name}' must be a non-empty string")
        return self

    @property
    def mode(self) -> ConnectionMode:
        if self.query is not None or self.update_query is not None:
            return ConnectionMode.CUSTOM_QUERY
        if self.dsn is not None:
            return ConnectionMode.DIRECT_DSN
        return ConnectionMode.SHARED_POOL


def _format_validation_error(exc: ValidationError) -> str:
    parts = []
    for err in exc.errors():
        location = ".".join(str(item) for item in err.get("loc", ()))
        message = str(err.get("msg", "")).removeprefix("Value error, ")
        parts.append(f"{location}: {message}" if location else message)
    return "; ".join(parts)


def resolve_connection_config(auth_id: str, raw: Mapping[str, Any] | ConnectionConfig) -> ConnectionConfig:
    """将原始键值配置解析为连接配置，失败时抛出配置错误。"""
    if isinstance(raw, ConnectionConfig):
        return raw
    if not isinstance(raw, Mapping):
        raise ConfigurationError(f"configuration for authentication source {auth_id} must be a mapping")
    try:
        return ConnectionConfig.model_validate(dict(raw))
    except ValidationError as exc:
        raise ConfigurationError(
            f"invalid configuration for authentication source {auth_id}: {_format_validation_error(exc)}"
        ) from exc


def quote_table_name(engine: Engine, tablename: str) -> str:
    """按方言引用表名（每一段都强制加引号）。"""
    if not _IDENTIFIER_PATTERN.fullmatch(tablename):
        raise ConfigurationError(f"tablename {tablename!r} is not a simple identifier")
    preparer = engine.dialect.identifier_preparer
    return ".".join(preparer.quote_identifier(part) for part in tablename.split("."))


def substitute_table_name(template: str, quoted_table: str) -> str:
    """将模板中的 `:tablename` 占位符替换为已引用的表名。"""
    return _TABLENAME_PLACEHOLDER.sub(lambda _match: quoted_table, template)


def _charset_listener(dialect_name: str, statement: str):
    def _set_charset(dbapi_connection, _connection_record) -> None:
        # PostgreSQL 的 SET 受事务回滚影响，需在自动提交下执行。
        toggle_autocommit = dialect_name == "postgresql" and dbapi_connection.autocommit is False
        if toggle_autocommit:
            dbapi_connection.autocommit = True
        cursor = dbapi_connection.cursor()
        try:
            cursor.execute(statement)
        finally:
            cursor.close()
            if toggle_autocommit:
                dbapi_connection.autocommit = False

    return _set_charset


# 每个方言一个监听函数，便于按引用检查是否已注册。
_CHARSET_LISTENERS = {name: _charset_listener(name, statement) for name, statement in _CHARSET_STATEMENTS.items()}


def _install_charset_listener(engine: Engine) -> None:
    listener = _CHARSET_LISTENERS.get(engine.dialect.name)
    if listener is not None:
        event.listen(engine, "connect", listener)


def build_engine(auth_id: str, config: ConnectionConfig) -> Engine:
    """为 direct_dsn/custom_query 形态构建引擎。

    使用 NullPool，每次调用独立建连、用完即关闭，不在认证源之间共享连接。
    """
    if config.mode is ConnectionMode.SHARED_POOL or config.dsn is None:
        raise ConfigurationError(f"authentication source {auth_id} has no dsn to connect with")
    try:
        url = make_url(config.dsn)
        if config.username:
            url = url.set(username=config.username)
        if config.password:
            url = url.set(password=config.password)
        engine = create_engine(url, poolclass=NullPool, connect_args=dict(config.options or {}))
    except (ArgumentError, ImportError) as exc:
        raise ConfigurationError(f"invalid dsn for authentication source {auth_id}: {exc}") from exc

    _install_charset_listener(engine)
    logger.debug("sqlauth:%s: engine ready mode=%s dialect=%s", auth_id, config.mode.value, engine.dialect.name)
    return engine
