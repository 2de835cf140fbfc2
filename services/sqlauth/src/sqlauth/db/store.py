"""账号表存取器。

每次读写都在作用域内获取连接，任何退出路径（成功、校验失败、异常）
都会释放连接：共享池形态归还到池，直连形态直接关闭。
"""

from __future__ import annotations

from collections.abc import Iterator, Mapping
from contextlib import contextmanager
from typing import Any

from sqlalchemy import text
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.exc import SQLAlchemyError

from sqlauth.exceptions import InfrastructureError


class SqlStore:
    """基于 SQLAlchemy 引擎的存取器：`read` 返回行，`write` 返回影响行数。"""

    def __init__(self, engine: Engine, *, label: str = "sqlauth") -> None:
        self.engine = engine
        self.label = label

    @contextmanager
    def _connect(self) -> Iterator[Connection]:
        try:
            connection = self.engine.connect()
        except SQLAlchemyError as exc:
            raise InfrastructureError(f"{self.label}: unable to connect to the database") from exc
        try:
            yield connection
        finally:
            connection.close()

    def read(self, query: str, params: Mapping[str, Any]) -> list[dict[str, Any]]:
        """执行查询并返回全部行（列名 -> 值）。"""
        with self._connect() as connection:
            try:
                result = connection.execute(text(query), dict(params))
                return [dict(row) for row in result.mappings().all()]
            except SQLAlchemyError as exc:
                raise InfrastructureError(f"{self.label}: query failed") from exc

    def write(self, query: str, params: Mapping[str, Any]) -> int:
        """在独立事务中执行写语句，返回影响行数。"""
        with self._connect() as connection:
            try:
                with connection.begin():
                    result = connection.execute(text(query), dict(params))
                    return result.rowcount
            except SQLAlchemyError as exc:
                raise InfrastructureError(f"{self.label}: update failed") from exc

    def ping(self) -> None:
        """执行最小探活语句。"""
        self.read("SELECT 1", {})
