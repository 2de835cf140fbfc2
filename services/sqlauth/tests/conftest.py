from collections.abc import Generator
from typing import Any

import pytest
from sqlalchemy import create_engine, text
from sqlalchemy.engine import Engine
from sqlalchemy.pool import StaticPool

from sqlauth.services.passwords import hash_password

# 测试中使用低迭代次数，避免哈希拖慢用例。
TEST_ITERATIONS = 1000

CREATE_USERS_SQL = """
CREATE TABLE {table} (
    uid VARCHAR(64) NOT NULL,
    password VARCHAR(256),
    last_logon TIMESTAMP,
    password_last_set TIMESTAMP,
    mail VARCHAR(256)
)
"""


def make_hash(password: str, algorithm: str = "pbkdf2_sha256") -> str:
    return hash_password(password, algorithm, iterations=TEST_ITERATIONS)


def create_users_table(engine: Engine, table: str = "users") -> None:
    with engine.begin() as conn:
        conn.exec_driver_sql(CREATE_USERS_SQL.format(table=table))


def insert_account(
    engine: Engine,
    uid: str,
    password: str | None = None,
    mail: str | None = None,
    *,
    table: str = "users",
    password_hash: str | None = None,
) -> None:
    stored = password_hash if password_hash is not None else (make_hash(password) if password is not None else None)
    with engine.begin() as conn:
        conn.execute(
            text(f"INSERT INTO {table} (uid, password, mail) VALUES (:uid, :password, :mail)"),
            {"uid": uid, "password": stored, "mail": mail},
        )


def fetch_account(engine: Engine, uid: str, *, table: str = "users") -> dict[str, Any]:
    with engine.connect() as conn:
        row = conn.execute(text(f"SELECT * FROM {table} WHERE uid = :uid"), {"uid": uid}).mappings().one()
    return dict(row)


@pytest.fixture
def shared_engine() -> Generator[Engine, None, None]:
    engine = create_engine(
        "sqlite+pysqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        future=True,
    )
    create_users_table(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def sqlite_dsn(tmp_path) -> str:
    """文件型 sqlite，供每次调用独立建连的直连形态使用。"""
    dsn = f"sqlite+pysqlite:///{tmp_path / 'accounts.db'}"
    engine = create_engine(dsn, future=True)
    create_users_table(engine)
    engine.dispose()
    return dsn


@pytest.fixture
def dsn_engine(sqlite_dsn: str) -> Generator[Engine, None, None]:
    """用于准备/检查直连形态数据的独立引擎。"""
    engine = create_engine(sqlite_dsn, future=True)
    yield engine
    engine.dispose()
