import logging

import pytest
from sqlalchemy import event
from sqlalchemy.pool import NullPool

from conftest import fetch_account, insert_account, make_hash
from sqlauth.db.connection import ConnectionMode
from sqlauth.exceptions import ConfigurationError, InfrastructureError, InvalidCredentials, NotFound
from sqlauth.services.verifier import CredentialVerifier, VerifierRegistry


def _shared_verifier(engine, **kwargs) -> CredentialVerifier:
    return CredentialVerifier("DB-WIFI", {"tablename": "users"}, shared_engine=engine, **kwargs)


def _direct_config(dsn: str, **extra) -> dict:
    return {"dsn": dsn, "username": "", "password": "", "tablename": "users", **extra}


def _rejection(verifier: CredentialVerifier, username: str, password: str) -> tuple[type, str]:
    with pytest.raises(InvalidCredentials) as exc:
        verifier.authenticate(username, password)
    return type(exc.value), str(exc.value)


def test_authenticate_returns_multi_valued_attributes(shared_engine):
    insert_account(shared_engine, "alice", "s3cret", "a@x.test")
    verifier = _shared_verifier(shared_engine)

    attributes = verifier.authenticate("alice", "s3cret")

    assert verifier.mode is ConnectionMode.SHARED_POOL
    assert attributes["uid"] == ["alice"]
    assert attributes["mail"] == ["a@x.test"]
    assert "password" not in attributes
    assert all(isinstance(values, list) for values in attributes.values())


def test_wrong_password_is_rejected(shared_engine):
    insert_account(shared_engine, "alice", "s3cret", "a@x.test")
    verifier = _shared_verifier(shared_engine)

    with pytest.raises(InvalidCredentials):
        verifier.authenticate("alice", "wrong")


def test_rejections_are_indistinguishable(shared_engine):
    insert_account(shared_engine, "alice", "s3cret", "a@x.test")
    insert_account(shared_engine, "nopass", None, "n@x.test")
    verifier = _shared_verifier(shared_engine)

    unknown = _rejection(verifier, "ghost", "s3cret")
    null_password = _rejection(verifier, "nopass", "s3cret")
    mismatch = _rejection(verifier, "alice", "wrong")
    empty = _rejection(verifier, "alice", "")

    assert unknown == null_password == mismatch == empty == (InvalidCredentials, "WRONGUSERPASS")


def test_duplicate_uid_rows_are_treated_as_wrong_username(shared_engine):
    insert_account(shared_engine, "twin", "s3cret")
    insert_account(shared_engine, "twin", "s3cret")
    verifier = _shared_verifier(shared_engine)

    with pytest.raises(InvalidCredentials):
        verifier.authenticate("twin", "s3cret")
    assert verifier.get_attributes("twin") is None


def test_username_is_bound_not_interpolated(shared_engine):
    insert_account(shared_engine, "alice", "s3cret")
    verifier = _shared_verifier(shared_engine)

    with pytest.raises(InvalidCredentials):
        verifier.authenticate("alice' OR '1'='1", "s3cret")


def test_last_logon_refreshed_on_success(shared_engine):
    insert_account(shared_engine, "alice", "s3cret")
    insert_account(shared_engine, "bob", "hunter2")
    verifier = _shared_verifier(shared_engine)

    verifier.authenticate("alice", "s3cret")

    assert fetch_account(shared_engine, "alice")["last_logon"] is not None
    assert fetch_account(shared_engine, "bob")["last_logon"] is None


def test_last_logon_untouched_when_disabled(shared_engine):
    insert_account(shared_engine, "alice", "s3cret")
    verifier = _shared_verifier(shared_engine, update_last_logon=False)

    verifier.authenticate("alice", "s3cret")

    assert fetch_account(shared_engine, "alice")["last_logon"] is None


def test_failed_login_does_not_touch_last_logon(shared_engine):
    insert_account(shared_engine, "alice", "s3cret")
    verifier = _shared_verifier(shared_engine)

    with pytest.raises(InvalidCredentials):
        verifier.authenticate("alice", "wrong")
    assert fetch_account(shared_engine, "alice")["last_logon"] is None


def test_scrypt_hash_verifies(shared_engine):
    insert_account(shared_engine, "carol", password_hash=make_hash("pa55", "scrypt"))
    verifier = _shared_verifier(shared_engine)

    assert verifier.authenticate("carol", "pa55")["uid"] == ["carol"]


def test_get_attributes_does_not_check_password(shared_engine):
    insert_account(shared_engine, "alice", "s3cret", "a@x.test")
    verifier = _shared_verifier(shared_engine)

    attributes = verifier.get_attributes("alice")

    assert attributes["uid"] == ["alice"]
    assert attributes["mail"] == ["a@x.test"]
    assert "last_logon" not in attributes


def test_get_attributes_missing_logs_instead_of_raising(shared_engine, caplog):
    verifier = _shared_verifier(shared_engine)

    with caplog.at_level(logging.ERROR, logger="sqlauth"):
        assert verifier.get_attributes("ghost") is None
    assert "wrong username given" in caplog.text

    with pytest.raises(NotFound):
        verifier.require_attributes("ghost")


def test_missing_table_is_infrastructure_error(shared_engine):
    verifier = CredentialVerifier("db", {"tablename": "accounts"}, shared_engine=shared_engine)

    with pytest.raises(InfrastructureError):
        verifier.authenticate("alice", "s3cret")


def test_shared_pool_requires_engine():
    with pytest.raises(ConfigurationError):
        CredentialVerifier("db", {"tablename": "users"})


def test_update_last_logon_must_be_boolean(shared_engine):
    with pytest.raises(ConfigurationError):
        CredentialVerifier("db", {"tablename": "users"}, shared_engine=shared_engine, update_last_logon="yes")


def test_direct_dsn_mode_authenticates(sqlite_dsn, dsn_engine):
    insert_account(dsn_engine, "alice", "s3cret", "a@x.test")
    verifier = CredentialVerifier("db", _direct_config(sqlite_dsn))

    attributes = verifier.authenticate("alice", "s3cret")

    assert verifier.mode is ConnectionMode.DIRECT_DSN
    assert isinstance(verifier.store.engine.pool, NullPool)
    assert attributes["uid"] == ["alice"]
    assert fetch_account(dsn_engine, "alice")["last_logon"] is not None


def test_connection_failure_is_infrastructure_error(tmp_path):
    dsn = f"sqlite+pysqlite:///{tmp_path / 'missing' / 'dir' / 'accounts.db'}"
    verifier = CredentialVerifier("db", _direct_config(dsn))

    with pytest.raises(InfrastructureError):
        verifier.authenticate("alice", "s3cret")


def test_custom_query_mode(sqlite_dsn, dsn_engine):
    insert_account(dsn_engine, "alice", "s3cret", "a@x.test")
    insert_account(dsn_engine, "nomail", "s3cret")
    verifier = CredentialVerifier(
        "db",
        _direct_config(
            sqlite_dsn,
            query="SELECT uid, password, mail FROM :tablename WHERE uid = :username AND mail IS NOT NULL",
            update_query="UPDATE :tablename SET last_logon = CURRENT_TIMESTAMP WHERE uid = :username",
        ),
    )

    attributes = verifier.authenticate("alice", "s3cret")

    assert verifier.mode is ConnectionMode.CUSTOM_QUERY
    assert set(attributes) == {"uid", "mail"}
    assert fetch_account(dsn_engine, "alice")["last_logon"] is not None
    with pytest.raises(InvalidCredentials):
        verifier.authenticate("nomail", "s3cret")


def test_update_affecting_no_rows_is_infrastructure_error(sqlite_dsn, dsn_engine):
    insert_account(dsn_engine, "alice", "s3cret")
    verifier = CredentialVerifier(
        "db",
        _direct_config(
            sqlite_dsn,
            query="SELECT * FROM :tablename WHERE uid = :username",
            update_query="UPDATE :tablename SET last_logon = CURRENT_TIMESTAMP WHERE uid = :username AND 1 = 0",
        ),
    )

    with pytest.raises(InfrastructureError):
        verifier.authenticate("alice", "s3cret")


def test_connections_released_on_every_exit_path(sqlite_dsn, dsn_engine):
    insert_account(dsn_engine, "alice", "s3cret")
    verifier = CredentialVerifier("db", _direct_config(sqlite_dsn))
    counts = {"opened": 0, "closed": 0}

    def _opened(*_args):
        counts["opened"] += 1

    def _closed(*_args):
        counts["closed"] += 1

    event.listen(verifier.store.engine, "connect", _opened)
    event.listen(verifier.store.engine, "close", _closed)

    with pytest.raises(InvalidCredentials):
        verifier.authenticate("alice", "wrong")
    verifier.authenticate("alice", "s3cret")
    with dsn_engine.begin() as conn:
        conn.exec_driver_sql("DROP TABLE users")
    with pytest.raises(InfrastructureError):
        verifier.authenticate("alice", "s3cret")

    assert counts["opened"] >= 3
    assert counts["closed"] == counts["opened"]


def test_registry_builds_every_authsource(shared_engine, sqlite_dsn):
    registry = VerifierRegistry(
        {"shared": {"tablename": "users"}, "direct": _direct_config(sqlite_dsn)},
        update_last_logon=False,
        shared_engine_factory=lambda: shared_engine,
    )

    assert "shared" in registry
    assert registry.get("shared").mode is ConnectionMode.SHARED_POOL
    assert registry.get("direct").mode is ConnectionMode.DIRECT_DSN
    assert registry.get("direct").update_last_logon is False
    with pytest.raises(NotFound):
        registry.get("ghost")


def test_registry_fails_fast_on_bad_authsource():
    with pytest.raises(ConfigurationError):
        VerifierRegistry({"broken": {"dsn": "sqlite://"}}, shared_engine_factory=None)
