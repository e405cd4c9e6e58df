try:
    from . import _bootstrap  # noqa: F401
except Exception:  # pragma: no cover - fallback for direct execution
    import _bootstrap  # type: ignore # noqa: F401

from datetime import datetime, timedelta, timezone

import pytest

from app.clients import SQLiteAccountDirectory
from app.core.config import SyncSettings
from app.core.errors import NoActiveSessionsError, NoEligibleSessionsError
from app.services import SessionSnapshotProvider

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


@pytest.fixture()
def directory(tmp_path) -> SQLiteAccountDirectory:
    return SQLiteAccountDirectory(str(tmp_path / "authority.sqlite3"))


def _provider(directory, **overrides) -> SessionSnapshotProvider:
    settings = SyncSettings(**{"auto_sync_roles": ("administrator",), **overrides})
    return SessionSnapshotProvider(directory, settings, clock=lambda: NOW)


def _login(directory, account, *, ttl_seconds: int, opened_at: datetime = NOW) -> None:
    directory.open_session(account.id, ttl_seconds=ttl_seconds, now=opened_at)


def test_admin_with_live_session_is_included(directory) -> None:
    admin = directory.create_account(
        username="ada", email="ada@example.com", roles=["administrator"]
    )
    _login(directory, admin, ttl_seconds=600)

    records = _provider(directory).snapshot()

    assert [record["externalId"] for record in records] == [admin.id]
    assert records[0]["displayName"] == "ada"
    assert "registered" in records[0]["metadata"]


def test_expired_sessions_are_excluded(directory) -> None:
    admin = directory.create_account(
        username="ada", email="ada@example.com", roles=["administrator"]
    )
    stale = directory.create_account(
        username="bob", email="bob@example.com", roles=["administrator"]
    )
    _login(directory, admin, ttl_seconds=600)
    _login(directory, stale, ttl_seconds=60, opened_at=NOW - timedelta(minutes=5))

    records = _provider(directory).snapshot()

    assert [record["username"] for record in records] == ["ada"]


def test_only_expired_sessions_reports_no_active_sessions(directory) -> None:
    stale = directory.create_account(
        username="bob", email="bob@example.com", roles=["administrator"]
    )
    _login(directory, stale, ttl_seconds=60, opened_at=NOW - timedelta(minutes=5))

    with pytest.raises(NoActiveSessionsError):
        _provider(directory).snapshot()


def test_no_sessions_at_all_reports_no_active_sessions(directory) -> None:
    directory.create_account(username="ada", email="ada@example.com", roles=["administrator"])

    with pytest.raises(NoActiveSessionsError) as excinfo:
        _provider(directory).snapshot()

    assert excinfo.value.code == "no_active_sessions"


def test_live_sessions_without_allowed_role_report_no_eligible(directory) -> None:
    member = directory.create_account(
        username="cy", email="cy@example.com", roles=["subscriber"]
    )
    _login(directory, member, ttl_seconds=600)

    with pytest.raises(NoEligibleSessionsError) as excinfo:
        _provider(directory).snapshot()

    assert excinfo.value.code == "no_eligible_sessions"


def test_role_allow_list_is_configurable(directory) -> None:
    member = directory.create_account(
        username="cy", email="cy@example.com", roles=["subscriber", "editor"]
    )
    _login(directory, member, ttl_seconds=600)

    records = _provider(directory, auto_sync_roles=("editor",)).snapshot()

    assert records[0]["roles"] == ["subscriber", "editor"]


def test_roles_split_from_comma_separated_env(monkeypatch) -> None:
    monkeypatch.setenv("SYNC_AUTO_SYNC_ROLES", "administrator, editor,,")

    assert SyncSettings().auto_sync_roles == ("administrator", "editor")
