try:
    from . import _bootstrap  # noqa: F401
except Exception:  # pragma: no cover - fallback for direct execution
    import _bootstrap  # type: ignore # noqa: F401

from datetime import datetime, timedelta, timezone

import pytest

from app.core.errors import (
    AuthenticationError,
    NoEligibleSessionsError,
    TransientNetworkError,
)
from app.models.identity import to_storage
from app.schemas import IdentityRecord
from edge.authority import TokenOwner
from edge.links import SQLiteIdentityLinkStore
from edge.reconciler import EdgeReconciler
from edge.worker import SnapshotPoller

pytestmark = pytest.mark.anyio

T0 = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


class FakeAuthority:
    def __init__(self) -> None:
        self.exchange: dict[str, str] = {}
        self.persistent: dict[str, str] = {}
        self.profiles: dict[str, IdentityRecord] = {}
        self.snapshot: list[IdentityRecord] | Exception = []

    def _owner(self, owner_id: str) -> TokenOwner:
        return TokenOwner(owner_id=owner_id, profile=self.profiles.get(owner_id))

    async def validate_exchange_token(self, token: str) -> TokenOwner:
        try:
            return self._owner(self.exchange.pop(token))
        except KeyError:
            raise AuthenticationError("refused") from None

    async def validate_persistent_token(self, token: str) -> TokenOwner:
        try:
            return self._owner(self.persistent[token])
        except KeyError:
            raise AuthenticationError("refused") from None

    async def active_sessions(self) -> list[IdentityRecord]:
        if isinstance(self.snapshot, Exception):
            raise self.snapshot
        return self.snapshot


class RecordingBroadcaster:
    def __init__(self) -> None:
        self.published: list[str] = []

    def publish_update(self, user_id: str, updated_at=None) -> int:
        self.published.append(user_id)
        return 1


def _record(owner_id: str, **overrides) -> IdentityRecord:
    data = {
        "externalId": owner_id,
        "username": "ada",
        "email": "ada@example.com",
        "displayName": "Ada",
        "roles": ["administrator"],
    }
    data.update(overrides)
    return IdentityRecord.model_validate(data)


@pytest.fixture()
def links(tmp_path) -> SQLiteIdentityLinkStore:
    return SQLiteIdentityLinkStore(str(tmp_path / "edge.sqlite3"))


@pytest.fixture()
def authority() -> FakeAuthority:
    return FakeAuthority()


@pytest.fixture()
def broadcaster() -> RecordingBroadcaster:
    return RecordingBroadcaster()


@pytest.fixture()
def reconciler(authority, links, broadcaster) -> EdgeReconciler:
    return EdgeReconciler(authority=authority, links=links, broadcaster=broadcaster)


def test_link_preserves_edge_identity_id(links) -> None:
    first, created, _ = links.link("owner-1", now=T0)
    again, created_again, changed = links.link("owner-1", now=T0 + timedelta(minutes=1))

    assert created is True and created_again is False and changed is False
    assert again.external_identity_id == first.external_identity_id
    assert again.last_synced_at > first.last_synced_at
    assert links.count() == 1
    assert links.get_by_external_identity(first.external_identity_id).local_user_id == "owner-1"


def test_link_profile_change_bumps_updated_at(links) -> None:
    links.link("owner-1", profile=_record("owner-1"), now=T0)
    same, _, unchanged = links.link("owner-1", profile=_record("owner-1"), now=T0 + timedelta(minutes=1))
    renamed, _, changed = links.link(
        "owner-1",
        profile=_record("owner-1", displayName="Ada L."),
        now=T0 + timedelta(minutes=2),
    )

    assert unchanged is False and same.updated_at == T0
    assert changed is True
    assert renamed.display_name == "Ada L."
    assert renamed.updated_at == T0 + timedelta(minutes=2)
    assert renamed.external_identity_id == same.external_identity_id


async def test_reconcile_reports_change_only_when_needed(reconciler, authority) -> None:
    authority.persistent["sync-1"] = "owner-1"

    first = await reconciler.reconcile("sync-1")
    assert first.changed is True
    assert first.user["ownerId"] == "owner-1"

    steady = await reconciler.reconcile(
        "sync-1",
        known_user_id=first.user["id"],
        known_updated_at=first.user["updatedAt"],
    )
    assert steady.changed is False
    assert steady.user["id"] == first.user["id"]

    stale = await reconciler.reconcile(
        "sync-1",
        known_user_id=first.user["id"],
        known_updated_at=to_storage(T0 - timedelta(days=365)),
    )
    assert stale.changed is True


async def test_reconcile_links_authority_profile(reconciler, authority, broadcaster) -> None:
    authority.persistent["sync-1"] = "owner-1"
    authority.profiles["owner-1"] = _record("owner-1")

    first = await reconciler.reconcile("sync-1")
    assert first.user["username"] == "ada"
    assert first.user["email"] == "ada@example.com"
    assert first.user["displayName"] == "Ada"

    authority.profiles["owner-1"] = _record("owner-1", displayName="Ada L.")
    renamed = await reconciler.reconcile(
        "sync-1",
        known_user_id=first.user["id"],
        known_updated_at=to_storage(T0 - timedelta(days=365)),
    )
    assert renamed.changed is True
    assert renamed.user["displayName"] == "Ada L."
    assert broadcaster.published == [first.user["id"], first.user["id"]]


async def test_reconcile_propagates_authority_rejection(reconciler) -> None:
    with pytest.raises(AuthenticationError):
        await reconciler.reconcile("unknown")


async def test_accept_exchange_token_links_and_broadcasts(reconciler, authority, broadcaster) -> None:
    authority.exchange["one-shot"] = "owner-1"
    authority.profiles["owner-1"] = _record("owner-1")

    link = await reconciler.accept_exchange_token("one-shot")

    assert link.local_user_id == "owner-1"
    assert link.username == "ada"
    assert broadcaster.published == [link.external_identity_id]
    with pytest.raises(AuthenticationError):
        await reconciler.accept_exchange_token("one-shot")


async def test_snapshot_counts_new_and_changed_links(reconciler, authority, broadcaster) -> None:
    authority.snapshot = [_record("owner-1"), _record("owner-2", username="bob")]
    assert await reconciler.reconcile_snapshot() == 2

    assert await reconciler.reconcile_snapshot() == 0

    authority.snapshot = [_record("owner-1", email="ada@new.example.com")]
    assert await reconciler.reconcile_snapshot() == 1
    assert len(broadcaster.published) == 3


async def test_snapshot_not_found_yields_zero(reconciler, authority, broadcaster) -> None:
    authority.snapshot = NoEligibleSessionsError("none")

    assert await reconciler.reconcile_snapshot() == 0
    assert broadcaster.published == []


async def test_poller_counts_reconciled_links(reconciler, authority) -> None:
    authority.snapshot = [_record("owner-1")]
    poller = SnapshotPoller(reconciler, poll_interval_seconds=30)

    assert await poller.poll_once() == 1
    assert await poller.poll_once() == 0


async def test_poller_survives_authority_outage(reconciler, authority) -> None:
    authority.snapshot = TransientNetworkError("authority down")
    poller = SnapshotPoller(reconciler, poll_interval_seconds=30)

    assert await poller.poll_once() == 0


def test_poller_requires_positive_interval(reconciler) -> None:
    with pytest.raises(ValueError):
        SnapshotPoller(reconciler, poll_interval_seconds=0)
