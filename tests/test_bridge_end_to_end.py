"""Edge reconciler talking to the real authority app over an in-process transport."""

try:
    from . import _bootstrap  # noqa: F401
except Exception:  # pragma: no cover - fallback for direct execution
    import _bootstrap  # type: ignore # noqa: F401

import httpx
import pytest

from app.clients import SQLiteAccountDirectory, SQLiteTokenStore
from app.core.config import EdgeSettings, SyncSettings
from app.core.errors import AuthenticationError, TransientNetworkError
from app.main import app as authority_app
from app.services import (
    EventBus,
    SessionSnapshotProvider,
    SharedSecretValidator,
    SyncTokenLifecycleListener,
    TokenHasherService,
    TokenIssuer,
    TokenValidator,
)
from app.utils.http import RetryConfig
from edge.authority import IdentityAuthorityClient
from edge.client import extract_sync_token
from edge.links import SQLiteIdentityLinkStore
from edge.reconciler import EdgeReconciler

SECRET = "bridge-secret"

pytestmark = pytest.mark.anyio


class ResponseDroppingTransport(httpx.AsyncBaseTransport):
    """Deliver the request, then lose the first answer from ``path``."""

    def __init__(self, inner: httpx.AsyncBaseTransport, path: str) -> None:
        self.inner = inner
        self.path = path
        self.dropped = 0

    async def handle_async_request(self, request: httpx.Request) -> httpx.Response:
        response = await self.inner.handle_async_request(request)
        if request.url.path == self.path and not self.dropped:
            self.dropped += 1
            await response.aclose()
            raise httpx.ReadTimeout("response lost", request=request)
        return response


@pytest.fixture()
def bridge(tmp_path):
    from app import dependencies

    db_path = str(tmp_path / "authority.sqlite3")
    settings = SyncSettings()
    hasher = TokenHasherService(rounds=4)
    store = SQLiteTokenStore(db_path)
    directory = SQLiteAccountDirectory(db_path)
    issuer = TokenIssuer(store=store, hasher=hasher, settings=settings)
    bus = EventBus()
    SyncTokenLifecycleListener(issuer).register(bus)

    authority_app.dependency_overrides.clear()
    authority_app.dependency_overrides.update(
        {
            dependencies.get_token_store: lambda: store,
            dependencies.get_account_directory: lambda: directory,
            dependencies.get_token_hasher: lambda: hasher,
            dependencies.get_token_issuer: lambda: issuer,
            dependencies.get_token_validator: lambda: TokenValidator(store=store, hasher=hasher),
            dependencies.get_event_bus: lambda: bus,
            dependencies.get_shared_secret_validator: lambda: SharedSecretValidator(SECRET),
            dependencies.get_session_snapshot_provider: lambda: SessionSnapshotProvider(
                directory, settings
            ),
        }
    )

    directory.create_account(
        username="ada",
        email="ada@example.com",
        roles=["administrator"],
        password_hash=hasher.hash("correct horse"),
    )
    transport = httpx.ASGITransport(app=authority_app)
    authority = IdentityAuthorityClient(
        EdgeSettings(),
        SECRET,
        transport=transport,
        retry_config=RetryConfig(attempts=1, backoff_seconds=0),
    )
    reconciler = EdgeReconciler(
        authority=authority,
        links=SQLiteIdentityLinkStore(str(tmp_path / "edge.sqlite3")),
    )

    yield transport, reconciler

    authority_app.dependency_overrides.clear()


async def test_login_then_reconcile_links_identity(bridge) -> None:
    transport, reconciler = bridge

    async with httpx.AsyncClient(transport=transport, base_url="http://authority.test") as browser:
        login = await browser.post(
            "/api/auth/login", json={"username": "ada", "password": "correct horse"}
        )
        sync_token = extract_sync_token(login.json()["redirectTo"])

        outcome = await reconciler.reconcile(sync_token)
        assert outcome.changed is True
        assert outcome.user["username"] == "ada"
        assert outcome.user["email"] == "ada@example.com"

        assert await reconciler.reconcile_snapshot() == 0
        refreshed = await reconciler.reconcile(
            sync_token,
            known_user_id=outcome.user["id"],
            known_updated_at=outcome.user["updatedAt"],
        )
        assert refreshed.user["username"] == "ada"
        assert refreshed.user["id"] == outcome.user["id"]

        await browser.post("/api/auth/logout")

    with pytest.raises(AuthenticationError):
        await reconciler.reconcile(sync_token)


async def test_exchange_token_hand_off(bridge) -> None:
    transport, reconciler = bridge

    async with httpx.AsyncClient(transport=transport, base_url="http://authority.test") as browser:
        await browser.post(
            "/api/auth/login", json={"username": "ada", "password": "correct horse"}
        )
        redirect = await browser.get("/sync/issue-token")

    token = httpx.URL(redirect.headers["location"]).params["token"]
    link = await reconciler.accept_exchange_token(token)

    assert link.local_user_id
    with pytest.raises(AuthenticationError):
        await reconciler.accept_exchange_token(token)


async def test_lost_validation_response_is_not_replayed(bridge, tmp_path) -> None:
    transport, _ = bridge
    lossy = ResponseDroppingTransport(transport, "/sync/validate-token")
    reconciler = EdgeReconciler(
        authority=IdentityAuthorityClient(
            EdgeSettings(),
            SECRET,
            transport=lossy,
            retry_config=RetryConfig(attempts=3, backoff_seconds=0),
        ),
        links=SQLiteIdentityLinkStore(str(tmp_path / "lossy-edge.sqlite3")),
    )

    async with httpx.AsyncClient(transport=transport, base_url="http://authority.test") as browser:
        await browser.post(
            "/api/auth/login", json={"username": "ada", "password": "correct horse"}
        )
        redirect = await browser.get("/sync/issue-token")

    token = httpx.URL(redirect.headers["location"]).params["token"]
    with pytest.raises(TransientNetworkError):
        await reconciler.accept_exchange_token(token)

    assert lossy.dropped == 1
