try:
    from . import _bootstrap  # noqa: F401
except Exception:  # pragma: no cover - fallback for direct execution
    import _bootstrap  # type: ignore # noqa: F401

import json

import httpx
import pytest

from app.core.config import EdgeSettings
from app.core.errors import (
    AuthenticationError,
    ConfigurationError,
    NoEligibleSessionsError,
    SyncError,
    TransientNetworkError,
)
from app.utils.http import RetryConfig, request_with_retry
from edge.authority import IdentityAuthorityClient
from edge.client import EdgeApiClient, extract_sync_token, iter_sse_events

pytestmark = pytest.mark.anyio

NO_WAIT = RetryConfig(attempts=2, backoff_seconds=0)


def _authority(handler, secret: str | None = "s3cret") -> IdentityAuthorityClient:
    return IdentityAuthorityClient(
        EdgeSettings(),
        secret,
        transport=httpx.MockTransport(handler),
        retry_config=NO_WAIT,
    )


async def test_authority_client_sends_secret_and_parses_owner() -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json={"success": True, "ownerId": "owner-1"})

    owner = await _authority(handler).validate_exchange_token("tok")

    assert owner.owner_id == "owner-1"
    assert owner.profile is None
    assert seen[0].url.path == "/sync/validate-token"
    assert seen[0].headers["X-Sync-Secret"] == "s3cret"
    assert json.loads(seen[0].content) == {"token": "tok"}


async def test_authority_client_parses_owner_profile() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(
            200,
            json={
                "valid": True,
                "ownerId": "owner-1",
                "user": {"externalId": "owner-1", "username": "ada", "email": "a@x.io"},
            },
        )

    owner = await _authority(handler).validate_persistent_token("tok")

    assert owner.profile.username == "ada"
    assert owner.profile.email == "a@x.io"


async def test_exchange_token_is_not_retried_after_lost_response() -> None:
    consumed: set[str] = set()
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        token = json.loads(request.content)["token"]
        if token in consumed:
            return httpx.Response(401, json={"success": False, "error": "invalid_token"})
        consumed.add(token)
        raise httpx.ReadTimeout("response lost", request=request)

    with pytest.raises(TransientNetworkError):
        await _authority(handler).validate_exchange_token("tok")

    assert len(calls) == 1


async def test_exchange_token_retries_when_connection_fails() -> None:
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        if len(calls) == 1:
            raise httpx.ConnectError("refused", request=request)
        return httpx.Response(200, json={"success": True, "ownerId": "owner-1"})

    owner = await _authority(handler).validate_exchange_token("tok")

    assert owner.owner_id == "owner-1"
    assert len(calls) == 2


async def test_exchange_token_server_error_is_not_retried() -> None:
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        return httpx.Response(502)

    with pytest.raises(TransientNetworkError):
        await _authority(handler).validate_exchange_token("tok")

    assert len(calls) == 1


async def test_authority_client_rejects_non_json_body() -> None:
    client = _authority(lambda request: httpx.Response(200, text="<html>maintenance</html>"))

    with pytest.raises(SyncError) as excinfo:
        await client.validate_persistent_token("tok")

    assert excinfo.value.code == "authority_error"


@pytest.mark.parametrize("status,code", [(401, "invalid_token"), (403, "forbidden")])
async def test_authority_client_maps_refusals(status, code) -> None:
    client = _authority(lambda request: httpx.Response(status, json={"success": False}))

    with pytest.raises(AuthenticationError) as excinfo:
        await client.validate_persistent_token("tok")

    assert excinfo.value.code == code


async def test_authority_client_retries_then_gives_up() -> None:
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        return httpx.Response(502)

    with pytest.raises(TransientNetworkError):
        await _authority(handler).validate_persistent_token("tok")

    assert len(calls) == NO_WAIT.attempts


async def test_authority_client_surfaces_snapshot_reason() -> None:
    client = _authority(
        lambda request: httpx.Response(
            200, json={"success": False, "error": "no_eligible_sessions"}
        )
    )

    with pytest.raises(NoEligibleSessionsError):
        await client.active_sessions()


async def test_authority_client_forwards_session_cookie() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.headers["Cookie"] == "authority_session=abc"
        return httpx.Response(
            200,
            json={
                "success": True,
                "user": {"externalId": "owner-1", "username": "ada", "email": "a@x.io"},
            },
        )

    record = await _authority(handler).validate_session("authority_session=abc")

    assert record.external_id == "owner-1"


async def test_authority_client_without_secret_fails_closed() -> None:
    with pytest.raises(ConfigurationError):
        await _authority(lambda request: httpx.Response(200), secret=None).active_sessions()


async def test_request_with_retry_recovers_from_transport_error() -> None:
    attempts = []

    async def flaky() -> httpx.Response:
        attempts.append(1)
        if len(attempts) == 1:
            raise httpx.ConnectError("refused")
        return httpx.Response(204)

    response = await request_with_retry(flaky, retry_config=NO_WAIT)

    assert response.status_code == 204
    assert len(attempts) == 2


async def test_request_with_retry_returns_client_errors_untouched() -> None:
    async def not_found() -> httpx.Response:
        return httpx.Response(404)

    response = await request_with_retry(not_found, retry_config=NO_WAIT)
    assert response.status_code == 404


def test_retry_config_requires_an_attempt() -> None:
    with pytest.raises(ValueError):
        RetryConfig(attempts=0)


def test_extract_sync_token_from_redirect() -> None:
    assert extract_sync_token("http://edge.test/?tab=1&sync_token=abc") == "abc"
    assert extract_sync_token("http://edge.test/") is None


async def test_iter_sse_events_skips_comments_and_bad_frames() -> None:
    async def lines():
        for line in [
            'data: {"type":"connection-ready"}',
            "",
            ": keepalive",
            "",
            "data: not-json",
            "",
            'data: {"type":"user-update","userId":"u-1"}',
            "",
        ]:
            yield line

    events = [event async for event in iter_sse_events(lines())]

    assert events == [
        {"type": "connection-ready"},
        {"type": "user-update", "userId": "u-1"},
    ]


async def test_edge_client_reconcile_and_rejection() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content)
        if body["syncToken"] == "good":
            assert body["knownUserId"] == "user-1"
            return httpx.Response(200, json={"valid": True, "changed": False, "user": {"id": "user-1"}})
        return httpx.Response(401, json={"valid": False, "error": "invalid_token"})

    client = EdgeApiClient(
        "http://edge.test", transport=httpx.MockTransport(handler), retry_config=NO_WAIT
    )

    result = await client.reconcile("good", known_user_id="user-1")
    assert result["changed"] is False

    with pytest.raises(AuthenticationError):
        await client.reconcile("bad")


async def test_edge_client_stream_events() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.params["userId"] == "user-1"
        return httpx.Response(
            200,
            headers={"content-type": "text/event-stream"},
            content=(
                b'data: {"type":"connection-ready"}\n\n'
                b": keepalive\n\n"
                b'data: {"type":"user-update","userId":"user-1"}\n\n'
            ),
        )

    client = EdgeApiClient("http://edge.test", transport=httpx.MockTransport(handler))

    events = [event async for event in client.stream_events("user-1")]

    assert [event["type"] for event in events] == ["connection-ready", "user-update"]


async def test_edge_client_stream_failure_is_transient() -> None:
    def refuse(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("refused", request=request)

    client = EdgeApiClient("http://edge.test", transport=httpx.MockTransport(refuse))

    with pytest.raises(TransientNetworkError):
        async for _ in client.stream_events("user-1"):
            pass


async def test_edge_client_non_json_answer_is_sync_error() -> None:
    client = EdgeApiClient(
        "http://edge.test",
        transport=httpx.MockTransport(lambda request: httpx.Response(200, text="<html/>")),
        retry_config=NO_WAIT,
    )

    with pytest.raises(SyncError) as excinfo:
        await client.reconcile("good")

    assert excinfo.value.code == "sync_failed"
