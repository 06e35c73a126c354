from __future__ import annotations

import json
from typing import Callable, List

import httpx
import pytest

from gitea_token_sync.credentials import Credential, RemoteIdentityAccount
from gitea_token_sync.errors import AuthFailed, GiteaAPIError, IssuanceFailed, RemoteUnavailable
from gitea_token_sync.gitea_api import GiteaClient


BASE_URL = "http://gitea.test/api/v1"
GOOD_SHA1 = "0123456789abcdef0123456789abcdef01234567"


def _client(handler: Callable[[httpx.Request], httpx.Response], requests: List[httpx.Request]) -> GiteaClient:
    def _record(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        return handler(request)

    return GiteaClient(
        BASE_URL,
        RemoteIdentityAccount("gitea_admin", "s3cret"),
        transport=httpx.MockTransport(_record),
    )


def test_is_alive_true_on_version_endpoint() -> None:
    requests: List[httpx.Request] = []
    client = _client(lambda r: httpx.Response(200, json={"version": "1.21.0"}), requests)

    assert client.is_alive() is True
    assert requests[0].url.path == "/api/v1/version"


def test_is_alive_false_on_connection_error() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    client = _client(handler, [])

    assert client.is_alive() is False


def test_is_alive_false_on_server_error() -> None:
    client = _client(lambda r: httpx.Response(502), [])

    assert client.is_alive() is False


def test_list_tokens_uses_basic_auth_and_returns_ids() -> None:
    requests: List[httpx.Request] = []
    payload = [{"id": 3, "name": "flux-automation"}, {"id": 9, "name": "old"}]
    client = _client(lambda r: httpx.Response(200, json=payload), requests)

    ids = client.list_tokens("gitea_admin")

    assert ids == {3, 9}
    assert requests[0].url.path == "/api/v1/users/gitea_admin/tokens"
    assert requests[0].headers["Authorization"].startswith("Basic ")


def test_list_tokens_follows_pages() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        page = int(request.url.params["page"])
        limit = int(request.url.params["limit"])
        if page == 1:
            return httpx.Response(200, json=[{"id": i} for i in range(1, limit + 1)])
        return httpx.Response(200, json=[{"id": 1000}])

    client = _client(handler, [])

    ids = client.list_tokens()

    assert 1000 in ids
    assert len(ids) == 51


def test_list_tokens_auth_rejected() -> None:
    client = _client(lambda r: httpx.Response(401, json={"message": "unauthorized"}), [])

    with pytest.raises(AuthFailed):
        client.list_tokens()


def test_list_tokens_unreachable() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectTimeout("timed out", request=request)

    client = _client(handler, [])

    with pytest.raises(RemoteUnavailable):
        client.list_tokens()


def test_delete_token_tolerates_missing() -> None:
    requests: List[httpx.Request] = []
    client = _client(lambda r: httpx.Response(404), requests)

    assert client.delete_token(7) is False
    assert requests[0].method == "DELETE"
    assert requests[0].url.path == "/api/v1/users/gitea_admin/tokens/7"


def test_create_token_returns_credential() -> None:
    requests: List[httpx.Request] = []
    client = _client(
        lambda r: httpx.Response(201, json={"id": 11, "name": "flux-automation", "sha1": GOOD_SHA1}),
        requests,
    )

    cred = client.create_token("flux-automation", ["all"])

    assert cred.value == GOOD_SHA1
    assert cred.id == 11
    assert cred.owner == "gitea_admin"
    assert json.loads(requests[0].content) == {"name": "flux-automation", "scopes": ["all"]}


@pytest.mark.parametrize(
    "body",
    [
        {"id": 1, "sha1": "abc123"},
        {"id": 1, "sha1": GOOD_SHA1.upper()},
        {"id": 1, "sha1": GOOD_SHA1 + "00"},
        {"id": 1, "sha1": GOOD_SHA1 + "\n"},
        {"id": 1, "sha1": 12345},
        {"id": 1, "sha1": None},
        {"id": 1},
    ],
)
def test_create_token_rejects_malformed_sha1(body: dict) -> None:
    client = _client(lambda r: httpx.Response(201, json=body), [])

    with pytest.raises(IssuanceFailed):
        client.create_token("flux-automation", ["all"])


def test_create_token_duplicate_name_is_issuance_failure() -> None:
    client = _client(lambda r: httpx.Response(422, json={"message": "access token name has been used already"}), [])

    with pytest.raises(IssuanceFailed) as excinfo:
        client.create_token("flux-automation", ["all"])

    assert "422" in str(excinfo.value)


def test_probe_token_uses_token_header() -> None:
    requests: List[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        if request.headers.get("Authorization") == f"token {GOOD_SHA1}":
            return httpx.Response(200, json={"login": "gitea_admin"})
        return httpx.Response(401)

    client = _client(handler, requests)

    assert client.probe_token(GOOD_SHA1) is True
    assert client.probe_token("f" * 40) is False
    assert requests[0].url.path == "/api/v1/user"


def test_probe_token_transport_failure_is_false() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ReadTimeout("timed out", request=request)

    client = _client(handler, [])

    assert client.probe_token(GOOD_SHA1) is False


def test_get_registration_token() -> None:
    requests: List[httpx.Request] = []
    client = _client(lambda r: httpx.Response(200, json={"token": "  AbCdEfGhIjKlMnOpQrStUvWxYz012345  "}), requests)

    token = client.get_registration_token(Credential(value=GOOD_SHA1, name="x", owner="gitea_admin"))

    assert token == "AbCdEfGhIjKlMnOpQrStUvWxYz012345"
    assert requests[0].url.path == "/api/v1/admin/runners/registration-token"
    assert requests[0].headers["Authorization"] == f"token {GOOD_SHA1}"


def test_get_registration_token_rejects_short_value() -> None:
    client = _client(lambda r: httpx.Response(200, json={"token": "short"}), [])

    with pytest.raises(IssuanceFailed):
        client.get_registration_token(Credential(value=GOOD_SHA1, name="x", owner="gitea_admin"))


@pytest.mark.parametrize("value", [12345, ["a" * 32], None])
def test_get_registration_token_rejects_non_string_value(value) -> None:
    client = _client(lambda r: httpx.Response(200, json={"token": value}), [])

    with pytest.raises(IssuanceFailed) as excinfo:
        client.get_registration_token(Credential(value=GOOD_SHA1, name="x", owner="gitea_admin"))

    assert excinfo.value.phase == "runner-token"


def test_unexpected_status_is_api_error() -> None:
    client = _client(lambda r: httpx.Response(418, text="teapot"), [])

    with pytest.raises(GiteaAPIError) as excinfo:
        client.list_tokens()

    assert excinfo.value.status == 418


def test_bootstrap_call_without_account_fails() -> None:
    client = GiteaClient(BASE_URL, transport=httpx.MockTransport(lambda r: httpx.Response(200, json=[])))

    with pytest.raises(AuthFailed):
        client.list_tokens()
