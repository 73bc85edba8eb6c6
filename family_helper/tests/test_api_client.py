"""
API client: bearer header, single retry after a token refresh, and
read-only group errors.
"""
import httpx
import pytest

from family_helper.client import token_provider
from family_helper.client.api import ApiError, FamilyHelperClient, ReadOnlyGroupError, TokenRefreshError
from family_helper.client.token_provider import TokenProvider


class Recorder:
    """MockTransport handler that replays queued responses and records requests."""

    def __init__(self, *responses):
        self.responses = list(responses)
        self.requests = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return self.responses.pop(0)


def _client(recorder, provider=None, token="stale-token"):
    return FamilyHelperClient(
        "http://api.test",
        token,
        token_provider=provider or TokenProvider(),
        transport=httpx.MockTransport(recorder),
    )


def test_sends_bearer_token():
    recorder = Recorder(httpx.Response(200, json={"success": True, "isSupportUser": True}))
    with _client(recorder, token="abc") as client:
        assert client.check_support_access() is True
    assert recorder.requests[0].headers["Authorization"] == "Bearer abc"


def test_retries_once_after_refresh():
    recorder = Recorder(
        httpx.Response(401, json={"code": "token_expired"}),
        httpx.Response(200, json={"success": True, "message": "Subscription granted"}),
    )
    provider = TokenProvider()
    provider.set_refresher(lambda: "fresh-token")

    client = _client(recorder, provider)
    result = client.set_subscription("user-1", True)

    assert result["message"] == "Subscription granted"
    assert len(recorder.requests) == 2
    assert recorder.requests[0].headers["Authorization"] == "Bearer stale-token"
    assert recorder.requests[1].headers["Authorization"] == "Bearer fresh-token"
    assert recorder.requests[1].content == recorder.requests[0].content
    assert client.access_token == "fresh-token"


def test_second_401_is_not_retried_again():
    recorder = Recorder(
        httpx.Response(401, json={"code": "token_expired"}),
        httpx.Response(401, json={"code": "invalid_token", "message": "Invalid token"}),
    )
    provider = TokenProvider()
    provider.set_refresher(lambda: "fresh-token")

    with pytest.raises(ApiError) as exc_info:
        _client(recorder, provider).list_users()

    assert exc_info.value.status_code == 401
    assert exc_info.value.code == "invalid_token"
    assert len(recorder.requests) == 2


def test_no_refresher_raises_token_refresh_error():
    recorder = Recorder(httpx.Response(401, json={"code": "token_expired"}))
    client = _client(recorder)

    with pytest.raises(TokenRefreshError) as exc_info:
        client.list_users()

    assert exc_info.value.code == "no_token_refresher"
    assert client.access_token is None
    assert len(recorder.requests) == 1


def test_failing_refresher_raises_token_refresh_error():
    def broken():
        raise RuntimeError("identity provider down")

    recorder = Recorder(httpx.Response(401, json={}))
    provider = TokenProvider()
    provider.set_refresher(broken)

    with pytest.raises(TokenRefreshError) as exc_info:
        _client(recorder, provider).expire_subscription("user-1")
    assert exc_info.value.code == "token_refresh_failed"


def test_read_only_group_error():
    recorder = Recorder(httpx.Response(403, json={
        "success": False,
        "error": "Group is read-only",
        "message": "This group has no active admin with a valid subscription.",
        "code": "GROUP_NO_ACTIVE_ADMIN",
    }))

    with pytest.raises(ReadOnlyGroupError) as exc_info:
        _client(recorder).create_wiki_document("group-1", "Title")

    assert exc_info.value.code == "GROUP_NO_ACTIVE_ADMIN"
    assert exc_info.value.message.startswith("This group has no active admin")


def test_other_403_is_plain_api_error():
    recorder = Recorder(httpx.Response(403, json={"code": "support_required", "message": "Support access required"}))

    with pytest.raises(ApiError) as exc_info:
        _client(recorder).list_users()

    assert not isinstance(exc_info.value, ReadOnlyGroupError)
    assert exc_info.value.message == "Support access required"


def test_non_json_error_body():
    recorder = Recorder(httpx.Response(502, text="Bad Gateway"))
    with pytest.raises(ApiError) as exc_info:
        _client(recorder).list_users()
    assert exc_info.value.status_code == 502
    assert exc_info.value.code is None


def test_query_parameters():
    recorder = Recorder(httpx.Response(200, json={"success": True, "logs": []}))
    _client(recorder).audit_logs(action="lock_user", page=2)
    params = recorder.requests[0].url.params
    assert params["action"] == "lock_user"
    assert params["page"] == "2"
    assert params["limit"] == "50"


class TestTokenProvider:
    def test_refresh_without_refresher(self):
        assert TokenProvider().refresh() is None

    def test_set_and_clear(self):
        provider = TokenProvider()
        provider.set_refresher(lambda: "t")
        assert provider.has_refresher() is True
        assert provider.refresh() == "t"
        provider.clear()
        assert provider.has_refresher() is False
        assert provider.refresh() is None

    def test_refresher_exception_returns_none(self):
        provider = TokenProvider()
        provider.set_refresher(lambda: 1 / 0)
        assert provider.refresh() is None

    def test_module_level_default_provider(self):
        try:
            token_provider.set_token_refresher(lambda: "global")
            assert token_provider.has_token_refresher() is True
            assert token_provider.refresh_token() == "global"
        finally:
            token_provider.clear_token_refresher()
        assert token_provider.has_token_refresher() is False
