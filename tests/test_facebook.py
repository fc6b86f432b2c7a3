import httpx
import pytest

from viralflow.errors import AuthError, ConnectivityError, RefreshNotSupported
from viralflow.integrations.facebook_api import FacebookAdapter
from viralflow.schemas import Platform, PlatformCredentials, PublishRequest


def _request(**overrides) -> PublishRequest:
    values = dict(
        platform=Platform.facebook,
        account_id="acc-fb",
        credentials=PlatformCredentials(access_token="page-token"),
        content="Hello page",
        hashtags=["news"],
        target_id="1001",
    )
    values.update(overrides)
    return PublishRequest(**values)


async def test_publish_to_page_feed(http_mock):
    transport, calls = http_mock(lambda request: httpx.Response(200, json={"id": "1001_77"}))
    result = await FacebookAdapter(transport=transport, api_version="v18.0").publish(
        _request(link="https://example.com/article")
    )

    assert result.success
    assert result.id == "1001_77"
    assert result.url == "https://www.facebook.com/1001_77"
    sent = calls[0]
    assert sent.method == "POST"
    assert sent.url.path == "/v18.0/1001/feed"
    assert sent.url.params["message"] == "Hello page\n\n#news"
    assert sent.url.params["link"] == "https://example.com/article"
    assert sent.url.params["access_token"] == "page-token"


async def test_missing_page_id_fails_locally(http_mock):
    transport, calls = http_mock(lambda request: httpx.Response(200, json={"id": "x"}))
    result = await FacebookAdapter(transport=transport).publish(_request(target_id=None))
    assert not result.success
    assert "Page ID" in result.error
    assert calls == []


@pytest.mark.parametrize("status", [400, 500])
async def test_remote_rejection_is_returned(http_mock, status):
    transport, _ = http_mock(
        lambda request: httpx.Response(status, json={"error": {"message": "(#200) Permissions error", "code": 200}})
    )
    result = await FacebookAdapter(transport=transport).publish(_request())
    assert not result.success
    assert "(#200) Permissions error" in result.error
    assert result.retryable is (status >= 500)


async def test_error_message_is_scrubbed(http_mock):
    transport, _ = http_mock(lambda request: httpx.Response(400, text="bad request access_token=SECRET123"))
    result = await FacebookAdapter(transport=transport).publish(_request())
    assert "SECRET123" not in result.error
    assert "access_token=***" in result.error


async def test_exchange_code_then_long_lived(http_mock, app_credentials):
    def handler(request):
        if "fb_exchange_token" in request.url.params:
            assert request.url.params["fb_exchange_token"] == "short"
            return httpx.Response(200, json={"access_token": "long", "token_type": "bearer"})
        assert request.url.params["code"] == "the-code"
        return httpx.Response(200, json={"access_token": "short", "expires_in": 3600})

    transport, calls = http_mock(handler)
    tokens = await FacebookAdapter(client_credentials=app_credentials, transport=transport).exchange_code(
        "the-code", "https://app.example.com/cb"
    )
    assert len(calls) == 2
    assert tokens.access_token == "long"
    assert tokens.expires_in == 5184000


async def test_long_lived_failure_keeps_short_token(http_mock, app_credentials):
    def handler(request):
        if "fb_exchange_token" in request.url.params:
            return httpx.Response(400, json={"error": {"message": "Invalid token"}})
        return httpx.Response(200, json={"access_token": "short", "expires_in": 3600})

    transport, _ = http_mock(handler)
    tokens = await FacebookAdapter(client_credentials=app_credentials, transport=transport).exchange_code("c", "https://x")
    assert tokens.access_token == "short"
    assert tokens.expires_in == 3600


async def test_exchange_code_rejected_raises(http_mock, app_credentials):
    transport, _ = http_mock(lambda request: httpx.Response(400, json={"error": {"message": "Code expired"}}))
    with pytest.raises(AuthError, match="Code expired"):
        await FacebookAdapter(client_credentials=app_credentials, transport=transport).exchange_code("c", "https://x")


async def test_exchange_code_network_error_raises(http_mock, app_credentials):
    def boom(request):
        raise httpx.ConnectError("unreachable", request=request)

    transport, _ = http_mock(boom)
    with pytest.raises(ConnectivityError):
        await FacebookAdapter(client_credentials=app_credentials, transport=transport).exchange_code("c", "https://x")


async def test_refresh_not_supported():
    adapter = FacebookAdapter()
    assert not adapter.supports_refresh
    with pytest.raises(RefreshNotSupported):
        await adapter.refresh_token("anything")


async def test_list_pages(http_mock):
    pages = [{"id": "1", "name": "Page", "access_token": "pt", "instagram_business_account": {"id": "ig-1"}}]
    transport, calls = http_mock(lambda request: httpx.Response(200, json={"data": pages}))
    assert await FacebookAdapter(transport=transport).list_pages("user-token") == pages
    assert calls[0].url.path.endswith("/me/accounts")


async def test_non_json_success_body_is_still_a_success(http_mock):
    transport, _ = http_mock(lambda request: httpx.Response(200, text="<html>OK</html>"))
    result = await FacebookAdapter(transport=transport).publish(_request())
    assert result.success
    assert result.id is None
    assert result.url is None


async def test_pages_lookup_with_non_json_body_is_empty(http_mock):
    transport, _ = http_mock(lambda request: httpx.Response(200, text="maintenance"))
    assert await FacebookAdapter(transport=transport).list_pages("user-token") == []
