import httpx
import pytest

from viralflow.errors import ConnectivityError
from viralflow.integrations.instagram_api import InstagramAdapter
from viralflow.schemas import MediaRef, Platform, PlatformCredentials, PublishRequest


def _request(image_urls=("https://cdn.example.com/1.jpg",), **overrides) -> PublishRequest:
    values = dict(
        platform=Platform.instagram,
        account_id="acc-ig",
        credentials=PlatformCredentials(access_token="ig-token"),
        content="Caption",
        hashtags=["photo"],
        media=[MediaRef(url=u) for u in image_urls],
        target_id="ig-42",
    )
    values.update(overrides)
    return PublishRequest(**values)


def _adapter(transport) -> InstagramAdapter:
    return InstagramAdapter(transport=transport, container_wait_sec=0)


def _graph_handler(request: httpx.Request) -> httpx.Response:
    path = request.url.path
    if path.endswith("/media_publish"):
        return httpx.Response(200, json={"id": "media-final"})
    if path.endswith("/media"):
        if request.url.params.get("media_type") == "CAROUSEL":
            return httpx.Response(200, json={"id": "carousel-container"})
        return httpx.Response(200, json={"id": f"child-{request.url.params['image_url'][-5]}"})
    return httpx.Response(404)


async def test_single_image_two_step_publish(http_mock):
    transport, calls = http_mock(_graph_handler)
    result = await _adapter(transport).publish(_request())

    assert result.success
    assert result.id == "media-final"
    assert [c.url.path for c in calls] == ["/v18.0/ig-42/media", "/v18.0/ig-42/media_publish"]
    assert calls[0].url.params["caption"] == "Caption\n\n#photo"
    assert calls[1].url.params["creation_id"] == "child-1"


async def test_missing_image_rejected_before_network(http_mock):
    transport, calls = http_mock(_graph_handler)
    result = await _adapter(transport).publish(_request(image_urls=()))
    assert not result.success
    assert "image URL" in result.error
    assert calls == []


async def test_base64_only_media_is_rejected_locally(http_mock):
    transport, calls = http_mock(_graph_handler)
    result = await _adapter(transport).publish(_request(image_urls=(), media=[MediaRef(base64="aGVsbG8=")]))
    assert not result.success
    assert calls == []


@pytest.mark.parametrize("count", [1, 11])
async def test_carousel_size_rejected_without_network(http_mock, count):
    transport, calls = http_mock(_graph_handler)
    urls = [f"https://cdn.example.com/{i}.jpg" for i in range(count)]
    result = await _adapter(transport).publish_carousel(_request(image_urls=urls))
    assert not result.success
    assert f"(got {count})" in result.error
    assert calls == []


async def test_carousel_with_two_images_makes_four_sequential_calls(http_mock):
    transport, calls = http_mock(_graph_handler)
    urls = ["https://cdn.example.com/1.jpg", "https://cdn.example.com/2.jpg"]
    result = await _adapter(transport).publish(_request(image_urls=urls))

    assert result.success
    assert result.id == "media-final"
    assert len(calls) == 4
    first, second, container, publish = calls
    assert first.url.params["image_url"] == urls[0]
    assert first.url.params["is_carousel_item"] == "true"
    assert second.url.params["image_url"] == urls[1]
    assert container.url.params["media_type"] == "CAROUSEL"
    assert container.url.params["children"] == "child-1,child-2"
    assert publish.url.path.endswith("/media_publish")
    assert publish.url.params["creation_id"] == "carousel-container"


async def test_carousel_item_rejection_stops_flow(http_mock):
    def handler(request):
        if request.url.params.get("image_url", "").endswith("2.jpg"):
            return httpx.Response(400, json={"error": {"message": "Invalid image"}})
        return _graph_handler(request)

    transport, calls = http_mock(handler)
    urls = ["https://cdn.example.com/1.jpg", "https://cdn.example.com/2.jpg"]
    result = await _adapter(transport).publish(_request(image_urls=urls))
    assert not result.success
    assert "carousel item 2" in result.error
    assert "Invalid image" in result.error
    assert len(calls) == 2


async def test_container_rejection_returned(http_mock):
    transport, _ = http_mock(lambda request: httpx.Response(400, json={"error": {"message": "Media type not supported"}}))
    result = await _adapter(transport).publish(_request())
    assert not result.success
    assert "Media type not supported" in result.error


async def test_network_error_raises(http_mock):
    def boom(request):
        raise httpx.ReadTimeout("slow", request=request)

    transport, _ = http_mock(boom)
    with pytest.raises(ConnectivityError):
        await _adapter(transport).publish(_request())


async def test_business_account_resolved_from_pages(http_mock):
    def handler(request):
        if request.url.path.endswith("/me/accounts"):
            return httpx.Response(200, json={"data": [{"id": "p1"}, {"id": "p2", "instagram_business_account": {"id": "ig-9"}}]})
        return _graph_handler(request)

    transport, calls = http_mock(handler)
    result = await _adapter(transport).publish(_request(target_id=None))
    assert result.success
    assert calls[1].url.path == "/v18.0/ig-9/media"


async def test_fallback_image_is_profile_picture(http_mock):
    transport, calls = http_mock(
        lambda request: httpx.Response(200, json={"profile_picture_url": "https://cdn.example.com/me.jpg"})
    )
    url = await _adapter(transport).fallback_image_url("ig-token", "ig-42")
    assert url == "https://cdn.example.com/me.jpg"
    assert calls[0].url.params["fields"] == "profile_picture_url"


async def test_non_json_container_response_is_a_failed_result(http_mock):
    transport, calls = http_mock(lambda request: httpx.Response(200, text="<html>upstream error</html>"))
    result = await _adapter(transport).publish(_request())
    assert not result.success
    assert result.error == "Instagram did not return a container id"
    assert len(calls) == 1
