"""
Instagram Graph API content publishing.

Two-step flow for every post:
1. create a media container (`POST /{ig_id}/media`)
2. publish it (`POST /{ig_id}/media_publish`) after a short processing wait

Carousels create one container per image (sequentially, in order), then a
CAROUSEL container referencing them, then publish. Instagram only accepts
public image URLs; base64 media is rejected locally.
"""
from __future__ import annotations

import asyncio

import httpx

from viralflow.integrations.graph_api import GraphAPIAdapter
from viralflow.schemas import Platform, PublishRequest
from viralflow.services.publisher_adapter import PublishResult, _sanitize_dict
from viralflow.settings import get_settings

IG_MAX_LENGTH = 2200
CAROUSEL_MIN_ITEMS = 2
CAROUSEL_MAX_ITEMS = 10


class InstagramAdapter(GraphAPIAdapter):
    platform = Platform.instagram
    max_length = IG_MAX_LENGTH
    requires_media = True

    def __init__(self, *, container_wait_sec: float | None = None, **kwargs):
        super().__init__(**kwargs)
        if container_wait_sec is None:
            container_wait_sec = get_settings().instagram_container_wait_sec
        self.container_wait_sec = container_wait_sec

    async def resolve_business_account(self, access_token: str) -> str | None:
        """Id of the first Instagram business account linked to one of the user's Pages."""
        for page in await self.list_pages(access_token):
            ig = page.get("instagram_business_account") or {}
            if ig.get("id"):
                return str(ig["id"])
        return None

    async def fallback_image_url(self, access_token: str, target_id: str | None = None) -> str | None:
        ig_id = target_id or await self.resolve_business_account(access_token)
        if not ig_id:
            return None
        async with self._client() as client:
            resp = await self._graph(client, "GET", ig_id, {"fields": "profile_picture_url", "access_token": access_token})
        if resp.status_code >= 400:
            return None
        return self._json(resp).get("profile_picture_url")

    async def publish(self, request: PublishRequest) -> PublishResult:
        if len(request.media) > 1:
            return await self.publish_carousel(request)

        if not request.credentials.access_token:
            return self._fail(request.account_id, "Missing access token for Instagram account")
        if not request.image_urls:
            return self._fail(request.account_id, "Instagram requires an image URL")

        access_token = request.credentials.access_token
        async with self._client() as client:
            ig_id = await self._account_id(request)
            if not ig_id:
                return self._fail(request.account_id, "No Instagram Business Account found (must be connected to a Facebook Page)")

            self._log(request.account_id, f"Creating media container for {ig_id}")
            resp = await self._graph(
                client,
                "POST",
                f"{ig_id}/media",
                {"image_url": request.image_urls[0], "caption": self._caption(request), "access_token": access_token},
            )
            if resp.status_code >= 400:
                return self._rejected(request.account_id, resp, "media container")
            creation_id = self._json(resp).get("id")
            if not creation_id:
                return self._fail(request.account_id, "Instagram did not return a container id")

            return await self._publish_container(client, request, ig_id, creation_id)

    async def publish_carousel(self, request: PublishRequest) -> PublishResult:
        if not request.credentials.access_token:
            return self._fail(request.account_id, "Missing access token for Instagram account")
        image_urls = request.image_urls
        if len(request.media) != len(image_urls):
            return self._fail(request.account_id, "Instagram carousel items must be image URLs")
        if not CAROUSEL_MIN_ITEMS <= len(image_urls) <= CAROUSEL_MAX_ITEMS:
            return self._fail(
                request.account_id,
                f"Carousel must have {CAROUSEL_MIN_ITEMS}-{CAROUSEL_MAX_ITEMS} images (got {len(image_urls)})",
            )

        access_token = request.credentials.access_token
        async with self._client() as client:
            ig_id = await self._account_id(request)
            if not ig_id:
                return self._fail(request.account_id, "No Instagram Business Account found (must be connected to a Facebook Page)")

            children: list[str] = []
            for index, image_url in enumerate(image_urls, start=1):
                resp = await self._graph(
                    client,
                    "POST",
                    f"{ig_id}/media",
                    {"image_url": image_url, "is_carousel_item": "true", "access_token": access_token},
                )
                if resp.status_code >= 400:
                    return self._rejected(request.account_id, resp, f"carousel item {index}")
                child_id = self._json(resp).get("id")
                if not child_id:
                    return self._fail(request.account_id, f"Instagram did not return an id for carousel item {index}")
                children.append(child_id)

            self._log(request.account_id, f"Creating carousel container with {len(children)} items")
            resp = await self._graph(
                client,
                "POST",
                f"{ig_id}/media",
                {
                    "media_type": "CAROUSEL",
                    "caption": self._caption(request),
                    "children": ",".join(children),
                    "access_token": access_token,
                },
            )
            if resp.status_code >= 400:
                return self._rejected(request.account_id, resp, "carousel container")
            creation_id = self._json(resp).get("id")
            if not creation_id:
                return self._fail(request.account_id, "Instagram did not return a carousel container id")

            return await self._publish_container(client, request, ig_id, creation_id)

    async def _account_id(self, request: PublishRequest) -> str | None:
        if request.target_id:
            return request.target_id
        return await self.resolve_business_account(request.credentials.access_token or "")

    async def _publish_container(
        self, client: httpx.AsyncClient, request: PublishRequest, ig_id: str, creation_id: str
    ) -> PublishResult:
        if self.container_wait_sec > 0:
            await asyncio.sleep(self.container_wait_sec)

        resp = await self._graph(
            client,
            "POST",
            f"{ig_id}/media_publish",
            {"creation_id": creation_id, "access_token": request.credentials.access_token},
        )
        if resp.status_code >= 400:
            return self._rejected(request.account_id, resp, "media publish")

        data = self._json(resp)
        media_id = data.get("id")
        self._log(request.account_id, f"Published: {media_id}")
        return PublishResult(
            success=True,
            id=media_id,
            platform=self.name,
            raw_response=_sanitize_dict(data) or {},
        )
