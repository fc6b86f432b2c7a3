from __future__ import annotations

import base64

from viralflow.schemas import MediaRef, Platform, PublishRequest
from viralflow.services.publisher_adapter import (
    PlatformAdapter,
    PublishResult,
    TokenPair,
    _sanitize_dict,
    build_full_text,
    truncate_with_ellipsis,
)

PIN_API_URL = "https://api.pinterest.com/v5"
PIN_PINS_URL = f"{PIN_API_URL}/pins"
PIN_BOARDS_URL = f"{PIN_API_URL}/boards"
PIN_TOKEN_URL = f"{PIN_API_URL}/oauth/token"
PIN_USER_URL = f"{PIN_API_URL}/user_account"

PIN_TITLE_MAX = 80
PIN_DESCRIPTION_MAX = 500


def pin_title(content: str) -> str:
    first_line = next((line.strip() for line in content.split("\n") if line.strip()), "New Pin")
    return truncate_with_ellipsis(first_line, PIN_TITLE_MAX)


def media_source(media: MediaRef) -> dict | None:
    if media.url:
        return {"source_type": "image_url", "url": media.url}
    if media.base64:
        return {"source_type": "image_base64", "content_type": media.content_type, "data": media.base64}
    return None


class PinterestAdapter(PlatformAdapter):
    """Image pins via `POST /v5/pins`.

    Board: `target_id` when stored, otherwise the first board of the user.
    OAuth uses HTTP Basic client authentication on the token endpoint.
    """

    platform = Platform.pinterest
    supports_refresh = True
    requires_media = True
    max_length = PIN_DESCRIPTION_MAX

    def _headers(self, access_token: str) -> dict[str, str]:
        return {"Authorization": f"Bearer {access_token}", "Content-Type": "application/json"}

    async def fallback_image_url(self, access_token: str, target_id: str | None = None) -> str | None:
        async with self._client() as client:
            resp = await self._send(client, "GET", PIN_USER_URL, headers=self._headers(access_token))
        if resp.status_code >= 400:
            return None
        return self._json(resp).get("profile_image")

    async def publish(self, request: PublishRequest) -> PublishResult:
        access_token = request.credentials.access_token
        if not access_token:
            return self._fail(request.account_id, "Missing access token for Pinterest account")
        source = media_source(request.media[0]) if request.media else None
        if source is None:
            return self._fail(request.account_id, "Pinterest requires an image (URL or base64)")

        async with self._client() as client:
            board_id = request.target_id
            if not board_id:
                resp = await self._send(
                    client, "GET", PIN_BOARDS_URL, headers=self._headers(access_token), params={"page_size": 100}
                )
                if resp.status_code >= 400:
                    return self._rejected(request.account_id, resp, "boards lookup")
                boards = self._json(resp).get("items") or []
                if not boards:
                    return self._fail(request.account_id, "No Pinterest boards found for this account")
                board_id = boards[0]["id"]

            payload = {
                "board_id": board_id,
                "title": request.title or pin_title(request.content),
                "description": truncate_with_ellipsis(build_full_text(request.content, request.hashtags), PIN_DESCRIPTION_MAX),
                "media_source": source,
            }
            if request.link:
                payload["link"] = request.link

            self._log(request.account_id, f"Creating pin on board {board_id} ({source['source_type']})")
            resp = await self._send(client, "POST", PIN_PINS_URL, headers=self._headers(access_token), json=payload)

        if resp.status_code >= 400:
            return self._rejected(request.account_id, resp, "pin")

        data = self._json(resp)
        pin_id = data.get("id")
        url = f"https://www.pinterest.com/pin/{pin_id}/" if pin_id else None
        self._log(request.account_id, f"Published: {url}")
        return PublishResult(
            success=True,
            id=pin_id,
            url=url,
            platform=self.name,
            raw_response=_sanitize_dict(data) or {},
        )

    def _basic_auth(self) -> str:
        app = self._require_app_credentials()
        raw = f"{app.client_id}:{app.client_secret}".encode()
        return "Basic " + base64.b64encode(raw).decode()

    async def exchange_code(self, code: str, redirect_uri: str) -> TokenPair:
        data = await self._token_request(
            "POST",
            PIN_TOKEN_URL,
            "Pinterest token exchange",
            headers={"Authorization": self._basic_auth()},
            data={"grant_type": "authorization_code", "code": code, "redirect_uri": redirect_uri},
        )
        return TokenPair.from_response(data)

    async def refresh_token(self, refresh_token: str) -> TokenPair:
        data = await self._token_request(
            "POST",
            PIN_TOKEN_URL,
            "Pinterest token refresh",
            headers={"Authorization": self._basic_auth()},
            data={"grant_type": "refresh_token", "refresh_token": refresh_token},
        )
        return TokenPair.from_response(data, fallback_refresh=refresh_token)
