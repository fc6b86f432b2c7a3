from __future__ import annotations

from viralflow.schemas import Platform, PublishRequest
from viralflow.services.publisher_adapter import (
    PlatformAdapter,
    PublishResult,
    TokenPair,
    _sanitize_dict,
)

LI_API_URL = "https://api.linkedin.com/v2"
LI_UGC_POSTS_URL = f"{LI_API_URL}/ugcPosts"
LI_TOKEN_URL = "https://www.linkedin.com/oauth/v2/accessToken"

LI_MAX_LENGTH = 3000


def author_urn(target_id: str | None) -> str | None:
    """Numeric ids are company pages; anything else is a member id or a full URN."""
    if not target_id:
        return None
    if target_id.startswith("urn:li:"):
        return target_id
    if target_id.isdigit():
        return f"urn:li:organization:{target_id}"
    return f"urn:li:person:{target_id}"


def build_ugc_post(author: str, text: str, visibility: str = "PUBLIC") -> dict:
    return {
        "author": author,
        "lifecycleState": "PUBLISHED",
        "specificContent": {
            "com.linkedin.ugc.ShareContent": {
                "shareCommentary": {"text": text},
                "shareMediaCategory": "NONE",
            },
        },
        "visibility": {"com.linkedin.ugc.MemberNetworkVisibility": visibility},
    }


class LinkedInAdapter(PlatformAdapter):
    """Text posts via the UGC Posts API.

    The author is the organization (numeric target id) or the member
    (person id or full URN) stored as the account target.
    """

    platform = Platform.linkedin
    supports_refresh = True
    max_length = LI_MAX_LENGTH

    def _headers(self, access_token: str) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {access_token}",
            "Content-Type": "application/json",
            "X-Restli-Protocol-Version": "2.0.0",
        }

    async def publish(self, request: PublishRequest) -> PublishResult:
        access_token = request.credentials.access_token
        if not access_token:
            return self._fail(request.account_id, "Missing access token for LinkedIn account")
        if not request.content.strip():
            return self._fail(request.account_id, "LinkedIn post text is empty")

        author = author_urn(request.target_id)
        if author is None:
            return self._fail(request.account_id, "Missing LinkedIn author (person or organization id is required)")

        text = self._caption(request)
        self._log(request.account_id, f"Posting as {author} ({len(text)} chars)")
        payload = build_ugc_post(author, text, request.visibility)
        async with self._client() as client:
            resp = await self._send(client, "POST", LI_UGC_POSTS_URL, headers=self._headers(access_token), json=payload)

        if resp.status_code >= 400:
            return self._rejected(request.account_id, resp, "post")

        data = self._json(resp)
        post_id = data.get("id") or resp.headers.get("x-restli-id")
        url = f"https://www.linkedin.com/feed/update/{post_id}/" if post_id else None
        self._log(request.account_id, f"Published: {post_id}")
        return PublishResult(
            success=True,
            id=post_id,
            url=url,
            platform=self.name,
            raw_response=_sanitize_dict(data) or {},
        )

    async def exchange_code(self, code: str, redirect_uri: str) -> TokenPair:
        app = self._require_app_credentials()
        data = await self._token_request(
            "POST",
            LI_TOKEN_URL,
            "LinkedIn token exchange",
            data={
                "grant_type": "authorization_code",
                "code": code,
                "redirect_uri": redirect_uri,
                "client_id": app.client_id,
                "client_secret": app.client_secret,
            },
        )
        return TokenPair.from_response(data)

    async def refresh_token(self, refresh_token: str) -> TokenPair:
        app = self._require_app_credentials()
        data = await self._token_request(
            "POST",
            LI_TOKEN_URL,
            "LinkedIn token refresh",
            data={
                "grant_type": "refresh_token",
                "refresh_token": refresh_token,
                "client_id": app.client_id,
                "client_secret": app.client_secret,
            },
        )
        return TokenPair.from_response(data, fallback_refresh=refresh_token)

