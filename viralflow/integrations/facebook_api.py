from __future__ import annotations

from viralflow.integrations.graph_api import GraphAPIAdapter
from viralflow.schemas import Platform, PublishRequest
from viralflow.services.publisher_adapter import PublishResult, _sanitize_dict

FB_MAX_LENGTH = 63206


class FacebookAdapter(GraphAPIAdapter):
    """Page feed posts (`POST /{page_id}/feed`).

    `target_id` is the Page id and the stored access token must be that
    Page's token. Graph has no refresh grant; tokens are re-issued through
    the long-lived exchange at reconnect time.
    """

    platform = Platform.facebook
    max_length = FB_MAX_LENGTH

    async def publish(self, request: PublishRequest) -> PublishResult:
        access_token = request.credentials.access_token
        if not access_token:
            return self._fail(request.account_id, "Missing access token for Facebook account")
        if not request.target_id:
            return self._fail(request.account_id, "Facebook account is missing the Page ID. Please reconnect Facebook.")

        message = self._caption(request)
        params = {"message": message, "access_token": access_token}
        if request.link:
            params["link"] = request.link

        self._log(request.account_id, f"Posting to page {request.target_id}")
        async with self._client() as client:
            resp = await self._graph(client, "POST", f"{request.target_id}/feed", params)

        if resp.status_code >= 400:
            return self._rejected(request.account_id, resp, "post")

        data = self._json(resp)
        post_id = data.get("id")
        # Usually "{page_id}_{post_id}", which facebook.com resolves directly
        url = f"https://www.facebook.com/{post_id}" if post_id else None
        self._log(request.account_id, f"Published: {post_id}")
        return PublishResult(
            success=True,
            id=post_id,
            url=url,
            platform=self.name,
            raw_response=_sanitize_dict(data) or {},
        )
