"""
Shared Facebook Graph API plumbing for the Facebook and Instagram adapters.

- versioned base URL (`GRAPH_API_VERSION`, default v18.0)
- OAuth: code exchange, then the `fb_exchange_token` long-lived exchange
- page discovery (`/me/accounts`)
"""
from __future__ import annotations

import logging

import httpx

from viralflow.errors import AuthError, PlatformError
from viralflow.services.publisher_adapter import PlatformAdapter, TokenPair, _remote_message, _sanitize
from viralflow.settings import get_settings

logger = logging.getLogger(__name__)

GRAPH_HOST = "https://graph.facebook.com"
# Graph does not always report expires_in for long-lived tokens (60 days)
LONG_LIVED_DEFAULT_EXPIRES_IN = 5184000


class GraphAPIAdapter(PlatformAdapter):
    """Base for adapters talking to graph.facebook.com."""

    def __init__(self, *, api_version: str | None = None, **kwargs):
        super().__init__(**kwargs)
        self.api_version = api_version or get_settings().graph_api_version

    @property
    def base_url(self) -> str:
        return f"{GRAPH_HOST}/{self.api_version}"

    async def _graph(self, client: httpx.AsyncClient, method: str, path: str, params: dict) -> httpx.Response:
        # Graph takes every argument (access_token included) as query params
        return await self._send(client, method, f"{self.base_url}/{path.lstrip('/')}", params=params)

    async def exchange_code(self, code: str, redirect_uri: str) -> TokenPair:
        app = self._require_app_credentials()
        short = await self._token_request(
            "GET",
            f"{self.base_url}/oauth/access_token",
            "Graph token exchange",
            params={
                "client_id": app.client_id,
                "client_secret": app.client_secret,
                "redirect_uri": redirect_uri,
                "code": code,
            },
        )
        try:
            return await self.exchange_long_lived(short["access_token"])
        except AuthError as exc:
            logger.warning(f"[{self.name}] Long-lived exchange failed, keeping short-lived token: {exc}")
            return TokenPair.from_response(short)

    async def exchange_long_lived(self, short_lived_token: str) -> TokenPair:
        app = self._require_app_credentials()
        data = await self._token_request(
            "GET",
            f"{self.base_url}/oauth/access_token",
            "Graph long-lived token exchange",
            params={
                "grant_type": "fb_exchange_token",
                "client_id": app.client_id,
                "client_secret": app.client_secret,
                "fb_exchange_token": short_lived_token,
            },
        )
        return TokenPair.from_response(data, default_expires_in=LONG_LIVED_DEFAULT_EXPIRES_IN)

    async def list_pages(self, access_token: str) -> list[dict]:
        """Pages the user manages: `{id, name, access_token, instagram_business_account?}`."""
        async with self._client() as client:
            resp = await self._graph(
                client,
                "GET",
                "me/accounts",
                {"access_token": access_token, "fields": "id,name,access_token,instagram_business_account"},
            )
        if resp.status_code >= 400:
            raise PlatformError(self.name, _sanitize(f"Pages lookup failed ({resp.status_code}): {_remote_message(resp)}"))
        return self._json(resp).get("data", [])
