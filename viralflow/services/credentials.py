"""
Platform app credentials (OAuth client id / secret).

Lookup order per field:
1. stored override in app settings (`{platform}_client_id`, or
   `facebook_app_id` / `facebook_app_secret` for Facebook)
2. static default from environment Settings

Instagram logins go through the Facebook app, so it shares Facebook's keys.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

from viralflow.schemas import Platform
from viralflow.settings import Settings, get_settings

if TYPE_CHECKING:
    from viralflow.services.store import PipelineStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ClientCredentials:
    client_id: str
    client_secret: str


def credential_platform(platform: Platform | str) -> Platform:
    platform = Platform(platform)
    return Platform.facebook if platform is Platform.instagram else platform


def setting_keys(platform: Platform | str) -> tuple[str, str]:
    """Return the (id_key, secret_key) app-settings names for a platform."""
    platform = credential_platform(platform)
    if platform is Platform.facebook:
        return "facebook_app_id", "facebook_app_secret"
    return f"{platform.value}_client_id", f"{platform.value}_client_secret"


def _env_defaults(platform: Platform, settings: Settings) -> tuple[str | None, str | None]:
    if platform is Platform.linkedin:
        return settings.linkedin_client_id, settings.linkedin_client_secret
    if platform is Platform.facebook:
        return settings.facebook_app_id, settings.facebook_app_secret
    return settings.pinterest_app_id, settings.pinterest_app_secret


class CredentialResolver:
    def __init__(self, store: "PipelineStore | None" = None, settings: Settings | None = None):
        self.store = store
        self.settings = settings or get_settings()

    async def resolve(self, platform: Platform | str) -> ClientCredentials | None:
        platform = credential_platform(platform)
        id_key, secret_key = setting_keys(platform)

        stored: dict[str, str | None] = {}
        if self.store is not None:
            stored = await self.store.get_app_settings([id_key, secret_key])

        env_id, env_secret = _env_defaults(platform, self.settings)
        client_id = stored.get(id_key) or env_id
        client_secret = stored.get(secret_key) or env_secret

        if not client_id or not client_secret:
            logger.warning(f"[credentials] No app credentials configured for {platform.value}")
            return None
        return ClientCredentials(client_id=client_id, client_secret=client_secret)
