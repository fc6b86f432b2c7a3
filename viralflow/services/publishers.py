"""Adapter registry keyed by Platform."""
from __future__ import annotations

from viralflow.integrations.facebook_api import FacebookAdapter
from viralflow.integrations.instagram_api import InstagramAdapter
from viralflow.integrations.linkedin_api import LinkedInAdapter
from viralflow.integrations.pinterest_api import PinterestAdapter
from viralflow.schemas import Platform
from viralflow.services.credentials import CredentialResolver
from viralflow.services.publisher_adapter import PlatformAdapter

_ADAPTERS: dict[Platform, type[PlatformAdapter]] = {
    Platform.linkedin: LinkedInAdapter,
    Platform.facebook: FacebookAdapter,
    Platform.instagram: InstagramAdapter,
    Platform.pinterest: PinterestAdapter,
}


def get_publisher(platform: Platform | str, **kwargs) -> PlatformAdapter:
    """Instantiate the adapter for a platform; kwargs go to the adapter constructor."""
    try:
        adapter_cls = _ADAPTERS[Platform(platform)]
    except ValueError as exc:
        raise ValueError(f"Unsupported platform: {platform}") from exc
    return adapter_cls(**kwargs)


async def build_publisher(platform: Platform | str, resolver: CredentialResolver, **kwargs) -> PlatformAdapter:
    """Adapter with app credentials from the resolver (needed for token calls)."""
    client_credentials = await resolver.resolve(platform)
    return get_publisher(platform, client_credentials=client_credentials, **kwargs)


def list_publishers() -> list[str]:
    return [p.value for p in _ADAPTERS]
