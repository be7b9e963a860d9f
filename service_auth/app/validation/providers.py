"""
Identity providers whose tokens can be verified.
"""

from dataclasses import dataclass
from typing import Any, Dict, Optional

from shared.config import BaseConfig
from shared.errors import UnsupportedProviderError


APPLE_KEYS_URL = "https://appleid.apple.com/auth/keys"
GOOGLE_KEYS_URL = "https://www.googleapis.com/oauth2/v3/certs"


@dataclass(frozen=True)
class ProviderKeySet:
    """Where a provider publishes its signing keys, and what audience to expect."""

    name: str
    keys_url: str
    audience: Optional[str] = None


class ProviderRegistry:
    """Maps a claimed provider name to its key set location.

    Guests never carry a token, so "guest" is not registered and resolves
    to UnsupportedProviderError like any unknown name.
    """

    def __init__(self, providers: Dict[str, ProviderKeySet]):
        self._providers = dict(providers)

    @classmethod
    def default(cls) -> "ProviderRegistry":
        return cls({
            "apple": ProviderKeySet("apple", APPLE_KEYS_URL),
            "google": ProviderKeySet("google", GOOGLE_KEYS_URL),
        })

    @classmethod
    def from_config(cls, config: BaseConfig) -> "ProviderRegistry":
        return cls({
            "apple": ProviderKeySet("apple", config.apple_keys_url, config.apple_audience),
            "google": ProviderKeySet("google", config.google_keys_url, config.google_audience),
        })

    def resolve(self, provider: Any) -> ProviderKeySet:
        """Return the key set for provider or raise UnsupportedProviderError."""
        name = str(getattr(provider, "value", provider) or "")
        key_set = self._providers.get(name.lower())
        if key_set is None:
            raise UnsupportedProviderError(name)
        return key_set

    def names(self):
        return sorted(self._providers)
