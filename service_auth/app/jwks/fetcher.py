"""
Key set fetcher for identity provider JWKS endpoints.
"""

import base64
import binascii
import re
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

import httpx

from shared.errors import KeyFetchError
from shared.logging import get_logger
from .models import PublicKeyEntry


BASE64URL_RE = re.compile(r"[A-Za-z0-9_-]+")


def b64url_to_int(value: Any) -> int:
    """Decode a base64url (unpadded) big-endian integer as used by JWK n/e."""
    if not isinstance(value, str) or not value:
        raise ValueError("expected a non-empty base64url string")
    if not BASE64URL_RE.fullmatch(value):
        raise ValueError("value is not unpadded base64url")

    padding = "=" * (-len(value) % 4)
    try:
        raw = base64.urlsafe_b64decode(value + padding)
    except (binascii.Error, ValueError) as exc:
        raise ValueError(f"invalid base64url value: {exc}") from exc

    if not raw:
        raise ValueError("decoded value is empty")
    return int.from_bytes(raw, "big")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class KeyFetcher:
    """Fetches and decodes a provider's published key set.

    A fetch either returns every key in the document or raises
    KeyFetchError; it never yields a partial set.
    """

    def __init__(
        self,
        timeout: float = 10.0,
        client: Optional[httpx.AsyncClient] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.timeout = timeout
        self._client = client
        self._clock = clock or _utcnow
        self.logger = get_logger("auth.jwks.fetcher")

    async def fetch(self, url: str) -> List[PublicKeyEntry]:
        """GET the key set at url and decode it into PublicKeyEntry values."""
        response = await self._get(url)

        if response.status_code != 200:
            self.logger.warning("JWKS endpoint returned error status", url=url, status_code=response.status_code)
            raise KeyFetchError(url, f"HTTP {response.status_code}")

        try:
            document = response.json()
        except ValueError as exc:
            raise KeyFetchError(url, f"failed to parse key set JSON: {exc}") from exc

        keys = document.get("keys") if isinstance(document, dict) else None
        if not isinstance(keys, list):
            raise KeyFetchError(url, "key set document missing 'keys' array")

        fetched_at = self._clock()
        entries = [self._decode_key(url, key, fetched_at) for key in keys]

        self.logger.info("JWKS fetched", url=url, keys_count=len(entries))
        return entries

    async def _get(self, url: str) -> httpx.Response:
        try:
            if self._client is not None:
                return await self._client.get(url, timeout=self.timeout)
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                return await client.get(url)
        except httpx.HTTPError as exc:
            self.logger.warning("JWKS request failed", url=url, error=str(exc))
            raise KeyFetchError(url, f"failed to fetch public keys: {exc}") from exc

    @staticmethod
    def _decode_key(url: str, key: Dict[str, Any], fetched_at: datetime) -> PublicKeyEntry:
        if not isinstance(key, dict):
            raise KeyFetchError(url, "key entry is not an object")

        kid = key.get("kid")
        if not isinstance(kid, str) or not kid:
            raise KeyFetchError(url, "key entry missing 'kid'")

        try:
            modulus = b64url_to_int(key.get("n"))
        except ValueError as exc:
            raise KeyFetchError(url, f"failed to decode public key modulus for {kid}: {exc}") from exc

        try:
            exponent = b64url_to_int(key.get("e"))
        except ValueError as exc:
            raise KeyFetchError(url, f"failed to decode public key exponent for {kid}: {exc}") from exc

        return PublicKeyEntry(key_id=kid, modulus=modulus, exponent=exponent, fetched_at=fetched_at)
