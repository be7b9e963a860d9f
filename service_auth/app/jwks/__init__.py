"""
JWKS package.

Contains logic for retrieving and caching the JSON Web Key Sets that
Apple and Google publish for verifying identity token signatures.

Key points:
- KeyFetcher owns the network call and the base64url decoding; a fetch
  either yields the whole key set or raises KeyFetchError.
- PublicKeyCache stores entries by kid and swaps in refreshed sets in one
  write. Staleness is judged by the token verifier, not by the cache.
"""

from .cache import PublicKeyCache
from .fetcher import KeyFetcher, b64url_to_int
from .models import PublicKeyEntry

__all__ = ["PublicKeyCache", "KeyFetcher", "PublicKeyEntry", "b64url_to_int"]
