"""
Process-wide cache of provider signing keys.
"""

import threading
from typing import Dict, Iterable, List, Optional

from shared.errors import KeyFetchError
from shared.logging import get_logger
from shared.metrics import MetricsCollector
from .fetcher import KeyFetcher
from .models import PublicKeyEntry


class PublicKeyCache:
    """Signing keys keyed by kid.

    The cache only stores and serves entries; deciding when an entry is too
    old to trust is left to the caller. Writes build a new mapping and swap
    it in under the write lock, so a reader sees either the mapping before
    a refresh or the mapping after it, never a mix.
    """

    def __init__(self, fetcher: KeyFetcher, metrics: Optional[MetricsCollector] = None):
        self._fetcher = fetcher
        self._metrics = metrics
        self._entries: Dict[str, PublicKeyEntry] = {}
        self._write_lock = threading.Lock()
        self.logger = get_logger("auth.jwks.cache")

    def lookup(self, key_id: str) -> Optional[PublicKeyEntry]:
        """Return the cached entry for key_id, or None on a miss."""
        return self._entries.get(key_id)

    async def refresh(self, url: str) -> List[PublicKeyEntry]:
        """Fetch the key set at url and store every key it contains.

        The network round trip happens before the write lock is taken. On
        KeyFetchError the cache is left untouched.
        """
        try:
            if self._metrics:
                with self._metrics.time_operation("jwks_refresh_duration_seconds"):
                    entries = await self._fetcher.fetch(url)
            else:
                entries = await self._fetcher.fetch(url)
        except KeyFetchError as exc:
            self.logger.error("Failed to refresh JWKS", url=url, error=exc.message)
            self._count_refresh("error")
            raise

        self.replace(entries)
        self._count_refresh("ok")
        self.logger.info(
            "JWKS refreshed successfully",
            url=url,
            kids=[entry.key_id for entry in entries]
        )
        return entries

    def replace(self, entries: Iterable[PublicKeyEntry]) -> None:
        """Overwrite the entries for every kid in entries as one bulk write."""
        entries = list(entries)
        with self._write_lock:
            updated = dict(self._entries)
            for entry in entries:
                updated[entry.key_id] = entry
            self._entries = updated

    def clear(self) -> None:
        """Drop every cached key."""
        with self._write_lock:
            self._entries = {}
        self.logger.info("JWKS cache cleared")

    def __len__(self) -> int:
        return len(self._entries)

    def _count_refresh(self, status: str) -> None:
        if self._metrics:
            self._metrics.increment_counter("jwks_refresh_total", status=status)
