"""
Tests for the public key cache.
"""

from datetime import datetime, timezone

import pytest

from service_auth.app.jwks import KeyFetcher, PublicKeyCache, PublicKeyEntry
from shared.errors import KeyFetchError
from shared.metrics import MetricsCollector


URL = "https://keys.example.com/auth/keys"
EPOCH = datetime(2024, 1, 1, tzinfo=timezone.utc)


def entry(kid: str, modulus: int = 3233, exponent: int = 17) -> PublicKeyEntry:
    return PublicKeyEntry(key_id=kid, modulus=modulus, exponent=exponent, fetched_at=EPOCH)


class TestPublicKeyCache:
    """Test lookup, replace and refresh."""

    def test_lookup_miss_returns_none(self):
        cache = PublicKeyCache(KeyFetcher())
        assert cache.lookup("missing") is None
        assert len(cache) == 0

    def test_replace_overwrites_matching_kids_and_keeps_others(self):
        cache = PublicKeyCache(KeyFetcher())
        cache.replace([entry("a", modulus=1), entry("b", modulus=2)])

        cache.replace([entry("a", modulus=10), entry("c", modulus=30)])

        assert cache.lookup("a").modulus == 10
        assert cache.lookup("b").modulus == 2
        assert cache.lookup("c").modulus == 30
        assert len(cache) == 3

    def test_clear_drops_everything(self):
        cache = PublicKeyCache(KeyFetcher())
        cache.replace([entry("a")])
        cache.clear()
        assert cache.lookup("a") is None

    @pytest.mark.asyncio
    async def test_refresh_stores_fetched_keys(self, key_server, signing_key):
        metrics = MetricsCollector("auth-cache-test")
        cache = PublicKeyCache(KeyFetcher(client=key_server.client()), metrics=metrics)

        entries = await cache.refresh(URL)

        assert [e.key_id for e in entries] == [signing_key.kid]
        assert cache.lookup(signing_key.kid) == entries[0]
        assert metrics.registry.get_sample_value("jwks_refresh_total", {"status": "ok"}) == 1.0

    @pytest.mark.asyncio
    async def test_failed_refresh_leaves_cache_untouched(self, key_server, signing_key):
        metrics = MetricsCollector("auth-cache-test-failure")
        cache = PublicKeyCache(KeyFetcher(client=key_server.client()), metrics=metrics)
        await cache.refresh(URL)
        before = cache.lookup(signing_key.kid)

        key_server.status_code = 503
        with pytest.raises(KeyFetchError):
            await cache.refresh(URL)

        assert cache.lookup(signing_key.kid) is before
        assert metrics.registry.get_sample_value("jwks_refresh_total", {"status": "error"}) == 1.0

    def test_replace_is_all_or_nothing(self):
        cache = PublicKeyCache(KeyFetcher())
        cache.replace([entry("a", modulus=1)])

        def broken_entries():
            yield entry("a", modulus=2)
            raise RuntimeError("decode failed halfway")

        with pytest.raises(RuntimeError):
            cache.replace(broken_entries())

        assert cache.lookup("a").modulus == 1

    def test_entries_handed_out_are_not_changed_by_later_refresh(self):
        cache = PublicKeyCache(KeyFetcher())
        cache.replace([entry("a", modulus=1)])
        before = cache.lookup("a")

        cache.replace([entry("a", modulus=2)])

        assert before.modulus == 1
        assert cache.lookup("a").modulus == 2
