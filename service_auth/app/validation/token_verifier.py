"""
Identity token verification against provider signing keys.
"""

from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, Optional

from jose import jwt
from jose.exceptions import JWTError
from pydantic import BaseModel

from shared.errors import (
    InvalidOrExpiredTokenError,
    KeyFetchError,
    MalformedTokenError,
)
from shared.logging import get_logger
from shared.metrics import MetricsCollector
from ..jwks.cache import PublicKeyCache
from ..jwks.models import PublicKeyEntry
from .providers import ProviderKeySet, ProviderRegistry


RSA_ALGORITHMS = ("RS256", "RS384", "RS512")
DEFAULT_KEY_TTL = timedelta(minutes=30)


class VerifiedIdentity(BaseModel):
    """Claims of a token whose signature and expiry checked out."""
    provider: str
    subject_claims: Dict[str, Any]

    @property
    def subject(self) -> Optional[str]:
        return self.subject_claims.get("sub")

    @property
    def email(self) -> Optional[str]:
        return self.subject_claims.get("email")


class SigningKeyNotFound(Exception):
    """The provider's key set has no key with the token's kid."""

    def __init__(self, kid: str):
        super().__init__(f"no matching public key found for kid {kid}")
        self.kid = kid


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class TokenVerifier:
    """Verifies provider-signed RS* tokens.

    Each verification is two attempts at most: the first uses the cached key
    (fetching only on a miss or a stale entry), the second forces a refresh
    of the provider's key set. A second failure is reported as
    InvalidOrExpiredTokenError; there is no third attempt.
    """

    def __init__(
        self,
        cache: PublicKeyCache,
        providers: Optional[ProviderRegistry] = None,
        key_ttl: timedelta = DEFAULT_KEY_TTL,
        clock: Optional[Callable[[], datetime]] = None,
        metrics: Optional[MetricsCollector] = None,
    ):
        self.cache = cache
        self.providers = providers or ProviderRegistry.default()
        self.key_ttl = key_ttl
        self._clock = clock or _utcnow
        self._metrics = metrics
        self.logger = get_logger("auth.validator")

    async def verify(self, token: str, provider: Any) -> VerifiedIdentity:
        """Verify token as issued by provider and return its claims.

        Raises MalformedTokenError, UnsupportedProviderError or
        InvalidOrExpiredTokenError.
        """
        if token.startswith("Bearer "):
            token = token[7:].strip()

        kid, algorithm = self._parse_header(token)
        key_set = self.providers.resolve(provider)

        try:
            claims = await self._attempt(token, kid, algorithm, key_set, force_refresh=False)
        except (JWTError, KeyFetchError, SigningKeyNotFound, ValueError) as first_error:
            self.logger.warning(
                "Token verification failed, forcing key refresh",
                provider=key_set.name,
                kid=kid,
                error=str(first_error)
            )
            try:
                claims = await self._attempt(token, kid, algorithm, key_set, force_refresh=True)
            except (JWTError, KeyFetchError, SigningKeyNotFound, ValueError) as second_error:
                self.logger.warning(
                    "Token verification failed after key refresh",
                    provider=key_set.name,
                    kid=kid,
                    error=str(second_error)
                )
                self._count(key_set.name, "invalid")
                raise InvalidOrExpiredTokenError(
                    details={"provider": key_set.name, "kid": kid}
                ) from second_error

        self._count(key_set.name, "ok")
        self.logger.info("Token verified successfully", provider=key_set.name, sub=claims.get("sub"))
        return VerifiedIdentity(provider=key_set.name, subject_claims=claims)

    def _parse_header(self, token: str):
        try:
            header = jwt.get_unverified_header(token)
        except JWTError as exc:
            raise MalformedTokenError(f"Malformed token: {exc}") from exc

        algorithm = header.get("alg")
        if algorithm not in RSA_ALGORITHMS:
            raise MalformedTokenError(
                "Unexpected signing method",
                details={"alg": algorithm}
            )

        kid = header.get("kid")
        if not isinstance(kid, str) or not kid:
            raise MalformedTokenError("Token missing key ID")

        return kid, algorithm

    async def _attempt(
        self,
        token: str,
        kid: str,
        algorithm: str,
        key_set: ProviderKeySet,
        force_refresh: bool,
    ) -> Dict[str, Any]:
        entry = await self._resolve_key(kid, key_set.keys_url, force_refresh)
        return jwt.decode(
            token,
            entry.to_pem(),
            algorithms=[algorithm],
            audience=key_set.audience,
            options={
                "verify_aud": key_set.audience is not None,
                "verify_at_hash": False,
            },
        )

    async def _resolve_key(self, kid: str, url: str, force_refresh: bool) -> PublicKeyEntry:
        if not force_refresh:
            entry = self.cache.lookup(kid)
            if entry is not None and entry.age(self._clock()) <= self.key_ttl:
                return entry

        self.logger.info("Refreshing key", kid=kid, url=url, forced=force_refresh)
        await self.cache.refresh(url)

        entry = self.cache.lookup(kid)
        if entry is None:
            raise SigningKeyNotFound(kid)
        return entry

    def _count(self, provider: str, status: str) -> None:
        if self._metrics:
            self._metrics.increment_counter("token_verifications_total", provider=provider, status=status)
