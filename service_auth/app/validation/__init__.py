"""
Token validation package.

Verifies identity tokens issued by Apple and Google:

- providers: maps a claimed provider to its key set URL (and optional
  audience).
- token_verifier: header checks, key resolution through the public key
  cache, signature and expiry validation, and the single forced-refresh
  retry used to ride out key rotation.
"""

from .providers import ProviderKeySet, ProviderRegistry
from .token_verifier import TokenVerifier, VerifiedIdentity

__all__ = ["ProviderKeySet", "ProviderRegistry", "TokenVerifier", "VerifiedIdentity"]
