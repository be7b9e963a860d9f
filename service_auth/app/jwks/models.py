"""
Signing key records held by the public key cache.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta

from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa


@dataclass(frozen=True)
class PublicKeyEntry:
    """An RSA verification key published by an identity provider."""

    key_id: str
    modulus: int
    exponent: int
    fetched_at: datetime

    def age(self, now: datetime) -> timedelta:
        """Time elapsed since the key set containing this entry was fetched."""
        return now - self.fetched_at

    def to_pem(self) -> str:
        """Render the key as a SubjectPublicKeyInfo PEM for the JOSE backend.

        Raises ValueError when the numbers do not form a usable RSA key.
        """
        public_key = rsa.RSAPublicNumbers(self.exponent, self.modulus).public_key()
        return public_key.public_bytes(
            encoding=serialization.Encoding.PEM,
            format=serialization.PublicFormat.SubjectPublicKeyInfo,
        ).decode("ascii")
