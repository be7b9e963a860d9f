"""
Fixtures for Auth tests: RSA signing keys and a fake JWKS endpoint.
"""

import base64
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

import httpx
import pytest
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from jose import jwt


def b64url_uint(value: int) -> str:
    raw = value.to_bytes((value.bit_length() + 7) // 8, "big")
    return base64.urlsafe_b64encode(raw).rstrip(b"=").decode("ascii")


class SigningKey:
    """An RSA key pair that can sign tokens and publish itself as a JWK."""

    def __init__(self, kid: str):
        self.kid = kid
        self.private_key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
        self.private_pem = self.private_key.private_bytes(
            encoding=serialization.Encoding.PEM,
            format=serialization.PrivateFormat.PKCS8,
            encryption_algorithm=serialization.NoEncryption(),
        ).decode("ascii")

    def jwk(self) -> Dict[str, str]:
        numbers = self.private_key.public_key().public_numbers()
        return {
            "kty": "RSA",
            "kid": self.kid,
            "use": "sig",
            "alg": "RS256",
            "n": b64url_uint(numbers.n),
            "e": b64url_uint(numbers.e),
        }

    def sign(
        self,
        claims: Optional[Dict[str, Any]] = None,
        expires_in: timedelta = timedelta(minutes=10),
        algorithm: str = "RS256",
        kid: Optional[str] = "self",
    ) -> str:
        payload = {
            "sub": "000123.abc",
            "email": "user@example.com",
            "exp": int((datetime.now(timezone.utc) + expires_in).timestamp()),
        }
        payload.update(claims or {})
        headers = {}
        if kid == "self":
            headers["kid"] = self.kid
        elif kid is not None:
            headers["kid"] = kid
        return jwt.encode(payload, self.private_pem, algorithm=algorithm, headers=headers)


class FakeKeyServer:
    """Serves a mutable key set through httpx.MockTransport and counts requests."""

    def __init__(self, keys: List[SigningKey]):
        self.keys = list(keys)
        self.status_code = 200
        self.body: Optional[bytes] = None
        self.requests: List[httpx.Request] = []

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.status_code != 200:
            return httpx.Response(self.status_code, text="upstream error")
        if self.body is not None:
            return httpx.Response(200, content=self.body)
        return httpx.Response(200, json={"keys": [key.jwk() for key in self.keys]})

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self.handler))

    @property
    def fetch_count(self) -> int:
        return len(self.requests)


class FakeClock:
    """Settable clock returning aware UTC datetimes."""

    def __init__(self, start: Optional[datetime] = None):
        self.now = start or datetime.now(timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, delta: timedelta):
        self.now = self.now + delta


@pytest.fixture(scope="session")
def signing_key():
    return SigningKey("key-1")


@pytest.fixture(scope="session")
def other_signing_key():
    return SigningKey("key-2")


@pytest.fixture
def key_server(signing_key):
    return FakeKeyServer([signing_key])


@pytest.fixture
def clock():
    return FakeClock()
