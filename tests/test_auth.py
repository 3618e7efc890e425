import asyncio
import base64
import json
import time
from datetime import datetime, timedelta, timezone

import pytest
from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import padding, rsa
from cryptography.x509.oid import NameOID
from fastapi import HTTPException

from circlein.auth import CERTS_CACHE_KEY, FirebaseTokenVerifier
from circlein.cache import TTLCache

PROJECT_ID = "circlein-test"


def _b64(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).rstrip(b"=").decode()


@pytest.fixture(scope="module")
def signing_key():
    key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
    name = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, "securetoken.test")])
    now = datetime.now(timezone.utc)
    cert = (
        x509.CertificateBuilder()
        .subject_name(name)
        .issuer_name(name)
        .public_key(key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(now - timedelta(days=1))
        .not_valid_after(now + timedelta(days=1))
        .sign(key, hashes.SHA256())
    )
    return key, cert.public_bytes(serialization.Encoding.PEM).decode()


@pytest.fixture
def verifier(signing_key):
    _, pem = signing_key
    cache = TTLCache("google_certs-test")
    cache.set(CERTS_CACHE_KEY, {"kid-1": pem})
    return FirebaseTokenVerifier(PROJECT_ID, cache)


def make_token(signing_key, kid="kid-1", alg="RS256", **overrides):
    key, _ = signing_key
    now = int(time.time())
    claims = {
        "aud": PROJECT_ID,
        "iss": f"https://securetoken.google.com/{PROJECT_ID}",
        "sub": "uid-1",
        "email": "Alice@Maple.test",
        "iat": now - 10,
        "exp": now + 3600,
        **overrides,
    }
    header = _b64(json.dumps({"alg": alg, "kid": kid}).encode())
    payload = _b64(json.dumps(claims).encode())
    signature = key.sign(f"{header}.{payload}".encode(), padding.PKCS1v15(), hashes.SHA256())
    return f"{header}.{payload}.{_b64(signature)}"


def verify(verifier, token):
    return asyncio.run(verifier.verify(token))


def test_valid_token(verifier, signing_key):
    claims = verify(verifier, make_token(signing_key))
    assert claims["sub"] == "uid-1"


@pytest.mark.parametrize(
    "overrides",
    [
        {"aud": "someone-else"},
        {"iss": "https://evil.test"},
        {"exp": int(time.time()) - 5},
        {"iat": int(time.time()) + 600},
    ],
)
def test_rejected_claims(verifier, signing_key, overrides):
    with pytest.raises(HTTPException) as exc_info:
        verify(verifier, make_token(signing_key, **overrides))
    assert exc_info.value.status_code == 401


def test_expired_token_is_flagged(verifier, signing_key):
    with pytest.raises(HTTPException) as exc_info:
        verify(verifier, make_token(signing_key, exp=int(time.time()) - 5))
    assert exc_info.value.headers == {"X-Token-Expired": "true"}


def test_tampered_payload(verifier, signing_key):
    header, _, signature = make_token(signing_key).split(".")
    forged = _b64(json.dumps({"aud": PROJECT_ID, "email": "admin@maple.test"}).encode())
    with pytest.raises(HTTPException) as exc_info:
        verify(verifier, f"{header}.{forged}.{signature}")
    assert exc_info.value.detail == "Invalid token signature"


def test_wrong_algorithm(verifier, signing_key):
    with pytest.raises(HTTPException) as exc_info:
        verify(verifier, make_token(signing_key, alg="HS256"))
    assert exc_info.value.detail == "Invalid token algorithm"


def test_malformed_token(verifier):
    with pytest.raises(HTTPException) as exc_info:
        verify(verifier, "not-a-jwt")
    assert exc_info.value.detail == "Invalid token format"


def test_unknown_key_id_refetches_once(verifier, signing_key, monkeypatch):
    calls = []

    async def fake_get_public_keys(force_refresh=False):
        calls.append(force_refresh)
        return {}

    monkeypatch.setattr(verifier, "get_public_keys", fake_get_public_keys)
    with pytest.raises(HTTPException) as exc_info:
        verify(verifier, make_token(signing_key, kid="kid-rotated"))
    assert exc_info.value.detail == "Unable to verify token signature"
    assert calls == [False, True]


def test_unconfigured_project(signing_key):
    verifier = FirebaseTokenVerifier(None, TTLCache("google_certs-test"))
    with pytest.raises(HTTPException) as exc_info:
        verify(verifier, make_token(signing_key))
    assert exc_info.value.status_code == 500
