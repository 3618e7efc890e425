import base64
import json
import logging
import time

import httpx
from cryptography.hazmat.backends import default_backend
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import padding
from cryptography.x509 import load_pem_x509_certificate
from fastapi import Depends, HTTPException, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.orm import Session

from .cache import TTLCache
from .config import FIREBASE_PROJECT_ID, PUBLIC_KEY_CACHE_TTL, REDIS_URL
from .database import get_db
from .models import User

logger = logging.getLogger(__name__)

# auto_error is off so a missing header is reported as 401, not 403
security = HTTPBearer(auto_error=False)

GOOGLE_CERTS_URL = (
    "https://www.googleapis.com/robot/v1/metadata/x509/securetoken@system.gserviceaccount.com"
)
CERTS_CACHE_KEY = "securetoken"


def _b64decode(segment: str) -> bytes:
    padding_len = 4 - len(segment) % 4
    return base64.urlsafe_b64decode(segment + ("=" * padding_len if padding_len != 4 else ""))


class FirebaseTokenVerifier:
    """
    Verify Firebase ID tokens with FULL cryptographic signature verification.
    Google's signing certificates are held in a TTL cache and refetched once
    when a token names an unknown key ID.
    """

    def __init__(self, project_id: str | None, key_cache: TTLCache):
        self.project_id = project_id
        self.key_cache = key_cache

    async def get_public_keys(self, force_refresh: bool = False) -> dict | None:
        if not force_refresh:
            cached = self.key_cache.get(CERTS_CACHE_KEY)
            if cached:
                logger.debug("✅ Using cached Google public keys")
                return cached

        try:
            async with httpx.AsyncClient(timeout=10.0) as client:
                response = await client.get(GOOGLE_CERTS_URL)
            if response.status_code == 200:
                keys = response.json()
                self.key_cache.set(CERTS_CACHE_KEY, keys)
                logger.info(f"✅ Fetched {len(keys)} Google public keys")
                return keys
            logger.error(f"❌ Failed to fetch Google public keys: HTTP {response.status_code}")
        except httpx.HTTPError as e:
            logger.error(f"❌ Error fetching Google public keys: {str(e)}")
        return None

    async def verify(self, token: str) -> dict:
        if not self.project_id:
            logger.error("❌ FIREBASE_PROJECT_ID not configured")
            raise HTTPException(status_code=500, detail="Firebase not configured")

        parts = token.split(".")
        if len(parts) != 3:
            logger.warning(f"⚠️ Malformed token received: {len(parts)} parts")
            raise HTTPException(status_code=401, detail="Invalid token format")
        header_b64, payload_b64, signature_b64 = parts

        try:
            header = json.loads(_b64decode(header_b64))
        except (ValueError, UnicodeDecodeError) as e:
            logger.error(f"❌ Failed to decode token header: {str(e)}")
            raise HTTPException(status_code=401, detail="Invalid token header") from e

        kid = header.get("kid")
        if header.get("alg") != "RS256":
            logger.error(f"❌ Invalid token algorithm: {header.get('alg')}")
            raise HTTPException(status_code=401, detail="Invalid token algorithm")
        if not kid:
            raise HTTPException(status_code=401, detail="Token missing key ID")

        public_keys = await self.get_public_keys()
        if not public_keys or kid not in public_keys:
            logger.warning(f"⚠️ Key ID {kid} not found in public keys, refreshing")
            public_keys = await self.get_public_keys(force_refresh=True)
            if not public_keys or kid not in public_keys:
                logger.error(f"❌ Key ID {kid} not found in public keys after retry")
                raise HTTPException(status_code=401, detail="Unable to verify token signature")

        try:
            cert = load_pem_x509_certificate(public_keys[kid].encode(), default_backend())
            signature = _b64decode(signature_b64)
            cert.public_key().verify(
                signature,
                f"{header_b64}.{payload_b64}".encode(),
                padding.PKCS1v15(),
                hashes.SHA256(),
            )
        except Exception as e:
            logger.error(f"❌ Token signature verification failed: {str(e)}")
            raise HTTPException(status_code=401, detail="Invalid token signature") from e

        try:
            claims = json.loads(_b64decode(payload_b64))
        except (ValueError, UnicodeDecodeError) as e:
            raise HTTPException(status_code=401, detail="Invalid token payload") from e

        if claims.get("aud") != self.project_id:
            logger.error("❌ Token audience mismatch")
            raise HTTPException(status_code=401, detail="Invalid token audience")
        if claims.get("iss") != f"https://securetoken.google.com/{self.project_id}":
            logger.error("❌ Token issuer mismatch")
            raise HTTPException(status_code=401, detail="Invalid token issuer")

        now = time.time()
        if claims.get("exp", 0) < now:
            raise HTTPException(
                status_code=401,
                detail="Token has expired. Please refresh your session.",
                headers={"X-Token-Expired": "true"},
            )
        # 60 seconds of clock skew
        if claims.get("iat", 0) > now + 60:
            logger.warning("⚠️ Token issued in the future")
            raise HTTPException(status_code=401, detail="Invalid token")

        logger.debug(f"✅ Token cryptographically verified for user: {claims.get('email')}")
        return claims


def get_token_verifier(request: Request) -> FirebaseTokenVerifier:
    verifier = getattr(request.app.state, "token_verifier", None)
    if verifier is None:
        verifier = FirebaseTokenVerifier(
            FIREBASE_PROJECT_ID,
            TTLCache("google_certs", default_ttl=PUBLIC_KEY_CACHE_TTL, redis_url=REDIS_URL),
        )
        request.app.state.token_verifier = verifier
    return verifier


async def get_token_claims(
    credentials: HTTPAuthorizationCredentials | None = Depends(security),
    verifier: FirebaseTokenVerifier = Depends(get_token_verifier),
) -> dict:
    """Verified ID token claims of the caller; the email is lowercased"""
    if not credentials:
        raise HTTPException(
            status_code=401,
            detail="Not authenticated. Please provide a valid Bearer token in the Authorization header.",
        )

    claims = await verifier.verify(credentials.credentials)
    email = claims.get("email")
    if not email:
        logger.error(f"❌ Token missing email claim. Available claims: {list(claims.keys())}")
        raise HTTPException(status_code=401, detail="Invalid token claims")
    claims["email"] = email.strip().lower()
    return claims


def get_current_user(
    claims: dict = Depends(get_token_claims),
    db: Session = Depends(get_db),
) -> User:
    """Resolve the caller's users row; unknown is 401, soft-deleted is 403"""
    user = db.query(User).filter(User.email == claims["email"]).first()
    if not user:
        logger.warning(f"⚠️ No user record for {claims['email']}")
        raise HTTPException(status_code=401, detail="User not found")
    if user.deleted:
        logger.warning(f"🚫 Deleted account attempted access: {user.email}")
        raise HTTPException(
            status_code=403,
            detail="Your account has been deactivated. Please contact your community admin.",
        )
    return user


def require_admin(current_user: User = Depends(get_current_user)) -> User:
    if not current_user.is_admin:
        raise HTTPException(status_code=403, detail="Admin access required")
    return current_user


def ensure_same_community(user: User, community_id: str | None) -> None:
    if not community_id or user.community_id != community_id:
        raise HTTPException(status_code=403, detail="Access denied for this community")
