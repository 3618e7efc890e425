"""
Access codes: one-time codes that admit a resident into a community.
"""

import logging
import secrets
from datetime import datetime
from typing import Callable, Optional

from sqlalchemy import or_, update
from sqlalchemy.orm import Session

from ..config import ACCESS_CODE_ALPHABET, ACCESS_CODE_LENGTH, MAX_CODE_ATTEMPTS
from ..models import AccessCode
from ..shared.timeutils import utcnow

logger = logging.getLogger(__name__)


class CodeGenerationError(Exception):
    """No unique code could be produced within the attempt limit"""


class AccessCodeError(ValueError):
    """A code cannot be redeemed"""


def generate_access_code() -> str:
    return "".join(secrets.choice(ACCESS_CODE_ALPHABET) for _ in range(ACCESS_CODE_LENGTH))


def normalize_code(code: Optional[str]) -> str:
    return (code or "").strip().upper()


def generate_unique_codes(
    db: Session,
    count: int,
    generator: Optional[Callable[[], str]] = None,
    max_attempts: int = MAX_CODE_ATTEMPTS,
) -> list[str]:
    """
    Produce `count` codes distinct from each other and from every stored code.
    Nothing is written; CodeGenerationError if any single code needs more
    than `max_attempts` candidates.
    """
    generator = generator or generate_access_code
    codes: list[str] = []
    taken: set[str] = set()
    for _ in range(count):
        for _attempt in range(max_attempts):
            candidate = generator()
            if candidate in taken:
                continue
            if db.query(AccessCode.code).filter(AccessCode.code == candidate).first():
                continue
            break
        else:
            logger.error(f"❌ Unable to generate a unique access code after {max_attempts} attempts")
            raise CodeGenerationError("Unable to generate unique codes")
        taken.add(candidate)
        codes.append(candidate)
    return codes


def create_codes(
    db: Session,
    community_id: str,
    count: int,
    created_by: str,
    description: Optional[str] = None,
    generator: Optional[Callable[[], str]] = None,
) -> list[str]:
    """Generate and stage `count` resident codes; the caller commits"""
    codes = generate_unique_codes(db, count, generator=generator)
    now = utcnow()
    for code in codes:
        db.add(
            AccessCode(
                code=code,
                community_id=community_id,
                created_by=created_by,
                created_at=now,
                type="resident",
                description=description,
            )
        )
    return codes


def redeem_access_code(db: Session, code: str, email: str, now: Optional[datetime] = None) -> AccessCode:
    """
    Mark a code used by `email`. The update only matches an unused, valid,
    unexpired code, so of two concurrent redeemers exactly one wins.
    Stages the change; the caller commits.
    """
    now = now or utcnow()
    code = normalize_code(code)
    result = db.execute(
        update(AccessCode)
        .where(
            AccessCode.code == code,
            AccessCode.is_used.is_(False),
            AccessCode.invalidated.is_(False),
            or_(AccessCode.expires_at.is_(None), AccessCode.expires_at > now),
        )
        .values(is_used=True, used_by=email, used_at=now, version=AccessCode.version + 1)
        .execution_options(synchronize_session=False)
    )

    access_code = db.query(AccessCode).filter(AccessCode.code == code).populate_existing().first()
    if result.rowcount == 1:
        logger.info(f"🎟️ Access code {code} redeemed by {email}")
        return access_code

    if access_code is None:
        raise AccessCodeError("Invalid access code")
    if access_code.invalidated:
        raise AccessCodeError("This access code is no longer valid")
    if access_code.is_used:
        logger.warning(f"⚠️ Access code {code} already used by {access_code.used_by}")
        raise AccessCodeError("This access code has already been used")
    raise AccessCodeError("This access code has expired")


def invalidate_code(db: Session, code: str, now: Optional[datetime] = None) -> Optional[AccessCode]:
    access_code = db.query(AccessCode).filter(AccessCode.code == normalize_code(code)).first()
    if access_code is None:
        return None
    access_code.invalidated = True
    access_code.invalidated_at = now or utcnow()
    return access_code


def issue_replacement_code(db: Session, community_id: str, created_by: Optional[str], reason: str) -> str:
    """Stage one fresh code for a community"""
    [code] = create_codes(db, community_id, 1, created_by=created_by, description=reason)
    logger.info(f"🔁 Issued replacement access code {code} for community {community_id}")
    return code
