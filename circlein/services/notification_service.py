"""
Notification Service
In-app community notifications plus the email side of every booking event
"""

import logging
from datetime import datetime
from typing import Optional

from sqlalchemy import or_
from sqlalchemy.orm import Session

from ..models import RESIDENT, CommunityNotification, User

logger = logging.getLogger(__name__)


def create_notification(
    db: Session,
    community_id: str,
    notification_type: str,
    title: str,
    message: str,
    user_email: Optional[str] = None,
    data: Optional[dict] = None,
    expires_at: Optional[datetime] = None,
) -> CommunityNotification:
    """Stage an in-app notification; the caller commits. No user_email means community-wide."""
    notification = CommunityNotification(
        community_id=community_id,
        user_email=user_email,
        type=notification_type,
        title=title,
        message=message,
        data=data or {},
        expires_at=expires_at,
    )
    db.add(notification)
    return notification


async def send_email_notification(mailer, to: Optional[str], notification_type: str, data: dict) -> dict:
    """
    Render and send one templated email. Delivery failures are logged and
    returned, never raised, so they cannot undo the state change that
    triggered them.
    """
    if not to:
        logger.debug(f"⚠️ No email address for {notification_type} notification")
        return {"success": False, "error": "No recipient"}

    logger.info(f"📧 Sending {notification_type} email to {to}")
    result = await mailer.send_template(to, notification_type, data)
    if result.get("success"):
        logger.info(f"✅ {notification_type} email sent successfully to {to}")
    else:
        logger.error(f"❌ Failed to send {notification_type} email to {to}: {result.get('error')}")
    return result


def list_notifications(db: Session, user: User, now: datetime, limit: int = 50) -> list[CommunityNotification]:
    """The user's own notifications plus unexpired community-wide ones, newest first"""
    return (
        db.query(CommunityNotification)
        .filter(
            CommunityNotification.community_id == user.community_id,
            or_(
                CommunityNotification.user_email == user.email,
                CommunityNotification.user_email.is_(None),
            ),
            or_(
                CommunityNotification.expires_at.is_(None),
                CommunityNotification.expires_at > now,
            ),
        )
        .order_by(CommunityNotification.created_at.desc())
        .limit(limit)
        .all()
    )


def get_community_recipients(db: Session, community_id: str, residents_only: bool = True) -> list[str]:
    """Emails of the active (not soft-deleted) members of a community"""
    query = db.query(User.email).filter(User.community_id == community_id, User.deleted.is_(False))
    if residents_only:
        query = query.filter(User.role == RESIDENT)
    rows = query.order_by(User.email.asc()).all()
    return [row[0] for row in rows]
