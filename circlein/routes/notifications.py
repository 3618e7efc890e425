import logging
from datetime import timedelta
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field, field_validator
from sqlalchemy.orm import Session

from ..auth import get_current_user, require_admin
from ..cache import TTLCache
from ..database import get_db
from ..email_service import get_mailer
from ..email_templates import UnknownTemplateError, render_email, resolve_template_type
from ..models import Amenity, CommunityNotification, User
from ..services.notification_service import (
    create_notification,
    get_community_recipients,
    list_notifications,
)
from ..shared.timeutils import format_date, isoformat, start_of_day, utcnow
from ..shared.validators import parse_timestamp
from .amenities import get_amenity_cache

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/notifications", tags=["Notifications"])


class EmailNotificationRequest(BaseModel):
    type: str = Field(min_length=1)
    data: dict
    to: Optional[str] = None


class AmenityBlockRequest(BaseModel):
    amenityId: str = Field(min_length=1)
    reason: str = Field(min_length=1, max_length=500)
    startDate: str
    endDate: str
    isFestive: bool = False

    @field_validator("startDate", "endDate")
    @classmethod
    def validate_date(cls, v):
        parse_timestamp(v)
        return v


class AmenityUnblockRequest(BaseModel):
    amenityId: str = Field(min_length=1)


def _get_community_amenity(db: Session, amenity_id: str, user: User) -> Amenity:
    amenity = db.query(Amenity).filter(Amenity.id == amenity_id).first()
    if not amenity:
        raise HTTPException(status_code=404, detail="Amenity not found")
    if amenity.community_id != user.community_id:
        raise HTTPException(status_code=403, detail="Access denied for this community")
    return amenity


@router.post("/email")
async def send_email_notification_endpoint(
    data: EmailNotificationRequest,
    current_user: User = Depends(get_current_user),
    mailer=Depends(get_mailer),
):
    """Send one templated email, addressed to `to` or data.userEmail"""
    try:
        template_type = resolve_template_type(data.type)
    except UnknownTemplateError as e:
        raise HTTPException(status_code=400, detail="Invalid notification type") from e

    recipient = data.to or data.data.get("userEmail")
    if not recipient:
        raise HTTPException(status_code=400, detail="Recipient email is required")

    logger.info(f"📧 Preparing to send {template_type} email to {recipient} (requested by {current_user.email})")
    result = await mailer.send_template(recipient, template_type, data.data)
    if not result.get("success"):
        logger.error(f"❌ Failed to send {template_type} email: {result.get('error')}")
        return JSONResponse(
            status_code=500,
            content={
                "success": False,
                "error": result.get("error"),
                "type": template_type,
                "recipient": recipient,
            },
        )

    return {
        "success": True,
        "messageId": result.get("messageId"),
        "type": template_type,
        "recipient": recipient,
    }


@router.post("/amenity-block")
async def block_amenity(
    data: AmenityBlockRequest,
    current_user: User = Depends(require_admin),
    db: Session = Depends(get_db),
    mailer=Depends(get_mailer),
    cache: TTLCache = Depends(get_amenity_cache),
):
    # Blocks cover whole days: startDate 00:00 up to the midnight after endDate
    start = start_of_day(parse_timestamp(data.startDate))
    end = start_of_day(parse_timestamp(data.endDate))
    if end < start:
        raise HTTPException(status_code=400, detail="End date must not be before start date")
    until = end + timedelta(days=1)

    amenity = _get_community_amenity(db, data.amenityId, current_user)
    amenity.is_blocked = True
    amenity.block_reason = data.reason
    amenity.blocked_from = start
    amenity.blocked_until = until
    create_notification(
        db,
        community_id=amenity.community_id,
        notification_type="amenity_blocked",
        title=f"{amenity.name} unavailable",
        message=f"{amenity.name} is blocked from {format_date(start)} to {format_date(end)}: {data.reason}",
        data={"amenityId": amenity.id, "isFestive": data.isFestive},
        expires_at=until,
    )
    db.commit()
    cache.delete(amenity.community_id)
    logger.info(f"🚫 {amenity.name} blocked by {current_user.email}: {data.reason}")

    recipients = get_community_recipients(db, amenity.community_id)
    if not recipients:
        return {"success": True, "message": "No residents to notify", "sent": 0, "failed": 0, "total": 0}

    subject, mjml_content = render_email(
        "amenity_blocked",
        {
            "amenityName": amenity.name,
            "reason": data.reason,
            "startDate": format_date(start),
            "endDate": format_date(end),
            "communityName": amenity.community.name if amenity.community else None,
            "isFestive": data.isFestive,
        },
    )
    batch = await mailer.send_batch(recipients, subject, mjml_content)
    return {"success": True, **batch}


@router.post("/amenity-unblock")
async def unblock_amenity(
    data: AmenityUnblockRequest,
    current_user: User = Depends(require_admin),
    db: Session = Depends(get_db),
    mailer=Depends(get_mailer),
    cache: TTLCache = Depends(get_amenity_cache),
):
    amenity = _get_community_amenity(db, data.amenityId, current_user)
    if not amenity.is_blocked:
        raise HTTPException(status_code=400, detail="Amenity is not blocked")

    amenity.is_blocked = False
    amenity.block_reason = None
    amenity.blocked_from = None
    amenity.blocked_until = None
    create_notification(
        db,
        community_id=amenity.community_id,
        notification_type="amenity_unblocked",
        title=f"{amenity.name} available",
        message=f"{amenity.name} can be booked again.",
        data={"amenityId": amenity.id},
    )
    db.commit()
    cache.delete(amenity.community_id)
    logger.info(f"✅ {amenity.name} unblocked by {current_user.email}")

    recipients = get_community_recipients(db, amenity.community_id)
    if not recipients:
        return {"success": True, "message": "No residents to notify", "sent": 0, "failed": 0, "total": 0}

    subject, mjml_content = render_email(
        "amenity_unblocked",
        {
            "amenityName": amenity.name,
            "communityName": amenity.community.name if amenity.community else None,
        },
    )
    batch = await mailer.send_batch(recipients, subject, mjml_content)
    return {"success": True, **batch}


@router.get("")
async def get_notifications(
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    notifications = list_notifications(db, current_user, utcnow())
    return {
        "success": True,
        "unreadCount": sum(1 for n in notifications if not n.read),
        "notifications": [
            {
                "id": n.id,
                "type": n.type,
                "title": n.title,
                "message": n.message,
                "data": n.data or {},
                "read": n.read,
                "communityWide": n.user_email is None,
                "createdAt": isoformat(n.created_at),
                "expiresAt": isoformat(n.expires_at),
            }
            for n in notifications
        ],
    }


@router.post("/{notification_id}/read")
async def mark_notification_read(
    notification_id: str,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    notification = (
        db.query(CommunityNotification)
        .filter(
            CommunityNotification.id == notification_id,
            CommunityNotification.community_id == current_user.community_id,
        )
        .first()
    )
    if not notification or notification.user_email not in (None, current_user.email):
        raise HTTPException(status_code=404, detail="Notification not found")
    notification.read = True
    db.commit()
    return {"success": True}
