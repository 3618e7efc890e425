import logging
from datetime import timedelta
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, field_validator
from sqlalchemy import or_
from sqlalchemy.orm import Session

from ..auth import require_admin
from ..cache import TTLCache
from ..config import (
    CLEAR_BOOKINGS_CONFIRMATION_TOKEN,
    DELETE_CHUNK_SIZE,
    DELETE_COMMUNITY_CONFIRMATION_TOKEN,
)
from ..database import get_db
from ..domain.bookings.repository import BookingRepository
from ..domain.bookings.service import BookingService
from ..email_service import get_mailer
from ..models import (
    ADMIN_ROLES,
    SUPER_ADMIN,
    AccessCode,
    Amenity,
    Community,
    CommunityNotification,
    Invite,
    User,
    UserBookingStats,
)
from ..services.access_codes import issue_replacement_code
from ..shared.timeutils import isoformat, utcnow
from ..shared.validators import normalize_email
from .amenities import get_amenity_cache

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/admin", tags=["Admin"])

repo = BookingRepository()


class ClearBookingsRequest(BaseModel):
    confirmationToken: Optional[str] = None
    communityId: Optional[str] = None


class DeleteResidentRequest(BaseModel):
    email: str

    @field_validator("email")
    @classmethod
    def validate_email_field(cls, v: str) -> str:
        return normalize_email(v)


class DeleteCommunityRequest(BaseModel):
    confirmDelete: Optional[str] = None
    communityId: Optional[str] = None
    adminEmail: Optional[str] = None

    @field_validator("adminEmail")
    @classmethod
    def validate_admin_email(cls, v):
        if v:
            return normalize_email(v)
        return v


def delete_bookings_in_chunks(db: Session, booking_ids: list[str], chunk_size: int = DELETE_CHUNK_SIZE) -> int:
    """Delete by id, committing each chunk before starting the next; returns rows actually deleted"""
    deleted = 0
    for start in range(0, len(booking_ids), chunk_size):
        chunk = booking_ids[start : start + chunk_size]
        deleted += repo.delete_bookings(db, chunk)
        db.commit()
        logger.info(f"   🗑️ Deleted chunk of {len(chunk)} booking(s) ({deleted}/{len(booking_ids)})")
    return deleted


@router.get("/clear-bookings")
async def describe_clear_bookings():
    return {
        "endpoint": "Clear Booking History",
        "status": "ready",
        "requiresAuth": True,
        "requiresAdmin": True,
        "destructive": True,
        "confirmationRequired": CLEAR_BOOKINGS_CONFIRMATION_TOKEN,
    }


@router.post("/clear-bookings")
async def clear_bookings(
    data: ClearBookingsRequest,
    current_user: User = Depends(require_admin),
    db: Session = Depends(get_db),
):
    """Delete every booking of a community. Requires the confirmation token."""
    if data.confirmationToken != CLEAR_BOOKINGS_CONFIRMATION_TOKEN:
        logger.warning(f"⚠️ clear-bookings called by {current_user.email} without a valid confirmation token")
        raise HTTPException(
            status_code=400,
            detail="Invalid confirmation token. This is a destructive operation.",
        )

    community_id = data.communityId or current_user.community_id
    if community_id != current_user.community_id and current_user.role != SUPER_ADMIN:
        raise HTTPException(status_code=403, detail="Access denied for this community")

    booking_ids = repo.get_community_booking_ids(db, community_id)
    logger.info(f"🧹 Clearing {len(booking_ids)} booking(s) for community {community_id}")
    deleted = delete_bookings_in_chunks(db, booking_ids)

    return {
        "success": True,
        "message": "Booking history cleared successfully",
        "stats": {
            "bookingsDeleted": deleted,
            "communityId": community_id,
            "timestamp": isoformat(utcnow()),
        },
    }


@router.get("/waitlist")
async def waitlist_overview(
    current_user: User = Depends(require_admin),
    db: Session = Depends(get_db),
):
    if not current_user.community_id:
        raise HTTPException(status_code=400, detail="Community ID not found")

    now = utcnow()
    entries = repo.get_community_waitlist(db, current_user.community_id)
    promotions = repo.get_recent_promotions(db, current_user.community_id, now - timedelta(days=7))

    by_amenity: dict[str, int] = {}
    for entry in entries:
        name = entry.amenity_name or "Unknown"
        by_amenity[name] = by_amenity.get(name, 0) + 1

    return {
        "success": True,
        "waitlist": [
            {
                "id": e.id,
                "userEmail": e.user_email,
                "userName": e.user_name,
                "amenityId": e.amenity_id,
                "amenityName": e.amenity_name,
                "startTime": isoformat(e.start_time),
                "endTime": isoformat(e.end_time),
                "waitlistPosition": e.waitlist_position,
                "createdAt": isoformat(e.created_at),
                "status": e.status,
            }
            for e in entries
        ],
        "stats": {
            "totalWaitlist": len(entries),
            "byAmenity": by_amenity,
            "recentPromotions": len(promotions),
        },
        "timestamp": isoformat(now),
    }


@router.post("/delete-resident")
async def delete_resident(
    data: DeleteResidentRequest,
    current_user: User = Depends(require_admin),
    db: Session = Depends(get_db),
    mailer=Depends(get_mailer),
):
    """
    Permanently remove a resident: their bookings, personal notifications,
    booking history and access codes go with them. Open bookings are
    cancelled first so their seats pass to the waitlist, and the community
    gets a replacement access code.
    """
    target = db.query(User).filter(User.email == data.email).first()
    if not target:
        raise HTTPException(status_code=404, detail="User not found")
    if target.community_id != current_user.community_id:
        raise HTTPException(status_code=403, detail="Cannot delete users from other communities")
    if target.email == current_user.email:
        raise HTTPException(status_code=400, detail="Cannot delete your own admin account")

    now = utcnow()
    logger.info(f"🗑️ Starting permanent deletion of {target.email} by {current_user.email}")
    service = BookingService(db, mailer)
    _, promoted = service.release_user_bookings(target.email, current_user.email, now=now)
    db.commit()
    await service.notify_promoted(promoted)

    deleted_bookings = delete_bookings_in_chunks(db, repo.get_user_booking_ids(db, target.email))

    deleted_notifications = (
        db.query(CommunityNotification)
        .filter(CommunityNotification.user_email == target.email)
        .delete(synchronize_session=False)
    )
    db.query(UserBookingStats).filter(UserBookingStats.user_email == target.email).delete(synchronize_session=False)

    codes = [
        row[0]
        for row in db.query(AccessCode.code)
        .filter(or_(AccessCode.used_by == target.email, AccessCode.code == target.access_code_used))
        .all()
    ]
    if codes:
        db.query(AccessCode).filter(AccessCode.code.in_(codes)).delete(synchronize_session=False)

    new_code = None
    if codes and target.community_id:
        new_code = issue_replacement_code(
            db, target.community_id, current_user.email, f"Replacement for deleted resident {target.email}"
        )

    db.delete(target)
    db.commit()
    logger.info(
        f"✅ Deleted {data.email}: {deleted_bookings} booking(s), {deleted_notifications} notification(s), "
        f"{len(codes)} access code(s)"
    )
    return {
        "success": True,
        "message": f"Resident {data.email} deleted",
        "deleted": {
            "bookings": deleted_bookings,
            "notifications": deleted_notifications,
            "accessCodes": codes,
        },
        "promotedBookingIds": [b.id for b in promoted],
        "newAccessCode": new_code,
    }


@router.post("/delete-community")
async def delete_community(
    data: DeleteCommunityRequest,
    current_user: User = Depends(require_admin),
    db: Session = Depends(get_db),
    cache: TTLCache = Depends(get_amenity_cache),
):
    """Cascade delete of a community and everything in it. Requires the confirmation token."""
    if data.confirmDelete != DELETE_COMMUNITY_CONFIRMATION_TOKEN:
        raise HTTPException(
            status_code=400,
            detail=f'Must confirm deletion with confirmDelete: "{DELETE_COMMUNITY_CONFIRMATION_TOKEN}"',
        )
    if not data.communityId and not data.adminEmail:
        raise HTTPException(status_code=400, detail="Either adminEmail or communityId is required")

    community_id = data.communityId
    if not community_id:
        admin = db.query(User).filter(User.email == data.adminEmail).first()
        invite = db.query(Invite).filter(Invite.email == data.adminEmail).first()
        community_id = (admin.community_id if admin else None) or (invite.community_id if invite else None)

    community = db.query(Community).filter(Community.id == community_id).first() if community_id else None
    if not community:
        raise HTTPException(status_code=404, detail="Could not determine community to delete")
    if community.id != current_user.community_id and current_user.role != SUPER_ADMIN:
        raise HTTPException(status_code=403, detail="Access denied for this community")

    logger.warning(f"🗑️ === CASCADE DELETE COMMUNITY {community.id} by {current_user.email} ===")
    summary = {"community": False}
    summary["bookings"] = delete_bookings_in_chunks(db, repo.get_community_booking_ids(db, community.id))

    member_emails = [row[0] for row in db.query(User.email).filter(User.community_id == community.id).all()]
    for label, query in (
        ("notifications", db.query(CommunityNotification).filter(CommunityNotification.community_id == community.id)),
        ("bookingStats", db.query(UserBookingStats).filter(UserBookingStats.user_email.in_(member_emails))),
        ("invites", db.query(Invite).filter(Invite.community_id == community.id)),
        ("accessCodes", db.query(AccessCode).filter(AccessCode.community_id == community.id)),
        ("amenities", db.query(Amenity).filter(Amenity.community_id == community.id)),
    ):
        summary[label] = query.delete(synchronize_session=False)
        logger.info(f"   ✅ Deleted {summary[label]} {label}")

    summary["adminUsers"] = (
        db.query(User)
        .filter(User.community_id == community.id, User.role.in_(ADMIN_ROLES))
        .delete(synchronize_session=False)
    )
    summary["users"] = db.query(User).filter(User.community_id == community.id).delete(synchronize_session=False)
    db.delete(community)
    summary["community"] = True
    db.commit()
    cache.delete(community_id)

    logger.warning(f"✅ Community {community_id} deleted: {summary}")
    return {
        "success": True,
        "message": f"Community {community_id} and all related data deleted",
        "communityId": community_id,
        "deleted": summary,
    }
