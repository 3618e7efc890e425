import logging
import re
from datetime import datetime, timedelta
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Request
from pydantic import BaseModel, Field, field_validator
from sqlalchemy.orm import Session

from ..auth import get_current_user, require_admin
from ..cache import TTLCache
from ..config import REDIS_URL
from ..database import get_db
from ..models import Amenity, User
from ..shared.timeutils import isoformat

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/amenities", tags=["Amenities"])

AMENITY_LIST_TTL = 300
SLOT_PATTERN = re.compile(r"^([01]\d|2[0-3]):[0-5]\d-([01]\d|2[0-3]):[0-5]\d$")
HOUR_PATTERN = re.compile(r"^([01]\d|2[0-3]):[0-5]\d$")


def get_amenity_cache(request: Request) -> TTLCache:
    cache = getattr(request.app.state, "amenity_cache", None)
    if cache is None:
        cache = TTLCache("amenities", default_ttl=AMENITY_LIST_TTL, redis_url=REDIS_URL)
        request.app.state.amenity_cache = cache
    return cache


class OperatingHours(BaseModel):
    start: str
    end: str

    @field_validator("start", "end")
    @classmethod
    def validate_hour(cls, v):
        if not HOUR_PATTERN.match(v):
            raise ValueError("Hours must look like HH:MM")
        return v


class UpdateTimeSlotsRequest(BaseModel):
    amenityId: str = Field(min_length=1)
    timeSlots: Optional[list[str]] = None
    operatingHours: Optional[OperatingHours] = None
    slotDuration: Optional[int] = Field(default=None, ge=15, le=720)  # minutes

    @field_validator("timeSlots")
    @classmethod
    def validate_slots(cls, v):
        if v is None:
            return v
        for slot in v:
            if not SLOT_PATTERN.match(slot):
                raise ValueError(f"Invalid time slot: {slot}")
        return v


def generate_time_slots(start: str, end: str, duration_minutes: int) -> list[str]:
    """Consecutive HH:MM-HH:MM slots filling [start, end)"""
    current = datetime.strptime(start, "%H:%M")
    close = datetime.strptime(end, "%H:%M")
    step = timedelta(minutes=duration_minutes)
    slots = []
    while current + step <= close:
        slots.append(f"{current:%H:%M}-{current + step:%H:%M}")
        current += step
    return slots


def amenity_to_dict(amenity: Amenity) -> dict:
    return {
        "id": amenity.id,
        "communityId": amenity.community_id,
        "name": amenity.name,
        "category": amenity.category,
        "description": amenity.description,
        "maxPeople": amenity.max_people,
        "operatingHours": amenity.operating_hours,
        "timeSlots": amenity.time_slots,
        "managerName": amenity.manager_name,
        "managerEmail": amenity.manager_email,
        "managerPhone": amenity.manager_phone,
        "location": amenity.location,
        "isOutdoor": amenity.is_outdoor,
        "imageUrl": amenity.image_url,
        "isBlocked": amenity.is_blocked,
        "blockReason": amenity.block_reason,
        "blockedFrom": isoformat(amenity.blocked_from),
        "blockedUntil": isoformat(amenity.blocked_until),
    }


@router.get("/list")
async def list_amenities(
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    cache: TTLCache = Depends(get_amenity_cache),
):
    if not current_user.community_id:
        raise HTTPException(status_code=400, detail="Community ID not found")

    amenities = cache.get(current_user.community_id)
    if amenities is None:
        rows = (
            db.query(Amenity)
            .filter(Amenity.community_id == current_user.community_id)
            .order_by(Amenity.name.asc())
            .all()
        )
        amenities = [amenity_to_dict(a) for a in rows]
        cache.set(current_user.community_id, amenities)
    return {"success": True, "amenities": amenities, "count": len(amenities)}


@router.post("/update-time-slots")
async def update_time_slots(
    data: UpdateTimeSlotsRequest,
    current_user: User = Depends(require_admin),
    db: Session = Depends(get_db),
    cache: TTLCache = Depends(get_amenity_cache),
):
    amenity = db.query(Amenity).filter(Amenity.id == data.amenityId).first()
    if not amenity:
        raise HTTPException(status_code=404, detail="Amenity not found")
    if amenity.community_id != current_user.community_id:
        raise HTTPException(status_code=403, detail="Access denied for this community")

    if data.timeSlots:
        amenity.time_slots = data.timeSlots
        amenity.operating_hours = None
    elif data.operatingHours and data.slotDuration:
        slots = generate_time_slots(data.operatingHours.start, data.operatingHours.end, data.slotDuration)
        if not slots:
            raise HTTPException(status_code=400, detail="Operating hours are shorter than one slot")
        amenity.operating_hours = {
            "start": data.operatingHours.start,
            "end": data.operatingHours.end,
            "slotDuration": data.slotDuration,
        }
        amenity.time_slots = slots
    else:
        raise HTTPException(
            status_code=400,
            detail="Either timeSlots or (operatingHours + slotDuration) must be provided",
        )

    db.commit()
    cache.delete(amenity.community_id)
    logger.info(f"🕒 Time slots updated for {amenity.name}: {len(amenity.time_slots)} slot(s)")
    return {
        "success": True,
        "message": "Time slots updated successfully",
        "amenityId": amenity.id,
        "timeSlots": amenity.time_slots,
        "operatingHours": amenity.operating_hours,
    }
