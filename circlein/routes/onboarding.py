"""Admin onboarding: community profile, amenities and resident access codes"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field, field_validator
from sqlalchemy.orm import Session

from ..auth import ensure_same_community, require_admin
from ..cache import TTLCache
from ..config import MAX_CODES_PER_REQUEST
from ..database import get_db
from ..models import Amenity, Community, User
from ..services.access_codes import CodeGenerationError, create_codes
from ..shared.timeutils import utcnow
from .amenities import OperatingHours, amenity_to_dict, generate_time_slots, get_amenity_cache

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/admin/onboarding", tags=["Onboarding"])

# Keyword -> stock photo, longest keyword wins
STANDARD_IMAGES = {
    "swimming pool": "https://images.pexels.com/photos/261102/pexels-photo-261102.jpeg?auto=compress&cs=tinysrgb&w=1200",
    "pool": "https://images.pexels.com/photos/261102/pexels-photo-261102.jpeg?auto=compress&cs=tinysrgb&w=1200",
    "tennis": "https://images.pexels.com/photos/209977/pexels-photo-209977.jpeg?auto=compress&cs=tinysrgb&w=1200",
    "badminton": "https://images.pexels.com/photos/3660204/pexels-photo-3660204.jpeg?auto=compress&cs=tinysrgb&w=1200",
    "basketball": "https://images.pexels.com/photos/1544008/pexels-photo-1544008.jpeg?auto=compress&cs=tinysrgb&w=1200",
    "gym": "https://images.pexels.com/photos/1552242/pexels-photo-1552242.jpeg?auto=compress&cs=tinysrgb&w=1200",
    "fitness": "https://images.pexels.com/photos/1552242/pexels-photo-1552242.jpeg?auto=compress&cs=tinysrgb&w=1200",
    "yoga": "https://images.pexels.com/photos/3822621/pexels-photo-3822621.jpeg?auto=compress&cs=tinysrgb&w=1200",
    "hall": "https://images.pexels.com/photos/1579253/pexels-photo-1579253.jpeg?auto=compress&cs=tinysrgb&w=1200",
    "playground": "https://images.pexels.com/photos/1770809/pexels-photo-1770809.jpeg?auto=compress&cs=tinysrgb&w=1200",
    "garden": "https://images.pexels.com/photos/1105019/pexels-photo-1105019.jpeg?auto=compress&cs=tinysrgb&w=1200",
    "clubhouse": "https://images.pexels.com/photos/1181406/pexels-photo-1181406.jpeg?auto=compress&cs=tinysrgb&w=1200",
}


def pick_image(name: str, provided_url: Optional[str] = None) -> str:
    if provided_url and provided_url.strip():
        return provided_url.strip()
    normalized = " ".join(name.lower().split())
    for keyword in sorted(STANDARD_IMAGES, key=len, reverse=True):
        if keyword in normalized:
            return STANDARD_IMAGES[keyword]
    return STANDARD_IMAGES["clubhouse"]


class GenerateCodesRequest(BaseModel):
    communityId: str = Field(min_length=1)
    codeCount: int

    @field_validator("codeCount", mode="before")
    @classmethod
    def validate_count(cls, v):
        if isinstance(v, bool) or not isinstance(v, int) or not 1 <= v <= MAX_CODES_PER_REQUEST:
            raise ValueError(f"Invalid code count (must be between 1 and {MAX_CODES_PER_REQUEST})")
        return v


class UpdateCommunityRequest(BaseModel):
    communityId: str = Field(min_length=1)
    communityName: str = Field(min_length=1, max_length=255)
    address: Optional[str] = None
    contactEmail: Optional[str] = None
    description: Optional[str] = None


class AmenityInput(BaseModel):
    name: str = Field(min_length=1, max_length=255)
    description: str = Field(min_length=1)
    category: str = "general"
    maxPeople: int = Field(default=1, ge=1, le=500)
    operatingHours: Optional[OperatingHours] = None
    slotDuration: Optional[int] = Field(default=None, ge=15, le=720)
    timeSlots: Optional[list[str]] = None
    imageUrl: Optional[str] = None
    isOutdoor: bool = False
    location: Optional[str] = None
    managerName: Optional[str] = None
    managerEmail: Optional[str] = None
    managerPhone: Optional[str] = None


class CreateAmenitiesRequest(BaseModel):
    communityId: str = Field(min_length=1)
    amenities: list[AmenityInput] = Field(min_length=1)


@router.post("/generate-codes")
async def generate_codes(
    data: GenerateCodesRequest,
    current_user: User = Depends(require_admin),
    db: Session = Depends(get_db),
):
    ensure_same_community(current_user, data.communityId)
    try:
        codes = create_codes(db, data.communityId, data.codeCount, created_by=current_user.email)
        db.commit()
    except CodeGenerationError as e:
        db.rollback()
        raise HTTPException(status_code=500, detail=str(e)) from e

    logger.info(f"🎟️ Generated {len(codes)} access code(s) for community {data.communityId}")
    return {
        "success": True,
        "message": f"Successfully generated {len(codes)} access codes",
        "codes": codes,
    }


@router.post("/update-community")
async def update_community(
    data: UpdateCommunityRequest,
    current_user: User = Depends(require_admin),
    db: Session = Depends(get_db),
):
    ensure_same_community(current_user, data.communityId)
    community = db.query(Community).filter(Community.id == data.communityId).first()
    if community is None:
        community = Community(id=data.communityId, name=data.communityName)
        db.add(community)
        logger.info(f"🏘️ Creating community record {data.communityId}")

    community.name = data.communityName
    if data.address is not None:
        community.address = data.address
    if data.contactEmail is not None:
        community.contact_email = data.contactEmail
    if data.description is not None:
        community.description = data.description
    community.updated_at = utcnow()
    db.commit()
    return {"success": True, "message": "Community updated successfully"}


@router.post("/create-amenities")
async def create_amenities(
    data: CreateAmenitiesRequest,
    current_user: User = Depends(require_admin),
    db: Session = Depends(get_db),
    cache: TTLCache = Depends(get_amenity_cache),
):
    ensure_same_community(current_user, data.communityId)

    created = []
    for item in data.amenities:
        time_slots = item.timeSlots
        operating_hours = None
        if not time_slots and item.operatingHours and item.slotDuration:
            time_slots = generate_time_slots(item.operatingHours.start, item.operatingHours.end, item.slotDuration)
            operating_hours = {
                "start": item.operatingHours.start,
                "end": item.operatingHours.end,
                "slotDuration": item.slotDuration,
            }
        amenity = Amenity(
            community_id=data.communityId,
            name=item.name.strip(),
            description=item.description,
            category=item.category,
            max_people=item.maxPeople,
            operating_hours=operating_hours,
            time_slots=time_slots,
            image_url=pick_image(item.name, item.imageUrl),
            is_outdoor=item.isOutdoor,
            location=item.location,
            manager_name=item.managerName,
            manager_email=item.managerEmail,
            manager_phone=item.managerPhone,
        )
        db.add(amenity)
        created.append(amenity)

    db.commit()
    cache.delete(data.communityId)
    logger.info(f"🏊 Created {len(created)} amenities for community {data.communityId}")
    return {
        "success": True,
        "message": f"Successfully created {len(created)} amenities",
        "amenities": [amenity_to_dict(a) for a in created],
    }
