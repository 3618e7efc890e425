"""Booking domain schemas - Pydantic models for validation"""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field, field_validator

from ...shared.timeutils import isoformat
from ...shared.validators import parse_timestamp


def _parse_time(v):
    if v is None:
        return v
    return parse_timestamp(v)


class BookingCreate(BaseModel):
    """Schema for creating a booking"""

    amenityId: str = Field(min_length=1)
    amenityName: Optional[str] = None
    startTime: datetime
    endTime: datetime
    attendees: list[str] = []
    selectedDate: Optional[str] = None
    selectedSlot: Optional[str] = None  # e.g. "10:00-12:00"
    userName: Optional[str] = None
    userFlatNumber: Optional[str] = None

    @field_validator("startTime", "endTime", mode="before")
    @classmethod
    def parse_times(cls, v):
        return _parse_time(v)


class RecurringBookingCreate(BookingCreate):
    """A booking repeated daily or weekly"""

    frequency: str = "weekly"
    occurrences: int = Field(default=4, ge=1)

    @field_validator("frequency")
    @classmethod
    def validate_frequency(cls, v):
        if v not in ("daily", "weekly"):
            raise ValueError("frequency must be 'daily' or 'weekly'")
        return v


class BookingCancelRequest(BaseModel):
    reason: Optional[str] = None


class BookingConfirmRequest(BaseModel):
    action: str = "confirm"

    @field_validator("action")
    @classmethod
    def validate_action(cls, v):
        if v not in ("confirm", "decline"):
            raise ValueError("action must be 'confirm' or 'decline'")
        return v


class PromoteWaitlistRequest(BaseModel):
    amenityId: str = Field(min_length=1)
    startTime: datetime
    reason: str = "manual"

    @field_validator("startTime", mode="before")
    @classmethod
    def parse_start(cls, v):
        return _parse_time(v)


class QrVerifyRequest(BaseModel):
    qrId: str = Field(min_length=1)


def booking_to_dict(booking) -> dict:
    """Wire representation of a booking"""
    return {
        "id": booking.id,
        "userId": booking.user_id,
        "userEmail": booking.user_email,
        "userName": booking.user_name,
        "userFlatNumber": booking.user_flat_number,
        "communityId": booking.community_id,
        "amenityId": booking.amenity_id,
        "amenityName": booking.amenity_name,
        "startTime": isoformat(booking.start_time),
        "endTime": isoformat(booking.end_time),
        "selectedSlot": booking.selected_slot,
        "attendees": booking.attendees or [],
        "status": booking.status,
        "waitlistPosition": booking.waitlist_position,
        "priorityScore": booking.priority_score,
        "reminderSent": booking.reminder_sent,
        "qrId": booking.qr_id,
        "createdAt": isoformat(booking.created_at),
        "confirmedAt": isoformat(booking.confirmed_at),
        "promotedAt": isoformat(booking.promoted_at),
        "promotionReason": booking.promotion_reason,
        "confirmationDeadline": isoformat(booking.confirmation_deadline),
        "expiredAt": isoformat(booking.expired_at),
        "expiredReason": booking.expired_reason,
        "cancelledAt": isoformat(booking.cancelled_at),
        "cancelledBy": booking.cancelled_by,
        "checkInTime": isoformat(booking.check_in_time),
    }
