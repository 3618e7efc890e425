"""Booking router - FastAPI endpoints for the booking lifecycle"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from ...auth import get_current_user, require_admin
from ...database import get_db
from ...email_service import get_mailer
from ...models import User
from ...services.booking_stats import get_stats, stats_to_dict
from ...shared.timeutils import utcnow
from ...shared.validators import parse_timestamp
from .schemas import (
    BookingCancelRequest,
    BookingConfirmRequest,
    BookingCreate,
    PromoteWaitlistRequest,
    QrVerifyRequest,
    RecurringBookingCreate,
)
from .service import BookingService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/bookings", tags=["Bookings"])
qr_router = APIRouter(prefix="/qr", tags=["Bookings"])


def get_booking_service(db: Session = Depends(get_db), mailer=Depends(get_mailer)) -> BookingService:
    """Dependency injection for BookingService"""
    return BookingService(db, mailer)


@router.get("")
async def list_my_bookings(
    current_user: User = Depends(get_current_user),
    service: BookingService = Depends(get_booking_service),
):
    return {"success": True, "bookings": service.get_user_bookings(current_user)}


@router.get("/eligibility")
async def booking_eligibility(
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """No-show history, waitlist priority and any active suspension for the caller"""
    stats = get_stats(db, current_user.email)
    summary = stats_to_dict(stats, utcnow())
    return {"success": True, "canBook": not summary["isSuspended"], **summary}


@router.post("/create")
async def create_booking(
    data: BookingCreate,
    current_user: User = Depends(get_current_user),
    service: BookingService = Depends(get_booking_service),
):
    """Book a slot; lands confirmed while capacity remains, otherwise on the waitlist"""
    return await service.create_booking(data, current_user)


@router.post("/recurring")
async def create_recurring_booking(
    data: RecurringBookingCreate,
    current_user: User = Depends(get_current_user),
    service: BookingService = Depends(get_booking_service),
):
    return await service.create_recurring(data, current_user)


@router.post("/cancel/{booking_id}")
async def cancel_booking(
    booking_id: str,
    data: Optional[BookingCancelRequest] = None,
    current_user: User = Depends(get_current_user),
    service: BookingService = Depends(get_booking_service),
):
    reason = data.reason if data else None
    return await service.cancel_booking(booking_id, current_user, reason=reason)


@router.post("/promote-waitlist")
async def promote_waitlist(
    data: PromoteWaitlistRequest,
    current_user: User = Depends(get_current_user),
    service: BookingService = Depends(get_booking_service),
):
    return await service.promote_waitlist(data.amenityId, data.startTime, current_user, reason=data.reason)


@router.get("/promote-waitlist")
async def get_slot_waitlist(
    amenityId: str = Query(...),
    startTime: str = Query(...),
    current_user: User = Depends(get_current_user),
    service: BookingService = Depends(get_booking_service),
):
    try:
        start = parse_timestamp(startTime)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e)) from e
    return service.get_slot_waitlist(amenityId, start, current_user)


@router.post("/confirm/{booking_id}")
async def confirm_booking(
    booking_id: str,
    data: Optional[BookingConfirmRequest] = None,
    current_user: User = Depends(get_current_user),
    service: BookingService = Depends(get_booking_service),
):
    action = data.action if data else "confirm"
    return await service.confirm_booking(booking_id, current_user, action=action)


@router.get("/confirm/{booking_id}")
async def get_confirmation_status(
    booking_id: str,
    current_user: User = Depends(get_current_user),
    service: BookingService = Depends(get_booking_service),
):
    return service.get_confirmation_status(booking_id, current_user)


@router.get("/{booking_id}/qr")
async def get_booking_qr(
    booking_id: str,
    current_user: User = Depends(get_current_user),
    service: BookingService = Depends(get_booking_service),
):
    return service.get_qr_code(booking_id, current_user)


@qr_router.post("/verify")
async def verify_qr(
    data: QrVerifyRequest,
    current_user: User = Depends(require_admin),
    service: BookingService = Depends(get_booking_service),
):
    """Admin scans a resident's QR code at the amenity"""
    return service.check_in(data.qrId, current_user)
