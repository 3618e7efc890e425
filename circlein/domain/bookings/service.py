"""Booking service - Business logic for the booking lifecycle and waitlist"""

import logging
import secrets
from datetime import datetime, timedelta
from typing import Optional

from fastapi import HTTPException
from sqlalchemy.orm import Session

from ...config import (
    APP_URL,
    CONFIRMATION_WINDOW_HOURS,
    MAX_RECURRING_OCCURRENCES,
    NO_SHOW_CONFIRMATION_WINDOW_MINUTES,
)
from ...models import (
    CANCELLED,
    CAPACITY_HOLDING_STATUSES,
    COMPLETED,
    CONFIRMED,
    DECLINED,
    EXPIRED,
    PENDING_CONFIRMATION,
    WAITLIST,
    Booking,
    User,
)
from ...services.booking_stats import (
    active_suspension,
    calculate_priority_score,
    get_stats,
    record_booking,
    record_cancellation,
    suspension_message,
)
from ...services.notification_service import create_notification, send_email_notification
from ...shared.qr import render_qr_data_url
from ...shared.timeutils import format_date, format_slot, format_time, isoformat, utcnow
from .lifecycle import InvalidStatusTransition, transition
from .repository import BookingRepository
from .schemas import BookingCreate, RecurringBookingCreate, booking_to_dict

logger = logging.getLogger(__name__)

DEADLINE_PASSED_REASON = "Confirmation deadline passed"


def booking_email_data(booking: Booking, **extra) -> dict:
    """Template data shared by every booking email"""
    data = {
        "userName": booking.user_name or booking.user_email.split("@")[0],
        "userEmail": booking.user_email,
        "amenityName": booking.amenity_name or "Amenity",
        "date": format_date(booking.start_time),
        "timeSlot": booking.selected_slot or format_slot(booking.start_time, booking.end_time),
        "bookingId": booking.id,
        "startTime": f"{format_date(booking.start_time)} {format_time(booking.start_time)}",
        "endTime": f"{format_date(booking.end_time)} {format_time(booking.end_time)}",
    }
    data.update(extra)
    return data


def confirmation_window(reason: str) -> timedelta:
    """How long a promoted resident has to confirm"""
    if reason == "no_show":
        return timedelta(minutes=NO_SHOW_CONFIRMATION_WINDOW_MINUTES)
    return timedelta(hours=CONFIRMATION_WINDOW_HOURS)


class BookingService:
    """Service layer for booking business logic"""

    def __init__(self, db: Session, mailer):
        self.db = db
        self.mailer = mailer
        self.repo = BookingRepository()

    # ------------------------------------------------------------------
    # Lookups and guards
    # ------------------------------------------------------------------

    def get_booking(self, booking_id: str) -> Booking:
        booking = self.repo.get_booking(self.db, booking_id)
        if not booking:
            raise HTTPException(status_code=404, detail="Booking not found")
        return booking

    @staticmethod
    def _ensure_community(booking: Booking, user: User) -> None:
        if booking.community_id != user.community_id:
            logger.warning(f"🚨 Community mismatch: {user.email} on booking {booking.id}")
            raise HTTPException(
                status_code=403,
                detail="Access denied. This booking belongs to a different community.",
            )

    @staticmethod
    def _transition(booking: Booking, new_status: str) -> None:
        try:
            transition(booking, new_status)
        except InvalidStatusTransition as e:
            raise HTTPException(status_code=400, detail=str(e)) from e

    # ------------------------------------------------------------------
    # Waitlist bookkeeping
    # ------------------------------------------------------------------

    def compact_waitlist(self, amenity_id: str, start_time: datetime) -> None:
        """Renumber a slot's waitlist 1..n, keeping the current order"""
        self.db.flush()
        for position, entry in enumerate(self.repo.get_waitlist(self.db, amenity_id, start_time), start=1):
            if entry.waitlist_position != position:
                entry.waitlist_position = position

    def promote_next(
        self,
        amenity_id: str,
        start_time: datetime,
        reason: str,
        now: Optional[datetime] = None,
    ) -> list[Booking]:
        """
        Move as many waitlisted bookings into pending_confirmation as the slot
        has free capacity. Stages changes only; the caller commits and then
        calls notify_promoted.
        """
        now = now or utcnow()
        self.db.flush()

        amenity = self.repo.lock_amenity(self.db, amenity_id)
        if not amenity:
            logger.warning(f"⚠️ Cannot promote waitlist, amenity {amenity_id} not found")
            return []

        waitlist = self.repo.get_waitlist(self.db, amenity_id, start_time)
        if not waitlist:
            return []
        end_time = waitlist[0].end_time
        if end_time <= now:
            logger.info(f"⏭️ Slot {amenity.name} at {isoformat(start_time)} has passed, not promoting")
            return []

        holders = self.repo.count_capacity_holders(self.db, amenity_id, start_time)
        free = (amenity.max_people or 1) - holders
        if free <= 0:
            logger.info(f"📊 No free capacity for {amenity.name} at {isoformat(start_time)} ({holders}/{amenity.max_people})")
            return []

        window = confirmation_window(reason)
        promoted = []
        for entry in waitlist[:free]:
            transition(entry, PENDING_CONFIRMATION)
            entry.promoted_at = now
            entry.promotion_reason = reason
            entry.confirmation_deadline = min(now + window, entry.end_time)
            entry.waitlist_position = None
            create_notification(
                self.db,
                community_id=entry.community_id,
                user_email=entry.user_email,
                notification_type="waitlist_promoted",
                title="A spot opened up!",
                message=(
                    f"Your waitlisted {entry.amenity_name or 'amenity'} booking can now be confirmed. "
                    f"Confirm before {isoformat(entry.confirmation_deadline)}."
                ),
                data={"bookingId": entry.id, "amenityId": amenity_id},
                expires_at=entry.confirmation_deadline,
            )
            promoted.append(entry)
            logger.info(f"⬆️ Promoted booking {entry.id} ({entry.user_email}) from waitlist, reason={reason}")

        self.compact_waitlist(amenity_id, start_time)
        return promoted

    async def notify_promoted(self, promoted: list[Booking]) -> None:
        for booking in promoted:
            template = "waitlist_auto_promoted" if booking.promotion_reason == "no_show" else "waitlist_promoted"
            await send_email_notification(
                self.mailer,
                booking.user_email,
                template,
                booking_email_data(
                    booking,
                    confirmationUrl=f"{APP_URL}/bookings/confirm/{booking.id}",
                    deadline=f"{format_date(booking.confirmation_deadline)} "
                    f"{format_time(booking.confirmation_deadline)} UTC",
                ),
            )

    async def promote_waitlist(
        self,
        amenity_id: str,
        start_time: datetime,
        user: User,
        reason: str = "manual",
        now: Optional[datetime] = None,
    ) -> dict:
        now = now or utcnow()
        amenity = self.repo.lock_amenity(self.db, amenity_id)
        if not amenity:
            raise HTTPException(status_code=404, detail="Amenity not found")
        if amenity.community_id != user.community_id:
            raise HTTPException(status_code=403, detail="Access denied for this community")

        promoted = self.promote_next(amenity_id, start_time, reason, now=now)
        self.db.commit()
        await self.notify_promoted(promoted)

        if not promoted:
            return {"success": True, "promoted": 0, "message": "No waitlist entries could be promoted", "bookings": []}
        return {
            "success": True,
            "promoted": len(promoted),
            "message": f"Promoted {len(promoted)} booking(s) from the waitlist",
            "bookings": [booking_to_dict(b) for b in promoted],
        }

    def get_slot_waitlist(self, amenity_id: str, start_time: datetime, user: User) -> dict:
        amenity = self.repo.lock_amenity(self.db, amenity_id)
        if not amenity:
            raise HTTPException(status_code=404, detail="Amenity not found")
        if amenity.community_id != user.community_id:
            raise HTTPException(status_code=403, detail="Access denied for this community")
        waitlist = self.repo.get_waitlist(self.db, amenity_id, start_time)
        holders = self.repo.count_capacity_holders(self.db, amenity_id, start_time)
        return {
            "success": True,
            "amenityId": amenity_id,
            "startTime": isoformat(start_time),
            "capacity": amenity.max_people,
            "booked": holders,
            "waitlist": [booking_to_dict(b) for b in waitlist],
        }

    # ------------------------------------------------------------------
    # Create
    # ------------------------------------------------------------------

    async def create_booking(self, data: BookingCreate, user: User, now: Optional[datetime] = None) -> dict:
        now = now or utcnow()
        if data.endTime <= data.startTime:
            raise HTTPException(status_code=400, detail="End time must be after start time")
        if data.endTime <= now:
            raise HTTPException(status_code=400, detail="Cannot book a time slot that has already ended")

        amenity = self.repo.lock_amenity(self.db, data.amenityId)
        if not amenity:
            raise HTTPException(status_code=404, detail="Amenity not found")
        if amenity.community_id != user.community_id:
            raise HTTPException(status_code=403, detail="Access denied for this community")
        if amenity.is_blocked_during(data.startTime, data.endTime):
            raise HTTPException(
                status_code=400,
                detail=f"{amenity.name} is unavailable: {amenity.block_reason or 'blocked by admin'}",
            )

        stats = get_stats(self.db, user.email)
        if active_suspension(stats, now):
            logger.warning(f"🚫 Suspended user {user.email} tried to book {amenity.name}")
            raise HTTPException(status_code=403, detail=suspension_message(stats))

        logger.info(f"🎯 Booking request: {amenity.name} at {data.selectedSlot or isoformat(data.startTime)} by {user.email}")

        capacity = amenity.max_people or 1
        holders = self.repo.count_capacity_holders(self.db, amenity.id, data.startTime)
        booking_data = {
            "user_id": user.email,
            "user_email": user.email,
            "user_name": data.userName or user.name or user.email.split("@")[0],
            "user_flat_number": data.userFlatNumber or user.flat_number or "",
            "community_id": amenity.community_id,
            "amenity_id": amenity.id,
            "amenity_name": data.amenityName or amenity.name,
            "start_time": data.startTime,
            "end_time": data.endTime,
            "selected_slot": data.selectedSlot,
            "attendees": data.attendees,
            "qr_id": secrets.token_hex(6),
            "priority_score": calculate_priority_score(stats),
            "reminder_sent": False,
            "created_at": now,
        }

        if holders < capacity:
            booking = self.repo.create_booking(self.db, status=CONFIRMED, confirmed_at=now, **booking_data)
            position = holders + 1
            message = "Booking confirmed successfully!"
            logger.info(f"✅ CONFIRMED: Booking created ({position}/{capacity})")
        else:
            position = self.repo.count_waitlist(self.db, amenity.id, data.startTime) + 1
            booking = self.repo.create_booking(self.db, status=WAITLIST, waitlist_position=position, **booking_data)
            message = f"Added to waitlist (Position #{position})"
            logger.info(f"📋 WAITLIST: Added to position {position}")

        record_booking(self.db, user.email)
        self.db.commit()
        self.db.refresh(booking)

        community_name = amenity.community.name if amenity.community else None
        if booking.status == CONFIRMED:
            await send_email_notification(
                self.mailer,
                booking.user_email,
                "booking_confirmation",
                booking_email_data(booking, communityName=community_name, flatNumber=booking.user_flat_number),
            )
        else:
            await send_email_notification(
                self.mailer,
                booking.user_email,
                "booking_waitlist",
                booking_email_data(booking, communityName=community_name, waitlistPosition=position),
            )

        return {
            "success": True,
            "status": booking.status,
            "bookingId": booking.id,
            "message": message,
            "position": position,
            "capacity": capacity,
            "booking": booking_to_dict(booking),
        }

    async def create_recurring(self, data: RecurringBookingCreate, user: User, now: Optional[datetime] = None) -> dict:
        if data.occurrences > MAX_RECURRING_OCCURRENCES:
            raise HTTPException(
                status_code=400,
                detail=f"A recurring booking can have at most {MAX_RECURRING_OCCURRENCES} occurrences",
            )

        step = timedelta(days=1) if data.frequency == "daily" else timedelta(weeks=1)
        created, skipped = [], []
        for i in range(data.occurrences):
            occurrence = BookingCreate(
                **data.model_dump(exclude={"frequency", "occurrences", "startTime", "endTime"}),
                startTime=data.startTime + step * i,
                endTime=data.endTime + step * i,
            )
            try:
                result = await self.create_booking(occurrence, user, now=now)
            except HTTPException as e:
                self.db.rollback()
                logger.warning(f"⚠️ Skipped recurring occurrence {isoformat(occurrence.startTime)}: {e.detail}")
                skipped.append({"startTime": isoformat(occurrence.startTime), "error": e.detail})
                continue
            created.append(
                {
                    "bookingId": result["bookingId"],
                    "status": result["status"],
                    "startTime": isoformat(occurrence.startTime),
                    "position": result["position"],
                }
            )

        return {
            "success": bool(created),
            "created": len(created),
            "confirmed": sum(1 for c in created if c["status"] == CONFIRMED),
            "waitlisted": sum(1 for c in created if c["status"] == WAITLIST),
            "bookings": created,
            "skipped": skipped,
        }

    # ------------------------------------------------------------------
    # Cancel
    # ------------------------------------------------------------------

    async def cancel_booking(
        self, booking_id: str, user: User, reason: Optional[str] = None, now: Optional[datetime] = None
    ) -> dict:
        now = now or utcnow()
        booking = self.get_booking(booking_id)
        self._ensure_community(booking, user)

        is_owner = booking.user_email == user.email
        if not is_owner and not user.is_admin:
            raise HTTPException(status_code=403, detail="You can only cancel your own bookings")
        if booking.status in (CANCELLED, COMPLETED):
            raise HTTPException(status_code=400, detail=f"Booking is already {booking.status}")

        previous_status = booking.status
        self._transition(booking, CANCELLED)
        booking.cancelled_at = now
        booking.cancelled_by = user.email
        booking.admin_cancellation = user.is_admin and not is_owner
        booking.waitlist_position = None
        if is_owner:
            record_cancellation(self.db, user.email)
        logger.info(f"🗑️ Booking {booking.id} cancelled by {user.email} (was {previous_status})")

        promoted = []
        if previous_status in CAPACITY_HOLDING_STATUSES:
            promoted = self.promote_next(booking.amenity_id, booking.start_time, "cancellation", now=now)
        elif previous_status == WAITLIST:
            self.compact_waitlist(booking.amenity_id, booking.start_time)

        self.db.commit()

        await send_email_notification(
            self.mailer,
            booking.user_email,
            "booking_cancellation",
            booking_email_data(
                booking,
                cancelledBy=user.name or user.email,
                isAdminCancellation=booking.admin_cancellation,
                cancellationReason=reason,
            ),
        )
        await self.notify_promoted(promoted)

        return {
            "success": True,
            "message": "Booking cancelled successfully",
            "bookingId": booking.id,
            "promotedBookingIds": [b.id for b in promoted],
        }

    def release_user_bookings(self, user_email: str, cancelled_by: str, now: Optional[datetime] = None):
        """
        Cancel a departing resident's open bookings (confirmed, pending or
        waitlisted, not yet ended) and hand their seats to the waitlist.
        Stages changes only; returns (cancelled, promoted) and the caller
        commits and then calls notify_promoted.
        """
        now = now or utcnow()
        cancelled, promoted = [], []
        held_slots, waitlist_slots = set(), set()
        for booking in self.repo.get_user_open_bookings(self.db, user_email, now):
            previous_status = booking.status
            transition(booking, CANCELLED)
            booking.cancelled_at = now
            booking.cancelled_by = cancelled_by
            booking.admin_cancellation = True
            booking.waitlist_position = None
            slot = (booking.amenity_id, booking.start_time)
            if previous_status in CAPACITY_HOLDING_STATUSES:
                held_slots.add(slot)
            else:
                waitlist_slots.add(slot)
            cancelled.append(booking)

        for amenity_id, start_time in held_slots:
            promoted.extend(self.promote_next(amenity_id, start_time, "cancellation", now=now))
        for amenity_id, start_time in waitlist_slots - held_slots:
            self.compact_waitlist(amenity_id, start_time)

        if cancelled:
            logger.info(f"🗑️ Released {len(cancelled)} open booking(s) of {user_email}, promoted {len(promoted)}")
        return cancelled, promoted

    # ------------------------------------------------------------------
    # Confirm / decline a promotion
    # ------------------------------------------------------------------

    def _get_own_booking(self, booking_id: str, user: User) -> Booking:
        booking = self.get_booking(booking_id)
        self._ensure_community(booking, user)
        if booking.user_email != user.email:
            raise HTTPException(status_code=403, detail="Access denied. You can only confirm your own bookings.")
        return booking

    async def confirm_booking(
        self, booking_id: str, user: User, action: str = "confirm", now: Optional[datetime] = None
    ) -> dict:
        now = now or utcnow()
        booking = self._get_own_booking(booking_id, user)

        if booking.status == CONFIRMED:
            logger.info(f"✅ Booking {booking.id} already confirmed (idempotent response)")
            return {"success": True, "message": "Booking already confirmed.", "booking": booking_to_dict(booking)}

        if booking.status != PENDING_CONFIRMATION:
            raise HTTPException(
                status_code=400,
                detail=f"Cannot confirm booking with status: {booking.status}. Only pending confirmations can be confirmed.",
            )
        if not booking.confirmation_deadline:
            raise HTTPException(status_code=400, detail="Booking promotion data is incomplete.")

        if now > booking.confirmation_deadline:
            logger.info(f"⏰ Confirmation deadline passed for booking {booking.id}")
            transition(booking, EXPIRED)
            booking.expired_at = now
            booking.expired_reason = DEADLINE_PASSED_REASON
            promoted = self.promote_next(booking.amenity_id, booking.start_time, "expiry", now=now)
            self.db.commit()
            await self.notify_promoted(promoted)
            raise HTTPException(
                status_code=410,
                detail="Confirmation deadline has passed. The booking has been offered to the next person in line.",
            )

        if action == "decline":
            transition(booking, DECLINED)
            booking.declined_at = now
            promoted = self.promote_next(booking.amenity_id, booking.start_time, "decline", now=now)
            self.db.commit()
            await self.notify_promoted(promoted)
            logger.info(f"👋 Booking {booking.id} declined by {user.email}")
            return {
                "success": True,
                "message": "Booking declined. The spot has been offered to the next person in line.",
                "action": "declined",
                "bookingId": booking.id,
            }

        transition(booking, CONFIRMED)
        booking.confirmed_at = now
        self.db.commit()
        logger.info(f"✅ Booking {booking.id} confirmed by {user.email}")

        await send_email_notification(self.mailer, booking.user_email, "booking_confirmed", booking_email_data(booking))
        return {
            "success": True,
            "message": "Booking confirmed successfully! You will receive a confirmation email with your QR code.",
            "booking": booking_to_dict(booking),
        }

    def get_confirmation_status(self, booking_id: str, user: User, now: Optional[datetime] = None) -> dict:
        now = now or utcnow()
        booking = self._get_own_booking(booking_id, user)
        time_remaining = None
        if booking.confirmation_deadline:
            time_remaining = max(0, int((booking.confirmation_deadline - now).total_seconds() * 1000))
        return {
            "success": True,
            "booking": booking_to_dict(booking),
            "timeRemaining": time_remaining,
            "deadlinePassed": bool(booking.confirmation_deadline and now > booking.confirmation_deadline),
        }

    # ------------------------------------------------------------------
    # QR check-in
    # ------------------------------------------------------------------

    def get_qr_code(self, booking_id: str, user: User) -> dict:
        booking = self.get_booking(booking_id)
        self._ensure_community(booking, user)
        if booking.user_email != user.email and not user.is_admin:
            raise HTTPException(status_code=403, detail="Access denied. You can only view your own bookings.")
        if booking.status != CONFIRMED or not booking.qr_id:
            raise HTTPException(status_code=400, detail="QR codes are only issued for confirmed bookings")
        return {
            "success": True,
            "bookingId": booking.id,
            "qrId": booking.qr_id,
            "qrCodeUrl": render_qr_data_url(booking.qr_id),
            "status": booking.status,
            "checkInTime": isoformat(booking.check_in_time),
        }

    def check_in(self, qr_id: str, admin: User, now: Optional[datetime] = None) -> dict:
        now = now or utcnow()
        booking = self.repo.get_booking_by_qr(self.db, qr_id)
        if not booking:
            raise HTTPException(status_code=404, detail="Invalid QR code")
        self._ensure_community(booking, admin)
        if booking.status != CONFIRMED:
            raise HTTPException(status_code=400, detail=f"Booking is {booking.status}, not confirmed")

        if booking.check_in_time:
            return {
                "success": True,
                "alreadyCheckedIn": True,
                "message": "Already checked in",
                "booking": booking_to_dict(booking),
            }

        booking.check_in_time = now
        self.db.commit()
        logger.info(f"📲 Checked in booking {booking.id} ({booking.user_email})")
        return {
            "success": True,
            "alreadyCheckedIn": False,
            "message": f"Welcome, {booking.user_name or booking.user_email}!",
            "booking": booking_to_dict(booking),
        }

    def get_user_bookings(self, user: User) -> list[dict]:
        return [booking_to_dict(b) for b in self.repo.get_user_bookings(self.db, user.email)]
