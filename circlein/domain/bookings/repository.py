"""Booking repository - Database operations for bookings"""

from datetime import datetime
from typing import Optional

from sqlalchemy import func, or_, update
from sqlalchemy.orm import Session

from ...models import (
    CAPACITY_HOLDING_STATUSES,
    CONFIRMED,
    PENDING_CONFIRMATION,
    WAITLIST,
    Amenity,
    Booking,
)


class BookingRepository:
    """Repository for booking database operations"""

    @staticmethod
    def get_booking(db: Session, booking_id: str) -> Optional[Booking]:
        return db.query(Booking).filter(Booking.id == booking_id).first()

    @staticmethod
    def get_booking_by_qr(db: Session, qr_id: str) -> Optional[Booking]:
        return db.query(Booking).filter(Booking.qr_id == qr_id).first()

    @staticmethod
    def lock_amenity(db: Session, amenity_id: str) -> Optional[Amenity]:
        """Load the amenity row FOR UPDATE so slot decisions serialize per amenity"""
        return db.query(Amenity).filter(Amenity.id == amenity_id).with_for_update().first()

    @staticmethod
    def count_capacity_holders(db: Session, amenity_id: str, start_time: datetime) -> int:
        """Confirmed plus pending-confirmation bookings for a slot"""
        return (
            db.query(func.count(Booking.id))
            .filter(
                Booking.amenity_id == amenity_id,
                Booking.start_time == start_time,
                Booking.status.in_(CAPACITY_HOLDING_STATUSES),
            )
            .scalar()
        )

    @staticmethod
    def count_waitlist(db: Session, amenity_id: str, start_time: datetime) -> int:
        return (
            db.query(func.count(Booking.id))
            .filter(
                Booking.amenity_id == amenity_id,
                Booking.start_time == start_time,
                Booking.status == WAITLIST,
            )
            .scalar()
        )

    @staticmethod
    def get_waitlist(db: Session, amenity_id: str, start_time: datetime) -> list[Booking]:
        """Waitlist of a slot in promotion order: priority score, then position, then arrival"""
        return (
            db.query(Booking)
            .filter(
                Booking.amenity_id == amenity_id,
                Booking.start_time == start_time,
                Booking.status == WAITLIST,
            )
            .order_by(Booking.priority_score.asc(), Booking.waitlist_position.asc(), Booking.created_at.asc())
            .all()
        )

    @staticmethod
    def create_booking(db: Session, **booking_data) -> Booking:
        """Stage a new booking; the caller commits"""
        booking = Booking(**booking_data)
        db.add(booking)
        return booking

    @staticmethod
    def get_user_bookings(db: Session, user_email: str) -> list[Booking]:
        return (
            db.query(Booking)
            .filter(Booking.user_email == user_email)
            .order_by(Booking.start_time.desc())
            .all()
        )

    @staticmethod
    def get_user_open_bookings(db: Session, user_email: str, now: datetime) -> list[Booking]:
        """Confirmed, pending or waitlisted bookings of a user whose slot has not ended"""
        return (
            db.query(Booking)
            .filter(
                Booking.user_email == user_email,
                Booking.status.in_((CONFIRMED, PENDING_CONFIRMATION, WAITLIST)),
                Booking.end_time > now,
            )
            .order_by(Booking.start_time.asc())
            .all()
        )

    @staticmethod
    def get_community_waitlist(db: Session, community_id: str) -> list[Booking]:
        return (
            db.query(Booking)
            .filter(Booking.community_id == community_id, Booking.status == WAITLIST)
            .order_by(Booking.created_at.asc())
            .all()
        )

    @staticmethod
    def get_recent_promotions(db: Session, community_id: str, since: datetime) -> list[Booking]:
        return (
            db.query(Booking)
            .filter(
                Booking.community_id == community_id,
                Booking.promoted_at.isnot(None),
                Booking.promoted_at >= since,
            )
            .order_by(Booking.promoted_at.desc())
            .all()
        )

    @staticmethod
    def get_expirable(db: Session, now: datetime) -> list[Booking]:
        """Waitlist or pending bookings whose slot has ended"""
        return (
            db.query(Booking)
            .filter(
                Booking.status.in_((WAITLIST, PENDING_CONFIRMATION)),
                Booking.end_time <= now,
            )
            .order_by(Booking.end_time.asc())
            .all()
        )

    @staticmethod
    def get_reminder_candidates(
        db: Session, earliest: datetime, latest: datetime, stale_claim_before: datetime
    ) -> list[Booking]:
        """Confirmed, not yet reminded, not claimed by a live run, starting strictly inside (earliest, latest)"""
        return (
            db.query(Booking)
            .filter(
                Booking.status == CONFIRMED,
                Booking.reminder_sent.is_(False),
                or_(Booking.reminder_claimed_at.is_(None), Booking.reminder_claimed_at < stale_claim_before),
                Booking.start_time > earliest,
                Booking.start_time < latest,
            )
            .order_by(Booking.start_time.asc())
            .all()
        )

    @staticmethod
    def claim_reminder(db: Session, booking_id: str, now: datetime, stale_claim_before: datetime) -> bool:
        """Take the reminder lease; False when another run holds a live claim or already sent it"""
        result = db.execute(
            update(Booking)
            .where(
                Booking.id == booking_id,
                Booking.reminder_sent.is_(False),
                or_(Booking.reminder_claimed_at.is_(None), Booking.reminder_claimed_at < stale_claim_before),
            )
            .values(reminder_claimed_at=now, version=Booking.version + 1)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    @staticmethod
    def mark_reminder_sent(db: Session, booking_id: str, now: datetime) -> bool:
        """Flip reminder_sent false -> true after a delivered reminder"""
        result = db.execute(
            update(Booking)
            .where(Booking.id == booking_id, Booking.reminder_sent.is_(False))
            .values(reminder_sent=True, reminder_sent_at=now, version=Booking.version + 1)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    @staticmethod
    def release_reminder_claim(db: Session, booking_id: str, claimed_at: datetime) -> None:
        """Drop our own lease so the next run can retry straight away"""
        db.execute(
            update(Booking)
            .where(
                Booking.id == booking_id,
                Booking.reminder_sent.is_(False),
                Booking.reminder_claimed_at == claimed_at,
            )
            .values(reminder_claimed_at=None, version=Booking.version + 1)
            .execution_options(synchronize_session=False)
        )

    @staticmethod
    def get_no_show_candidates(db: Session, started_before: datetime) -> list[Booking]:
        return (
            db.query(Booking)
            .filter(
                Booking.status == CONFIRMED,
                Booking.check_in_time.is_(None),
                Booking.start_time <= started_before,
            )
            .order_by(Booking.start_time.asc())
            .all()
        )

    @staticmethod
    def get_completable(db: Session, now: datetime) -> list[Booking]:
        return (
            db.query(Booking)
            .filter(
                Booking.status == CONFIRMED,
                Booking.check_in_time.isnot(None),
                Booking.end_time <= now,
            )
            .all()
        )

    @staticmethod
    def get_overdue_confirmations(db: Session, now: datetime) -> list[Booking]:
        return (
            db.query(Booking)
            .filter(
                Booking.status == PENDING_CONFIRMATION,
                Booking.confirmation_deadline.isnot(None),
                Booking.confirmation_deadline < now,
            )
            .all()
        )

    @staticmethod
    def get_community_booking_ids(db: Session, community_id: str) -> list[str]:
        return [row[0] for row in db.query(Booking.id).filter(Booking.community_id == community_id).all()]

    @staticmethod
    def delete_bookings(db: Session, booking_ids: list[str]) -> int:
        return (
            db.query(Booking)
            .filter(Booking.id.in_(booking_ids))
            .delete(synchronize_session=False)
        )

    @staticmethod
    def get_user_booking_ids(db: Session, user_email: str) -> list[str]:
        return [row[0] for row in db.query(Booking.id).filter(Booking.user_email == user_email).all()]
