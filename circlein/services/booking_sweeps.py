"""
Periodic booking sweeps, driven by an external cron over HTTP.

Each sweep is stateless and walks its candidates one at a time, committing
one document per step. A failure on one document is rolled back, counted,
and the sweep moves on to the next.
"""

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy.orm import Session

from ..config import (
    EXPIRY_SWEEP_DELAY_MS,
    NO_SHOW_GRACE_MINUTES,
    REMINDER_CLAIM_LEASE_MINUTES,
    REMINDER_LEAD_MINUTES,
    REMINDER_WINDOW_MINUTES,
)
from ..domain.bookings.lifecycle import transition
from ..domain.bookings.repository import BookingRepository
from ..domain.bookings.service import DEADLINE_PASSED_REASON, BookingService, booking_email_data
from ..models import COMPLETED, EXPIRED, NO_SHOW, PENDING_CONFIRMATION, WAITLIST
from ..shared.timeutils import isoformat, utcnow
from .booking_stats import record_completion, record_no_show
from .notification_service import send_email_notification

logger = logging.getLogger(__name__)

WAITLIST_EXPIRED_REASON = "Time slot passed while in waitlist"

repo = BookingRepository()


@dataclass(frozen=True)
class ReminderWindow:
    """Bookings starting strictly between lead - tolerance and lead + tolerance minutes from now"""

    lead_minutes: int = REMINDER_LEAD_MINUTES
    tolerance_minutes: int = REMINDER_WINDOW_MINUTES

    def bounds(self, now: datetime) -> tuple[datetime, datetime]:
        lead = timedelta(minutes=self.lead_minutes)
        tolerance = timedelta(minutes=self.tolerance_minutes)
        return now + lead - tolerance, now + lead + tolerance

    def contains(self, start_time: datetime, now: datetime) -> bool:
        earliest, latest = self.bounds(now)
        return earliest < start_time < latest

    def describe(self) -> str:
        return (
            f"{self.lead_minutes - self.tolerance_minutes}-"
            f"{self.lead_minutes + self.tolerance_minutes} minutes"
        )


async def expire_waitlist(db: Session, now: Optional[datetime] = None, delay_ms: int = EXPIRY_SWEEP_DELAY_MS) -> dict:
    """Expire waitlist and pending-confirmation bookings whose slot has ended"""
    now = now or utcnow()
    logger.info(f"🕐 Waitlist expiry check started at {isoformat(now)}")

    candidate_ids = [b.id for b in repo.get_expirable(db, now)]
    if not candidate_ids:
        logger.info("✅ No expired waitlist entries")
        return {
            "success": True,
            "message": "No expired waitlist entries",
            "checked": 0,
            "expired": 0,
            "failed": 0,
            "timestamp": isoformat(now),
        }

    logger.info(f"📋 Found {len(candidate_ids)} waitlist/pending booking(s) past their slot")
    expired, failed, errors = 0, 0, []

    for index, booking_id in enumerate(candidate_ids):
        try:
            booking = repo.get_booking(db, booking_id)
            # Cancelled or confirmed by someone else since the query ran
            if booking is None or booking.status not in (WAITLIST, PENDING_CONFIRMATION):
                continue
            transition(booking, EXPIRED)
            booking.expired_at = now
            booking.expired_reason = WAITLIST_EXPIRED_REASON
            booking.waitlist_position = None
            db.commit()
            expired += 1
            logger.info(f"   ⏰ Expired booking {booking_id}")
        except Exception as e:
            db.rollback()
            failed += 1
            errors.append(f"{booking_id}: {str(e)}")
            logger.error(f"   ❌ Error expiring booking {booking_id}: {e}")

        if delay_ms and index < len(candidate_ids) - 1:
            await asyncio.sleep(delay_ms / 1000)

    logger.info(f"✅ Waitlist expiry complete: {expired} expired, {failed} failed")
    result = {
        "success": True,
        "message": "Waitlist expiry check completed",
        "checked": len(candidate_ids),
        "expired": expired,
        "failed": failed,
        "timestamp": isoformat(now),
    }
    if errors:
        result["errors"] = errors
    return result


async def send_booking_reminders(
    db: Session,
    mailer,
    window: Optional[ReminderWindow] = None,
    now: Optional[datetime] = None,
    lease_minutes: int = REMINDER_CLAIM_LEASE_MINUTES,
) -> dict:
    """
    Email a reminder for confirmed bookings starting inside the window.

    Each booking is claimed with a conditional update on reminder_claimed_at
    before the email goes out, so overlapping runs cannot both send.
    reminder_sent only flips to true once delivery succeeded. A failed send
    drops the claim; a run that died mid-send loses it after lease_minutes.
    """
    window = window or ReminderWindow()
    now = now or utcnow()
    earliest, latest = window.bounds(now)
    stale_claim_before = now - timedelta(minutes=lease_minutes)
    logger.info(f"🔔 Checking for bookings starting in {window.describe()}")

    candidates = repo.get_reminder_candidates(db, earliest, latest, stale_claim_before)
    work = [(b.id, b.user_email, booking_email_data(b)) for b in candidates]
    logger.info(f"📋 Found {len(work)} booking(s) needing reminders")

    sent, failed, errors = 0, 0, []
    for booking_id, user_email, email_data in work:
        try:
            if not repo.claim_reminder(db, booking_id, now, stale_claim_before):
                db.rollback()
                logger.info(f"   ⏭️ Reminder for {booking_id} already claimed")
                continue
            db.commit()
        except Exception as e:
            db.rollback()
            failed += 1
            errors.append(f"{booking_id}: {str(e)}")
            logger.error(f"   ❌ Could not claim reminder for {booking_id}: {e}")
            continue

        result = await send_email_notification(mailer, user_email, "booking_reminder", email_data)
        try:
            if result.get("success"):
                repo.mark_reminder_sent(db, booking_id, now)
            else:
                repo.release_reminder_claim(db, booking_id, now)
            db.commit()
        except Exception as e:
            db.rollback()
            failed += 1
            errors.append(f"{booking_id}: {str(e)}")
            logger.error(f"   ❌ Could not record reminder outcome for {booking_id}: {e}")
            continue

        if result.get("success"):
            sent += 1
        else:
            failed += 1
            errors.append(f"{booking_id}: {result.get('error')}")

    logger.info(f"✅ Reminders complete: {sent} sent, {failed} failed")
    result = {
        "success": True,
        "checked": len(work),
        "remindersSent": sent,
        "failed": failed,
        "window": window.describe(),
        "timestamp": isoformat(now),
    }
    if errors:
        result["errors"] = errors
    return result


async def run_auto_cancel(db: Session, mailer, now: Optional[datetime] = None) -> dict:
    """
    No-show handling and confirmation deadlines:
    - confirmed, not checked in, NO_SHOW_GRACE_MINUTES past start -> no_show, count it
      against the resident (possibly suspending them), promote the slot
    - pending_confirmation past its deadline -> expired, promote the slot
    - checked in and past the end -> completed
    """
    now = now or utcnow()
    service = BookingService(db, mailer)
    summary = {"success": True, "cancelled": 0, "completed": 0, "expired": 0, "promoted": 0}
    errors = []

    cutoff = now - timedelta(minutes=NO_SHOW_GRACE_MINUTES)
    for booking_id in [b.id for b in repo.get_no_show_candidates(db, cutoff)]:
        try:
            booking = repo.get_booking(db, booking_id)
            transition(booking, NO_SHOW)
            booking.auto_cancelled_at = now
            stats = record_no_show(db, booking.user_email, now)
            promoted = service.promote_next(booking.amenity_id, booking.start_time, "no_show", now=now)
            db.commit()
            summary["cancelled"] += 1
            summary["promoted"] += len(promoted)
            logger.info(f"   🚫 No-show: booking {booking_id} ({booking.user_email}), no-shows: {stats.no_show_count}")
        except Exception as e:
            db.rollback()
            errors.append(f"{booking_id}: {str(e)}")
            logger.error(f"   ❌ Error auto-cancelling booking {booking_id}: {e}")
            continue
        await service.notify_promoted(promoted)

    for booking_id in [b.id for b in repo.get_overdue_confirmations(db, now)]:
        try:
            booking = repo.get_booking(db, booking_id)
            transition(booking, EXPIRED)
            booking.expired_at = now
            booking.expired_reason = DEADLINE_PASSED_REASON
            promoted = service.promote_next(booking.amenity_id, booking.start_time, "expiry", now=now)
            db.commit()
            summary["expired"] += 1
            summary["promoted"] += len(promoted)
            logger.info(f"   ⏰ Confirmation deadline passed: booking {booking_id}")
        except Exception as e:
            db.rollback()
            errors.append(f"{booking_id}: {str(e)}")
            logger.error(f"   ❌ Error expiring pending booking {booking_id}: {e}")
            continue
        await service.notify_promoted(promoted)

    for booking_id in [b.id for b in repo.get_completable(db, now)]:
        try:
            booking = repo.get_booking(db, booking_id)
            transition(booking, COMPLETED)
            record_completion(db, booking.user_email)
            db.commit()
            summary["completed"] += 1
        except Exception as e:
            db.rollback()
            errors.append(f"{booking_id}: {str(e)}")
            logger.error(f"   ❌ Error completing booking {booking_id}: {e}")

    logger.info(
        f"✅ Auto-cancel complete: {summary['cancelled']} no-shows, {summary['expired']} expired, "
        f"{summary['completed']} completed, {summary['promoted']} promoted"
    )
    summary["timestamp"] = isoformat(now)
    if errors:
        summary["errors"] = errors
    return summary
