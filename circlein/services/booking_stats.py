"""
Booking history per resident.

No-shows count against a resident: NO_SHOW_SUSPENSION_THRESHOLD of them
suspends booking for SUSPENSION_DAYS. The same history yields a waitlist
priority score between 0 and 100 where lower is promoted first.
"""

import logging
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy.orm import Session

from ..config import BASE_PRIORITY_SCORE, NO_SHOW_SUSPENSION_THRESHOLD, SUSPENSION_DAYS
from ..models import UserBookingStats
from ..shared.timeutils import format_date, isoformat

logger = logging.getLogger(__name__)


def get_stats(db: Session, user_email: str) -> Optional[UserBookingStats]:
    return db.query(UserBookingStats).filter(UserBookingStats.user_email == user_email).first()


def get_or_create_stats(db: Session, user_email: str) -> UserBookingStats:
    """Stage a zeroed stats row on first use; the caller commits"""
    stats = get_stats(db, user_email)
    if stats is None:
        stats = UserBookingStats(
            user_email=user_email,
            total_bookings=0,
            completed_bookings=0,
            cancellation_count=0,
            no_show_count=0,
        )
        db.add(stats)
        db.flush()
    return stats


def calculate_priority_score(stats: Optional[UserBookingStats]) -> int:
    """
    Start from the base score, reward occasional users, and penalise heavy
    use, cancellations and no-shows. Clamped to 0-100.
    """
    if stats is None:
        total, no_shows, cancellations = 0, 0, 0
    else:
        total, no_shows, cancellations = stats.total_bookings, stats.no_show_count, stats.cancellation_count

    score = BASE_PRIORITY_SCORE
    if total > 20:
        score += 20
    elif total > 10:
        score += 10
    elif total < 3:
        score -= 10
    score += no_shows * 15
    score += cancellations * 5
    return max(0, min(100, score))


def active_suspension(stats: Optional[UserBookingStats], now: datetime) -> Optional[datetime]:
    if stats is None or stats.suspended_until is None:
        return None
    return stats.suspended_until if stats.suspended_until > now else None


def suspension_message(stats: UserBookingStats) -> str:
    return (
        f"Account suspended until {format_date(stats.suspended_until)} "
        f"due to {stats.no_show_count} no-shows"
    )


def record_booking(db: Session, user_email: str) -> None:
    stats = get_or_create_stats(db, user_email)
    stats.total_bookings = (stats.total_bookings or 0) + 1


def record_cancellation(db: Session, user_email: str) -> None:
    stats = get_or_create_stats(db, user_email)
    stats.cancellation_count = (stats.cancellation_count or 0) + 1


def record_completion(db: Session, user_email: str) -> None:
    stats = get_or_create_stats(db, user_email)
    stats.completed_bookings = (stats.completed_bookings or 0) + 1


def record_no_show(db: Session, user_email: str, now: datetime) -> UserBookingStats:
    """Count a no-show and suspend the resident once they reach the threshold"""
    stats = get_or_create_stats(db, user_email)
    stats.no_show_count = (stats.no_show_count or 0) + 1
    if stats.no_show_count >= NO_SHOW_SUSPENSION_THRESHOLD:
        stats.suspended_until = now + timedelta(days=SUSPENSION_DAYS)
        stats.suspension_reason = f"{stats.no_show_count} no-shows"
        logger.warning(f"🚫 {user_email} suspended until {format_date(stats.suspended_until)} ({stats.no_show_count} no-shows)")
    return stats


def stats_to_dict(stats: Optional[UserBookingStats], now: datetime) -> dict:
    suspended_until = active_suspension(stats, now)
    return {
        "totalBookings": stats.total_bookings if stats else 0,
        "completedBookings": stats.completed_bookings if stats else 0,
        "cancellationCount": stats.cancellation_count if stats else 0,
        "noShowCount": stats.no_show_count if stats else 0,
        "priorityScore": calculate_priority_score(stats),
        "isSuspended": suspended_until is not None,
        "suspendedUntil": isoformat(suspended_until),
    }
