"""Booking status machine"""

from ...models import (
    CANCELLED,
    COMPLETED,
    CONFIRMED,
    DECLINED,
    EXPIRED,
    NO_SHOW,
    PENDING_CONFIRMATION,
    WAITLIST,
)

VALID_TRANSITIONS = {
    CONFIRMED: [CANCELLED, COMPLETED, NO_SHOW],
    WAITLIST: [PENDING_CONFIRMATION, CONFIRMED, CANCELLED, EXPIRED],
    PENDING_CONFIRMATION: [CONFIRMED, DECLINED, CANCELLED, EXPIRED],
    COMPLETED: [],  # Terminal state
    CANCELLED: [],  # Terminal state
    EXPIRED: [],  # Terminal state
    DECLINED: [],  # Terminal state
    NO_SHOW: [],  # Terminal state
}

TERMINAL_STATUSES = frozenset(status for status, targets in VALID_TRANSITIONS.items() if not targets)


class InvalidStatusTransition(ValueError):
    def __init__(self, current_status: str, new_status: str):
        super().__init__(f"Cannot change booking status from {current_status} to {new_status}")
        self.current_status = current_status
        self.new_status = new_status


def validate_status_transition(current_status: str, new_status: str) -> bool:
    """
    Validate if a booking status transition is allowed

    Booking statuses:
        confirmed -> cancelled / completed / no_show
        waitlist -> pending_confirmation / confirmed / cancelled / expired
        pending_confirmation -> confirmed / declined / cancelled / expired

    Completed, cancelled, expired, declined and no_show are terminal.
    Unlike the other pairs, a status never "transitions" to itself; callers
    that want idempotence check the current status first.
    """
    return new_status in VALID_TRANSITIONS.get(current_status, [])


def transition(booking, new_status: str) -> None:
    """Move a booking to a new status or raise InvalidStatusTransition"""
    if not validate_status_transition(booking.status, new_status):
        raise InvalidStatusTransition(booking.status, new_status)
    booking.status = new_status
