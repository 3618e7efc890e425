import uuid

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
)
from sqlalchemy.orm import relationship

from .config import BASE_PRIORITY_SCORE
from .database import Base
from .shared.timeutils import utcnow


def generate_id():
    """Generate a document-style ID"""
    return str(uuid.uuid4())


# Booking statuses
CONFIRMED = "confirmed"
WAITLIST = "waitlist"
PENDING_CONFIRMATION = "pending_confirmation"
COMPLETED = "completed"
CANCELLED = "cancelled"
EXPIRED = "expired"
DECLINED = "declined"
NO_SHOW = "no_show"

# Statuses that hold a unit of amenity capacity
CAPACITY_HOLDING_STATUSES = (CONFIRMED, PENDING_CONFIRMATION)

# User roles
RESIDENT = "resident"
ADMIN = "admin"
SUPER_ADMIN = "super_admin"
ADMIN_ROLES = (ADMIN, SUPER_ADMIN)


class Community(Base):
    __tablename__ = "communities"

    id = Column(String(64), primary_key=True, default=generate_id)
    name = Column(String(255), nullable=False)
    address = Column(String(500), nullable=True)
    contact_email = Column(String(255), nullable=True)
    description = Column(Text, nullable=True)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    amenities = relationship("Amenity", back_populates="community")


class User(Base):
    __tablename__ = "users"

    # Email doubles as the document ID
    email = Column(String(255), primary_key=True)
    name = Column(String(255), nullable=True)
    role = Column(String(20), default=RESIDENT, nullable=False)  # resident, admin, super_admin
    community_id = Column(String(64), ForeignKey("communities.id"), nullable=True, index=True)
    profile_completed = Column(Boolean, default=False, nullable=False)
    flat_number = Column(String(20), nullable=True)
    status = Column(String(20), default="active", nullable=False)  # active, deleted
    # Soft delete - rows are never physically removed
    deleted = Column(Boolean, default=False, nullable=False)
    deleted_at = Column(DateTime, nullable=True)
    deleted_by = Column(String(255), nullable=True)
    deletion_reason = Column(String(500), nullable=True)
    restored_at = Column(DateTime, nullable=True)
    restored_by = Column(String(255), nullable=True)
    access_code_used = Column(String(32), nullable=True)
    last_login = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    @property
    def is_admin(self) -> bool:
        return self.role in ADMIN_ROLES


class AccessCode(Base):
    __tablename__ = "access_codes"

    # The code is the document ID, so the two can never disagree
    code = Column(String(32), primary_key=True)
    community_id = Column(String(64), ForeignKey("communities.id"), nullable=False, index=True)
    is_used = Column(Boolean, default=False, nullable=False)
    used_by = Column(String(255), nullable=True)
    used_at = Column(DateTime, nullable=True)
    invalidated = Column(Boolean, default=False, nullable=False)
    invalidated_at = Column(DateTime, nullable=True)
    type = Column(String(20), default="resident", nullable=False)
    description = Column(String(255), nullable=True)
    created_by = Column(String(255), nullable=True)
    created_at = Column(DateTime, default=utcnow)
    expires_at = Column(DateTime, nullable=True)  # null = never expires
    version = Column(Integer, nullable=False, default=1)

    __mapper_args__ = {"version_id_col": version}


class Amenity(Base):
    __tablename__ = "amenities"

    id = Column(String(64), primary_key=True, default=generate_id)
    community_id = Column(String(64), ForeignKey("communities.id"), nullable=False, index=True)
    name = Column(String(255), nullable=False)
    category = Column(String(50), default="general", nullable=False)  # pool, gym, hall, ...
    description = Column(Text, nullable=True)
    max_people = Column(Integer, default=1, nullable=False)  # concurrent bookings per slot
    operating_hours = Column(JSON, nullable=True)  # {"start": "06:00", "end": "22:00"}
    time_slots = Column(JSON, nullable=True)  # ["06:00-08:00", "08:00-10:00", ...]
    manager_name = Column(String(255), nullable=True)
    manager_email = Column(String(255), nullable=True)
    manager_phone = Column(String(50), nullable=True)
    location = Column(String(255), nullable=True)
    is_outdoor = Column(Boolean, default=False, nullable=False)
    image_url = Column(String(500), nullable=True)
    is_blocked = Column(Boolean, default=False, nullable=False)
    block_reason = Column(String(500), nullable=True)
    blocked_from = Column(DateTime, nullable=True)
    blocked_until = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    community = relationship("Community", back_populates="amenities")

    def is_blocked_during(self, start, end) -> bool:
        """Whether a block covers any part of [start, end)"""
        if not self.is_blocked:
            return False
        if self.blocked_from is None and self.blocked_until is None:
            return True
        block_start = self.blocked_from or start
        block_end = self.blocked_until or end
        return block_start < end and start < block_end


class Booking(Base):
    __tablename__ = "bookings"

    id = Column(String(64), primary_key=True, default=generate_id)
    user_id = Column(String(255), nullable=False, index=True)
    user_email = Column(String(255), nullable=False, index=True)
    user_name = Column(String(255), nullable=True)
    user_flat_number = Column(String(20), nullable=True)
    community_id = Column(String(64), nullable=False, index=True)
    # amenity_name is denormalized for emails and listings
    amenity_id = Column(String(64), nullable=False)
    amenity_name = Column(String(255), nullable=True)
    start_time = Column(DateTime, nullable=False)
    end_time = Column(DateTime, nullable=False)
    selected_slot = Column(String(50), nullable=True)  # e.g. "10:00-12:00"
    attendees = Column(JSON, nullable=True)
    status = Column(String(32), nullable=False, index=True)
    # Only meaningful while status == waitlist
    waitlist_position = Column(Integer, nullable=True)
    # Snapshot of the owner's priority score at booking time; lower is promoted first
    priority_score = Column(Integer, default=BASE_PRIORITY_SCORE, nullable=False)
    reminder_sent = Column(Boolean, default=False, nullable=False)
    reminder_sent_at = Column(DateTime, nullable=True)
    # Set while a sweep is sending the reminder; reminder_sent only flips after delivery
    reminder_claimed_at = Column(DateTime, nullable=True)
    qr_id = Column(String(32), nullable=True, unique=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)
    confirmed_at = Column(DateTime, nullable=True)
    promoted_at = Column(DateTime, nullable=True)
    promotion_reason = Column(String(32), nullable=True)  # cancellation, expiry, manual, no_show
    confirmation_deadline = Column(DateTime, nullable=True)
    expired_at = Column(DateTime, nullable=True)
    expired_reason = Column(String(255), nullable=True)
    cancelled_at = Column(DateTime, nullable=True)
    cancelled_by = Column(String(255), nullable=True)
    admin_cancellation = Column(Boolean, default=False, nullable=False)
    declined_at = Column(DateTime, nullable=True)
    check_in_time = Column(DateTime, nullable=True)
    auto_cancelled_at = Column(DateTime, nullable=True)
    version = Column(Integer, nullable=False, default=1)

    __mapper_args__ = {"version_id_col": version}
    __table_args__ = (
        Index("ix_bookings_slot", "amenity_id", "start_time", "status"),
        Index("ix_bookings_sweep", "status", "end_time"),
    )


class CommunityNotification(Base):
    __tablename__ = "community_notifications"

    id = Column(String(64), primary_key=True, default=generate_id)
    community_id = Column(String(64), nullable=False, index=True)
    # Null means the notification is for the whole community
    user_email = Column(String(255), nullable=True, index=True)
    type = Column(String(50), nullable=False)
    title = Column(String(255), nullable=False)
    message = Column(Text, nullable=False)
    data = Column(JSON, nullable=True)
    read = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime, default=utcnow)
    expires_at = Column(DateTime, nullable=True)


class Invite(Base):
    __tablename__ = "invites"

    id = Column(String(64), primary_key=True, default=generate_id)
    email = Column(String(255), nullable=False, index=True)
    community_id = Column(String(64), ForeignKey("communities.id"), nullable=False)
    role = Column(String(20), default=ADMIN, nullable=False)
    status = Column(String(20), default="pending", nullable=False)  # pending, accepted
    created_at = Column(DateTime, default=utcnow)
    accepted_at = Column(DateTime, nullable=True)


class UserBookingStats(Base):
    """Per-resident booking history used for suspensions and waitlist priority"""

    __tablename__ = "user_booking_stats"

    user_email = Column(String(255), primary_key=True)
    total_bookings = Column(Integer, default=0, nullable=False)
    completed_bookings = Column(Integer, default=0, nullable=False)
    cancellation_count = Column(Integer, default=0, nullable=False)
    no_show_count = Column(Integer, default=0, nullable=False)
    suspended_until = Column(DateTime, nullable=True)
    suspension_reason = Column(String(255), nullable=True)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)
