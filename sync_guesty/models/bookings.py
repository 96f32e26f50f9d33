# models/bookings.py

from enum import Enum

from sqlalchemy import CheckConstraint, Column, Date, DateTime, Integer, Numeric, String, Text
from sqlalchemy.sql import func

from sync_guesty.config import SCHEMA
from sync_guesty.models.base import Base


class PaymentStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    REFUNDED = "refunded"


class BookingStatus(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    CANCELLED = "cancelled"
    COMPLETED = "completed"


class SyncStatus(str, Enum):
    PENDING = "pending"
    SYNCED = "synced"
    FAILED = "failed"


class BookingSource(str, Enum):
    WEBSITE = "website"
    GUESTY = "guesty"
    MANUAL = "manual"


class Booking(Base):
    """
    ORM model for a guest booking.

    Created at booking-intent time with payment status pending. Payment webhooks
    move payment_status/status; the sync engine owns the guesty_* columns.
    Bookings are never deleted, cancellation is a status.
    """

    __tablename__ = "bookings"
    __table_args__ = (
        CheckConstraint("check_in_date < check_out_date", name="ck_bookings_stay_dates"),
        {"schema": SCHEMA},
    )

    id = Column(String(36), primary_key=True)
    booking_reference = Column(String(32), nullable=False, unique=True)
    property_key = Column(String(32), nullable=False, index=True)

    guest_first_name = Column(String, nullable=False)
    guest_last_name = Column(String, nullable=False)
    guest_email = Column(String, nullable=False)
    guest_phone = Column(String, nullable=True)
    guest_country = Column(String, nullable=True)

    check_in_date = Column(Date, nullable=False)
    check_out_date = Column(Date, nullable=False)
    adults = Column(Integer, nullable=False, server_default="1")
    children = Column(Integer, nullable=False, server_default="0")

    total = Column(Numeric(10, 2), nullable=False)
    currency = Column(String(3), nullable=False, server_default="EUR")
    special_requests = Column(Text, nullable=True)
    booking_source = Column(String(16), nullable=False, server_default=BookingSource.WEBSITE.value)

    payment_status = Column(String(16), nullable=False, server_default=PaymentStatus.PENDING.value)
    status = Column(String(16), nullable=False, server_default=BookingStatus.PENDING.value)
    stripe_payment_intent_id = Column(String, nullable=True, unique=True)
    stripe_charge_id = Column(String, nullable=True)

    guesty_reservation_id = Column(String, nullable=True, unique=True)
    guesty_sync_status = Column(
        String(16), nullable=False, server_default=SyncStatus.PENDING.value, index=True
    )
    guesty_sync_attempts = Column(Integer, nullable=False, server_default="0")
    guesty_sync_error = Column(Text, nullable=True)
    guesty_synced_at = Column(DateTime(timezone=True), nullable=True)

    confirmed_at = Column(DateTime(timezone=True), nullable=True)
    cancelled_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False
    )
