from enum import Enum
from sqlalchemy import Column, String, Boolean, DateTime, Float, ForeignKey, Text, JSON, Index
from sqlalchemy.sql import func
from sqlalchemy.orm import relationship
from app.database.connection import Base


class PhoneNumberStatus(str, Enum):
    AVAILABLE = "available"
    ASSIGNED = "assigned"
    RESERVED = "reserved"
    SUSPENDED = "suspended"
    CANCELLED = "cancelled"


class NumberType(str, Enum):
    GEOGRAPHIC = "Geographic/Local"
    MOBILE = "Mobile"
    NATIONAL = "National"
    TOLL_FREE = "Toll-free"
    SHARED_COST = "Shared Cost"
    NPV = "NPV"
    PREMIUM = "Premium"


class BillingCycle(str, Enum):
    MONTHLY = "monthly"
    YEARLY = "yearly"


class PhoneNumber(Base):
    __tablename__ = "phone_numbers"

    id = Column(String, primary_key=True)
    number = Column(String, unique=True, nullable=False, index=True)  # E.164, e.g. +14155551234
    country = Column(String, nullable=False, index=True)
    number_type = Column(String, nullable=False, index=True)  # NumberType value
    status = Column(String, nullable=False, default=PhoneNumberStatus.AVAILABLE.value, index=True)
    backorder_only = Column(Boolean, nullable=False, default=False)
    provider = Column(String, nullable=True)
    description = Column(Text, nullable=True)
    capabilities = Column(JSON, nullable=True)  # ['voice', 'sms', 'fax']
    notes = Column(Text, nullable=True)

    rate_deck_id = Column(
        String,
        ForeignKey("number_rate_decks.id", ondelete="SET NULL"),
        nullable=True,
        index=True
    )

    # Current assignment pointers (null while available)
    assigned_to = Column(
        String,
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
        index=True
    )
    assigned_by = Column(String, nullable=True)
    assigned_at = Column(DateTime(timezone=True), nullable=True)
    unassigned_at = Column(DateTime(timezone=True), nullable=True)
    unassigned_by = Column(String, nullable=True)
    unassigned_reason = Column(Text, nullable=True)

    # Pricing snapshot, refreshed from the rate deck at assignment time
    monthly_rate = Column(Float, nullable=False, default=0)
    setup_fee = Column(Float, nullable=False, default=0)
    currency = Column(String, nullable=False, default="USD")
    billing_cycle = Column(String, nullable=False, default=BillingCycle.MONTHLY.value)
    next_billing_date = Column(DateTime(timezone=True), nullable=True)
    last_billed_date = Column(DateTime(timezone=True), nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    # Relationships
    assigned_user = relationship("User", foreign_keys=[assigned_to])
    rate_deck = relationship("NumberRateDeck", foreign_keys=[rate_deck_id])

    __table_args__ = (
        Index('idx_phone_numbers_status_backorder', 'status', 'backorder_only'),
    )
