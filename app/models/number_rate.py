from sqlalchemy import Column, String, Boolean, DateTime, Float, ForeignKey, Text, Index
from sqlalchemy.sql import func
from sqlalchemy.orm import relationship
from app.database.connection import Base


class NumberRateDeck(Base):
    __tablename__ = "number_rate_decks"

    id = Column(String, primary_key=True)
    name = Column(String, nullable=False)
    description = Column(Text, nullable=True)
    currency = Column(String, nullable=False, default="USD")
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())


class NumberRate(Base):
    """Prefix-keyed price inside a rate deck. Read-only reference data."""
    __tablename__ = "number_rates"

    id = Column(String, primary_key=True)
    rate_deck_id = Column(
        String,
        ForeignKey("number_rate_decks.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    country = Column(String, nullable=False)
    type = Column(String, nullable=False)  # NumberType value
    prefix = Column(String, nullable=False)
    rate = Column(Float, nullable=False)  # Monthly rate
    setup_fee = Column(Float, nullable=False, default=0)
    effective_date = Column(DateTime(timezone=True), nullable=True)
    description = Column(String, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    # Relationships
    rate_deck = relationship("NumberRateDeck", backref="rates")

    __table_args__ = (
        Index('idx_number_rates_deck_country_type', 'rate_deck_id', 'country', 'type'),
    )


class RateDeckAssignment(Base):
    """Links a user to the rate deck that prices their numbers"""
    __tablename__ = "rate_deck_assignments"

    id = Column(String, primary_key=True)
    user_id = Column(
        String,
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    rate_deck_id = Column(
        String,
        ForeignKey("number_rate_decks.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    rate_deck_type = Column(String, nullable=False, default="number")
    is_active = Column(Boolean, default=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    # Relationships
    rate_deck = relationship("NumberRateDeck")
