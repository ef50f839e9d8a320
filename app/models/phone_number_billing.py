from sqlalchemy import Column, String, DateTime, Float, ForeignKey, Text, Index
from sqlalchemy.sql import func
from sqlalchemy.orm import relationship
from app.database.connection import Base


class PhoneNumberBilling(Base):
    """Ledger entry charged later by the external billing processor"""
    __tablename__ = "phone_number_billings"

    id = Column(String, primary_key=True)
    phone_number_id = Column(
        String,
        ForeignKey("phone_numbers.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    user_id = Column(
        String,
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    # Nullable: entries written before assignments existed carry no episode id
    assignment_id = Column(
        String,
        ForeignKey("phone_number_assignments.id", ondelete="SET NULL"),
        nullable=True,
        index=True
    )
    billing_period_start = Column(DateTime(timezone=True), nullable=False)
    billing_period_end = Column(DateTime(timezone=True), nullable=False)
    amount = Column(Float, nullable=False)  # Negative for refunds
    currency = Column(String, nullable=False, default="USD")
    status = Column(String, nullable=False, default="pending", index=True)  # 'pending', 'cancelled', 'processed', 'failed'
    billing_date = Column(DateTime(timezone=True), nullable=False)
    transaction_type = Column(String, nullable=False)  # 'setup_fee' | 'monthly_fee' | 'refund'
    description = Column(String, nullable=True)
    notes = Column(Text, nullable=True)
    failure_reason = Column(Text, nullable=True)
    processed_by = Column(String, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    # Relationships
    phone_number = relationship("PhoneNumber", backref="billings")
    assignment = relationship("PhoneNumberAssignment", backref="billings")

    __table_args__ = (
        Index('idx_billings_assignment_status', 'assignment_id', 'status'),
        Index('idx_billings_number_user_status', 'phone_number_id', 'user_id', 'status'),
    )
