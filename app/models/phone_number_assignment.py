from sqlalchemy import Column, String, DateTime, Float, ForeignKey, Text, Index, text
from sqlalchemy.sql import func
from sqlalchemy.orm import relationship
from app.database.connection import Base


class PhoneNumberAssignment(Base):
    """One assignment episode of a number to a user. Ended, never deleted."""
    __tablename__ = "phone_number_assignments"

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
    assigned_by = Column(String, nullable=True)
    assigned_at = Column(DateTime(timezone=True), nullable=False)
    status = Column(String, nullable=False, default="active", index=True)  # 'active' | 'ended'

    billing_start_date = Column(DateTime(timezone=True), nullable=False)
    billing_end_date = Column(DateTime(timezone=True), nullable=True)  # null while active
    monthly_rate = Column(Float, nullable=False, default=0)
    setup_fee = Column(Float, nullable=False, default=0)
    currency = Column(String, nullable=False, default="USD")
    billing_cycle = Column(String, nullable=False, default="monthly")

    unassigned_at = Column(DateTime(timezone=True), nullable=True)
    unassigned_by = Column(String, nullable=True)
    unassigned_reason = Column(Text, nullable=True)
    notes = Column(Text, nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    # Relationships
    phone_number = relationship("PhoneNumber", backref="assignments")
    user = relationship("User", foreign_keys=[user_id])

    __table_args__ = (
        Index('idx_assignments_number_status', 'phone_number_id', 'status'),
        Index('idx_assignments_number_user_status', 'phone_number_id', 'user_id', 'status'),
        # At most one active episode per number
        Index(
            'uq_assignments_one_active_per_number',
            'phone_number_id',
            unique=True,
            postgresql_where=text("status = 'active'"),
            sqlite_where=text("status = 'active'"),
        ),
    )
