from sqlalchemy import Column, String, DateTime, Text, JSON
from sqlalchemy.sql import func
from app.database.connection import Base


class EmailLog(Base):
    __tablename__ = "email_logs"

    id = Column(String, primary_key=True)
    user_id = Column(String, nullable=True, index=True)  # 'admin' for admin broadcasts
    user_email = Column(String, nullable=False)
    user_name = Column(String, nullable=True)
    notification_type = Column(String, nullable=False, index=True)  # 'number_assignment', 'number_unassignment', ...
    email_subject = Column(String, nullable=False)
    status = Column(String, nullable=False)  # 'sent' | 'failed'
    error_message = Column(Text, nullable=True)
    alert_data = Column(JSON, nullable=True)
    sent_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
