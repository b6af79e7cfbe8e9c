from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Integer, String, UniqueConstraint

from app.core.clock import utcnow
from app.core.database import Base


class NotificationSetting(Base):
    __tablename__ = "notification_settings"
    __table_args__ = (
        UniqueConstraint("company_id", "event_type", name="uq_notification_settings_company_event"),
    )

    id = Column(Integer, primary_key=True)
    company_id = Column(Integer, ForeignKey("companies.id", ondelete="CASCADE"), nullable=False, index=True)
    event_type = Column(String(50), nullable=False)
    sms_enabled = Column(Boolean, nullable=False, default=False)
    email_enabled = Column(Boolean, nullable=False, default=False)
    webhook_enabled = Column(Boolean, nullable=False, default=False)
    webhook_url = Column(String(500), nullable=True)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)
