from sqlalchemy import Column, DateTime, ForeignKey, Integer, String, Text
from sqlalchemy.orm import relationship

from app.core.clock import utcnow
from app.core.database import Base


class IntegrationSyncLog(Base):
    __tablename__ = "integration_sync_logs"

    id = Column(Integer, primary_key=True)
    integration_id = Column(
        Integer, ForeignKey("external_integrations.id", ondelete="CASCADE"), nullable=False, index=True
    )
    sync_type = Column(String(20), nullable=False, default="full")
    status = Column(String(20), nullable=False)
    records_fetched = Column(Integer, nullable=False, default=0)
    records_created = Column(Integer, nullable=False, default=0)
    records_updated = Column(Integer, nullable=False, default=0)
    records_failed = Column(Integer, nullable=False, default=0)
    error_message = Column(Text, nullable=True)
    duration_ms = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime, nullable=False, default=utcnow)

    integration = relationship("ExternalIntegration", back_populates="sync_logs")
