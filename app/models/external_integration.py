from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Integer, String, Text
from sqlalchemy.orm import relationship

from app.core.clock import utcnow
from app.core.database import Base

INTEGRATION_TYPES = ("woocommerce", "shopify", "wordpress", "custom")


class ExternalIntegration(Base):
    __tablename__ = "external_integrations"

    id = Column(Integer, primary_key=True)
    company_id = Column(Integer, ForeignKey("companies.id", ondelete="CASCADE"), nullable=False, index=True)
    integration_type = Column(String(30), nullable=False)
    name = Column(String(200), nullable=False)
    api_url = Column(String(500), nullable=False)
    api_key = Column(String(255), nullable=True)
    api_secret = Column(String(255), nullable=True)
    webhook_secret = Column(String(80), nullable=True)

    sync_riders = Column(Boolean, nullable=False, default=True)
    sync_orders = Column(Boolean, nullable=False, default=True)
    sync_customers = Column(Boolean, nullable=False, default=True)
    sync_interval_minutes = Column(Integer, nullable=False, default=5)
    riders_endpoint = Column(String(255), nullable=True)
    orders_endpoint = Column(String(255), nullable=True)
    customers_endpoint = Column(String(255), nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)

    last_sync_at = Column(DateTime, nullable=True)
    last_sync_status = Column(String(20), nullable=True)  # success / partial
    last_sync_error = Column(Text, nullable=True)
    total_riders_synced = Column(Integer, nullable=False, default=0)
    total_orders_synced = Column(Integer, nullable=False, default=0)
    total_customers_synced = Column(Integer, nullable=False, default=0)

    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    sync_logs = relationship("IntegrationSyncLog", back_populates="integration", cascade="all, delete-orphan")
