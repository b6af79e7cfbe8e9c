from sqlalchemy import Column, DateTime, ForeignKey, Integer, String, UniqueConstraint

from app.core.clock import utcnow
from app.core.database import Base


class RiderDevice(Base):
    __tablename__ = "rider_devices"
    __table_args__ = (
        UniqueConstraint("rider_id", "device_id", name="uq_rider_devices_rider_device"),
    )

    id = Column(Integer, primary_key=True)
    rider_id = Column(Integer, ForeignKey("riders.id", ondelete="CASCADE"), nullable=False, index=True)
    company_id = Column(Integer, ForeignKey("companies.id", ondelete="CASCADE"), nullable=False, index=True)
    device_id = Column(String(255), nullable=False)
    device_type = Column(String(30), nullable=True)
    device_model = Column(String(120), nullable=True)
    app_version = Column(String(30), nullable=True)
    push_token = Column(String(255), nullable=True)
    last_login = Column(DateTime, nullable=False, default=utcnow)
    created_at = Column(DateTime, nullable=False, default=utcnow)
