from sqlalchemy import Column, DateTime, Float, ForeignKey, Integer, String, UniqueConstraint
from sqlalchemy.orm import relationship

from app.core.clock import utcnow
from app.core.database import Base

RIDER_STATUSES = ("active", "busy", "break", "offline")


class Rider(Base):
    __tablename__ = "riders"
    __table_args__ = (
        UniqueConstraint("company_id", "phone", name="uq_riders_company_phone"),
    )

    id = Column(Integer, primary_key=True)
    company_id = Column(Integer, ForeignKey("companies.id", ondelete="CASCADE"), nullable=False, index=True)
    external_id = Column(String(120), nullable=True, index=True)

    name = Column(String(120), nullable=False)
    phone = Column(String(30), nullable=True, index=True)
    email = Column(String(255), nullable=True)
    vehicle_type = Column(String(30), nullable=True, default="motorcycle")
    status = Column(String(20), nullable=False, default="offline")  # active / busy / break / offline

    latitude = Column(Float, nullable=True)
    longitude = Column(Float, nullable=True)
    battery_level = Column(Integer, nullable=True)
    last_seen = Column(DateTime, nullable=True)
    push_token = Column(String(255), nullable=True)

    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    company = relationship("Company", back_populates="riders")
    orders = relationship("Order", back_populates="rider")
