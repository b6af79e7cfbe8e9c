from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Integer, String

from app.core.clock import utcnow
from app.core.database import Base


class MapSettings(Base):
    __tablename__ = "map_settings"

    id = Column(Integer, primary_key=True)
    company_id = Column(Integer, ForeignKey("companies.id", ondelete="CASCADE"), nullable=False, unique=True)
    map_type = Column(String(30), nullable=False, default="google")
    real_time_tracking = Column(Boolean, nullable=False, default=False)
    web_key = Column(String(255), nullable=False, default="")
    android_key = Column(String(255), nullable=False, default="")
    ios_key = Column(String(255), nullable=False, default="")
    server_key = Column(String(255), nullable=False, default="")
    form_key = Column(String(255), nullable=False, default="")
    mappr_dashboard_url = Column(String(255), nullable=False, default="https://mappr.io/dashboard")
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)
