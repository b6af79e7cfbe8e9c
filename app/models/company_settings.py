from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Integer, String

from app.core.clock import utcnow
from app.core.database import Base


class CompanySettings(Base):
    __tablename__ = "company_settings"

    id = Column(Integer, primary_key=True)
    company_id = Column(Integer, ForeignKey("companies.id", ondelete="CASCADE"), nullable=False, unique=True)

    business_type = Column(String(30), nullable=False, default="pickup")
    date_format = Column(String(30), nullable=False, default="DD MMM YYYY")
    time_format = Column(String(5), nullable=False, default="12")
    distance_unit = Column(String(10), nullable=False, default="km")
    map_type = Column(String(30), nullable=False, default="google")
    real_time_tracking = Column(Boolean, nullable=False, default=True)
    show_delay_time = Column(Boolean, nullable=False, default=True)
    delay_minutes = Column(Integer, nullable=False, default=5)
    theme_navbar_color = Column(String(20), nullable=False, default="#4F46E5")
    theme_button_color = Column(String(20), nullable=False, default="#4F46E5")
    theme_menu_hover_color = Column(String(20), nullable=False, default="#EEF2FF")
    default_dashboard_view = Column(String(20), nullable=False, default="map")
    enable_address_update = Column(Boolean, nullable=False, default=False)
    enable_qr_code = Column(Boolean, nullable=False, default=False)
    disable_ratings_tracking = Column(Boolean, nullable=False, default=False)
    enable_eta_tracking = Column(Boolean, nullable=False, default=True)
    disable_call_sms_tracking = Column(Boolean, nullable=False, default=False)

    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)
