import sqlalchemy as sa
from sqlalchemy import Boolean, Column, DateTime, Integer, String
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import relationship

from app.core.clock import utcnow
from app.core.database import Base


class Company(Base):
    __tablename__ = "companies"

    id = Column(Integer, primary_key=True)
    name = Column(String(200), nullable=False)
    email = Column(String(255), nullable=False, unique=True, index=True)
    password_hash = Column(String(255), nullable=False)

    # Bearer credential for the company API ("tk_<hex>")
    api_key = Column(String(80), nullable=False, unique=True, index=True)
    webhook_secret = Column(String(80), nullable=True)
    # Short join code typed by riders on the agent login screen
    company_code = Column(String(32), nullable=False, unique=True, index=True)

    plan = Column(String(30), nullable=False, default="free")
    is_active = Column(Boolean, nullable=False, default=True)
    # callback_url / webhook_callback_url plus free-form feature flags
    settings = Column(JSONB().with_variant(sa.JSON(), "sqlite"), nullable=False, default=dict)

    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    riders = relationship("Rider", back_populates="company", cascade="all, delete-orphan")
