from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Integer, String
from sqlalchemy.orm import relationship

from app.core.clock import utcnow
from app.core.database import Base


class AgentSession(Base):
    __tablename__ = "agent_sessions"

    id = Column(Integer, primary_key=True)
    session_token = Column(String(64), nullable=False, unique=True, index=True)
    rider_id = Column(Integer, ForeignKey("riders.id", ondelete="CASCADE"), nullable=False, index=True)
    company_id = Column(Integer, ForeignKey("companies.id", ondelete="CASCADE"), nullable=False, index=True)

    device_id = Column(String(255), nullable=False, index=True)
    device_type = Column(String(30), nullable=True)
    device_model = Column(String(120), nullable=True)
    app_version = Column(String(30), nullable=True)
    push_token = Column(String(255), nullable=True)

    is_active = Column(Boolean, nullable=False, default=True, index=True)
    expires_at = Column(DateTime, nullable=False)
    last_active = Column(DateTime, nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)

    rider = relationship("Rider")
