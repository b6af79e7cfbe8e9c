import sqlalchemy as sa
from sqlalchemy import Column, DateTime, ForeignKey, Integer, String
from sqlalchemy.dialects.postgresql import JSONB

from app.core.clock import utcnow
from app.core.database import Base


class AgentActivityLog(Base):
    __tablename__ = "agent_activity_logs"

    id = Column(Integer, primary_key=True, index=True)
    rider_id = Column(Integer, ForeignKey("riders.id", ondelete="CASCADE"), nullable=False, index=True)
    company_id = Column(Integer, nullable=False, index=True)
    session_id = Column(Integer, nullable=True)
    activity_type = Column(String(50), nullable=False)  # login / logout / order_* / status_change
    data = Column(JSONB().with_variant(sa.JSON(), "sqlite"), nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow, index=True)
