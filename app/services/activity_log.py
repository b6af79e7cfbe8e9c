from __future__ import annotations

from typing import Any, Mapping, Optional

from sqlalchemy.orm import Session

from app.models.agent_activity_log import AgentActivityLog


def log_agent_activity(
    db: Session,
    *,
    rider_id: int,
    company_id: int,
    activity_type: str,
    session_id: Optional[int] = None,
    data: Optional[Mapping[str, Any]] = None,
) -> AgentActivityLog:
    entry = AgentActivityLog(
        rider_id=rider_id,
        company_id=company_id,
        session_id=session_id,
        activity_type=activity_type,
        data={key: value for key, value in (data or {}).items() if value is not None} or None,
    )
    db.add(entry)
    return entry
