"""ActivityLog model"""
from sqlalchemy import Column, Integer, String, DateTime, Text, event
from datetime import datetime, timezone
from app.models.base import Base


class ActivityLog(Base):
    """Append-only audit trail of forward actions and reconciliations"""
    __tablename__ = "activity_logs"

    id = Column(Integer, primary_key=True, index=True)
    event_type = Column(String(100), nullable=False, index=True)
    description = Column(Text, nullable=False)
    timestamp = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), nullable=False, index=True)
    related_id = Column(String(255), nullable=True, index=True)
    severity = Column(String(20), default="info", nullable=False)  # 'info', 'warning', 'error'


@event.listens_for(ActivityLog, "before_update")
def _refuse_update(mapper, connection, target):
    raise ValueError("ActivityLog entries are append-only")


@event.listens_for(ActivityLog, "before_delete")
def _refuse_delete(mapper, connection, target):
    raise ValueError("ActivityLog entries are append-only")
