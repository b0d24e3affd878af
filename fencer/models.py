from sqlalchemy import Column, Integer, String, Enum, DateTime, Text
from sqlalchemy.orm import declarative_base
from datetime import datetime
import enum

Base = declarative_base()


class EventType(str, enum.Enum):
    """Fencing journal event types"""
    POD_FENCED = "pod_fenced"
    POD_SKIPPED = "pod_skipped"
    FENCE_FAILED = "fence_failed"
    FENCE_TIMEOUT = "fence_timeout"
    NODE_RECOVERED = "node_recovered"
    NODE_NOT_OFFLINE = "node_not_offline"


class FencingEvent(Base):
    """Local record of fencing decisions and outcomes, for the status API"""
    __tablename__ = "fencing_events"

    id = Column(Integer, primary_key=True)
    event_type = Column(Enum(EventType), nullable=False)
    node_name = Column(String, nullable=False, index=True)

    # Set for pod-scoped events only
    pod_namespace = Column(String)
    pod_name = Column(String)

    message = Column(Text, nullable=False)
    timestamp = Column(DateTime, default=datetime.utcnow, index=True)
