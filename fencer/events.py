"""
Fencing event journal.

Records what the fencer did (or chose not to do) to each node and pod so the
status API can show recent history. The journal is local to this process and
is never consulted when making fencing decisions.
"""

import logging
from typing import Any, Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError

from fencer.models import EventType, FencingEvent

logger = logging.getLogger(__name__)


class EventJournal:
    """Append-only fencing journal backed by SQLAlchemy."""

    def __init__(self, session_factory):
        """
        Args:
            session_factory: SQLAlchemy session factory
        """
        self.session_factory = session_factory

    def record(
        self,
        event_type: EventType,
        node_name: str,
        message: str,
        pod_namespace: Optional[str] = None,
        pod_name: Optional[str] = None,
    ) -> None:
        """Store an event. Write failures are logged and swallowed."""
        db = self.session_factory()
        try:
            db.add(FencingEvent(
                event_type=event_type,
                node_name=node_name,
                pod_namespace=pod_namespace,
                pod_name=pod_name,
                message=message,
            ))
            db.commit()
        except SQLAlchemyError as e:
            db.rollback()
            logger.error(f"Failed to journal {event_type.value} for node {node_name}: {e}")
        finally:
            db.close()

    def recent(self, limit: int = 50, node_name: Optional[str] = None) -> List[Dict[str, Any]]:
        """Most recent events first."""
        db = self.session_factory()
        try:
            stmt = select(FencingEvent).order_by(FencingEvent.id.desc()).limit(limit)
            if node_name:
                stmt = stmt.where(FencingEvent.node_name == node_name)
            return [
                {
                    "id": event.id,
                    "event_type": event.event_type.value,
                    "node_name": event.node_name,
                    "pod_namespace": event.pod_namespace,
                    "pod_name": event.pod_name,
                    "message": event.message,
                    "timestamp": event.timestamp.isoformat(),
                }
                for event in db.scalars(stmt).all()
            ]
        finally:
            db.close()


class NullJournal:
    """Journal that discards everything. Used when no database is configured."""

    def record(self, event_type: EventType, node_name: str, message: str,
               pod_namespace: Optional[str] = None, pod_name: Optional[str] = None) -> None:
        pass

    def recent(self, limit: int = 50, node_name: Optional[str] = None) -> List[Dict[str, Any]]:
        return []
