"""
Fencer status API

Read-only view of what the fencer currently knows and has done.

Endpoints:
- GET /health: Fencer summary (cached node counts, queue depth, workers)
- GET /health/nodes: Cached StorageOS nodes and their last reconcile outcome
- GET /health/nodes/{name}: A single cached node
- GET /health/events: Recent fencing journal entries
"""

from datetime import datetime
from typing import Any, Dict, List, Optional
import logging

from fastapi import APIRouter, HTTPException, Query
from pydantic import BaseModel

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/health", tags=["health"])


# Will be injected by service.py
_reconciler = None
_journal = None


def set_reconciler(reconciler, journal=None):
    """Set reconciler and journal references (called by service.py)"""
    global _reconciler, _journal
    _reconciler = reconciler
    _journal = journal


class FencerSummary(BaseModel):
    """Overall fencer status"""
    status: str  # 'running', 'stopped', 'unknown'
    timestamp: str
    nodes: Dict[str, int]  # total, online, offline, unknown
    queue_depth: int
    in_progress: int
    workers: int
    poll_interval_seconds: float
    expiry_interval_seconds: float


class NodeStatus(BaseModel):
    """Cached StorageOS node"""
    key: str
    id: str
    name: str
    health: str
    last_action: Optional[str] = None


class FencingEventOut(BaseModel):
    id: int
    event_type: str
    node_name: str
    pod_namespace: Optional[str] = None
    pod_name: Optional[str] = None
    message: str
    timestamp: str


@router.get("", response_model=FencerSummary)
def get_fencer_summary():
    """
    Get overall fencer status.
    Node counts reflect the cache, not the StorageOS api.
    """
    if _reconciler is None:
        return {
            "status": "unknown",
            "timestamp": datetime.utcnow().isoformat(),
            "nodes": {"total": 0, "online": 0, "offline": 0, "unknown": 0},
            "queue_depth": 0,
            "in_progress": 0,
            "workers": 0,
            "poll_interval_seconds": 0,
            "expiry_interval_seconds": 0,
        }

    summary = _reconciler.summary()
    summary["timestamp"] = datetime.utcnow().isoformat()
    return summary


@router.get("/nodes", response_model=List[NodeStatus])
def get_nodes():
    if _reconciler is None:
        return []
    return _reconciler.nodes()


@router.get("/nodes/{name}", response_model=NodeStatus)
def get_node(name: str):
    if _reconciler is not None:
        for node in _reconciler.nodes():
            if node["name"] == name:
                return node
    raise HTTPException(status_code=404, detail=f"Node {name} not cached")


@router.get("/events", response_model=List[FencingEventOut])
def get_events(limit: int = Query(50, ge=1, le=1000), node: Optional[str] = None) -> List[Dict[str, Any]]:
    """
    Recent fencing journal entries, newest first.
    Optionally filtered to one node.
    """
    if _journal is None:
        return []
    return _journal.recent(limit=limit, node_name=node)
