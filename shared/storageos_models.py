"""
StorageOS API object models.

Pydantic views over the JSON returned by the StorageOS v2 REST API. Only the
fields the fencer reads are modelled; everything else is ignored.
"""

from __future__ import annotations

import enum
from typing import Dict, Optional

from pydantic import BaseModel, ConfigDict, Field


class NodeHealth(str, enum.Enum):
    """Operational health of a StorageOS node"""
    ONLINE = "online"
    OFFLINE = "offline"
    UNKNOWN = "unknown"

    @classmethod
    def parse(cls, value) -> "NodeHealth":
        try:
            return cls(str(value or "").lower())
        except ValueError:
            return cls.UNKNOWN


class CapacityStats(BaseModel):
    """Storage capacity of a node, in bytes"""
    model_config = ConfigDict(extra="ignore")

    total: int = 0
    free: int = 0
    available: int = 0


class BackendNode(BaseModel):
    """A StorageOS node as reported by GET /v2/nodes"""
    model_config = ConfigDict(extra="ignore", populate_by_name=True, frozen=True)

    id: str = ""
    name: str
    health: NodeHealth = NodeHealth.UNKNOWN
    capacity: CapacityStats = Field(default_factory=CapacityStats, alias="capacityStats")
    labels: Dict[str, str] = Field(default_factory=dict)
    version: Optional[str] = None

    @classmethod
    def from_api(cls, payload: dict) -> "BackendNode":
        data = dict(payload)
        data["health"] = NodeHealth.parse(data.get("health"))
        data["labels"] = data.get("labels") or {}
        return cls.model_validate(data)

    @property
    def is_offline(self) -> bool:
        return self.health == NodeHealth.OFFLINE


class BackendVolume(BaseModel):
    """
    A StorageOS volume.

    Healthy means the master deployment reports ``online``. Replica health is
    not considered: the master is what serves IO after failover.
    """
    model_config = ConfigDict(extra="ignore", frozen=True)

    id: str = ""
    name: str
    namespace: str
    master_health: str = "unknown"
    healthy: bool = False

    @classmethod
    def from_api(cls, payload: dict, namespace: str) -> "BackendVolume":
        master = payload.get("master") or {}
        master_health = str(master.get("health") or "unknown").lower()
        return cls(
            id=str(payload.get("id", "")),
            name=payload["name"],
            namespace=namespace,
            master_health=master_health,
            healthy=master_health == "online",
        )

    def is_healthy(self) -> bool:
        return self.healthy
