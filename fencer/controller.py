"""
Node fencing controller.

Decides, per reconcile request, whether a node needs fencing, and builds the
action that does it. Node health comes only from the expiring cache filled by
the poller; the cluster is consulted to confirm the node still exists.
"""

import logging
from abc import ABC, abstractmethod
from typing import Any

from fencer.action import ActionManager, NodeFenceAction
from fencer.cache import ExpiringCache, split_key
from fencer.errors import NodeNotCachedError
from fencer.events import NullJournal
from fencer.executor import FencingExecutor
from fencer.targets import TargetResolver

logger = logging.getLogger(__name__)


class Controller(ABC):
    """Decision half of a reconcile loop for objects held outside the cluster."""

    @abstractmethod
    def get_object(self, key: str) -> Any:
        """Return the current object for ``key``."""

    @abstractmethod
    def require_action(self, key: str) -> bool:
        """Return True if the object for ``key`` needs an action."""

    @abstractmethod
    def build_action_manager(self, key: str) -> ActionManager:
        """Return the action that brings ``key`` to its desired state."""


class NodeFencingController(Controller):
    def __init__(self, cache: ExpiringCache, cluster, resolver: TargetResolver,
                 executor: FencingExecutor, journal=None):
        self.cache = cache
        self.cluster = cluster
        self.resolver = resolver
        self.executor = executor
        self.journal = journal or NullJournal()

    def get_object(self, key: str):
        """Return the cached StorageOS node. Raises NodeNotCachedError if absent or expired."""
        node, found = self.cache.get(key)
        if not found:
            raise NodeNotCachedError(key)
        return node

    def require_action(self, key: str) -> bool:
        try:
            node = self.get_object(key)
        except NodeNotCachedError as e:
            logger.info(f"Skipping stale request: {e}")
            return False

        _, name = split_key(key)
        if not self.cluster.node_exists(name):
            logger.debug(f"Node {name} not found in the cluster, ignoring")
            return False

        if not node.is_offline:
            logger.debug(f"Ignoring {node.health.value} node {name}")
            return False
        return True

    def build_action_manager(self, key: str) -> ActionManager:
        return NodeFenceAction(key, self.cache, self.resolver, self.executor, journal=self.journal)
