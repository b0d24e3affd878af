"""
Fencing actions and the retry loop that drives them.

An action manager knows how to run an action and how to check whether it
needs running again. ActionRunner alternates the two, sleeping for the retry
interval in between, until the check passes or the timeout is reached.
"""

import enum
import logging
import threading
import time
from abc import ABC, abstractmethod
from typing import Callable, Optional

from fencer.cache import ExpiringCache, split_key
from fencer.events import NullJournal
from fencer.models import EventType
from fencer.executor import FencingExecutor
from fencer.targets import TargetResolver, pod_ref
from shared.storageos_models import NodeHealth

logger = logging.getLogger(__name__)


class ActionState(str, enum.Enum):
    IDLE = "idle"
    DECIDING = "deciding"
    RUNNING = "running"
    CHECKING = "checking"
    RETRYING = "retrying"
    TIMED_OUT = "timed_out"
    CANCELLED = "cancelled"


class ActionManager(ABC):
    """An action that can be run repeatedly until its check passes."""

    name: str = ""

    @abstractmethod
    def run(self) -> None:
        """Perform the action. Must be safe to repeat."""

    @abstractmethod
    def check(self) -> bool:
        """Return True if the action needs to run again."""


class NodeFenceAction(ActionManager):
    """Fence the eligible pods on one offline node."""

    def __init__(self, key: str, cache: ExpiringCache, resolver: TargetResolver,
                 executor: FencingExecutor, journal=None):
        self.key = key
        _, self.name = split_key(key)
        self.cache = cache
        self.resolver = resolver
        self.executor = executor
        self.journal = journal or NullJournal()

    def run(self) -> None:
        logger.info(f"Fencing pods on offline node {self.name}")
        try:
            targets = self.resolver.resolve(self.name, on_skip=self._skipped)
        except Exception as e:
            logger.error(f"Failed to resolve fence targets on node {self.name}: {e}")
            return

        for target in targets:
            ref = pod_ref(target.pod)
            try:
                self.executor.fence(target)
            except Exception as e:
                logger.error(f"Failed to fence pod {ref}: {e}")
                self.journal.record(EventType.FENCE_FAILED, self.name, str(e),
                                    pod_namespace=target.namespace, pod_name=target.name)
                continue
            logger.info(f"Fenced pod {ref}")
            self.journal.record(EventType.POD_FENCED, self.name, "pod deleted for rescheduling",
                                pod_namespace=target.namespace, pod_name=target.name)

    def check(self) -> bool:
        node, found = self.cache.get(self.key)
        if not found:
            logger.info(f"Node {self.name} no longer cached, stopping fencing")
            return False
        if node.health == NodeHealth.ONLINE:
            logger.info(f"Node {self.name} recovered, stopping fencing")
            self.journal.record(EventType.NODE_RECOVERED, self.name, "node health is online")
            return False
        if not node.is_offline:
            logger.info(f"Node {self.name} no longer offline (health {node.health.value}), stopping fencing")
            self.journal.record(EventType.NODE_NOT_OFFLINE, self.name, f"node health is {node.health.value}")
            return False

        # Still offline; retry while any pod remains eligible.
        targets = self.resolver.resolve(self.name)
        if targets:
            logger.info(f"{len(targets)} pod(s) still eligible for fencing on node {self.name}")
        return bool(targets)

    def _skipped(self, pod, reason: str) -> None:
        self.journal.record(EventType.POD_SKIPPED, self.name, reason,
                            pod_namespace=pod.metadata.namespace, pod_name=pod.metadata.name)


class ActionRunner:
    """
    Run an action until its check passes or the timeout expires.

    A failed run is logged and still checked. A failed check counts as
    needing a retry.
    """

    def __init__(self, retry_interval: float, timeout: float, stop_event: Optional[threading.Event] = None,
                 journal=None, clock: Callable[[], float] = time.monotonic):
        self.retry_interval = retry_interval
        self.timeout = timeout
        self.stop_event = stop_event or threading.Event()
        self.journal = journal or NullJournal()
        self._clock = clock

    def execute(self, action: ActionManager) -> ActionState:
        deadline = self._clock() + self.timeout
        attempt = 0

        while True:
            if self.stop_event.is_set():
                logger.info(f"{action.name}: cancelled")
                return ActionState.CANCELLED
            attempt += 1
            logger.debug(f"{action.name}: {ActionState.RUNNING.value} (attempt {attempt})")
            try:
                action.run()
            except Exception as e:
                logger.error(f"{action.name}: action failed: {e}", exc_info=True)

            logger.debug(f"{action.name}: {ActionState.CHECKING.value}")
            try:
                retry = action.check()
            except Exception as e:
                logger.error(f"{action.name}: check failed: {e}")
                retry = True

            if not retry:
                return ActionState.IDLE

            remaining = deadline - self._clock()
            if remaining <= 0:
                break

            logger.debug(f"{action.name}: {ActionState.RETRYING.value} in {self.retry_interval}s")
            if self.stop_event.wait(min(self.retry_interval, remaining)):
                logger.info(f"{action.name}: cancelled")
                return ActionState.CANCELLED
            if self._clock() >= deadline:
                break

        message = f"action did not complete within {self.timeout}s after {attempt} attempt(s)"
        logger.error(f"{action.name}: {message}")
        self.journal.record(EventType.FENCE_TIMEOUT, action.name, message)
        return ActionState.TIMED_OUT
