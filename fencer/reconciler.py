"""
Fencer reconciler.

Wires the fencing pipeline together and owns its threads:

    poller -> events queue -> enqueuer -> cache + work queue -> workers

- the poller reads StorageOS node health on an interval
- the enqueuer caches each node and queues its key, and re-queues keys whose
  cache entries expire
- each worker takes a key, asks the controller whether the node needs
  fencing and, if so, runs the fencing action until it completes or times out

All loops share one stop event. Workers never process the same key at once.
"""

import logging
import queue
import threading
import time
from collections import Counter
from typing import Callable, Dict, List, Optional

from fencer.action import ActionRunner, ActionState
from fencer.cache import ExpiringCache
from fencer.config import (
    DRIVER_NAME,
    FENCER_RETRY_INTERVAL,
    FENCER_TIMEOUT,
    FENCER_WORKERS,
    FENCING_LABEL,
    NODE_EXPIRY_INTERVAL,
    NODE_POLL_INTERVAL,
)
from fencer.controller import NodeFencingController
from fencer.enqueuer import CacheEventEnqueuer
from fencer.events import NullJournal
from fencer.executor import FencingExecutor
from fencer.poller import NodeHealthPoller, clamp_poll_interval
from fencer.targets import TargetResolver
from fencer.workqueue import WorkQueue

logger = logging.getLogger(__name__)

WORKER_POLL_SECONDS = 0.5
EVENT_QUEUE_SIZE = 100


class FencerReconciler:
    def __init__(
        self,
        api,
        cluster,
        journal=None,
        poll_interval: float = NODE_POLL_INTERVAL,
        expiry_interval: float = NODE_EXPIRY_INTERVAL,
        workers: int = FENCER_WORKERS,
        retry_interval: float = FENCER_RETRY_INTERVAL,
        timeout: float = FENCER_TIMEOUT,
        label: str = FENCING_LABEL,
        driver: str = DRIVER_NAME,
        api_reset: Optional[queue.Queue] = None,
        refresh_interval: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Args:
            api: StorageOS client (list_nodes, get_volume, optionally run_refresh)
            cluster: KubeClient for node, pod, claim and attachment access
            journal: EventJournal for fencing history (default: discard)
            poll_interval: Seconds between node health polls, at least MIN_POLL_INTERVAL
            expiry_interval: Seconds before a cached node expires and is re-evaluated
            workers: Number of reconcile worker threads
            retry_interval: Seconds between fencing attempts on the same node
            timeout: Seconds before a fencing action gives up
            label: Pod label that opts pods in to fencing
            driver: StorageOS CSI driver name
            api_reset: Queue used to ask the api client to rebuild itself
            refresh_interval: If set, run the api client's token refresh loop
            clock: Monotonic time source for cache expiry and action timeouts
        """
        self.api = api
        self.cluster = cluster
        self.journal = journal or NullJournal()
        self.poll_interval = clamp_poll_interval(poll_interval)
        self.expiry_interval = expiry_interval
        self.workers = max(1, workers)
        self.refresh_interval = refresh_interval

        self.stop_event = threading.Event()
        self.api_reset = api_reset if api_reset is not None else queue.Queue(maxsize=1)
        self.events: queue.Queue = queue.Queue(maxsize=EVENT_QUEUE_SIZE)

        self.cache = ExpiringCache(expiry_interval, clock=clock)
        self.work_queue = WorkQueue()
        self.enqueuer = CacheEventEnqueuer(self.cache, self.work_queue)
        self.poller = NodeHealthPoller(api, self.poll_interval, self.events, self.api_reset, self.stop_event)

        resolver = TargetResolver(cluster, api, label=label, driver=driver)
        executor = FencingExecutor(cluster, driver=driver)
        self.controller = NodeFencingController(self.cache, cluster, resolver, executor, journal=self.journal)
        self.runner = ActionRunner(retry_interval, timeout, stop_event=self.stop_event, journal=self.journal, clock=clock)

        self._state_lock = threading.Lock()
        self._last_state: Dict[str, ActionState] = {}

        self.running = False
        self.worker_threads: List[threading.Thread] = []
        self.refresh_thread: Optional[threading.Thread] = None

        logger.info(
            f"Fencer initialized: poll_interval={self.poll_interval}s, expiry={expiry_interval}s, "
            f"workers={self.workers}, retry={retry_interval}s, timeout={timeout}s"
        )

    def start(self):
        """Start all fencer threads"""
        if self.running:
            logger.warning("Fencer already running")
            return
        self.running = True
        self.stop_event.clear()
        if self.work_queue.shutting_down:
            # Restart after stop(): a shut down queue accepts no keys.
            self.work_queue = WorkQueue()
            self.enqueuer.work_queue = self.work_queue

        if self.refresh_interval:
            self.refresh_thread = threading.Thread(
                target=self.api.run_refresh,
                args=(self.api_reset, self.stop_event, self.refresh_interval),
                name="api-refresh",
                daemon=True,
            )
            self.refresh_thread.start()

        self.cache.start()
        self.enqueuer.start(self.events, self.stop_event)
        self.poller.start()

        for i in range(self.workers):
            worker = threading.Thread(target=self._worker_loop, name=f"fencer-worker-{i}", daemon=True)
            worker.start()
            self.worker_threads.append(worker)

        logger.info("Fencer started")

    def stop(self):
        """Stop all fencer threads. In-flight actions are cancelled at their next wait."""
        if not self.running:
            return
        self.running = False

        self.stop_event.set()
        self.work_queue.shut_down()
        self.cache.stop()
        self.poller.join()
        self.enqueuer.join()
        for worker in self.worker_threads:
            worker.join(timeout=5)
        self.worker_threads = []
        if self.refresh_thread and self.refresh_thread.is_alive():
            self.refresh_thread.join(timeout=5)

        logger.info("Fencer stopped")

    def reconcile(self, key: str) -> ActionState:
        """Evaluate one node and fence it if needed. Returns the final action state."""
        logger.debug(f"{key}: {ActionState.DECIDING.value}")
        if not self.controller.require_action(key):
            state = ActionState.IDLE
        else:
            state = self.runner.execute(self.controller.build_action_manager(key))

        with self._state_lock:
            self._last_state[key] = state
        return state

    def _worker_loop(self):
        while True:
            key = self.work_queue.get(timeout=WORKER_POLL_SECONDS)
            if key is None:
                if self.work_queue.shutting_down or self.stop_event.is_set():
                    break
                continue
            if self.stop_event.is_set():
                # Pending keys are dropped once the fencer is stopping.
                self.work_queue.done(key)
                break
            try:
                self.reconcile(key)
            except Exception as e:
                logger.error(f"Reconcile failed for {key}: {e}", exc_info=True)
            finally:
                self.work_queue.done(key)

    # ------------------------------------------------------------------
    # Status
    # ------------------------------------------------------------------

    def nodes(self) -> List[dict]:
        """Cached StorageOS nodes with the outcome of their last reconcile."""
        with self._state_lock:
            last_state = dict(self._last_state)
        result = []
        for key, node in sorted(self.cache.items()):
            state = last_state.get(key)
            result.append({
                "key": key,
                "id": node.id,
                "name": node.name,
                "health": node.health.value,
                "last_action": state.value if state else None,
            })
        return result

    def summary(self) -> dict:
        by_health = Counter(node.health.value for _, node in self.cache.items())
        return {
            "status": "running" if self.running else "stopped",
            "nodes": {
                "total": sum(by_health.values()),
                "online": by_health.get("online", 0),
                "offline": by_health.get("offline", 0),
                "unknown": by_health.get("unknown", 0),
            },
            "queue_depth": len(self.work_queue),
            "in_progress": self.work_queue.processing(),
            "workers": self.workers,
            "poll_interval_seconds": self.poll_interval,
            "expiry_interval_seconds": self.expiry_interval,
        }
