"""
Cache-backed event enqueuer.

Turns polled StorageOS nodes into reconcile requests. Each node is written to
the expiring cache and its key queued for reconciliation. When a cache entry
expires the key is queued again, so every node is re-evaluated at least once
per expiry interval even if polling stops.
"""

import logging
import queue
import threading
from typing import Optional

from fencer.cache import ExpiringCache, object_key

logger = logging.getLogger(__name__)

RECEIVE_POLL_SECONDS = 0.5


class CacheEventEnqueuer:
    def __init__(self, cache: ExpiringCache, work_queue):
        self.cache = cache
        self.work_queue = work_queue
        self.cache.on_evicted(self.on_evicted)

        self.run_thread: Optional[threading.Thread] = None

    def handle(self, node) -> str:
        """Cache the node and queue its key. Returns the key."""
        key = object_key(node.name)
        self.cache.put(key, node)
        self.work_queue.add(key)
        return key

    def on_evicted(self, key: str):
        """Eviction callback: queue the key without re-caching it."""
        logger.debug(f"Node cache entry expired, re-evaluating: {key}")
        self.work_queue.add(key)

    def run(self, events: queue.Queue, stop: threading.Event):
        """Drain ``events`` until ``stop`` is set."""
        while not stop.is_set():
            try:
                node = events.get(timeout=RECEIVE_POLL_SECONDS)
            except queue.Empty:
                continue
            try:
                self.handle(node)
            except Exception as e:
                logger.error(f"Failed to enqueue node event: {e}", exc_info=True)
        logger.info("Node event enqueuer stopped")

    def start(self, events: queue.Queue, stop: threading.Event):
        self.run_thread = threading.Thread(target=self.run, args=(events, stop), name="node-enqueuer", daemon=True)
        self.run_thread.start()

    def join(self, timeout: float = 5):
        if self.run_thread and self.run_thread.is_alive():
            self.run_thread.join(timeout=timeout)
