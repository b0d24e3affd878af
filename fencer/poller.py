"""
StorageOS node health poller.

StorageOS node health isn't visible through Kubernetes, so it is polled from
the StorageOS api on a fixed interval. Every node returned by a successful
poll is sent to the events queue, changed or not, so that the downstream
cache stays fresh.

A failed poll leaves the cache alone and asks the api client to rebuild
itself by posting to the reset queue.
"""

import logging
import queue
import threading
from typing import Optional

from fencer.config import MIN_POLL_INTERVAL

logger = logging.getLogger(__name__)

# How long a blocked send waits before re-checking for shutdown.
SEND_POLL_SECONDS = 0.5


def clamp_poll_interval(interval: float) -> float:
    """Raise intervals below the minimum to the minimum, with a warning."""
    if interval < MIN_POLL_INTERVAL:
        logger.warning(
            f"Node poll interval {interval}s is below the minimum, using {MIN_POLL_INTERVAL}s"
        )
        return MIN_POLL_INTERVAL
    return interval


class NodeHealthPoller:
    """
    Poll StorageOS for node health and publish each node.

    The interval is used as given; callers wanting the minimum enforced
    should pass it through ``clamp_poll_interval`` first.
    """

    def __init__(self, api, interval: float, events: queue.Queue, reset: queue.Queue, stop: threading.Event):
        """
        Args:
            api: StorageOS client providing list_nodes()
            interval: Seconds between polls
            events: Queue receiving one BackendNode per node per poll
            reset: Bounded queue used to request an api client rebuild
            stop: Shared shutdown event
        """
        self.api = api
        self.interval = interval
        self.events = events
        self.reset = reset
        self.stop_event = stop

        self.poll_thread: Optional[threading.Thread] = None

    def start(self):
        """Start polling in background thread"""
        self.poll_thread = threading.Thread(target=self.run, name="node-poller", daemon=True)
        self.poll_thread.start()
        logger.info(f"Node health poller started: interval={self.interval}s")

    def join(self, timeout: float = 5):
        if self.poll_thread and self.poll_thread.is_alive():
            self.poll_thread.join(timeout=timeout)

    def run(self):
        """Poll until stopped. The first poll happens one interval after start."""
        while not self.stop_event.wait(self.interval):
            try:
                self.poll_once()
            except Exception as e:
                logger.error(f"Node poll error: {e}", exc_info=True)
        logger.info("Node health poller stopped")

    def poll_once(self) -> int:
        """
        Run a single poll.

        Returns the number of nodes published. A failed list publishes
        nothing and requests an api reset.
        """
        try:
            nodes = self.api.list_nodes()
        except Exception as e:
            logger.error(f"Failed to list StorageOS nodes: {e}")
            self._request_reset()
            return 0

        sent = 0
        for node in nodes:
            if not self._send(node):
                break
            sent += 1
        logger.debug(f"Published {sent} StorageOS nodes")
        return sent

    def _request_reset(self):
        try:
            self.reset.put_nowait(True)
        except queue.Full:
            # A reset is already pending
            logger.debug("StorageOS api reset already requested")

    def _send(self, node) -> bool:
        """Blocking send that gives up on shutdown."""
        while not self.stop_event.is_set():
            try:
                self.events.put(node, timeout=SEND_POLL_SECONDS)
                return True
            except queue.Full:
                continue
        return False
