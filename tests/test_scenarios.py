"""End-to-end fencing flows through the reconciler, driven step by step."""

import time

import pytest

from fencer.action import ActionState
from fencer.reconciler import FencerReconciler
from shared.storageos_models import NodeHealth
from tests.fakes import add_fenced_pod, make_node, make_pod


@pytest.fixture
def reconciler(cluster, backend, journal, clock):
    backend.nodes = [make_node("n1"), make_node("n2")]
    return FencerReconciler(
        backend,
        cluster,
        journal=journal,
        poll_interval=5,
        expiry_interval=60,
        workers=2,
        retry_interval=0.01,
        timeout=0.2,
        clock=clock,
    )


def _poll(reconciler):
    """Run one poll and feed its events through the enqueuer."""
    reconciler.poller.poll_once()
    while not reconciler.events.empty():
        reconciler.enqueuer.handle(reconciler.events.get_nowait())


def _process(reconciler):
    """Reconcile every queued key. Returns {key: state}."""
    results = {}
    while True:
        key = reconciler.work_queue.get(timeout=0)
        if key is None:
            return results
        try:
            results[key] = reconciler.reconcile(key)
        finally:
            reconciler.work_queue.done(key)


def test_offline_node_fences_opted_in_pod_only(reconciler, cluster, backend):
    add_fenced_pod(cluster, backend, "p1", "n1", ("data",))
    cluster.add_pod(make_pod("p2", "n1", claims=(), fenced=None))

    _poll(reconciler)
    assert _process(reconciler) == {"/n1": ActionState.IDLE, "/n2": ActionState.IDLE}
    assert cluster.deleted_pods == []

    backend.set_health("n1", NodeHealth.OFFLINE)
    _poll(reconciler)
    results = _process(reconciler)

    assert results["/n1"] == ActionState.IDLE
    assert cluster.deleted_pods == ["default/p1"]
    assert cluster.deleted_attachments == ["va-data"]
    assert ("default", "p2") in cluster.pods


def test_failed_polls_then_offline_report(reconciler, cluster, backend):
    add_fenced_pod(cluster, backend, "p1", "n1", ("data",))
    backend.set_health("n1", NodeHealth.OFFLINE)
    backend.list_failures = 3

    for _ in range(3):
        _poll(reconciler)
        assert reconciler.api_reset.qsize() == 1
        reconciler.api_reset.get_nowait()
        assert _process(reconciler) == {}
    assert cluster.deleted_pods == []

    _poll(reconciler)
    _process(reconciler)
    assert cluster.deleted_pods == ["default/p1"]


def test_unhealthy_claim_blocks_until_healthy(reconciler, cluster, backend, clock, journal):
    add_fenced_pod(cluster, backend, "p1", "n1", ("a", "b", "c"))
    backend.add_volume("default", "pv-b", healthy=False)
    backend.set_health("n1", NodeHealth.OFFLINE)

    _poll(reconciler)
    assert _process(reconciler)["/n1"] == ActionState.IDLE
    assert cluster.deleted_pods == []
    assert cluster.deleted_attachments == []
    assert len(cluster.attachments) == 3

    # Volume fails over; the cache entry expires and the node is queued again
    backend.add_volume("default", "pv-b", healthy=True)
    clock.advance(61)
    assert reconciler.cache.delete_expired() == ["/n1", "/n2"]
    assert len(reconciler.work_queue) == 2

    # The next poll re-caches the node under the same queued key
    _poll(reconciler)
    assert len(reconciler.work_queue) == 2
    _process(reconciler)

    assert cluster.deleted_pods == ["default/p1"]
    assert sorted(cluster.deleted_attachments) == ["va-a", "va-b", "va-c"]
    assert "pod_fenced" in [e["event_type"] for e in journal.recent()]


def test_expired_node_without_new_poll_is_dropped(reconciler, cluster, backend, clock):
    add_fenced_pod(cluster, backend, "p1", "n1", ("a",))
    backend.set_health("n1", NodeHealth.OFFLINE)
    backend.add_volume("default", "pv-a", healthy=False)

    _poll(reconciler)
    _process(reconciler)

    backend.add_volume("default", "pv-a", healthy=True)
    clock.advance(61)
    reconciler.cache.delete_expired()
    assert _process(reconciler) == {"/n1": ActionState.IDLE, "/n2": ActionState.IDLE}
    assert cluster.deleted_pods == []


def test_timeout_when_pod_cannot_be_deleted(reconciler, cluster, backend, journal):
    add_fenced_pod(cluster, backend, "p1", "n1", ("a",))
    cluster.pod_delete_errors["p1"] = RuntimeError("apiserver unreachable")
    backend.set_health("n1", NodeHealth.OFFLINE)

    # Real clock for the runner deadline
    reconciler.runner._clock = time.monotonic
    _poll(reconciler)
    assert _process(reconciler)["/n1"] == ActionState.TIMED_OUT
    assert "fence_timeout" in [e["event_type"] for e in journal.recent()]


def test_threads_start_and_stop(cluster, backend, journal):
    backend.nodes = [make_node("n1", NodeHealth.OFFLINE)]
    add_fenced_pod(cluster, backend, "p1", "n1", ("a",))
    reconciler = FencerReconciler(backend, cluster, journal=journal, poll_interval=5,
                                  expiry_interval=60, workers=2, retry_interval=0.01, timeout=1)
    reconciler.start()
    try:
        reconciler.enqueuer.handle(make_node("n1", NodeHealth.OFFLINE))
        deadline = time.monotonic() + 5
        while not cluster.deleted_pods and time.monotonic() < deadline:
            time.sleep(0.01)
    finally:
        reconciler.stop()

    assert cluster.deleted_pods == ["default/p1"]
    assert reconciler.worker_threads == []
    assert reconciler.summary()["status"] == "stopped"


def test_low_poll_interval_is_clamped(cluster, backend):
    reconciler = FencerReconciler(backend, cluster, poll_interval=1)
    assert reconciler.poll_interval == 5.0
    assert reconciler.poller.interval == 5.0


def test_stop_drops_pending_keys(reconciler, cluster, backend):
    add_fenced_pod(cluster, backend, "p1", "n1", ("a",))
    backend.set_health("n1", NodeHealth.OFFLINE)
    _poll(reconciler)
    assert len(reconciler.work_queue) == 2

    reconciler.stop_event.set()
    reconciler.work_queue.shut_down()
    reconciler._worker_loop()

    assert cluster.deleted_pods == []
    assert reconciler.work_queue.processing() == 0


def test_restart_after_stop(cluster, backend, journal):
    add_fenced_pod(cluster, backend, "p1", "n1", ("a",))
    reconciler = FencerReconciler(backend, cluster, journal=journal, poll_interval=5,
                                  expiry_interval=60, workers=1, retry_interval=0.01, timeout=1)
    reconciler.start()
    reconciler.stop()
    first_queue = reconciler.work_queue

    reconciler.start()
    try:
        assert reconciler.work_queue is not first_queue
        assert reconciler.enqueuer.work_queue is reconciler.work_queue
        reconciler.enqueuer.handle(make_node("n1", NodeHealth.OFFLINE))
        deadline = time.monotonic() + 5
        while not cluster.deleted_pods and time.monotonic() < deadline:
            time.sleep(0.01)
    finally:
        reconciler.stop()

    assert cluster.deleted_pods == ["default/p1"]
    assert reconciler.summary()["status"] == "stopped"
