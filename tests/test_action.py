import threading

import pytest

from fencer.action import ActionManager, ActionRunner, ActionState, NodeFenceAction
from fencer.cache import ExpiringCache
from fencer.executor import FencingExecutor
from fencer.targets import TargetResolver
from shared.storageos_models import NodeHealth
from tests.fakes import add_fenced_pod, cluster_error, make_node


class ScriptedAction(ActionManager):
    """Action whose check results are played back from a list."""

    name = "scripted"

    def __init__(self, checks, run_error=None, check_error=None):
        self.checks = list(checks)
        self.run_error = run_error
        self.check_error = check_error
        self.runs = 0

    def run(self):
        self.runs += 1
        if self.run_error:
            raise self.run_error

    def check(self):
        if self.check_error:
            raise self.check_error
        return self.checks.pop(0) if self.checks else True


@pytest.fixture
def cache(clock):
    return ExpiringCache(60, clock=clock)


@pytest.fixture
def action(cluster, backend, cache, journal):
    return NodeFenceAction("/n1", cache, TargetResolver(cluster, backend), FencingExecutor(cluster), journal=journal)


def _event_types(journal):
    return [e["event_type"] for e in journal.recent()]


# ----------------------------------------------------------------------
# NodeFenceAction
# ----------------------------------------------------------------------

def test_run_fences_and_journals(cluster, backend, action, journal):
    add_fenced_pod(cluster, backend, "p1", "n1", ("a",))
    add_fenced_pod(cluster, backend, "p2", "n1", ("b",), healthy=False)

    action.run()

    assert cluster.deleted_pods == ["default/p1"]
    assert sorted(_event_types(journal)) == ["pod_fenced", "pod_skipped"]


def test_run_is_idempotent(cluster, backend, action):
    add_fenced_pod(cluster, backend, "p1", "n1", ("a",))
    action.run()
    action.run()
    assert cluster.deleted_pods == ["default/p1"]
    assert cluster.deleted_attachments == ["va-a"]


def test_run_continues_past_failed_pod(cluster, backend, action, journal):
    add_fenced_pod(cluster, backend, "p1", "n1", ("a",))
    add_fenced_pod(cluster, backend, "p2", "n1", ("b",))
    cluster.pod_delete_errors["p1"] = cluster_error("pod default/p1")

    action.run()

    assert cluster.deleted_pods == ["default/p2"]
    events = journal.recent()
    failed = [e for e in events if e["event_type"] == "fence_failed"]
    assert [e["pod_name"] for e in failed] == ["p1"]


def test_run_swallows_list_failure(cluster, backend, action):
    def broken(node_name):
        raise cluster_error("pods on node n1")

    cluster.list_pods_on_node = broken
    action.run()


def test_check_node_not_cached(action):
    assert action.check() is False


def test_check_node_recovered(cache, action, journal):
    cache.put("/n1", make_node("n1", NodeHealth.ONLINE))
    assert action.check() is False
    assert _event_types(journal) == ["node_recovered"]


def test_check_node_unknown_is_not_recovered(cache, action, journal):
    cache.put("/n1", make_node("n1", NodeHealth.UNKNOWN))
    assert action.check() is False
    assert _event_types(journal) == ["node_not_offline"]


def test_check_offline_with_remaining_pods(cluster, backend, cache, action):
    cache.put("/n1", make_node("n1", NodeHealth.OFFLINE))
    add_fenced_pod(cluster, backend, "p1", "n1", ("a",))
    assert action.check() is True


def test_check_offline_nothing_left(cache, action):
    cache.put("/n1", make_node("n1", NodeHealth.OFFLINE))
    assert action.check() is False


# ----------------------------------------------------------------------
# ActionRunner
# ----------------------------------------------------------------------

def test_runner_done_after_first_check():
    action = ScriptedAction([False])
    assert ActionRunner(0.01, 5).execute(action) == ActionState.IDLE
    assert action.runs == 1


def test_runner_retries_until_check_passes():
    action = ScriptedAction([True, True, False])
    assert ActionRunner(0.01, 5).execute(action) == ActionState.IDLE
    assert action.runs == 3


def test_runner_times_out(journal):
    action = ScriptedAction([])
    state = ActionRunner(0.01, 0.1, journal=journal).execute(action)

    assert state == ActionState.TIMED_OUT
    assert action.runs >= 2
    assert _event_types(journal) == ["fence_timeout"]


def test_runner_timeout_with_fake_clock(clock):
    action = ScriptedAction([])

    class AdvancingStop(threading.Event):
        def wait(self, timeout=None):
            clock.advance(timeout)
            return False

    runner = ActionRunner(5, 25, stop_event=AdvancingStop(), clock=clock)
    assert runner.execute(action) == ActionState.TIMED_OUT
    # Attempts at t=0, 5, 10, 15, 20; the deadline is reached during the last wait
    assert action.runs == 5


def test_runner_cancelled_before_first_run():
    stop = threading.Event()
    stop.set()
    action = ScriptedAction([True])
    assert ActionRunner(5, 60, stop_event=stop).execute(action) == ActionState.CANCELLED
    assert action.runs == 0


def test_runner_cancelled_during_retry_wait():
    stop = threading.Event()

    class StoppingAction(ScriptedAction):
        def check(self):
            stop.set()
            return True

    action = StoppingAction([])
    assert ActionRunner(5, 60, stop_event=stop).execute(action) == ActionState.CANCELLED
    assert action.runs == 1


def test_run_error_still_checks():
    action = ScriptedAction([False], run_error=RuntimeError("boom"))
    assert ActionRunner(0.01, 5).execute(action) == ActionState.IDLE


def test_check_error_means_retry():
    action = ScriptedAction([], check_error=RuntimeError("boom"))
    assert ActionRunner(0.01, 0.05).execute(action) == ActionState.TIMED_OUT
    assert action.runs >= 2
