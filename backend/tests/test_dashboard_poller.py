import threading
import time

from api_client import ApiError
from dashboard_poller import DashboardPoller


class Feed:
    def __init__(self, *answers):
        self.answers = list(answers)
        self.calls = 0

    def __call__(self):
        self.calls += 1
        answer = self.answers.pop(0)
        if isinstance(answer, Exception):
            raise answer
        return answer


def test_poll_once_keeps_snapshot():
    poller = DashboardPoller(Feed({"orders": [1]}), interval=0)
    assert poller.poll_once()
    assert poller.snapshot == {"orders": [1]}
    assert poller.last_refresh is not None


def test_failure_keeps_previous_snapshot_and_retries():
    poller = DashboardPoller(Feed({"orders": [1]}, ApiError("down"), {"orders": [2]}), interval=0)

    poller.poll_once()
    assert not poller.poll_once()
    assert poller.snapshot == {"orders": [1]}
    assert poller.failures == 1
    assert isinstance(poller.last_error, ApiError)

    assert poller.poll_once()
    assert poller.snapshot == {"orders": [2]}
    assert poller.failures == 0


def test_run_stops_after_max_cycles():
    feed = Feed({"n": 1}, RuntimeError("boom"), {"n": 3})
    poller = DashboardPoller(feed, interval=0)
    poller.run(max_cycles=3)
    assert feed.calls == 3
    assert poller.snapshot == {"n": 3}


def test_pause_and_resume_keep_state():
    refreshed = threading.Event()
    snapshots = iter(range(1000))

    def fetch():
        refreshed.set()
        return next(snapshots)

    poller = DashboardPoller(fetch, interval=0.01)
    poller.pause()
    assert poller.paused

    thread = poller.start()
    assert not refreshed.wait(0.1)
    assert poller.snapshot is None

    poller.resume()
    deadline = time.time() + 2
    while poller.snapshot is None and time.time() < deadline:
        time.sleep(0.01)
    poller.pause()
    kept = poller.snapshot
    assert kept is not None

    poller.resume()
    poller.stop()
    thread.join(2)
    assert not thread.is_alive()
    assert poller.snapshot >= kept
