import threading
import time

import pytest

from errors import PersistenceError
from sync import PersistScheduler


class Recorder:
    def __init__(self):
        self.calls = 0
        self.fail = False
        self.saved = threading.Event()

    def __call__(self):
        self.calls += 1
        self.saved.set()
        if self.fail:
            raise PersistenceError("local store offline")


def test_rapid_changes_are_coalesced():
    save = Recorder()
    scheduler = PersistScheduler(save, delay=0.1)
    for _ in range(5):
        scheduler.schedule()
    assert scheduler.pending
    assert save.calls == 0

    assert save.saved.wait(2)
    time.sleep(0.2)
    assert save.calls == 1
    assert not scheduler.pending
    assert scheduler.last_saved_at is not None
    scheduler.close()


def test_flush_saves_now_and_cancels_timer():
    save = Recorder()
    scheduler = PersistScheduler(save, delay=0.1)
    scheduler.schedule()
    scheduler.flush()
    assert save.calls == 1
    assert not scheduler.pending
    time.sleep(0.25)
    assert save.calls == 1
    scheduler.close()


def test_failures_are_recorded_and_raised_on_flush():
    save = Recorder()
    save.fail = True
    scheduler = PersistScheduler(save, delay=0.05)

    scheduler.schedule()
    assert save.saved.wait(2)
    time.sleep(0.05)
    assert scheduler.last_error == "local store offline"

    with pytest.raises(PersistenceError):
        scheduler.flush()

    save.fail = False
    scheduler.flush()
    assert scheduler.last_error is None
    scheduler.close()


def test_submitted_writes_run_in_order():
    seen = []
    scheduler = PersistScheduler(lambda: None, delay=60)
    futures = [scheduler.submit(seen.append, n) for n in range(5)]
    for future in futures:
        future.result(timeout=2)
    assert seen == [0, 1, 2, 3, 4]
    scheduler.close()


def test_close_flushes_pending_save():
    save = Recorder()
    scheduler = PersistScheduler(save, delay=60)
    scheduler.schedule()
    scheduler.close()
    assert save.calls == 1
    assert not scheduler.pending
