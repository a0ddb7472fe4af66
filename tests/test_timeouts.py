import threading
import time

import pytest

from circuitwatch.errors import ShutdownRequested
from circuitwatch.utils.timeouts import interruptible_sleep, timed_call


def test_returns_result():
    assert timed_call(lambda: 42, timeout=1.0) == 42


def test_times_out_without_waiting_for_worker():
    release = threading.Event()
    start = time.monotonic()
    with pytest.raises(TimeoutError):
        timed_call(lambda: release.wait(5), timeout=0.2)
    assert time.monotonic() - start < 2.0
    release.set()


def test_propagates_callee_exception():
    def boom():
        raise ValueError("bad payload")

    with pytest.raises(ValueError, match="bad payload"):
        timed_call(boom, timeout=1.0)


def test_shutdown_before_call_skips_work():
    shutdown = threading.Event()
    shutdown.set()
    calls = []
    with pytest.raises(ShutdownRequested):
        timed_call(lambda: calls.append(1), timeout=1.0, shutdown=shutdown)
    assert calls == []


def test_shutdown_during_call_abandons_it():
    shutdown = threading.Event()
    release = threading.Event()
    threading.Timer(0.15, shutdown.set).start()
    start = time.monotonic()
    with pytest.raises(ShutdownRequested):
        timed_call(lambda: release.wait(5), timeout=5.0, shutdown=shutdown)
    assert time.monotonic() - start < 2.0
    release.set()


def test_interruptible_sleep():
    shutdown = threading.Event()
    assert interruptible_sleep(0, shutdown) is False
    assert interruptible_sleep(0.01, None) is False
    shutdown.set()
    assert interruptible_sleep(0, shutdown) is True
    start = time.monotonic()
    assert interruptible_sleep(5, shutdown) is True
    assert time.monotonic() - start < 1.0
