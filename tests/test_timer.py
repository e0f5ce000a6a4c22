import logging
import threading
import time

from fake_daemon import wait_until
from signalbuoy.dispatch import ExecutionContext, ResultChannel
from signalbuoy.dispatch.timer import DeadlineTimer


def test_timer_fires_through_context() -> None:
    """Brief: The expiry callback runs with its bound arguments.

    Inputs:
      - None.

    Outputs:
      - Asserts callback ran once with the generation argument.
    """

    seen = []
    timer = DeadlineTimer(0.01, seen.append, ExecutionContext(allow_direct=True), 7).start()
    assert wait_until(lambda: seen == [7])
    assert timer.fired
    assert not timer.cancelled


def test_cancel_before_expiry_suppresses_callback() -> None:
    seen = []
    timer = DeadlineTimer(0.05, seen.append, ExecutionContext(allow_direct=True), 1).start()
    timer.cancel()
    time.sleep(0.1)
    assert seen == []
    assert timer.cancelled
    assert not timer.fired


def test_expiry_goes_to_channel() -> None:
    channel = ResultChannel()
    seen = []
    DeadlineTimer(0, lambda: seen.append(threading.current_thread()), ExecutionContext(channel=channel)).start()
    assert channel.run_pending(timeout=2.0) == 1
    assert seen == [threading.current_thread()]


def test_negative_delay_is_clamped() -> None:
    timer = DeadlineTimer(-1, lambda: None, ExecutionContext(allow_direct=True))
    assert timer.seconds == 0.0


def test_dropped_expiry_is_logged(caplog) -> None:
    with caplog.at_level(logging.WARNING, logger="signalbuoy.dispatch"):
        timer = DeadlineTimer(0, lambda: None, ExecutionContext()).start()
        assert wait_until(lambda: "Deadline expiry dropped" in caplog.text)
    assert timer.fired


def test_callback_exception_is_logged(caplog) -> None:
    def boom():
        raise RuntimeError("deadline failure")

    with caplog.at_level(logging.ERROR, logger="signalbuoy.dispatch.timer"):
        DeadlineTimer(0, boom, ExecutionContext(allow_direct=True)).start()
        assert wait_until(lambda: "Error in deadline callback" in caplog.text)
