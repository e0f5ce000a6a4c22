import logging
import threading
from concurrent.futures import ThreadPoolExecutor

from signalbuoy.dispatch.context import ExecutionContext, ResultChannel


def test_no_context_drops_and_warns(caplog) -> None:
    """Brief: With nothing selected submit() returns None and logs a warning.

    Inputs:
      - caplog: pytest log capture.

    Outputs:
      - Asserts the callable never ran.
    """

    ran = []
    ctx = ExecutionContext()
    with caplog.at_level(logging.WARNING, logger="signalbuoy.dispatch.context"):
        assert ctx.submit(ran.append, 1) is None
    assert ran == []
    assert ctx.mode is None
    assert "No execution context available" in caplog.text


def test_direct_runs_inline() -> None:
    ctx = ExecutionContext(allow_direct=True)
    fut = ctx.submit(lambda x: x * 2, 21)
    assert fut is not None and fut.result(timeout=0) == 42
    assert ctx.mode == "direct"


def test_direct_captures_exception_on_future() -> None:
    def boom():
        raise RuntimeError("boom")

    fut = ExecutionContext(allow_direct=True).submit(boom)
    assert isinstance(fut.exception(timeout=0), RuntimeError)


def test_target_wins_over_channel() -> None:
    """Brief: An explicit executor target takes priority over a channel."""

    channel = ResultChannel()
    with ThreadPoolExecutor(max_workers=1) as pool:
        ctx = ExecutionContext(target=pool, channel=channel)
        fut = ctx.submit(threading.current_thread)
        worker = fut.result(timeout=2)
    assert worker is not threading.current_thread()
    assert channel.pending() == 0
    assert ctx.mode == "executor"


def test_channel_used_when_no_target() -> None:
    channel = ResultChannel()
    ctx = ExecutionContext(channel=channel)
    fut = ctx.submit(lambda: "done")
    assert not fut.done()
    assert channel.pending() == 1
    assert channel.run_pending() == 1
    assert fut.result(timeout=0) == "done"


def test_allow_direct_clears_target_and_channel() -> None:
    """Brief: Enabling direct invocation leaves exactly one context in effect."""

    channel = ResultChannel()
    with ThreadPoolExecutor(max_workers=1) as pool:
        ctx = ExecutionContext(target=pool, channel=channel)
        ctx.allow_direct = True
        assert ctx.target is None
        assert ctx.channel is None
        assert ctx.mode == "direct"

        ctx.channel = channel
        assert ctx.allow_direct is False
        assert ctx.mode == "channel"

        ctx.target = pool
        assert ctx.mode == "executor"


def test_inherit_copies_selection() -> None:
    channel = ResultChannel()
    source = ExecutionContext(channel=channel)
    ctx = ExecutionContext(allow_direct=True)
    ctx.inherit(source)
    assert ctx.channel is channel
    assert ctx.allow_direct is False


def test_run_pending_limit_and_timeout() -> None:
    channel = ResultChannel()
    seen = []
    for i in range(3):
        channel.submit(seen.append, i)

    assert channel.run_pending(limit=2) == 2
    assert seen == [0, 1]
    assert channel.run_pending() == 1
    assert seen == [0, 1, 2]
    assert channel.run_pending(timeout=0.01) == 0


def test_run_pending_waits_for_work_from_other_thread() -> None:
    channel = ResultChannel()
    timer = threading.Timer(0.05, channel.submit, args=(lambda: None,))
    timer.start()
    try:
        assert channel.run_pending(timeout=2.0) == 1
    finally:
        timer.cancel()


def test_run_pending_records_exceptions() -> None:
    channel = ResultChannel()

    def boom():
        raise ValueError("bad")

    fut = channel.submit(boom)
    assert channel.run_pending() == 1
    assert isinstance(fut.exception(timeout=0), ValueError)
