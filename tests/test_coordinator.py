from __future__ import annotations

import threading
from typing import Callable, Optional, Sequence

from core.coordinator import Coordinator, ShutdownOnce
from core.dispatcher import Dispatcher
from core.models import Subscription
from core.ports import CommandResult
from core.runner import RunnerState, SubscriptionRunner


class FakeProcessRunner:
    def run(self, argv: Sequence[str], stdin: Optional[bytes] = None) -> CommandResult:
        return CommandResult(returncode=0, output="")


class BlockingBus:
    """Receive loop that only returns once asked to stop (or for `finite` subs)."""

    def __init__(self, finite: Sequence[str] = ()) -> None:
        self._finite = set(finite)
        self.listening = threading.Semaphore(0)

    def exists(self, subscription: str) -> bool:
        return True

    def topic(self, subscription: str) -> str:
        return f"{subscription}-topic"

    def receive(self, subscription: str, handler: Callable, stop: threading.Event) -> None:
        self.listening.release()
        if subscription in self._finite:
            return
        stop.wait(10)


def _coordinator(bus: BlockingBus, *names: str) -> Coordinator:
    subs = [Subscription(name=name) for name in names]
    return Coordinator.for_subscriptions(subs, bus, Dispatcher(FakeProcessRunner()))


def test_shutdown_once_fires_a_single_time_under_contention() -> None:
    latch = ShutdownOnce()
    calls: list[int] = []
    barrier = threading.Barrier(16)

    def worker() -> None:
        barrier.wait()
        latch.fire(lambda: calls.append(1))

    threads = [threading.Thread(target=worker) for _ in range(16)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(5)

    assert calls == [1]
    assert latch.fired
    assert not latch.fire(lambda: calls.append(2))


def test_shutdown_stops_every_runner() -> None:
    bus = BlockingBus()
    coordinator = _coordinator(bus, "orders", "events", "audit")

    coordinator.start()
    for _ in range(3):
        assert bus.listening.acquire(timeout=5)
    coordinator.shutdown()
    coordinator.shutdown()
    coordinator.wait()

    assert coordinator.shutting_down
    assert all(runner.state is RunnerState.STOPPED for runner in coordinator.runners)


def test_runner_exit_triggers_global_shutdown() -> None:
    bus = BlockingBus(finite=["orders"])
    coordinator = _coordinator(bus, "orders", "events")

    done = threading.Event()
    waiter = threading.Thread(target=lambda: (coordinator.run(), done.set()))
    waiter.start()
    waiter.join(10)

    assert done.is_set()
    assert coordinator.shutting_down
    assert all(runner.stopped.is_set() for runner in coordinator.runners)


def test_failing_cancel_does_not_block_other_runners() -> None:
    class BrokenRunner(SubscriptionRunner):
        def cancel(self) -> None:
            super().cancel()
            raise RuntimeError("cleanup failed")

    bus = BlockingBus()
    dispatcher = Dispatcher(FakeProcessRunner())
    broken = BrokenRunner(Subscription(name="broken"), bus, dispatcher)
    healthy = SubscriptionRunner(Subscription(name="healthy"), bus, dispatcher)
    coordinator = Coordinator([broken, healthy])

    coordinator.start()
    for _ in range(2):
        assert bus.listening.acquire(timeout=5)
    coordinator.shutdown()
    coordinator.wait()

    assert healthy.state is RunnerState.STOPPED
    assert broken.state is RunnerState.STOPPED


def test_reentrant_fire_returns_instead_of_blocking() -> None:
    latch = ShutdownOnce()
    nested: list[bool] = []

    # Mirrors a second signal arriving while the first shutdown still runs.
    assert latch.fire(lambda: nested.append(latch.fire(lambda: nested.append(True))))
    assert nested == [False]
