"""Lifecycle of all subscription runners."""

from __future__ import annotations

import logging
import threading
from typing import Callable, Iterable, List, Sequence

from core.dispatcher import Dispatcher
from core.models import Subscription
from core.ports import BusPort
from core.runner import SubscriptionRunner

LOGGER = logging.getLogger(__name__)

JOIN_POLL_SECONDS = 0.5


class ShutdownOnce:
    """Single-fire latch: only the first `fire` call runs its action.

    The lock is taken once and never released, so later callers (including a
    signal handler interrupting the first one) return at once.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._fired = threading.Event()

    @property
    def fired(self) -> bool:
        return self._fired.is_set()

    def fire(self, action: Callable[[], None]) -> bool:
        if not self._lock.acquire(blocking=False):
            return False
        self._fired.set()
        action()
        return True


class Coordinator:
    """Runs each subscription on its own thread and stops them together.

    A runner leaving its loop for any reason requests a global shutdown,
    so one broken subscription takes the whole daemon down with it.
    """

    def __init__(self, runners: Sequence[SubscriptionRunner]) -> None:
        self._runners = list(runners)
        self._threads: List[threading.Thread] = []
        self._shutdown = ShutdownOnce()

    @classmethod
    def for_subscriptions(
        cls,
        subscriptions: Iterable[Subscription],
        bus: BusPort,
        dispatcher: Dispatcher,
    ) -> "Coordinator":
        return cls([SubscriptionRunner(sub, bus, dispatcher) for sub in subscriptions])

    @property
    def runners(self) -> List[SubscriptionRunner]:
        return list(self._runners)

    @property
    def shutting_down(self) -> bool:
        return self._shutdown.fired

    def start(self) -> None:
        for runner in self._runners:
            thread = threading.Thread(
                target=self._run_runner,
                args=(runner,),
                name=f"sub-{runner.subscription.name}",
            )
            self._threads.append(thread)
            thread.start()

    def shutdown(self) -> None:
        """Cancel every runner; safe to call any number of times."""

        self._shutdown.fire(self._cancel_all)

    def wait(self) -> None:
        """Block until every runner has stopped."""

        # Timed joins keep the main thread responsive to signals.
        for thread in self._threads:
            while thread.is_alive():
                thread.join(JOIN_POLL_SECONDS)
        LOGGER.info("Stopped")

    def run(self) -> None:
        self.start()
        self.wait()

    def _run_runner(self, runner: SubscriptionRunner) -> None:
        try:
            runner.run()
        finally:
            self.shutdown()

    def _cancel_all(self) -> None:
        LOGGER.info("Cancelling all subscriptions...")
        for runner in self._runners:
            try:
                runner.cancel()
            except Exception:
                LOGGER.exception("Failed to cancel subscription %s", runner.subscription.name)
