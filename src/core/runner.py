"""Per-subscription listening loop."""

from __future__ import annotations

from dataclasses import replace
from enum import Enum
import logging
import threading
from typing import Iterable, List

from core.dispatcher import Dispatcher
from core.models import Subscription
from core.ports import BusError, BusPort, Delivery

LOGGER = logging.getLogger(__name__)


class RunnerState(str, Enum):
    IDLE = "idle"
    LISTENING = "listening"
    CANCELLING = "cancelling"
    STOPPED = "stopped"


def resolve_subscriptions(subscriptions: Iterable[Subscription], bus: BusPort) -> List[Subscription]:
    """Check every subscription on the bus and fill in its topic.

    Raises BusError on the first subscription that is missing or unreadable.
    """

    resolved: List[Subscription] = []
    for sub in subscriptions:
        LOGGER.debug("Checking subscription %s", sub.name)
        if not bus.exists(sub.name):
            raise BusError(
                f"Subscription {sub.name} does not exist. Create it first in Google Cloud console"
            )
        resolved.append(replace(sub, topic=bus.topic(sub.name)))
    return resolved


class SubscriptionRunner:
    """Feeds one subscription's messages through the dispatcher.

    Cancellation is cooperative: `cancel` only sets the stop event, and the
    bus adapter leaves its receive loop on its next iteration.
    """

    def __init__(self, subscription: Subscription, bus: BusPort, dispatcher: Dispatcher) -> None:
        self._subscription = subscription
        self._bus = bus
        self._dispatcher = dispatcher
        self._stop = threading.Event()
        self._lock = threading.Lock()
        self._state = RunnerState.IDLE
        self.stopped = threading.Event()

    @property
    def subscription(self) -> Subscription:
        return self._subscription

    @property
    def state(self) -> RunnerState:
        return self._state

    def run(self) -> None:
        """Listen until cancelled or until the bus stops delivering."""

        name = self._subscription.name
        with self._lock:
            if self._state is RunnerState.IDLE:
                self._state = RunnerState.LISTENING
        LOGGER.debug("[%s] Subscribed", name)
        try:
            self._bus.receive(name, self.handle, self._stop)
        except Exception:
            LOGGER.exception("[%s] Failed to receive messages", name)
        finally:
            with self._lock:
                self._state = RunnerState.STOPPED
            self.stopped.set()
            LOGGER.debug("[%s] Unsubscribed", name)

    def handle(self, delivery: Delivery) -> None:
        """Bus callback: dispatch one message then ack or nack it."""

        try:
            ok = self._dispatcher.dispatch(self._subscription, delivery.message)
        except Exception:
            LOGGER.exception(
                "[%s/%s] Unexpected dispatch failure", self._subscription.name, delivery.message.id
            )
            ok = False
        if ok:
            delivery.ack()
        else:
            delivery.nack()

    def cancel(self) -> None:
        with self._lock:
            if self._state in (RunnerState.IDLE, RunnerState.LISTENING):
                self._state = RunnerState.CANCELLING
        self._stop.set()
