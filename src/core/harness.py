"""Offline replay of configured test messages."""

from __future__ import annotations

import logging
from typing import Iterable

from core.dispatcher import Dispatcher
from core.models import Subscription

LOGGER = logging.getLogger(__name__)


def run_test_messages(subscriptions: Iterable[Subscription], dispatcher: Dispatcher) -> int:
    """Feed every subscription's test messages straight into the dispatcher.

    Nothing is acknowledged and the bus is never contacted. Subscriptions
    without test messages are skipped. Returns the number of messages replayed.
    """

    replayed = 0
    for sub in subscriptions:
        if not sub.tests:
            LOGGER.warning("[%s] No test messages, skipped in test mode", sub.name)
            continue
        for index, message in enumerate(sub.tests, start=1):
            LOGGER.debug("[%s] Test #%s", sub.name, index)
            dispatcher.dispatch(sub, message)
            replayed += 1
    return replayed
