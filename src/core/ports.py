"""Ports (interfaces) used by the core.

Ports define the minimal contracts for the message bus and process
execution so the core can run against Pub/Sub, subprocesses or test fakes.
"""

from __future__ import annotations

from dataclasses import dataclass
import threading
from typing import Callable, Optional, Protocol, Sequence

from core.models import Message


class BusError(RuntimeError):
    """Raised by bus adapters when a subscription cannot be used."""


@dataclass(frozen=True)
class CommandResult:
    """Exit status and combined stdout/stderr of a finished command."""

    returncode: int
    output: str


class Delivery(Protocol):
    """A received message that still waits for its acknowledgement."""

    message: Message

    def ack(self) -> None:
        ...

    def nack(self) -> None:
        ...


class BusPort(Protocol):
    """Message bus operations required by the runners."""

    def exists(self, subscription: str) -> bool:
        ...

    def topic(self, subscription: str) -> str:
        ...

    def receive(
        self,
        subscription: str,
        handler: Callable[[Delivery], None],
        stop: threading.Event,
    ) -> None:
        """Block, calling `handler` per message, until `stop` is set.

        `handler` may be invoked concurrently from several threads.
        """
        ...


class ProcessRunnerPort(Protocol):
    """Process execution required by the dispatcher.

    Raises OSError when the executable cannot be started.
    """

    def run(self, argv: Sequence[str], stdin: Optional[bytes] = None) -> CommandResult:
        ...
