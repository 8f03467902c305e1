"""Core domain models.

These dataclasses are shared across the core and adapters to avoid tight
coupling to the Pub/Sub client types.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
import re
from typing import Mapping, Optional, Tuple


class DataVia(str, Enum):
    """How a message payload is handed to the executed commands."""

    NONE = "none"
    VAR = "var"
    PIPE = "pipe"
    FILE = "file"


class FieldSource(Enum):
    """Where a rule node reads the value it matches against."""

    NONE = 0
    META_KEY = 1


@dataclass(frozen=True)
class Message:
    """Minimal message representation used by the core."""

    id: str
    data: bytes
    attributes: Mapping[str, str]
    publish_time: datetime


@dataclass(frozen=True)
class Command:
    """Executable followed by its arguments."""

    argv: Tuple[str, ...] = ()

    @property
    def empty(self) -> bool:
        return not self.argv or not self.argv[0].strip()


@dataclass(frozen=True)
class RuleNode:
    """Compiled `if` node: a condition, its command and nested nodes."""

    field_source: FieldSource
    field_name: str
    pattern: Optional[re.Pattern]
    command: Command = Command()
    then: Tuple["RuleNode", ...] = ()


@dataclass(frozen=True)
class Subscription:
    """One configured subscription.

    `topic` stays empty until the bus resolves it at startup.
    """

    name: str
    command: Command = Command()
    data_via: DataVia = DataVia.VAR
    rules: Tuple[RuleNode, ...] = ()
    tests: Tuple[Message, ...] = ()
    topic: str = field(default="", compare=False)
