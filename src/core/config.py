"""Configuration building and validation.

We keep file reading outside the core (see settings.py); this module turns
the raw document into the immutable model the runners expect. Any problem
rejects the whole configuration.
"""

from __future__ import annotations

import base64
import binascii
from dataclasses import dataclass
from datetime import datetime, timezone
import os
import re
from typing import Any, Iterable, List, Sequence, Tuple

from core.models import Command, DataVia, FieldSource, Message, RuleNode, Subscription

NAME_MIN_LENGTH = 3
NAME_MAX_LENGTH = 255

_DATA_VIA_VALUES = {
    "": DataVia.VAR,
    "var": DataVia.VAR,
    "pipe": DataVia.PIPE,
    "file": DataVia.FILE,
    "none": DataVia.NONE,
}


class ConfigError(ValueError):
    """Raised when the subscriptions document cannot be used.

    `errors` holds every problem found, so a broken rule tree is reported
    in one go instead of one node at a time.
    """

    def __init__(self, message: str, errors: Sequence[str] = ()) -> None:
        self.errors = list(errors)
        if self.errors:
            message = f"{message}:\n" + "\n".join(f"  - {err}" for err in self.errors)
        super().__init__(message)


@dataclass(frozen=True)
class DaemonConfig:
    """Validated configuration shared by the app and the runners."""

    project: str
    subscriptions: Tuple[Subscription, ...]

    @property
    def has_tests(self) -> bool:
        return any(sub.tests for sub in self.subscriptions)


def pipe_supported() -> bool:
    return os.name != "nt"


def parse_data_via(value: Any) -> DataVia:
    """Map the `data` setting to a delivery mode, downgrading pipe where needed."""

    raw = "" if value is None else str(value)
    if raw not in _DATA_VIA_VALUES:
        raise ConfigError(f"invalid data passing method: {raw}")
    data_via = _DATA_VIA_VALUES[raw]
    if data_via is DataVia.PIPE and not pipe_supported():
        return DataVia.VAR
    return data_via


def build_command(raw: Any, where: str) -> Command:
    if raw is None:
        return Command()
    if isinstance(raw, str) or not isinstance(raw, Iterable):
        raise ConfigError(f"{where}: cmd must be a list of strings")
    return Command(tuple(str(part) for part in raw))


def as_list(raw: Any, where: str) -> list:
    """Return a list setting, treating a missing value as empty."""

    if raw is None:
        return []
    if not isinstance(raw, list):
        raise ConfigError(f"{where} must be a list")
    return raw


def build_rule(raw: Any, path: List[int], errors: List[str]) -> RuleNode:
    """Compile one `if` node and its `then` children.

    Problems are appended to `errors` and compilation carries on, so the
    caller sees every broken node of the tree at once.
    """

    where = f"if {path}"
    if not isinstance(raw, dict):
        errors.append(f"{where}: expected a mapping")
        return RuleNode(FieldSource.NONE, "", None)

    field_source = FieldSource.NONE
    field_name = ""
    metakey = raw.get("metakey")
    if metakey:
        field_source = FieldSource.META_KEY
        field_name = str(metakey)
    else:
        errors.append(f"{where}: value source undefined")

    pattern = None
    raw_pattern = raw.get("equal")
    if raw_pattern is None or str(raw_pattern) == "":
        errors.append(f"{where}: empty pattern")
    else:
        try:
            pattern = re.compile(str(raw_pattern))
        except re.error as exc:
            errors.append(f"{where}: invalid pattern: {exc}")

    try:
        command = build_command(raw.get("cmd"), where)
    except ConfigError as exc:
        errors.append(str(exc))
        command = Command()

    try:
        raw_children = as_list(raw.get("then"), f"{where}: then")
    except ConfigError as exc:
        errors.append(str(exc))
        raw_children = []
    children = [
        build_rule(child, path + [index], errors)
        for index, child in enumerate(raw_children)
    ]
    return RuleNode(
        field_source=field_source,
        field_name=field_name,
        pattern=pattern,
        command=command,
        then=tuple(children),
    )


def decode_test_data(data: str) -> bytes:
    """Decode base64 test payloads, falling back to the literal text."""

    try:
        return base64.b64decode(data, validate=True)
    except (binascii.Error, ValueError):
        return data.encode("utf-8")


def build_test_messages(name: str, raw_tests: Iterable[Any]) -> Tuple[Message, ...]:
    messages: List[Message] = []
    for index, test in enumerate(raw_tests):
        test = test or {}
        if not isinstance(test, dict):
            raise ConfigError(f"subscription {name}: test #{index} must be a mapping")
        meta = test.get("meta") or {}
        if not isinstance(meta, dict):
            raise ConfigError(f"subscription {name}: meta of test #{index} must be a mapping")
        messages.append(
            Message(
                id=f"{name}_test_{index}",
                data=decode_test_data(str(test.get("data") or "")),
                attributes={str(k): str(v) for k, v in meta.items()},
                publish_time=datetime.now(timezone.utc),
            )
        )
    return tuple(messages)


def build_subscription(raw: dict) -> Subscription:
    name = str(raw.get("name") or "").strip()
    if len(name) < NAME_MIN_LENGTH or len(name) > NAME_MAX_LENGTH:
        raise ConfigError(f"invalid subscription name: {name}")

    data_via = parse_data_via(raw.get("data"))
    command = build_command(raw.get("cmd"), f"subscription {name}")

    errors: List[str] = []
    raw_rules = as_list(raw.get("if"), f"subscription {name}: if")
    rules = tuple(build_rule(node, [index], errors) for index, node in enumerate(raw_rules))
    if errors:
        raise ConfigError(f"failed to validate ifs of subscription {name}", errors)

    return Subscription(
        name=name,
        command=command,
        data_via=data_via,
        rules=rules,
        tests=build_test_messages(name, as_list(raw.get("tests"), f"subscription {name}: tests")),
    )


def build_config(raw: Any) -> DaemonConfig:
    """Validate a raw subscriptions document and build the daemon config."""

    if not isinstance(raw, dict):
        raise ConfigError("subscriptions document must be a mapping")

    subscriptions: dict[str, Subscription] = {}
    rule_errors: List[str] = []
    for entry in as_list(raw.get("subs"), "subs"):
        if not isinstance(entry, dict):
            raise ConfigError("each subscription must be a mapping")
        if entry.get("disable", False):
            continue
        try:
            sub = build_subscription(entry)
        except ConfigError as exc:
            # Rule problems are collected across all subscriptions; anything
            # else is fatal right away.
            if not exc.errors:
                raise
            name = str(entry.get("name") or "").strip()
            rule_errors.extend(f"{name}: {err}" for err in exc.errors)
            continue
        if sub.name in subscriptions:
            raise ConfigError(f"duplicate subscription: {sub.name}")
        subscriptions[sub.name] = sub

    if rule_errors:
        raise ConfigError("failed to validate ifs section", rule_errors)
    if not subscriptions:
        raise ConfigError("empty subscriptions list")

    return DaemonConfig(
        project=str(raw.get("project") or ""),
        subscriptions=tuple(subscriptions.values()),
    )
