"""Command dispatch for received messages.

This module is bus-agnostic. It turns a message into a set of substitution
variables, exposes the payload according to the subscription's delivery
mode, and runs the root command followed by every matched rule command.
"""

from __future__ import annotations

import base64
import logging
import os
import re
import tempfile
from typing import Dict, Mapping, Optional

from core.models import Command, DataVia, Message, Subscription
from core.ports import ProcessRunnerPort
from core.rules_engine import collect_matches

LOGGER = logging.getLogger(__name__)

VAR_SUB = "GSUB_SUB"
VAR_TOPIC = "GSUB_TOPIC"
VAR_META_PREFIX = "GSUB_META_"
VAR_DATA = "GSUB_DATA"

DATA_FILE_PREFIX = "gpubsub_message_"


def build_variables(subscription: Subscription, message: Message) -> Dict[str, str]:
    """Return substitution variables shared by all commands of one message."""

    variables = {
        VAR_SUB: subscription.name,
        VAR_TOPIC: subscription.topic,
    }
    for key, value in message.attributes.items():
        variables[VAR_META_PREFIX + key.replace(" ", "_")] = value
    if subscription.data_via is DataVia.VAR:
        variables[VAR_DATA] = base64.b64encode(message.data).decode("ascii")
    return variables


def substitute(argument: str, variables: Mapping[str, str]) -> str:
    """Replace variable names inside one argument in a single pass.

    Longer names win when several start at the same position, and replaced
    text is never scanned again.
    """

    if not variables:
        return argument
    names = sorted(variables, key=len, reverse=True)
    pattern = re.compile("|".join(re.escape(name) for name in names))
    return pattern.sub(lambda match: variables[match.group(0)], argument)


class MessageLogger(logging.LoggerAdapter):
    """Prefix log lines with the subscription and message id."""

    def __init__(self, logger: logging.Logger, subscription: str, message_id: str) -> None:
        super().__init__(logger, {"sub": subscription, "msg": message_id})

    def process(self, msg, kwargs):
        return f"[{self.extra['sub']}/{self.extra['msg']}] {msg}", kwargs


class Dispatcher:
    """Runs the commands a message triggers for one subscription.

    The dispatcher keeps no per-message state on the instance, so the bus
    may call `dispatch` concurrently for different messages.
    """

    def __init__(self, runner: ProcessRunnerPort, temp_dir: Optional[str] = None) -> None:
        self._runner = runner
        self._temp_dir = temp_dir or tempfile.gettempdir()

    def dispatch(self, subscription: Subscription, message: Message) -> bool:
        """Process one message; return False when it must be redelivered."""

        log = MessageLogger(LOGGER, subscription.name, message.id)
        log.debug(
            "New message %s B length and %s attrs",
            len(message.data),
            len(message.attributes),
        )

        variables = build_variables(subscription, message)

        data_file = None
        if subscription.data_via is DataVia.FILE:
            data_file = os.path.join(self._temp_dir, DATA_FILE_PREFIX + message.id)
            log.debug("Writing data file %s", data_file)
            try:
                _write_private(data_file, message.data)
            except OSError as exc:
                log.error("Failed to write data file: %s", exc)
                _remove(data_file, log)
                return False
            variables[VAR_DATA] = data_file

        stdin = None
        if subscription.data_via is DataVia.PIPE and message.data:
            stdin = base64.b64encode(message.data)

        try:
            # Root command first, then matched rules in tree order.
            self._perform(subscription.command, variables, stdin, "root", log)
            for hit in collect_matches(message, subscription.rules):
                log.debug("If at %s triggered", list(hit.path))
                self._perform(hit.node.command, variables, stdin, hit.tag, log)
        finally:
            if data_file is not None:
                log.debug("Removing data file %s", data_file)
                _remove(data_file, log)
        return True

    def _perform(
        self,
        command: Command,
        variables: Mapping[str, str],
        stdin: Optional[bytes],
        tag: str,
        log: MessageLogger,
    ) -> bool:
        if command.empty:
            return True

        executable = command.argv[0].strip()
        args = [substitute(arg, variables) for arg in command.argv[1:]]
        log.info("[%s] Performing %s %s", tag, executable, args)
        try:
            result = self._runner.run([executable, *args], stdin)
        except OSError as exc:
            log.error("[%s] Error: %s", tag, exc)
            return False

        if result.returncode != 0:
            log.error("[%s] Error: exit status %s", tag, result.returncode)
            log.error("[%s] Output: %s", tag, result.output)
            return False
        log.info("[%s] Success", tag)
        log.debug("[%s] Output: %s", tag, result.output)
        return True


def _write_private(path: str, data: bytes) -> None:
    fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
    with os.fdopen(fd, "wb") as handle:
        handle.write(data)


def _remove(path: str, log: MessageLogger) -> None:
    try:
        os.remove(path)
    except FileNotFoundError:
        return
    except OSError as exc:
        log.warning("Failed to remove data file %s: %s", path, exc)
