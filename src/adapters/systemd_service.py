"""systemd integration for running gpubsub as a user service."""

from __future__ import annotations

from dataclasses import dataclass
import logging
import os
import shlex
import subprocess
import sys
from pathlib import Path
from typing import Sequence

LOGGER = logging.getLogger(__name__)

SERVICE_NAME = "gpubsub"
SERVICE_DESCRIPTION = "Listens for Google Cloud Pub/Sub messages and performs specified commands"


@dataclass(frozen=True)
class ServiceSpec:
    name: str
    description: str
    working_dir: str
    arguments: Sequence[str]


class SystemdManager:
    """Manage the systemd user unit."""

    def __init__(self, unit_dir: Path | None = None) -> None:
        self._unit_dir = unit_dir or Path.home() / ".config" / "systemd" / "user"

    def unit_path(self, name: str) -> Path:
        return self._unit_dir / f"{name}.service"

    def install(self, spec: ServiceSpec) -> str:
        _require_linux()
        unit_path = self.unit_path(spec.name)
        unit_path.parent.mkdir(parents=True, exist_ok=True)
        unit_path.write_text(render_unit(spec), encoding="utf-8")

        result = _run(["systemctl", "--user", "daemon-reload"])
        if result.returncode != 0:
            LOGGER.warning("systemctl daemon-reload failed (rc=%d): %s", result.returncode, result.stderr.strip())
        result = _run(["systemctl", "--user", "enable", "--now", f"{spec.name}.service"])
        if result.returncode != 0:
            LOGGER.warning("systemctl enable failed (rc=%d): %s", result.returncode, result.stderr.strip())
            raise RuntimeError(f"Failed to enable systemd service at {unit_path}: {result.stderr.strip()}")
        return f"Installed systemd service at {unit_path}"

    def uninstall(self, name: str = SERVICE_NAME) -> str:
        _require_linux()
        result = _run(["systemctl", "--user", "disable", "--now", f"{name}.service"])
        if result.returncode != 0:
            LOGGER.warning("systemctl disable failed (rc=%d): %s", result.returncode, result.stderr.strip())
        unit_path = self.unit_path(name)
        if unit_path.exists():
            unit_path.unlink()
        result = _run(["systemctl", "--user", "daemon-reload"])
        if result.returncode != 0:
            LOGGER.warning("systemctl daemon-reload failed (rc=%d): %s", result.returncode, result.stderr.strip())
        return f"Uninstalled systemd service {name}"


def build_spec(arguments: Sequence[str], working_dir: str | None = None) -> ServiceSpec:
    return ServiceSpec(
        name=SERVICE_NAME,
        description=SERVICE_DESCRIPTION,
        working_dir=working_dir or os.getcwd(),
        arguments=list(arguments),
    )


def render_unit(spec: ServiceSpec) -> str:
    python_path = os.environ.get("PYTHON_BIN", sys.executable)
    exec_cmd = " ".join(shlex.quote(part) for part in [python_path, "-m", "app", *spec.arguments])
    return f"""[Unit]
Description={spec.description}
After=network-online.target

[Service]
Type=simple
WorkingDirectory={spec.working_dir}
ExecStart={exec_cmd}
Restart=on-failure
RestartSec=10

[Install]
WantedBy=default.target
"""


def _require_linux() -> None:
    if not sys.platform.startswith("linux"):
        raise RuntimeError(f"Service management is only supported on Linux, not {sys.platform}")


def _run(cmd: list[str]) -> subprocess.CompletedProcess[str]:
    return subprocess.run(cmd, capture_output=True, text=True, check=False)
