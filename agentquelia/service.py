from __future__ import annotations

import logging
import os
import platform
import plistlib
import shlex
import subprocess
import sys
from pathlib import Path
from typing import Callable

from .config import CONFIG_ENV_VAR, default_config_path, default_log_dir
from .errors import ServiceError

logger = logging.getLogger("agentquelia.service")

SERVICE_NAME = "agentquelia"
LAUNCHD_LABEL = "com.agentquelia.agent"
SYSTEMD_UNIT_PATH = Path("/etc/systemd/system/agentquelia.service")
SYSTEM_CONFIG_PATH = Path("/etc/agentquelia/agent.yaml")
SYSTEM_LAUNCHD_DIR = Path("/Library/LaunchDaemons")

CommandRunner = Callable[[list[str]], "subprocess.CompletedProcess[str]"]


def _run_command(command: list[str]) -> "subprocess.CompletedProcess[str]":
    try:
        return subprocess.run(command, capture_output=True, text=True, check=False)
    except OSError as exc:
        raise ServiceError(f"failed to run {command[0]}: {exc}") from exc


def agent_command() -> list[str]:
    """Command line that starts this agent, frozen build or interpreter."""

    if getattr(sys, "frozen", False):
        return [sys.executable]
    return [sys.executable, "-m", "agentquelia"]


def user_launchd_dir() -> Path:
    return Path.home() / "Library" / "LaunchAgents"


def render_systemd_unit(*, exec_command: list[str], config_path: Path) -> str:
    exec_start = shlex.join([*exec_command, "run"])
    return (
        "[Unit]\n"
        "Description=Agentquelia Power Data Collection Agent\n"
        "After=network.target\n"
        "\n"
        "[Service]\n"
        "Type=simple\n"
        f"ExecStart={exec_start}\n"
        f"Environment={CONFIG_ENV_VAR}={config_path}\n"
        "Restart=always\n"
        "RestartSec=10\n"
        "StandardOutput=journal\n"
        "StandardError=journal\n"
        f"SyslogIdentifier={SERVICE_NAME}\n"
        "\n"
        "[Install]\n"
        "WantedBy=multi-user.target\n"
    )


def render_launchd_plist(*, exec_command: list[str], config_path: Path, log_dir: Path) -> bytes:
    return plistlib.dumps(
        {
            "Label": LAUNCHD_LABEL,
            "ProgramArguments": [*exec_command, "--config", str(config_path), "run"],
            "RunAtLoad": True,
            "KeepAlive": True,
            "StandardOutPath": str(log_dir / "stdout.log"),
            "StandardErrorPath": str(log_dir / "stderr.log"),
            "WorkingDirectory": "/tmp",
        }
    )


def install(
    *,
    user_level: bool = False,
    config_path: Path | None = None,
    runner: CommandRunner | None = None,
    system: str | None = None,
) -> str:
    """Register the agent with the platform service manager.

    Returns a hint describing how to start the installed service.
    """

    run = runner or _run_command
    system = system or platform.system()

    if system == "Linux":
        return _install_systemd(config_path or SYSTEM_CONFIG_PATH, run=run)
    if system == "Darwin":
        return _install_launchd(config_path or default_config_path(), user_level=user_level)
    if system == "Windows":
        return _install_windows(config_path or default_config_path(), run=run)
    raise ServiceError(f"service installation not supported on {system}")


def uninstall(*, runner: CommandRunner | None = None, system: str | None = None) -> None:
    run = runner or _run_command
    system = system or platform.system()

    if system == "Linux":
        run(["systemctl", "stop", SERVICE_NAME])
        run(["systemctl", "disable", SERVICE_NAME])
        if SYSTEMD_UNIT_PATH.exists():
            try:
                SYSTEMD_UNIT_PATH.unlink()
            except OSError as exc:
                raise ServiceError(f"failed to uninstall service: {exc}") from exc
        run(["systemctl", "daemon-reload"])
        return

    if system == "Darwin":
        user_plist = user_launchd_dir() / f"{LAUNCHD_LABEL}.plist"
        run(["launchctl", "unload", str(user_plist)])
        if user_plist.exists():
            try:
                user_plist.unlink()
            except OSError as exc:
                raise ServiceError(f"failed to uninstall service: {exc}") from exc
        system_plist = SYSTEM_LAUNCHD_DIR / f"{LAUNCHD_LABEL}.plist"
        if system_plist.exists():
            try:
                system_plist.unlink()
            except OSError:
                # Removing the system-level plist needs root; leave it for the operator.
                logger.warning("could not remove %s (needs elevated privileges)", system_plist)
        return

    if system == "Windows":
        run(["sc", "stop", SERVICE_NAME])
        result = run(["sc", "delete", SERVICE_NAME])
        if result.returncode != 0:
            raise ServiceError(f"failed to uninstall service: {(result.stdout or result.stderr).strip()}")
        return

    raise ServiceError(f"service uninstallation not supported on {system}")


def status(*, runner: CommandRunner | None = None, system: str | None = None) -> str:
    run = runner or _run_command
    system = system or platform.system()

    if system == "Linux":
        return (run(["systemctl", "is-active", SERVICE_NAME]).stdout or "").strip() or "unknown"

    if system == "Darwin":
        result = run(["launchctl", "list", LAUNCHD_LABEL])
        return "Running" if result.returncode == 0 else "Not running"

    if system == "Windows":
        result = run(["sc", "query", SERVICE_NAME])
        if result.returncode != 0:
            raise ServiceError("service not found")
        for line in (result.stdout or "").splitlines():
            if "STATE" in line:
                return line.split(":", 1)[-1].strip()
        return "unknown"

    raise ServiceError(f"service status not available on {system}")


def _install_systemd(config_path: Path, *, run: CommandRunner) -> str:
    unit_path = SYSTEMD_UNIT_PATH
    try:
        config_path.parent.mkdir(parents=True, exist_ok=True)
        unit_path.write_text(
            render_systemd_unit(exec_command=agent_command(), config_path=config_path),
            encoding="utf-8",
        )
    except OSError as exc:
        raise ServiceError(f"cannot write service file {unit_path}: {exc}") from exc

    run(["systemctl", "daemon-reload"])
    run(["systemctl", "enable", SERVICE_NAME])
    return f"Start with: sudo systemctl start {SERVICE_NAME}"


def _install_launchd(config_path: Path, *, user_level: bool) -> str:
    plist_dir = user_launchd_dir() if user_level else SYSTEM_LAUNCHD_DIR
    plist_path = plist_dir / f"{LAUNCHD_LABEL}.plist"
    log_dir = default_log_dir()

    try:
        plist_dir.mkdir(parents=True, exist_ok=True)
        log_dir.mkdir(parents=True, exist_ok=True)
        plist_path.write_bytes(
            render_launchd_plist(exec_command=agent_command(), config_path=config_path, log_dir=log_dir)
        )
        os.chmod(plist_path, 0o644)
    except OSError as exc:
        raise ServiceError(f"cannot write plist {plist_path}: {exc}") from exc

    return f"Start with: launchctl load {plist_path}"


def _install_windows(config_path: Path, *, run: CommandRunner) -> str:
    bin_path = subprocess.list2cmdline([*agent_command(), "--config", str(config_path), "run"])
    result = run(
        [
            "sc",
            "create",
            SERVICE_NAME,
            "binPath=",
            bin_path,
            "start=",
            "auto",
            "DisplayName=",
            "Agentquelia",
        ]
    )
    if result.returncode != 0:
        raise ServiceError(f"failed to install service: {(result.stdout or result.stderr).strip()}")

    run(["sc", "description", SERVICE_NAME, "Agentquelia Power Data Collection Agent"])
    return f"Start with: sc start {SERVICE_NAME}"
