"""
Builds command lines that start guest processes through the isolation helper.

The network-facing server never changes its own root or credentials. Each
guest process is started as `sudo -n <python> -m sandbox.executor ...`, which
confines and drops privilege before exec'ing the interpreter. With sandboxing
disabled (development hosts) commands run directly.
"""

from __future__ import annotations

import os
import shutil
import signal
import sys

from collections.abc import Sequence
from pathlib import Path

from core.constants import Settings
from sandbox.isolation import SandboxError, to_sandbox_path
from utils.logger import logger


class SandboxLauncher:
    """Translate host commands into sandboxed invocations."""

    def __init__(
        self,
        enabled: bool,
        rootfs: Path,
        uid: int,
        gid: int | None = None,
        use_sudo: bool = True,
        helper_python: str | None = None,
        cpu_limit: int | None = None,
        memory_limit: int | None = None,
    ) -> None:
        self.enabled = enabled
        self.rootfs = rootfs
        self.uid = uid
        self.gid = gid
        self.use_sudo = use_sudo
        self.helper_python = helper_python or sys.executable
        self.cpu_limit = cpu_limit
        self.memory_limit = memory_limit

    @classmethod
    def from_settings(cls, settings: Settings) -> SandboxLauncher:
        memory_mb = settings.sandbox_memory_limit_mb
        return cls(
            enabled=settings.sandbox_enabled,
            rootfs=settings.sandbox_rootfs,
            uid=settings.sandbox_uid,
            gid=settings.sandbox_gid,
            use_sudo=settings.sandbox_use_sudo,
            helper_python=settings.sandbox_python,
            cpu_limit=settings.effective_cpu_limit,
            memory_limit=memory_mb * 1024 * 1024 if memory_mb else None,
        )

    @property
    def stop_signal(self) -> signal.Signals:
        """Signal that ends a guest started by build_command.

        SIGKILL sent to sudo is not relayed and the guest runs under another
        uid, so a sandboxed guest is stopped with SIGTERM, which the helper
        turns into SIGKILL for the guest's process group.
        """
        return signal.SIGTERM if self.enabled else signal.SIGKILL

    def inner_path(self, host_path: Path) -> str:
        """Path of host_path as seen by the guest process."""
        if not self.enabled:
            return str(host_path)
        return to_sandbox_path(self.rootfs, host_path)

    def command_exists(self, path: str) -> bool:
        """Whether an executable exists where the guest would look for it."""
        if self.enabled:
            candidate = self.rootfs / path.lstrip("/")
        else:
            candidate = Path(path)
        return candidate.is_file() and os.access(candidate, os.X_OK)

    def first_available(self, candidates: Sequence[str]) -> str | None:
        """First candidate command that exists, in order."""
        for candidate in candidates:
            if self.command_exists(candidate):
                return candidate
        return None

    def build_command(
        self,
        command: str,
        args: Sequence[str | Path],
        cwd: Path,
        limit_cpu: bool = True,
        timeout: float | None = None,
        kill_grace: float | None = None,
    ) -> list[str]:
        """Build the argv that runs command(args) with cwd as working directory.

        Path arguments are host paths and are translated into the sandbox view;
        plain strings are passed through unchanged. With a timeout the helper
        kills the guest's process group itself once it expires.
        """
        guest_args = [self.inner_path(arg) if isinstance(arg, Path) else arg for arg in args]
        if not self.enabled:
            return [command, *guest_args]

        argv: list[str] = []
        if self.use_sudo:
            argv += ["sudo", "-n"]
        argv += [self.helper_python, "-m", "sandbox.executor", "--cwd", self.inner_path(cwd)]
        if self.gid is not None:
            argv += ["--gid", str(self.gid)]
        if limit_cpu and self.cpu_limit:
            argv += ["--cpu-limit", str(self.cpu_limit)]
        if self.memory_limit:
            argv += ["--memory-limit", str(self.memory_limit)]
        if timeout is not None:
            argv += ["--timeout", f"{timeout:g}"]
        if kill_grace is not None:
            argv += ["--kill-grace", f"{kill_grace:g}"]
        argv += [str(self.rootfs), str(self.uid), command, *guest_args]
        return argv


def verify_sandbox(settings: Settings) -> None:
    """Startup check; the server must not serve sessions without a usable sandbox.

    Raises:
        SandboxError: If sandboxing is enabled but cannot work on this host
    """
    if not settings.sandbox_enabled:
        logger.warning(
            "Sandbox disabled: guest code runs directly on the host. Use only for local development.",
            workspaces=str(settings.workspaces_root),
        )
        return

    rootfs = settings.sandbox_rootfs
    if not rootfs.is_dir():
        raise SandboxError(f"Sandbox root image not found: {rootfs}")
    if not settings.workspaces_root.is_relative_to(rootfs):
        raise SandboxError(f"Workspaces path {settings.workspaces_root} is outside sandbox root {rootfs}")
    if settings.sandbox_use_sudo:
        if shutil.which("sudo") is None:
            raise SandboxError("sandbox_use_sudo is enabled but sudo is not installed")
    elif os.geteuid() != 0:
        raise SandboxError("Sandbox helper needs root: enable sandbox_use_sudo or run the server as root")

    logger.info(f"Sandbox enabled (root: {rootfs}, uid: {settings.sandbox_uid})")


__all__ = ["SandboxLauncher", "verify_sandbox"]
