"""
Filesystem-root restriction and privilege drop for guest processes.

enter_sandbox() runs inside a short-lived privileged helper process. It
confines the process to a root image, permanently drops to an unprivileged
uid/gid and replaces the process image with the target command. Every
failure raises SandboxError before the target command could run.
"""

from __future__ import annotations

import os
import pwd
import resource

from dataclasses import dataclass
from pathlib import Path


class SandboxError(Exception):
    """Isolation could not be established; the target command was not run."""


class SandboxExecError(SandboxError):
    """Isolation succeeded but the target command could not be executed."""


@dataclass(frozen=True)
class ResourceLimits:
    """Kernel-enforced limits applied before the privilege drop."""

    cpu_seconds: int | None = None
    memory_bytes: int | None = None
    max_file_bytes: int | None = None

    def apply(self) -> None:
        pairs = (
            (resource.RLIMIT_CPU, self.cpu_seconds),
            (resource.RLIMIT_AS, self.memory_bytes),
            (resource.RLIMIT_FSIZE, self.max_file_bytes),
        )
        for limit, value in pairs:
            if value is None:
                continue
            try:
                resource.setrlimit(limit, (value, value))
            except (ValueError, OSError) as e:
                raise SandboxError(f"setrlimit({limit}, {value}) failed: {e}") from e


def check_preconditions(root: str, target_uid: int, command: str) -> None:
    """Validate arguments before any irreversible step is taken."""
    if not os.path.isabs(root):
        raise SandboxError(f"Sandbox root must be an absolute path: {root}")
    if not os.path.isdir(root):
        raise SandboxError(f"Sandbox root is not a directory: {root}")
    if target_uid <= 0:
        raise SandboxError("Refusing to run guest code as root")
    if not os.path.isabs(command):
        raise SandboxError(f"Command must be an absolute path: {command}")


def resolve_group(target_uid: int, gid: int | None = None) -> int:
    """Primary group of target_uid unless an explicit gid is given.

    Must run before chroot; the root image may not carry a passwd database.
    """
    if gid is None:
        try:
            gid = pwd.getpwuid(target_uid).pw_gid
        except KeyError as e:
            raise SandboxError(f"No passwd entry for uid {target_uid}; pass an explicit gid") from e
    if gid <= 0:
        raise SandboxError("Refusing to run guest code with the root group")
    return gid


def drop_privileges(target_uid: int, gid: int) -> None:
    """Drop supplementary groups, then gid, then uid, and verify it is permanent.

    The group must change first; once the uid is unprivileged the process can
    no longer change its gid.
    """
    try:
        os.setgroups([gid])
        os.setgid(gid)
        os.setuid(target_uid)
    except OSError as e:
        raise SandboxError(f"Privilege drop failed: {e}") from e

    if 0 in (os.getuid(), os.geteuid(), os.getgid(), os.getegid()):
        raise SandboxError("Privilege drop did not take effect")

    try:
        os.setuid(0)
    except PermissionError:
        return
    raise SandboxError("Privilege drop is reversible; refusing to continue")


def enter_sandbox(
    root: str,
    target_uid: int,
    command: str,
    args: list[str],
    cwd: str = "/",
    gid: int | None = None,
    limits: ResourceLimits | None = None,
) -> None:
    """Confine, drop privilege and exec. Only returns by raising SandboxError.

    Sequence: preconditions, passwd lookup, resource limits, chroot,
    chdir("/"), privilege drop, chdir(cwd), execv.
    """
    check_preconditions(root, target_uid, command)
    group = resolve_group(target_uid, gid)

    if limits:
        limits.apply()

    try:
        os.chroot(root)
        os.chdir("/")
    except OSError as e:
        raise SandboxError(f"chroot to {root} failed: {e}") from e

    drop_privileges(target_uid, group)

    try:
        os.chdir(cwd)
    except OSError as e:
        raise SandboxError(f"Cannot enter working directory {cwd}: {e}") from e

    try:
        os.execv(command, [command, *args])
    except OSError as e:
        raise SandboxExecError(f"exec {command} failed: {e}") from e


def to_sandbox_path(root: Path, host_path: Path) -> str:
    """Translate a host path below root into the path seen after chroot."""
    relative = host_path.relative_to(root)
    return "/" + relative.as_posix() if relative.parts else "/"
