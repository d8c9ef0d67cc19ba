"""Tests for sandbox isolation primitives.

Privileged calls (chroot, setuid, execv) are patched; the ordering and
failure handling are what is under test.
"""

from __future__ import annotations

import os
import resource

from pathlib import Path
from unittest.mock import MagicMock, Mock, call, patch

import pytest

from sandbox.isolation import (
    ResourceLimits,
    SandboxError,
    SandboxExecError,
    check_preconditions,
    drop_privileges,
    enter_sandbox,
    resolve_group,
    to_sandbox_path,
)


class TestCheckPreconditions:
    """Tests for argument validation before any irreversible step."""

    def test_valid(self, tmp_path: Path) -> None:
        check_preconditions(str(tmp_path), 1001, "/usr/bin/python3")

    def test_relative_root(self) -> None:
        with pytest.raises(SandboxError, match="absolute"):
            check_preconditions("rootfs", 1001, "/bin/sh")

    def test_missing_root(self, tmp_path: Path) -> None:
        with pytest.raises(SandboxError, match="not a directory"):
            check_preconditions(str(tmp_path / "missing"), 1001, "/bin/sh")

    @pytest.mark.parametrize("uid", [0, -1])
    def test_root_uid(self, tmp_path: Path, uid: int) -> None:
        with pytest.raises(SandboxError, match="root"):
            check_preconditions(str(tmp_path), uid, "/bin/sh")

    def test_relative_command(self, tmp_path: Path) -> None:
        with pytest.raises(SandboxError, match="Command"):
            check_preconditions(str(tmp_path), 1001, "python3")


class TestResolveGroup:
    """Tests for gid selection."""

    def test_explicit_gid(self) -> None:
        assert resolve_group(1001, 2000) == 2000

    def test_primary_group_from_passwd(self) -> None:
        with patch("pwd.getpwuid", return_value=Mock(pw_gid=1500)):
            assert resolve_group(1001) == 1500

    def test_unknown_uid(self) -> None:
        with patch("pwd.getpwuid", side_effect=KeyError(1001)):
            with pytest.raises(SandboxError, match="passwd"):
                resolve_group(1001)

    def test_root_group_refused(self) -> None:
        with patch("pwd.getpwuid", return_value=Mock(pw_gid=0)):
            with pytest.raises(SandboxError, match="root group"):
                resolve_group(1001)


class TestDropPrivileges:
    """Tests for the permanent privilege drop."""

    def _patch_ids(self, uid: int = 1001, gid: int = 1001) -> dict[str, Mock]:
        return {
            "getuid": Mock(return_value=uid),
            "geteuid": Mock(return_value=uid),
            "getgid": Mock(return_value=gid),
            "getegid": Mock(return_value=gid),
        }

    def test_group_dropped_before_user(self) -> None:
        manager = MagicMock()
        manager.setuid.side_effect = [None, PermissionError]
        with (
            patch.object(os, "setgroups", manager.setgroups),
            patch.object(os, "setgid", manager.setgid),
            patch.object(os, "setuid", manager.setuid),
            patch.multiple(os, **self._patch_ids()),
        ):
            drop_privileges(1001, 1001)

        assert manager.mock_calls == [
            call.setgroups([1001]),
            call.setgid(1001),
            call.setuid(1001),
            call.setuid(0),
        ]

    def test_failed_setuid(self) -> None:
        with (
            patch.object(os, "setgroups"),
            patch.object(os, "setgid"),
            patch.object(os, "setuid", side_effect=PermissionError("EPERM")),
        ):
            with pytest.raises(SandboxError, match="Privilege drop failed"):
                drop_privileges(1001, 1001)

    def test_still_root_after_drop(self) -> None:
        with (
            patch.object(os, "setgroups"),
            patch.object(os, "setgid"),
            patch.object(os, "setuid"),
            patch.multiple(os, **self._patch_ids(uid=0)),
        ):
            with pytest.raises(SandboxError, match="did not take effect"):
                drop_privileges(1001, 1001)

    def test_reversible_drop_refused(self) -> None:
        with (
            patch.object(os, "setgroups"),
            patch.object(os, "setgid"),
            patch.object(os, "setuid"),
            patch.multiple(os, **self._patch_ids()),
        ):
            with pytest.raises(SandboxError, match="reversible"):
                drop_privileges(1001, 1001)


class TestResourceLimits:
    """Tests for rlimit application."""

    def test_only_set_limits_applied(self) -> None:
        with patch("resource.setrlimit") as setrlimit:
            ResourceLimits(cpu_seconds=31, memory_bytes=None, max_file_bytes=1024).apply()

        assert setrlimit.call_args_list == [
            call(resource.RLIMIT_CPU, (31, 31)),
            call(resource.RLIMIT_FSIZE, (1024, 1024)),
        ]

    def test_failure_wrapped(self) -> None:
        with patch("resource.setrlimit", side_effect=ValueError("not allowed")):
            with pytest.raises(SandboxError, match="setrlimit"):
                ResourceLimits(cpu_seconds=1).apply()


class TestEnterSandbox:
    """Tests for the full confinement sequence."""

    def test_sequence(self, tmp_path: Path) -> None:
        steps = MagicMock()
        limits = Mock(spec=ResourceLimits)
        with (
            patch("sandbox.isolation.resolve_group", return_value=1001),
            patch.object(os, "chroot", steps.chroot),
            patch.object(os, "chdir", steps.chdir),
            patch("sandbox.isolation.drop_privileges", steps.drop_privileges),
            patch.object(os, "execv", steps.execv),
        ):
            enter_sandbox(
                str(tmp_path),
                1001,
                "/usr/bin/python3",
                ["/workspaces/demo/main.py"],
                cwd="/workspaces/demo",
                limits=limits,
            )

        limits.apply.assert_called_once()
        assert steps.mock_calls == [
            call.chroot(str(tmp_path)),
            call.chdir("/"),
            call.drop_privileges(1001, 1001),
            call.chdir("/workspaces/demo"),
            call.execv("/usr/bin/python3", ["/usr/bin/python3", "/workspaces/demo/main.py"]),
        ]

    def test_precondition_failure_touches_nothing(self) -> None:
        with patch.object(os, "chroot") as chroot, patch.object(os, "execv") as execv:
            with pytest.raises(SandboxError):
                enter_sandbox("relative", 1001, "/bin/sh", [])

        chroot.assert_not_called()
        execv.assert_not_called()

    def test_chroot_failure(self, tmp_path: Path) -> None:
        with (
            patch("sandbox.isolation.resolve_group", return_value=1001),
            patch.object(os, "chroot", side_effect=PermissionError("EPERM")),
            patch.object(os, "execv") as execv,
        ):
            with pytest.raises(SandboxError, match="chroot"):
                enter_sandbox(str(tmp_path), 1001, "/bin/sh", [])

        execv.assert_not_called()

    def test_missing_cwd(self, tmp_path: Path) -> None:
        with (
            patch("sandbox.isolation.resolve_group", return_value=1001),
            patch.object(os, "chroot"),
            patch.object(os, "chdir", side_effect=[None, FileNotFoundError("missing")]),
            patch("sandbox.isolation.drop_privileges"),
            patch.object(os, "execv") as execv,
        ):
            with pytest.raises(SandboxError, match="working directory"):
                enter_sandbox(str(tmp_path), 1001, "/bin/sh", [], cwd="/workspaces/gone")

        execv.assert_not_called()

    def test_exec_failure(self, tmp_path: Path) -> None:
        with (
            patch("sandbox.isolation.resolve_group", return_value=1001),
            patch.object(os, "chroot"),
            patch.object(os, "chdir"),
            patch("sandbox.isolation.drop_privileges"),
            patch.object(os, "execv", side_effect=FileNotFoundError("no such file")),
        ):
            with pytest.raises(SandboxExecError):
                enter_sandbox(str(tmp_path), 1001, "/usr/bin/missing", [])


class TestToSandboxPath:
    """Tests for host to guest path translation."""

    def test_nested(self) -> None:
        assert to_sandbox_path(Path("/srv/rootfs"), Path("/srv/rootfs/workspaces/demo/a.py")) == "/workspaces/demo/a.py"

    def test_root_itself(self) -> None:
        assert to_sandbox_path(Path("/srv/rootfs"), Path("/srv/rootfs")) == "/"

    def test_outside_root(self) -> None:
        with pytest.raises(ValueError):
            to_sandbox_path(Path("/srv/rootfs"), Path("/etc/passwd"))
