"""
Privileged isolation helper.

Invoked by the server once per guest process, typically through sudo:

    sudo -n python -m sandbox.executor --cwd /workspaces/demo --timeout 30 \\
        /srv/rootfs 1001 /usr/bin/python3 /workspaces/demo/main.py

The helper forks. The child confines itself, drops privilege and execs the
command; the parent stays root, enforces --timeout and relays stop signals to
the guest's process group (see sandbox.supervisor).

Exit status 126 means isolation failed and nothing was executed; 127 means
the target command could not be executed inside the sandbox. Otherwise the
guest's own status is returned, 128 + N if it died from signal N.
"""

from __future__ import annotations

import argparse
import contextlib
import os
import signal
import sys

from sandbox.isolation import (
    ResourceLimits,
    SandboxError,
    SandboxExecError,
    check_preconditions,
    enter_sandbox,
)
from sandbox.supervisor import RELAYED_SIGNALS, GuestSupervisor, claim_process_group

EXIT_SANDBOX_FAILED = 126
EXIT_EXEC_FAILED = 127


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="sandbox-exec",
        description="Run a command inside a chroot as an unprivileged user",
    )
    parser.add_argument("--cwd", default="/", help="Working directory inside the sandbox root")
    parser.add_argument("--gid", type=int, default=None, help="Group id (defaults to the uid's primary group)")
    parser.add_argument("--cpu-limit", type=int, default=None, help="RLIMIT_CPU in seconds")
    parser.add_argument("--memory-limit", type=int, default=None, help="RLIMIT_AS in bytes")
    parser.add_argument("--file-size-limit", type=int, default=None, help="RLIMIT_FSIZE in bytes")
    parser.add_argument("--timeout", type=float, default=None, help="Wall-clock limit in seconds")
    parser.add_argument("--kill-grace", type=float, default=1.0, help="Seconds between repeated kills")
    parser.add_argument("root", help="Absolute path of the sandbox root image")
    parser.add_argument("uid", type=int, help="Unprivileged uid to run as")
    parser.add_argument("command", help="Absolute path of the command inside the sandbox root")
    parser.add_argument("args", nargs=argparse.REMAINDER, help="Arguments passed to the command")
    return parser


def run_guest(args: argparse.Namespace) -> int:
    """Confine and exec the guest; only returns (with an exit status) on failure."""
    limits = ResourceLimits(
        cpu_seconds=args.cpu_limit,
        memory_bytes=args.memory_limit,
        max_file_bytes=args.file_size_limit,
    )
    try:
        enter_sandbox(
            args.root,
            args.uid,
            args.command,
            list(args.args),
            cwd=args.cwd,
            gid=args.gid,
            limits=limits,
        )
    except SandboxExecError as e:
        print(f"sandbox-exec: {e}", file=sys.stderr)
        return EXIT_EXEC_FAILED
    except SandboxError as e:
        print(f"sandbox-exec: {e}", file=sys.stderr)
        return EXIT_SANDBOX_FAILED
    # enter_sandbox only returns by raising
    return EXIT_SANDBOX_FAILED


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    try:
        check_preconditions(args.root, args.uid, args.command)
    except SandboxError as e:
        print(f"sandbox-exec: {e}", file=sys.stderr)
        return EXIT_SANDBOX_FAILED

    # Held until the parent's relay handlers are installed
    saved_mask = signal.pthread_sigmask(signal.SIG_BLOCK, RELAYED_SIGNALS)
    pid = os.fork()
    if pid == 0:
        status = EXIT_SANDBOX_FAILED
        try:
            signal.pthread_sigmask(signal.SIG_SETMASK, saved_mask)
            claim_process_group()
            status = run_guest(args)
        except OSError as e:
            print(f"sandbox-exec: cannot start guest process group: {e}", file=sys.stderr)
        finally:
            sys.stderr.flush()
            os._exit(status)

    # Also done here so the group exists before the first kill can be sent
    with contextlib.suppress(OSError):
        os.setpgid(pid, pid)
    supervisor = GuestSupervisor(pid, timeout=args.timeout, kill_grace=args.kill_grace)
    supervisor.install_handlers()
    signal.pthread_sigmask(signal.SIG_SETMASK, saved_mask)
    return supervisor.wait()


if __name__ == "__main__":
    sys.exit(main())
