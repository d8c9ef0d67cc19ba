"""
Root-side supervision of a sandboxed guest.

The helper forks: the child confines itself and execs the guest in a process
group of its own, the parent stays privileged and watches it. Only the parent
can signal the guest once it runs under the sandbox uid, so it owns the
deadline and relays the server's stop signals:

- timeout expired: SIGKILL to the guest group, repeated every grace period
- SIGTERM: SIGKILL to the guest group
- SIGHUP, SIGINT, SIGQUIT: forwarded as is, then SIGKILL after the grace period
- parent (sudo or the server) gone: SIGKILL to the guest group
"""

from __future__ import annotations

import contextlib
import os
import signal
import time

from collections.abc import Callable

#: Signals the server (through sudo) may send to the helper
RELAYED_SIGNALS = (signal.SIGTERM, signal.SIGHUP, signal.SIGINT, signal.SIGQUIT)

POLL_INTERVAL = 0.05


def kill_group(pgid: int, sig: int = signal.SIGKILL) -> None:
    with contextlib.suppress(ProcessLookupError):
        os.killpg(pgid, sig)


def exit_status(wait_status: int) -> int:
    """Shell-style exit status: the guest's code, or 128 + signal if it was killed."""
    code = os.waitstatus_to_exitcode(wait_status)
    return 128 - code if code < 0 else code


def claim_process_group() -> None:
    """Run in the forked child: lead a new process group.

    On a terminal the new group also becomes the foreground job, so keyboard
    signals reach the guest and not the supervisor.
    """
    os.setpgid(0, 0)
    if os.isatty(0):
        previous = signal.signal(signal.SIGTTOU, signal.SIG_IGN)
        try:
            os.tcsetpgrp(0, os.getpgrp())
        finally:
            signal.signal(signal.SIGTTOU, previous)


class GuestSupervisor:
    """Deadline and signal relay for one guest process group."""

    def __init__(
        self,
        pid: int,
        timeout: float | None = None,
        kill_grace: float = 1.0,
        clock: Callable[[], float] = time.monotonic,
        parent_pid: int | None = None,
    ) -> None:
        self.pid = pid
        self.kill_grace = kill_grace
        self.clock = clock
        self.deadline = clock() + timeout if timeout else None
        self.kill_at: float | None = None
        self.parent_pid = os.getppid() if parent_pid is None else parent_pid

    def _kill(self, now: float) -> None:
        kill_group(self.pid)
        self.kill_at = now + self.kill_grace

    def on_signal(self, signum: int, frame: object = None) -> None:
        now = self.clock()
        if signum == signal.SIGTERM:
            self._kill(now)
            return
        kill_group(self.pid, signum)
        if self.kill_at is None:
            self.kill_at = now + self.kill_grace

    def install_handlers(self) -> None:
        for sig in RELAYED_SIGNALS:
            signal.signal(sig, self.on_signal)

    def tick(self) -> None:
        """Apply whichever of the deadline, escalation or orphan checks is due."""
        now = self.clock()
        if self.deadline is not None and now >= self.deadline:
            self.deadline = None
            self._kill(now)
        elif self.kill_at is not None and now >= self.kill_at:
            self._kill(now)
        elif os.getppid() != self.parent_pid:
            self._kill(now)

    def wait(self) -> int:
        """Block until the guest exits; returns its shell-style exit status."""
        while True:
            pid, status = os.waitpid(self.pid, os.WNOHANG)
            if pid == self.pid:
                # Anything the guest left behind in its group goes with it
                kill_group(self.pid)
                return exit_status(status)
            self.tick()
            time.sleep(POLL_INTERVAL)


__all__ = ["GuestSupervisor", "RELAYED_SIGNALS", "claim_process_group", "exit_status", "kill_group"]
