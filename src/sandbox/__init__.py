"""
Sandbox isolation for guest processes.

The server never confines a process itself. Every guest command is wrapped
by SandboxLauncher into an invocation of the privileged helper
(``python -m sandbox.executor``), which applies resource limits, chroots into
the sandbox root image, drops to the unprivileged uid and execs the command.
"""
