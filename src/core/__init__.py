"""
Core Application Layer - Sessions, Terminals and Execution
==========================================================

Provides the session-level business logic of the Sandbox IDE backend.

Modules:
    constants: Configuration values, language tables and Pydantic settings validation
    exceptions: AppException hierarchy carrying application error codes
    session_registry: Session id to workspace/terminal/executions mapping
    terminal: One interactive pty shell per session, relayed over the session channel
    execution: One-shot interpreter and compiler runs with a hard timeout

Key Components:

Session Registry (session_registry.py):
    Single owner of session state. Workspaces are created lazily under the
    configured workspaces root and are never deleted by the server.

Terminal Multiplexer (terminal.py):
    Spawns the shell on a fresh pty through the sandbox launcher, relays its
    output in order, forwards keystrokes and resizes, and reports the exit
    code exactly once.

Execution Dispatcher (execution.py):
    Resolves the language to an installed interpreter or compiler, runs it in
    its own process group and kills the whole group on timeout. A watchdog
    re-issues the kill after a short grace period.

Configuration (constants.py):
    Centralized configuration using Pydantic Settings for validation:
    - Sandbox root image, guest uid/gid and resource limits
    - Execution timeout and watchdog grace
    - Terminal shell and size, channel limits
"""
