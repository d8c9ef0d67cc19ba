"""
Constants and configuration for the Sandbox IDE backend.
Centralizes all magic numbers and configuration values.
Includes Pydantic validation for environment variables.
"""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Any

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# ============================================================================
# Project Paths
# ============================================================================

#: Project root directory (parent of src/)
PROJECT_ROOT = Path(__file__).parent.parent.parent

#: Application version reported by the health endpoint and OpenAPI docs
APP_VERSION = "1.0.0"

# ============================================================================
# Session Configuration
# ============================================================================

#: Allowed characters for a session identifier. A session id becomes a single
#: directory name under the workspaces root, so separators and dot-only names
#: are never accepted.
SESSION_ID_PATTERN = r"^[A-Za-z0-9_.\-]{1,128}$"

#: Prefix for session ids derived from an anonymous channel connection
CONNECTION_SESSION_PREFIX = "conn_"

#: Prefix for generated terminal identifiers
TERMINAL_ID_PREFIX = "term_"

# ============================================================================
# Execution Configuration
# ============================================================================

#: Ordered candidate interpreter locations per language. The first candidate
#: that exists (inside the sandbox root when sandboxing is enabled) is used.
LANGUAGE_INTERPRETERS: dict[str, tuple[str, ...]] = {
    "python": ("/usr/bin/python3", "/usr/local/bin/python3", "/usr/bin/python"),
    "javascript": ("/usr/bin/node", "/usr/local/bin/node", "/usr/bin/nodejs"),
    "bash": ("/bin/bash", "/usr/bin/bash", "/bin/sh"),
}

#: Ordered candidate compiler locations for compiled languages
LANGUAGE_COMPILERS: dict[str, tuple[str, ...]] = {
    "c": ("/usr/bin/gcc", "/usr/local/bin/gcc", "/usr/bin/cc"),
    "cpp": ("/usr/bin/g++", "/usr/local/bin/g++", "/usr/bin/c++"),
}

#: Alternative language names accepted from clients
LANGUAGE_ALIASES: dict[str, str] = {
    "py": "python",
    "python3": "python",
    "js": "javascript",
    "node": "javascript",
    "sh": "bash",
    "shell": "bash",
    "c++": "cpp",
}

#: File extension used for ad hoc scripts written from submitted code
LANGUAGE_EXTENSIONS: dict[str, str] = {
    "python": ".py",
    "javascript": ".js",
    "bash": ".sh",
    "c": ".c",
    "cpp": ".cpp",
}

#: Prefix of temporary script files written into a workspace. Hidden files are
#: excluded from workspace listings.
TEMP_SCRIPT_PREFIX = ".script_"

#: Prefix of temporary binaries produced when running compiled languages
TEMP_BINARY_PREFIX = ".bin_"

#: Maximum bytes captured per output stream (10MB). Anything beyond is read
#: and discarded so the child never blocks on a full pipe.
MAX_OUTPUT_SIZE = 10 * 1024 * 1024

#: Marker appended to a stream that hit MAX_OUTPUT_SIZE
OUTPUT_TRUNCATED_MARKER = "\n[output truncated]\n"

#: Read size for draining child output pipes
PIPE_READ_CHUNK_SIZE = 64 * 1024

# ============================================================================
# Terminal Configuration
# ============================================================================

#: Fallback shells tried when the configured shell is missing
TERMINAL_FALLBACK_SHELLS: tuple[str, ...] = ("/bin/bash", "/bin/sh")

#: Terminal type exported to interactive shells
TERMINAL_TERM = "xterm-256color"

#: Bytes read from a pty master per readiness callback
PTY_READ_CHUNK_SIZE = 4096

#: Seconds between SIGHUP and SIGKILL when closing a terminal
TERMINAL_KILL_GRACE = 2.0

#: Seconds a WebSocket may stay silent before the server sends a keepalive ping
WS_KEEPALIVE_INTERVAL = 30.0

# ============================================================================
# Logging Configuration
# ============================================================================

#: Maximum size in bytes for log files before rotation (10MB).
LOG_MAX_SIZE = 10 * 1024 * 1024

#: Number of event log backups to retain during rotation.
LOG_BACKUP_COUNT_EVENTS = 5

#: Number of error log backups to retain during rotation.
LOG_BACKUP_COUNT_ERRORS = 3

#: Maximum characters of submitted code shown in log previews.
LOG_PREVIEW_LENGTH = 50

# ============================================================================
# File API Configuration
# ============================================================================

#: Maximum size of a file read through the file API (5MB)
MAX_FILE_SIZE = 5 * 1024 * 1024

#: Maximum depth walked when listing a workspace tree
MAX_TREE_DEPTH = 16

# ============================================================================
# Error Messages
# ============================================================================

ERROR_NULL_BYTE_IN_PATH = "Null byte in path not allowed"
ERROR_PATH_OUTSIDE_WORKSPACE = "Access denied: path is outside the workspace"
ERROR_PATH_IS_WORKSPACE_ROOT = "Access denied: path refers to the workspace root"
ERROR_SYMLINK_ESCAPE = "Access denied: path resolves outside the workspace"
ERROR_SESSION_ID_REQUIRED = "Session id is required"
ERROR_SESSION_ID_INVALID = "Session id contains invalid characters"
ERROR_EXECUTION_TIMEOUT = "Execution timed out after {timeout:g} seconds"

# ============================================================================
# Session Channel Message Types
# ============================================================================

MSG_TYPE_CREATE_TERMINAL = "create-terminal"
MSG_TYPE_TERMINAL_INPUT = "terminal-input"
MSG_TYPE_TERMINAL_RESIZE = "terminal-resize"
MSG_TYPE_TERMINAL_CREATED = "terminal-created"
MSG_TYPE_TERMINAL_OUTPUT = "terminal-output"
MSG_TYPE_TERMINAL_EXIT = "terminal-exit"
MSG_TYPE_PING = "ping"
MSG_TYPE_PONG = "pong"

# ============================================================================
# Environment Settings
# ============================================================================


class Settings(BaseSettings):
    """Environment settings with validation.

    Loads from environment variables and .env file.
    Validates at startup to fail fast on configuration errors.
    """

    # Optional debug setting
    debug: bool = Field(default=False, description="Enable debug logging")

    # API server
    api_port: int = Field(default=8000, description="FastAPI port")
    api_host: str = Field(default="0.0.0.0", description="FastAPI host")
    cors_allow_origins: str = Field(
        default="*",
        description="Comma-separated list of allowed CORS origins",
    )

    # Sandbox isolation
    sandbox_enabled: bool = Field(
        default=True,
        description="Run guest processes through the chroot/privilege-drop helper",
    )
    sandbox_rootfs: Path = Field(
        default=PROJECT_ROOT / "sandbox" / "rootfs",
        description="Root image that guest processes are confined to",
    )
    sandbox_uid: int = Field(default=1001, description="Unprivileged uid guest processes run as")
    sandbox_gid: int | None = Field(
        default=None,
        description="Unprivileged gid (defaults to the uid's primary group)",
    )
    sandbox_use_sudo: bool = Field(default=True, description="Invoke the isolation helper through sudo -n")
    sandbox_python: str | None = Field(
        default=None,
        description="Interpreter used to run the isolation helper (defaults to the server's)",
    )
    sandbox_cpu_limit: int | None = Field(
        default=None,
        description="RLIMIT_CPU seconds for guest processes (defaults to execution timeout + 1)",
    )
    sandbox_memory_limit_mb: int | None = Field(
        default=512,
        description="RLIMIT_AS in megabytes for guest processes (None disables)",
    )

    # Workspaces
    workspaces_path: Path | None = Field(
        default=None,
        description="Scratch area holding per-session workspaces (defaults to <rootfs>/workspaces)",
    )
    workspace_mode: int = Field(default=0o777, description="Permission bits for new workspace directories")

    # Execution
    execution_timeout: float = Field(default=30.0, gt=0, description="Hard execution timeout (seconds)")
    execution_kill_grace: float = Field(
        default=1.0,
        gt=0,
        description="Watchdog delay before the kill is re-issued (seconds)",
    )

    # Terminals
    terminal_shell: str = Field(default="/bin/bash", description="Interactive shell for session terminals")
    terminal_cols: int = Field(default=80, gt=0, description="Initial terminal width")
    terminal_rows: int = Field(default=24, gt=0, description="Initial terminal height")
    terminal_close_on_disconnect: bool = Field(
        default=False,
        description="Hang up a session's terminal when its last channel disconnects",
    )

    # WebSocket limits
    ws_idle_timeout: float = Field(default=600.0, description="Close channels idle longer than this (seconds)")
    ws_max_connections: int = Field(default=100, description="Maximum concurrent channels")
    ws_max_connections_per_session: int = Field(default=3, description="Maximum channels per session")
    shutdown_connection_drain_timeout: float = Field(
        default=10.0,
        description="Seconds allowed for closing channels on shutdown",
    )

    # Request limits
    max_request_body_size: int = Field(default=10 * 1024 * 1024, description="Maximum request body size (bytes)")
    max_file_size: int = Field(default=MAX_FILE_SIZE, description="Largest workspace file served by the file API")

    # Logging
    enable_content_logging: bool = Field(
        default=False,
        description="Include (redacted) submitted code previews in logs",
    )

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,  # Allow both SANDBOX_ROOTFS and sandbox_rootfs
        extra="ignore",  # Ignore extra environment variables
    )

    @field_validator("sandbox_uid")
    @classmethod
    def validate_sandbox_uid(cls, v: int) -> int:
        """Guest processes must never run as root."""
        if v <= 0:
            raise ValueError("sandbox_uid must be a non-root uid")
        return v

    @field_validator("sandbox_gid")
    @classmethod
    def validate_sandbox_gid(cls, v: int | None) -> int | None:
        """Guest processes must never run with the root group."""
        if v is not None and v <= 0:
            raise ValueError("sandbox_gid must be a non-root gid")
        return v

    @field_validator("sandbox_rootfs", "workspaces_path")
    @classmethod
    def absolutize_path(cls, v: Path | None) -> Path | None:
        """Resolve relative paths against the project root."""
        if v is None:
            return None
        path = Path(v).expanduser()
        if not path.is_absolute():
            path = PROJECT_ROOT / path
        return path.resolve()

    def model_post_init(self, __context: Any) -> None:
        """Default the workspaces path and check it lies inside the sandbox root."""
        if self.workspaces_path is None:
            self.workspaces_path = self.sandbox_rootfs / "workspaces"
        if self.sandbox_enabled and not self.workspaces_path.is_relative_to(self.sandbox_rootfs):
            raise ValueError("workspaces_path must be inside sandbox_rootfs when sandbox_enabled is true")

    @property
    def workspaces_root(self) -> Path:
        """Workspaces path with the default applied."""
        return self.workspaces_path or self.sandbox_rootfs / "workspaces"

    @property
    def cors_origins_list(self) -> list[str]:
        """CORS origins as a list."""
        return [origin.strip() for origin in self.cors_allow_origins.split(",") if origin.strip()]

    @property
    def effective_cpu_limit(self) -> int:
        """CPU seconds granted to a guest process."""
        if self.sandbox_cpu_limit is not None:
            return self.sandbox_cpu_limit
        return int(self.execution_timeout) + 1


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance.

    Uses LRU cache to ensure we only load and validate settings once.
    This function will raise validation errors at startup if config is invalid.
    """
    return Settings()
