"""Route modules for the Sandbox IDE API.

API v1 routes are in the v1/ subdirectory.
The WebSocket session channel (terminal) stays at the top level.
"""

from __future__ import annotations

from . import terminal

__all__ = ["terminal"]
