"""
Session channel message schemas.

Client frames are validated here before they reach the terminal multiplexer.
"""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field


class ChannelMessage(BaseModel):
    """Common shape of client frames."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class CreateTerminalMessage(ChannelMessage):
    type: Literal["create-terminal"]
    session_id: str | None = Field(default=None, alias="sessionId")


class TerminalInputMessage(ChannelMessage):
    type: Literal["terminal-input"]
    term_id: str = Field(..., alias="termId")
    input: str


class TerminalResizeMessage(ChannelMessage):
    type: Literal["terminal-resize"]
    term_id: str = Field(..., alias="termId")
    cols: int
    rows: int
