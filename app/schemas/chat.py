"""Pydantic schemas for inbound chat-completion bodies.

Unknown keys are ignored; the normalizer turns a validated body into a ChatRequest.
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class ChatMessageIn(BaseModel):
    """One conversation turn as sent by the client."""

    model_config = ConfigDict(extra="ignore")

    role: str = Field(min_length=1)
    content: Any = ""
    name: str | None = None
    tool_calls: list[dict[str, Any]] | None = None
    tool_call_id: str | None = None


class ChatCompletionBody(BaseModel):
    """Inbound body accepted by every content route."""

    model_config = ConfigDict(extra="ignore")

    model: str | None = None
    messages: list[ChatMessageIn] | None = None
    query: str | None = Field(None, description="Search prompt, expanded into messages on the search route")
    temperature: float | None = None
    top_p: float | None = None
    max_tokens: int | None = None
    tools: list[dict[str, Any]] | None = None
    tool_choice: str | dict[str, Any] | None = None
    stream: bool | None = None
