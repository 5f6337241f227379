"""Data models for storage layer."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from wecom_relay.core.types import ContentType, Role


@dataclass
class ConversationRecord:
    guest_id: int
    agent_id: int
    active: bool
    created_at: datetime
    updated_at: datetime
    id: Optional[int] = None


@dataclass(frozen=True)
class MessageRecord:
    role: Role
    content: str
    content_type: ContentType = ContentType.TEXT
    cost: float = 0.0
    prompt_tokens: int = 0
    completion_tokens: int = 0
    # Assigned by the database on insert.
    created_at: Optional[datetime] = None
    conversation_id: Optional[int] = None
    id: Optional[int] = None

    @property
    def tokens(self) -> int:
        return self.prompt_tokens + self.completion_tokens
