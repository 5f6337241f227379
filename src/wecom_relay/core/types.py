"""Shared types and enumerations."""

from __future__ import annotations

from dataclasses import dataclass
from enum import IntEnum, StrEnum


class Role(StrEnum):
    """Message author roles accepted by chat-completion providers."""

    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"
    TOOL = "tool"
    FUNCTION = "function"

    @property
    def id(self) -> int:
        return _ROLE_IDS[self]

    @classmethod
    def from_id(cls, role_id: int) -> Role:
        """Map a stored role id back to a role; unknown ids degrade to USER."""
        return _ROLES_BY_ID.get(role_id, cls.USER)

    @classmethod
    def coerce(cls, value: str | None, default: Role | None = None) -> Role:
        try:
            return cls(value)
        except ValueError:
            return default or cls.USER


_ROLE_IDS = {
    Role.SYSTEM: 1,
    Role.USER: 2,
    Role.ASSISTANT: 3,
    Role.TOOL: 4,
    Role.FUNCTION: 5,
}
_ROLES_BY_ID = {v: k for k, v in _ROLE_IDS.items()}


class ContentType(IntEnum):
    TEXT = 1
    IMAGE = 2
    AUDIO = 3
    VIDEO = 4
    FILE = 5


@dataclass
class Guest:
    """A human end user of the messaging platform."""

    name: str
    credit: float = 0.0
    admin: bool = False
