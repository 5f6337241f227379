"""Registry of configured assistant endpoints, keyed by agent id."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from wecom_relay.ai.assistant import Assistant
    from wecom_relay.messenger.base import Messenger
    from wecom_relay.messenger.crypto import WecomCrypto


@dataclass(frozen=True, slots=True)
class AgentEndpoint:
    """Everything needed to serve one WeCom application."""

    agent_id: int
    assistant: Assistant
    crypto: WecomCrypto
    messenger: Messenger


class AgentRegistry:
    """Tracks all assistant endpoints; filled at startup, read-only afterwards."""

    def __init__(self) -> None:
        self._endpoints: dict[int, AgentEndpoint] = {}

    def register(self, endpoint: AgentEndpoint) -> None:
        if endpoint.agent_id in self._endpoints:
            raise ValueError(f"agent {endpoint.agent_id} already registered")
        self._endpoints[endpoint.agent_id] = endpoint

    def get(self, agent_id: int) -> AgentEndpoint | None:
        return self._endpoints.get(agent_id)

    def all(self) -> list[AgentEndpoint]:
        return list(self._endpoints.values())

    def ids(self) -> list[int]:
        return list(self._endpoints.keys())
