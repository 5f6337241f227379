"""Abstract messenger interface."""

from __future__ import annotations

from abc import ABC, abstractmethod

from wecom_relay.messenger.models import OutgoingMessage, SendResult


class Messenger(ABC):
    """Outbound side of a messaging platform.

    To add a new platform, subclass this and implement all abstract methods.
    """

    @abstractmethod
    async def send_message(self, message: OutgoingMessage) -> SendResult:
        """Deliver a text message to one user, raising SendError on rejection."""
        ...

    @abstractmethod
    async def close(self) -> None:
        """Release network resources."""
        ...

    async def send_text(self, to_user: str, agent_id: int, text: str) -> SendResult:
        return await self.send_message(OutgoingMessage(to_user=to_user, agent_id=agent_id, text=text))
