"""Assistant engine: bounded prompt assembly, provider call, and history bookkeeping."""

from __future__ import annotations

from dataclasses import dataclass

from wecom_relay.ai.client import AIClient
from wecom_relay.ai.conversation import build_prompt
from wecom_relay.ai.tokenizer import TokenCounter
from wecom_relay.config import AssistantConfig
from wecom_relay.core.types import Guest, Role
from wecom_relay.errors import NotFound, StorageError
from wecom_relay.log import get_logger
from wecom_relay.storage.conversation_repo import ConversationRepository
from wecom_relay.storage.models import MessageRecord

logger = get_logger(__name__)


@dataclass(frozen=True, slots=True)
class Reply:
    content: str
    cost: float


class Assistant:
    """One configured persona bound to an agent id and a provider.

    Messages are persisted only after the provider answered, so a failed
    exchange leaves the conversation untouched.
    """

    def __init__(
        self,
        config: AssistantConfig,
        provider: AIClient,
        conversations: ConversationRepository,
        counter: TokenCounter,
    ):
        self._config = config
        self._provider = provider
        self._conversations = conversations
        self._counter = counter

    @property
    def agent_id(self) -> int:
        return self._config.agent_id

    @property
    def name(self) -> str:
        return self._config.name

    @property
    def provider(self) -> AIClient:
        return self._provider

    @property
    def prompt_budget(self) -> int:
        return self._provider.max_tokens - self._config.token_reservation

    async def _active_conversation_id(self, guest: Guest) -> int:
        return await self._conversations.get_or_create_active(guest.name, self.agent_id)

    async def chat(self, guest: Guest, user_text: str) -> Reply:
        """Answer *user_text* in the guest's active conversation.

        Raises ProviderError or StorageError; neither is retried here.
        """
        try:
            conversation_id = await self._active_conversation_id(guest)
            history = await self._conversations.get_messages(conversation_id)
        except NotFound as e:
            raise StorageError(f"获取会话记录失败。{e}") from e

        prompt = build_prompt(
            history,
            user_text,
            system_prompt=self._config.prompt,
            budget=self.prompt_budget,
            counter=self._counter,
        )
        if prompt.history_dropped:
            logger.warning(
                "context_window_trimmed",
                guest=guest.name,
                dropped=prompt.history_dropped,
                kept=prompt.history_used,
                budget=self.prompt_budget,
            )

        response = await self._provider.chat(prompt.messages)
        cost = self._provider.cost(response)

        await self._conversations.append_messages(
            conversation_id,
            [
                MessageRecord(role=Role.USER, content=user_text),
                MessageRecord(
                    role=response.role,
                    content=response.content,
                    cost=cost,
                    prompt_tokens=response.prompt_tokens,
                    completion_tokens=response.completion_tokens,
                ),
            ],
        )
        logger.info(
            "chat_completed",
            guest=guest.name,
            prompt_tokens=response.prompt_tokens,
            completion_tokens=response.completion_tokens,
            cost=cost,
        )
        return Reply(content=response.content, cost=cost)

    async def audit(self, guest: Guest) -> str:
        """Summarise token usage and spend of the active conversation."""
        conversation_id = await self._active_conversation_id(guest)
        messages = await self._conversations.get_messages(conversation_id)

        last = messages[-1].tokens if messages else 0
        prompt_tokens = sum(m.prompt_tokens for m in messages)
        completion_tokens = sum(m.completion_tokens for m in messages)
        cost = sum(m.cost for m in messages)
        return (
            f"当前会话长度为 {last}。累计消耗prompt token {prompt_tokens}个，"
            f"completion token {completion_tokens}个，费用{cost:.3f}。"
        )

    async def new_conversation(self, guest: Guest) -> None:
        await self._conversations.create_conversation(guest.name, self.agent_id)
