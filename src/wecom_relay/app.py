"""Application orchestrator - wires all components and manages lifecycle."""

from __future__ import annotations

from collections.abc import Callable

from wecom_relay.ai.assistant import Assistant
from wecom_relay.ai.client import AIClient, ProviderClient
from wecom_relay.ai.tokenizer import TiktokenCounter, TokenCounter
from wecom_relay.config import AppConfig, AssistantConfig
from wecom_relay.core.accountant import Accountant
from wecom_relay.core.commands import CommandProcessor
from wecom_relay.core.reception import Reception
from wecom_relay.core.registry import AgentEndpoint, AgentRegistry
from wecom_relay.log import get_logger
from wecom_relay.messenger.crypto import WecomCrypto
from wecom_relay.messenger.wecom import WecomMessenger
from wecom_relay.services.dispatcher import TaskDispatcher
from wecom_relay.storage.conversation_repo import ConversationRepository
from wecom_relay.storage.database import Database
from wecom_relay.storage.guest_repo import GuestRepository

logger = get_logger(__name__)


class RelayApp:
    """Top-level application orchestrator.

    Expects a config whose secrets are already resolved. Everything is
    built once here; ``start``/``stop`` only open and close resources.
    """

    def __init__(
        self,
        config: AppConfig,
        counter_factory: Callable[[str], TokenCounter] = TiktokenCounter,
    ):
        self.config = config
        self.db = Database(config.storage_path)
        self.guest_repo = GuestRepository(self.db)
        self.conversation_repo = ConversationRepository(self.db)
        self.dispatcher = TaskDispatcher()

        self.accountant = Accountant(
            agent_id=config.accountant.agent_id,
            guests=self.guest_repo,
            crypto=WecomCrypto(config.accountant.token, config.accountant.key),
        )

        self._providers: dict[int, AIClient] = {}
        self._counters: dict[str, TokenCounter] = {}
        self._counter_factory = counter_factory

        self.registry = AgentRegistry()
        for assistant_cfg in config.assistants:
            self.registry.register(self._create_endpoint(assistant_cfg))

        self.commands = CommandProcessor(self.accountant)
        self.reception = Reception(self.accountant, self.registry, self.commands)

    def _provider(self, provider_id: int) -> AIClient:
        if provider_id not in self._providers:
            self._providers[provider_id] = ProviderClient(self.config.provider(provider_id))
        return self._providers[provider_id]

    def _counter(self, encoding: str) -> TokenCounter:
        if encoding not in self._counters:
            self._counters[encoding] = self._counter_factory(encoding)
        return self._counters[encoding]

    def _create_endpoint(self, cfg: AssistantConfig) -> AgentEndpoint:
        provider_cfg = self.config.provider(cfg.provider_id)
        assistant = Assistant(
            config=cfg,
            provider=self._provider(cfg.provider_id),
            conversations=self.conversation_repo,
            counter=self._counter(provider_cfg.encoding),
        )
        messenger = WecomMessenger(
            corp_id=self.config.wecom.corp_id,
            secret=cfg.secret,
            api_base=self.config.wecom.api_base,
            timeout=self.config.wecom.timeout,
        )
        return AgentEndpoint(
            agent_id=cfg.agent_id,
            assistant=assistant,
            crypto=WecomCrypto(cfg.token, cfg.key),
            messenger=messenger,
        )

    async def start(self) -> None:
        """Open storage and begin accepting background work."""
        await self.db.initialize(self.config.admin_account)
        await self.dispatcher.start()
        for endpoint in self.registry.all():
            logger.info(
                "assistant_ready",
                agent_id=endpoint.agent_id,
                name=endpoint.assistant.name,
                prompt_budget=endpoint.assistant.prompt_budget,
            )
        logger.info(
            "wecom_relay_started",
            assistants=len(self.registry.ids()),
            accountant=self.accountant.agent_id,
        )

    async def stop(self) -> None:
        """Drain pending replies, then release network clients and storage."""
        await self.dispatcher.stop()

        for endpoint in self.registry.all():
            try:
                await endpoint.messenger.close()
            except Exception as e:
                logger.error("messenger_close_error", agent_id=endpoint.agent_id, error=str(e))
        for provider in self._providers.values():
            try:
                await provider.close()
            except Exception as e:
                logger.error("provider_close_error", error=str(e))

        await self.db.close()
        logger.info("wecom_relay_stopped")
