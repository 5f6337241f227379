"""Reception: verifies, decrypts and routes inbound callbacks, then replies."""

from __future__ import annotations

from wecom_relay.core.accountant import Accountant
from wecom_relay.core.commands import CommandProcessor, MessageKind, classify
from wecom_relay.core.registry import AgentEndpoint, AgentRegistry
from wecom_relay.core.types import Guest
from wecom_relay.errors import (
    DecryptError,
    InternalError,
    NotFound,
    Overdue,
    ProviderError,
    SendError,
    SignatureMismatch,
    StorageError,
)
from wecom_relay.log import bind_request, get_logger
from wecom_relay.messenger.models import AppMessage, CallbackEnvelope

logger = get_logger(__name__)

RETRY_LATER_TEXT = "发生内部错误。请等一分钟再试，或者向管理员寻求帮助。"


def overdue_text(credit: float) -> str:
    return f"账户余额不足。当前余额{credit:.3f}"


class Reception:
    """Entry point for every callback addressed to ``/agent/{agent_id}``.

    ``handle_message`` is meant to run in the background after the HTTP
    handler has answered; it logs and drops anything it cannot process and
    never raises a RelayError.
    """

    def __init__(
        self,
        accountant: Accountant,
        registry: AgentRegistry,
        commands: CommandProcessor,
    ):
        self._accountant = accountant
        self._registry = registry
        self._commands = commands

    @property
    def accountant(self) -> Accountant:
        return self._accountant

    @property
    def registry(self) -> AgentRegistry:
        return self._registry

    def verify_url(
        self, agent_id: int, msg_signature: str, timestamp: str, nonce: str, echostr: str
    ) -> str:
        """Answer a URL-verification handshake with the decrypted ``echostr``.

        Raises SignatureMismatch, DecryptError, or NotFound when no codec is
        bound to *agent_id*.
        """
        bind_request(agent_id)
        if agent_id == self._accountant.agent_id:
            return self._accountant.verify_url(msg_signature, timestamp, nonce, echostr)

        endpoint = self._registry.get(agent_id)
        if endpoint is None:
            raise NotFound(f"找不到应用：{agent_id}")
        return endpoint.crypto.verify_and_decrypt(msg_signature, timestamp, nonce, echostr)

    async def handle_message(
        self, agent_id: int, msg_signature: str, timestamp: str, nonce: str, body: str
    ) -> None:
        bind_request(agent_id)

        try:
            envelope = CallbackEnvelope.from_xml(body)
        except ValueError as e:
            logger.warning("envelope_malformed", error=str(e))
            return

        if agent_id == self._accountant.agent_id:
            await self._handle_contact_event(msg_signature, timestamp, nonce, body)
            return

        endpoint = self._registry.get(agent_id)
        if endpoint is None:
            logger.warning("agent_unknown", to_user=envelope.to_user)
            return

        try:
            plaintext = endpoint.crypto.verify_and_decrypt(
                msg_signature, timestamp, nonce, envelope.encrypt
            )
        except (SignatureMismatch, DecryptError) as e:
            logger.warning("callback_rejected", error=str(e), kind=type(e).__name__)
            return

        try:
            message = AppMessage.from_xml(plaintext)
        except ValueError as e:
            logger.warning("message_malformed", error=str(e))
            return

        if not message.is_text:
            logger.info("message_ignored", msg_type=message.msg_type, from_user=message.from_user)
            return

        bind_request(agent_id, guest=message.from_user, msg_id=message.msg_id)
        try:
            guest = await self._identify(message.from_user)
        except (InternalError, StorageError, NotFound) as e:
            logger.error("guest_lookup_failed", error=str(e))
            return

        reply = await self._respond(endpoint, guest, message.content)
        if reply is not None:
            await self._send(endpoint, guest.name, reply)

    async def _handle_contact_event(
        self, msg_signature: str, timestamp: str, nonce: str, body: str
    ) -> None:
        try:
            guest = await self._accountant.handle_user_creation_event(
                msg_signature, timestamp, nonce, body
            )
        except InternalError as e:
            logger.error("contact_event_failed", error=str(e))
            return
        if guest is not None:
            logger.info("contact_event_registered", guest=guest.name)

    async def _identify(self, name: str) -> Guest:
        """Load the sender, registering unknown members with zero credit."""
        try:
            await self._accountant.verify_guest(name)
        except NotFound:
            logger.info("guest_unknown", guest=name)
            try:
                await self._accountant.register(Guest(name=name, credit=0.0, admin=False))
            except InternalError as e:
                # A concurrent message from the same member may have registered it first.
                logger.warning("guest_register_failed", error=str(e))
        except Overdue as e:
            logger.info("guest_overdue", credit=e.credit)
        return await self._accountant.get_guest(name)

    async def _respond(self, endpoint: AgentEndpoint, guest: Guest, text: str) -> str | None:
        kind = classify(text, guest)
        match kind:
            case MessageKind.ADMIN_COMMAND:
                return await self._commands.run_admin(text)
            case MessageKind.USER_COMMAND:
                return await self._commands.run_user(text, guest, endpoint.assistant)
            case _:
                return await self._chat(endpoint, guest, text)

    async def _chat(self, endpoint: AgentEndpoint, guest: Guest, text: str) -> str | None:
        if guest.credit < 0:
            logger.info("chat_refused", credit=guest.credit)
            return overdue_text(guest.credit)

        try:
            reply = await endpoint.assistant.chat(guest, text)
        except ProviderError as e:
            logger.error("provider_failed", error=str(e))
            return RETRY_LATER_TEXT
        except StorageError as e:
            logger.error("chat_storage_failed", error=str(e))
            return RETRY_LATER_TEXT

        try:
            await self._accountant.charge(guest.name, reply.cost)
        except (InternalError, NotFound) as e:
            logger.error("charge_failed", cost=reply.cost, error=str(e))
        return reply.content

    async def _send(self, endpoint: AgentEndpoint, to_user: str, text: str) -> None:
        try:
            await endpoint.messenger.send_text(to_user, endpoint.agent_id, text)
        except SendError as e:
            logger.error("reply_failed", errcode=e.errcode, errmsg=e.errmsg)
            return
        logger.debug("reply_sent", length=len(text))
