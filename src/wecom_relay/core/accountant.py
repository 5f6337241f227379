"""Accountant: guest accounts, credit checks and the contact-directory callback."""

from __future__ import annotations

from wecom_relay.core.types import Guest
from wecom_relay.errors import (
    DecryptError,
    InternalError,
    Overdue,
    SignatureMismatch,
    StorageError,
)
from wecom_relay.log import get_logger
from wecom_relay.messenger.crypto import WecomCrypto
from wecom_relay.messenger.models import CallbackEnvelope, ContactEvent
from wecom_relay.storage.guest_repo import GuestRepository

logger = get_logger(__name__)

CREATE_USER = "create_user"


class Accountant:
    """Owns guest accounts.

    The contact directory calls back on its own agent id with its own token
    and key, so the accountant carries a dedicated codec.
    """

    def __init__(self, agent_id: int, guests: GuestRepository, crypto: WecomCrypto):
        self._agent_id = agent_id
        self._guests = guests
        self._crypto = crypto

    @property
    def agent_id(self) -> int:
        return self._agent_id

    @property
    def crypto(self) -> WecomCrypto:
        return self._crypto

    async def register(self, guest: Guest) -> None:
        try:
            await self._guests.create(guest)
        except StorageError as e:
            raise InternalError(f"新建用户失败。用户名：{guest.name}，{e}") from e
        logger.info("guest_registered", guest=guest.name, credit=guest.credit, admin=guest.admin)

    async def get_guest(self, name: str) -> Guest:
        return await self._guests.get(name)

    async def get_guests(self) -> list[Guest]:
        try:
            return await self._guests.list_all()
        except StorageError as e:
            raise InternalError(f"无法从数据库中获得用户。{e}") from e

    async def verify_guest(self, name: str) -> None:
        """Raise NotFound for unknown guests and Overdue when credit <= 0."""
        guest = await self._guests.get(name)
        if guest.credit <= 0:
            raise Overdue(guest.credit)

    async def update_guest(self, guest: Guest) -> None:
        try:
            await self._guests.update(guest)
        except StorageError as e:
            raise InternalError(f"更新用户失败。{e}") from e

    async def charge(self, name: str, amount: float) -> Guest:
        """Debit *amount* from the guest's credit as one relative update."""
        try:
            guest = await self._guests.adjust_credit(name, -amount)
        except StorageError as e:
            raise InternalError(f"更新用户账户失败。{name}, {e}") from e
        logger.info("guest_charged", guest=name, amount=amount, credit=guest.credit)
        return guest

    async def recharge(self, name: str, amount: float) -> Guest:
        """Add a signed *amount* to the guest's credit."""
        try:
            guest = await self._guests.adjust_credit(name, amount)
        except StorageError as e:
            raise InternalError(f"更新用户余额出错。{e}") from e
        logger.info("guest_recharged", guest=name, amount=amount, credit=guest.credit)
        return guest

    async def set_admin(self, name: str, admin: bool) -> None:
        try:
            await self._guests.set_admin(name, admin)
        except StorageError as e:
            raise InternalError(f"更新管理员属性出错。{e}") from e
        logger.info("guest_admin_changed", guest=name, admin=admin)

    def verify_url(self, msg_signature: str, timestamp: str, nonce: str, echostr: str) -> str:
        """Answer the contact directory's URL verification handshake."""
        return self._crypto.verify_and_decrypt(msg_signature, timestamp, nonce, echostr)

    async def handle_user_creation_event(
        self, msg_signature: str, timestamp: str, nonce: str, body: str
    ) -> Guest | None:
        """Register the member announced by a ``create_user`` contact event.

        Returns the new guest, or None for other contact changes.
        """
        try:
            envelope = CallbackEnvelope.from_xml(body)
            plaintext = self._crypto.verify_and_decrypt(
                msg_signature, timestamp, nonce, envelope.encrypt
            )
            event = ContactEvent.from_xml(plaintext)
        except (SignatureMismatch, DecryptError) as e:
            raise InternalError(f"校验或解密通讯录事件失败。{e}") from e
        except ValueError as e:
            raise InternalError(f"解析通讯录事件失败。{e}") from e

        if event.change_type != CREATE_USER:
            logger.info("contact_event_ignored", change_type=event.change_type, user_id=event.user_id)
            return None

        guest = Guest(name=event.user_id, credit=0.0, admin=False)
        await self.register(guest)
        return guest
