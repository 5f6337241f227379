"""Tests for guest accounting and the contact-directory callback."""

import pytest

from conftest import ADMIN
from wecom_relay.core.accountant import Accountant
from wecom_relay.core.types import Guest
from wecom_relay.errors import (
    DecryptError,
    InternalError,
    NotFound,
    Overdue,
    SignatureMismatch,
)
from wecom_relay.messenger.crypto import WecomCrypto

ENVELOPE = "<xml><ToUserName><![CDATA[ww-corp]]></ToUserName><Encrypt><![CDATA[{encrypt}]]></Encrypt></xml>"
CONTACT_EVENT = (
    "<xml><ToUserName><![CDATA[ww-corp]]></ToUserName>"
    "<FromUserName><![CDATA[sys]]></FromUserName>"
    "<CreateTime>1700000000</CreateTime>"
    "<MsgType><![CDATA[event]]></MsgType>"
    "<Event><![CDATA[change_contact]]></Event>"
    "<ChangeType><![CDATA[{change_type}]]></ChangeType>"
    "<UserID><![CDATA[{user_id}]]></UserID></xml>"
)


@pytest.fixture
def accountant(guests, crypto) -> Accountant:
    return Accountant(agent_id=1000001, guests=guests, crypto=crypto)


def _signed_event(crypto: WecomCrypto, change_type: str, user_id: str) -> tuple[str, str, str, str]:
    ciphertext, nonce = crypto.encrypt(
        CONTACT_EVENT.format(change_type=change_type, user_id=user_id), "ww-corp"
    )
    timestamp = "1700000000"
    signature = crypto.signature(timestamp, nonce, ciphertext)
    return signature, timestamp, nonce, ENVELOPE.format(encrypt=ciphertext)


@pytest.mark.asyncio
async def test_register_and_get(accountant):
    await accountant.register(Guest(name="alice", credit=2.0))

    assert await accountant.get_guest("alice") == Guest(name="alice", credit=2.0)
    assert [g.name for g in await accountant.get_guests()] == [ADMIN, "alice"]


@pytest.mark.asyncio
async def test_register_duplicate_is_internal_error(accountant):
    await accountant.register(Guest(name="alice"))

    with pytest.raises(InternalError):
        await accountant.register(Guest(name="alice"))


@pytest.mark.asyncio
async def test_verify_guest(accountant):
    await accountant.register(Guest(name="rich", credit=1.0))
    await accountant.register(Guest(name="broke", credit=0.0))
    await accountant.register(Guest(name="owing", credit=-0.5))

    await accountant.verify_guest("rich")
    with pytest.raises(Overdue) as excinfo:
        await accountant.verify_guest("owing")
    assert excinfo.value.credit == -0.5
    with pytest.raises(Overdue):
        await accountant.verify_guest("broke")
    with pytest.raises(NotFound):
        await accountant.verify_guest("ghost")


@pytest.mark.asyncio
async def test_charge_and_recharge(accountant):
    await accountant.register(Guest(name="alice", credit=1.0))

    after_charge = await accountant.charge("alice", 0.25)
    after_recharge = await accountant.recharge("alice", 10)

    assert after_charge.credit == pytest.approx(0.75)
    assert after_recharge.credit == pytest.approx(10.75)


@pytest.mark.asyncio
async def test_update_guest(accountant):
    await accountant.register(Guest(name="alice"))

    await accountant.update_guest(Guest(name="alice", credit=5.0, admin=True))

    assert await accountant.get_guest("alice") == Guest(name="alice", credit=5.0, admin=True)


@pytest.mark.asyncio
async def test_create_user_event_registers_guest(accountant, crypto):
    guest = await accountant.handle_user_creation_event(*_signed_event(crypto, "create_user", "carol"))

    assert guest == Guest(name="carol", credit=0.0, admin=False)
    assert await accountant.get_guest("carol") == guest


@pytest.mark.asyncio
async def test_other_contact_events_are_ignored(accountant, crypto):
    result = await accountant.handle_user_creation_event(*_signed_event(crypto, "update_user", "carol"))

    assert result is None
    with pytest.raises(NotFound):
        await accountant.get_guest("carol")


@pytest.mark.asyncio
async def test_contact_event_with_bad_signature(accountant, crypto):
    _, timestamp, nonce, body = _signed_event(crypto, "create_user", "carol")

    with pytest.raises(InternalError):
        await accountant.handle_user_creation_event("0" * 40, timestamp, nonce, body)


@pytest.mark.asyncio
async def test_verify_url(accountant, crypto):
    ciphertext, nonce = crypto.encrypt("echo-123", "ww-corp")
    signature = crypto.signature("0", nonce, ciphertext)

    assert accountant.verify_url(signature, "0", nonce, ciphertext) == "echo-123"
    with pytest.raises(SignatureMismatch):
        accountant.verify_url("0" * 40, "0", nonce, ciphertext)
    with pytest.raises(DecryptError):
        accountant.verify_url(crypto.signature("0", nonce, "E"), "0", nonce, "E")
