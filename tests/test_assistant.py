"""Tests for the assistant engine."""

import pytest

from conftest import ASSISTANT_AGENT, CharCounter, FakeProvider
from wecom_relay.ai.assistant import Assistant
from wecom_relay.config import AssistantConfig
from wecom_relay.core.types import Guest, Role
from wecom_relay.errors import ProviderError
from wecom_relay.storage.models import MessageRecord


def _assistant(provider, conversations, reservation=20, prompt=""):
    config = AssistantConfig(
        agent_id=ASSISTANT_AGENT,
        name="helper",
        token="T",
        key="K",
        secret="S",
        prompt=prompt,
        provider_id=1,
        token_reservation=reservation,
    )
    return Assistant(config, provider, conversations, CharCounter())


@pytest.mark.asyncio
async def test_chat_persists_exchange_and_returns_reply(guests, conversations):
    alice = Guest(name="alice")
    await guests.create(alice)
    provider = FakeProvider()
    provider.reply_with("hi", prompt_tokens=5, completion_tokens=7)
    assistant = _assistant(provider, conversations)

    reply = await assistant.chat(alice, "hello")

    assert reply.content == "hi"
    assert reply.cost == pytest.approx((5 * 0.06 + 7 * 0.12) / 1000, abs=1e-9)
    messages = await conversations.get_conversation("alice", ASSISTANT_AGENT)
    assert [(m.role, m.content) for m in messages] == [(Role.USER, "hello"), (Role.ASSISTANT, "hi")]
    assert messages[0].cost == 0
    assert messages[1].cost == pytest.approx(reply.cost)
    assert (messages[1].prompt_tokens, messages[1].completion_tokens) == (5, 7)


@pytest.mark.asyncio
async def test_each_chat_adds_two_messages(guests, conversations):
    await guests.create(Guest(name="alice"))
    provider = FakeProvider()
    assistant = _assistant(provider, conversations)

    for i in range(3):
        provider.reply_with(f"answer {i}")
        reply = await assistant.chat(Guest(name="alice"), f"question {i}")
        messages = await conversations.get_conversation("alice", ASSISTANT_AGENT)
        assert len(messages) == 2 * (i + 1)
        assert messages[-1].content == reply.content


@pytest.mark.asyncio
async def test_provider_error_leaves_conversation_unchanged(guests, conversations):
    await guests.create(Guest(name="alice"))
    provider = FakeProvider()
    assistant = _assistant(provider, conversations)
    provider.reply_with("first")
    await assistant.chat(Guest(name="alice"), "one")
    before = await conversations.get_conversation("alice", ASSISTANT_AGENT)

    provider.fail_with("upstream down")
    with pytest.raises(ProviderError):
        await assistant.chat(Guest(name="alice"), "two")

    after = await conversations.get_conversation("alice", ASSISTANT_AGENT)
    assert after == before


@pytest.mark.asyncio
async def test_prompt_respects_context_budget(guests, conversations):
    await guests.create(Guest(name="alice"))
    conversation_id = await conversations.create_conversation("alice", ASSISTANT_AGENT)
    await conversations.append_messages(
        conversation_id,
        [
            MessageRecord(role=Role.USER, content="c" * 30),
            MessageRecord(role=Role.ASSISTANT, content="b" * 30),
            MessageRecord(role=Role.USER, content="a" * 30),
        ],
    )
    provider = FakeProvider(max_tokens=100)
    provider.reply_with("ok")
    assistant = _assistant(provider, conversations, reservation=20)

    await assistant.chat(Guest(name="alice"), "u" * 10)

    sent = provider.prompts[0]
    assert assistant.prompt_budget == 80
    assert [m.content for m in sent] == ["", "b" * 30, "a" * 30, "u" * 10]


@pytest.mark.asyncio
async def test_audit_summarises_active_conversation(guests, conversations):
    await guests.create(Guest(name="alice"))
    provider = FakeProvider()
    assistant = _assistant(provider, conversations)
    provider.reply_with("one", prompt_tokens=10, completion_tokens=20)
    provider.reply_with("two", prompt_tokens=40, completion_tokens=5)
    await assistant.chat(Guest(name="alice"), "q1")
    await assistant.chat(Guest(name="alice"), "q2")

    summary = await assistant.audit(Guest(name="alice"))

    cost = (50 * 0.06 + 25 * 0.12) / 1000
    assert summary == (
        "当前会话长度为 45。累计消耗prompt token 50个，"
        f"completion token 25个，费用{cost:.3f}。"
    )


@pytest.mark.asyncio
async def test_new_conversation_starts_empty_history(guests, conversations):
    await guests.create(Guest(name="alice"))
    provider = FakeProvider()
    assistant = _assistant(provider, conversations)
    provider.reply_with("one")
    await assistant.chat(Guest(name="alice"), "q1")

    await assistant.new_conversation(Guest(name="alice"))

    assert await conversations.get_conversation("alice", ASSISTANT_AGENT) == []
    provider.reply_with("two")
    await assistant.chat(Guest(name="alice"), "q2")
    assert [m.content for m in provider.prompts[-1]] == ["", "q2"]
