"""Convert stored conversation history into a bounded provider prompt."""

from __future__ import annotations

from dataclasses import dataclass

from wecom_relay.ai.client import PromptMessage
from wecom_relay.ai.tokenizer import TokenCounter
from wecom_relay.core.types import Role
from wecom_relay.storage.models import MessageRecord


@dataclass
class Prompt:
    messages: list[PromptMessage]
    tokens: int
    history_used: int
    history_dropped: int


def to_prompt_message(record: MessageRecord) -> PromptMessage:
    """Map a stored record to a provider message; roles outside the accepted set become user."""
    return PromptMessage(role=Role.coerce(record.role), content=record.content)


def build_prompt(
    history: list[MessageRecord],
    user_text: str,
    system_prompt: str,
    budget: int,
    counter: TokenCounter,
) -> Prompt:
    """Select as much recent history as fits in *budget* prompt tokens.

    The user's new message is always included. History is walked from newest
    to oldest and each message is kept while the running total stays within
    the budget (ties included); the walk stops at the first message that does
    not fit. A stored leading System message is pinned and sent as-is;
    otherwise *system_prompt* is prepended. The system message counts against
    the budget.
    """
    if history and history[0].role == Role.SYSTEM:
        system = to_prompt_message(history[0])
        candidates = history[1:]
    else:
        system = PromptMessage(role=Role.SYSTEM, content=system_prompt)
        candidates = history

    running = counter.count(user_text) + counter.count(system.content)
    selected: list[PromptMessage] = []
    for record in reversed(candidates):
        tokens = counter.count(record.content)
        if running + tokens > budget:
            break
        running += tokens
        selected.append(to_prompt_message(record))

    selected.reverse()
    messages = [system, *selected, PromptMessage(role=Role.USER, content=user_text)]
    return Prompt(
        messages=messages,
        tokens=running,
        history_used=len(selected),
        history_dropped=len(candidates) - len(selected),
    )
