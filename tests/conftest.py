"""Pytest configuration and shared fixtures."""

from __future__ import annotations

import base64

import pytest
import pytest_asyncio

from wecom_relay.ai.client import AIClient, ChatResponse, PromptMessage
from wecom_relay.config import AppConfig
from wecom_relay.errors import ProviderError, SendError
from wecom_relay.messenger.base import Messenger
from wecom_relay.messenger.crypto import WecomCrypto
from wecom_relay.messenger.models import OutgoingMessage, SendResult
from wecom_relay.storage.conversation_repo import ConversationRepository
from wecom_relay.storage.database import Database
from wecom_relay.storage.guest_repo import GuestRepository

ADMIN = "admin"
ASSISTANT_AGENT = 1000002
ACCOUNTANT_AGENT = 1000001
CORP_ID = "ww-test-corp"

AES_KEY = base64.b64encode(bytes(range(32))).decode("ascii").rstrip("=")
ACCOUNTANT_AES_KEY = base64.b64encode(bytes(range(100, 132))).decode("ascii").rstrip("=")


class CharCounter:
    """One token per character, so tests can size messages exactly."""

    def count(self, text: str) -> int:
        return len(text)


class FakeProvider(AIClient):
    """Provider double that replays queued responses and records prompts."""

    def __init__(
        self,
        max_tokens: int = 4096,
        prompt_price: float = 0.06,
        completion_price: float = 0.12,
    ):
        self._max_tokens = max_tokens
        self.prompt_price = prompt_price
        self.completion_price = completion_price
        self.responses: list[ChatResponse | Exception] = []
        self.prompts: list[list[PromptMessage]] = []
        self.closed = False

    @property
    def max_tokens(self) -> int:
        return self._max_tokens

    def reply_with(self, content: str, prompt_tokens: int = 5, completion_tokens: int = 7) -> None:
        self.responses.append(
            ChatResponse(content=content, prompt_tokens=prompt_tokens, completion_tokens=completion_tokens)
        )

    def fail_with(self, message: str = "boom") -> None:
        self.responses.append(ProviderError(message))

    async def chat(self, messages: list[PromptMessage]) -> ChatResponse:
        self.prompts.append(list(messages))
        result = self.responses.pop(0)
        if isinstance(result, Exception):
            raise result
        return result

    def cost(self, response: ChatResponse) -> float:
        return (
            response.prompt_tokens * self.prompt_price
            + response.completion_tokens * self.completion_price
        ) / 1000

    async def close(self) -> None:
        self.closed = True


class FakeMessenger(Messenger):
    """Collects outbound messages instead of calling the platform."""

    def __init__(self) -> None:
        self.sent: list[OutgoingMessage] = []
        self.error: SendError | None = None
        self.closed = False

    async def send_message(self, message: OutgoingMessage) -> SendResult:
        if self.error is not None:
            raise self.error
        self.sent.append(message)
        return SendResult()

    async def close(self) -> None:
        self.closed = True

    @property
    def texts(self) -> list[str]:
        return [m.text for m in self.sent]


def make_config(storage_path: str = ":memory:", **overrides) -> AppConfig:
    """A resolved configuration with one provider and one assistant."""
    data = {
        "wecom": {"corp_id": CORP_ID, "api_base": "https://qyapi.test"},
        "providers": [
            {
                "id": 1,
                "name": "gpt-test",
                "endpoint": "https://llm.test/chat/completions",
                "api_key": "sk-test",
                "max_tokens": 4096,
                "prompt_token_price": 0.06,
                "completion_token_price": 0.12,
            }
        ],
        "assistants": [
            {
                "agent_id": ASSISTANT_AGENT,
                "name": "helper",
                "token": "T",
                "key": AES_KEY,
                "secret": "assistant-secret",
                "provider_id": 1,
                "token_reservation": 1024,
            }
        ],
        "accountant": {
            "agent_id": ACCOUNTANT_AGENT,
            "token": "ACC",
            "key": ACCOUNTANT_AES_KEY,
        },
        "storage_path": storage_path,
        "admin_account": ADMIN,
    }
    data.update(overrides)
    return AppConfig(**data)


@pytest.fixture
def aes_key() -> str:
    return AES_KEY


@pytest.fixture
def crypto() -> WecomCrypto:
    return WecomCrypto("T", AES_KEY)


@pytest.fixture
def counter() -> CharCounter:
    return CharCounter()


@pytest.fixture
def provider() -> FakeProvider:
    return FakeProvider()


@pytest.fixture
def messenger() -> FakeMessenger:
    return FakeMessenger()


@pytest_asyncio.fixture
async def db(tmp_path):
    database = Database(str(tmp_path / "relay.db"))
    await database.initialize(ADMIN)
    yield database
    await database.close()


@pytest.fixture
def guests(db) -> GuestRepository:
    return GuestRepository(db)


@pytest.fixture
def conversations(db) -> ConversationRepository:
    return ConversationRepository(db)
