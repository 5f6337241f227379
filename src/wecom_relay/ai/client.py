"""Chat-completion provider client."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any

import httpx

from wecom_relay.config import ProviderConfig
from wecom_relay.core.types import Role
from wecom_relay.errors import ProviderError
from wecom_relay.log import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True, slots=True)
class PromptMessage:
    role: Role
    content: str

    def to_dict(self) -> dict[str, str]:
        return {"role": str(self.role), "content": self.content}


@dataclass
class ChatResponse:
    """Unified response from any provider backend."""

    content: str
    role: Role = Role.ASSISTANT
    prompt_tokens: int = 0
    completion_tokens: int = 0
    raw: Any = None  # Backend-specific raw response


class AIClient(ABC):
    """Abstract base class for provider backends."""

    @property
    @abstractmethod
    def max_tokens(self) -> int:
        """Context window ceiling of the model."""
        ...

    @abstractmethod
    async def chat(self, messages: list[PromptMessage]) -> ChatResponse:
        """Send a prepared message list and return the model's reply."""
        ...

    @abstractmethod
    def cost(self, response: ChatResponse) -> float:
        ...

    async def close(self) -> None:
        return None


class ProviderClient(AIClient):
    """OpenAI-style chat-completion endpoint authenticated with an ``api-key`` header.

    The endpoint URL is used as-is (it already names the deployment), so
    the request body only carries the message list.
    """

    def __init__(self, config: ProviderConfig, client: httpx.AsyncClient | None = None):
        self._config = config
        self._client = client or httpx.AsyncClient(timeout=config.timeout)

    @property
    def max_tokens(self) -> int:
        return self._config.max_tokens

    @property
    def name(self) -> str:
        return self._config.name or str(self._config.id)

    async def chat(self, messages: list[PromptMessage]) -> ChatResponse:
        payload = {"messages": [m.to_dict() for m in messages]}
        headers = {"api-key": self._config.api_key}

        logger.debug("provider_request", provider=self.name, message_count=len(messages))
        try:
            response = await self._client.post(self._config.endpoint, json=payload, headers=headers)
            response.raise_for_status()
            data = response.json()
        except httpx.HTTPStatusError as e:
            raise ProviderError(
                f"发送AI请求失败。HTTP {e.response.status_code}: {e.response.text[:200]}"
            ) from e
        except httpx.HTTPError as e:
            raise ProviderError(f"发送AI请求失败。{e}") from e
        except ValueError as e:
            raise ProviderError(f"接收AI返回失败。{e}") from e

        result = self._parse_response(data)
        logger.debug(
            "provider_response",
            provider=self.name,
            prompt_tokens=result.prompt_tokens,
            completion_tokens=result.completion_tokens,
        )
        return result

    @staticmethod
    def _parse_response(data: Any) -> ChatResponse:
        """Extract the first choice and the token usage."""
        if not isinstance(data, dict):
            raise ProviderError("接收AI返回失败。响应不是JSON对象")
        choices = data.get("choices") or []
        if not isinstance(choices, list) or not choices:
            raise ProviderError("AI消息为空")
        message = choices[0].get("message") if isinstance(choices[0], dict) else None
        usage = data.get("usage") or {}
        if not isinstance(message, dict) or not isinstance(usage, dict):
            raise ProviderError("接收AI返回失败。响应结构无效")
        try:
            prompt_tokens = int(usage.get("prompt_tokens", 0))
            completion_tokens = int(usage.get("completion_tokens", 0))
        except (TypeError, ValueError) as e:
            raise ProviderError(f"接收AI返回失败。用量字段无效：{e}") from e
        content = message.get("content") or ""
        if not isinstance(content, str):
            raise ProviderError("接收AI返回失败。响应结构无效")
        return ChatResponse(
            content=content,
            role=Role.coerce(message.get("role"), default=Role.ASSISTANT),
            prompt_tokens=prompt_tokens,
            completion_tokens=completion_tokens,
            raw=data,
        )

    def cost(self, response: ChatResponse) -> float:
        """Credit charged for one exchange; prices are per 1000 tokens."""
        return (
            response.prompt_tokens * self._config.prompt_token_price
            + response.completion_tokens * self._config.completion_token_price
        ) / 1000

    async def close(self) -> None:
        await self._client.aclose()
