"""WeCom application-message sender using httpx."""

from __future__ import annotations

import asyncio
import time
from typing import Any

import httpx

from wecom_relay.errors import TOKEN_EXPIRED_CODES, SendError
from wecom_relay.log import get_logger
from wecom_relay.messenger.base import Messenger
from wecom_relay.messenger.models import OutgoingMessage, SendResult

logger = get_logger(__name__)

# WeCom rejects text messages whose content exceeds this many UTF-8 bytes.
MAX_TEXT_BYTES = 2048
# Refresh the access token this many seconds before the platform expires it.
TOKEN_EXPIRY_MARGIN = 300


class WecomMessenger(Messenger):
    """Sends text messages on behalf of one WeCom application (agent)."""

    def __init__(
        self,
        corp_id: str,
        secret: str,
        api_base: str = "https://qyapi.weixin.qq.com",
        timeout: int = 10,
        client: httpx.AsyncClient | None = None,
    ):
        self._corp_id = corp_id
        self._secret = secret
        self._api_base = api_base.rstrip("/")
        self._client = client or httpx.AsyncClient(timeout=timeout)
        self._access_token: str | None = None
        self._token_expires_at = 0.0
        self._token_lock = asyncio.Lock()

    async def _get_access_token(self) -> str:
        async with self._token_lock:
            if self._access_token and time.monotonic() < self._token_expires_at:
                return self._access_token

            response = await self._client.get(
                f"{self._api_base}/cgi-bin/gettoken",
                params={"corpid": self._corp_id, "corpsecret": self._secret},
            )
            response.raise_for_status()
            data = _json_body(response)
            errcode = int(data.get("errcode", 0))
            if errcode != 0:
                raise SendError(errcode, data.get("errmsg", ""))
            if not data.get("access_token"):
                raise SendError(-1, "获取access_token失败。响应中没有access_token")

            self._access_token = data["access_token"]
            expires_in = int(data.get("expires_in", 7200))
            self._token_expires_at = time.monotonic() + max(expires_in - TOKEN_EXPIRY_MARGIN, 0)
            logger.info("wecom_token_refreshed", expires_in=expires_in)
            return self._access_token

    def invalidate_token(self) -> None:
        self._access_token = None
        self._token_expires_at = 0.0

    async def _post_message(self, payload: dict[str, Any]) -> SendResult:
        token = await self._get_access_token()
        response = await self._client.post(
            f"{self._api_base}/cgi-bin/message/send",
            params={"access_token": token},
            json=payload,
        )
        response.raise_for_status()
        data = _json_body(response)
        return SendResult(errcode=int(data.get("errcode", 0)), errmsg=data.get("errmsg", ""))

    async def send_message(self, message: OutgoingMessage) -> SendResult:
        result = SendResult()
        for chunk in split_text(message.text):
            payload = {
                "touser": message.to_user,
                "msgtype": "text",
                "agentid": message.agent_id,
                "text": {"content": chunk},
                "safe": 0,
            }
            try:
                result = await self._post_message(payload)
            except httpx.HTTPError as e:
                raise SendError(-1, f"调用发送消息API失败。{e}") from e

            if result.errcode in TOKEN_EXPIRED_CODES:
                logger.warning("wecom_token_expired", errcode=result.errcode)
                self.invalidate_token()
                try:
                    result = await self._post_message(payload)
                except httpx.HTTPError as e:
                    raise SendError(-1, f"调用发送消息API失败。{e}") from e

            if not result.ok:
                raise SendError(result.errcode, result.errmsg)

        logger.debug("wecom_message_sent", to_user=message.to_user, agent_id=message.agent_id)
        return result

    async def close(self) -> None:
        await self._client.aclose()


def _json_body(response: httpx.Response) -> dict[str, Any]:
    try:
        data = response.json()
    except ValueError as e:
        raise SendError(-1, f"企业微信API返回无效JSON。{e}") from e
    if not isinstance(data, dict):
        raise SendError(-1, "企业微信API返回无效JSON。响应不是对象")
    return data


def split_text(text: str, max_bytes: int = MAX_TEXT_BYTES) -> list[str]:
    """Split a message into chunks that fit within the platform byte limit."""
    if len(text.encode("utf-8")) <= max_bytes:
        return [text]

    chunks: list[str] = []
    while text:
        if len(text.encode("utf-8")) <= max_bytes:
            chunks.append(text)
            break
        # Shrink to a prefix within the byte limit
        end = len(text)
        while end > 1 and len(text[:end].encode("utf-8")) > max_bytes:
            end = end * max_bytes // len(text[:end].encode("utf-8")) or 1
        # Try to split at a newline
        split_pos = text.rfind("\n", 0, end)
        if split_pos <= 0:
            split_pos = end
        chunks.append(text[:split_pos])
        text = text[split_pos:].lstrip("\n")
    return chunks
