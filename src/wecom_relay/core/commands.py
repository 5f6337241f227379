"""Command language for administrators (``$$…$$``) and users (``#…``).

Admin commands, whitespace separated inside ``$$ $$``:

    查用户                    list every guest
    <name> 充值 <amount>      add a signed amount to the guest's credit
    <name> 管理员 <true|false> grant or revoke the admin flag

User commands:

    #查余额   current credit
    #查消耗   usage summary of the active conversation
    #新会话   start a new conversation
"""

from __future__ import annotations

import math
from enum import StrEnum
from typing import TYPE_CHECKING

from wecom_relay.core.types import Guest
from wecom_relay.errors import InternalError, NotFound, StorageError
from wecom_relay.log import get_logger

if TYPE_CHECKING:
    from wecom_relay.ai.assistant import Assistant
    from wecom_relay.core.accountant import Accountant

logger = get_logger(__name__)

ADMIN_MARK = "$$"
USER_MARK = "#"

INTERNAL_ERROR_TEXT = "内部错误，请稍后再试。"
UNSUPPORTED_TEXT = "抱歉，暂不支持当前指令。"
UNKNOWN_ADMIN_TEXT = "未知指令"


class MessageKind(StrEnum):
    ADMIN_COMMAND = "admin_command"
    USER_COMMAND = "user_command"
    CHAT = "chat"


def is_admin_syntax(text: str) -> bool:
    stripped = text.strip()
    return len(stripped) >= 2 * len(ADMIN_MARK) and stripped.startswith(ADMIN_MARK) and stripped.endswith(ADMIN_MARK)


def classify(text: str, guest: Guest) -> MessageKind:
    """Decide how an inbound text is handled.

    ``$$…$$`` from a non-admin is treated as an (unsupported) user command
    so that it is neither executed nor billed.
    """
    if is_admin_syntax(text):
        return MessageKind.ADMIN_COMMAND if guest.admin else MessageKind.USER_COMMAND
    if text.strip().startswith(USER_MARK):
        return MessageKind.USER_COMMAND
    return MessageKind.CHAT


def _parse_bool(value: str) -> bool:
    lowered = value.lower()
    if lowered == "true":
        return True
    if lowered == "false":
        return False
    raise ValueError(value)


class CommandProcessor:
    """Executes commands and returns the text to send back."""

    def __init__(self, accountant: Accountant):
        self._accountant = accountant

    async def run_admin(self, text: str) -> str:
        args = text.strip()[len(ADMIN_MARK) : -len(ADMIN_MARK)].split()
        logger.info("admin_command", args=args)

        match args:
            case ["查用户"]:
                return await self._list_guests()
            case [name, "充值", value]:
                return await self._recharge(name, value)
            case [name, "管理员", value]:
                return await self._set_admin(name, value)
            case _:
                return UNKNOWN_ADMIN_TEXT

    async def _list_guests(self) -> str:
        try:
            guests = await self._accountant.get_guests()
        except InternalError:
            return "无法从数据库中获得用户"
        return "\n".join(f"{g.name} {g.credit} {str(g.admin).lower()}" for g in guests)

    async def _recharge(self, name: str, value: str) -> str:
        try:
            amount = float(value)
        except ValueError:
            return "用户余额解析出错"
        if not math.isfinite(amount):
            return "用户余额解析出错"

        try:
            guest = await self._accountant.recharge(name, amount)
        except NotFound:
            return f"无法找到用户：{name}"
        except InternalError as e:
            return f"更新用户余额出错：{e}"
        return f"更新成功。{guest.name}当前余额：{guest.credit:.3f}"

    async def _set_admin(self, name: str, value: str) -> str:
        try:
            admin = _parse_bool(value)
        except ValueError:
            return "管理员属性解析出错。"

        try:
            await self._accountant.set_admin(name, admin)
        except NotFound:
            return f"无法找到用户：{name}"
        except InternalError as e:
            return f"更新管理员属性出错：{e}"
        return f"更新成功。{name}{'已成为管理员' if admin else '不再是管理员'}"

    async def run_user(self, text: str, guest: Guest, assistant: Assistant | None) -> str:
        command = text.strip()
        logger.info("user_command", guest=guest.name, command=command)

        if command == "#查余额":
            return f"当前余额：{guest.credit:.3f}"
        if command not in ("#查消耗", "#新会话"):
            return UNSUPPORTED_TEXT

        if assistant is None:
            logger.error("assistant_missing", guest=guest.name)
            return INTERNAL_ERROR_TEXT
        try:
            if command == "#查消耗":
                return await assistant.audit(guest)
            await assistant.new_conversation(guest)
        except (StorageError, NotFound) as e:
            logger.error("user_command_failed", guest=guest.name, command=command, error=str(e))
            if command == "#新会话":
                return f"为{guest.name}新建会话记录失败。{e}"
            return f"{INTERNAL_ERROR_TEXT}{e}"
        return "新会话创建成功。您可以开始对话了。"
