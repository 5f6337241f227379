"""Conversation repository: active-conversation bookkeeping and message history."""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from wecom_relay.core.types import ContentType, Role
from wecom_relay.errors import NotFound
from wecom_relay.log import get_logger
from wecom_relay.storage.database import Database
from wecom_relay.storage.models import ConversationRecord, MessageRecord

logger = get_logger(__name__)

_GUEST_ID_SQL = "SELECT id FROM guests WHERE name = ?"


class ConversationRepository:
    """Conversations per (guest, agent_id) and their append-only messages.

    At most one conversation per (guest, agent_id) is active; creating a new
    one deactivates the previous row in the same transaction.
    """

    def __init__(self, db: Database):
        self._db = db

    async def create_conversation(self, guest_name: str, agent_id: int) -> int:
        """Start a fresh active conversation and return its id."""
        async with self._db.transaction() as conn:
            cursor = await conn.execute(_GUEST_ID_SQL, (guest_name,))
            row = await cursor.fetchone()
            if row is None:
                raise NotFound(f"账户不存在：{guest_name}")
            guest_id = row["id"]

            await conn.execute(
                """UPDATE conversations
                   SET active = 0, updated_at = strftime('%Y-%m-%dT%H:%M:%f','now')
                   WHERE guest_id = ? AND agent_id = ? AND active = 1""",
                (guest_id, agent_id),
            )
            cursor = await conn.execute(
                "INSERT INTO conversations (guest_id, agent_id, active) VALUES (?, ?, 1)",
                (guest_id, agent_id),
            )
            conversation_id = cursor.lastrowid
        logger.info(
            "conversation_created",
            guest=guest_name,
            agent_id=agent_id,
            conversation_id=conversation_id,
        )
        return conversation_id  # type: ignore[return-value]

    async def get_or_create_active(self, guest_name: str, agent_id: int) -> int:
        """Id of the active conversation, starting one if the pair has none."""
        async with self._db.transaction() as conn:
            cursor = await conn.execute(_GUEST_ID_SQL, (guest_name,))
            row = await cursor.fetchone()
            if row is None:
                raise NotFound(f"账户不存在：{guest_name}")
            guest_id = row["id"]

            cursor = await conn.execute(
                "SELECT id FROM conversations WHERE guest_id = ? AND agent_id = ? AND active = 1",
                (guest_id, agent_id),
            )
            row = await cursor.fetchone()
            if row is not None:
                return row["id"]

            cursor = await conn.execute(
                "INSERT INTO conversations (guest_id, agent_id, active) VALUES (?, ?, 1)",
                (guest_id, agent_id),
            )
            conversation_id = cursor.lastrowid
        logger.info(
            "conversation_created",
            guest=guest_name,
            agent_id=agent_id,
            conversation_id=conversation_id,
        )
        return conversation_id  # type: ignore[return-value]

    async def get_active(self, guest_name: str, agent_id: int) -> Optional[ConversationRecord]:
        row = await self._db.fetchone(
            """SELECT c.* FROM conversations c
               JOIN guests g ON g.id = c.guest_id
               WHERE g.name = ? AND c.agent_id = ? AND c.active = 1""",
            (guest_name, agent_id),
        )
        return self._row_to_conversation(row) if row else None

    async def list_conversations(self, guest_name: str, agent_id: int) -> list[ConversationRecord]:
        """All conversations of the pair, oldest first, including inactive ones."""
        rows = await self._db.fetchall(
            """SELECT c.* FROM conversations c
               JOIN guests g ON g.id = c.guest_id
               WHERE g.name = ? AND c.agent_id = ?
               ORDER BY c.created_at ASC, c.id ASC""",
            (guest_name, agent_id),
        )
        return [self._row_to_conversation(row) for row in rows]

    async def get_messages(self, conversation_id: int) -> list[MessageRecord]:
        rows = await self._db.fetchall(
            """SELECT * FROM messages
               WHERE conversation_id = ?
               ORDER BY created_at ASC, id ASC""",
            (conversation_id,),
        )
        return [self._row_to_message(row) for row in rows]

    async def get_conversation(self, guest_name: str, agent_id: int) -> list[MessageRecord]:
        """Messages of the active conversation, oldest first."""
        conversation = await self.get_active(guest_name, agent_id)
        if conversation is None:
            raise NotFound(f"会话记录不存在：{guest_name}@{agent_id}")
        return await self.get_messages(conversation.id)  # type: ignore[arg-type]

    async def append_messages(self, conversation_id: int, messages: list[MessageRecord]) -> None:
        """Append all *messages* to the conversation, or none of them."""
        async with self._db.transaction() as conn:
            for message in messages:
                await conn.execute(
                    """INSERT INTO messages
                       (conversation_id, role, content_type, content, cost,
                        prompt_tokens, completion_tokens)
                       VALUES (?, ?, ?, ?, ?, ?, ?)""",
                    (
                        conversation_id,
                        message.role.id,
                        int(message.content_type),
                        message.content,
                        message.cost,
                        message.prompt_tokens,
                        message.completion_tokens,
                    ),
                )
            await conn.execute(
                """UPDATE conversations
                   SET updated_at = strftime('%Y-%m-%dT%H:%M:%f','now')
                   WHERE id = ?""",
                (conversation_id,),
            )

    @staticmethod
    def _row_to_conversation(row) -> ConversationRecord:
        return ConversationRecord(
            id=row["id"],
            guest_id=row["guest_id"],
            agent_id=row["agent_id"],
            active=bool(row["active"]),
            created_at=datetime.fromisoformat(row["created_at"]),
            updated_at=datetime.fromisoformat(row["updated_at"]),
        )

    @staticmethod
    def _row_to_message(row) -> MessageRecord:
        try:
            content_type = ContentType(row["content_type"])
        except ValueError:
            content_type = ContentType.TEXT
        return MessageRecord(
            id=row["id"],
            conversation_id=row["conversation_id"],
            role=Role.from_id(row["role"]),
            content_type=content_type,
            content=row["content"],
            cost=row["cost"],
            prompt_tokens=row["prompt_tokens"],
            completion_tokens=row["completion_tokens"],
            created_at=datetime.fromisoformat(row["created_at"]),
        )
