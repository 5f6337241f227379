"""Guest repository: account rows keyed by the platform user name."""

from __future__ import annotations

from wecom_relay.core.types import Guest
from wecom_relay.errors import NotFound, StorageError
from wecom_relay.log import get_logger
from wecom_relay.storage.database import Database

logger = get_logger(__name__)


class GuestRepository:
    """CRUD over the guests table."""

    def __init__(self, db: Database):
        self._db = db

    async def create(self, guest: Guest) -> None:
        """Insert a new guest. A duplicate name raises StorageError."""
        async with self._db.transaction() as conn:
            await conn.execute(
                "INSERT INTO guests (name, credit, admin) VALUES (?, ?, ?)",
                (guest.name, guest.credit, int(guest.admin)),
            )
        logger.debug("guest_created", guest=guest.name)

    async def get(self, name: str) -> Guest:
        row = await self._db.fetchone(
            "SELECT name, credit, admin FROM guests WHERE name = ?", (name,)
        )
        if row is None:
            raise NotFound(f"账户不存在：{name}")
        return self._row_to_guest(row)

    async def list_all(self) -> list[Guest]:
        rows = await self._db.fetchall("SELECT name, credit, admin FROM guests ORDER BY id")
        return [self._row_to_guest(row) for row in rows]

    async def update(self, guest: Guest) -> None:
        """Overwrite credit and admin flag of an existing guest."""
        async with self._db.transaction() as conn:
            cursor = await conn.execute(
                """UPDATE guests
                   SET credit = ?, admin = ?,
                       updated_at = strftime('%Y-%m-%dT%H:%M:%f','now')
                   WHERE name = ?""",
                (guest.credit, int(guest.admin), guest.name),
            )
            if cursor.rowcount == 0:
                raise NotFound(f"账户不存在：{guest.name}")

    async def set_admin(self, name: str, admin: bool) -> None:
        async with self._db.transaction() as conn:
            cursor = await conn.execute(
                """UPDATE guests
                   SET admin = ?, updated_at = strftime('%Y-%m-%dT%H:%M:%f','now')
                   WHERE name = ?""",
                (int(admin), name),
            )
            if cursor.rowcount == 0:
                raise NotFound(f"账户不存在：{name}")

    async def adjust_credit(self, name: str, delta: float) -> Guest:
        """Add *delta* to the guest's credit in a single relative update.

        Concurrent adjustments never overwrite each other.
        """
        async with self._db.transaction() as conn:
            cursor = await conn.execute(
                """UPDATE guests
                   SET credit = credit + ?,
                       updated_at = strftime('%Y-%m-%dT%H:%M:%f','now')
                   WHERE name = ?""",
                (delta, name),
            )
            if cursor.rowcount == 0:
                raise NotFound(f"账户不存在：{name}")
            cursor = await conn.execute(
                "SELECT name, credit, admin FROM guests WHERE name = ?", (name,)
            )
            row = await cursor.fetchone()
        if row is None:
            raise StorageError(f"guest {name} vanished during update")
        return self._row_to_guest(row)

    @staticmethod
    def _row_to_guest(row) -> Guest:
        return Guest(name=row["name"], credit=row["credit"], admin=bool(row["admin"]))
