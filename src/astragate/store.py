"""SQLite profile store for generated content.

One row per user; the user's generated content is stored as a JSON object
keyed by cache slot. ``aiosqlite.Error`` is logged and re-raised as
``PersistenceError`` so the persister can decide whether to retry. A row
whose JSON no longer validates is treated as holding no content, and an
unreadable ``updated_at`` is treated as missing.
"""

from __future__ import annotations

from datetime import datetime
from typing import Protocol

import aiosqlite
import structlog
from pydantic import TypeAdapter, ValidationError

from astragate.errors import PersistenceError
from astragate.models.profile import Profile, StoredContent

log = structlog.get_logger()

_generated_adapter: TypeAdapter[dict[str, StoredContent]] = TypeAdapter(dict[str, StoredContent])

_CREATE_PROFILE_TABLE = """
CREATE TABLE IF NOT EXISTS profiles (
    user_id            TEXT PRIMARY KEY,
    generated_content  TEXT NOT NULL DEFAULT '{}',
    updated_at         TEXT
)
"""


class ProfileStore(Protocol):
    async def load(self, user_id: str) -> Profile | None: ...

    async def save(self, profile: Profile) -> None: ...


class SqliteProfileStore:
    """aiosqlite-backed implementation of ProfileStore."""

    def __init__(self, db: aiosqlite.Connection) -> None:
        self._db = db

    async def init_db(self) -> None:
        """Create tables and set WAL mode. Called once at startup."""
        await self._db.execute("PRAGMA journal_mode = WAL")
        await self._db.execute(_CREATE_PROFILE_TABLE)
        await self._db.commit()

    async def load(self, user_id: str) -> Profile | None:
        """Read a profile. Returns ``None`` if the user has never been saved."""
        try:
            cursor = await self._db.execute(
                "SELECT user_id, generated_content, updated_at FROM profiles WHERE user_id = ?",
                (user_id,),
            )
            row = await cursor.fetchone()
        except aiosqlite.Error as exc:
            log.warning("profile_read_error", user_id=user_id, exc_info=True)
            raise PersistenceError(f"Could not load profile {user_id!r}") from exc
        if row is None:
            return None

        try:
            generated = _generated_adapter.validate_json(row[1])
        except ValidationError:
            log.warning("profile_content_invalid", user_id=user_id, exc_info=True)
            generated = {}

        updated_at: datetime | None = None
        if row[2]:
            try:
                updated_at = datetime.fromisoformat(row[2])
            except (TypeError, ValueError):
                log.warning("profile_updated_at_invalid", user_id=user_id, value=row[2])
        return Profile(user_id=row[0], generated_content=generated, updated_at=updated_at)

    async def save(self, profile: Profile) -> None:
        """Write a profile, replacing any existing row for the user."""
        try:
            await self._db.execute(
                "INSERT OR REPLACE INTO profiles (user_id, generated_content, updated_at) "
                "VALUES (?, ?, ?)",
                (
                    profile.user_id,
                    _generated_adapter.dump_json(profile.generated_content).decode(),
                    profile.updated_at.isoformat() if profile.updated_at else None,
                ),
            )
            await self._db.commit()
        except aiosqlite.Error as exc:
            log.warning("profile_write_error", user_id=profile.user_id, exc_info=True)
            raise PersistenceError(f"Could not save profile {profile.user_id!r}") from exc
