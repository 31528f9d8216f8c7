from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel

from astragate.models.content import CacheEntry, CacheKey, ContentType, Payload


class StoredContent(BaseModel):
    """Persisted form of a cache entry, keyed by slot inside a Profile."""

    content: ContentType
    period: str = ""
    payload: Payload
    generated_at: datetime

    @classmethod
    def from_entry(cls, entry: CacheEntry) -> StoredContent:
        return cls(
            content=entry.key.content,
            period=entry.key.period,
            payload=entry.payload,
            generated_at=entry.generated_at,
        )


class Profile(BaseModel):
    """The slice of a user profile this service reads and writes."""

    user_id: str
    generated_content: dict[str, StoredContent] = {}
    updated_at: datetime | None = None

    def with_entry(self, entry: CacheEntry, *, updated_at: datetime) -> Profile:
        """Return a copy with ``entry`` replacing whatever was stored for its slot."""
        generated = dict(self.generated_content)
        generated[entry.key.slot] = StoredContent.from_entry(entry)
        return self.model_copy(update={"generated_content": generated, "updated_at": updated_at})

    def entries(self) -> list[CacheEntry]:
        return [
            CacheEntry(
                key=CacheKey(user_id=self.user_id, content=item.content, period=item.period),
                payload=item.payload,
                generated_at=item.generated_at,
            )
            for item in self.generated_content.values()
        ]
