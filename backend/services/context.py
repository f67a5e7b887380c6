"""Per (user, room) conversation context kept in the cache with a 24h TTL."""

from __future__ import annotations

from datetime import datetime, timezone

from services.cache import ResponseCache

CONTEXT_TTL = 86400
HISTORY_LIMIT = 20


def context_key(user_id, room_id) -> str:
    return f"context:{user_id}:{room_id}"


def empty_context() -> dict:
    return {
        "conversation_history": [],
        "user_preferences": {},
        "last_intent": None,
        "last_entities": [],
    }


class ContextStore:
    def __init__(self, cache: ResponseCache):
        self.cache = cache

    async def get_context(self, user_id, room_id) -> dict:
        return await self.cache.get(context_key(user_id, room_id)) or empty_context()

    async def update_context(self, user_id, room_id, data: dict) -> dict:
        """Merge *data* into the stored context; history keeps the newest turns."""
        updated = {
            **await self.get_context(user_id, room_id),
            **data,
            "last_updated": datetime.now(timezone.utc).isoformat(),
        }
        history = updated.get("conversation_history") or []
        updated["conversation_history"] = history[-HISTORY_LIMIT:]
        await self.cache.set(context_key(user_id, room_id), updated, CONTEXT_TTL)
        return updated

    async def record_turn(self, user_id, room_id, text: str, intent: dict, entities: list[dict]) -> dict:
        current = await self.get_context(user_id, room_id)
        turn = {"message": text, "intent": intent, "timestamp": datetime.now(timezone.utc).isoformat()}
        return await self.update_context(
            user_id,
            room_id,
            {
                "last_intent": intent,
                "last_entities": entities,
                "conversation_history": [*current.get("conversation_history", []), turn],
            },
        )

    async def clear(self, user_id, room_id) -> bool:
        return await self.cache.delete(context_key(user_id, room_id))
