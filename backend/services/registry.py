"""ActiveChatRegistry: process-wide view of chats currently in use."""

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from datetime import datetime

from database import utcnow


@dataclass
class ActiveChat:
    room_id: str
    conversation_id: int
    participants: set[int] = field(default_factory=set)
    last_activity: datetime = field(default_factory=utcnow)


class ActiveChatRegistry:
    def __init__(self):
        self._chats: dict[str, ActiveChat] = {}
        self._lock = threading.Lock()

    def register(self, room_id: str, conversation_id: int, participants=()) -> ActiveChat:
        with self._lock:
            entry = self._chats.get(room_id)
            if entry is None:
                entry = ActiveChat(room_id, conversation_id, set(participants))
                self._chats[room_id] = entry
            else:
                entry.participants.update(participants)
                entry.last_activity = utcnow()
            return entry

    def add_participant(self, room_id: str, user_id: int) -> None:
        with self._lock:
            entry = self._chats.get(room_id)
            if entry is not None:
                entry.participants.add(user_id)
                entry.last_activity = utcnow()

    def touch(self, room_id: str) -> None:
        with self._lock:
            entry = self._chats.get(room_id)
            if entry is not None:
                entry.last_activity = utcnow()

    def evict(self, room_id: str) -> bool:
        with self._lock:
            return self._chats.pop(room_id, None) is not None

    def get(self, room_id: str) -> ActiveChat | None:
        with self._lock:
            entry = self._chats.get(room_id)
            if entry is None:
                return None
            return ActiveChat(entry.room_id, entry.conversation_id, set(entry.participants), entry.last_activity)

    def __contains__(self, room_id: str) -> bool:
        with self._lock:
            return room_id in self._chats

    def __len__(self) -> int:
        with self._lock:
            return len(self._chats)

    def room_ids(self) -> list[str]:
        with self._lock:
            return list(self._chats)

    def clear(self) -> None:
        with self._lock:
            self._chats.clear()


active_chats = ActiveChatRegistry()
