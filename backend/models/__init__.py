"""SQLAlchemy models: re-export all."""

from models.user import User  # noqa: F401
from models.chat import ChatMessage, Conversation, Participant  # noqa: F401
