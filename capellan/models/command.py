"""Command identifiers and caller context consumed by the RAG core and the gate."""
from dataclasses import dataclass
from enum import Enum
from typing import Optional, Union


class CommandType(Enum):
    """Closed set of command types; each maps to one or more collections."""
    HERESY_ANALYSIS = "heresy_analysis"
    DAILY_SERMON = "daily_sermon"
    KNOWLEDGE_SEARCH = "knowledge_search"
    QUESTIONS = "questions"
    GENERAL = "general"

    @classmethod
    def parse(cls, value: Union["CommandType", str, None]) -> "CommandType":
        """Resolve a raw identifier, falling back to GENERAL when unmapped."""
        if isinstance(value, cls):
            return value
        try:
            return cls(value)
        except ValueError:
            return cls.GENERAL


@dataclass
class CommandContext:
    """Who is asking and from where.

    Attributes:
        user_id: Stable user identifier on the chat platform.
        username: Display name, used in "system busy" messages.
        channel_id: Channel the request came from.
        is_privileged: Exempt from the rate limiter (never from the task slots).
        guild_id: Optional server identifier.
    """
    user_id: str
    username: str
    channel_id: str
    is_privileged: bool = False
    guild_id: Optional[str] = None
