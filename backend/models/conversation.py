"""Conversation data models."""
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Dict, List, Optional


class Role(str, Enum):
    """Speaker of a turn, using the role names the chat APIs expect."""
    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"


@dataclass
class Turn:
    """Represents a single message in a conversation."""
    role: Role
    content: str
    created_at: Optional[datetime] = None  # None only for the seeded system turn

    def to_message(self) -> Dict[str, str]:
        """Return the ``{role, content}`` shape sent upstream."""
        return {"role": self.role.value, "content": self.content}


@dataclass
class ConversationContext:
    """Ordered turns for one connection; index 0 is always the system turn."""
    connection_id: str
    turns: List[Turn] = field(default_factory=list)

    @property
    def last_activity(self) -> Optional[datetime]:
        """Timestamp of the newest turn, or None if only the system turn exists."""
        return self.turns[-1].created_at if self.turns else None

    def non_system_count(self) -> int:
        return len(self.turns) - 1
