"""Data models for durable user memory."""

from datetime import datetime

from pydantic import BaseModel, Field

MEMORY_TYPES = ("goal", "pattern", "emotion", "fact", "relationship")


class MemoryFact(BaseModel):
    """A durable, scored statement about a user."""

    id: str
    owner_id: str
    profile_id: str
    text: str
    type: str = "fact"  # one of MEMORY_TYPES
    confidence_score: float = 1.0
    reference_count: int = 0
    created_at: datetime
    last_referenced_at: datetime | None = None
    is_active: bool = True


class MemorySelection(BaseModel):
    """Ranked facts rendered for the system instruction."""

    text: str = ""
    ids: list[str] = Field(default_factory=list)

    @property
    def empty(self) -> bool:
        return not self.ids
