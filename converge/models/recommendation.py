"""Recommendation model produced by recommendation rules."""

from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field, field_validator


class Priority(str, Enum):
    """Recommendation priority, ordered Low < Medium < High < Critical."""

    LOW = "Low"
    MEDIUM = "Medium"
    HIGH = "High"
    CRITICAL = "Critical"

    @property
    def rank(self) -> int:
        return _PRIORITY_RANK[self]

    @classmethod
    def parse(cls, value: Any) -> "Priority":
        """Parse a priority name case-insensitively.

        Raises:
            ValueError: If ``value`` is not a known priority
        """
        if isinstance(value, cls):
            return value
        text = str(value).strip().lower()
        for member in cls:
            if member.value.lower() == text:
                return member
        raise ValueError(
            f"Invalid priority '{value}'. Allowed: {', '.join(m.value for m in cls)}"
        )


_PRIORITY_RANK = {
    Priority.LOW: 0,
    Priority.MEDIUM: 1,
    Priority.HIGH: 2,
    Priority.CRITICAL: 3,
}


class Recommendation(BaseModel):
    """A scored, categorized suggestion derived from a system profile."""

    title: str = Field(..., description="Unique title within a generation run")
    category: str = Field(..., description="Recommendation category, e.g. Development")
    priority: Priority = Field(default=Priority.MEDIUM)
    description: str = Field(default="")
    score: float = Field(default=0.5, ge=0.0, le=1.0, description="Confidence score")
    item: Optional[Dict[str, Any]] = Field(
        default=None,
        description="Definition of the configuration item this recommendation creates",
    )
    auto_apply: bool = Field(default=False, description="Safe to apply without review")
    source: str = Field(default="", description="Plugin or rule set that produced it")
    rule: str = Field(default="", description="Rule name that produced it")
    has_conflict: bool = Field(default=False)

    @field_validator('title', 'category')
    @classmethod
    def not_empty(cls, v: str) -> str:
        if not v or not v.strip():
            raise ValueError('value cannot be empty')
        return v.strip()

    @field_validator('priority', mode='before')
    @classmethod
    def parse_priority(cls, v: Any) -> Priority:
        return Priority.parse(v)

    @property
    def sort_key(self) -> tuple:
        return (-self.priority.rank, -self.score)
