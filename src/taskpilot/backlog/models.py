"""Data models for the Backlog module."""

from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum
from typing import Any


class Risk(StrEnum):
    """Risk classification of a batch."""

    LOW = "low"
    MED = "med"
    HIGH = "high"


@dataclass(frozen=True)
class Batch:
    """A labeled, ordered group of task IDs executed as one unit.

    Attributes:
        id: Stable batch identifier.
        title: Human-readable title (used as the PR title).
        task_ids: Ordered task identifiers, never empty.
        rationale: Short explanation of why these tasks belong together.
        risk: Risk classification.
    """

    id: str
    title: str
    task_ids: tuple[str, ...]
    rationale: str = ""
    risk: Risk = Risk.MED

    def __post_init__(self) -> None:
        if not self.task_ids:
            raise ValueError(f"Batch {self.id!r} must contain at least one task")
        # Accept lists from callers but keep the value hashable
        object.__setattr__(self, "task_ids", tuple(self.task_ids))
        object.__setattr__(self, "risk", Risk(self.risk))

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "task_ids": list(self.task_ids),
            "rationale": self.rationale,
            "risk": self.risk.value,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Batch:
        return cls(
            id=data["id"],
            title=data.get("title", ""),
            task_ids=tuple(data["task_ids"]),
            rationale=data.get("rationale", ""),
            risk=Risk(data.get("risk", Risk.MED.value)),
        )
