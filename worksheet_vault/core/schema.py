"""
Worksheet progress records and derived summaries.
"""

from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Any, Dict, List, Optional


@dataclass(frozen=True)
class RecordKey:
    """Composite key identifying one worksheet record: (owner, phase, worksheet)."""
    owner_id: str
    group_key: int
    record_key: str

    def __post_init__(self):
        if not self.owner_id or not str(self.owner_id).strip():
            raise ValueError("owner_id cannot be empty")
        if not self.record_key or not str(self.record_key).strip():
            raise ValueError("record_key cannot be empty")


@dataclass
class WorksheetRecord:
    owner_id: str
    group_key: int
    record_key: str
    document: Dict[str, Any]
    completed: bool
    completed_at: Optional[datetime]
    created_at: datetime
    updated_at: datetime
    optimistic: bool = False  # synthesized locally after a write timeout

    @property
    def key(self) -> RecordKey:
        return RecordKey(self.owner_id, self.group_key, self.record_key)

    @property
    def progress(self) -> int:
        """0 for an empty worksheet, 50 once started, 100 when completed."""
        if self.completed:
            return 100
        if self.document:
            return 50
        return 0

    def with_document(self, document: Dict[str, Any]) -> "WorksheetRecord":
        return replace(self, document=document)

    def to_dict(self) -> Dict[str, Any]:
        """Convert record to dictionary for JSON serialization."""
        return {
            "owner_id": self.owner_id,
            "phase_number": self.group_key,
            "worksheet_id": self.record_key,
            "data": self.document,
            "completed": self.completed,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
            "progress": self.progress,
            "optimistic": self.optimistic,
        }


@dataclass
class PhaseSummary:
    phase_number: int
    completed: int
    total: int
    worksheets: List[WorksheetRecord] = field(default_factory=list)

    @property
    def percentage(self) -> int:
        if self.total <= 0:
            return 0
        return min(100, round(self.completed * 100 / self.total))
