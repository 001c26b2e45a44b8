from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Optional, Union
from uuid import UUID

from bulkops.domain.states import OperationStatus, TERMINAL_STATUSES

ItemId = Union[int, str]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def compute_progress(processed: int, total: int) -> float:
    if total <= 0:
        return 0.0
    return round(processed / total * 100, 2)


@dataclass(frozen=True)
class ItemFailure:
    item_id: Optional[ItemId]
    error_message: str

    def to_dict(self) -> dict[str, Any]:
        return {"item_id": self.item_id, "error_message": self.error_message}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ItemFailure":
        return cls(item_id=data.get("item_id"), error_message=data.get("error_message", ""))


@dataclass(frozen=True)
class NewOperation:
    operation_type: str
    operation_name: str
    items: tuple[ItemId, ...]
    options: dict[str, Any]
    owner: Optional[str] = None


@dataclass
class OperationRecord:
    id: UUID
    operation_type: str
    operation_name: str
    items: tuple[ItemId, ...]
    options: dict[str, Any]
    status: OperationStatus

    total_items: int = 0
    processed_items: int = 0
    progress_percentage: float = 0.0

    errors: list[ItemFailure] = field(default_factory=list)
    # Keyed by str(item_id); JSON object keys are always strings
    rollback_data: dict[str, Any] = field(default_factory=dict)
    rollback_errors: list[ItemFailure] = field(default_factory=list)
    can_rollback: bool = False

    owner: Optional[str] = None
    started_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)
    completed_at: Optional[datetime] = None
    rolled_back_at: Optional[datetime] = None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @property
    def finished_at(self) -> Optional[datetime]:
        """Timestamp the retention window is measured from."""
        return self.rolled_back_at or self.completed_at

    def progress(self) -> "OperationProgress":
        return OperationProgress(
            processed_items=self.processed_items,
            total_items=self.total_items,
            progress_percentage=self.progress_percentage,
            status=self.status,
        )


@dataclass(frozen=True)
class OperationProgress:
    processed_items: int
    total_items: int
    progress_percentage: float
    status: OperationStatus
