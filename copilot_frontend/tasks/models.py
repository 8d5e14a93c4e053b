"""Task domain models decoded from the backend task stream."""

from datetime import UTC, datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


class TaskStatus(str, Enum):
    """Task execution status."""

    QUEUED = "queued"
    RUNNING = "running"
    DONE = "done"
    FAILED = "failed"

    @property
    def rank(self) -> int:
        """Position in the forward-only lifecycle; terminal states share a rank."""
        return _STATUS_RANK[self]

    @property
    def is_terminal(self) -> bool:
        return self in (TaskStatus.DONE, TaskStatus.FAILED)

    @property
    def is_active(self) -> bool:
        return self in (TaskStatus.QUEUED, TaskStatus.RUNNING)


_STATUS_RANK = {
    TaskStatus.QUEUED: 0,
    TaskStatus.RUNNING: 1,
    TaskStatus.DONE: 2,
    TaskStatus.FAILED: 2,
}


class StreamEventKind(str, Enum):
    """Named events emitted by the task stream."""

    STATUS = "status"
    HEARTBEAT = "heartbeat"


class Task(BaseModel):
    """Snapshot of one backend task as seen by the UI."""

    model_config = ConfigDict(frozen=True, extra="ignore", populate_by_name=True)

    id: str = Field(min_length=1, description="Backend-assigned task identifier")
    status: TaskStatus = Field(description="Current lifecycle status")
    progress: int = Field(
        default=0, ge=0, le=100, description="Completion percentage while running"
    )
    label: str = Field(default="", description="Human-readable task label")
    tenant: str = Field(min_length=1, description="Tenant owning the task")
    type: str | None = Field(default=None, description="Optional classification")
    result: Any = Field(default=None, description="Payload when done")
    error: Any = Field(default=None, description="Payload when failed")
    updated_at: datetime | None = Field(
        default=None,
        alias="updatedAt",
        description="When the last applied event was received",
    )

    @field_validator("progress", mode="before")
    @classmethod
    def round_progress(cls, v):
        """Backends sometimes report fractional percentages."""
        if v is None:
            return 0
        if isinstance(v, float):
            return round(v)
        return v

    @model_validator(mode="before")
    @classmethod
    def drop_foreign_payloads(cls, data: Any) -> Any:
        """Result belongs to done tasks only, error to failed tasks only."""
        if not isinstance(data, dict):
            return data
        status = getattr(data.get("status"), "value", data.get("status"))
        data = dict(data)
        if status != TaskStatus.DONE.value:
            data["result"] = None
        if status != TaskStatus.FAILED.value:
            data["error"] = None
        return data

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    @property
    def is_active(self) -> bool:
        return self.status.is_active

    def to_dict(self) -> dict[str, Any]:
        """Convert to the stream's JSON shape."""
        return {
            "id": self.id,
            "status": self.status.value,
            "progress": self.progress,
            "label": self.label,
            "tenant": self.tenant,
            "type": self.type,
            "result": self.result,
            "error": self.error,
            "updatedAt": self.updated_at.isoformat() if self.updated_at else None,
        }


class TaskEvent(BaseModel):
    """A decoded `status` event waiting to be applied to the registry."""

    model_config = ConfigDict(frozen=True)

    task: Task
    received_at: datetime = Field(default_factory=lambda: datetime.now(UTC))

    @classmethod
    def from_payload(
        cls, payload: dict[str, Any], received_at: datetime | None = None
    ) -> "TaskEvent":
        """Validate a raw status body; raises pydantic.ValidationError."""
        task = Task.model_validate(payload)
        if received_at is None:
            return cls(task=task)
        return cls(task=task, received_at=received_at)
