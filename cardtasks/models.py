"""
Pydantic models for the cardtasks engine.

Defines task nodes, the create/update payloads, list filters, progress
summaries and change events, with validation and typing.
"""

from datetime import date, datetime
from enum import Enum
from typing import Any, Dict, List, Literal, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from cardtasks.utils.datetime_utils import utc_now


class TaskStatus(str, Enum):
    """Lifecycle status of a task node."""
    TODO = "todo"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"


class TaskPriority(str, Enum):
    """Task priority levels, lowest first."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"

    @property
    def rank(self) -> int:
        """Numeric rank used for sorting (low=0 ... critical=3)."""
        return _PRIORITY_RANK[self]


_PRIORITY_RANK = {
    TaskPriority.LOW: 0,
    TaskPriority.MEDIUM: 1,
    TaskPriority.HIGH: 2,
    TaskPriority.CRITICAL: 3,
}


def _clean_title(v: Optional[str]) -> Optional[str]:
    if v is None:
        return v
    v = v.strip()
    if not v:
        raise ValueError("Title cannot be empty")
    return v


class Card(BaseModel):
    """A kanban card that owns one task tree."""

    id: UUID = Field(default_factory=uuid4, description="Unique identifier for the card")
    title: str = Field(..., min_length=1, max_length=255, description="Card title")
    created_at: datetime = Field(default_factory=utc_now, description="Creation timestamp")


class TaskNode(BaseModel):
    """
    A single item in a card's task hierarchy.

    Nodes are stored flat with a parent_id back-reference. The ``children``
    field is only populated by hierarchical listings.
    """

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "id": "123e4567-e89b-12d3-a456-426614174001",
                "card_id": "123e4567-e89b-12d3-a456-426614174000",
                "parent_id": None,
                "title": "Auth System",
                "status": "todo",
                "priority": "medium",
                "order_index": 0,
            }
        }
    )

    id: UUID = Field(default_factory=uuid4, description="Unique identifier for the task")
    card_id: UUID = Field(..., description="ID of the card this task belongs to")
    parent_id: Optional[UUID] = Field(default=None, description="Parent task ID, None for roots")
    title: str = Field(..., min_length=1, max_length=255, description="Task title")
    description: Optional[str] = Field(default=None, description="Optional task description")

    status: TaskStatus = Field(default=TaskStatus.TODO)
    priority: TaskPriority = Field(default=TaskPriority.MEDIUM)
    order_index: int = Field(default=0, ge=0, description="Order within siblings")

    estimated_hours: Optional[float] = Field(default=None, ge=0)
    actual_hours: Optional[float] = Field(default=None, ge=0)
    assignee: Optional[str] = Field(default=None, max_length=255)
    due_date: Optional[date] = Field(default=None)

    created_at: datetime = Field(default_factory=utc_now, description="Creation timestamp")
    updated_at: datetime = Field(default_factory=utc_now, description="Last modification timestamp")
    completed_at: Optional[datetime] = Field(default=None, description="Completion timestamp")

    children: List["TaskNode"] = Field(default_factory=list)

    @field_validator("title")
    @classmethod
    def validate_title(cls, v: str) -> str:
        """
        Reject blank titles.

        Raises:
            ValueError: If the title is empty or whitespace only
        """
        return _clean_title(v)

    @model_validator(mode="after")
    def validate_completion_timestamp(self) -> "TaskNode":
        """
        completed_at must be set exactly when status is completed.

        Raises:
            ValueError: If status and completed_at disagree
        """
        if self.status == TaskStatus.COMPLETED and self.completed_at is None:
            raise ValueError("Completed tasks must have completed_at set")
        if self.status != TaskStatus.COMPLETED and self.completed_at is not None:
            raise ValueError("Only completed tasks may have completed_at set")
        return self

    @property
    def is_completed(self) -> bool:
        return self.status == TaskStatus.COMPLETED


class TaskAttributes(BaseModel):
    """Optional attributes accepted when creating a task."""

    model_config = ConfigDict(extra="forbid")

    description: Optional[str] = None
    status: TaskStatus = TaskStatus.TODO
    priority: TaskPriority = TaskPriority.MEDIUM
    estimated_hours: Optional[float] = Field(default=None, ge=0)
    assignee: Optional[str] = Field(default=None, max_length=255)
    due_date: Optional[date] = None


class TaskPatch(BaseModel):
    """
    Partial update for a task.

    Only fields explicitly provided are applied; hierarchy fields
    (parent_id, order_index, card_id) are rejected since they change
    through move operations only.
    """

    model_config = ConfigDict(extra="forbid")

    title: Optional[str] = Field(default=None, min_length=1, max_length=255)
    description: Optional[str] = None
    status: Optional[TaskStatus] = None
    priority: Optional[TaskPriority] = None
    estimated_hours: Optional[float] = Field(default=None, ge=0)
    assignee: Optional[str] = Field(default=None, max_length=255)
    due_date: Optional[date] = None

    @model_validator(mode="before")
    @classmethod
    def reject_null_required_fields(cls, data: Any) -> Any:
        """title, status and priority can be changed but never cleared."""
        if isinstance(data, dict):
            for key in ("title", "status", "priority"):
                if key in data and data[key] is None:
                    raise ValueError(f"{key} cannot be null")
        return data

    @field_validator("title")
    @classmethod
    def validate_title(cls, v: Optional[str]) -> Optional[str]:
        return _clean_title(v)

    def changes(self) -> Dict[str, Any]:
        """Fields the caller explicitly set."""
        return self.model_dump(exclude_unset=True)


SortField = Literal[
    "order_index", "priority", "status", "title", "estimated_hours", "created_at", "due_date"
]


class TaskFilters(BaseModel):
    """Filtering and sorting options for listing a card's tasks."""

    model_config = ConfigDict(extra="forbid")

    status: Optional[TaskStatus] = None
    priority: Optional[TaskPriority] = None
    assignee: Optional[str] = None
    search: Optional[str] = None
    sort_by: SortField = "order_index"
    sort_order: Literal["asc", "desc"] = "asc"
    include_hierarchy: bool = False


class EfficiencyMetrics(BaseModel):
    """Estimate-versus-actual statistics for tasks that define both."""

    tasks_on_time: int = 0
    tasks_over_estimate: int = 0
    average_estimation_accuracy: Optional[float] = None


class CategoryProgress(BaseModel):
    """Progress of one direct child's subtree, used for grouping displays."""

    node_id: UUID
    category: str
    total: int
    completed: int
    progress_percentage: float
    estimated_hours: float
    actual_hours: float


class ProgressSummary(BaseModel):
    """Recursive progress rollup for a card or for one node's descendants."""

    card_id: UUID
    node_id: Optional[UUID] = None

    total: int = 0
    todo: int = 0
    in_progress: int = 0
    completed: int = 0
    completion_percentage: float = 0.0

    total_estimated_hours: float = 0.0
    total_actual_hours: float = 0.0
    accuracy_percentage: Optional[float] = None

    by_priority: Dict[str, int] = Field(default_factory=dict)
    efficiency: EfficiencyMetrics = Field(default_factory=EfficiencyMetrics)
    categories: List[CategoryProgress] = Field(default_factory=list)


class ChangeEventType(str, Enum):
    """Kinds of committed mutations broadcast to other viewers."""
    TASK_CREATED = "task_created"
    TASK_UPDATED = "task_updated"
    TASK_COMPLETED = "task_completed"
    TASK_MOVED = "task_moved"
    TASK_DELETED = "task_deleted"
    TASKS_CLEARED = "tasks_cleared"


class ChangeEvent(BaseModel):
    """One committed mutation, handed to the change notifier."""

    type: ChangeEventType
    card_id: UUID
    node_id: Optional[UUID] = None
    payload: Dict[str, Any] = Field(default_factory=dict)
    occurred_at: datetime = Field(default_factory=utc_now)
