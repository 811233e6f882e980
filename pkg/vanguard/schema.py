"""
Task schema and status mapping.

Status values exist in three spellings:
  API enum      not-started | in-progress | on-hold | completed
  Display       Not Started | In Progress | On Hold | Completed
  Backend label Not yet started | In progress | On-hold | Completed

The mapper functions are lenient (unknown input is echoed back);
TaskStatus.parse() is the strict variant.
"""
from enum import Enum
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional, List, Dict, Any

from .errors import UnknownStatusError


class TaskStatus(Enum):
    """Task workflow states, valued by their API enum."""
    NOT_STARTED = "not-started"
    IN_PROGRESS = "in-progress"
    ON_HOLD = "on-hold"
    COMPLETED = "completed"

    @property
    def display(self) -> str:
        return _DISPLAY[self]

    @property
    def backend_label(self) -> str:
        return _BACKEND_LABELS[self]

    @classmethod
    def parse(cls, value: Optional[str]) -> "TaskStatus":
        """Accept any known spelling, raise UnknownStatusError otherwise."""
        if isinstance(value, cls):
            return value
        if value:
            key = str(value).strip().lower()
            for status in cls:
                spellings = (status.value, status.display.lower(), status.backend_label.lower())
                if key in spellings:
                    return status
        raise UnknownStatusError(f"Unknown task status: {value!r}")


_DISPLAY = {
    TaskStatus.NOT_STARTED: "Not Started",
    TaskStatus.IN_PROGRESS: "In Progress",
    TaskStatus.ON_HOLD: "On Hold",
    TaskStatus.COMPLETED: "Completed",
}

_BACKEND_LABELS = {
    TaskStatus.NOT_STARTED: "Not yet started",
    TaskStatus.IN_PROGRESS: "In progress",
    TaskStatus.ON_HOLD: "On-hold",
    TaskStatus.COMPLETED: "Completed",
}

# Board column order
STATUS_COLUMNS = tuple(s.display for s in TaskStatus)

_TO_DISPLAY = {s.value: s.display for s in TaskStatus}
# Backend spellings seen in task payloads
_TO_DISPLAY["not yet started"] = TaskStatus.NOT_STARTED.display
_TO_DISPLAY["in progress"] = TaskStatus.IN_PROGRESS.display

_TO_API = {s.display: s.value for s in TaskStatus}


def to_display(api_status: Optional[str]) -> str:
    """API enum (or backend label) -> display label. Unknown input is echoed."""
    if not api_status:
        return "Unknown"
    key = api_status.lower() if isinstance(api_status, str) else ""
    return _TO_DISPLAY.get(key, api_status)


def to_api(display_label: Optional[str]) -> str:
    """Display label -> API enum. Unknown input is echoed."""
    if not display_label:
        return "unknown"
    return _TO_API.get(display_label, display_label)


def normalize_status(raw: Optional[str]) -> str:
    """Any spelling -> API enum where known; unknown values pass through."""
    return to_api(to_display(raw))


class TaskPriority(Enum):
    HIGH = "High"
    MEDIUM = "Medium"
    LOW = "Low"

    @property
    def backend_label(self) -> str:
        return f"{self.value} Priority"

    @classmethod
    def from_str(cls, value: Optional[str]) -> "TaskPriority":
        if value:
            key = str(value).strip().lower().replace(" priority", "")
            for priority in cls:
                if priority.value.lower() == key:
                    return priority
        return cls.LOW


def _parse_datetime(value: Any) -> Optional[datetime]:
    if not value:
        return None
    if isinstance(value, datetime):
        return value
    try:
        return datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except ValueError:
        return None


@dataclass
class Task:
    """A task as returned by the backend."""

    id: Optional[str]
    name: str
    description: str = ""
    status: str = TaskStatus.NOT_STARTED.value   # API enum; unknown values kept verbatim
    priority: TaskPriority = TaskPriority.LOW
    deadline: Optional[datetime] = None
    archived: bool = False
    on_hold_remark: Optional[str] = None
    date_completed: Optional[datetime] = None
    assignee: Optional[str] = None
    raw: Dict[str, Any] = field(default_factory=dict, repr=False)

    @property
    def display_status(self) -> str:
        return to_display(self.status)

    @property
    def is_completed(self) -> bool:
        return self.status == TaskStatus.COMPLETED.value

    def is_overdue(self, now: Optional[datetime] = None) -> bool:
        if self.is_completed or not self.deadline:
            return False
        now = now or datetime.now(self.deadline.tzinfo)
        return self.deadline < now

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Task":
        """Deserialize a backend task. Field names vary between endpoints."""
        task_id = data.get("_id") or data.get("id")
        return cls(
            id=str(task_id) if task_id else None,
            name=data.get("taskName") or data.get("name") or "",
            description=data.get("taskDescription") or data.get("description") or "",
            status=normalize_status(data.get("taskStatus") or data.get("status")),
            priority=TaskPriority.from_str(data.get("taskPriority") or data.get("priority")),
            deadline=_parse_datetime(data.get("taskDeadline") or data.get("dueDate")),
            archived=bool(data.get("archived") or data.get("isArchived")),
            on_hold_remark=data.get("onHoldRemark"),
            date_completed=_parse_datetime(data.get("dateCompleted")),
            assignee=data.get("assignee") or data.get("assigneeId"),
            raw=dict(data),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "status": self.status,
            "priority": self.priority.value,
            "deadline": self.deadline.isoformat() if self.deadline else None,
            "archived": self.archived,
            "onHoldRemark": self.on_hold_remark,
            "dateCompleted": self.date_completed.isoformat() if self.date_completed else None,
            "assignee": self.assignee,
        }


def build_task_payload(form: Dict[str, Any], partial: bool = False) -> Dict[str, Any]:
    """
    Map task form data to the backend's field names.

    Full mode (create) always sends name, description, deadline, priority
    and status. Partial mode (update) sends only the keys present in form.
    """
    payload: Dict[str, Any] = {}

    if not partial or "name" in form:
        payload["taskName"] = form.get("name")
    if not partial or "description" in form:
        payload["taskDescription"] = form.get("description")

    # taskDeadline wins over the legacy dueDate key
    if form.get("taskDeadline") is not None:
        payload["taskDeadline"] = form["taskDeadline"]
    elif form.get("dueDate") is not None or not partial:
        payload["taskDeadline"] = form.get("dueDate")

    if not partial or "priority" in form:
        payload["taskPriority"] = TaskPriority.from_str(form.get("priority")).backend_label

    status = form.get("status")
    if not partial or "status" in form:
        try:
            payload["taskStatus"] = TaskStatus.parse(status).backend_label
        except UnknownStatusError:
            payload["taskStatus"] = TaskStatus.ON_HOLD.backend_label

    if status == TaskStatus.ON_HOLD.value:
        payload["onHoldRemark"] = form.get("onHoldRemark") or None
    elif not partial:
        payload["onHoldRemark"] = None

    if "archived" in form:
        payload["archived"] = bool(form["archived"])

    return payload


@dataclass(frozen=True)
class StatusChangeIntent:
    """A cross-column drop awaiting the user's confirmation."""
    task_id: str
    task_name: str
    source_status: str
    target_status: str

    @property
    def requires_remark(self) -> bool:
        return self.target_status == TaskStatus.ON_HOLD.value

    @property
    def prompt(self) -> str:
        if self.requires_remark:
            return (f'Change "{self.task_name}" from {to_display(self.source_status)} '
                    f'to On Hold? A reason is required.')
        return (f'Are you sure you want to change "{self.task_name}" from '
                f'{to_display(self.source_status)} to {to_display(self.target_status)}?')


@dataclass(frozen=True)
class DropEvent:
    """Drop result from the board: column ids are API status values."""
    draggable_id: str
    source_column: str
    destination_column: Optional[str]
    source_index: int = 0
    destination_index: int = 0


@dataclass
class Column:
    """Tasks sharing one display status. Recomputed, never stored."""
    title: str
    tasks: List[Task] = field(default_factory=list)

    @property
    def status(self) -> str:
        return to_api(self.title)

    def __len__(self) -> int:
        return len(self.tasks)
