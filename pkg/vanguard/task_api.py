"""
Task endpoints of the Learn Vanguard backend.

    GET    /tasks                 list (search, status, archived filters)
    GET    /tasks/summary         aggregate counts
    GET    /tasks/{id}            single task
    GET    /tasks/user/{id}       tasks for one user
    POST   /tasks                 create
    PUT    /tasks/{id}            update (also used for the archived flag)
    DELETE /tasks/{id}            hard delete
    PATCH  /tasks/{id}/status     status change
    PATCH  /tasks/{id}/assign     assignment
"""
import logging
from typing import Any, Dict, List, Optional, Tuple

from .client import ApiClient
from .errors import ValidationError
from .schema import Task, TaskStatus

logger = logging.getLogger(__name__)


def _unwrap(body: Any) -> Any:
    """Some endpoints wrap their payload in {"data": ...}."""
    if isinstance(body, dict) and "data" in body:
        return body["data"]
    return body


def _task_result(body: Any) -> Tuple[Optional[Task], str]:
    """(task, message) from a create/update body; anything but a dict yields (None, "")."""
    if not isinstance(body, dict):
        return None, ""
    task = body.get("task")
    if task is None and isinstance(body.get("data"), dict):
        task = body["data"]
    message = body.get("message") or ""
    return (Task.from_dict(task) if isinstance(task, dict) else None), str(message)


def _require_id(task_id: Optional[str], action: str) -> str:
    if not task_id:
        raise ValidationError(f"Task ID is required to {action}")
    return str(task_id)


class TaskApi:
    """Typed wrapper over the task endpoints."""

    def __init__(self, client: ApiClient):
        self.client = client

    def get_summary(self) -> Dict[str, Any]:
        body = _unwrap(self.client.get("/tasks/summary"))
        return body if isinstance(body, dict) else {}

    def list_tasks(
        self,
        search: Optional[str] = None,
        status: Optional[str] = None,
        archived: Optional[bool] = None,
    ) -> List[Task]:
        params = {}
        if search:
            params["search"] = search
        if status:
            params["status"] = status
        if archived is not None:
            params["archived"] = "true" if archived else "false"
        body = _unwrap(self.client.get("/tasks", params=params or None))
        return [Task.from_dict(t) for t in (body or []) if isinstance(t, dict)]

    def get_task(self, task_id: str) -> Optional[Task]:
        body = _unwrap(self.client.get(f"/tasks/{_require_id(task_id, 'fetch a task')}"))
        return Task.from_dict(body) if isinstance(body, dict) else None

    def get_user_tasks(self, user_id: str, **filters) -> List[Task]:
        if not user_id:
            raise ValidationError("User ID is required to fetch user tasks")
        params = {k: v for k, v in filters.items() if v is not None and v != ""}
        body = _unwrap(self.client.get(f"/tasks/user/{user_id}", params=params or None))
        return [Task.from_dict(t) for t in (body or []) if isinstance(t, dict)]

    def create_task(self, payload: Dict[str, Any]) -> Tuple[Optional[Task], str]:
        return _task_result(self.client.post("/tasks", json=payload))

    def update_task(self, task_id: str, payload: Dict[str, Any]) -> Tuple[Optional[Task], str]:
        return _task_result(self.client.put(f"/tasks/{_require_id(task_id, 'update a task')}", json=payload))

    def delete_task(self, task_id: str) -> str:
        body = self.client.delete(f"/tasks/{_require_id(task_id, 'delete a task')}") or {}
        return body.get("message", "") if isinstance(body, dict) else ""

    def update_status(
        self,
        task_id: str,
        status: str,
        on_hold_remark: Optional[str] = None,
        date_completed: Optional[str] = None,
    ) -> Optional[Task]:
        """PATCH the status using the kebab-case API enum."""
        task_id = _require_id(task_id, "update task status")
        target = TaskStatus.parse(status)
        body: Dict[str, Any] = {"status": target.value}
        if target is TaskStatus.ON_HOLD and on_hold_remark:
            body["onHoldRemark"] = on_hold_remark
        if date_completed:
            body["dateCompleted"] = date_completed
        data = _unwrap(self.client.patch(f"/tasks/{task_id}/status", json=body))
        return Task.from_dict(data) if isinstance(data, dict) and data else None

    def set_archived(self, task_id: str, archived: bool) -> Tuple[Optional[Task], str]:
        return self.update_task(task_id, {"archived": bool(archived)})

    def assign_task(self, task_id: str, assignee_id: str) -> Optional[Task]:
        task_id = _require_id(task_id, "assign a task")
        if not assignee_id:
            raise ValidationError("Assignee ID is required")
        data = _unwrap(self.client.patch(f"/tasks/{task_id}/assign", json={"assigneeId": assignee_id}))
        return Task.from_dict(data) if isinstance(data, dict) and data else None
