"""
Cached task queries and mutations.

Reads go through a small key/value cache with per-entry stale times.
Every successful mutation invalidates the ("tasks",) prefix so the next
read refetches. Mutations never raise: failures become destructive toasts
and a False return.
"""
import logging
import time
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Tuple

from .errors import ApiError, ValidationError, VanguardError, extract_error_message
from .events import ApiEvent, EventBus
from .notify import Notifier
from .schema import Task, TaskPriority, TaskStatus, build_task_payload
from .task_api import TaskApi

logger = logging.getLogger(__name__)

TASKS_KEY = ("tasks",)
SUMMARY_KEY = ("tasks", "summary")

_MISSING = object()


class QueryCache:
    """Keyed cache entries that go stale after a per-entry time."""

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self.clock = clock
        self._entries: Dict[Tuple, Tuple[Any, float, float]] = {}

    def get(self, key: Tuple) -> Any:
        """Fresh value for key, or the _MISSING sentinel."""
        entry = self._entries.get(key)
        if entry is None:
            return _MISSING
        value, fetched_at, stale_after = entry
        if self.clock() - fetched_at >= stale_after:
            return _MISSING
        return value

    def set(self, key: Tuple, value: Any, stale_after: float) -> None:
        self._entries[key] = (value, self.clock(), stale_after)

    def invalidate(self, prefix: Tuple) -> int:
        """Drop every entry whose key starts with prefix. Returns the count."""
        doomed = [k for k in self._entries if k[:len(prefix)] == prefix]
        for key in doomed:
            del self._entries[key]
        return len(doomed)

    def __contains__(self, key: Tuple) -> bool:
        return self.get(key) is not _MISSING


def _tasks_key(search: Optional[str], status: Optional[str], archived: Optional[bool]) -> Tuple:
    return TASKS_KEY + (("search", search or ""), ("status", status or ""), ("archived", archived))


def local_stats(tasks: List[Task], backend: Dict[str, Any], now: Optional[datetime] = None) -> Dict[str, int]:
    """Counts computed from the loaded tasks; backend totals win where present."""
    now = now or datetime.now(timezone.utc)

    def count(status: TaskStatus) -> int:
        return sum(1 for t in tasks if t.status == status.value)

    def overdue(t: Task) -> bool:
        if not t.deadline:
            return False
        deadline = t.deadline if t.deadline.tzinfo else t.deadline.replace(tzinfo=timezone.utc)
        return not t.is_completed and deadline < now

    return {
        "total": backend.get("total") or len(tasks),
        "completed": backend.get("completed") or count(TaskStatus.COMPLETED),
        "inProgress": count(TaskStatus.IN_PROGRESS),
        "notStarted": count(TaskStatus.NOT_STARTED),
        "onHold": count(TaskStatus.ON_HOLD),
        "overdue": backend.get("overdue") or sum(1 for t in tasks if overdue(t)),
        "archived": backend.get("archived") or sum(1 for t in tasks if t.archived),
        "highPriority": sum(
            1 for t in tasks if t.priority is TaskPriority.HIGH and not t.is_completed
        ),
    }


class TaskQuery:
    """Task reads with caching, and mutations with pending flags."""

    def __init__(
        self,
        api: TaskApi,
        notifier: Notifier,
        bus: Optional[EventBus] = None,
        cache: Optional[QueryCache] = None,
        tasks_stale_secs: float = 300.0,
        summary_stale_secs: float = 10.0,
    ):
        self.api = api
        self.notifier = notifier
        self.bus = bus
        self.cache = cache or QueryCache()
        self.tasks_stale_secs = tasks_stale_secs
        self.summary_stale_secs = summary_stale_secs
        self.last_error: Optional[Exception] = None
        self._pending: set = set()
        self._last_filters: Dict[str, Any] = {}

    # ──────────────────────────────────────────
    # Queries
    # ──────────────────────────────────────────

    def tasks(
        self,
        search: Optional[str] = None,
        status: Optional[str] = None,
        archived: Optional[bool] = False,
    ) -> List[Task]:
        """Tasks matching the server-side filters. Returns [] on failure."""
        self._last_filters = {"search": search, "status": status, "archived": archived}
        key = _tasks_key(search, status, archived)
        cached = self.cache.get(key)
        if cached is not _MISSING:
            return cached

        try:
            tasks = self.api.list_tasks(search=search, status=status, archived=archived)
        except VanguardError as e:
            self.last_error = e
            logger.error(f"Error fetching tasks: {e}")
            self.notifier.error(self._describe(e, "Failed to fetch tasks"))
            return []

        self.last_error = None
        self.cache.set(key, tasks, self.tasks_stale_secs)
        return tasks

    def backend_summary(self) -> Dict[str, Any]:
        cached = self.cache.get(SUMMARY_KEY)
        if cached is not _MISSING:
            return cached
        try:
            summary = self.api.get_summary()
        except VanguardError as e:
            self.last_error = e
            logger.error(f"Error fetching task summary: {e}")
            return {}
        self.cache.set(SUMMARY_KEY, summary, self.summary_stale_secs)
        logger.debug(f"Task summary data refreshed: {summary}")
        return summary

    def summary(self) -> Dict[str, Any]:
        """Backend summary merged with stats computed from the last task list."""
        backend = self.backend_summary()
        tasks = self.tasks(**self._last_filters)
        return {**backend, **local_stats(tasks, backend)}

    def refetch_summary(self) -> Dict[str, Any]:
        self.cache.invalidate(SUMMARY_KEY)
        return self.backend_summary()

    def refetch(self) -> None:
        """Drop every task entry and reload the current view."""
        self.cache.invalidate(TASKS_KEY)
        self.tasks(**self._last_filters)
        self.backend_summary()

    # ──────────────────────────────────────────
    # Pending flags
    # ──────────────────────────────────────────

    @contextmanager
    def _pending_flag(self, name: str):
        self._pending.add(name)
        try:
            yield
        finally:
            self._pending.discard(name)

    @property
    def is_creating(self) -> bool:
        return "create" in self._pending

    @property
    def is_updating(self) -> bool:
        return "update" in self._pending

    @property
    def is_deleting(self) -> bool:
        return "delete" in self._pending

    @property
    def is_updating_status(self) -> bool:
        return "status" in self._pending

    @property
    def is_archiving(self) -> bool:
        return "archive" in self._pending

    @property
    def is_assigning(self) -> bool:
        return "assign" in self._pending

    @property
    def is_mutating(self) -> bool:
        return bool(self._pending)

    # ──────────────────────────────────────────
    # Mutations
    # ──────────────────────────────────────────

    def _describe(self, error: Exception, fallback: str) -> str:
        if isinstance(error, (ApiError, ValidationError)):
            return extract_error_message(error)
        return fallback

    def _mutate(self, flag: str, action: Callable[[], Any], error_text: str) -> Tuple[bool, Any]:
        with self._pending_flag(flag):
            try:
                result = action()
            except VanguardError as e:
                self.last_error = e
                logger.error(f"{error_text}: {e}")
                self.notifier.error(self._describe(e, error_text))
                return False, None
        self.last_error = None
        self.cache.invalidate(TASKS_KEY)
        return True, result

    def _emit(self, event: ApiEvent, **payload) -> None:
        if self.bus is not None:
            self.bus.emit(event, **payload)

    def create_task(self, form: Dict[str, Any]) -> bool:
        ok, result = self._mutate(
            "create",
            lambda: self.api.create_task(build_task_payload(form)),
            "Failed to create task",
        )
        if ok:
            task, message = result
            self.notifier.toast("Success", message or "Task created successfully")
            self._emit(ApiEvent.TASK_CREATED, task=task)
        return ok

    def update_task(self, task_id: Optional[str], data: Dict[str, Any]) -> bool:
        task_id = task_id or data.get("id")

        def action():
            if not task_id:
                raise ValidationError("Task ID is required for updating a task")
            logger.info(f"Updating task {task_id} with {data}")
            return self.api.update_task(task_id, build_task_payload(data, partial=True))

        ok, _ = self._mutate("update", action, "Failed to update task")
        if ok:
            self.notifier.toast("Success", "Task updated successfully")
            self._emit(ApiEvent.TASK_UPDATED, task_id=task_id)
        return ok

    def delete_task(self, task_id: Optional[str]) -> bool:
        ok, _ = self._mutate("delete", lambda: self.api.delete_task(task_id), "Failed to delete task")
        if ok:
            self.notifier.toast("Success", "Task deleted successfully")
            self._emit(ApiEvent.TASK_DELETED, task_id=task_id)
        return ok

    def update_task_status(
        self,
        task_id: Optional[str],
        status: str,
        on_hold_remark: Optional[str] = None,
        date_completed: Optional[str] = None,
    ) -> bool:
        ok, _ = self._mutate(
            "status",
            lambda: self.api.update_status(task_id, status, on_hold_remark, date_completed),
            "Failed to update task status",
        )
        if ok:
            self.notifier.toast("Success", "Task status updated successfully")
            self._emit(ApiEvent.TASK_UPDATED, task_id=task_id, status=status)
        return ok

    def archive_task(self, task_id: Optional[str], archived: bool = True) -> bool:
        ok, _ = self._mutate(
            "archive",
            lambda: self.api.set_archived(task_id, archived),
            "Failed to archive task" if archived else "Failed to restore task",
        )
        if ok:
            message = "Task archived successfully" if archived else "Task restored successfully"
            self.notifier.toast("Success", message)
            self._emit(ApiEvent.TASK_UPDATED, task_id=task_id, archived=archived)
        return ok

    def assign_task(self, task_id: Optional[str], assignee_id: str) -> bool:
        ok, _ = self._mutate(
            "assign",
            lambda: self.api.assign_task(task_id, assignee_id),
            "Failed to assign task",
        )
        if ok:
            self.notifier.toast("Success", "Task assigned successfully")
            self._emit(ApiEvent.TASK_UPDATED, task_id=task_id, assignee=assignee_id)
        return ok
