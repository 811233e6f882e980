"""
Kanban board over the task query layer.

A cross-column drop is a two-phase change:

  handle_drop()  -> card moves optimistically, a StatusChangeIntent is held
  confirm()      -> status mutation fires (remark required for On Hold)
  decline()      -> one compensating mutation back to the source status

Archive and delete are staged the same way as a PendingAction that is
either confirmed or cancelled.
"""
import logging
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional

from .notify import Notifier, SUCCESS
from .query import TaskQuery
from .schema import (
    Column,
    DropEvent,
    STATUS_COLUMNS,
    StatusChangeIntent,
    Task,
    TaskPriority,
    TaskStatus,
    to_display,
)

logger = logging.getLogger(__name__)

ARCHIVE = "archive"
DELETE = "delete"


def server_id(task: Task) -> Optional[str]:
    """The id the backend knows the task by (`_id` first, then `id`)."""
    raw_id = task.raw.get("_id") or task.raw.get("id") or task.id
    return str(raw_id) if raw_id else None


@dataclass(frozen=True)
class PendingAction:
    """A destructive action awaiting confirmation."""
    kind: str                 # ARCHIVE | DELETE
    task_id: Optional[str]
    task_name: str

    @property
    def prompt(self) -> str:
        if self.kind == DELETE:
            return (f'Are you sure you want to delete "{self.task_name}"? '
                    f'This action cannot be undone.')
        return f'Are you sure you want to archive "{self.task_name}"?'


class TaskBoard:
    """Four status columns plus the drag/confirm/undo workflow."""

    def __init__(
        self,
        query: TaskQuery,
        notifier: Notifier,
        search: str = "",
        show_archived: bool = False,
        remark_max_length: int = 30,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ):
        self.query = query
        self.notifier = notifier
        self.search = search
        self.show_archived = show_archived
        self.remark_max_length = remark_max_length
        self.clock = clock
        self.pending_intent: Optional[StatusChangeIntent] = None
        self.pending_action: Optional[PendingAction] = None
        # task id -> status shown before the server confirms
        self._overrides: Dict[str, str] = {}

    # ──────────────────────────────────────────
    # View
    # ──────────────────────────────────────────

    def _matches(self, task: Task) -> bool:
        if self.search:
            needle = self.search.lower()
            if needle not in task.name.lower() and needle not in task.description.lower():
                return False
        return task.archived == self.show_archived

    def visible_tasks(self) -> List[Task]:
        """Filtered task list with unconfirmed moves applied."""
        tasks = self.query.tasks(search=self.search or None, archived=self.show_archived)
        visible = []
        for task in tasks:
            if not self._matches(task):
                continue
            override = self._overrides.get(server_id(task))
            visible.append(replace(task, status=override) if override else task)
        return visible

    def find_task(self, task_id: str) -> Optional[Task]:
        for task in self.visible_tasks():
            if str(task.id) == str(task_id) or server_id(task) == str(task_id):
                return task
        return None

    def columns(self) -> List[Column]:
        tasks = self.visible_tasks()
        return [
            Column(title=title, tasks=[t for t in tasks if t.display_status == title])
            for title in STATUS_COLUMNS
        ]

    def set_filters(self, search: Optional[str] = None, show_archived: Optional[bool] = None) -> None:
        if search is not None:
            self.search = search
        if show_archived is not None:
            self.show_archived = show_archived

    # ──────────────────────────────────────────
    # Drag and drop
    # ──────────────────────────────────────────

    def handle_drop(self, event: DropEvent) -> Optional[StatusChangeIntent]:
        """Interpret a drop. Returns the intent awaiting confirmation, if any."""
        if not event.destination_column:
            return None
        if event.destination_column == event.source_column:
            # Reordering inside a column is not persisted
            return None

        task = self.find_task(event.draggable_id)
        if task is None:
            logger.error(f"Task not found for draggable id: {event.draggable_id}")
            self.notifier.error("Failed to update task: Task not found")
            return None

        task_id = server_id(task)
        if not task_id:
            logger.error(f"Invalid task ID in drag operation: {task}")
            self.notifier.error("Failed to update task: Invalid task ID")
            return None

        if self.show_archived or task.archived:
            logger.debug(f"Ignoring drop of archived task {task_id}")
            return None

        source_status = event.source_column
        pending = self.pending_intent
        if pending is not None:
            # Superseded before the user answered; nothing was sent for it
            logger.info(f"Discarding unconfirmed move of {pending.task_id}")
            self._overrides.pop(pending.task_id, None)
            self.pending_intent = None
            if pending.task_id == task_id:
                # The server still holds the status the first drop started from
                source_status = pending.source_status

        if event.destination_column == source_status:
            return None

        intent = StatusChangeIntent(
            task_id=task_id,
            task_name=task.name,
            source_status=source_status,
            target_status=event.destination_column,
        )
        self._overrides[task_id] = intent.target_status
        self.pending_intent = intent
        return intent

    def can_confirm(self, remark: Optional[str] = None) -> bool:
        """Whether the confirm action is enabled for the pending intent."""
        if self.pending_intent is None:
            return False
        if not self.pending_intent.requires_remark:
            return True
        text = (remark or "").strip()
        return bool(text) and len(text) <= self.remark_max_length

    def confirm(self, remark: Optional[str] = None) -> bool:
        """Commit the pending status change. Returns True if the server accepted it."""
        intent = self.pending_intent
        if intent is None:
            return False

        if not self.can_confirm(remark):
            self.notifier.error(
                f"Please enter a reason for putting this task on hold "
                f"(max {self.remark_max_length} characters)."
            )
            return False

        date_completed = None
        if intent.target_status == TaskStatus.COMPLETED.value:
            date_completed = self.clock().isoformat()

        on_hold_remark = remark.strip() if intent.requires_remark else None
        ok = self.query.update_task_status(
            task_id=intent.task_id,
            status=intent.target_status,
            on_hold_remark=on_hold_remark,
            date_completed=date_completed,
        )

        self.pending_intent = None
        # On success the invalidated cache now carries the new status;
        # on failure dropping the override puts the card back.
        self._overrides.pop(intent.task_id, None)

        if ok:
            if date_completed:
                self.notifier.toast("🎉 Task Completed!", "Great job on completing this task!", SUCCESS)
            else:
                self.notifier.toast(
                    "Status Updated",
                    f"Task status changed to {to_display(intent.target_status)}",
                )
        self.query.refetch_summary()
        return ok

    def decline(self) -> bool:
        """Undo the optimistic move with one mutation back to the source status."""
        intent = self.pending_intent
        if intent is None:
            return False
        self.pending_intent = None
        self._overrides.pop(intent.task_id, None)
        return self.query.update_task_status(task_id=intent.task_id, status=intent.source_status)

    # ──────────────────────────────────────────
    # Archive / delete
    # ──────────────────────────────────────────

    def _stage(self, kind: str, task_id: str) -> Optional[PendingAction]:
        verb = "archive" if kind == ARCHIVE else "delete"
        if not task_id:
            self.notifier.error(f"Failed to {verb} task: Invalid task ID")
            return None
        task = self.find_task(task_id)
        if task is None:
            logger.error(f"Cannot {verb} task: Task not found {task_id}")
            self.notifier.error(f"Failed to {verb} task: Task not found")
            return None
        self.pending_action = PendingAction(kind=kind, task_id=server_id(task), task_name=task.name)
        return self.pending_action

    def request_archive(self, task_id: str) -> Optional[PendingAction]:
        return self._stage(ARCHIVE, task_id)

    def request_delete(self, task_id: str) -> Optional[PendingAction]:
        return self._stage(DELETE, task_id)

    def confirm_action(self) -> bool:
        action, self.pending_action = self.pending_action, None
        if action is None:
            return False

        if not action.task_id:
            logger.error(f"Cannot {action.kind} task: Invalid task ID")
            self.notifier.error(f"Failed to {action.kind} task: Invalid task ID")
            return False

        if action.kind == DELETE:
            ok = self.query.delete_task(action.task_id)
            if ok:
                self.notifier.toast("Task Deleted", "The task has been permanently deleted.")
        else:
            ok = self.query.archive_task(action.task_id, archived=True)

        if ok:
            self.query.refetch()
        return ok

    def cancel_action(self) -> bool:
        """Drop the staged action without doing anything."""
        action, self.pending_action = self.pending_action, None
        return action is not None

    # ──────────────────────────────────────────
    # Editing
    # ──────────────────────────────────────────

    def toggle_high_priority(self, task_id: str) -> bool:
        task = self.find_task(task_id)
        if task is None:
            self.notifier.error("Failed to update task: Task not found")
            return False
        new_priority = TaskPriority.MEDIUM if task.priority is TaskPriority.HIGH else TaskPriority.HIGH
        ok = self.query.update_task(server_id(task), {"priority": new_priority.value})
        if ok:
            self.notifier.toast("Task Priority Updated", f"The task has been set to {new_priority.value.lower()} priority.")
        return ok

    def submit_task(self, form: Dict, editing: Optional[Task] = None) -> bool:
        """Create a task, or update `editing` when given."""
        if editing is None:
            return self.query.create_task(form)
        task_id = server_id(editing)
        if not task_id:
            logger.error(f"Cannot update task: Invalid task ID {editing}")
            self.notifier.error("Failed to update task: Invalid task ID")
            return False
        return self.query.update_task(task_id, form)
