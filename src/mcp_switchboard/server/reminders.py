"""
In-memory task reminders with a periodic summary.

Every ``notification_interval_seconds`` the store renders a summary of active
tasks and tasks completed today, keeps it as the latest notification and hands
it to every registered listener (the SSE server broadcasts it to all sessions).
"""
import asyncio
import inspect
import itertools
from collections.abc import Awaitable, Callable
from datetime import datetime, timezone

import structlog
from pydantic import Field

from ..models.common import BasePydanticModel

logger = structlog.get_logger(__name__)

SummaryListener = Callable[[str], Awaitable[None] | None]


class TaskNotFoundError(LookupError):
    pass


class Task(BasePydanticModel):
    id: int
    title: str
    description: str | None = None
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    completed_at: datetime | None = None

    @property
    def is_completed(self) -> bool:
        return self.completed_at is not None


def _fmt(moment: datetime) -> str:
    return moment.strftime("%Y-%m-%d %H:%M:%S")


class ReminderStore:
    """Task store. Mutations are synchronous; only the summary timer suspends."""

    def __init__(self, notification_interval_seconds: float = 60.0):
        self.notification_interval_seconds = notification_interval_seconds
        self._tasks: dict[int, Task] = {}
        self._ids = itertools.count(1)
        self._listeners: list[SummaryListener] = []
        self._timer: asyncio.Task | None = None
        self.latest_notification: str | None = None
        self.latest_notification_at: datetime | None = None

    def add_task(self, title: str, description: str | None = None) -> Task:
        title = title.strip()
        if not title:
            raise ValueError("Task title must not be empty")
        task = Task(id=next(self._ids), title=title, description=description or None)
        self._tasks[task.id] = task
        logger.info("Task added.", task_id=task.id, title=title)
        return task

    def complete_task(self, task_id: int) -> Task:
        task = self._get(task_id)
        if not task.is_completed:
            task = task.model_copy(update={"completed_at": datetime.now(timezone.utc)})
            self._tasks[task_id] = task
            logger.info("Task completed.", task_id=task_id)
        return task

    def delete_task(self, task_id: int) -> Task:
        task = self._get(task_id)
        del self._tasks[task_id]
        logger.info("Task deleted.", task_id=task_id)
        return task

    def list_tasks(self, include_completed: bool = True) -> list[Task]:
        """Newest first."""
        tasks = sorted(self._tasks.values(), key=lambda t: (t.created_at, t.id), reverse=True)
        if not include_completed:
            tasks = [t for t in tasks if not t.is_completed]
        return tasks

    def _get(self, task_id: int) -> Task:
        try:
            return self._tasks[task_id]
        except KeyError:
            raise TaskNotFoundError(f"Task not found with ID: {task_id}") from None

    def generate_summary(self, now: datetime | None = None) -> str:
        now = now or datetime.now(timezone.utc)
        all_tasks = self.list_tasks()
        active = [t for t in all_tasks if not t.is_completed]
        completed_today = [
            t for t in all_tasks
            if t.completed_at is not None and t.completed_at.date() == now.date()
        ]

        lines = ["Task Summary Report", "=" * 20, "", f"Active Tasks ({len(active)}):"]
        if not active:
            lines.append("   No active tasks - you're all caught up!")
        for position, task in enumerate(active, start=1):
            lines.append(f"   {position}. [ID: {task.id}] {task.title}")
            if task.description:
                lines.append(f"      {task.description}")

        lines += ["", f"Completed Today ({len(completed_today)}):"]
        if not completed_today:
            lines.append("   No tasks completed today yet")
        for position, task in enumerate(completed_today, start=1):
            lines.append(f"   {position}. {task.title}")
            lines.append(f"      Completed at: {task.completed_at.strftime('%H:%M')}")

        lines += [
            "",
            "Statistics:",
            f"   - Total tasks: {len(all_tasks)}",
            f"   - Active: {len(active)}",
            f"   - Completed: {len(all_tasks) - len(active)}",
            "",
            f"Next update in {self.notification_interval_seconds:g}s",
        ]
        return "\n".join(lines)

    def add_listener(self, listener: SummaryListener) -> None:
        self._listeners.append(listener)

    def remove_listener(self, listener: SummaryListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    async def publish_summary(self) -> str:
        """Renders a summary now, records it as the latest one and notifies listeners."""
        summary = self.generate_summary()
        self.latest_notification = summary
        self.latest_notification_at = datetime.now(timezone.utc)
        for listener in list(self._listeners):
            try:
                outcome = listener(summary)
                if inspect.isawaitable(outcome):
                    await outcome
            except Exception:
                logger.exception("Summary listener failed.")
        return summary

    @property
    def running(self) -> bool:
        return self._timer is not None and not self._timer.done()

    async def start(self) -> None:
        if self.running:
            return
        self._timer = asyncio.create_task(self._run_timer(), name="reminder-summary-timer")
        logger.info("Reminder timer started.", interval_seconds=self.notification_interval_seconds)

    async def stop(self) -> None:
        if self._timer is None:
            return
        self._timer.cancel()
        await asyncio.gather(self._timer, return_exceptions=True)
        self._timer = None
        logger.info("Reminder timer stopped.")

    async def _run_timer(self) -> None:
        while True:
            await asyncio.sleep(self.notification_interval_seconds)
            summary = await self.publish_summary()
            logger.info("Summary published.", listeners=len(self._listeners), length=len(summary))
