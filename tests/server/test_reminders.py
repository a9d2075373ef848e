"""
Tests for the in-memory reminder store.
"""
import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from mcp_switchboard.server.reminders import ReminderStore, TaskNotFoundError


def test_add_task_assigns_increasing_ids(reminders):
    first = reminders.add_task("  Buy milk  ", "semi-skimmed")
    second = reminders.add_task("Call mum")
    assert (first.id, second.id) == (1, 2)
    assert first.title == "Buy milk"
    assert second.description is None


def test_add_task_rejects_blank_title(reminders):
    with pytest.raises(ValueError):
        reminders.add_task("   ")


def test_complete_and_delete(reminders):
    task = reminders.add_task("Pay rent")
    done = reminders.complete_task(task.id)
    assert done.is_completed
    # Completing twice keeps the first completion time.
    assert reminders.complete_task(task.id).completed_at == done.completed_at

    reminders.delete_task(task.id)
    assert reminders.list_tasks() == []
    with pytest.raises(TaskNotFoundError, match="Task not found with ID: 1"):
        reminders.complete_task(task.id)
    with pytest.raises(TaskNotFoundError):
        reminders.delete_task(99)


def test_list_tasks_newest_first_and_filter(reminders):
    reminders.add_task("first")
    reminders.add_task("second")
    reminders.complete_task(1)

    assert [task.title for task in reminders.list_tasks()] == ["second", "first"]
    assert [task.title for task in reminders.list_tasks(include_completed=False)] == ["second"]


def test_summary_sections(reminders):
    empty = reminders.generate_summary()
    assert "No active tasks - you're all caught up!" in empty
    assert "No tasks completed today yet" in empty

    reminders.add_task("Write report", "quarterly numbers")
    reminders.add_task("Ship release")
    reminders.complete_task(2)
    summary = reminders.generate_summary()

    assert summary.startswith("Task Summary Report")
    assert "Active Tasks (1):" in summary
    assert "1. [ID: 1] Write report" in summary
    assert "quarterly numbers" in summary
    assert "Completed Today (1):" in summary
    assert "- Total tasks: 2" in summary
    assert "Next update in 60s" in summary


def test_completed_yesterday_is_not_in_today(reminders):
    reminders.add_task("Old chore")
    reminders.complete_task(1)
    tomorrow = datetime.now(timezone.utc) + timedelta(days=1)
    assert "Completed Today (0):" in reminders.generate_summary(now=tomorrow)


async def test_publish_summary_notifies_listeners(reminders):
    received = []

    async def async_listener(summary):
        received.append(("async", summary))

    def failing_listener(summary):
        raise RuntimeError("listener bug")

    reminders.add_listener(failing_listener)
    reminders.add_listener(async_listener)
    reminders.add_listener(lambda summary: received.append(("sync", summary)))

    summary = await reminders.publish_summary()
    assert reminders.latest_notification == summary
    assert reminders.latest_notification_at is not None
    assert [kind for kind, _ in received] == ["async", "sync"]

    reminders.remove_listener(async_listener)
    await reminders.publish_summary()
    assert len(received) == 3


async def test_timer_publishes_periodically():
    store = ReminderStore(notification_interval_seconds=0.05)
    published = asyncio.Event()
    store.add_listener(lambda summary: published.set())

    await store.start()
    await store.start()  # already running
    assert store.running
    await asyncio.wait_for(published.wait(), timeout=2)
    await store.stop()

    assert not store.running
    assert store.latest_notification is not None
    await store.stop()  # idempotent
