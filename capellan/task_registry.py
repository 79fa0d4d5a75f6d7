"""
In-memory registry of running AI tasks.

Holds at most one task per user and, because the gate only lets a task in
when the registry is empty, at most one task overall. Slots are released by
the owner when the operation finishes, or reclaimed by `sweep` once they
outlive the configured maximum age.
"""

import logging
import threading
import time
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Dict, List, Optional

logger = logging.getLogger(__name__)


@dataclass
class AITask:
    user_id: str
    username: str
    command: str
    channel_id: str
    start_time: float

    def age(self, now: float) -> float:
        return now - self.start_time


class AcquireReason(Enum):
    USER_BUSY = "user_busy"
    SYSTEM_BUSY = "system_busy"


@dataclass
class AcquireResult:
    """Outcome of TaskRegistry.acquire; `holder` is set on rejection."""
    acquired: bool
    reason: Optional[AcquireReason] = None
    holder: Optional[AITask] = None

    def __bool__(self) -> bool:
        return self.acquired


class TaskRegistry:
    """Single-flight registry of expensive AI operations."""

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._tasks: Dict[str, AITask] = {}
        self._lock = threading.Lock()

    def acquire(self, user_id: str, username: str, command: str, channel_id: str) -> AcquireResult:
        """Claim the slot for user_id.

        The user's own slot is checked first, then any other holder. A
        rejected call leaves the registry untouched.
        """
        with self._lock:
            existing = self._tasks.get(user_id)
            if existing is not None:
                return AcquireResult(False, AcquireReason.USER_BUSY, existing)

            if self._tasks:
                holder = next(iter(self._tasks.values()))
                return AcquireResult(False, AcquireReason.SYSTEM_BUSY, holder)

            task = AITask(
                user_id=user_id,
                username=username,
                command=command,
                channel_id=channel_id,
                start_time=self._clock(),
            )
            self._tasks[user_id] = task
            active = len(self._tasks)

        logger.info(f"[TASKS] AI task started: {command} for {username} ({user_id}), active={active}")
        return AcquireResult(True)

    def try_acquire(self, user_id: str, username: str, command: str, channel_id: str) -> bool:
        return self.acquire(user_id, username, command, channel_id).acquired

    def release(self, user_id: str) -> Optional[AITask]:
        """Free the user's slot. Releasing an empty slot is a no-op."""
        with self._lock:
            task = self._tasks.pop(user_id, None)
            active = len(self._tasks)
            now = self._clock()

        if task is not None:
            logger.info(
                f"[TASKS] AI task completed: {task.command} for {task.username} "
                f"in {task.age(now):.1f}s, active={active}"
            )
        return task

    def force_release(self, user_id: str) -> bool:
        """Admin release; True if a task was removed."""
        task = self.release(user_id)
        if task is not None:
            logger.warning(f"[TASKS] AI task force-released for {task.username} ({user_id})")
        return task is not None

    def sweep(self, max_age_seconds: float) -> List[AITask]:
        """Reclaim tasks that have been running longer than max_age_seconds."""
        with self._lock:
            now = self._clock()
            stale = [task for task in self._tasks.values() if task.age(now) > max_age_seconds]
            for task in stale:
                del self._tasks[task.user_id]

        for task in stale:
            logger.warning(
                f"[TASKS] Reclaimed stuck AI task: {task.command} for {task.username} "
                f"({task.user_id}), age {task.age(now):.1f}s"
            )
        return stale

    def get_active_task(self, user_id: str) -> Optional[AITask]:
        with self._lock:
            return self._tasks.get(user_id)

    def get_active_tasks(self) -> List[AITask]:
        with self._lock:
            return list(self._tasks.values())

    def has_active_task(self, user_id: str) -> bool:
        with self._lock:
            return user_id in self._tasks

    def has_any_active_task(self) -> bool:
        with self._lock:
            return bool(self._tasks)

    def active_count(self) -> int:
        with self._lock:
            return len(self._tasks)

    def clear(self) -> int:
        with self._lock:
            count = len(self._tasks)
            self._tasks.clear()
        if count:
            logger.info(f"[TASKS] Cleared {count} active AI tasks")
        return count
