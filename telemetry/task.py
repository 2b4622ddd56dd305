"""
Periodic task scheduling.

The host application supplies a Scheduler; ThreadScheduler is used when it
does not. TrackedTask wraps a callback and tracks whether it is currently
scheduled, so that start/stop from different threads cannot double-schedule
or double-cancel it.
"""
import enum
import itertools
import logging
import threading
from abc import ABC, abstractmethod
from typing import Callable, Dict, Optional, Tuple

from .exceptions import LifecycleError

logger = logging.getLogger(__name__)


class ScheduledHandle(ABC):
    """Handle of a repeating callback registered with a scheduler."""

    @abstractmethod
    def cancel(self) -> None:
        """Stop invoking the callback. Safe to call more than once."""


class Scheduler(ABC):
    """Periodic scheduling primitive supplied by the host application."""

    @abstractmethod
    def schedule_repeating(self, callback: Callable[[], None], interval: float,
                           delay: Optional[float] = None) -> ScheduledHandle:
        """
        Invoke a callback repeatedly.

        Args:
            callback (callable): Function to invoke
            interval (float): Seconds between invocations
            delay (float, optional): Seconds before the first invocation.
                Defaults to the interval.

        Returns:
            ScheduledHandle: Handle used to cancel the callback
        """


class _RepeatingThread(ScheduledHandle):
    def __init__(self, callback: Callable[[], None], interval: float, delay: float, name: str,
                 on_cancel: Callable[['_RepeatingThread'], None]):
        self.callback = callback
        self.interval = interval
        self.delay = delay
        self._on_cancel = on_cancel
        self._stopped = threading.Event()
        self.thread = threading.Thread(target=self._loop, name=name, daemon=True)

    def _loop(self) -> None:
        if self._stopped.wait(self.delay):
            return

        while not self._stopped.is_set():
            try:
                self.callback()
            except Exception as e:
                logger.error("Error in scheduled task %s: %s", self.thread.name, str(e))

            if self._stopped.wait(self.interval):
                break

    def cancel(self) -> None:
        if self._stopped.is_set():
            return
        self._stopped.set()
        self._on_cancel(self)


class ThreadScheduler(Scheduler):
    """
    Scheduler running every repeating callback on its own daemon thread.

    Only live handles are kept; a thread name is reused once its handle is
    cancelled.
    """

    def __init__(self, name: str = 'metrics'):
        self.name = name
        self._active: Dict[int, _RepeatingThread] = {}
        self._lock = threading.Lock()

    @property
    def active(self) -> Tuple[ScheduledHandle, ...]:
        with self._lock:
            return tuple(self._active.values())

    def schedule_repeating(self, callback: Callable[[], None], interval: float,
                           delay: Optional[float] = None) -> ScheduledHandle:
        if interval <= 0:
            raise ValueError(f"interval must be positive, got {interval}")

        with self._lock:
            slot = next(i for i in itertools.count(1) if i not in self._active)
            handle = _RepeatingThread(callback, interval, interval if delay is None else delay,
                                      f"{self.name}-{slot}", self._release)
            self._active[slot] = handle

        handle.thread.start()
        return handle

    def _release(self, handle: _RepeatingThread) -> None:
        with self._lock:
            for slot, active in list(self._active.items()):
                if active is handle:
                    del self._active[slot]


class TaskState(enum.Enum):
    IDLE = 'idle'
    SCHEDULED = 'scheduled'
    CANCELLED = 'cancelled'


class TrackedTask:
    """
    Repeating callback whose state can be queried and changed atomically.

    A task moves from IDLE to SCHEDULED to CANCELLED exactly once; cancelling
    a task that is not scheduled does nothing.
    """

    def __init__(self, name: str, callback: Callable[[], None]):
        self.name = name
        self.callback = callback
        self._lock = threading.Lock()
        self._run_lock = threading.RLock()
        self._state = TaskState.IDLE
        self._handle: Optional[ScheduledHandle] = None

    @property
    def state(self) -> TaskState:
        with self._lock:
            return self._state

    def schedule(self, scheduler: Scheduler, interval: float, delay: Optional[float] = None) -> None:
        """
        Register the task with a scheduler.

        Args:
            scheduler (Scheduler): Scheduler invoking the task
            interval (float): Seconds between runs
            delay (float, optional): Seconds before the first run

        Raises:
            LifecycleError: If the task was already scheduled
        """
        with self._lock:
            if self._state is not TaskState.IDLE:
                raise LifecycleError(f"Task {self.name} is {self._state.value}, cannot schedule it")

            self._handle = scheduler.schedule_repeating(self.run, interval, delay)
            self._state = TaskState.SCHEDULED

    def is_running(self) -> bool:
        with self._lock:
            return self._state is TaskState.SCHEDULED

    def cancel(self) -> bool:
        """
        Cancel the task if it is scheduled.

        Waits for a run already in progress, so no callback is executing once
        this returns.

        Returns:
            bool: True if this call cancelled the task
        """
        with self._lock:
            if self._state is not TaskState.SCHEDULED:
                return False

            handle, self._handle = self._handle, None
            self._state = TaskState.CANCELLED
            handle.cancel()

        with self._run_lock:
            pass
        logger.debug("Cancelled task %s", self.name)
        return True

    def run(self) -> None:
        with self._run_lock:
            if not self.is_running():
                return

            try:
                self.callback()
            except Exception as e:
                logger.error("Task %s failed: %s", self.name, str(e))

    def __repr__(self) -> str:
        return f"TrackedTask({self.name}, {self.state.value})"
