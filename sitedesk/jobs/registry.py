"""
Job Registry

Tracks one job state per (site, job type), starts runners as asyncio
tasks and routes control commands to the running job.
"""

import asyncio
import logging
import time
from datetime import datetime
from typing import Any, Callable, Optional, Protocol

from sitedesk.jobs.control import JobControl
from sitedesk.jobs.models import (
    BatchLog,
    ItemResult,
    JobState,
    JobStatus,
    JobType,
)

logger = logging.getLogger(__name__)

Slot = tuple[str, JobType]


class JobConflictError(Exception):
    """Raised when a job is started for a site that already has one active."""

    def __init__(self, key: str, job_type: JobType):
        super().__init__(f"A {job_type.value} job is already active for site {key}.")
        self.key = key
        self.job_type = job_type


class JobRunner(Protocol):
    job_type: JobType
    supports_pause: bool

    def configure(self, overrides: Any = None) -> Any: ...

    def prepare(self, work_items: Any) -> list: ...

    async def run(self, job: 'JobHandle', items: list, config: Any) -> None: ...


class JobHandle:
    """Runner-side view of one job run.

    Holds the run's control flags and applies every state change through
    the registry, which ignores changes from a run that has since been
    replaced by a newer start for the same slot.
    """

    def __init__(self, registry: 'JobRegistry', slot: Slot, state: JobState, control: JobControl):
        self._registry = registry
        self.slot = slot
        self.state = state
        self.control = control

    @property
    def key(self) -> str:
        return self.slot[0]

    @property
    def cancelled(self) -> bool:
        return self.control.cancelled

    @property
    def paused(self) -> bool:
        return self.control.paused

    def update(self, **fields) -> None:
        self._registry._apply(self, lambda state: _assign(state, fields))

    def set_progress(self, done: int, total: int) -> None:
        """Record done/total as a percentage; progress never moves backwards."""
        def apply(state: JobState):
            percent = (done / total) * 100 if total else 0.0
            state.progress = max(state.progress, percent)
        self._registry._apply(self, apply)

    def set_countdown(self, seconds: int) -> None:
        self.update(countdown=seconds)

    def add_result(self, result: ItemResult) -> int:
        """Append a result entry and return its position."""
        position = len(self.state.results)
        self._registry._apply(self, lambda state: state.results.append(result))
        return position

    def update_result(self, position: int, **fields) -> None:
        def apply(state: JobState):
            _assign(state.results[position], fields)
        self._registry._apply(self, apply)

    def add_log(self, entry: BatchLog) -> None:
        self._registry._apply(self, lambda state: state.logs.append(entry))

    def finish(self, message: Optional[str] = None) -> JobStatus:
        """Mark the run Cancelled or Completed depending on the cancel flag."""
        status = JobStatus.CANCELLED if self.control.cancelled else JobStatus.COMPLETED
        self._registry._set_status(self, status)
        fields: dict = {'countdown': 0}
        if message:
            fields['message'] = message
        self.update(**fields)
        return status


def _assign(target, fields: dict) -> None:
    for name, value in fields.items():
        setattr(target, name, value)


class JobRegistry:
    """Per-site job states for each job type.

    At most one job per (site, job type) can be Running or Paused.
    States persist until replaced by the next start, so observers can
    still read the results of a finished job.
    """

    def __init__(self, runners: list[JobRunner], clock: Callable[[], float] = time.monotonic):
        self._runners = {runner.job_type: runner for runner in runners}
        self._clock = clock
        self._states: dict[Slot, JobState] = {}
        self._controls: dict[Slot, JobControl] = {}
        self._tasks: dict[Slot, asyncio.Task] = {}
        self._running: set[asyncio.Task] = set()

    @property
    def job_types(self) -> list[JobType]:
        return list(self._runners)

    def _new_state(self, key: str, job_type: JobType) -> JobState:
        return JobState(key=key, type=job_type).bind_clock(self._clock)

    def get(self, key: str, job_type: JobType) -> JobState:
        """Return the current state, or an unrecorded Idle one for an unknown slot."""
        state = self._states.get((key, job_type))
        if state is None:
            return self._new_state(key, job_type)
        return state

    def states(self) -> list[JobState]:
        return list(self._states.values())

    def is_active(self, key: str, job_type: JobType) -> bool:
        state = self._states.get((key, job_type))
        return state is not None and state.is_active

    def start(self, key: str, job_type: JobType, work_items: Any, config: Any = None) -> JobState:
        """Start a job; must be called from within a running event loop.

        Raises JobConflictError if a job for the same site and type is
        Running or Paused. Otherwise prior results and logs are discarded.
        """
        if job_type not in self._runners:
            raise ValueError(f"No runner registered for job type {job_type}")
        if self.is_active(key, job_type):
            raise JobConflictError(key, job_type)

        runner = self._runners[job_type]
        job_config = runner.configure(config)
        items = runner.prepare(work_items)

        slot = (key, job_type)
        state = self._new_state(key, job_type)
        control = JobControl()
        self._states[slot] = state
        self._controls[slot] = control

        handle = JobHandle(self, slot, state, control)
        handle.update(started_at=datetime.now().isoformat(), total=len(items))
        self._set_status(handle, JobStatus.RUNNING)
        logger.info("Starting %s job for site %s (%d items)", job_type.value, key, len(items))

        task = asyncio.create_task(self._run(handle, runner, items, job_config))
        self._tasks[slot] = task
        self._running.add(task)
        task.add_done_callback(self._running.discard)
        return state

    async def _run(self, handle: JobHandle, runner: JobRunner, items: list, config: Any) -> None:
        try:
            await runner.run(handle, items, config)
        except Exception as e:
            logger.exception("%s job for site %s failed", handle.slot[1].value, handle.key)
            handle.finish(message=f"Job failed: {e}")
        else:
            if handle.state.is_active:
                handle.finish()
        finally:
            if self._tasks.get(handle.slot) is asyncio.current_task():
                del self._tasks[handle.slot]
        logger.info(
            "%s job for site %s ended: %s (%.0f%%)",
            handle.slot[1].value, handle.key, handle.state.status.value, handle.state.progress,
        )

    def _is_current(self, handle: JobHandle) -> bool:
        return self._states.get(handle.slot) is handle.state

    def _apply(self, handle: JobHandle, mutate: Callable[[JobState], Any]) -> None:
        if self._is_current(handle):
            mutate(handle.state)

    def _set_status(self, handle: JobHandle, status: JobStatus) -> None:
        """Status transitions; terminal states are final and stop the timer."""
        def apply(state: JobState):
            if state.is_finished:
                return
            state.status = status
            if status == JobStatus.RUNNING:
                state.timer.start()
            else:
                state.timer.stop()
            if state.is_finished:
                state.completed_at = datetime.now().isoformat()
                state.countdown = 0
        self._apply(handle, apply)

    def _active_handle(self, key: str, job_type: JobType) -> Optional[JobHandle]:
        slot = (key, job_type)
        state = self._states.get(slot)
        if state is None or not state.is_active:
            return None
        return JobHandle(self, slot, state, self._controls[slot])

    # --- Control commands ---

    def pause(self, key: str, job_type: JobType) -> bool:
        """Pause a running job. No-op without one, or for jobs that cannot pause."""
        handle = self._active_handle(key, job_type)
        if handle is None or not self._runners[job_type].supports_pause:
            return False
        if handle.state.status != JobStatus.RUNNING:
            return False
        handle.control.pause()
        self._set_status(handle, JobStatus.PAUSED)
        logger.info("Paused %s job for site %s", job_type.value, key)
        return True

    def resume(self, key: str, job_type: JobType) -> bool:
        handle = self._active_handle(key, job_type)
        if handle is None or handle.state.status != JobStatus.PAUSED:
            return False
        handle.control.resume()
        self._set_status(handle, JobStatus.RUNNING)
        logger.info("Resumed %s job for site %s", job_type.value, key)
        return True

    def set_paused(self, key: str, job_type: JobType, paused: bool) -> bool:
        if paused:
            return self.pause(key, job_type)
        return self.resume(key, job_type)

    def cancel(self, key: str, job_type: JobType) -> bool:
        """Cancel an active job. The loop stops at its next check point."""
        handle = self._active_handle(key, job_type)
        if handle is None:
            return False
        handle.control.cancel()
        self._set_status(handle, JobStatus.CANCELLED)
        handle.update(message="Job cancelled by user.")
        logger.info("Cancelled %s job for site %s", job_type.value, key)
        return True

    # --- Task management ---

    async def wait(self, key: str, job_type: JobType) -> JobState:
        """Wait for the current run for this slot to finish."""
        task = self._tasks.get((key, job_type))
        if task is not None:
            await asyncio.shield(task)
        return self.get(key, job_type)

    async def shutdown(self) -> None:
        """Cancel every active job and wait for all runner tasks to exit.

        Runs replaced by a restart that are still unwinding are included.
        """
        for key, job_type in list(self._states):
            self.cancel(key, job_type)
        tasks = list(self._running)
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
