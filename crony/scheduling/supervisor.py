"""Live supervisor that keeps one timer task running per crontab entry.

Each crontab snapshot becomes a *generation*: one asyncio task per entry,
all sharing a broadcast stop signal. When a new snapshot arrives the previous
generation is told to stop as of the moment the snapshot was accepted, and
only then is the new generation spawned. A previous-generation task whose
next run was already due at that moment performs it once before exiting.
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Awaitable, Callable, List, Optional, Sequence

from .cron import Entry


logger = logging.getLogger(__name__)


# Execution callback invoked with the entry's command at each due instant
ExecuteFunc = Callable[[str], Awaitable[Any]]


class StopSignal:
    """Broadcast stop request carrying the cutoff instant.

    Every listener observes the same cutoff; waiting does not consume it.
    """

    def __init__(self):
        self._event = asyncio.Event()
        self._cutoff: Optional[datetime] = None

    def stop(self, cutoff: datetime) -> None:
        """Signal all listeners to stop as of cutoff. Later calls are ignored."""
        if self._event.is_set():
            return
        self._cutoff = cutoff
        self._event.set()

    def is_set(self) -> bool:
        return self._event.is_set()

    @property
    def cutoff(self) -> Optional[datetime]:
        return self._cutoff

    async def wait(self) -> datetime:
        """Wait for the stop request and return its cutoff."""
        await self._event.wait()
        return self._cutoff


class Clock:
    """Wall clock and timer used by entry tasks.

    Times are naive local wall-clock datetimes, so schedules follow the
    system zone through DST changes.
    """

    def now(self) -> datetime:
        return datetime.now()

    def seconds_until(self, deadline: datetime) -> float:
        """Real seconds from now until deadline, naive times taken as local."""
        return deadline.timestamp() - time.time()

    async def sleep_until(self, deadline: datetime, stop: StopSignal) -> bool:
        """Sleep until deadline or until stop is signalled.

        Returns:
            True if the stop signal arrived first, False if the deadline passed
        """
        if stop.is_set():
            return True
        delay = max(self.seconds_until(deadline), 0.0)
        try:
            await asyncio.wait_for(stop.wait(), timeout=delay)
            return True
        except asyncio.TimeoutError:
            return False


@dataclass
class Generation:
    """One snapshot of the entry set and the tasks running it."""

    number: int
    entries: Sequence[Entry]
    started_at: datetime
    stop_signal: StopSignal = field(default_factory=StopSignal)
    tasks: List[asyncio.Task] = field(default_factory=list)

    @property
    def is_done(self) -> bool:
        return all(task.done() for task in self.tasks)


@dataclass
class SupervisorStats:
    """Statistics for the supervisor."""

    generations: int = 0
    active_entries: int = 0
    runs_started: int = 0
    final_runs: int = 0
    failed_runs: int = 0
    overruns: int = 0
    last_reconfigured_at: Optional[datetime] = None


class Supervisor:
    """Keeps the correct set of entry tasks running as snapshots arrive.

    Usage:
        supervisor = Supervisor(execute=dispatcher.execute)
        await supervisor.run(updates)  # consumes snapshots until cancelled
    """

    def __init__(self, execute: ExecuteFunc, clock: Optional[Clock] = None):
        """Initialize the supervisor.

        Args:
            execute: Async callback invoked with the command of each due entry
            clock: Time source; defaults to the wall clock
        """
        self._execute = execute
        self.clock = clock or Clock()
        self._current: Optional[Generation] = None
        self._retired: List[Generation] = []
        self._stats = SupervisorStats()

    @property
    def current(self) -> Optional[Generation]:
        return self._current

    @property
    def stats(self) -> SupervisorStats:
        return self._stats

    async def apply(self, entries: Sequence[Entry]) -> Generation:
        """Replace the running entry set with a new snapshot.

        Args:
            entries: Parsed entries of the new crontab

        Returns:
            The generation now running
        """
        now = self.clock.now()
        previous = self._current
        if previous is not None:
            # Must happen before any task of the new generation exists.
            previous.stop_signal.stop(now)
            self._retired.append(previous)
        self._retired = [g for g in self._retired if not g.is_done]

        generation = Generation(
            number=self._stats.generations + 1,
            entries=tuple(entries),
            started_at=now,
        )
        for entry in generation.entries:
            task = asyncio.create_task(self._run_entry(generation, entry, now))
            generation.tasks.append(task)

        self._current = generation
        self._stats.generations = generation.number
        self._stats.active_entries = len(generation.entries)
        self._stats.last_reconfigured_at = now
        logger.info(
            "Started generation %d with %d entries", generation.number, len(generation.entries)
        )
        return generation

    async def run(self, updates: "asyncio.Queue[Sequence[Entry]]") -> None:
        """Consume snapshots from the queue, in arrival order, until cancelled."""
        while True:
            entries = await updates.get()
            try:
                await self.apply(entries)
            finally:
                updates.task_done()

    async def drain(self) -> None:
        """Wait until every retired generation has finished."""
        tasks = [task for g in self._retired for task in g.tasks]
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._retired = [g for g in self._retired if not g.is_done]

    async def shutdown(self) -> None:
        """Stop the active generation as of now and wait for all tasks."""
        if self._current is not None:
            self._current.stop_signal.stop(self.clock.now())
            self._retired.append(self._current)
            self._current = None
            self._stats.active_entries = 0
        await self.drain()
        logger.info("Supervisor stopped")

    async def _run_entry(self, generation: Generation, entry: Entry, base: datetime) -> None:
        """Periodically execute a single entry until its generation stops."""
        stop = generation.stop_signal
        next_run = entry.schedule.next(base)
        while True:
            if next_run is None:
                logger.warning("Schedule never fires, idling: %s", entry.command)
                await stop.wait()
                return

            if await self.clock.sleep_until(next_run, stop):
                if stop.cutoff >= next_run:
                    # Due before the cutoff: honor it once, never drop it.
                    self._stats.final_runs += 1
                    await self._fire(entry, next_run)
                return

            started = next_run
            await self._fire(entry, started)
            now = self.clock.now()
            next_run = entry.schedule.next(started)
            if next_run is not None and now >= next_run:
                logger.warning("Command overran after %s: %s", now - started, entry.command)
                self._stats.overruns += 1
                next_run = entry.schedule.next(now)

    async def _fire(self, entry: Entry, scheduled_at: datetime) -> None:
        self._stats.runs_started += 1
        logger.info("Running (scheduled %s): %s", scheduled_at.isoformat(), entry.command)
        try:
            await self._execute(entry.command)
        except Exception:
            self._stats.failed_runs += 1
            logger.exception("Execution failed: %s", entry.command)
