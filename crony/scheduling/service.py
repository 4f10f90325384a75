"""Service lifecycle for one crontab repository."""

import asyncio
import logging
import time
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Optional, Sequence

from ..workspace.git import Repository
from .cron import Entry
from .dispatch import CommandDispatcher
from .supervisor import Supervisor
from .watcher import CrontabWatcher


logger = logging.getLogger(__name__)


class ServiceStatus(Enum):
    """Service lifecycle status."""
    STOPPED = "stopped"
    STARTING = "starting"
    RUNNING = "running"
    STOPPING = "stopping"
    ERROR = "error"


@dataclass
class ServiceConfig:
    """Configuration for a crontab service."""

    pull_frequency_seconds: float = 300.0
    crontab_path: str = "crontab"
    shell: str = "/bin/bash"
    command_timeout_seconds: Optional[float] = None
    workdir_root: Optional[Path] = None


class CronyService:
    """Runs the crontab stored in one repository.

    Usage:
        service = CronyService("git@example.com:ops/cron.git", ServiceConfig())
        await service.start()
        await service.wait()
    """

    def __init__(self, origin: str, config: Optional[ServiceConfig] = None):
        self.origin = origin
        self.config = config or ServiceConfig()
        self._status = ServiceStatus.STOPPED
        self._start_time: Optional[float] = None
        self._last_error: Optional[str] = None

        self.repository: Optional[Repository] = None
        self.dispatcher: Optional[CommandDispatcher] = None
        self.supervisor: Optional[Supervisor] = None
        self.watcher: Optional[CrontabWatcher] = None
        self._updates: "asyncio.Queue[Sequence[Entry]]" = asyncio.Queue()
        self._tasks = []

    def get_status(self) -> ServiceStatus:
        return self._status

    @property
    def last_error(self) -> Optional[str]:
        return self._last_error

    @property
    def uptime_seconds(self) -> float:
        if self._start_time is None:
            return 0.0
        return time.monotonic() - self._start_time

    async def start(self) -> None:
        """Clone the repository, load the crontab and start running it.

        Raises:
            RuntimeError: If the service is not stopped
            GitError: If the repository cannot be cloned or pulled
            CronValidationError: If the initial crontab does not parse
        """
        if self._status != ServiceStatus.STOPPED:
            raise RuntimeError(f"Cannot start service in status {self._status}")

        logger.info("Starting crony service for %s", self.origin)
        self._status = ServiceStatus.STARTING
        try:
            self.repository = await asyncio.to_thread(
                Repository.clone, self.origin, self.origin, self.config.workdir_root
            )
            self.dispatcher = CommandDispatcher(
                self.repository,
                shell=self.config.shell,
                timeout=self.config.command_timeout_seconds,
            )
            self.supervisor = Supervisor(execute=self.dispatcher.execute)
            self.watcher = CrontabWatcher(
                self.repository,
                self._updates,
                pull_frequency=self.config.pull_frequency_seconds,
                crontab_path=self.config.crontab_path,
            )

            # Without an initial crontab there is nothing to supervise.
            await self.watcher.pull_crontab()

            self._tasks = [
                asyncio.create_task(self.supervisor.run(self._updates)),
                asyncio.create_task(self.watcher.run(initial=False)),
            ]
        except Exception as e:
            self._status = ServiceStatus.ERROR
            self._last_error = str(e)
            logger.error("Failed to start crony service for %s: %s", self.origin, e)
            if self.repository is not None:
                await asyncio.to_thread(self.repository.close)
            raise

        self._start_time = time.monotonic()
        self._status = ServiceStatus.RUNNING
        logger.info("Crony service for %s started", self.origin)

    async def stop(self) -> None:
        """Stop watching, let due runs finish and remove the checkout."""
        if self._status != ServiceStatus.RUNNING:
            return

        logger.info("Stopping crony service for %s", self.origin)
        self._status = ServiceStatus.STOPPING

        if self.watcher is not None:
            self.watcher.stop()
        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks = []

        if self.supervisor is not None:
            await self.supervisor.shutdown()
        if self.repository is not None:
            await asyncio.to_thread(self.repository.close)

        self._status = ServiceStatus.STOPPED
        logger.info("Crony service for %s stopped", self.origin)

    async def wait(self) -> None:
        """Block until the service's background tasks end."""
        if self._tasks:
            await asyncio.gather(*self._tasks)

    async def run_forever(self) -> None:
        """Start the service and keep it running until cancelled."""
        await self.start()
        try:
            await self.wait()
        finally:
            await self.stop()
