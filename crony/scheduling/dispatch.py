"""Command execution and result publication.

This module provides the execution callback handed to the supervisor. Each
run happens in its own temporary branch workspace:
- the command runs in a shell inside the workspace
- its output becomes the commit message, a failure also leaves a ``.fail``
  marker file holding the failure time
- the branch is rebased onto master, fast-forwarded and pushed to origin

Collaborator failures are reported on the returned RunResult and logged;
they never propagate to the caller.
"""

import asyncio
import logging
import subprocess
import time
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Optional

from ..workspace.git import GitError, Repository, Workdir


logger = logging.getLogger(__name__)


FAIL_MARKER = ".fail"


class RunStatus(str, Enum):
    """Outcome of a command run."""
    COMPLETED = "completed"     # Command exited zero
    FAILED = "failed"           # Command exited non-zero or timed out
    ERROR = "error"             # Workspace or publication failure


@dataclass
class RunResult:
    """Result of a single command run."""

    command: str
    status: RunStatus
    started_at: datetime
    completed_at: Optional[datetime] = None
    output: str = ""
    error: Optional[str] = None
    pushed: bool = False

    @property
    def duration(self) -> Optional[timedelta]:
        """Get run duration if the run has completed."""
        if self.completed_at:
            return self.completed_at - self.started_at
        return None


@dataclass
class DispatchStats:
    """Statistics for dispatched runs."""

    total_runs: int = 0
    completed_runs: int = 0
    failed_runs: int = 0
    error_runs: int = 0
    last_run_at: Optional[datetime] = None
    last_status: Optional[RunStatus] = field(default=None)

    def success_rate(self) -> float:
        """Calculate success rate as percentage."""
        if self.total_runs == 0:
            return 0.0
        return (self.completed_runs / self.total_runs) * 100.0


def format_commit_message(command: str, output: str, error: Optional[str] = None) -> str:
    """Build the commit message recording a run.

    NUL bytes cannot be passed to git and are written as ``\\0``.
    """
    message = f"$ {command}\n{output}"
    if error:
        message += "\n" + error
    return message.replace("\x00", "\\0")


class CommandDispatcher:
    """Runs crontab commands in branch workspaces and publishes the results."""

    def __init__(
        self,
        repository: Repository,
        shell: str = "/bin/bash",
        timeout: Optional[float] = None,
    ):
        """Initialize the dispatcher.

        Args:
            repository: Repository whose master receives the results
            shell: Shell used to interpret commands
            timeout: Optional limit in seconds for a single command
        """
        self.repository = repository
        self.shell = shell
        self.timeout = timeout
        self._stats = DispatchStats()

    def get_stats(self) -> DispatchStats:
        return self._stats

    async def execute(self, command: str) -> RunResult:
        """Execute one run of a crontab command without blocking the loop."""
        result = await asyncio.to_thread(self.execute_sync, command)

        self._stats.total_runs += 1
        self._stats.last_run_at = result.completed_at
        self._stats.last_status = result.status
        if result.status == RunStatus.COMPLETED:
            self._stats.completed_runs += 1
        elif result.status == RunStatus.FAILED:
            self._stats.failed_runs += 1
        else:
            self._stats.error_runs += 1
        return result

    def execute_sync(self, command: str) -> RunResult:
        """Execute one run of a crontab command in the calling thread."""
        logger.info("running: %s", command)
        result = RunResult(command=command, status=RunStatus.ERROR, started_at=datetime.now(timezone.utc))

        try:
            workdir = self.repository.branch()
        except (GitError, OSError) as e:
            logger.error("unable to create branch: %s", e)
            return self._finish(result, error=f"unable to create branch: {e}")

        try:
            self._run_in(workdir, result)
            self._publish(workdir, result)
        finally:
            try:
                workdir.close()
            except (GitError, OSError) as e:
                logger.warning("unable to clean up %s: %s", workdir, e)

        return self._finish(result)

    def _run_in(self, workdir: Workdir, result: RunResult) -> None:
        error = None
        try:
            completed = subprocess.run(
                [self.shell, "-c", result.command],
                cwd=workdir.path,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                encoding="utf-8",
                errors="replace",
                timeout=self.timeout,
            )
            result.output = completed.stdout
            if completed.returncode != 0:
                error = f"exit status {completed.returncode}"
        except subprocess.TimeoutExpired as e:
            result.output = e.output or ""
            if isinstance(result.output, bytes):
                result.output = result.output.decode(errors="replace")
            error = f"timed out after {self.timeout}s"
        except OSError as e:
            error = str(e)

        if error:
            result.status = RunStatus.FAILED
            result.error = error
            try:
                (workdir.path / FAIL_MARKER).write_text(time.strftime("%a %b %d %H:%M:%S %Z %Y"))
            except OSError as e:
                logger.warning("unable to write to %s: %s", FAIL_MARKER, e)
        else:
            result.status = RunStatus.COMPLETED

    def _publish(self, workdir: Workdir, result: RunResult) -> None:
        master = self.repository.master
        message = format_commit_message(result.command, result.output, result.error)

        try:
            if workdir.has_changes():
                workdir.commit(message)
            else:
                logger.info("nothing to commit after running %s", result.command)
        except GitError as e:
            logger.warning("unable to commit after running %s: %s", result.command, e)

        try:
            master.merge(workdir)
        except GitError as e:
            logger.error("unable to merge temp branch into local master: %s", e)
            self._mark_error(result, f"unable to merge: {e}")
            return

        try:
            master.push()
            result.pushed = True
        except GitError as e:
            logger.error("unable to push master: %s", e)
            self._mark_error(result, f"unable to push: {e}")
            logger.info("overwriting local head with origin for future commits to be rebased on")
            try:
                master.fetch_head()
            except GitError as e:
                logger.error("error overwriting local head with origin: %s", e)

    @staticmethod
    def _mark_error(result: RunResult, error: str) -> None:
        result.status = RunStatus.ERROR
        result.error = f"{result.error}; {error}" if result.error else error

    @staticmethod
    def _finish(result: RunResult, error: Optional[str] = None) -> RunResult:
        if error:
            result.error = error
        result.completed_at = datetime.now(timezone.utc)
        return result
