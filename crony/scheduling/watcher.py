"""Periodic crontab refresh from the repository's origin."""

import asyncio
import logging
from pathlib import Path
from typing import List, Sequence

from ..workspace.git import GitError, Repository
from .cron import Entry
from .parser import parse_crontab


logger = logging.getLogger(__name__)


class CrontabWatcher:
    """Pulls the crontab repository and publishes each parsed crontab.

    Every check sends the freshly parsed entry list on the updates queue,
    whether or not the file changed.
    """

    def __init__(
        self,
        repository: Repository,
        updates: "asyncio.Queue[Sequence[Entry]]",
        pull_frequency: float = 300.0,
        crontab_path: str = "crontab",
    ):
        """Initialize the watcher.

        Args:
            repository: Repository holding the crontab
            updates: Queue receiving parsed entry lists
            pull_frequency: Seconds between checks
            crontab_path: Crontab location relative to the repository root
        """
        self.repository = repository
        self.updates = updates
        self.pull_frequency = pull_frequency
        self.crontab_path = crontab_path
        self._stop_event = asyncio.Event()

    def _read_crontab(self) -> List[Entry]:
        master = self.repository.master
        try:
            master.pull()
        except GitError:
            logger.warning("couldn't pull; was origin's history rewritten?")
            logger.warning("overwriting local head with origin's...")
            master.fetch_head()

        contents = (Path(master.path) / self.crontab_path).read_text(encoding="utf-8")
        entries = parse_crontab(contents)
        logger.info("Got crontab:\n%s", contents)
        return entries

    async def pull_crontab(self) -> List[Entry]:
        """Pull origin, parse the crontab and publish it.

        Raises:
            GitError: If the repository cannot be brought up to date
            OSError: If the crontab file cannot be read
            CronValidationError: If the crontab does not parse
        """
        entries = await asyncio.to_thread(self._read_crontab)
        await self.updates.put(entries)
        return entries

    async def run(self, initial: bool = True) -> None:
        """Check for crontab changes until stopped.

        Args:
            initial: Check immediately instead of waiting one period first
        """
        if not initial:
            if await self._wait_period():
                return
        while not self._stop_event.is_set():
            try:
                await self.pull_crontab()
            except Exception as e:
                logger.error("error pulling crontab for %s: %s", self.repository.name, e)
            if await self._wait_period():
                return

    async def _wait_period(self) -> bool:
        try:
            await asyncio.wait_for(self._stop_event.wait(), timeout=self.pull_frequency)
            return True
        except asyncio.TimeoutError:
            return False

    def stop(self) -> None:
        self._stop_event.set()
