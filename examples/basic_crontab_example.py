#!/usr/bin/env python3
"""
Basic crontab example for crony.

This example parses a crontab, previews when its entries will run, and
publishes one command run to a throwaway local git repository.
"""

import asyncio
import logging
import subprocess
import sys
import tempfile
from datetime import datetime
from pathlib import Path

# Add the parent directory to Python path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from crony.scheduling import CommandDispatcher, CronValidationError, parse_crontab
from crony.workspace import Repository


CRONTAB = """
# Example crontab
@hourly       ./collect-metrics.sh
*/15 9-17 * * mon-fri   ./poll-queue.sh
0 0 13 * fri  echo "Friday, or the 13th"

# Never fires: February has no 31st
0 0 31 2 *    ./impossible.sh
"""


def preview_example():
    """Example of parsing a crontab and listing upcoming runs."""
    print("=== Schedule Preview Example ===")

    entries = parse_crontab(CRONTAB)
    now = datetime.now()
    for entry in entries:
        runs = list(entry.schedule.iter_next(now, 3))
        when = ", ".join(run.strftime("%a %Y-%m-%d %H:%M") for run in runs) or "never"
        print(f"{entry.command}\n    {when}")

    try:
        parse_crontab("@daily ok\n61 * * * * broken\n")
    except CronValidationError as e:
        print(f"\nRejected crontab (line {e.lineno}): {e}")


async def dispatch_example():
    """Example of running one command against a local origin."""
    print("\n=== Dispatch Example ===")

    with tempfile.TemporaryDirectory() as tmp:
        tmp_path = Path(tmp)
        origin = tmp_path / "origin.git"
        seed = tmp_path / "seed"

        subprocess.run(["git", "init", "--bare", str(origin)], check=True, capture_output=True)
        subprocess.run(["git", "clone", str(origin), str(seed)], check=True, capture_output=True)
        (seed / "crontab").write_text(CRONTAB.strip() + "\n")
        for args in (["add", "crontab"], ["commit", "-m", "Add crontab"], ["push", "origin", "HEAD"]):
            subprocess.run(["git", *args], cwd=seed, check=True, capture_output=True)

        repository = Repository.clone("example", str(origin), tmp_path)
        try:
            dispatcher = CommandDispatcher(repository, shell="/bin/sh")
            result = await dispatcher.execute("date > last-run; echo collected")
            print(f"Status: {result.status.value}, pushed: {result.pushed}")
            print(f"Output: {result.output.strip()}")

            log = subprocess.run(
                ["git", "log", "-1", "--format=%B"],
                cwd=repository.master.path, check=True, capture_output=True, text=True,
            )
            print(f"Commit message:\n{log.stdout}")

            stats = dispatcher.get_stats()
            print(f"Success rate: {stats.success_rate():.1f}%")
        finally:
            repository.close()


async def main():
    """Run all examples."""
    logging.basicConfig(
        level=logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )

    try:
        preview_example()
        await dispatch_example()
    except KeyboardInterrupt:
        print("\nExamples interrupted by user")
    except Exception as e:
        print(f"Example failed: {e}")
        import traceback
        traceback.print_exc()


if __name__ == "__main__":
    print("crony Examples")
    print("=" * 40)
    asyncio.run(main())
