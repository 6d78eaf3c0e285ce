"""
Backup daemon - drives the backup cadence.

A cycle is due once `frequency` has passed since the last completed cycle
recorded in the registry (or immediately when forced or never run). Each due
cycle backs up every enrolled repository and then stamps the registry.
"""

import logging
import threading
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

from ghbackup.backup.executor import BackupExecutor
from ghbackup.registry import Registry


logger = logging.getLogger(__name__)


class BackupDaemon:
    """
    Runs backup cycles forever, one at a time.
    """

    def __init__(self, registry: Registry, executor: BackupExecutor, frequency: timedelta, force: bool = False):
        """
        Args:
            registry: Source of the enrolled set and the last-run timestamp
            executor: Runs the per-repository workflow
            frequency: Minimum time between two completed cycles
            force: Run the first cycle immediately regardless of the last run
        """
        self.registry = registry
        self.executor = executor
        self.frequency = frequency
        self.force = force
        self._stop = threading.Event()

    @staticmethod
    def _now() -> datetime:
        return datetime.now(timezone.utc)

    def next_run(self) -> datetime:
        return self.registry.get_last_run() + self.frequency

    def seconds_until_due(self, now: Optional[datetime] = None) -> float:
        """Seconds to wait before the next cycle, never negative."""
        if self.force:
            return 0.0
        now = now or self._now()
        return max(0.0, (self.next_run() - now).total_seconds())

    def is_due(self, now: Optional[datetime] = None) -> bool:
        return self.seconds_until_due(now) == 0.0

    def run_cycle(self) -> Dict[str, Any]:
        """
        Back up all enrolled repositories and record the completion time.

        The timestamp is written even when individual repositories failed, and
        never moves backwards (e.g. after the clock was stepped back).
        """
        self.force = False

        refs = self.registry.list_enrolled()
        summary = self.executor.run_cycle(refs)

        finished = max(self.registry.get_last_run(), self._now())
        self.registry.set_last_run(finished)
        return summary

    def run_forever(self):
        """
        Loop until stop() is called.

        After every wait the due-check is evaluated again, so clock changes or a
        timestamp written by someone else during the wait are honoured.

        Raises:
            RegistryError: If the registry becomes unusable
        """
        logger.info(f"Backup daemon started (frequency {self.frequency})")

        while not self._stop.is_set():
            wait = self.seconds_until_due()
            if wait > 0:
                logger.info(f"Next backup due at {self.next_run().isoformat()}, sleeping {wait:.0f}s")
                self._stop.wait(wait)
                continue

            logger.info("Downloading all the repos...")
            self.run_cycle()
            logger.info("Finished.")

        logger.info("Backup daemon stopped")

    def stop(self):
        """Ask run_forever() to return; interrupts a pending wait."""
        self._stop.set()

    @property
    def stopped(self) -> bool:
        return self._stop.is_set()
