"""
Publisher holding the snapshot currently served over LDAP
"""

import logging
import threading
from typing import Optional

from errors import ConfigAbsent
from models import DirectorySnapshot, diff_snapshots


logger = logging.getLogger(__name__)


class Publisher:
    """
    Single slot holding the served DirectorySnapshot.

    The watcher is the only writer. Readers call current() once per request and
    keep using the returned snapshot; it is immutable, so it is shared as is.
    Reading the slot is a single attribute load and needs no lock.
    """

    def __init__(self):
        self._snapshot: Optional[DirectorySnapshot] = None
        self._generation = 0
        self._installed = threading.Condition(threading.Lock())

    @property
    def generation(self) -> int:
        """Number of snapshots installed so far."""
        return self._generation

    @property
    def ready(self) -> bool:
        return self._snapshot is not None

    def current(self) -> DirectorySnapshot:
        """Return the snapshot visible right now."""
        snapshot = self._snapshot
        if snapshot is None:
            raise ConfigAbsent("no configuration has been loaded yet")
        return snapshot

    def install(self, snapshot: DirectorySnapshot):
        """Make `snapshot` the one returned by every later current() call."""
        with self._installed:
            previous = self._snapshot
            self._snapshot = snapshot
            self._generation += 1
            self._installed.notify_all()

        summary = diff_snapshots(previous, snapshot)
        logger.info(
            f"Installed config revision {snapshot.revision}: "
            f"{len(snapshot.users)} users, {len(snapshot.groups)} groups "
            f"(create={summary.get('create', 0)} update={summary.get('update', 0)} "
            f"delete={summary.get('delete', 0)})"
        )

    def wait_for(self, generation: int, timeout: Optional[float] = None) -> bool:
        """Block until at least `generation` snapshots were installed. Returns False on timeout."""
        with self._installed:
            return self._installed.wait_for(lambda: self._generation >= generation, timeout)
