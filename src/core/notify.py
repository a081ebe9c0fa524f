"""
In-process change notification for tournament snapshots.
"""
import threading
from typing import Dict, Optional, Tuple, Any

from core.models import TournamentSnapshot


class SnapshotBroadcaster:
    """Keeps the latest snapshot per tournament and wakes anyone waiting for it."""

    def __init__(self):
        self._condition = threading.Condition()
        self._latest: Dict[Any, Tuple[int, TournamentSnapshot]] = {}

    def __call__(self, snapshot: TournamentSnapshot) -> None:
        self.publish(snapshot)

    def publish(self, snapshot: TournamentSnapshot) -> int:
        tournament_id = snapshot.tournament.id
        with self._condition:
            version = self.version(tournament_id) + 1
            self._latest[tournament_id] = (version, snapshot)
            self._condition.notify_all()
        return version

    def version(self, tournament_id) -> int:
        entry = self._latest.get(tournament_id)
        return entry[0] if entry else 0

    def latest(self, tournament_id) -> Optional[TournamentSnapshot]:
        entry = self._latest.get(tournament_id)
        return entry[1] if entry else None

    def wait_for_update(self, tournament_id, since_version: int, timeout: float) -> int:
        """Block until the tournament's version passes since_version or timeout; returns the version."""
        with self._condition:
            self._condition.wait_for(lambda: self.version(tournament_id) > since_version, timeout=timeout)
            return self.version(tournament_id)
