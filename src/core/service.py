"""
Entry points used by the web layer: submit a match result, read standings.
"""
import time
import logging
from typing import List, Dict, Optional, Callable, Any, Tuple

from core.errors import BracketCorruptionError, StorageConflictError, EngineError
from core.models import Tournament, TournamentSnapshot
from core.progression import apply_result
from core.standings import compute_standings
from core.store import BracketStore

logger = logging.getLogger(__name__)


def score_from_maps(maps_data) -> Optional[Tuple[int, int]]:
    """
    Series score from per-map results: maps won by each side.

    Only multi-map series are summarised; returns None for zero or one map.
    """
    if not maps_data or len(maps_data) < 2:
        return None
    team1_wins = 0
    team2_wins = 0
    for map_result in maps_data:
        map_score1 = int(map_result.get('score1') or 0)
        map_score2 = int(map_result.get('score2') or 0)
        if map_score1 > map_score2:
            team1_wins += 1
        elif map_score2 > map_score1:
            team2_wins += 1
    return team1_wins, team2_wins


class BracketEngine:
    """
    Applies match results and computes standings against a BracketStore.

    Each submission runs in one store transaction. Lock conflicts are retried
    with exponential backoff; every other error goes straight to the caller.
    """

    def __init__(self, store: BracketStore, notifier: Optional[Callable[[TournamentSnapshot], Any]] = None,
                 max_attempts: int = 3, backoff_seconds: float = 0.05):
        self.store = store
        self.notifier = notifier
        self.max_attempts = max(1, max_attempts)
        self.backoff_seconds = backoff_seconds

    def submit_match_result(self, match_id, winner_team_id, score1, score2, maps_data=None,
                            requester_has_edit_rights: bool = False,
                            requested_by: Optional[str] = None) -> TournamentSnapshot:
        def apply_once():
            tournament_id = self.store.tournament_id_for_match(match_id)
            try:
                with self.store.transaction(tournament_id) as session:
                    return apply_result(session, match_id, winner_team_id, score1, score2,
                                        maps_data=maps_data,
                                        can_edit=requester_has_edit_rights,
                                        requested_by=requested_by)
            except BracketCorruptionError as e:
                self._flag_corruption(tournament_id, match_id, e)
                raise

        snapshot = self._retry_on_conflict(f'match {match_id}', apply_once)
        self._notify(snapshot)
        return snapshot

    def tournament_for_match(self, match_id) -> Tournament:
        """Tournament a match belongs to, retrying lock conflicts like a submission."""
        return self._retry_on_conflict(
            f'match {match_id}',
            lambda: self.store.load_tournament(self.store.tournament_id_for_match(match_id)))

    def get_standings(self, tournament_id) -> List[Dict[str, Any]]:
        snapshot = self.store.snapshot(tournament_id)
        return compute_standings(snapshot.tournament, snapshot.participants, snapshot.matches)

    def _retry_on_conflict(self, what: str, operation: Callable[[], Any]):
        attempt = 1
        while True:
            try:
                return operation()
            except StorageConflictError as e:
                if attempt >= self.max_attempts:
                    logger.warning("Giving up on %s after %d attempts: %s", what, attempt, e)
                    raise
                delay = self.backoff_seconds * (2 ** (attempt - 1))
                logger.warning("Lock conflict on %s (attempt %d/%d), retrying in %.2fs",
                               what, attempt, self.max_attempts, delay)
                time.sleep(delay)
                attempt += 1

    def _flag_corruption(self, tournament_id, match_id, error: BracketCorruptionError) -> None:
        logger.error("Bracket corruption in tournament %s while applying match %s: %s",
                     tournament_id, match_id, error)
        try:
            self.store.record_event(tournament_id, 'bracket_corruption',
                                    match_id=match_id, message=error.message, details=error.details)
        except EngineError as record_error:
            logger.error("Could not record bracket corruption for tournament %s: %s",
                         tournament_id, record_error)

    def _notify(self, snapshot: TournamentSnapshot) -> None:
        if self.notifier is None:
            return
        try:
            self.notifier(snapshot)
        except Exception as e:
            logger.warning("Notifier failed for tournament %s: %s", snapshot.tournament.id, e)
