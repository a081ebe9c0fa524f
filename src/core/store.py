"""
YAML-backed bracket store.

Layout under the data directory:
    matches.yaml                   - match id sequence and match id -> tournament id index
    tournaments/<id>/bracket.yaml  - tournament, participants, matches and event log

Every read-then-write of a tournament's matches happens inside
``BracketStore.transaction()``, which holds that tournament's file lock and
rewrites bracket.yaml atomically on success. Lock order is always the
tournament lock first, then the index lock.
"""
import os
import logging
import tempfile
from contextlib import contextmanager
from datetime import datetime
from typing import List, Dict, Optional, Any

import yaml
from filelock import FileLock, Timeout

from core.errors import BracketCorruptionError, NotFoundError, StorageConflictError, StorageFailureError
from core.models import Tournament, Participant, Match, TournamentSnapshot

logger = logging.getLogger(__name__)

INDEX_FILE = 'matches.yaml'
BRACKET_FILE = 'bracket.yaml'
TOURNAMENTS_DIR = 'tournaments'


def _copy_match(match: Match) -> Match:
    return Match.from_dict(match.to_dict())


class BracketSession:
    """
    Unit of work over one tournament's bracket.

    Matches returned by get_match() are live objects; mutate them and call
    save_match() so the change is written when the transaction commits.
    """

    def __init__(self, store: 'BracketStore', data: Dict[str, Any]):
        self._store = store
        self.tournament = Tournament.from_dict(data['tournament'])
        self.participants = [Participant.from_dict(p) for p in data.get('participants') or []]
        self._matches = {}
        for item in data.get('matches') or []:
            try:
                match = Match.from_dict(item)
            except ValueError as e:
                raise BracketCorruptionError(f'Stored match is invalid: {e}',
                                             {'tournament_id': self.tournament.id}) from e
            self._matches[match.id] = match
        self._events = list(data.get('events') or [])
        self.created_match_ids = []
        self.changed = False

    def get_match(self, match_id) -> Optional[Match]:
        return self._matches.get(match_id)

    def matches(self) -> List[Match]:
        return sorted(self._matches.values(), key=lambda m: (m.match_number, m.id))

    def add_match(self, match: Match) -> Match:
        """Add a match created on demand; its id comes from the store sequence."""
        match.id = self._store.reserve_match_id()
        match.tournament_id = self.tournament.id
        self._matches[match.id] = match
        self.created_match_ids.append(match.id)
        self.changed = True
        return match

    def save_match(self, match: Match) -> None:
        if match.id not in self._matches:
            raise KeyError(f"Match {match.id} is not part of tournament {self.tournament.id}")
        self._matches[match.id] = match
        self.changed = True

    def log_event(self, event_type: str, **payload) -> None:
        event = {'type': event_type, 'at': datetime.now().isoformat()}
        event.update(payload)
        self._events.append(event)
        self.changed = True

    @property
    def events(self) -> List[Dict[str, Any]]:
        return list(self._events)

    def snapshot(self) -> TournamentSnapshot:
        return TournamentSnapshot(
            Tournament.from_dict(self.tournament.to_dict()),
            [Participant.from_dict(p.to_dict()) for p in self.participants],
            [_copy_match(m) for m in self._matches.values()],
        )

    def to_data(self) -> Dict[str, Any]:
        return {
            'tournament': self.tournament.to_dict(),
            'participants': [p.to_dict() for p in self.participants],
            'matches': [m.to_dict() for m in self.matches()],
            'events': self._events,
        }


class BracketStore:
    def __init__(self, data_dir: str, lock_timeout: float = 10):
        self.data_dir = data_dir
        self.lock_timeout = lock_timeout
        os.makedirs(os.path.join(data_dir, TOURNAMENTS_DIR), exist_ok=True)
        self._index_lock = FileLock(os.path.join(data_dir, '.matches.lock'), timeout=lock_timeout)

    # ------------------------------------------------------------------
    # Paths and locks
    # ------------------------------------------------------------------

    def _tournament_dir(self, tournament_id) -> str:
        return os.path.join(self.data_dir, TOURNAMENTS_DIR, str(tournament_id))

    def _bracket_path(self, tournament_id) -> str:
        return os.path.join(self._tournament_dir(tournament_id), BRACKET_FILE)

    def _index_path(self) -> str:
        return os.path.join(self.data_dir, INDEX_FILE)

    def _tournament_lock(self, tournament_id) -> FileLock:
        return FileLock(os.path.join(self._tournament_dir(tournament_id), '.lock'),
                        timeout=self.lock_timeout)

    @contextmanager
    def _acquire(self, lock: FileLock, what: str):
        try:
            lock.acquire()
        except Timeout as e:
            raise StorageConflictError(f'Timed out waiting for the lock on {what}',
                                       {'lock': lock.lock_file}) from e
        except OSError as e:
            # Timeout is itself an OSError, so it has to be caught first
            raise StorageFailureError(f'Could not lock {what}: {e}', {'lock': lock.lock_file}) from e
        try:
            yield
        finally:
            lock.release()

    # ------------------------------------------------------------------
    # YAML files
    # ------------------------------------------------------------------

    def _read_yaml(self, path: str) -> Optional[Dict[str, Any]]:
        if not os.path.exists(path):
            return None
        try:
            with open(path, 'r', encoding='utf-8') as f:
                return yaml.safe_load(f) or {}
        except (OSError, yaml.YAMLError) as e:
            raise StorageFailureError(f'Failed to read {path}: {e}') from e

    def _write_yaml(self, path: str, data: Dict[str, Any]) -> None:
        """Write data to path atomically (temp file in the same directory + os.replace)."""
        directory = os.path.dirname(path)
        try:
            fd, tmp_path = tempfile.mkstemp(prefix='.tmp-', suffix='.yaml', dir=directory)
            try:
                with os.fdopen(fd, 'w', encoding='utf-8') as f:
                    yaml.safe_dump(data, f, default_flow_style=False, sort_keys=False)
                os.replace(tmp_path, path)
            except BaseException:
                if os.path.exists(tmp_path):
                    os.remove(tmp_path)
                raise
        except (OSError, yaml.YAMLError) as e:
            raise StorageFailureError(f'Failed to write {path}: {e}') from e

    def _read_bracket(self, tournament_id) -> Dict[str, Any]:
        data = self._read_yaml(self._bracket_path(tournament_id))
        if not data or 'tournament' not in data:
            raise NotFoundError(f'Tournament {tournament_id} not found',
                                {'tournament_id': tournament_id})
        return data

    def _read_index(self) -> Dict[str, Any]:
        index = self._read_yaml(self._index_path()) or {}
        index.setdefault('next_id', 1)
        index.setdefault('matches', {})
        return index

    # ------------------------------------------------------------------
    # Match index
    # ------------------------------------------------------------------

    def reserve_match_id(self) -> int:
        """Reserve the next match id. Ids of aborted transactions are not reused."""
        with self._acquire(self._index_lock, 'the match index'):
            index = self._read_index()
            match_id = index['next_id']
            index['next_id'] = match_id + 1
            self._write_yaml(self._index_path(), index)
        return match_id

    def _register_matches(self, match_ids: List[int], tournament_id) -> None:
        with self._acquire(self._index_lock, 'the match index'):
            index = self._read_index()
            for match_id in match_ids:
                index['matches'][match_id] = tournament_id
                index['next_id'] = max(index['next_id'], match_id + 1)
            self._write_yaml(self._index_path(), index)

    def tournament_id_for_match(self, match_id):
        with self._acquire(self._index_lock, 'the match index'):
            index = self._read_index()
        if match_id not in index['matches']:
            raise NotFoundError(f'Match {match_id} not found', {'match_id': match_id})
        return index['matches'][match_id]

    # ------------------------------------------------------------------
    # Tournaments
    # ------------------------------------------------------------------

    def create_tournament(self, tournament: Tournament, participants: List[Participant],
                          matches: List[Match]) -> TournamentSnapshot:
        """
        Persist a freshly generated bracket.

        Matches may carry their own ids (so next_match_id links can be set by
        the generator); matches without an id get one from the sequence.
        """
        if os.path.exists(self._bracket_path(tournament.id)):
            raise ValueError(f"Tournament {tournament.id} already exists")
        os.makedirs(self._tournament_dir(tournament.id), exist_ok=True)

        with self._acquire(self._tournament_lock(tournament.id), f'tournament {tournament.id}'):
            with self._acquire(self._index_lock, 'the match index'):
                index = self._read_index()
                for match in matches:
                    owner = index['matches'].get(match.id)
                    if match.id is not None and owner is not None and owner != tournament.id:
                        raise ValueError(f"Match id {match.id} already belongs to tournament {owner}")
                    index['next_id'] = max(index['next_id'], (match.id or 0) + 1)
                for match in matches:
                    if match.id is None:
                        match.id = index['next_id']
                        index['next_id'] += 1
                    match.tournament_id = tournament.id
                    index['matches'][match.id] = tournament.id
                self._write_yaml(self._index_path(), index)

            data = {
                'tournament': tournament.to_dict(),
                'participants': [p.to_dict() for p in participants],
                'matches': [m.to_dict() for m in sorted(matches, key=lambda m: (m.match_number, m.id))],
                'events': [],
            }
            self._write_yaml(self._bracket_path(tournament.id), data)

        logger.info("Created tournament %s with %d matches", tournament.id, len(matches))
        return BracketSession(self, data).snapshot()

    @contextmanager
    def transaction(self, tournament_id):
        """
        Lock a tournament and yield a BracketSession.

        Changes are written when the block exits normally; an exception
        leaves the stored bracket untouched.
        """
        if not os.path.isdir(self._tournament_dir(tournament_id)):
            raise NotFoundError(f'Tournament {tournament_id} not found',
                                {'tournament_id': tournament_id})
        with self._acquire(self._tournament_lock(tournament_id), f'tournament {tournament_id}'):
            session = BracketSession(self, self._read_bracket(tournament_id))
            yield session
            if session.changed:
                if session.created_match_ids:
                    self._register_matches(session.created_match_ids, tournament_id)
                self._write_yaml(self._bracket_path(tournament_id), session.to_data())

    def load_tournament(self, tournament_id) -> Tournament:
        return Tournament.from_dict(self._read_bracket(tournament_id)['tournament'])

    def snapshot(self, tournament_id) -> TournamentSnapshot:
        # bracket.yaml is only ever replaced whole, so a plain read is consistent
        return BracketSession(self, self._read_bracket(tournament_id)).snapshot()

    def events(self, tournament_id) -> List[Dict[str, Any]]:
        return list(self._read_bracket(tournament_id).get('events') or [])

    def record_event(self, tournament_id, event_type: str, **payload) -> None:
        with self.transaction(tournament_id) as session:
            session.log_event(event_type, **payload)
