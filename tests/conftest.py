"""
Shared pytest fixtures for the bracket engine tests.

Running tests:
    pytest tests/                  - full suite
    pytest tests/ -m "not slow"   - fast subset (skips the concurrency tests)

Participant ids used throughout: A=1, B=2, C=3, D=4.
"""
import pytest
import sys
import os

# Add src directory to path for imports
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'src'))

from core.models import Tournament, Participant, Match
from core.service import BracketEngine
from core.store import BracketStore

A, B, C, D = 1, 2, 3, 4


def make_participants():
    return [
        Participant(A, 'Team A'),
        Participant(B, 'Team B'),
        Participant(C, 'Team C'),
        Participant(D, 'Team D'),
    ]


def make_single_elimination(third_place=False):
    """
    4-team single elimination.

    Match 1 (round 1): A vs B -> match 3
    Match 2 (round 1): C vs D -> match 3
    Match 3 (round 2): final
    Match 4 (round 2): third-place match fed by the semifinal losers (optional)
    """
    loser_link = 4 if third_place else None
    matches = [
        Match(1, 1, 1, 1, team1_id=A, team2_id=B, next_match_id=3, loser_next_match_id=loser_link),
        Match(2, 1, 1, 2, team1_id=C, team2_id=D, next_match_id=3, loser_next_match_id=loser_link),
        Match(3, 1, 2, 3),
    ]
    if third_place:
        matches.append(Match(4, 1, 2, 4, bracket_type='placement', is_third_place_match=True))
    return matches


def make_double_elimination(with_first_loser_round=True):
    """
    4-team double elimination (winner rounds are 0-indexed).

    Winner bracket: 1 (r0) A vs B, 2 (r0) C vs D -> 3 (r1, winner final) -> 6
    Loser bracket:  4 (r1) receives the r0 losers -> 5 (r3, loser final) -> 6
    Grand final 6, reset 7.
    """
    matches = [
        Match(1, 1, 0, 1, team1_id=A, team2_id=B, next_match_id=3),
        Match(2, 1, 0, 2, team1_id=C, team2_id=D, next_match_id=3),
        Match(3, 1, 1, 3, next_match_id=6),
        Match(5, 1, 3, 5, bracket_type='loser', next_match_id=6),
        Match(6, 1, 4, 6, bracket_type='grand_final'),
        Match(7, 1, 5, 7, bracket_type='grand_final_reset'),
    ]
    if with_first_loser_round:
        matches.append(Match(4, 1, 1, 4, bracket_type='loser', next_match_id=5))
    return matches


@pytest.fixture
def store(tmp_path):
    """Bracket store rooted in a temporary data directory."""
    return BracketStore(str(tmp_path / 'data'), lock_timeout=1)


@pytest.fixture
def engine(store):
    """Engine without a notifier and with a fast retry backoff."""
    return BracketEngine(store, backoff_seconds=0)


@pytest.fixture
def single_elim(store):
    """Active 4-team single elimination tournament (id 1)."""
    tournament = Tournament(1, 'Cup', format='single_elimination', status='in_progress', owner='organizer')
    return store.create_tournament(tournament, make_participants(), make_single_elimination())


@pytest.fixture
def third_place_elim(store):
    """Single elimination with a third-place match (id 1)."""
    tournament = Tournament(1, 'Cup', format='single_elimination', status='in_progress', owner='organizer')
    return store.create_tournament(tournament, make_participants(), make_single_elimination(third_place=True))


@pytest.fixture
def double_elim(store):
    """Active 4-team double elimination tournament with a pre-generated loser bracket (id 1)."""
    tournament = Tournament(1, 'Major', format='double_elimination', status='in_progress', owner='organizer')
    return store.create_tournament(tournament, make_participants(), make_double_elimination())


@pytest.fixture
def sparse_double_elim(store):
    """Double elimination whose first loser round has not been generated (id 1)."""
    tournament = Tournament(1, 'Major', format='double_elimination', status='in_progress', owner='organizer')
    return store.create_tournament(tournament, make_participants(),
                                   make_double_elimination(with_first_loser_round=False))
