"""
Tests for result progression: winner advancement, loser routing, bracket reset
and corrections, run against a real store transaction.
"""
import pytest
import sys
import os

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'src'))

from core.errors import BracketCorruptionError, DownstreamLockedError, NoChangeError
from core.models import Tournament, Participant, Match
from core.progression import (
    apply_result,
    get_target_loser_round,
    calculate_winner_rounds,
    calculate_loser_rounds,
)
from tests.conftest import A, B, C, D, make_participants


def submit(store, match_id, winner, score1=1, score2=0, **kwargs):
    """Apply a result for tournament 1 inside its own transaction."""
    with store.transaction(1) as session:
        return apply_result(session, match_id, winner, score1, score2, can_edit=True, **kwargs)


def teams_of(store, match_id):
    return store.snapshot(1).match(match_id).teams


def placements_of(snapshot, team_id):
    """Undecided matches a team currently sits in."""
    return [m.id for m in snapshot.matches if m.has_team(team_id) and m.winner_team_id is None]


class TestRoundMapping:
    """Tests for the winner round -> loser round mapping."""

    def test_preliminary_round_goes_to_first_loser_round(self):
        assert get_target_loser_round(-1, 3, 4) == 1

    def test_winner_final_goes_to_loser_final(self):
        assert get_target_loser_round(2, 3, 4) == 4

    def test_other_rounds_shift_by_one(self):
        assert get_target_loser_round(0, 3, 4) == 1
        assert get_target_loser_round(1, 3, 4) == 2

    def test_round_totals(self):
        """Winner rounds count from the highest round; loser rounds are at least one more."""
        matches = [Match(1, 1, -1, 1), Match(2, 1, 0, 2), Match(3, 1, 2, 3)]
        assert calculate_winner_rounds(matches) == 3
        assert calculate_loser_rounds(matches, 3) == 4
        matches.append(Match(4, 1, 6, 4, bracket_type='loser'))
        assert calculate_loser_rounds(matches, 3) == 6


class TestSingleElimination:
    """Winner advancement in single elimination."""

    def test_winners_fill_final_in_order(self, store, single_elim):
        """First winner takes team1, second takes team2."""
        submit(store, 1, A)
        assert teams_of(store, 3) == (A, None)
        submit(store, 2, C)
        assert teams_of(store, 3) == (A, C)

    def test_result_recorded(self, store, single_elim):
        snapshot = submit(store, 1, A, 2, 1, maps_data=[{'map': 'Inferno', 'score1': 13, 'score2': 9}])
        match = snapshot.match(1)
        assert match.winner_team_id == A
        assert (match.score1, match.score2) == (2, 1)
        assert match.status == 'completed'
        assert match.maps_data[0]['map'] == 'Inferno'

    def test_loser_eliminated(self, store, single_elim):
        """Without a loser link the loser goes nowhere."""
        snapshot = submit(store, 1, A)
        assert placements_of(snapshot, B) == []

    def test_semifinal_losers_reach_third_place_match(self, store, third_place_elim):
        submit(store, 1, A)
        submit(store, 2, C)
        assert teams_of(store, 4) == (B, D)

    def test_preliminary_round_feeds_main_bracket(self, store):
        """A round -1 winner simply advances via next_match_id."""
        tournament = Tournament(1, 'Cup', format='single_elimination', status='active', owner='organizer')
        matches = [
            Match(1, 1, -1, 1, team1_id=A, team2_id=B, next_match_id=2),
            Match(2, 1, 0, 2, team2_id=C, next_match_id=3),
            Match(3, 1, 1, 3),
        ]
        store.create_tournament(tournament, make_participants(), matches)
        submit(store, 1, B)
        assert teams_of(store, 2) == (B, C)

    def test_full_next_match_is_corruption(self, store):
        """Both slots taken by other teams: report, never overwrite."""
        tournament = Tournament(1, 'Cup', format='single_elimination', status='active')
        matches = [
            Match(1, 1, 0, 1, team1_id=A, team2_id=B, next_match_id=2),
            Match(2, 1, 1, 2, team1_id=C, team2_id=D),
        ]
        store.create_tournament(tournament, make_participants(), matches)
        with pytest.raises(BracketCorruptionError):
            submit(store, 1, A)
        snapshot = store.snapshot(1)
        assert snapshot.match(1).winner_team_id is None
        assert snapshot.match(2).teams == (C, D)

    def test_winner_already_in_next_match(self, store):
        """A winner already seated downstream is left where it is."""
        tournament = Tournament(1, 'Cup', format='single_elimination', status='active')
        matches = [
            Match(1, 1, 0, 1, team1_id=A, team2_id=B, next_match_id=2),
            Match(2, 1, 1, 2, team1_id=C, team2_id=A),
        ]
        store.create_tournament(tournament, make_participants(), matches)
        submit(store, 1, A)
        assert teams_of(store, 2) == (C, A)


class TestDoubleElimination:
    """Loser routing in double elimination."""

    def test_first_round_losers_drop_to_loser_round_one(self, store, double_elim):
        submit(store, 1, A)
        submit(store, 2, C)
        assert teams_of(store, 4) == (B, D)

    def test_winner_final_loser_goes_to_loser_final(self, store, double_elim):
        submit(store, 1, A)
        submit(store, 2, C)
        snapshot = submit(store, 3, A)
        assert snapshot.match(5).teams == (C, None)
        assert snapshot.match(6).teams == (A, None)

    def test_loser_bracket_loser_is_eliminated(self, store, double_elim):
        submit(store, 1, A)
        submit(store, 2, C)
        snapshot = submit(store, 4, B)
        assert snapshot.match(5).teams == (B, None)
        assert placements_of(snapshot, D) == []

    def test_missing_loser_round_is_created(self, store, sparse_double_elim):
        """No loser round 1 match exists: one is created holding the loser in team1."""
        snapshot = submit(store, 1, A)
        created = [m for m in snapshot.matches if m.bracket_type == 'loser' and m.round == 1]
        assert len(created) == 1
        new_match = created[0]
        assert new_match.team1_id == B
        assert new_match.team2_id is None
        assert new_match.id not in (1, 2, 3, 5, 6, 7)
        assert len({m.match_number for m in snapshot.matches}) == len(snapshot.matches)

    def test_created_match_is_reused(self, store, sparse_double_elim):
        """The second loser joins the created match instead of creating another."""
        submit(store, 1, A)
        snapshot = submit(store, 2, C)
        created = [m for m in snapshot.matches if m.bracket_type == 'loser' and m.round == 1]
        assert len(created) == 1
        assert created[0].teams == (B, D)
        assert store.tournament_id_for_match(created[0].id) == 1

    def test_loser_never_faces_itself(self, store):
        """A loser-bracket match already holding the loser is skipped."""
        tournament = Tournament(1, 'Major', format='double_elimination', status='active')
        matches = [
            Match(1, 1, 0, 1, team1_id=A, team2_id=B, next_match_id=3),
            Match(3, 1, 1, 3),
            Match(4, 1, 1, 4, bracket_type='loser', team1_id=B),
        ]
        store.create_tournament(tournament, make_participants(), matches)
        snapshot = submit(store, 1, A)
        assert snapshot.match(4).teams == (B, None)
        round_one = [m for m in snapshot.matches if m.bracket_type == 'loser' and m.round == 1]
        assert len(round_one) == 2

    def test_explicit_loser_link_wins(self, store):
        """A pre-linked loser slot is used without searching."""
        tournament = Tournament(1, 'Major', format='double_elimination', status='active')
        matches = [
            Match(1, 1, 0, 1, team1_id=A, team2_id=B, next_match_id=3, loser_next_match_id=9),
            Match(3, 1, 1, 3),
            Match(4, 1, 1, 4, bracket_type='loser'),
            Match(9, 1, 2, 9, bracket_type='loser'),
        ]
        store.create_tournament(tournament, make_participants(), matches)
        snapshot = submit(store, 1, A)
        assert snapshot.match(9).teams == (B, None)
        assert snapshot.match(4).teams == (None, None)

    def test_bye_routes_nobody(self, store, double_elim):
        """A BYE win advances the winner and drops no one."""
        with store.transaction(1) as session:
            session.get_match(2).team2_id = None
            session.save_match(session.get_match(2))
        snapshot = submit(store, 2, C)
        assert snapshot.match(3).teams == (C, None)
        assert snapshot.match(4).teams == (None, None)

    def test_failed_routing_writes_nothing(self, store):
        """Winner placed but loser routing fails: the whole result is rolled back."""
        tournament = Tournament(1, 'Major', format='double_elimination', status='active')
        matches = [
            Match(1, 1, 0, 1, team1_id=A, team2_id=B, next_match_id=3, loser_next_match_id=4),
            Match(3, 1, 1, 3),
            Match(4, 1, 1, 4, bracket_type='loser', team1_id=C, team2_id=D),
        ]
        store.create_tournament(tournament, make_participants(), matches)
        with pytest.raises(BracketCorruptionError):
            submit(store, 1, A)
        snapshot = store.snapshot(1)
        assert snapshot.match(1).winner_team_id is None
        assert snapshot.match(3).teams == (None, None)
        assert store.events(1) == []


class TestGrandFinal:
    """Grand Final and bracket reset."""

    def _play_to_grand_final(self, store):
        submit(store, 1, A)
        submit(store, 2, C)
        submit(store, 3, A)
        submit(store, 4, B)
        return submit(store, 5, C)

    def test_grand_final_seated(self, store, double_elim):
        snapshot = self._play_to_grand_final(store)
        assert snapshot.match(6).teams == (A, C)

    def test_winners_champion_wins_no_reset(self, store, double_elim):
        self._play_to_grand_final(store)
        snapshot = submit(store, 6, A, 3, 1)
        assert snapshot.match(7).teams == (None, None)

    def test_losers_champion_wins_forces_reset(self, store, double_elim):
        self._play_to_grand_final(store)
        snapshot = submit(store, 6, C, 1, 3)
        assert snapshot.match(7).teams == (A, C)

    def test_correcting_grand_final_clears_reset(self, store, double_elim):
        self._play_to_grand_final(store)
        submit(store, 6, C, 1, 3)
        snapshot = submit(store, 6, A, 3, 1)
        assert snapshot.match(7).teams == (None, None)

    def test_grand_final_locked_after_reset_played(self, store, double_elim):
        self._play_to_grand_final(store)
        submit(store, 6, C, 1, 3)
        submit(store, 7, A, 3, 2)
        with pytest.raises(DownstreamLockedError):
            submit(store, 6, A, 3, 1)

    def test_resubmitting_into_completed_grand_final(self, store, double_elim):
        """Loser final cannot change once the Grand Final is decided."""
        self._play_to_grand_final(store)
        submit(store, 6, A, 3, 1)
        with pytest.raises(DownstreamLockedError):
            submit(store, 5, B, 2, 1)


class TestCorrections:
    """Changing a result while nothing downstream is decided."""

    def test_changed_winner_swaps_both_routes(self, store, double_elim):
        submit(store, 1, A)
        snapshot = submit(store, 1, B, 0, 1)
        assert snapshot.match(3).teams == (B, None)
        assert snapshot.match(4).teams == (A, None)

    def test_score_only_change_routes_nobody_twice(self, store, double_elim):
        submit(store, 1, A, 2, 0)
        snapshot = submit(store, 1, A, 2, 1)
        assert placements_of(snapshot, A) == [3]
        assert placements_of(snapshot, B) == [4]
        assert snapshot.match(1).score2 == 1

    def test_same_result_is_no_change(self, store, double_elim):
        submit(store, 1, A, 2, 0)
        before = store.snapshot(1).to_dict()
        with pytest.raises(NoChangeError):
            submit(store, 1, A, 2, 0)
        assert store.snapshot(1).to_dict() == before

    def test_clearing_result_retracts(self, store, double_elim):
        submit(store, 1, A)
        snapshot = submit(store, 1, None, None, None)
        assert snapshot.match(1).status == 'pending'
        assert snapshot.match(3).teams == (None, None)
        assert snapshot.match(4).teams == (None, None)

    def test_locked_once_next_match_played(self, store, double_elim):
        submit(store, 1, A)
        submit(store, 2, C)
        submit(store, 3, A)
        with pytest.raises(DownstreamLockedError):
            submit(store, 1, B, 0, 2)
        assert store.snapshot(1).match(1).winner_team_id == A

    def test_locked_once_created_loser_match_played(self, store, sparse_double_elim):
        """The on-demand loser match also locks the result that fed it."""
        submit(store, 1, A)
        snapshot = submit(store, 2, C)
        created = [m for m in snapshot.matches if m.bracket_type == 'loser' and m.round == 1][0]
        submit(store, created.id, B)
        with pytest.raises(DownstreamLockedError):
            submit(store, 1, B, 0, 2)


class TestEventLog:
    """Applied results are logged in the same transaction."""

    def test_match_completed_event(self, store, single_elim):
        submit(store, 1, A, 2, 1, requested_by='organizer')
        events = store.events(1)
        assert len(events) == 1
        assert events[0]['type'] == 'match_completed'
        assert events[0]['match_id'] == 1
        assert events[0]['score'] == '2:1'
        assert events[0]['requested_by'] == 'organizer'
