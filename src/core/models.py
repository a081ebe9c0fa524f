"""
Bracket entities: tournaments, participants, matches and snapshots.
"""
import copy
from typing import List, Dict, Optional, Any


SINGLE_ELIMINATION = 'single_elimination'
DOUBLE_ELIMINATION = 'double_elimination'
MIX = 'mix'
TOURNAMENT_FORMATS = (SINGLE_ELIMINATION, DOUBLE_ELIMINATION, MIX)

TOURNAMENT_STATUSES = ('registration', 'active', 'in_progress', 'completed')
ACTIVE_STATUSES = ('active', 'in_progress')

WINNER_BRACKET = 'winner'
LOSER_BRACKET = 'loser'
GRAND_FINAL = 'grand_final'
GRAND_FINAL_RESET = 'grand_final_reset'
PLACEMENT = 'placement'
BRACKET_TYPES = (WINNER_BRACKET, LOSER_BRACKET, GRAND_FINAL, GRAND_FINAL_RESET, PLACEMENT)

PRELIMINARY_ROUND = -1

MATCH_PENDING = 'pending'
MATCH_COMPLETED = 'completed'

SLOTS = ('team1_id', 'team2_id')


class Participant:
    def __init__(self, id, name, members=None):
        self.id = id
        self.name = name
        self.members = members if members else []

    def to_dict(self) -> Dict[str, Any]:
        return {'id': self.id, 'name': self.name, 'members': list(self.members)}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Participant':
        return cls(data['id'], data.get('name'), data.get('members'))

    def __repr__(self):
        return f"Participant(id={self.id}, name={self.name})"


class Tournament:
    def __init__(self, id, name, format=SINGLE_ELIMINATION, status='registration',
                 owner=None, admins=None, game=None):
        if format not in TOURNAMENT_FORMATS:
            raise ValueError(f"Unknown tournament format: {format}")
        if status not in TOURNAMENT_STATUSES:
            raise ValueError(f"Unknown tournament status: {status}")
        self.id = id
        self.name = name
        self.format = format
        self.status = status
        self.owner = owner
        self.admins = admins if admins else []
        self.game = game

    @property
    def is_active(self) -> bool:
        return self.status in ACTIVE_STATUSES

    def can_edit(self, username: Optional[str]) -> bool:
        """Owner and admins may edit match results."""
        if not username:
            return False
        return username == self.owner or username in self.admins

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'name': self.name,
            'format': self.format,
            'status': self.status,
            'owner': self.owner,
            'admins': list(self.admins),
            'game': self.game,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Tournament':
        return cls(
            data['id'],
            data.get('name'),
            format=data.get('format', SINGLE_ELIMINATION),
            status=data.get('status', 'registration'),
            owner=data.get('owner'),
            admins=data.get('admins'),
            game=data.get('game'),
        )

    def __repr__(self):
        return f"Tournament(id={self.id}, format={self.format}, status={self.status})"


class Match:
    """
    A single bracket match.

    team1_id / team2_id are participant ids (None for an unfilled slot or a BYE).
    next_match_id carries the winner forward; loser_next_match_id carries the
    loser (third-place match, or a pre-generated loser-bracket slot).
    """

    def __init__(self, id, tournament_id, round, match_number, bracket_type=WINNER_BRACKET,
                 team1_id=None, team2_id=None, winner_team_id=None, score1=None, score2=None,
                 maps_data=None, next_match_id=None, loser_next_match_id=None,
                 is_third_place_match=False, status=None):
        if bracket_type not in BRACKET_TYPES:
            raise ValueError(f"Unknown bracket type: {bracket_type}")
        if team1_id is not None and team1_id == team2_id:
            raise ValueError(f"Match {id}: team {team1_id} cannot play itself")
        if winner_team_id is not None and winner_team_id not in (team1_id, team2_id):
            raise ValueError(f"Match {id}: winner {winner_team_id} is not one of ({team1_id}, {team2_id})")
        self.id = id
        self.tournament_id = tournament_id
        self.round = round
        self.match_number = match_number
        self.bracket_type = bracket_type
        self.team1_id = team1_id
        self.team2_id = team2_id
        self.winner_team_id = winner_team_id
        self.score1 = score1
        self.score2 = score2
        self.maps_data = maps_data if maps_data else []
        self.next_match_id = next_match_id
        self.loser_next_match_id = loser_next_match_id
        self.is_third_place_match = bool(is_third_place_match)
        if status is None:
            status = MATCH_COMPLETED if winner_team_id is not None else MATCH_PENDING
        self.status = status

    @property
    def teams(self) -> tuple:
        return (self.team1_id, self.team2_id)

    def has_team(self, team_id) -> bool:
        return team_id is not None and team_id in self.teams

    def open_slot(self) -> Optional[str]:
        """Return the first unfilled slot name, preferring team1_id."""
        for slot in SLOTS:
            if getattr(self, slot) is None:
                return slot
        return None

    def slot_of(self, team_id) -> Optional[str]:
        for slot in SLOTS:
            if team_id is not None and getattr(self, slot) == team_id:
                return slot
        return None

    @property
    def loser_team_id(self):
        """The non-winning side, or None when undecided or the other slot is a BYE."""
        if self.winner_team_id is None:
            return None
        if self.winner_team_id == self.team1_id:
            return self.team2_id
        if self.winner_team_id == self.team2_id:
            return self.team1_id
        return None

    @property
    def is_completed(self) -> bool:
        return self.status == MATCH_COMPLETED and self.winner_team_id is not None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'tournament_id': self.tournament_id,
            'round': self.round,
            'match_number': self.match_number,
            'bracket_type': self.bracket_type,
            'team1_id': self.team1_id,
            'team2_id': self.team2_id,
            'winner_team_id': self.winner_team_id,
            'score1': self.score1,
            'score2': self.score2,
            'maps_data': copy.deepcopy(self.maps_data),
            'next_match_id': self.next_match_id,
            'loser_next_match_id': self.loser_next_match_id,
            'is_third_place_match': self.is_third_place_match,
            'status': self.status,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Match':
        return cls(
            data.get('id'),
            data.get('tournament_id'),
            data['round'],
            data['match_number'],
            bracket_type=data.get('bracket_type', WINNER_BRACKET),
            team1_id=data.get('team1_id'),
            team2_id=data.get('team2_id'),
            winner_team_id=data.get('winner_team_id'),
            score1=data.get('score1'),
            score2=data.get('score2'),
            maps_data=copy.deepcopy(data.get('maps_data')),
            next_match_id=data.get('next_match_id'),
            loser_next_match_id=data.get('loser_next_match_id'),
            is_third_place_match=data.get('is_third_place_match', False),
            status=data.get('status'),
        )

    def __repr__(self):
        return (f"Match(id={self.id}, {self.bracket_type} round={self.round} #{self.match_number}, "
                f"teams=({self.team1_id}, {self.team2_id}), winner={self.winner_team_id})")


class TournamentSnapshot:
    """Tournament, participants and matches as handed to notification and rendering layers."""

    def __init__(self, tournament: Tournament, participants: List[Participant], matches: List[Match]):
        self.tournament = tournament
        self.participants = participants
        self.matches = sorted(matches, key=lambda m: (m.match_number, m.id or 0))

    def match(self, match_id) -> Optional[Match]:
        for m in self.matches:
            if m.id == match_id:
                return m
        return None

    def to_dict(self) -> Dict[str, Any]:
        data = self.tournament.to_dict()
        data['participants'] = [p.to_dict() for p in self.participants]
        data['matches'] = [m.to_dict() for m in self.matches]
        return data
