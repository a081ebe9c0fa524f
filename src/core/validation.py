"""
Match result validation.

Pure checks run before a result is applied; nothing here touches storage.
"""
from typing import List, Optional

from core.errors import (
    NotFoundError,
    UnauthorizedError,
    InvalidStateError,
    InvalidWinnerError,
    NoChangeError,
    DownstreamLockedError,
)
from core.models import Match, Tournament


def validate_result(match: Optional[Match], tournament: Optional[Tournament], downstream: List[Match],
                    winner_team_id, score1, score2, can_edit: bool, maps_data=None) -> None:
    """
    Raise the first applicable rejection for a proposed result.

    Checks, in order: match/tournament exist and the tournament is active,
    the requester may edit, nothing downstream is decided, the winner is one
    of the two slots, and the result actually differs from what is stored.

    Args:
        match: The match being reported, or None if it could not be found.
        tournament: The tournament the match belongs to.
        downstream: Matches one step ahead of this one (winner link, loser
            link, dynamically routed loser match, bracket reset).
        winner_team_id: Proposed winner, or None to record scores only.
        score1, score2: Proposed scores.
        can_edit: Whether the requester has edit rights on the tournament.
        maps_data: Proposed per-map results; compared only when supplied.
    """
    if match is None:
        raise NotFoundError('Match not found')
    if tournament is None or match.tournament_id != tournament.id:
        raise NotFoundError(f'Tournament for match {match.id} not found',
                            {'match_id': match.id})
    if not tournament.is_active:
        raise InvalidStateError(
            f'Tournament {tournament.id} is not in progress (status: {tournament.status})',
            {'tournament_id': tournament.id, 'status': tournament.status})

    if not can_edit:
        raise UnauthorizedError('Only the tournament owner or an admin can update match results')

    for later in downstream:
        if later is not None and later.winner_team_id is not None:
            raise DownstreamLockedError(
                f'Cannot change result of match {match.id}: match {later.id} has already been played',
                {'match_id': match.id, 'downstream_match_id': later.id})

    if winner_team_id is not None and winner_team_id not in match.teams:
        raise InvalidWinnerError(
            f'Winner {winner_team_id} is not a participant of match {match.id}',
            {'match_id': match.id, 'winner_team_id': winner_team_id})

    same_result = (
        match.winner_team_id == winner_team_id
        and match.score1 == score1
        and match.score2 == score2
    )
    if same_result and maps_data is not None and list(maps_data) != list(match.maps_data):
        same_result = False
    if same_result:
        raise NoChangeError(f'Result of match {match.id} has not changed', {'match_id': match.id})
