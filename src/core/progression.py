"""
Result progression for single and double elimination brackets.

Applying a result records it on the match, advances the winner along
next_match_id and routes the loser:
- single elimination: the loser is out, unless loser_next_match_id points
  at a third-place match;
- double elimination, winner bracket: the loser drops into the loser
  bracket, into an existing open slot of the target round or a match created
  on demand;
- double elimination, loser bracket: the loser is out.

When the loser-bracket champion wins the Grand Final, both finalists are
seated in the Grand Final Reset.

All functions work on a BracketSession, so the caller's transaction decides
whether anything is written.
"""
import logging
from typing import List, Optional

from core.errors import BracketCorruptionError, DownstreamLockedError
from core.models import (
    Match,
    TournamentSnapshot,
    DOUBLE_ELIMINATION,
    WINNER_BRACKET,
    LOSER_BRACKET,
    GRAND_FINAL,
    GRAND_FINAL_RESET,
    PRELIMINARY_ROUND,
    MATCH_COMPLETED,
    MATCH_PENDING,
)
from core.validation import validate_result

logger = logging.getLogger(__name__)


def calculate_winner_rounds(matches: List[Match]) -> int:
    """Number of winner-bracket rounds; the winner final is the highest round."""
    rounds = [m.round for m in matches if m.bracket_type == WINNER_BRACKET and m.round != PRELIMINARY_ROUND]
    if not rounds:
        return 0
    return max(rounds) + 1


def calculate_loser_rounds(matches: List[Match], total_winner_rounds: int) -> int:
    """
    Number of loser-bracket rounds.

    The generator lays out one more loser round than winner rounds; a
    pre-generated loser bracket that goes further wins.
    """
    rounds = [m.round for m in matches if m.bracket_type == LOSER_BRACKET and not m.is_third_place_match]
    return max(rounds + [total_winner_rounds + 1])


def get_target_loser_round(winner_round: int, total_winner_rounds: int, total_loser_rounds: int) -> int:
    """Loser-bracket round that receives the loser of a winner-bracket match."""
    if winner_round == PRELIMINARY_ROUND:
        return 1
    if winner_round == total_winner_rounds - 1:
        return total_loser_rounds
    return winner_round + 1


def _place_team(target: Match, team_id, role: str, source: Match) -> Optional[str]:
    """
    Put team_id into the first open slot of target.

    Returns the slot filled, or None if the team is already there.
    """
    if target.has_team(team_id):
        return None
    if target.winner_team_id is not None:
        raise DownstreamLockedError(
            f'Cannot place team {team_id} into match {target.id}: it has already been played',
            {'match_id': source.id, 'downstream_match_id': target.id})
    slot = target.open_slot()
    if slot is None:
        raise BracketCorruptionError(
            f'Both slots of match {target.id} are taken ({target.team1_id}, {target.team2_id}); '
            f'cannot place {role} {team_id} from match {source.id}',
            {'match_id': source.id, 'target_match_id': target.id,
             'team1_id': target.team1_id, 'team2_id': target.team2_id, 'team_id': team_id})
    setattr(target, slot, team_id)
    return slot


def _linked_match(session, match: Match, match_id, link: str) -> Match:
    target = session.get_match(match_id)
    if target is None:
        raise BracketCorruptionError(
            f'Match {match.id} links to missing match {match_id} via {link}',
            {'match_id': match.id, link: match_id})
    return target


def find_routed_loser_match(session, match: Match, loser_id) -> Optional[Match]:
    """Loser-bracket match a winner-bracket loser was routed into without an explicit link."""
    if loser_id is None or match.bracket_type != WINNER_BRACKET or match.loser_next_match_id is not None:
        return None
    if session.tournament.format != DOUBLE_ELIMINATION:
        return None
    all_matches = session.matches()
    total_winner_rounds = calculate_winner_rounds(all_matches)
    target_round = get_target_loser_round(
        match.round, total_winner_rounds, calculate_loser_rounds(all_matches, total_winner_rounds))
    for candidate in all_matches:
        if (candidate.bracket_type == LOSER_BRACKET and candidate.round == target_round
                and not candidate.is_third_place_match and candidate.has_team(loser_id)):
            return candidate
    return None


def find_bracket_reset(session) -> Optional[Match]:
    for m in session.matches():
        if m.bracket_type == GRAND_FINAL_RESET:
            return m
    return None


def get_downstream_matches(session, match: Match) -> List[Match]:
    """Matches one step ahead of match whose result would be invalidated by a change."""
    downstream = []
    for link in ('next_match_id', 'loser_next_match_id'):
        linked_id = getattr(match, link)
        if linked_id is not None:
            downstream.append(_linked_match(session, match, linked_id, link))
    routed = find_routed_loser_match(session, match, match.loser_team_id)
    if routed is not None:
        downstream.append(routed)
    if match.bracket_type == GRAND_FINAL:
        reset = find_bracket_reset(session)
        if reset is not None:
            downstream.append(reset)
    return downstream


def advance_winner(session, match: Match, winner_id) -> Optional[Match]:
    """Move winner_id into the next match; returns the next match if one exists."""
    if match.next_match_id is None or winner_id is None:
        return None
    next_match = _linked_match(session, match, match.next_match_id, 'next_match_id')
    if match.bracket_type == GRAND_FINAL and next_match.bracket_type == GRAND_FINAL_RESET:
        # seated by seat_bracket_reset, and only when it is needed
        return next_match
    slot = _place_team(next_match, winner_id, 'winner', match)
    if slot:
        session.save_match(next_match)
        logger.info("Advanced winner %s from match %s into %s of match %s",
                    winner_id, match.id, slot, next_match.id)
    return next_match


def find_or_create_loser_match(session, target_round: int, loser_id) -> Match:
    """
    Return a loser-bracket match of target_round with an open slot that does
    not already hold loser_id, creating one when none is left.
    """
    all_matches = session.matches()
    for candidate in all_matches:
        if (candidate.bracket_type == LOSER_BRACKET
                and candidate.round == target_round
                and not candidate.is_third_place_match
                and candidate.winner_team_id is None
                and candidate.open_slot() is not None
                and not candidate.has_team(loser_id)):
            return candidate

    round_numbers = [m.match_number for m in all_matches
                     if m.bracket_type == LOSER_BRACKET and m.round == target_round]
    match_number = max(round_numbers, default=0) + 1
    if any(m.match_number == match_number for m in all_matches):
        match_number = max(m.match_number for m in all_matches) + 1

    created = session.add_match(Match(
        None,
        session.tournament.id,
        target_round,
        match_number,
        bracket_type=LOSER_BRACKET,
    ))
    logger.info("Created loser-bracket match %s (round %s, #%s) in tournament %s",
                created.id, target_round, match_number, session.tournament.id)
    return created


def route_loser(session, match: Match, loser_id) -> Optional[Match]:
    """
    Send the loser of match to wherever it plays next.

    Returns the match the loser was placed into, or None if the loser is
    eliminated (or the other side was a BYE).
    """
    if loser_id is None:
        return None

    if match.loser_next_match_id is not None:
        target = _linked_match(session, match, match.loser_next_match_id, 'loser_next_match_id')
    elif session.tournament.format == DOUBLE_ELIMINATION and match.bracket_type == WINNER_BRACKET:
        all_matches = session.matches()
        total_winner_rounds = calculate_winner_rounds(all_matches)
        total_loser_rounds = calculate_loser_rounds(all_matches, total_winner_rounds)
        target_round = get_target_loser_round(match.round, total_winner_rounds, total_loser_rounds)
        target = find_or_create_loser_match(session, target_round, loser_id)
    else:
        logger.info("Team %s eliminated in match %s", loser_id, match.id)
        return None

    slot = _place_team(target, loser_id, 'loser', match)
    if slot:
        session.save_match(target)
        logger.info("Routed loser %s from match %s into %s of match %s",
                    loser_id, match.id, slot, target.id)
    return target


def _loser_bracket_champion(session, grand_final: Match):
    for m in session.matches():
        if (m.bracket_type == LOSER_BRACKET and m.next_match_id == grand_final.id
                and m.winner_team_id is not None):
            return m.winner_team_id
    return grand_final.team2_id


def seat_bracket_reset(session, grand_final: Match) -> Optional[Match]:
    """Seat both finalists in the reset match if the loser-bracket champion won."""
    reset = find_bracket_reset(session)
    if reset is None or grand_final.winner_team_id is None:
        return None
    losers_champion = _loser_bracket_champion(session, grand_final)
    if grand_final.winner_team_id != losers_champion:
        return None
    winners_champion = grand_final.loser_team_id
    if reset.teams == (winners_champion, losers_champion):
        return reset
    if reset.team1_id is not None or reset.team2_id is not None:
        raise BracketCorruptionError(
            f'Bracket reset {reset.id} is already seated with ({reset.team1_id}, {reset.team2_id})',
            {'match_id': grand_final.id, 'target_match_id': reset.id})
    reset.team1_id = winners_champion
    reset.team2_id = losers_champion
    session.save_match(reset)
    logger.info("Bracket reset %s: %s vs %s", reset.id, winners_champion, losers_champion)
    return reset


def _remove_team(session, target: Optional[Match], team_id) -> None:
    if target is None:
        return
    slot = target.slot_of(team_id)
    if slot is not None:
        setattr(target, slot, None)
        session.save_match(target)


def retract_result(session, match: Match, previous_winner, previous_loser) -> None:
    """Undo the routing of a result that is being corrected or cleared."""
    if match.next_match_id is not None:
        _remove_team(session, _linked_match(session, match, match.next_match_id, 'next_match_id'),
                     previous_winner)
    if match.loser_next_match_id is not None:
        _remove_team(session, _linked_match(session, match, match.loser_next_match_id, 'loser_next_match_id'),
                     previous_loser)
    else:
        _remove_team(session, find_routed_loser_match(session, match, previous_loser), previous_loser)
    if match.bracket_type == GRAND_FINAL:
        reset = find_bracket_reset(session)
        if reset is not None and reset.winner_team_id is None:
            for team_id in (previous_winner, previous_loser):
                _remove_team(session, reset, team_id)
    logger.info("Retracted result of match %s (winner was %s)", match.id, previous_winner)


def apply_result(session, match_id, winner_team_id, score1, score2, maps_data=None,
                 can_edit: bool = False, requested_by: Optional[str] = None) -> TournamentSnapshot:
    """
    Validate and apply a match result inside the caller's transaction.

    Args:
        session: Open BracketSession for the match's tournament.
        match_id: Match being reported.
        winner_team_id: Winning participant, or None to clear the winner.
        score1, score2: Scores for team1 / team2.
        maps_data: Per-map results; stored as given.
        can_edit: Whether the requester may edit this tournament.
        requested_by: Requester name, recorded in the event log.

    Returns:
        Snapshot of the tournament after the result is applied.
    """
    match = session.get_match(match_id)
    downstream = get_downstream_matches(session, match) if match is not None else []
    validate_result(match, session.tournament, downstream, winner_team_id, score1, score2,
                    can_edit, maps_data)

    previous_winner = match.winner_team_id
    previous_loser = match.loser_team_id

    if previous_winner is not None and previous_winner != winner_team_id:
        retract_result(session, match, previous_winner, previous_loser)

    match.winner_team_id = winner_team_id
    match.score1 = score1
    match.score2 = score2
    if maps_data is not None:
        match.maps_data = list(maps_data)
    match.status = MATCH_COMPLETED if winner_team_id is not None else MATCH_PENDING
    session.save_match(match)

    if winner_team_id is not None and winner_team_id != previous_winner:
        advance_winner(session, match, winner_team_id)
        route_loser(session, match, match.loser_team_id)
        if match.bracket_type == GRAND_FINAL:
            seat_bracket_reset(session, match)

    if winner_team_id is not None:
        event_type = 'match_completed'
    elif previous_winner is not None:
        event_type = 'match_cleared'
    else:
        event_type = 'match_updated'
    session.log_event(
        event_type,
        match_id=match.id,
        winner_team_id=winner_team_id,
        score=f"{score1}:{score2}",
        maps_count=len(match.maps_data),
        requested_by=requested_by,
    )
    logger.info("Match %s result applied: winner=%s score=%s:%s", match.id, winner_team_id, score1, score2)
    return session.snapshot()
