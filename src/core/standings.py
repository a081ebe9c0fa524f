"""
Final standings for elimination brackets.

Placement:
- Single elimination: champion and runner-up from the final, 3rd/4th from a
  played third-place match, everyone else grouped by the round they were
  knocked out in (later round = better place, ties share a place).
- Double elimination: champion and runner-up from the Grand Final (or the
  reset, if it was played), 3rd is the loser of the loser-bracket final, then
  the same grouping as above.
- Any other format: ordered by wins, losses, elimination round.
"""
from typing import List, Dict, Optional, Any

from core.models import (
    Match,
    Participant,
    Tournament,
    SINGLE_ELIMINATION,
    DOUBLE_ELIMINATION,
    WINNER_BRACKET,
    LOSER_BRACKET,
    GRAND_FINAL,
    GRAND_FINAL_RESET,
    PLACEMENT,
)


def _new_record(participant: Participant) -> Dict[str, Any]:
    return {
        'participant': participant.to_dict(),
        'place': None,
        'placement_range': None,
        'wins': 0,
        'losses': 0,
        'elimination_round': None,
        'is_winner': False,
        'matches_played': 0,
    }


def tally_results(participants: List[Participant], matches: List[Match]) -> Dict[Any, Dict[str, Any]]:
    """Count wins/losses and the highest round each participant lost in."""
    records = {p.id: _new_record(p) for p in participants}
    for match in matches:
        if not match.is_completed:
            continue
        winner = records.get(match.winner_team_id)
        if winner:
            winner['wins'] += 1
            winner['matches_played'] += 1
        loser = records.get(match.loser_team_id)
        if loser:
            loser['losses'] += 1
            loser['matches_played'] += 1
            if loser['elimination_round'] is None:
                loser['elimination_round'] = match.round
            else:
                loser['elimination_round'] = max(loser['elimination_round'], match.round)
    return records


def _last_match(matches: List[Match], bracket_types) -> Optional[Match]:
    """Highest-round match of the given bracket types, third-place matches excluded."""
    candidates = [m for m in matches
                  if m.bracket_type in bracket_types and not m.is_third_place_match]
    if not candidates:
        return None
    return max(candidates, key=lambda m: (m.round, m.match_number))


def _place(records: Dict, team_id, place: int) -> bool:
    record = records.get(team_id)
    if record is None or record['place'] is not None:
        return False
    record['place'] = place
    record['placement_range'] = str(place)
    return True


def _place_final(records: Dict, final: Optional[Match]) -> bool:
    if final is None or not final.is_completed:
        return False
    if _place(records, final.winner_team_id, 1):
        records[final.winner_team_id]['is_winner'] = True
    _place(records, final.loser_team_id, 2)
    return True


def _third_place_match(matches: List[Match]) -> Optional[Match]:
    """Completed third-place match; a plain placement match only when none is flagged."""
    played = [m for m in matches if m.is_completed]
    for match in played:
        if match.is_third_place_match:
            return match
    placement = [m for m in played if m.bracket_type == PLACEMENT]
    if len(placement) == 1:
        return placement[0]
    return None


def _find_grand_final(matches: List[Match]) -> Optional[Match]:
    for reset in matches:
        # a seated but unplayed reset means the title is still open
        if reset.bracket_type == GRAND_FINAL_RESET and reset.team1_id is not None and not reset.is_completed:
            return None
    for bracket_type in (GRAND_FINAL_RESET, GRAND_FINAL):
        played = [m for m in matches if m.bracket_type == bracket_type and m.is_completed]
        if played:
            return max(played, key=lambda m: m.match_number)
    return None


def _still_playing(matches: List[Match]) -> set:
    """Participants seated in a match that has not been decided yet."""
    playing = set()
    for match in matches:
        if not match.is_completed:
            playing.update(team_id for team_id in match.teams if team_id is not None)
    return playing


def _remaining_group_key(record: Dict[str, Any], playing: set, lives: int):
    # still alive first, then later eliminations, never-played last
    if record['participant']['id'] in playing:
        return (1, 0)
    if record['elimination_round'] is None:
        return (1, 0) if record['matches_played'] else (-1, 0)
    if record['losses'] < lives:
        return (1, 0)
    return (0, record['elimination_round'])


def _place_remaining_by_round(records: Dict, matches: List[Match], lives: int = 1) -> None:
    """
    Group everyone not yet placed; lives is the number of losses that
    knocks a participant out (2 in double elimination).
    """
    remaining = [r for r in records.values() if r['place'] is None]
    current_place = max((r['place'] for r in records.values() if r['place'] is not None), default=0) + 1
    playing = _still_playing(matches)

    groups = {}
    for record in remaining:
        groups.setdefault(_remaining_group_key(record, playing, lives), []).append(record)

    for key in sorted(groups, reverse=True):
        group = groups[key]
        if len(group) > 1:
            placement_range = f"{current_place}-{current_place + len(group) - 1}"
        else:
            placement_range = str(current_place)
        for record in group:
            record['place'] = current_place
            record['placement_range'] = placement_range
        current_place += len(group)


def _place_by_record(records: Dict) -> None:
    def sort_key(record):
        elimination = record['elimination_round']
        return (
            -record['wins'],
            record['losses'],
            # None = never knocked out, ranks ahead of any elimination round
            0 if elimination is None else 1,
            -(elimination or 0),
        )

    ordered = sorted(records.values(), key=sort_key)
    for place, record in enumerate(ordered, start=1):
        record['place'] = place
        record['placement_range'] = str(place)
    if ordered and ordered[0]['wins'] > 0:
        ordered[0]['is_winner'] = True


def compute_standings(tournament: Tournament, participants: List[Participant],
                      matches: List[Match]) -> List[Dict[str, Any]]:
    """
    Rank every participant of a tournament.

    Read-only: matches and participants are not modified.

    Returns:
        List of dicts sorted by place, each with keys: participant, place,
        placement_range, wins, losses, elimination_round, is_winner.
    """
    records = tally_results(participants, matches)

    # 3rd/4th are only fixed once the final is decided, so places stay contiguous
    if tournament.format == SINGLE_ELIMINATION:
        final = _last_match(matches, (WINNER_BRACKET,))
        if _place_final(records, final):
            match = _third_place_match(matches)
            if match is not None:
                _place(records, match.winner_team_id, 3)
                _place(records, match.loser_team_id, 4)
        _place_remaining_by_round(records, matches)
    elif tournament.format == DOUBLE_ELIMINATION:
        if _place_final(records, _find_grand_final(matches)):
            loser_final = _last_match(matches, (LOSER_BRACKET,))
            if loser_final is not None and loser_final.is_completed:
                _place(records, loser_final.loser_team_id, 3)
        _place_remaining_by_round(records, matches, lives=2)
    else:
        _place_by_record(records)

    standings = []
    for record in sorted(records.values(), key=lambda r: r['place']):
        record.pop('matches_played')
        standings.append(record)
    return standings
