#!/usr/bin/env python3
"""
Tournament Standings Report

Prints the placements of a tournament straight from a data directory,
without going through the web server.

Usage:
    python scripts/standings.py --tournament 42
    python scripts/standings.py --tournament 42 --data-dir /home/data

Exit codes:
    0: Success
    1: Tournament not found
    2: Data directory unreadable
"""
import argparse
import os
import sys

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'src'))

from core.errors import NotFoundError, StorageFailureError
from core.service import BracketEngine
from core.store import BracketStore


def format_standings(standings: list) -> str:
    """Render standings rows as a fixed-width table."""
    lines = [f"{'Place':<8}{'Participant':<30}{'W':>4}{'L':>4}  Out in round"]
    for row in standings:
        participant = row['participant']
        name = participant.get('name') or str(participant['id'])
        eliminated = '-' if row['elimination_round'] is None else str(row['elimination_round'])
        lines.append(f"{row['placement_range']:<8}{name[:29]:<30}{row['wins']:>4}{row['losses']:>4}  {eliminated}")
    return '\n'.join(lines)


def _tournament_key(value: str):
    return int(value) if value.isdigit() else value


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description='Print tournament standings')
    parser.add_argument('--tournament', required=True, help='Tournament id')
    parser.add_argument('--data-dir', default=os.environ.get('TOURNAMENT_DATA_DIR', 'data'),
                        help='Data directory (default: $TOURNAMENT_DATA_DIR or ./data)')
    args = parser.parse_args(argv)

    if not os.path.isdir(args.data_dir):
        print(f"Error: Data directory not found: {args.data_dir}", file=sys.stderr)
        return 2

    engine = BracketEngine(BracketStore(args.data_dir))
    try:
        standings = engine.get_standings(_tournament_key(args.tournament))
    except NotFoundError as e:
        print(f"Error: {e.message}", file=sys.stderr)
        return 1
    except StorageFailureError as e:
        print(f"Error: {e.message}", file=sys.stderr)
        return 2

    print(format_standings(standings))
    return 0


if __name__ == '__main__':
    sys.exit(main())
