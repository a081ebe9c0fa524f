#!/usr/bin/env python3
"""
Submit a match result to a running server.

Usage:
    python scripts/submit_result.py --match 17 --winner 3 --score 2 1
    python scripts/submit_result.py --match 17 --winner 3 --score 2 1 --url http://localhost:5000 --session <cookie>

Exit codes:
    0: Result accepted
    1: Result rejected by the server
    2: Server unreachable
"""
import argparse
import os
import sys

import requests

BASE_URL = os.environ.get('BRACKET_SERVER_URL', 'http://localhost:5000')


def submit_result(base_url: str, match_id: int, winner_team_id, score1, score2,
                  session_cookie=None, timeout: float = 10):
    """POST a result; returns the requests.Response."""
    url = f"{base_url.rstrip('/')}/api/matches/{match_id}/result"
    cookies = {'session': session_cookie} if session_cookie else None
    payload = {'winner_team_id': winner_team_id, 'score1': score1, 'score2': score2}
    return requests.post(url, json=payload, cookies=cookies, timeout=timeout)


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description='Submit a match result')
    parser.add_argument('--match', type=int, required=True, help='Match id')
    parser.add_argument('--winner', type=int, default=None, help='Winning participant id')
    parser.add_argument('--score', type=int, nargs=2, metavar=('SCORE1', 'SCORE2'), default=(None, None))
    parser.add_argument('--url', default=BASE_URL, help=f'Server URL (default: {BASE_URL})')
    parser.add_argument('--session', default=os.environ.get('BRACKET_SESSION'),
                        help='Session cookie of a logged-in organiser')
    args = parser.parse_args(argv)

    try:
        response = submit_result(args.url, args.match, args.winner, args.score[0], args.score[1],
                                 session_cookie=args.session)
    except requests.RequestException as e:
        print(f"Error: Could not reach {args.url}: {e}", file=sys.stderr)
        return 2

    if response.status_code != 200:
        try:
            body = response.json()
        except ValueError:
            body = {'error': response.text}
        print(f"Rejected ({response.status_code}, {body.get('kind', 'unknown')}): {body.get('error')}",
              file=sys.stderr)
        return 1

    print(f"Match {args.match} updated")
    return 0


if __name__ == '__main__':
    sys.exit(main())
