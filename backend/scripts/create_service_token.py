#!/usr/bin/env python3
"""
Issue a bearer token for an operator or a calling service.

The token is signed with SECRET_KEY, so run this with the same environment
as the API.

Usage:
    python scripts/create_service_token.py --subject svc:screening-portal --days 90
"""

import argparse
from datetime import timedelta

from wotc_sync.core.security import create_access_token


def main(argv=None) -> str:
    parser = argparse.ArgumentParser(description="Issue a WOTC sync API bearer token")
    parser.add_argument(
        "--subject", "-s",
        required=True,
        help="Who the token identifies, e.g. svc:screening-portal or ops@example.com",
    )
    parser.add_argument(
        "--days", "-d",
        type=int,
        default=None,
        help="Validity in days (default: ACCESS_TOKEN_EXPIRE_MINUTES)",
    )
    args = parser.parse_args(argv)

    if args.days is not None and args.days <= 0:
        parser.error("--days must be positive")

    expires = timedelta(days=args.days) if args.days else None
    token = create_access_token(args.subject, expires_delta=expires)
    print(token)
    return token


if __name__ == "__main__":
    main()
