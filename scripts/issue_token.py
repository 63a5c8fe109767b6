#!/usr/bin/env python3
"""Script to issue a dashboard access token for a principal.

Usage:
    python scripts/issue_token.py <principal_id> [--admin]

The token is signed with SECRET_KEY from the .env file and goes into the
Authorization: Bearer header of API calls.
"""

import argparse
import sys
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from rental_sync.auth import create_access_token
from rental_sync.config import get_settings


def main():
    """Entry point."""
    parser = argparse.ArgumentParser(description="Issue a dashboard access token")
    parser.add_argument("principal_id", help="User identifier the token acts as")
    parser.add_argument(
        "--admin",
        action="store_true",
        help="Allow configuring application-level API credentials",
    )
    args = parser.parse_args()

    settings = get_settings()
    token = create_access_token(args.principal_id, is_admin=args.admin, secret_key=settings.secret_key)

    print(f"Principal: {args.principal_id}{' (admin)' if args.admin else ''}")
    print(f"Token:     {token}")
    print("\nExample:")
    print(f"  curl -H 'Authorization: Bearer {token}' {settings.public_base_url.rstrip('/')}/api/api-config")


if __name__ == "__main__":
    main()
