#!/usr/bin/env python3
"""Create a user, or widen an existing user's scope, directly in the store.

The HTTP admin routes need a caller that already holds every scope; this
script creates that first account.

Usage:
    # Using environment variables:
    ADMIN_EMAIL=admin@example.com ADMIN_PASSWORD=SecurePassword123! python scripts/create_user.py

    # Or with command line args:
    python scripts/create_user.py --email admin@example.com --password SecurePassword123! \
        --first-name Ada --last-name Admin --scope read:a,write:a

Environment Variables:
    ADMIN_EMAIL: Email for the user
    ADMIN_PASSWORD: Password for the user
    POSTGRESQL_URL: PostgreSQL connection string (required)
    RUN_MIGRATIONS: Set to true to apply the schema first
"""
from __future__ import annotations

import argparse
import asyncio
import os
import sys
from pathlib import Path
from typing import List, Optional

ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT))

MIN_PASSWORD_LENGTH = 8


async def create_user(
    email: str,
    password: str,
    first_name: str,
    last_name: str,
    scope: Optional[List[str]],
    dry_run: bool = False,
) -> dict:
    """Create the user, or replace the scope of an existing one.

    Returns:
        dict with user_id, email, scope and status ('created', 'updated' or 'dry_run')
    """
    # imported late so the environment is settled before settings load
    from tokengate.service.runtime import get_runtime

    runtime = get_runtime()
    granted = scope if scope is not None else runtime.settings.user_scope_default()
    existing = runtime.store.get_user_by_email(email)

    if existing:
        if dry_run:
            print(f"[DRY RUN] Would set scope of {email} to {','.join(granted)}")
            return {"user_id": existing.id, "email": email, "scope": granted, "status": "dry_run"}
        user = await runtime.auth.update_user(existing.id, scope=granted, password=password)
        return {"user_id": user.id, "email": user.email, "scope": list(user.scope), "status": "updated"}

    if dry_run:
        print(f"[DRY RUN] Would create user {email} with scope {','.join(granted)}")
        return {"user_id": None, "email": email, "scope": granted, "status": "dry_run"}

    user = await runtime.auth.create_user(
        first_name=first_name,
        last_name=last_name,
        email=email,
        password=password,
        scope=granted,
    )
    return {"user_id": user.id, "email": user.email, "scope": list(user.scope), "status": "created"}


def main():
    parser = argparse.ArgumentParser(
        description="Create a tokengate user",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument("--email", default=os.environ.get("ADMIN_EMAIL"))
    parser.add_argument("--password", default=os.environ.get("ADMIN_PASSWORD"))
    parser.add_argument("--first-name", default="Admin")
    parser.add_argument("--last-name", default="User")
    parser.add_argument(
        "--scope",
        default=None,
        help="Comma-separated scope; defaults to the configured default user scope",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Show what would be done without making changes",
    )

    args = parser.parse_args()

    if not args.email:
        print("Error: --email or ADMIN_EMAIL environment variable required")
        sys.exit(1)

    if not args.password or len(args.password) < MIN_PASSWORD_LENGTH:
        print(f"Error: password of at least {MIN_PASSWORD_LENGTH} characters required")
        sys.exit(1)

    if not os.environ.get("POSTGRESQL_URL"):
        print("Error: POSTGRESQL_URL must point at the database to write to")
        sys.exit(1)

    scope = None
    if args.scope is not None:
        scope = [part.strip() for part in args.scope.split(",") if part.strip()]

    try:
        result = asyncio.run(
            create_user(
                args.email.strip().lower(),
                args.password,
                args.first_name,
                args.last_name,
                scope,
                args.dry_run,
            )
        )
    except Exception as e:
        print(f"Error: {e}")
        sys.exit(1)

    if result["status"] == "created":
        print(f"Created user {result['email']} (id: {result['user_id']})")
    elif result["status"] == "updated":
        print(f"Updated user {result['email']} (id: {result['user_id']})")
    if result["status"] != "dry_run":
        print(f"  Scope: {','.join(result['scope'])}")


if __name__ == "__main__":
    main()
