#!/usr/bin/env python3
"""Create a user account from the command line.

Usage:
    python scripts/create_user.py --email a@example.com --password secret --full-name "Ada L"

    # Lower the concurrent session cap for an existing account:
    python scripts/create_user.py --email a@example.com --max-connections 2

Environment Variables:
    DATABASE_URL: PostgreSQL connection string (optional, uses memory store if not set)
    SHARED_FS_ROOT: Directory for the memory store state file and generated JWT secret
"""
from __future__ import annotations

import argparse
import os
import sys
from typing import Optional


def create_user(
    email: str,
    password: Optional[str],
    full_name: Optional[str],
    max_connections: Optional[int] = None,
    dry_run: bool = False,
) -> dict:
    """Create the account, or update ``max_connections`` when it already exists.

    Returns:
        dict with user_id, email and status ('created', 'updated', 'exists' or 'dry_run')
    """
    # Import here so the environment is settled before config loads
    from sessionauth.api.schemas import _validate_email
    from sessionauth.service.runtime import get_runtime

    email = _validate_email(email)
    runtime = get_runtime()
    existing = runtime.store.get_user_by_email(email)

    if existing:
        if max_connections is None:
            print(f"User {email} already exists (id: {existing.id})")
            return {"user_id": existing.id, "email": existing.email, "status": "exists"}
        if dry_run:
            print(f"[DRY RUN] Would set max_connections={max_connections} for {email}")
            return {"user_id": existing.id, "email": existing.email, "status": "dry_run"}
        runtime.store.set_max_connections(existing.id, max_connections)
        print(f"Set max_connections={max_connections} for {email}")
        return {"user_id": existing.id, "email": existing.email, "status": "updated"}

    if not password or not full_name:
        raise ValueError("--password and --full-name are required for new users")

    if dry_run:
        print(f"[DRY RUN] Would create user: {email}")
        return {"user_id": None, "email": email, "status": "dry_run"}

    user = runtime.store.create_user(
        email,
        full_name,
        max_connections=max_connections or runtime.settings.default_max_connections,
    )
    runtime.auth.save_password(user.id, password)
    print(f"Created user: {user.email} (id: {user.id})")
    return {"user_id": user.id, "email": user.email, "status": "created"}


def main(argv: Optional[list[str]] = None) -> int:
    parser = argparse.ArgumentParser(
        description="Create a sessionauth user",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument("--email", required=True, help="Account email")
    parser.add_argument(
        "--password",
        default=os.environ.get("SESSIONAUTH_PASSWORD"),
        help="Account password (or set SESSIONAUTH_PASSWORD env var)",
    )
    parser.add_argument("--full-name", help="Display name, at least 2 characters")
    parser.add_argument(
        "--max-connections",
        type=int,
        help="Concurrent session cap for the account",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Show what would be done without making changes",
    )
    args = parser.parse_args(argv)

    if args.password is not None and len(args.password) < 5:
        print("Error: password must be at least 5 characters")
        return 1
    if args.full_name is not None and len(args.full_name.strip()) < 2:
        print("Error: full name must be at least 2 characters")
        return 1
    if args.max_connections is not None and args.max_connections < 1:
        print("Error: --max-connections must be at least 1")
        return 1

    if not os.environ.get("DATABASE_URL"):
        os.environ.setdefault("USE_MEMORY_STORE", "true")
        print("Note: Using in-memory store (set DATABASE_URL for persistence)")

    try:
        create_user(
            args.email,
            args.password,
            args.full_name.strip() if args.full_name else None,
            args.max_connections,
            args.dry_run,
        )
    except Exception as e:
        print(f"Error: {e}")
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
