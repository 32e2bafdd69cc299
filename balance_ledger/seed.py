#!/usr/bin/env python3
"""Seed script for the balance ledger

Creates the demo users. Balances start empty; the first deposit creates a
user's balance row.

Run with: python -m balance_ledger.seed [--database-url URL]
"""

import argparse
import sys
from typing import List, Optional, Sequence, Tuple

from .config import get_config
from .models import User
from .storage import create_storage
from .users import StorageUserDirectory
from .logging_config import get_logger, setup_logging


DEMO_USERS: List[Tuple[str, str]] = [
    ("Иван Иванов", "ivan@example.com"),
    ("Петр Петров", "petr@example.com"),
    ("Мария Сидорова", "maria@example.com"),
]

logger = get_logger("balance_ledger.seed")


def seed_users(directory: StorageUserDirectory,
               users: Sequence[Tuple[str, str]] = DEMO_USERS) -> List[User]:
    """
    Create users that do not exist yet

    Args:
        directory: User directory to insert into
        users: (name, email) pairs

    Returns:
        Users created by this call; already present e-mails are skipped
    """
    created = []
    for name, email in users:
        if directory.get_user_by_email(email) is not None:
            logger.info(f"User {email} already exists, skipping")
            continue
        created.append(directory.create_user(name, email))
    return created


def main(argv: Optional[Sequence[str]] = None) -> int:
    """Main seeding function"""
    config = get_config()

    parser = argparse.ArgumentParser(description="Create the demo users")
    parser.add_argument(
        "--database-url",
        default=config.database_url,
        help=f"Ledger store URL (default: {config.database_url})"
    )
    args = parser.parse_args(argv)

    setup_logging(level=config.log_level, log_format=config.log_format)

    storage = create_storage(
        args.database_url,
        lock_timeout=config.lock_timeout_seconds,
        busy_timeout=config.sqlite_busy_timeout_seconds
    )
    try:
        created = seed_users(StorageUserDirectory(storage))
    finally:
        storage.close()

    for user in created:
        print(f"Created user {user.id}: {user.name} <{user.email}>")
    print(f"{len(created)} users created")
    return 0


if __name__ == "__main__":
    sys.exit(main())
