"""
Manage the privileged email allow-list (users exempt from plan limits).

Usage (from backend/):
  python -m scripts.manage_privileged_emails add friend@example.com
  python -m scripts.manage_privileged_emails remove friend@example.com
  python -m scripts.manage_privileged_emails list
"""

import asyncio
import argparse
import sys
from datetime import datetime, timezone
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent))

from database import get_db_context
import logging

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


async def add_email(db, email: str) -> bool:
    """Add email (lowercased). Returns False when it was already present."""
    email_lower = email.strip().lower()
    if not email_lower:
        logger.error("Email is required")
        return False

    result = await db.privileged_emails.update_one(
        {"email": email_lower},
        {"$setOnInsert": {"email": email_lower, "created_at": datetime.now(timezone.utc)}},
        upsert=True
    )
    if result.upserted_id is None:
        logger.info("%s is already privileged; no change.", email_lower)
        return False
    logger.info("Added privileged email: %s", email_lower)
    return True


async def remove_email(db, email: str) -> bool:
    email_lower = email.strip().lower()
    result = await db.privileged_emails.delete_one({"email": email_lower})
    if not result.deleted_count:
        logger.warning("No privileged entry found for: %s", email_lower)
        return False
    logger.info("Removed privileged email: %s", email_lower)
    return True


async def list_emails(db) -> list:
    entries = await db.privileged_emails.find({}, {"_id": 0, "email": 1}).sort("email", 1).to_list(1000)
    return [e["email"] for e in entries]


async def run(action: str, email: str = None) -> bool:
    async with get_db_context() as db:
        if action == "add":
            return await add_email(db, email)
        if action == "remove":
            return await remove_email(db, email)
        for entry in await list_emails(db):
            print(entry)
        return True


def main():
    parser = argparse.ArgumentParser(description="Manage privileged (limit-exempt) emails")
    parser.add_argument("action", choices=["add", "remove", "list"])
    parser.add_argument("email", nargs="?", help="Email address (add/remove)")
    args = parser.parse_args()
    if args.action != "list" and not args.email:
        parser.error("Provide an email for add/remove")
        return 1
    ok = asyncio.run(run(args.action, args.email))
    return 0 if ok else 1


if __name__ == "__main__":
    sys.exit(main())
