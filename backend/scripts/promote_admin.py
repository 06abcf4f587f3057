"""
Promote a user to admin by email.

There is no self-service path to the admin role; use this once to create the
first admin, then manage roles from the users screen.

Usage (from backend/):
  python -m scripts.promote_admin admin@example.com
  python -m scripts.promote_admin --email admin@example.com
"""

import asyncio
import argparse
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent))

from database import get_db_context
from models import UserRole, utc_now
import logging

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


async def promote_admin(email: str) -> bool:
    """Returns True if the user is an admin afterwards, False if not found."""
    email_lower = email.strip().lower()
    if not email_lower:
        logger.error("Email is required")
        return False

    async with get_db_context() as db:
        user = await db.users.find_one(
            {"email": email_lower},
            {"_id": 0, "user_id": 1, "role": 1}
        )
        if not user:
            logger.warning("No user found with email: %s", email_lower)
            return False
        if user.get("role") == UserRole.ADMIN.value:
            logger.info("User %s is already an admin; no change.", email_lower)
            return True

        await db.users.update_one(
            {"user_id": user["user_id"]},
            {"$set": {"role": UserRole.ADMIN.value, "updated_at": utc_now()}}
        )
        logger.info("Promoted to admin: %s (user_id=%s)", email_lower, user["user_id"])
        return True


def main():
    parser = argparse.ArgumentParser(description="Promote a user to admin by email")
    parser.add_argument("email", nargs="?", help="User email")
    parser.add_argument("--email", dest="email_flag", help="User email (alternative)")
    args = parser.parse_args()
    email = args.email or args.email_flag
    if not email:
        parser.error("Provide email as positional argument or --email")
        return 1
    ok = asyncio.run(promote_admin(email))
    return 0 if ok else 1


if __name__ == "__main__":
    sys.exit(main())
