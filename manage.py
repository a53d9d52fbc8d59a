"""
Operator commands run against the configured database.

    python manage.py verify-user someone@example.com
    python manage.py make-admin someone@example.com
"""

import argparse
import logging
import sys

from accounts import find_user_by_email
from database import db, utcnow
from security import ROLE_ADMIN

logger = logging.getLogger("refocus.manage")


def verify_user(email: str) -> bool:
    user = find_user_by_email(email)
    if not user:
        logger.error("No user with email %s", email)
        return False
    db["user"].update_one(
        {"_id": user["_id"]},
        {"$set": {"isEmailVerified": True, "verificationToken": None, "verificationTokenExpires": None,
                  "updatedAt": utcnow()}},
    )
    logger.info("Verified %s (%s)", user["email"], user["_id"])
    return True


def make_admin(email: str) -> bool:
    user = find_user_by_email(email)
    if not user:
        logger.error("No user with email %s", email)
        return False
    db["user"].update_one({"_id": user["_id"]}, {"$set": {"role": ROLE_ADMIN, "updatedAt": utcnow()}})
    logger.info("Promoted %s (%s) to admin", user["email"], user["_id"])
    return True


COMMANDS = {
    "verify-user": verify_user,
    "make-admin": make_admin,
}


def main(argv=None) -> int:
    logging.basicConfig(level=logging.INFO, format="%(levelname)s %(message)s")
    parser = argparse.ArgumentParser(prog="manage.py", description="ReFocus operator commands")
    parser.add_argument("command", choices=sorted(COMMANDS))
    parser.add_argument("email")
    args = parser.parse_args(argv)
    if db is None:
        logger.error("Database not available. Set MONGO_URI.")
        return 1
    return 0 if COMMANDS[args.command](args.email) else 1


if __name__ == "__main__":
    sys.exit(main())
