"""
Command-line administration for the Club Hub database.

    clubhub-admin seed-admin --password ...
    clubhub-admin create-indexes
    clubhub-admin backfill-coordinators
"""
import argparse
import asyncio
import logging
import sys
from typing import Optional, Tuple

from config.config import ADMIN_NAME, ADMIN_EMAIL, ADMIN_PASSWORD, ADMIN_ROLL_NO, BCRYPT_ROUNDS, LOG_LEVEL, LOG_DIR, MIN_PASSWORD_LENGTH
from database.DB import Database, USERS, CLUBS
from helpers.LoggingConfig import setup_logging
from helpers.PasswordHashStrategy import PasswordHashStrategy
from models.models import Role, User

logger = logging.getLogger("clubhub.cli")


async def seed_admin(db: Database, name: str, email: str, password: str, roll_no: str) -> Tuple[bool, dict]:
    """
    Create the admin account unless a user with that email or roll number exists.
    Returns (created, user document).
    """
    email = email.strip().lower()
    existing = await db.find_one(USERS, {"$or": [{"email": email}, {"rollNo": roll_no}]}, {"passwordHash": 0})
    if existing:
        logger.info("User %s already exists with role %s, nothing to do", existing["rollNo"], existing["role"])
        return False, existing

    if not password or len(password) < MIN_PASSWORD_LENGTH:
        raise ValueError(f"Admin password must be at least {MIN_PASSWORD_LENGTH} characters")

    admin = User(
        name=name,
        email=email,
        rollNo=roll_no,
        passwordHash=PasswordHashStrategy(rounds=BCRYPT_ROUNDS).hash(password),
        role=Role.ADMIN,
    )
    result = await db.add(USERS, admin.to_document())
    created = result["data"]
    created.pop("passwordHash", None)
    logger.info("Admin %s created", roll_no)
    return True, created


async def backfill_coordinators(db: Database) -> int:
    """
    Copy club.coordinators into users.coordinatingClub where it is unset, so
    the user field can be the only lookup path. Returns the number of users updated.
    """
    updated = 0
    clubs = await db.find_many(CLUBS, {}, {"name": 1, "coordinators": 1})
    for club in clubs["data"]:
        for user_id in club.get("coordinators") or []:
            result = await db.update(USERS, {
                "_id": user_id,
                "role": Role.COORDINATOR.value,
                "coordinatingClub": None
            }, {"$set": {"coordinatingClub": club["_id"]}})
            if result["modified_count"]:
                logger.info("Linked coordinator %s to club %s", user_id, club["name"])
                updated += result["modified_count"]
    return updated


async def _run(args, db: Optional[Database] = None) -> bool:
    own_db = db is None
    if own_db:
        db = Database()
    db.connect()
    try:
        if args.command == "seed-admin":
            created, user = await seed_admin(db, args.name, args.email, args.password or "", args.roll_no)
            print(f"{'Created' if created else 'Found existing'} user {user['rollNo']} ({user['role']})")
        elif args.command == "create-indexes":
            await db.ensure_indexes()
            print("Indexes created")
        elif args.command == "backfill-coordinators":
            count = await backfill_coordinators(db)
            print(f"Updated {count} coordinator(s)")
        return True
    except ValueError as e:
        logger.error(str(e))
        return False
    finally:
        if own_db:
            db.close()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="clubhub-admin",
        description="Club Hub database administration",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    subparsers = parser.add_subparsers(dest="command", help="Command to run")

    seed_parser = subparsers.add_parser("seed-admin", help="Create the admin account")
    seed_parser.add_argument("--name", default=ADMIN_NAME, help="Admin display name")
    seed_parser.add_argument("--email", default=ADMIN_EMAIL, help="Admin email")
    seed_parser.add_argument("--roll-no", default=ADMIN_ROLL_NO, help="Admin roll number, used to log in")
    seed_parser.add_argument("--password", default=ADMIN_PASSWORD, help="Admin password (defaults to ADMIN_PASSWORD)")

    subparsers.add_parser("create-indexes", help="Create unique and lookup indexes")
    subparsers.add_parser("backfill-coordinators", help="Set users.coordinatingClub from club coordinator lists")

    return parser


def main(argv=None):
    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        sys.exit(1)

    setup_logging(LOG_LEVEL, LOG_DIR)
    success = asyncio.run(_run(args))
    sys.exit(0 if success else 1)


if __name__ == "__main__":
    main()
