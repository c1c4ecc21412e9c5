"""
Admin command-line helpers
"""
import asyncio

import pytest

from cli import build_parser, seed_admin, backfill_coordinators
from database.DB import USERS, CLUBS
from models.models import Club, User, Role


def test_seed_admin_is_idempotent(api, db):
    created, user = asyncio.run(seed_admin(db, "Root", "Root@College.edu", "rootpass", "ROOT01"))
    assert created
    assert user["role"] == "admin"
    assert user["email"] == "root@college.edu"
    assert "passwordHash" not in user

    created_again, existing = asyncio.run(seed_admin(db, "Root", "root@college.edu", "other", "ROOT01"))
    assert not created_again
    assert existing["_id"] == user["_id"]

    assert api.login("ROOT01", "rootpass")


def test_seed_admin_requires_password(db):
    with pytest.raises(ValueError):
        asyncio.run(seed_admin(db, "Root", "root@college.edu", "", "ROOT01"))


def test_backfill_coordinators(db):
    club = Club(name="Drama", description="Stage", clubKey="")
    coordinator = User(name="Legacy", rollNo="LEG01", email="legacy@college.edu", passwordHash="x", role=Role.COORDINATOR)
    club.coordinators.append(coordinator.id)

    asyncio.run(db.add(CLUBS, club.to_document()))
    asyncio.run(db.add(USERS, coordinator.to_document()))

    assert asyncio.run(backfill_coordinators(db)) == 1
    stored = asyncio.run(db.find_one(USERS, {"_id": coordinator.id}))
    assert stored["coordinatingClub"] == club.id

    assert asyncio.run(backfill_coordinators(db)) == 0


def test_parser_commands():
    parser = build_parser()
    args = parser.parse_args(["seed-admin", "--roll-no", "ROOT01", "--password", "rootpass"])
    assert args.command == "seed-admin"
    assert args.roll_no == "ROOT01"
    assert parser.parse_args(["backfill-coordinators"]).command == "backfill-coordinators"
