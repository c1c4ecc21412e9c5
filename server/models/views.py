"""
Public response shapes. Secrets (password hashes, club keys) never leave here.
"""

PRIVATE_USER_FIELDS = ("passwordHash",)
PRIVATE_CLUB_FIELDS = ("clubKey",)
CLUB_SUMMARY_FIELDS = ("_id", "name", "logoUrl", "category", "description")


def public_user(user: dict) -> dict:
    if not user:
        return user
    return {k: v for k, v in user.items() if k not in PRIVATE_USER_FIELDS}


def public_club(club: dict) -> dict:
    if not club:
        return club
    return {k: v for k, v in club.items() if k not in PRIVATE_CLUB_FIELDS}


def club_summary(club: dict) -> dict:
    return {k: club.get(k) for k in CLUB_SUMMARY_FIELDS}


def user_summary(user: dict) -> dict:
    return {"_id": user["_id"], "name": user.get("name"), "rollNo": user.get("rollNo"), "email": user.get("email")}
