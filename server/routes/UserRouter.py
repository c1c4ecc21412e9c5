import logging
from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import JSONResponse
from typing import List, Optional
from pydantic import BaseModel, field_validator
from pymongo.errors import DuplicateKeyError

from config.config import BCRYPT_ROUNDS, MIN_PASSWORD_LENGTH
from database.DB import get_db, USERS, CLUBS
from helpers.PasswordHashStrategy import PasswordHashStrategy
from models.models import Caller, Role, User, utcnow
from models.views import public_user
from .dependencies import require_admin
from .errors import BadRequest, NotFound, Conflict, ServerError

logger = logging.getLogger(__name__)

router = APIRouter()

password_hasher = PasswordHashStrategy(rounds=BCRYPT_ROUNDS)


# Pydantic models
class UserCreate(BaseModel):
    name: str
    email: str
    rollNo: str
    password: str
    role: Role = Role.STUDENT
    year: Optional[int] = None
    branch: Optional[str] = None
    coordinatingClub: Optional[str] = None

    @field_validator("name", "rollNo")
    @classmethod
    def not_blank(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("must not be empty")
        return value

    @field_validator("email")
    @classmethod
    def normalise_email(cls, value: str) -> str:
        return value.strip().lower()


class UserUpdate(BaseModel):
    """Admin edit. Role is fixed at creation and deliberately absent here."""
    name: Optional[str] = None
    email: Optional[str] = None
    rollNo: Optional[str] = None
    year: Optional[int] = None
    branch: Optional[str] = None
    password: Optional[str] = None


async def with_club_names(db, users: List[dict]) -> List[dict]:
    club_ids = list({u["coordinatingClub"] for u in users if u.get("coordinatingClub")})
    clubs = (await db.find_many(CLUBS, {"_id": {"$in": club_ids}}, {"name": 1}))["data"] if club_ids else []
    clubs_by_id = {c["_id"]: c for c in clubs}
    for user in users:
        user["coordinatingClubDetails"] = clubs_by_id.get(user.get("coordinatingClub"))
    return users


async def get_user_or_404(db, user_id: str) -> dict:
    user = await db.find_one(USERS, {"_id": user_id}, {"passwordHash": 0})
    if not user:
        raise NotFound("User not found")
    return user


@router.get('')
async def list_users(admin_user: Caller = Depends(require_admin), db = Depends(get_db)):
    result = await db.find_many(USERS, {}, {"passwordHash": 0}, sort=[("createdAt", -1)])
    return JSONResponse(content=await with_club_names(db, result["data"]))


@router.get('/coordinators')
async def list_coordinators(admin_user: Caller = Depends(require_admin), db = Depends(get_db)):
    result = await db.find_many(USERS, {"role": Role.COORDINATOR.value}, {"passwordHash": 0}, sort=[("name", 1)])
    return JSONResponse(content=await with_club_names(db, result["data"]))


@router.post('')
async def create_user(payload: UserCreate, admin_user: Caller = Depends(require_admin), db = Depends(get_db)):
    """Create a user of any role (Admin only)"""
    try:
        if len(payload.password) < MIN_PASSWORD_LENGTH:
            raise BadRequest(f"Password must be at least {MIN_PASSWORD_LENGTH} characters")
        if await db.find_one(USERS, {"email": payload.email}):
            raise Conflict("User with this email already exists")
        if await db.find_one(USERS, {"rollNo": payload.rollNo}):
            raise Conflict("Roll number already exists")

        coordinating_club = None
        if payload.role == Role.COORDINATOR and payload.coordinatingClub:
            if not await db.find_one(CLUBS, {"_id": payload.coordinatingClub}):
                raise NotFound("Club not found")
            coordinating_club = payload.coordinatingClub

        user = User(
            name=payload.name,
            email=payload.email,
            rollNo=payload.rollNo,
            passwordHash=password_hasher.hash(payload.password),
            role=payload.role,
            year=payload.year,
            branch=payload.branch,
            coordinatingClub=coordinating_club,
        )

        async with db.transaction() as tx:
            result = await db.add(USERS, user.to_document(), session=tx.session)
            tx.compensate(db.delete, USERS, {"_id": user.id})
            if coordinating_club:
                await db.update(CLUBS, {"_id": coordinating_club}, {"$addToSet": {"coordinators": user.id}}, session=tx.session)

        logger.info("Admin %s created %s %s", admin_user.id, user.role, user.rollNo)
        return JSONResponse(status_code=201, content=public_user(result["data"]))

    except DuplicateKeyError:
        raise Conflict("Email or roll number already exists")
    except HTTPException:
        raise
    except Exception as e:
        raise ServerError(f"Error creating user: {str(e)}")


@router.get('/{user_id}')
async def get_user(user_id: str, admin_user: Caller = Depends(require_admin), db = Depends(get_db)):
    user = await get_user_or_404(db, user_id)
    return JSONResponse(content=(await with_club_names(db, [user]))[0])


@router.put('/{user_id}')
async def update_user(user_id: str, payload: UserUpdate, admin_user: Caller = Depends(require_admin), db = Depends(get_db)):
    try:
        existing = await get_user_or_404(db, user_id)
        update_data = payload.model_dump(exclude_none=True)

        if "email" in update_data:
            update_data["email"] = update_data["email"].strip().lower()
            if update_data["email"] != existing["email"] and await db.find_one(USERS, {"email": update_data["email"], "_id": {"$ne": user_id}}):
                raise Conflict("User with this email already exists")
        if "rollNo" in update_data:
            update_data["rollNo"] = update_data["rollNo"].strip()
            if update_data["rollNo"] != existing["rollNo"] and await db.find_one(USERS, {"rollNo": update_data["rollNo"], "_id": {"$ne": user_id}}):
                raise Conflict("Roll number already exists")

        password = update_data.pop("password", None)
        if password and password.strip():
            if len(password) < MIN_PASSWORD_LENGTH:
                raise BadRequest(f"Password must be at least {MIN_PASSWORD_LENGTH} characters")
            update_data["passwordHash"] = password_hasher.hash(password)

        if not update_data:
            raise BadRequest("No fields to update")

        update_data["updatedAt"] = utcnow()
        await db.update(USERS, {"_id": user_id}, {"$set": update_data})
        updated = await get_user_or_404(db, user_id)
        return JSONResponse(content=(await with_club_names(db, [updated]))[0])

    except DuplicateKeyError:
        raise Conflict("Email or roll number already exists")
    except HTTPException:
        raise
    except Exception as e:
        raise ServerError(f"Error updating user: {str(e)}")


@router.delete('/{user_id}')
async def delete_user(user_id: str, admin_user: Caller = Depends(require_admin), db = Depends(get_db)):
    try:
        if user_id == admin_user.id:
            raise BadRequest("Cannot delete your own account")

        snapshot = await db.get_collection(USERS).find_one({"_id": user_id})
        if not snapshot:
            raise NotFound("User not found")

        async with db.transaction() as tx:
            await db.delete(USERS, {"_id": user_id}, session=tx.session)
            tx.compensate(db.add, USERS, snapshot)
            result = await db.update_many(CLUBS, {"coordinators": user_id}, {"$pull": {"coordinators": user_id}}, session=tx.session)
            if result["modified_count"] and snapshot.get("coordinatingClub"):
                tx.compensate(db.update, CLUBS, {"_id": snapshot["coordinatingClub"]}, {"$addToSet": {"coordinators": user_id}})

        logger.info("Admin %s deleted user %s", admin_user.id, snapshot.get("rollNo"))
        return JSONResponse(content={"message": "User deleted successfully"})

    except HTTPException:
        raise
    except Exception as e:
        raise ServerError(f"Error deleting user: {str(e)}")
