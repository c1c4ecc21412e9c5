import logging
from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import JSONResponse
from pydantic import BaseModel, field_validator
from pymongo.errors import DuplicateKeyError
from typing import Optional

from config.config import BCRYPT_ROUNDS, MIN_PASSWORD_LENGTH
from database.DB import get_db, USERS, CLUBS
from helpers.AccessToken import create_access_token
from helpers.PasswordHashStrategy import PasswordHashStrategy
from models.models import Caller, Role, User, utcnow
from models.views import public_user, club_summary
from .dependencies import get_current_user, require_admin
from .errors import BadRequest, Unauthorized, NotFound, Conflict, ServerError

logger = logging.getLogger(__name__)

router = APIRouter()

password_hasher = PasswordHashStrategy(rounds=BCRYPT_ROUNDS)

INVALID_CREDENTIALS = "Invalid roll number or password"


# Pydantic models
class RegisterRequest(BaseModel):
    name: str
    email: str
    password: str
    rollNo: str

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
        value = value.strip().lower()
        if "@" not in value:
            raise ValueError("must be a valid email address")
        return value


class CoordinatorCreate(RegisterRequest):
    clubId: str


class LoginRequest(BaseModel):
    rollNo: str
    password: str


class ChangePasswordRequest(BaseModel):
    currentPassword: str
    newPassword: str


class ProfileUpdate(BaseModel):
    name: Optional[str] = None
    profilePhoto: Optional[str] = None
    year: Optional[int] = None
    branch: Optional[str] = None


def check_password_strength(password: str):
    if len(password) < MIN_PASSWORD_LENGTH:
        raise BadRequest(f"Password must be at least {MIN_PASSWORD_LENGTH} characters")


async def ensure_identity_available(db, email: str, roll_no: str):
    if await db.find_one(USERS, {"email": email}):
        raise Conflict("User with this email already exists")
    if await db.find_one(USERS, {"rollNo": roll_no}):
        raise Conflict("Roll number already exists")


async def resolve_profile(db, user: dict) -> dict:
    """Public view of a user with joined and coordinated clubs expanded"""
    profile = public_user(user)
    club_ids = user.get("clubs") or []
    if club_ids:
        result = await db.find_many(CLUBS, {"_id": {"$in": club_ids}}, {"clubKey": 0})
        profile["clubs"] = [club_summary(c) for c in result["data"]]
    else:
        profile["clubs"] = []
    if user.get("coordinatingClub"):
        club = await db.find_one(CLUBS, {"_id": user["coordinatingClub"]}, {"clubKey": 0})
        profile["coordinatingClubDetails"] = club_summary(club) if club else None
    return profile


@router.post('/register')
async def register(payload: RegisterRequest, db = Depends(get_db)):
    """Self registration always creates a student"""
    try:
        check_password_strength(payload.password)
        await ensure_identity_available(db, payload.email, payload.rollNo)

        user = User(
            name=payload.name,
            email=payload.email,
            rollNo=payload.rollNo,
            passwordHash=password_hasher.hash(payload.password),
            role=Role.STUDENT,
        )
        result = await db.add(USERS, user.to_document())
        if result["status"] != 200:
            raise ServerError("Failed to register user")

        created = result["data"]
        logger.info("Registered student %s", created["rollNo"])
        return JSONResponse(status_code=201, content={
            "message": "Student registered successfully",
            "token": create_access_token(created["_id"], created["role"]),
            "user": await resolve_profile(db, created)
        })

    except DuplicateKeyError:
        raise Conflict("Email or roll number already exists")
    except HTTPException:
        raise
    except Exception as e:
        raise ServerError(f"Error during registration: {str(e)}")


@router.post('/login')
async def login(payload: LoginRequest, db = Depends(get_db)):
    try:
        user = await db.find_one(USERS, {"rollNo": payload.rollNo.strip()})
        # same message for unknown users and bad passwords
        if not user or not password_hasher.verify(payload.password, user.get("passwordHash", "")):
            logger.info("Failed login for roll number %s", payload.rollNo)
            raise Unauthorized(INVALID_CREDENTIALS)

        return JSONResponse(content={
            "message": "Login successful",
            "token": create_access_token(user["_id"], user["role"]),
            "user": await resolve_profile(db, user)
        })

    except HTTPException:
        raise
    except Exception as e:
        raise ServerError(f"Error during login: {str(e)}")


@router.get('/profile')
async def profile(user: Caller = Depends(get_current_user), db = Depends(get_db)):
    stored = await db.find_one(USERS, {"_id": user.id})
    if not stored:
        raise NotFound("User not found")
    return JSONResponse(content=await resolve_profile(db, stored))


@router.put('/change-password')
async def change_password(payload: ChangePasswordRequest, user: Caller = Depends(get_current_user), db = Depends(get_db)):
    try:
        stored = await db.find_one(USERS, {"_id": user.id})
        if not stored:
            raise NotFound("User not found")
        if not password_hasher.verify(payload.currentPassword, stored.get("passwordHash", "")):
            raise BadRequest("Current password is incorrect")
        check_password_strength(payload.newPassword)

        await db.update(USERS, {"_id": user.id}, {"$set": {
            "passwordHash": password_hasher.hash(payload.newPassword),
            "updatedAt": utcnow()
        }})
        logger.info("Password changed for user %s", user.id)
        return JSONResponse(content={"message": "Password updated successfully"})

    except HTTPException:
        raise
    except Exception as e:
        raise ServerError(f"Error changing password: {str(e)}")


@router.put('/update-profile')
async def update_profile(payload: ProfileUpdate, user: Caller = Depends(get_current_user), db = Depends(get_db)):
    update_data = payload.model_dump(exclude_none=True)
    if "name" in update_data:
        update_data["name"] = update_data["name"].strip()
        if not update_data["name"]:
            raise BadRequest("Name must not be empty")
    if not update_data:
        raise BadRequest("No fields to update")

    update_data["updatedAt"] = utcnow()
    await db.update(USERS, {"_id": user.id}, {"$set": update_data})
    stored = await db.find_one(USERS, {"_id": user.id})
    return JSONResponse(content={"message": "Profile updated successfully", "user": await resolve_profile(db, stored)})


@router.post('/create-coordinator')
async def create_coordinator(payload: CoordinatorCreate, admin_user: Caller = Depends(require_admin), db = Depends(get_db)):
    """Create a coordinator and attach them to an existing club (Admin only)"""
    try:
        check_password_strength(payload.password)
        await ensure_identity_available(db, payload.email, payload.rollNo)

        club = await db.find_one(CLUBS, {"_id": payload.clubId})
        if not club:
            raise NotFound("Club not found")

        coordinator = User(
            name=payload.name,
            email=payload.email,
            rollNo=payload.rollNo,
            passwordHash=password_hasher.hash(payload.password),
            role=Role.COORDINATOR,
            coordinatingClub=club["_id"],
        )

        async with db.transaction() as tx:
            result = await db.add(USERS, coordinator.to_document(), session=tx.session)
            tx.compensate(db.delete, USERS, {"_id": coordinator.id})
            await db.update(CLUBS, {"_id": club["_id"]}, {
                "$addToSet": {"coordinators": coordinator.id},
                "$set": {"updatedAt": utcnow()}
            }, session=tx.session)

        logger.info("Admin %s created coordinator %s for club %s", admin_user.id, coordinator.rollNo, club["name"])
        return JSONResponse(status_code=201, content={
            "message": "Coordinator created successfully",
            "user": public_user(result["data"])
        })

    except DuplicateKeyError:
        raise Conflict("Email or roll number already exists")
    except HTTPException:
        raise
    except Exception as e:
        raise ServerError(f"Error creating coordinator: {str(e)}")
