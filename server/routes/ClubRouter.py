import logging
from fastapi import APIRouter, Depends, HTTPException, UploadFile, File
from fastapi.responses import JSONResponse
from typing import List, Optional
from pydantic import BaseModel, field_validator
from pymongo.errors import DuplicateKeyError

from config.config import SECRET_KEY
from database.DB import get_db, USERS, CLUBS, LEAVE_REQUESTS, MEMBERSHIP_REQUESTS
from helpers.ClubKeyEncryptionStrategy import ClubKeyEncryptionStrategy
from helpers.ClubKeyGenerator import new_id, generate_club_key, pending_request_key
from helpers.ImageUpload import save_image, UploadRejected
from models.models import Caller, Role, Club, TeamHead, LeaveRequest, MembershipRequest, RequestStatus, utcnow
from models.views import public_club, public_user, user_summary, club_summary
from .dependencies import require_admin, require_student, require_admin_or_coordinator, can_manage_club
from .errors import BadRequest, Forbidden, NotFound, Conflict, ServerError

logger = logging.getLogger(__name__)

router = APIRouter()

# Helper instances
_club_key_strategy = ClubKeyEncryptionStrategy(SECRET_KEY)

REQUEST_ACTIONS = ("approve", "reject")


# Pydantic models
class ClubCreate(BaseModel):
    name: str
    description: str
    category: str = "General"
    logoUrl: str = ""
    clubKey: Optional[str] = None
    enrollmentOpen: bool = False
    teamHeads: List[TeamHead] = []
    eventsConducted: List[str] = []
    upcomingEvents: List[str] = []
    instagram: str = ""

    @field_validator("name", "description")
    @classmethod
    def not_blank(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("must not be empty")
        return value


class ClubUpdate(BaseModel):
    name: Optional[str] = None
    description: Optional[str] = None
    category: Optional[str] = None
    logoUrl: Optional[str] = None
    teamHeads: Optional[List[TeamHead]] = None
    eventsConducted: Optional[List[str]] = None
    upcomingEvents: Optional[List[str]] = None
    instagram: Optional[str] = None


class JoinRequest(BaseModel):
    clubKey: str = ""


class EnrollRequest(JoinRequest):
    year: Optional[int] = None
    branch: Optional[str] = None


class LeaveRequestCreate(BaseModel):
    reason: str = ""


class MembershipRequestCreate(BaseModel):
    message: str = ""


class RequestAction(BaseModel):
    action: str


class ClubKeyUpdate(BaseModel):
    clubKey: str


async def get_club_or_404(db, club_id: str) -> dict:
    club = await db.find_one(CLUBS, {"_id": club_id})
    if not club:
        raise NotFound("Club not found")
    return club


def ensure_manages(user: Caller, club_id: str, message: str = "You can only manage your own club"):
    if not can_manage_club(user, club_id):
        raise Forbidden(message)


async def add_membership(db, user: Caller, club_id: str, club_key: str, profile_updates: Optional[dict] = None) -> dict:
    """
    not a member -> member, gated on the enrollment flag and the club key.
    The push is conditional on the club not being in the set yet, so two
    concurrent joins cannot both append.
    """
    club = await get_club_or_404(db, club_id)
    if not club.get("enrollmentOpen"):
        raise BadRequest("Enrollment is closed")
    if not _club_key_strategy.matches(club.get("clubKey", ""), (club_key or "").strip()):
        raise BadRequest("Invalid club key")
    if user.is_member_of(club_id):
        raise Conflict("You are already enrolled in this club")

    update = {"$push": {"clubs": club_id}, "$set": {"updatedAt": utcnow()}}
    if profile_updates:
        update["$set"].update(profile_updates)

    result = await db.update(USERS, {"_id": user.id, "clubs": {"$ne": club_id}}, update)
    if result["matched_count"] == 0:
        raise Conflict("You are already enrolled in this club")

    logger.info("Student %s joined club %s", user.id, club["name"])
    return club


async def expand_requests(db, requests: List[dict]) -> List[dict]:
    """Attach student and club summaries to request documents for listing"""
    student_ids = list({r["student"] for r in requests})
    club_ids = list({r["club"] for r in requests})
    students = (await db.find_many(USERS, {"_id": {"$in": student_ids}}, {"passwordHash": 0}))["data"] if student_ids else []
    clubs = (await db.find_many(CLUBS, {"_id": {"$in": club_ids}}, {"clubKey": 0}))["data"] if club_ids else []
    students_by_id = {s["_id"]: s for s in students}
    clubs_by_id = {c["_id"]: c for c in clubs}

    expanded = []
    for r in requests:
        item = dict(r)
        student = students_by_id.get(r["student"])
        club = clubs_by_id.get(r["club"])
        item["studentDetails"] = {**user_summary(student), "year": student.get("year"), "branch": student.get("branch")} if student else None
        item["clubDetails"] = {"_id": club["_id"], "name": club["name"]} if club else None
        expanded.append(item)
    return expanded


async def list_pending_requests(db, collection: str, user: Caller) -> List[dict]:
    query = {"status": RequestStatus.PENDING.value}
    if user.role == Role.COORDINATOR:
        if not user.coordinatingClub:
            raise BadRequest("No club assigned to this coordinator")
        query["club"] = user.coordinatingClub
    result = await db.find_many(collection, query, sort=[("createdAt", 1)])
    return await expand_requests(db, result["data"])


async def resolve_club_request(db, collection: str, request_id: str, action: str, user: Caller, on_approve) -> dict:
    """
    pending -> approved | rejected for leave and membership requests.
    The membership change and the status stamp are one unit of work.
    """
    if action not in REQUEST_ACTIONS:
        raise BadRequest('Invalid action. Use "approve" or "reject"')

    request = await db.find_one(collection, {"_id": request_id})
    if not request:
        raise NotFound("Request not found")
    ensure_manages(user, request["club"], "Not authorized to process requests for this club")
    if request["status"] != RequestStatus.PENDING.value:
        raise BadRequest("Request has already been processed")

    approve = action == "approve"
    status = RequestStatus.APPROVED if approve else RequestStatus.REJECTED
    now = utcnow()

    async with db.transaction() as tx:
        if approve:
            await on_approve(db, tx, request)
        result = await db.update(collection, {"_id": request_id, "status": RequestStatus.PENDING.value}, {
            "$set": {"status": status.value, "processedAt": now, "updatedAt": now, "processedBy": user.id},
            "$unset": {"pendingKey": ""}
        }, session=tx.session)
        if result["matched_count"] == 0:
            raise BadRequest("Request has already been processed")

    logger.info("%s %s request %s for club %s", user.id, status.value, collection, request["club"])
    return await db.find_one(collection, {"_id": request_id})


async def _remove_member(db, tx, request: dict):
    result = await db.update(USERS, {"_id": request["student"], "clubs": request["club"]},
                             {"$pull": {"clubs": request["club"]}}, session=tx.session)
    if result["modified_count"]:
        tx.compensate(db.update, USERS, {"_id": request["student"]}, {"$addToSet": {"clubs": request["club"]}})


async def _add_member(db, tx, request: dict):
    result = await db.update(USERS, {"_id": request["student"], "clubs": {"$ne": request["club"]}},
                             {"$push": {"clubs": request["club"]}}, session=tx.session)
    if result["modified_count"]:
        tx.compensate(db.update, USERS, {"_id": request["student"]}, {"$pull": {"clubs": request["club"]}})


# ---- static paths first so they are not captured by /{club_id} ----

@router.get('/leave-requests/pending')
async def pending_leave_requests(user: Caller = Depends(require_admin_or_coordinator), db = Depends(get_db)):
    """Coordinators see their club's queue, admins see every club"""
    return JSONResponse(content=await list_pending_requests(db, LEAVE_REQUESTS, user))


@router.put('/leave-requests/{request_id}')
async def process_leave_request(request_id: str, payload: RequestAction, user: Caller = Depends(require_admin_or_coordinator), db = Depends(get_db)):
    try:
        request = await resolve_club_request(db, LEAVE_REQUESTS, request_id, payload.action, user, _remove_member)
        return JSONResponse(content={"message": f"Leave request {request['status']}", "request": request})
    except HTTPException:
        raise
    except Exception as e:
        raise ServerError(f"Error processing leave request: {str(e)}")


@router.get('/requests/pending')
async def pending_membership_requests(user: Caller = Depends(require_admin_or_coordinator), db = Depends(get_db)):
    return JSONResponse(content=await list_pending_requests(db, MEMBERSHIP_REQUESTS, user))


@router.put('/requests/{request_id}')
async def process_membership_request(request_id: str, payload: RequestAction, user: Caller = Depends(require_admin_or_coordinator), db = Depends(get_db)):
    try:
        request = await resolve_club_request(db, MEMBERSHIP_REQUESTS, request_id, payload.action, user, _add_member)
        return JSONResponse(content={"message": f"Membership request {request['status']}", "request": request})
    except HTTPException:
        raise
    except Exception as e:
        raise ServerError(f"Error processing membership request: {str(e)}")


@router.get('/admin/club-keys')
async def club_keys(admin_user: Caller = Depends(require_admin), db = Depends(get_db)):
    """Plain club keys for the admin console"""
    result = await db.find_many(CLUBS, {}, {"name": 1, "clubKey": 1, "enrollmentOpen": 1}, sort=[("name", 1)])
    keys = [{
        "_id": c["_id"],
        "name": c["name"],
        "enrollmentOpen": c.get("enrollmentOpen", False),
        "clubKey": _club_key_strategy.decrypt(c.get("clubKey", ""))
    } for c in result["data"]]
    return JSONResponse(content=keys)


@router.put('/admin/update-club-key/{club_id}')
async def update_club_key(club_id: str, payload: ClubKeyUpdate, admin_user: Caller = Depends(require_admin), db = Depends(get_db)):
    new_key = payload.clubKey.strip()
    if not new_key:
        raise BadRequest("Club key must not be empty")
    await get_club_or_404(db, club_id)
    await db.update(CLUBS, {"_id": club_id}, {"$set": {
        "clubKey": _club_key_strategy.encrypt(new_key),
        "updatedAt": utcnow()
    }})
    logger.info("Admin %s rotated the key of club %s", admin_user.id, club_id)
    return JSONResponse(content={"message": "Club key updated successfully"})


# ---- clubs ----

@router.get('')
async def list_clubs(db = Depends(get_db)):
    result = await db.find_many(CLUBS, {}, {"clubKey": 0}, sort=[("name", 1)])
    return JSONResponse(content=result["data"])


@router.post('')
async def create_club(payload: ClubCreate, admin_user: Caller = Depends(require_admin), db = Depends(get_db)):
    """Create a new club (Admin only). A key is generated when none is given."""
    try:
        if await db.find_one(CLUBS, {"name": payload.name}):
            raise Conflict("Club with this name already exists")

        club_id = new_id()
        plain_key = (payload.clubKey or "").strip() or generate_club_key(club_id, payload.name)
        club = Club(
            id=club_id,
            clubKey=_club_key_strategy.encrypt(plain_key),
            **payload.model_dump(exclude={"clubKey"})
        )

        result = await db.add(CLUBS, club.to_document())
        if result["status"] != 200:
            raise ServerError("Failed to create club")

        logger.info("Admin %s created club %s", admin_user.id, payload.name)
        created = public_club(result["data"])
        created["clubKey"] = plain_key
        return JSONResponse(status_code=201, content={"message": "Club created successfully", "club": created})

    except DuplicateKeyError:
        raise Conflict("Club with this name already exists")
    except HTTPException:
        raise
    except Exception as e:
        raise ServerError(f"Error creating club: {str(e)}")


@router.get('/{club_id}')
async def get_club(club_id: str, db = Depends(get_db)):
    club = public_club(await get_club_or_404(db, club_id))
    coordinators = await db.find_many(USERS, {"role": Role.COORDINATOR.value, "coordinatingClub": club_id}, {"passwordHash": 0})
    club["coordinatorDetails"] = [user_summary(u) for u in coordinators["data"]]
    club["memberCount"] = await db.count(USERS, {"role": Role.STUDENT.value, "clubs": club_id})
    return JSONResponse(content=club)


@router.put('/{club_id}')
async def update_club(club_id: str, payload: ClubUpdate, user: Caller = Depends(require_admin_or_coordinator), db = Depends(get_db)):
    try:
        club = await get_club_or_404(db, club_id)
        ensure_manages(user, club_id)

        update_data = payload.model_dump(exclude_none=True)
        if "name" in update_data:
            update_data["name"] = update_data["name"].strip()
            if not update_data["name"]:
                raise BadRequest("Club name must not be empty")
            if update_data["name"] != club["name"] and await db.find_one(CLUBS, {"name": update_data["name"]}):
                raise Conflict("Club with this name already exists")
        if not update_data:
            raise BadRequest("No fields to update")

        update_data["updatedAt"] = utcnow()
        await db.update(CLUBS, {"_id": club_id}, {"$set": update_data})
        updated = await db.find_one(CLUBS, {"_id": club_id}, {"clubKey": 0})
        return JSONResponse(content={"message": "Club updated successfully", "club": updated})

    except DuplicateKeyError:
        raise Conflict("Club with this name already exists")
    except HTTPException:
        raise
    except Exception as e:
        raise ServerError(f"Error updating club: {str(e)}")


@router.delete('/{club_id}')
async def delete_club(club_id: str, admin_user: Caller = Depends(require_admin), db = Depends(get_db)):
    """
    Delete a club (Admin only). Members lose the club, coordinators lose the
    assignment and pending requests for it are rejected, all in one unit of work.
    """
    try:
        snapshot = await db.get_collection(CLUBS).find_one({"_id": club_id})
        if not snapshot:
            raise NotFound("Club not found")

        member_ids = [u["_id"] for u in (await db.find_many(USERS, {"clubs": club_id}, {"_id": 1}))["data"]]
        coordinator_ids = [u["_id"] for u in (await db.find_many(USERS, {"coordinatingClub": club_id}, {"_id": 1}))["data"]]
        now = utcnow()

        async with db.transaction() as tx:
            await db.delete(CLUBS, {"_id": club_id}, session=tx.session)
            tx.compensate(db.add, CLUBS, snapshot)

            if member_ids:
                await db.update_many(USERS, {"_id": {"$in": member_ids}}, {"$pull": {"clubs": club_id}}, session=tx.session)
                tx.compensate(db.update_many, USERS, {"_id": {"$in": member_ids}}, {"$addToSet": {"clubs": club_id}})

            if coordinator_ids:
                await db.update_many(USERS, {"_id": {"$in": coordinator_ids}}, {"$set": {"coordinatingClub": None}}, session=tx.session)
                tx.compensate(db.update_many, USERS, {"_id": {"$in": coordinator_ids}}, {"$set": {"coordinatingClub": club_id}})

            for collection in (LEAVE_REQUESTS, MEMBERSHIP_REQUESTS):
                await db.update_many(collection, {"club": club_id, "status": RequestStatus.PENDING.value}, {
                    "$set": {"status": RequestStatus.REJECTED.value, "processedAt": now, "updatedAt": now},
                    "$unset": {"pendingKey": ""}
                }, session=tx.session)

        logger.info("Admin %s deleted club %s (%d members, %d coordinators detached)",
                    admin_user.id, snapshot.get("name"), len(member_ids), len(coordinator_ids))
        return JSONResponse(content={"message": "Club deleted successfully"})

    except HTTPException:
        raise
    except Exception as e:
        raise ServerError(f"Error deleting club: {str(e)}")


@router.post('/{club_id}/logo')
async def upload_logo(club_id: str, file: UploadFile = File(...), user: Caller = Depends(require_admin_or_coordinator), db = Depends(get_db)):
    await get_club_or_404(db, club_id)
    ensure_manages(user, club_id)
    try:
        logo_url = await save_image(file)
    except UploadRejected as e:
        raise BadRequest(str(e))
    finally:
        await file.close()

    await db.update(CLUBS, {"_id": club_id}, {"$set": {"logoUrl": logo_url, "updatedAt": utcnow()}})
    return JSONResponse(content={"message": "Logo uploaded successfully", "logoUrl": logo_url})


@router.post('/{club_id}/toggle-enrollment')
async def toggle_enrollment(club_id: str, user: Caller = Depends(require_admin_or_coordinator), db = Depends(get_db)):
    """Admins toggle any club, a coordinator only the club they are assigned to"""
    club = await get_club_or_404(db, club_id)
    ensure_manages(user, club_id, "You can only manage enrollment for your own club")

    new_value = not club.get("enrollmentOpen", False)
    result = await db.update(CLUBS, {"_id": club_id, "enrollmentOpen": {"$ne": new_value}},
                             {"$set": {"enrollmentOpen": new_value, "updatedAt": utcnow()}})
    if result["matched_count"] == 0:
        raise Conflict("Enrollment was changed by another request, reload and try again")

    logger.info("%s set enrollment of club %s to %s", user.id, club["name"], new_value)
    return JSONResponse(content={
        "message": f"Enrollment {'opened' if new_value else 'closed'} successfully",
        "enrollmentOpen": new_value
    })


@router.post('/{club_id}/join')
async def join_club(club_id: str, payload: JoinRequest, user: Caller = Depends(require_student), db = Depends(get_db)):
    try:
        club = await add_membership(db, user, club_id, payload.clubKey)
        return JSONResponse(content={"message": f"Successfully joined {club['name']}", "club": club_summary(club)})
    except HTTPException:
        raise
    except Exception as e:
        raise ServerError(f"Error joining club: {str(e)}")


@router.post('/{club_id}/enroll')
async def enroll_in_club(club_id: str, payload: EnrollRequest, user: Caller = Depends(require_student), db = Depends(get_db)):
    """Join from the discovery flow, filling in year and branch when given"""
    try:
        profile_updates = {}
        if payload.year is not None:
            profile_updates["year"] = payload.year
        if payload.branch:
            profile_updates["branch"] = payload.branch.strip()

        club = await add_membership(db, user, club_id, payload.clubKey, profile_updates)
        return JSONResponse(content={"message": f"Successfully enrolled in {club['name']}", "club": club_summary(club)})
    except HTTPException:
        raise
    except Exception as e:
        raise ServerError(f"Error enrolling in club: {str(e)}")


@router.post('/{club_id}/request-leave')
async def request_leave(club_id: str, payload: LeaveRequestCreate, user: Caller = Depends(require_student), db = Depends(get_db)):
    """member -> leave pending; the club's coordinator decides"""
    try:
        await get_club_or_404(db, club_id)
        if not user.is_member_of(club_id):
            raise BadRequest("You are not a member of this club")

        coordinator = await db.find_one(USERS, {"role": Role.COORDINATOR.value, "coordinatingClub": club_id})
        if not coordinator:
            raise NotFound("No coordinator assigned to this club")

        key = pending_request_key(user.id, club_id)
        if await db.find_one(LEAVE_REQUESTS, {"pendingKey": key}):
            raise Conflict("You already have a pending leave request for this club")

        leave_request = LeaveRequest(
            student=user.id,
            club=club_id,
            coordinator=coordinator["_id"],
            reason=payload.reason.strip(),
            pendingKey=key,
        )
        result = await db.add(LEAVE_REQUESTS, leave_request.to_document())
        logger.info("Student %s requested to leave club %s", user.id, club_id)
        return JSONResponse(status_code=201, content={"message": "Leave request submitted", "request": result["data"]})

    except DuplicateKeyError:
        raise Conflict("You already have a pending leave request for this club")
    except HTTPException:
        raise
    except Exception as e:
        raise ServerError(f"Error submitting leave request: {str(e)}")


@router.post('/{club_id}/request-membership')
async def request_membership(club_id: str, payload: MembershipRequestCreate, user: Caller = Depends(require_student), db = Depends(get_db)):
    """Ask the coordinator for membership without knowing the club key"""
    try:
        await get_club_or_404(db, club_id)
        if user.is_member_of(club_id):
            raise Conflict("You are already enrolled in this club")

        key = pending_request_key(user.id, club_id)
        if await db.find_one(MEMBERSHIP_REQUESTS, {"pendingKey": key}):
            raise Conflict("You already have a pending membership request for this club")

        coordinator = await db.find_one(USERS, {"role": Role.COORDINATOR.value, "coordinatingClub": club_id})
        membership_request = MembershipRequest(
            student=user.id,
            club=club_id,
            coordinator=coordinator["_id"] if coordinator else None,
            message=payload.message.strip(),
            pendingKey=key,
        )
        result = await db.add(MEMBERSHIP_REQUESTS, membership_request.to_document())
        return JSONResponse(status_code=201, content={"message": "Membership request submitted", "request": result["data"]})

    except DuplicateKeyError:
        raise Conflict("You already have a pending membership request for this club")
    except HTTPException:
        raise
    except Exception as e:
        raise ServerError(f"Error submitting membership request: {str(e)}")


@router.get('/{club_id}/members')
async def club_members(club_id: str, user: Caller = Depends(require_admin_or_coordinator), db = Depends(get_db)):
    await get_club_or_404(db, club_id)
    ensure_manages(user, club_id)
    result = await db.find_many(USERS, {"role": Role.STUDENT.value, "clubs": club_id}, {"passwordHash": 0}, sort=[("name", 1)])
    return JSONResponse(content=[public_user(u) for u in result["data"]])


@router.delete('/{club_id}/members/{user_id}')
async def remove_member(club_id: str, user_id: str, user: Caller = Depends(require_admin_or_coordinator), db = Depends(get_db)):
    """Coordinator managed roster: drop a student without a leave request"""
    await get_club_or_404(db, club_id)
    ensure_manages(user, club_id)

    result = await db.update(USERS, {"_id": user_id, "clubs": club_id}, {"$pull": {"clubs": club_id}})
    if result["matched_count"] == 0:
        raise NotFound("Student is not a member of this club")

    logger.info("%s removed student %s from club %s", user.id, user_id, club_id)
    return JSONResponse(content={"message": "Member removed successfully"})
