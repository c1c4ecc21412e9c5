import logging
from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.responses import JSONResponse
from typing import List, Optional
from pydantic import BaseModel

from database.DB import get_db, POLLS, CLUBS
from helpers.ClubKeyGenerator import new_id
from models.models import Caller, Role, Poll, PollOption, PollScope, PollStatus, utcnow
from .dependencies import get_current_user, require_admin, require_coordinator, require_admin_or_coordinator, assigned_club, can_manage_club
from .errors import BadRequest, Forbidden, NotFound, ServerError

logger = logging.getLogger(__name__)

router = APIRouter()


# Pydantic models
class PollCreate(BaseModel):
    question: str
    options: List[str]
    scope: PollScope = PollScope.CLUB
    clubId: Optional[str] = None
    clubIds: List[str] = []


class VoteRequest(BaseModel):
    optionId: str


def build_options(options: List[str]) -> List[PollOption]:
    texts = [o.strip() for o in options if o and o.strip()]
    if len(texts) < 2:
        raise BadRequest("Question and at least two options are required")
    return [PollOption(text=t) for t in texts]


def validate_question(question: str) -> str:
    question = (question or "").strip()
    if not question:
        raise BadRequest("Question and at least two options are required")
    return question


async def with_club_names(db, polls: List[dict]) -> List[dict]:
    club_ids = list({p["clubId"] for p in polls if p.get("clubId")})
    clubs = (await db.find_many(CLUBS, {"_id": {"$in": club_ids}}, {"name": 1}))["data"] if club_ids else []
    names = {c["_id"]: c["name"] for c in clubs}
    for poll in polls:
        poll["clubName"] = names.get(poll.get("clubId"))
    return polls


@router.post('/club')
async def create_club_poll(payload: PollCreate, user: Caller = Depends(require_coordinator), db = Depends(get_db)):
    """Coordinator poll; always scoped to the coordinator's own club"""
    try:
        question = validate_question(payload.question)
        options = build_options(payload.options)
        club_id = assigned_club(user)
        if not await db.find_one(CLUBS, {"_id": club_id}):
            raise NotFound("Club not found")

        poll = Poll(scope=PollScope.CLUB, clubId=club_id, question=question, options=options, createdBy=user.id)
        result = await db.add(POLLS, poll.to_document())
        logger.info("Coordinator %s created poll %s for club %s", user.id, poll.id, club_id)
        return JSONResponse(status_code=201, content={"message": "Poll created successfully", "poll": result["data"]})

    except HTTPException:
        raise
    except Exception as e:
        raise ServerError(f"Error creating poll: {str(e)}")


@router.post('')
async def create_poll(payload: PollCreate, admin_user: Caller = Depends(require_admin), db = Depends(get_db)):
    """
    Admin poll. Scope `all` and `coordinators` create one poll; scope `club`
    creates one poll per club id, grouped under a shared batchId.
    """
    try:
        question = validate_question(payload.question)
        options = build_options(payload.options)
        scope = PollScope(payload.scope)

        if scope != PollScope.CLUB:
            poll = Poll(scope=scope, question=question, options=options, createdBy=admin_user.id)
            result = await db.add(POLLS, poll.to_document())
            logger.info("Admin %s created %s poll %s", admin_user.id, scope.value, poll.id)
            return JSONResponse(status_code=201, content={"message": "Poll created successfully", "poll": result["data"]})

        club_ids = list(dict.fromkeys(payload.clubIds or ([payload.clubId] if payload.clubId else [])))
        if not club_ids:
            raise BadRequest("Provide at least one clubId when scope is club")
        known = await db.count(CLUBS, {"_id": {"$in": club_ids}})
        if known != len(club_ids):
            raise NotFound("Club not found")

        batch_id = new_id()
        documents = [
            Poll(
                scope=PollScope.CLUB,
                clubId=club_id,
                question=question,
                options=[PollOption(text=o.text) for o in options],
                createdBy=admin_user.id,
                batchId=batch_id,
            ).to_document()
            for club_id in club_ids
        ]

        async with db.transaction() as tx:
            tx.compensate(db.delete_many, POLLS, {"batchId": batch_id})
            result = await db.add_many(POLLS, documents, session=tx.session)

        logger.info("Admin %s created poll batch %s over %d clubs", admin_user.id, batch_id, len(club_ids))
        return JSONResponse(status_code=201, content={"message": f"Created {len(club_ids)} polls", "polls": result["data"]})

    except HTTPException:
        raise
    except Exception as e:
        raise ServerError(f"Error creating poll: {str(e)}")


@router.get('/active')
async def active_polls(user: Caller = Depends(get_current_user), db = Depends(get_db)):
    """Active polls the caller can see"""
    query = {"status": PollStatus.ACTIVE.value}
    if user.role == Role.STUDENT:
        query["$or"] = [
            {"scope": PollScope.ALL.value},
            {"scope": PollScope.CLUB.value, "clubId": {"$in": user.clubs}},
        ]
    elif user.role == Role.COORDINATOR:
        query["scope"] = {"$in": [PollScope.ALL.value, PollScope.COORDINATORS.value]}

    result = await db.find_many(POLLS, query, sort=[("createdAt", -1)])
    return JSONResponse(content=await with_club_names(db, result["data"]))


@router.get('/club')
async def club_polls(user: Caller = Depends(require_coordinator), db = Depends(get_db)):
    club_id = assigned_club(user)
    result = await db.find_many(POLLS, {"scope": PollScope.CLUB.value, "clubId": club_id}, sort=[("createdAt", -1)])
    return JSONResponse(content=await with_club_names(db, result["data"]))


@router.get('/manage')
async def manage_polls(status: Optional[PollStatus] = Query(None), admin_user: Caller = Depends(require_admin), db = Depends(get_db)):
    query = {"status": status.value} if status else {}
    result = await db.find_many(POLLS, query, sort=[("createdAt", -1)])
    return JSONResponse(content=await with_club_names(db, result["data"]))


@router.post('/{poll_id}/vote')
async def vote(poll_id: str, payload: VoteRequest, user: Caller = Depends(get_current_user), db = Depends(get_db)):
    """
    Record one vote. The counter increment and the vote record go in a single
    update guarded on the caller not having voted, so counters always add up
    to the number of vote records.
    """
    try:
        poll = await db.find_one(POLLS, {"_id": poll_id})
        if not poll:
            raise NotFound("Poll not found")
        if poll["status"] != PollStatus.ACTIVE.value:
            raise BadRequest("Poll is not active")
        if any(v["userId"] == user.id for v in poll.get("votes", [])):
            raise BadRequest("Already voted")

        index = next((i for i, o in enumerate(poll["options"]) if o["_id"] == payload.optionId), None)
        if index is None:
            raise NotFound("Invalid option")

        result = await db.update(POLLS, {
            "_id": poll_id,
            "status": PollStatus.ACTIVE.value,
            "votes.userId": {"$ne": user.id}
        }, {
            "$inc": {f"options.{index}.votes": 1},
            "$push": {"votes": {"userId": user.id, "optionIndex": index, "votedAt": utcnow()}}
        })

        if result["matched_count"] == 0:
            current = await db.find_one(POLLS, {"_id": poll_id})
            if not current:
                raise NotFound("Poll not found")
            if current["status"] != PollStatus.ACTIVE.value:
                raise BadRequest("Poll is not active")
            raise BadRequest("Already voted")

        updated = await db.find_one(POLLS, {"_id": poll_id})
        return JSONResponse(content={"message": "Vote recorded", "poll": updated})

    except HTTPException:
        raise
    except Exception as e:
        raise ServerError(f"Error recording vote: {str(e)}")


@router.put('/{poll_id}/close')
async def close_poll(poll_id: str, user: Caller = Depends(require_admin_or_coordinator), db = Depends(get_db)):
    poll = await db.find_one(POLLS, {"_id": poll_id})
    if not poll:
        raise NotFound("Poll not found")
    if user.role == Role.COORDINATOR and (poll.get("scope") != PollScope.CLUB.value or not can_manage_club(user, poll.get("clubId"))):
        raise Forbidden("You can only close polls of your own club")

    if poll["status"] == PollStatus.ACTIVE.value:
        await db.update(POLLS, {"_id": poll_id, "status": PollStatus.ACTIVE.value},
                        {"$set": {"status": PollStatus.CLOSED.value, "closedAt": utcnow()}})
        logger.info("%s closed poll %s", user.id, poll_id)

    updated = await db.find_one(POLLS, {"_id": poll_id})
    return JSONResponse(content={"message": "Poll closed", "poll": updated})
