import logging
from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import JSONResponse
from typing import List
from pydantic import BaseModel, field_validator

from database.DB import get_db, FEEDBACK, CLUBS, USERS
from models.models import Caller, Feedback, FeedbackType, FeedbackStatus, utcnow
from .dependencies import require_admin, require_coordinator, require_student, assigned_club
from .errors import BadRequest, Forbidden, NotFound, ServerError

logger = logging.getLogger(__name__)

router = APIRouter()

# action -> (status, escalate to admin)
COORDINATOR_ACTIONS = {
    "resolve": (FeedbackStatus.RESOLVED, False),
    "solve": (FeedbackStatus.SOLVED, False),
    "forward": (FeedbackStatus.ESCALATED, True),
}
ADMIN_ACTIONS = {
    "resolve": FeedbackStatus.RESOLVED,
    "escalate": FeedbackStatus.ESCALATED,
}


# Pydantic models
class FeedbackBody(BaseModel):
    subject: str
    message: str
    type: FeedbackType = FeedbackType.GENERAL

    @field_validator("subject", "message")
    @classmethod
    def not_blank(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("must not be empty")
        return value


class StudentFeedbackCreate(FeedbackBody):
    clubId: str


class FeedbackAction(BaseModel):
    action: str
    responseMessage: str = ""


async def with_names(db, items: List[dict]) -> List[dict]:
    user_ids = list({i[k] for i in items for k in ("student", "coordinator") if i.get(k)})
    club_ids = list({i["club"] for i in items if i.get("club")})
    users = (await db.find_many(USERS, {"_id": {"$in": user_ids}}, {"name": 1, "rollNo": 1}))["data"] if user_ids else []
    clubs = (await db.find_many(CLUBS, {"_id": {"$in": club_ids}}, {"name": 1}))["data"] if club_ids else []
    users_by_id = {u["_id"]: u for u in users}
    clubs_by_id = {c["_id"]: c for c in clubs}

    for item in items:
        item["studentDetails"] = users_by_id.get(item.get("student"))
        item["coordinatorDetails"] = users_by_id.get(item.get("coordinator"))
        item["clubDetails"] = clubs_by_id.get(item.get("club"))
    return items


async def get_feedback_or_404(db, feedback_id: str) -> dict:
    feedback = await db.find_one(FEEDBACK, {"_id": feedback_id})
    if not feedback:
        raise NotFound("Feedback not found")
    return feedback


async def apply_status(db, feedback_id: str, update: dict) -> dict:
    update["updatedAt"] = utcnow()
    await db.update(FEEDBACK, {"_id": feedback_id}, {"$set": update})
    updated = await db.find_one(FEEDBACK, {"_id": feedback_id})
    return (await with_names(db, [updated]))[0]


@router.post('')
async def submit_feedback(payload: StudentFeedbackCreate, user: Caller = Depends(require_student), db = Depends(get_db)):
    """Student feedback to a club's coordinator"""
    try:
        if not await db.find_one(CLUBS, {"_id": payload.clubId}):
            raise NotFound("Club not found")

        feedback = Feedback(
            student=user.id,
            club=payload.clubId,
            subject=payload.subject,
            message=payload.message,
            type=payload.type,
        )
        result = await db.add(FEEDBACK, feedback.to_document())
        return JSONResponse(status_code=201, content={"message": "Feedback submitted", "feedback": result["data"]})

    except HTTPException:
        raise
    except Exception as e:
        raise ServerError(f"Error submitting feedback: {str(e)}")


@router.post('/admin')
async def submit_admin_feedback(payload: FeedbackBody, user: Caller = Depends(require_coordinator), db = Depends(get_db)):
    """Coordinator feedback straight to the admins"""
    try:
        feedback = Feedback(
            coordinator=user.id,
            subject=payload.subject,
            message=payload.message,
            type=payload.type,
            isToAdmin=True,
        )
        result = await db.add(FEEDBACK, feedback.to_document())
        return JSONResponse(status_code=201, content={"message": "Feedback sent to admin", "feedback": result["data"]})

    except HTTPException:
        raise
    except Exception as e:
        raise ServerError(f"Error submitting feedback: {str(e)}")


@router.get('/club')
async def club_feedback(user: Caller = Depends(require_coordinator), db = Depends(get_db)):
    club_id = assigned_club(user)
    result = await db.find_many(FEEDBACK, {"club": club_id, "isToAdmin": {"$ne": True}}, sort=[("createdAt", -1)])
    return JSONResponse(content=await with_names(db, result["data"]))


@router.get('/admin')
async def admin_feedback(admin_user: Caller = Depends(require_admin), db = Depends(get_db)):
    result = await db.find_many(FEEDBACK, {"isToAdmin": True}, sort=[("createdAt", -1)])
    return JSONResponse(content=await with_names(db, result["data"]))


@router.get('/my')
async def my_feedback(user: Caller = Depends(require_student), db = Depends(get_db)):
    result = await db.find_many(FEEDBACK, {"student": user.id}, sort=[("createdAt", -1)])
    return JSONResponse(content=await with_names(db, result["data"]))


@router.put('/{feedback_id}/action')
async def coordinator_action(feedback_id: str, payload: FeedbackAction, user: Caller = Depends(require_coordinator), db = Depends(get_db)):
    """resolve, solve, or forward the item to the admins"""
    try:
        if payload.action not in COORDINATOR_ACTIONS:
            raise BadRequest('Invalid action. Use "resolve", "solve" or "forward"')
        club_id = assigned_club(user)
        feedback = await get_feedback_or_404(db, feedback_id)
        if feedback.get("club") != club_id:
            raise Forbidden("You can only act on feedback from your club")

        status, escalate = COORDINATOR_ACTIONS[payload.action]
        update = {"status": status.value}
        if escalate:
            update["isToAdmin"] = True
            update["coordinator"] = user.id
        if payload.responseMessage.strip():
            update["responseMessage"] = payload.responseMessage.strip()

        updated = await apply_status(db, feedback_id, update)
        logger.info("Coordinator %s set feedback %s to %s", user.id, feedback_id, status.value)
        return JSONResponse(content={"message": f"Feedback {status.value}", "feedback": updated})

    except HTTPException:
        raise
    except Exception as e:
        raise ServerError(f"Error updating feedback: {str(e)}")


@router.put('/{feedback_id}/admin-action')
async def admin_action(feedback_id: str, payload: FeedbackAction, admin_user: Caller = Depends(require_admin), db = Depends(get_db)):
    try:
        status = ADMIN_ACTIONS.get(payload.action)
        if status is None:
            raise BadRequest('Invalid action. Use "resolve" or "escalate"')
        feedback = await get_feedback_or_404(db, feedback_id)
        if not feedback.get("isToAdmin"):
            raise BadRequest("Feedback is not addressed to admin")

        update = {"status": status.value}
        if payload.responseMessage.strip():
            update["responseMessage"] = payload.responseMessage.strip()

        updated = await apply_status(db, feedback_id, update)
        logger.info("Admin %s set feedback %s to %s", admin_user.id, feedback_id, status.value)
        return JSONResponse(content={"message": f"Feedback {status.value}", "feedback": updated})

    except HTTPException:
        raise
    except Exception as e:
        raise ServerError(f"Error updating feedback: {str(e)}")
