import logging
from fastapi import APIRouter, HTTPException, Depends
from fastapi.responses import JSONResponse
from typing import List, Optional
from pydantic import BaseModel, field_validator
from datetime import datetime

from database.DB import get_db, EVENTS, CLUBS, USERS
from models.models import Caller, Event, EventStatus, as_utc, utcnow
from .dependencies import require_admin, require_coordinator, require_student, assigned_club
from .errors import BadRequest, Forbidden, NotFound, Conflict, ServerError

logger = logging.getLogger(__name__)

router = APIRouter()

REVIEW_ACTIONS = {"approve": EventStatus.APPROVED, "reject": EventStatus.REJECTED}


# Pydantic models
class EventCreate(BaseModel):
    title: str
    description: str
    date: datetime
    time: str = ""
    venue: str
    imageUrl: str = ""

    @field_validator("title", "description", "venue")
    @classmethod
    def not_blank(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("must not be empty")
        return value

    @field_validator("date")
    @classmethod
    def normalise_date(cls, value: datetime) -> datetime:
        return as_utc(value)


class EventUpdate(BaseModel):
    title: Optional[str] = None
    description: Optional[str] = None
    date: Optional[datetime] = None
    time: Optional[str] = None
    venue: Optional[str] = None
    imageUrl: Optional[str] = None

    @field_validator("date")
    @classmethod
    def normalise_date(cls, value: Optional[datetime]) -> Optional[datetime]:
        return as_utc(value)


class ReviewAction(BaseModel):
    action: str


async def with_names(db, events: List[dict]) -> List[dict]:
    """Attach club and creator names; events of deleted clubs keep a null clubDetails"""
    club_ids = list({e["club"] for e in events if e.get("club")})
    creator_ids = list({e["createdBy"] for e in events if e.get("createdBy")})
    clubs = (await db.find_many(CLUBS, {"_id": {"$in": club_ids}}, {"name": 1, "logoUrl": 1}))["data"] if club_ids else []
    creators = (await db.find_many(USERS, {"_id": {"$in": creator_ids}}, {"name": 1}))["data"] if creator_ids else []
    clubs_by_id = {c["_id"]: c for c in clubs}
    creators_by_id = {u["_id"]: u for u in creators}

    for event in events:
        event["clubDetails"] = clubs_by_id.get(event.get("club"))
        event["createdByDetails"] = creators_by_id.get(event.get("createdBy"))
    return events


async def get_event_or_404(db, event_id: str) -> dict:
    event = await db.find_one(EVENTS, {"_id": event_id})
    if not event:
        raise NotFound("Event not found")
    return event


def ensure_editable(event: dict, user: Caller, verb: str):
    if event["status"] != EventStatus.PENDING.value:
        raise BadRequest(f"Can only {verb} pending events")
    if event["createdBy"] != user.id:
        raise Forbidden(f"You can only {verb} events you created")


def clean_update(payload: EventUpdate) -> dict:
    update_data = payload.model_dump(exclude_none=True)
    for field in ("title", "description", "venue"):
        if field in update_data:
            update_data[field] = update_data[field].strip()
            if not update_data[field]:
                raise BadRequest(f"{field.capitalize()} must not be empty")
    if not update_data:
        raise BadRequest("No fields to update")
    update_data["updatedAt"] = utcnow()
    return update_data


@router.get('')
async def list_events(db = Depends(get_db)):
    """Approved events, soonest first"""
    result = await db.find_many(EVENTS, {"status": EventStatus.APPROVED.value}, sort=[("date", 1)])
    return JSONResponse(content=await with_names(db, result["data"]))


@router.get('/club/{club_id}')
async def club_events(club_id: str, db = Depends(get_db)):
    result = await db.find_many(EVENTS, {"club": club_id, "status": EventStatus.APPROVED.value}, sort=[("date", 1)])
    return JSONResponse(content=await with_names(db, result["data"]))


@router.get('/admin/pending')
async def pending_events(admin_user: Caller = Depends(require_admin), db = Depends(get_db)):
    result = await db.find_many(EVENTS, {"status": EventStatus.PENDING.value}, sort=[("createdAt", -1)])
    return JSONResponse(content=await with_names(db, result["data"]))


@router.get('/admin/upcoming')
async def upcoming_events(admin_user: Caller = Depends(require_admin), db = Depends(get_db)):
    """Approved events from the start of today (UTC) onwards"""
    today = utcnow().replace(hour=0, minute=0, second=0, microsecond=0)
    result = await db.find_many(EVENTS, {"status": EventStatus.APPROVED.value}, sort=[("date", 1)])
    events = [e for e in result["data"] if as_utc(e.get("date")) and as_utc(e["date"]) >= today]
    return JSONResponse(content=await with_names(db, events))


@router.get('/coordinator/my-events')
async def my_events(user: Caller = Depends(require_coordinator), db = Depends(get_db)):
    club_id = assigned_club(user)
    result = await db.find_many(EVENTS, {"club": club_id}, sort=[("date", -1)])
    return JSONResponse(content=await with_names(db, result["data"]))


@router.delete('/admin/{event_id}')
async def admin_delete_event(event_id: str, admin_user: Caller = Depends(require_admin), db = Depends(get_db)):
    """Delete an event in any state (Admin only)"""
    result = await db.delete(EVENTS, {"_id": event_id})
    if result["deleted_count"] == 0:
        raise NotFound("Event not found")
    logger.info("Admin %s deleted event %s", admin_user.id, event_id)
    return JSONResponse(content={"message": "Event deleted successfully"})


@router.put('/admin/{event_id}')
async def admin_update_event(event_id: str, payload: EventUpdate, admin_user: Caller = Depends(require_admin), db = Depends(get_db)):
    """Edit a live event. Only approved events that have not started yet; the status stays approved."""
    try:
        event = await get_event_or_404(db, event_id)
        if as_utc(event["date"]) < utcnow():
            raise BadRequest("Cannot edit past events")
        if event["status"] != EventStatus.APPROVED.value:
            raise BadRequest("Only approved events can be edited by admin")

        update_data = clean_update(payload)
        result = await db.update(EVENTS, {"_id": event_id, "status": EventStatus.APPROVED.value}, {"$set": update_data})
        if result["matched_count"] == 0:
            raise BadRequest("Only approved events can be edited by admin")

        logger.info("Admin %s edited event %s", admin_user.id, event_id)
        updated = await db.find_one(EVENTS, {"_id": event_id})
        return JSONResponse(content={"message": "Event updated successfully", "event": (await with_names(db, [updated]))[0]})

    except HTTPException:
        raise
    except Exception as e:
        raise ServerError(f"Error updating event: {str(e)}")


@router.post('')
async def create_event(payload: EventCreate, user: Caller = Depends(require_coordinator), db = Depends(get_db)):
    """Coordinator proposes an event for their club; an admin has to approve it"""
    try:
        if not user.coordinatingClub:
            raise BadRequest("You must be assigned to a club to create events")

        event = Event(club=user.coordinatingClub, createdBy=user.id, **payload.model_dump())
        result = await db.add(EVENTS, event.to_document())
        if result["status"] != 200:
            raise ServerError("Failed to create event")

        logger.info("Coordinator %s proposed event %s", user.id, event.id)
        return JSONResponse(status_code=201, content={"message": "Event submitted for approval", "event": result["data"]})

    except HTTPException:
        raise
    except Exception as e:
        raise ServerError(f"Error creating event: {str(e)}")


@router.get('/{event_id}')
async def get_event(event_id: str, db = Depends(get_db)):
    event = await get_event_or_404(db, event_id)
    return JSONResponse(content=(await with_names(db, [event]))[0])


@router.put('/{event_id}/approve')
async def review_event(event_id: str, payload: ReviewAction, admin_user: Caller = Depends(require_admin), db = Depends(get_db)):
    """pending -> approved | rejected. Resolved events stay resolved."""
    try:
        status = REVIEW_ACTIONS.get(payload.action)
        if status is None:
            raise BadRequest('Invalid action. Use "approve" or "reject"')

        event = await get_event_or_404(db, event_id)
        if event["status"] != EventStatus.PENDING.value:
            raise BadRequest(f"Event has already been {event['status']}")

        now = utcnow()
        result = await db.update(EVENTS, {"_id": event_id, "status": EventStatus.PENDING.value}, {"$set": {
            "status": status.value,
            "reviewedAt": now,
            "reviewedBy": admin_user.id,
            "updatedAt": now
        }})
        if result["matched_count"] == 0:
            current = await get_event_or_404(db, event_id)
            raise BadRequest(f"Event has already been {current['status']}")

        logger.info("Admin %s %s event %s", admin_user.id, status.value, event_id)
        updated = await db.find_one(EVENTS, {"_id": event_id})
        return JSONResponse(content={"message": f"Event {status.value}", "event": updated})

    except HTTPException:
        raise
    except Exception as e:
        raise ServerError(f"Error reviewing event: {str(e)}")


@router.put('/{event_id}')
async def update_event(event_id: str, payload: EventUpdate, user: Caller = Depends(require_coordinator), db = Depends(get_db)):
    try:
        event = await get_event_or_404(db, event_id)
        ensure_editable(event, user, "update")

        update_data = clean_update(payload)
        result = await db.update(EVENTS, {"_id": event_id, "status": EventStatus.PENDING.value}, {"$set": update_data})
        if result["matched_count"] == 0:
            raise BadRequest("Can only update pending events")

        updated = await db.find_one(EVENTS, {"_id": event_id})
        return JSONResponse(content={"message": "Event updated successfully", "event": updated})

    except HTTPException:
        raise
    except Exception as e:
        raise ServerError(f"Error updating event: {str(e)}")


@router.delete('/{event_id}')
async def delete_event(event_id: str, user: Caller = Depends(require_coordinator), db = Depends(get_db)):
    try:
        event = await get_event_or_404(db, event_id)
        ensure_editable(event, user, "delete")

        result = await db.delete(EVENTS, {"_id": event_id, "status": EventStatus.PENDING.value})
        if result["deleted_count"] == 0:
            raise BadRequest("Can only delete pending events")

        return JSONResponse(content={"message": "Event deleted successfully"})

    except HTTPException:
        raise
    except Exception as e:
        raise ServerError(f"Error deleting event: {str(e)}")


@router.post('/{event_id}/register')
async def register_for_event(event_id: str, user: Caller = Depends(require_student), db = Depends(get_db)):
    try:
        event = await get_event_or_404(db, event_id)
        if event["status"] != EventStatus.APPROVED.value:
            raise BadRequest("Cannot register for unapproved events")
        if user.id in (event.get("registeredStudents") or []):
            raise Conflict("Already registered for this event")

        result = await db.update(EVENTS, {
            "_id": event_id,
            "status": EventStatus.APPROVED.value,
            "registeredStudents": {"$ne": user.id}
        }, {"$push": {"registeredStudents": user.id}})
        if result["matched_count"] == 0:
            raise Conflict("Already registered for this event")

        return JSONResponse(content={"message": "Successfully registered for event"})

    except HTTPException:
        raise
    except Exception as e:
        raise ServerError(f"Error registering for event: {str(e)}")


@router.delete('/{event_id}/register')
async def unregister_from_event(event_id: str, user: Caller = Depends(require_student), db = Depends(get_db)):
    """Always succeeds for an existing event, registered or not"""
    result = await db.update(EVENTS, {"_id": event_id}, {"$pull": {"registeredStudents": user.id}})
    if result["matched_count"] == 0:
        raise NotFound("Event not found")
    return JSONResponse(content={"message": "Successfully unregistered from event"})
