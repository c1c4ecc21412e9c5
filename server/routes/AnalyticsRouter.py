"""
Admin dashboards. Everything here is read only and aggregated in Python from
plain finds; dates are compared after normalising to aware UTC.
"""
import calendar
from collections import Counter
from datetime import timedelta
from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.responses import JSONResponse
from typing import List, Optional

from database.DB import get_db, USERS, CLUBS, EVENTS, FEEDBACK
from models.models import Caller, Role, EventStatus, as_utc, utcnow
from .dependencies import require_admin
from .errors import ServerError

router = APIRouter()

UNKNOWN_CLUB = "Unknown Club"


def last_months(count: int):
    """(year, month) pairs for the last `count` months, oldest first, current month last"""
    now = utcnow()
    year, month = now.year, now.month
    months = []
    for _ in range(count):
        months.append((year, month))
        month -= 1
        if month == 0:
            year, month = year - 1, 12
    return list(reversed(months))


def month_key(value):
    value = as_utc(value)
    return (value.year, value.month) if value else None


def named_counts(counter: Counter) -> List[dict]:
    return [{"name": str(k).capitalize(), "value": v} for k, v in counter.items()]


async def club_names(db) -> dict:
    result = await db.find_many(CLUBS, {}, {"name": 1})
    return {c["_id"]: c["name"] for c in result["data"]}


def events_per_club(events: List[dict], names: dict) -> List[dict]:
    counts = Counter(names.get(e.get("club"), UNKNOWN_CLUB) for e in events)
    return sorted(({"name": n, "events": c} for n, c in counts.items()), key=lambda x: -x["events"])


@router.get('/dashboard')
async def dashboard(admin_user: Caller = Depends(require_admin), db = Depends(get_db)):
    try:
        users = (await db.find_many(USERS, {}, {"role": 1, "createdAt": 1}))["data"]
        events = (await db.find_many(EVENTS, {}, {"club": 1, "status": 1, "date": 1, "createdAt": 1}))["data"]
        feedback = (await db.find_many(FEEDBACK, {}, {"type": 1, "status": 1, "createdAt": 1}))["data"]
        names = await club_names(db)

        monthly_trends = []
        for year, month in last_months(12):
            in_month = [e for e in events if month_key(e.get("date")) == (year, month)]
            statuses = Counter(e["status"] for e in in_month)
            monthly_trends.append({
                "month": calendar.month_abbr[month],
                "events": len(in_month),
                "approved": statuses[EventStatus.APPROVED.value],
                "pending": statuses[EventStatus.PENDING.value],
                "rejected": statuses[EventStatus.REJECTED.value],
            })

        week_ago = utcnow() - timedelta(days=7)

        def recent(items):
            return len([i for i in items if as_utc(i.get("createdAt")) and as_utc(i["createdAt"]) >= week_ago])

        event_statuses = Counter(e["status"] for e in events)
        return JSONResponse(content={
            "userRoles": named_counts(Counter(u["role"] for u in users)),
            "eventStatus": named_counts(event_statuses),
            "clubEvents": events_per_club(events, names)[:10],
            "monthlyTrends": monthly_trends,
            "feedbackByType": named_counts(Counter(f.get("type", "general") for f in feedback)),
            "summary": {
                "totalUsers": len(users),
                "totalEvents": len(events),
                "totalFeedback": len(feedback),
                "totalClubs": len(names),
                "activeEvents": event_statuses[EventStatus.APPROVED.value],
                "pendingEvents": event_statuses[EventStatus.PENDING.value],
                "recentUsers": recent(users),
                "recentEvents": recent(events),
                "recentFeedback": recent(feedback),
            }
        })

    except HTTPException:
        raise
    except Exception as e:
        raise ServerError(f"Error fetching analytics data: {str(e)}")


@router.get('/summary')
async def summary(clubId: Optional[str] = Query(None), admin_user: Caller = Depends(require_admin), db = Depends(get_db)):
    club_filter = {"club": clubId} if clubId else {}
    events = (await db.find_many(EVENTS, club_filter, {"date": 1}))["data"]
    now = utcnow()

    coordinator_query = {"role": Role.COORDINATOR.value}
    student_query = {"role": Role.STUDENT.value}
    if clubId:
        coordinator_query["coordinatingClub"] = clubId
        student_query["clubs"] = clubId

    return JSONResponse(content={
        "totalClubs": await db.count(CLUBS, {"_id": clubId} if clubId else {}),
        "totalCoordinators": await db.count(USERS, coordinator_query),
        "totalStudents": await db.count(USERS, student_query),
        "totalEvents": len(events),
        "upcomingEvents": len([e for e in events if as_utc(e.get("date")) and as_utc(e["date"]) >= now]),
    })


@router.get('/events-per-club')
async def events_per_club_view(clubId: Optional[str] = Query(None), admin_user: Caller = Depends(require_admin), db = Depends(get_db)):
    events = (await db.find_many(EVENTS, {"club": clubId} if clubId else {}, {"club": 1}))["data"]
    return JSONResponse(content=events_per_club(events, await club_names(db)))


@router.get('/student-distribution')
async def student_distribution(admin_user: Caller = Depends(require_admin), db = Depends(get_db)):
    """Students per club with each club's share of all memberships, in percent"""
    names = await club_names(db)
    students = (await db.find_many(USERS, {"role": Role.STUDENT.value}, {"clubs": 1}))["data"]
    counts = Counter(c for s in students for c in (s.get("clubs") or []) if c in names)
    total = sum(counts.values())

    distribution = [{
        "name": names[club_id],
        "value": round(count * 100 / total) if total else 0,
        "count": count
    } for club_id, count in counts.most_common()]
    return JSONResponse(content=distribution)


@router.get('/student-growth')
async def student_growth(clubId: Optional[str] = Query(None), admin_user: Caller = Depends(require_admin), db = Depends(get_db)):
    query = {"role": Role.STUDENT.value}
    if clubId:
        query["clubs"] = clubId
    students = (await db.find_many(USERS, query, {"createdAt": 1}))["data"]
    per_month = Counter(month_key(s.get("createdAt")) for s in students)

    return JSONResponse(content=[
        {"month": calendar.month_abbr[month], "students": per_month[(year, month)]}
        for year, month in last_months(12)
    ])


@router.get('/recent-activity')
async def recent_activity(clubId: Optional[str] = Query(None), admin_user: Caller = Depends(require_admin), db = Depends(get_db)):
    events = (await db.find_many(EVENTS, {"club": clubId} if clubId else {}, sort=[("createdAt", -1)], limit=10))["data"]
    names = await club_names(db)
    return JSONResponse(content=[{
        "date": e.get("createdAt"),
        "club": names.get(e.get("club"), UNKNOWN_CLUB),
        "action": f"Event: {e['title']}",
        "participants": len(e.get("registeredStudents") or []),
    } for e in events])


@router.get('/users')
async def user_analytics(admin_user: Caller = Depends(require_admin), db = Depends(get_db)):
    users = (await db.find_many(USERS, {}, {"role": 1, "createdAt": 1, "year": 1, "branch": 1}))["data"]
    students = [u for u in users if u["role"] == Role.STUDENT.value]
    per_month = Counter(month_key(u.get("createdAt")) for u in users)
    years = Counter(s["year"] for s in students if s.get("year"))
    branches = Counter(s["branch"] for s in students if s.get("branch"))

    return JSONResponse(content={
        "registrationTrends": [
            {"month": calendar.month_abbr[month], "registered": per_month[(year, month)]}
            for year, month in last_months(6)
        ],
        "yearDistribution": [{"year": f"Year {y}", "count": c} for y, c in sorted(years.items())],
        "branchDistribution": [{"branch": b, "count": c} for b, c in branches.most_common()],
        "totalUsers": len(users),
    })


@router.get('/events')
async def event_analytics(admin_user: Caller = Depends(require_admin), db = Depends(get_db)):
    """Registrations per event, the five most registered events and six months of event creation"""
    try:
        events = (await db.find_many(EVENTS, {}, {"title": 1, "club": 1, "date": 1, "createdAt": 1, "registeredStudents": 1}))["data"]
        names = await club_names(db)
        participants = {e["_id"]: len(e.get("registeredStudents") or []) for e in events}
        created_per_month = Counter(month_key(e.get("createdAt")) for e in events)

        popular = sorted(events, key=lambda e: -participants[e["_id"]])[:5]
        return JSONResponse(content={
            "participationRate": round(sum(participants.values()) / len(events), 2) if events else 0,
            "popularEvents": [{
                "title": e["title"],
                "club": names.get(e.get("club"), UNKNOWN_CLUB),
                "participants": participants[e["_id"]],
                "date": e.get("date"),
            } for e in popular],
            "creationTrends": [
                {"month": calendar.month_abbr[month], "created": created_per_month[(year, month)]}
                for year, month in last_months(6)
            ],
            "totalEvents": len(events),
        })

    except HTTPException:
        raise
    except Exception as e:
        raise ServerError(f"Error fetching event analytics: {str(e)}")


@router.get('/insights')
async def insights(clubId: Optional[str] = Query(None), admin_user: Caller = Depends(require_admin), db = Depends(get_db)):
    """Headline cards: busiest club, month over month student sign-ups, registrations per event"""
    events = (await db.find_many(EVENTS, {"club": clubId} if clubId else {}, {"club": 1, "registeredStudents": 1}))["data"]
    student_query = {"role": Role.STUDENT.value}
    if clubId:
        student_query["clubs"] = clubId
    students = (await db.find_many(USERS, student_query, {"createdAt": 1}))["data"]
    names = await club_names(db)

    per_club = {}
    for e in events:
        stats = per_club.setdefault(names.get(e.get("club"), UNKNOWN_CLUB), {"events": 0, "participants": 0})
        stats["events"] += 1
        stats["participants"] += len(e.get("registeredStudents") or [])
    top = max(per_club.items(), key=lambda item: item[1]["events"]) if per_club else None

    previous_month, current_month = last_months(2)
    signups = Counter(month_key(s.get("createdAt")) for s in students)
    previous, current = signups[previous_month], signups[current_month]
    growth = round((current - previous) * 100 / previous) if previous else 0

    total_participants = sum(stats["participants"] for stats in per_club.values())
    average = round(total_participants / len(events)) if events else 0

    return JSONResponse(content=[
        {
            "title": "Top Performing Club",
            "value": top[0] if top else "N/A",
            "description": f"{top[1]['events']} events, {top[1]['participants']} participants" if top else "No data available",
        },
        {
            "title": "Participation Growth",
            "value": f"{'+' if growth >= 0 else ''}{growth}%",
            "description": "this month",
        },
        {
            "title": "Average Attendance",
            "value": f"{average} students",
            "description": "per event",
        },
    ])
