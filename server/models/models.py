from enum import Enum
from typing import List, Optional
from pydantic import BaseModel, ConfigDict, Field
from datetime import datetime, timezone

from helpers.ClubKeyGenerator import new_id


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Role(str, Enum):
    STUDENT = "student"
    COORDINATOR = "coordinator"
    ADMIN = "admin"


class EventStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class RequestStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class PollScope(str, Enum):
    CLUB = "club"
    COORDINATORS = "coordinators"
    ALL = "all"


class PollStatus(str, Enum):
    ACTIVE = "active"
    CLOSED = "closed"


class FeedbackType(str, Enum):
    GENERAL = "general"
    SUGGESTION = "suggestion"
    COMPLAINT = "complaint"
    APPRECIATION = "appreciation"
    ISSUE = "issue"
    REQUEST = "request"


class FeedbackStatus(str, Enum):
    PENDING = "pending"
    RESOLVED = "resolved"
    SOLVED = "solved"
    ESCALATED = "escalated"
    FORWARD_ADMIN = "forward_admin"


class Caller(BaseModel):
    """Identity resolved by the auth gate and passed into every handler"""
    id: str
    role: Role
    name: str = ""
    email: str = ""
    coordinatingClub: Optional[str] = None
    clubs: List[str] = Field(default_factory=list)

    def is_member_of(self, club_id: str) -> bool:
        return club_id in self.clubs


class Document(BaseModel):
    """Base for stored documents; `_id` is a UUID string"""
    model_config = ConfigDict(populate_by_name=True, use_enum_values=True)

    id: str = Field(default_factory=new_id, alias="_id")
    createdAt: datetime = Field(default_factory=utcnow)

    def to_document(self) -> dict:
        return self.model_dump(by_alias=True)


class User(Document):
    name: str
    rollNo: str
    email: str
    passwordHash: str
    role: Role = Role.STUDENT
    profilePhoto: str = ""
    year: Optional[int] = None
    branch: Optional[str] = None
    clubs: List[str] = Field(default_factory=list)
    coordinatingClub: Optional[str] = None
    updatedAt: datetime = Field(default_factory=utcnow)


class TeamHead(BaseModel):
    name: str
    rollNumber: str = ""
    designation: str = ""


class Club(Document):
    name: str
    description: str
    category: str = "General"
    logoUrl: str = ""
    clubKey: str
    enrollmentOpen: bool = False
    coordinators: List[str] = Field(default_factory=list)
    teamHeads: List[TeamHead] = Field(default_factory=list)
    eventsConducted: List[str] = Field(default_factory=list)
    upcomingEvents: List[str] = Field(default_factory=list)
    instagram: str = ""
    updatedAt: datetime = Field(default_factory=utcnow)


class Event(Document):
    club: str
    title: str
    description: str
    date: datetime
    time: str = ""
    venue: str
    imageUrl: str = ""
    status: EventStatus = EventStatus.PENDING
    createdBy: str
    registeredStudents: List[str] = Field(default_factory=list)
    updatedAt: datetime = Field(default_factory=utcnow)
    reviewedAt: Optional[datetime] = None
    reviewedBy: Optional[str] = None


class ClubRequest(Document):
    """Pending leave or membership request of a student for one club"""
    student: str
    club: str
    coordinator: Optional[str] = None
    status: RequestStatus = RequestStatus.PENDING
    pendingKey: Optional[str] = None
    updatedAt: datetime = Field(default_factory=utcnow)
    processedAt: Optional[datetime] = None
    processedBy: Optional[str] = None


class LeaveRequest(ClubRequest):
    reason: str = ""


class MembershipRequest(ClubRequest):
    message: str = ""


class PollOption(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: str = Field(default_factory=new_id, alias="_id")
    text: str
    votes: int = 0


class Vote(BaseModel):
    userId: str
    optionIndex: int
    votedAt: datetime = Field(default_factory=utcnow)


class Poll(Document):
    scope: PollScope = PollScope.CLUB
    clubId: Optional[str] = None
    question: str
    options: List[PollOption]
    votes: List[Vote] = Field(default_factory=list)
    status: PollStatus = PollStatus.ACTIVE
    createdBy: str
    batchId: Optional[str] = None
    closedAt: Optional[datetime] = None


class Feedback(Document):
    student: Optional[str] = None
    coordinator: Optional[str] = None
    club: Optional[str] = None
    subject: str
    message: str
    type: FeedbackType = FeedbackType.GENERAL
    status: FeedbackStatus = FeedbackStatus.PENDING
    isToAdmin: bool = False
    responseMessage: str = ""
    updatedAt: datetime = Field(default_factory=utcnow)


def as_utc(value) -> Optional[datetime]:
    """Normalise stored dates (naive UTC from Mongo, or ISO strings) to aware UTC"""
    if value is None or value == "":
        return None
    if isinstance(value, str):
        value = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)
