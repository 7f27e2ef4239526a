"""
Data Schemas for the mod community platform

Each record model maps to one mapping in the storage snapshot, keyed by id.
- User -> users
- Mod -> mods
- Comment -> comments
- Announcement -> announcements
- SupportTicket -> supportTickets
- ChatMessage -> chatMessages

Field names are camelCase because they are the JSON wire format.
"""

from datetime import datetime
from typing import Annotated, Any, List, Literal, Optional

from pydantic import AfterValidator, BaseModel, Field, computed_field

TicketStatus = Literal["pendente", "em_andamento", "resolvido"]

EventType = Literal[
    "announcement",
    "announcement_deleted",
    "user_banned",
    "user_unbanned",
    "comment_reported",
    "user_reported",
    "support_ticket_created",
    "support_ticket_resolved",
    "chat",
]


# ---------- Records ----------

class User(BaseModel):
    id: int
    username: str
    passwordHash: str = Field(..., description="salt$digest, PBKDF2-SHA256")
    isAdmin: bool = False
    isBanned: bool = False
    profilePicture: Optional[str] = None
    bio: Optional[str] = None
    isProfileApproved: bool = False
    isReported: bool = False
    reportReason: Optional[str] = None


class PublicUser(BaseModel):
    """User as exposed over HTTP and WebSocket; never carries the hash."""

    id: int
    username: str
    isAdmin: bool
    isBanned: bool
    profilePicture: Optional[str] = None
    bio: Optional[str] = None
    isProfileApproved: bool
    isReported: bool
    reportReason: Optional[str] = None

    @classmethod
    def from_user(cls, user: User) -> "PublicUser":
        return cls(**user.model_dump(exclude={"passwordHash"}))


class Mod(BaseModel):
    id: int
    title: str
    description: str
    imageUrl: str
    downloadUrl: str
    createdAt: datetime
    rating: int = Field(0, description="Running sum of star values")
    numRatings: int = 0
    tags: List[str] = Field(default_factory=list)

    @computed_field
    @property
    def averageRating(self) -> float:
        if self.numRatings == 0:
            return 0.0
        return self.rating / self.numRatings


class Comment(BaseModel):
    id: int
    modId: int
    userId: Optional[int] = None
    name: str
    content: str
    createdAt: datetime
    isReported: bool = False
    reportReason: Optional[str] = None
    isResolved: bool = False
    replyToId: Optional[int] = None


class Announcement(BaseModel):
    id: int
    message: str
    createdAt: datetime


class SupportTicket(BaseModel):
    id: int
    userId: int
    subject: str
    message: str
    createdAt: datetime
    status: TicketStatus = "pendente"
    responseMessage: Optional[str] = None
    resolvedAt: Optional[datetime] = None


class ChatMessage(BaseModel):
    id: int
    userId: int
    message: str
    createdAt: datetime


class Envelope(BaseModel):
    type: EventType
    data: Any


# ---------- Request payloads ----------

def _not_blank(value: str) -> str:
    if not value.strip():
        raise ValueError("must not be blank")
    return value


NonBlankStr = Annotated[str, AfterValidator(_not_blank)]


class RegisterRequest(BaseModel):
    username: NonBlankStr = Field(..., min_length=3, max_length=50)
    password: str = Field(..., min_length=6)
    bio: Optional[str] = None
    profilePicture: Optional[str] = None


class LoginRequest(BaseModel):
    username: str
    password: str


class ModCreate(BaseModel):
    title: NonBlankStr
    description: str
    imageUrl: str
    downloadUrl: str
    tags: List[str] = Field(default_factory=list)


class ModUpdate(BaseModel):
    title: Optional[NonBlankStr] = None
    description: Optional[str] = None
    imageUrl: Optional[str] = None
    downloadUrl: Optional[str] = None
    tags: Optional[List[str]] = None


class RateRequest(BaseModel):
    rating: int = Field(..., ge=1, le=5)


class CommentCreate(BaseModel):
    name: NonBlankStr
    content: NonBlankStr
    replyToId: Optional[int] = None


class ReportRequest(BaseModel):
    reportReason: NonBlankStr


class AnnouncementCreate(BaseModel):
    message: NonBlankStr


class SupportTicketCreate(BaseModel):
    subject: NonBlankStr
    message: NonBlankStr


class SupportTicketUpdate(BaseModel):
    status: Optional[TicketStatus] = None
    responseMessage: Optional[str] = None


class ChatIn(BaseModel):
    message: NonBlankStr = Field(..., max_length=2000)
