"""
In-memory entity store and the query/mutation API over it.

Every record lives in an insertion-ordered dict keyed by id. Ids come from a
single counter shared by all entity kinds, so an id is unique across the
whole store, not just within one kind. Each mutating call persists the full
store before returning.

Callers get copies; nothing outside this module holds a live record.
"""

import logging
import threading
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Type, TypeVar

from pydantic import BaseModel, ValidationError

from auth import hash_password
from database import JsonFileDatabase
from schemas import (
    Announcement,
    ChatMessage,
    Comment,
    Mod,
    ModCreate,
    ModUpdate,
    SupportTicket,
    SupportTicketUpdate,
    User,
)

logger = logging.getLogger(__name__)

M = TypeVar("M", bound=BaseModel)


class StorageError(Exception):
    pass


class NotFoundError(StorageError):
    pass


class ConflictError(StorageError):
    pass


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _copy(record: M) -> M:
    return record.model_copy(deep=True)


class Storage:
    def __init__(
        self,
        database: Optional[JsonFileDatabase] = None,
        admin_username: str = "admin",
        admin_password: str = "admin123",
    ) -> None:
        self.database = database
        self.admin_username = admin_username
        self.admin_password = admin_password
        self._lock = threading.RLock()
        self._reset()
        self._seed_admin()

    # ---------- State & persistence ----------

    def _reset(self) -> None:
        self.users: Dict[int, User] = {}
        self.mods: Dict[int, Mod] = {}
        self.comments: Dict[int, Comment] = {}
        self.announcements: Dict[int, Announcement] = {}
        self.chat_messages: Dict[int, ChatMessage] = {}
        self.support_tickets: Dict[int, SupportTicket] = {}
        self.current_id = 1

    def _tables(self) -> Dict[str, Dict[int, Any]]:
        return {
            "users": self.users,
            "mods": self.mods,
            "comments": self.comments,
            "announcements": self.announcements,
            "chatMessages": self.chat_messages,
            "supportTickets": self.support_tickets,
        }

    def _seed_admin(self) -> None:
        admin = User(
            id=self._next_id(),
            username=self.admin_username,
            passwordHash=hash_password(self.admin_password),
            isAdmin=True,
            isProfileApproved=True,
        )
        self.users[admin.id] = admin

    def _next_id(self) -> int:
        next_id = self.current_id
        self.current_id += 1
        return next_id

    def snapshot(self) -> Dict[str, Any]:
        with self._lock:
            data: Dict[str, Any] = {"currentId": self.current_id}
            for name, table in self._tables().items():
                data[name] = [[record_id, record.model_dump(mode="json")] for record_id, record in table.items()]
            return data

    def restore(self, data: Dict[str, Any]) -> None:
        """Replace all state with `data`. Raises ValidationError on bad records."""
        models: Dict[str, Type[BaseModel]] = {
            "users": User,
            "mods": Mod,
            "comments": Comment,
            "announcements": Announcement,
            "chatMessages": ChatMessage,
            "supportTickets": SupportTicket,
        }
        loaded = {
            name: {int(record_id): model.model_validate(raw) for record_id, raw in data.get(name, [])}
            for name, model in models.items()
        }
        with self._lock:
            self.users = loaded["users"]
            self.mods = loaded["mods"]
            self.comments = loaded["comments"]
            self.announcements = loaded["announcements"]
            self.chat_messages = loaded["chatMessages"]
            self.support_tickets = loaded["supportTickets"]
            max_id = max((record_id for table in loaded.values() for record_id in table), default=0)
            self.current_id = max(int(data["currentId"]), max_id + 1)

    def load(self) -> bool:
        """Replace in-memory state with the persisted snapshot, if there is one."""
        if self.database is None:
            return False
        data = self.database.load()
        if data is None:
            return False
        try:
            self.restore(data)
        except (ValidationError, KeyError, TypeError, ValueError):
            logger.exception("Storage snapshot has invalid records, starting empty")
            with self._lock:
                self._reset()
                self._seed_admin()
            return False
        logger.info("Loaded storage snapshot: %s", self.stats())
        return True

    def save(self) -> bool:
        if self.database is None:
            return True
        return self.database.save(self.snapshot())

    def stats(self) -> Dict[str, int]:
        with self._lock:
            counts = {name: len(table) for name, table in self._tables().items()}
            counts["currentId"] = self.current_id
            return counts

    # ---------- Users ----------

    def _user(self, user_id: int) -> User:
        user = self.users.get(user_id)
        if user is None:
            raise NotFoundError("User not found")
        return user

    def get_user(self, user_id: int) -> Optional[User]:
        with self._lock:
            user = self.users.get(user_id)
            return _copy(user) if user else None

    def get_user_by_username(self, username: str) -> Optional[User]:
        with self._lock:
            for user in self.users.values():
                if user.username == username:
                    return _copy(user)
            return None

    def create_user(
        self,
        username: str,
        password: str,
        bio: Optional[str] = None,
        profile_picture: Optional[str] = None,
    ) -> User:
        # PBKDF2 is slow; hash before taking the lock so other callers are not held up.
        password_hash = hash_password(password)
        with self._lock:
            if any(u.username == username for u in self.users.values()):
                raise ConflictError("Username already taken")
            user = User(
                id=self._next_id(),
                username=username,
                passwordHash=password_hash,
                bio=bio or None,
                profilePicture=profile_picture or None,
            )
            self.users[user.id] = user
            self.save()
            return _copy(user)

    def _set_user_fields(self, user_id: int, **changes: Any) -> User:
        with self._lock:
            user = self._user(user_id).model_copy(update=changes)
            self.users[user_id] = user
            self.save()
            return _copy(user)

    def ban_user(self, user_id: int) -> User:
        return self._set_user_fields(user_id, isBanned=True)

    def unban_user(self, user_id: int) -> User:
        return self._set_user_fields(user_id, isBanned=False)

    def get_all_users(self) -> List[User]:
        with self._lock:
            return [_copy(u) for u in self.users.values()]

    def update_user_profile(
        self,
        user_id: int,
        bio: Optional[str] = None,
        profile_picture: Optional[str] = None,
    ) -> User:
        # Any edit needs a fresh approval, even one that changes nothing.
        with self._lock:
            user = self._user(user_id)
            return self._set_user_fields(
                user_id,
                bio=bio or user.bio,
                profilePicture=profile_picture or user.profilePicture,
                isProfileApproved=False,
            )

    def report_user(self, user_id: int, reason: str) -> User:
        return self._set_user_fields(user_id, isReported=True, reportReason=reason)

    def get_reported_users(self) -> List[User]:
        with self._lock:
            return [_copy(u) for u in self.users.values() if u.isReported]

    def approve_user_profile(self, user_id: int) -> User:
        return self._set_user_fields(user_id, isProfileApproved=True)

    # ---------- Mods ----------

    def _mod(self, mod_id: int) -> Mod:
        mod = self.mods.get(mod_id)
        if mod is None:
            raise NotFoundError("Mod not found")
        return mod

    def get_mods(self) -> List[Mod]:
        with self._lock:
            return [_copy(m) for m in self.mods.values()]

    def get_mod_by_id(self, mod_id: int) -> Optional[Mod]:
        with self._lock:
            mod = self.mods.get(mod_id)
            return _copy(mod) if mod else None

    def create_mod(self, data: ModCreate) -> Mod:
        with self._lock:
            mod = Mod(
                id=self._next_id(),
                title=data.title,
                description=data.description,
                imageUrl=data.imageUrl,
                downloadUrl=data.downloadUrl,
                createdAt=_now(),
                rating=0,
                numRatings=0,
                tags=list(data.tags or []),
            )
            self.mods[mod.id] = mod
            self.save()
            return _copy(mod)

    def update_mod(self, mod_id: int, data: ModUpdate) -> Mod:
        with self._lock:
            mod = self._mod(mod_id).model_copy(update=data.model_dump(exclude_none=True))
            self.mods[mod_id] = mod
            self.save()
            return _copy(mod)

    def delete_mod(self, mod_id: int) -> None:
        with self._lock:
            self._mod(mod_id)
            del self.mods[mod_id]
            self.save()

    def rate_mod(self, mod_id: int, rating: int) -> Mod:
        """Add one star rating. The range check (1..5) is the caller's job."""
        with self._lock:
            mod = self._mod(mod_id)
            mod = mod.model_copy(update={"rating": mod.rating + rating, "numRatings": mod.numRatings + 1})
            self.mods[mod_id] = mod
            self.save()
            return _copy(mod)

    def search_mods(self, query: Optional[str]) -> List[Mod]:
        if not query:
            return self.get_mods()
        needle = query.lower()
        with self._lock:
            return [
                _copy(m)
                for m in self.mods.values()
                if needle in m.title.lower()
                or needle in m.description.lower()
                or any(needle in tag.lower() for tag in m.tags)
            ]

    # ---------- Comments ----------

    def _comment(self, comment_id: int) -> Comment:
        comment = self.comments.get(comment_id)
        if comment is None:
            raise NotFoundError("Comment not found")
        return comment

    def get_comment(self, comment_id: int) -> Optional[Comment]:
        with self._lock:
            comment = self.comments.get(comment_id)
            return _copy(comment) if comment else None

    def get_comments_by_mod_id(self, mod_id: int) -> List[Comment]:
        with self._lock:
            return [_copy(c) for c in self.comments.values() if c.modId == mod_id]

    def create_comment(
        self,
        mod_id: int,
        name: str,
        content: str,
        user_id: Optional[int] = None,
        reply_to_id: Optional[int] = None,
    ) -> Comment:
        """Store a comment. Whether `reply_to_id` names a top-level comment is not checked here."""
        with self._lock:
            comment = Comment(
                id=self._next_id(),
                modId=mod_id,
                userId=user_id,
                name=name,
                content=content,
                createdAt=_now(),
                replyToId=reply_to_id,
            )
            self.comments[comment.id] = comment
            self.save()
            return _copy(comment)

    def report_comment(self, comment_id: int, reason: str) -> Comment:
        with self._lock:
            comment = self._comment(comment_id).model_copy(
                update={"isReported": True, "reportReason": reason, "isResolved": False}
            )
            self.comments[comment_id] = comment
            self.save()
            return _copy(comment)

    def get_reported_comments(self, unresolved_only: bool = False) -> List[Comment]:
        """Every reported comment; resolved ones stay listed with isResolved=True."""
        with self._lock:
            return [
                _copy(c)
                for c in self.comments.values()
                if c.isReported and not (unresolved_only and c.isResolved)
            ]

    def resolve_reported_comment(self, comment_id: int) -> Comment:
        with self._lock:
            comment = self._comment(comment_id).model_copy(update={"isResolved": True})
            self.comments[comment_id] = comment
            self.save()
            return _copy(comment)

    def get_replies_by_comment_id(self, comment_id: int) -> List[Comment]:
        with self._lock:
            return [_copy(c) for c in self.comments.values() if c.replyToId == comment_id]

    # ---------- Support tickets ----------

    def create_support_ticket(self, user_id: int, subject: str, message: str) -> SupportTicket:
        with self._lock:
            ticket = SupportTicket(
                id=self._next_id(),
                userId=user_id,
                subject=subject,
                message=message,
                createdAt=_now(),
                status="pendente",
            )
            self.support_tickets[ticket.id] = ticket
            self.save()
            return _copy(ticket)

    def get_support_tickets(self, user_id: Optional[int] = None) -> List[SupportTicket]:
        with self._lock:
            return [
                _copy(t)
                for t in self.support_tickets.values()
                if user_id is None or t.userId == user_id
            ]

    def get_support_ticket_by_id(self, ticket_id: int) -> Optional[SupportTicket]:
        with self._lock:
            ticket = self.support_tickets.get(ticket_id)
            return _copy(ticket) if ticket else None

    def update_support_ticket(self, ticket_id: int, data: SupportTicketUpdate) -> SupportTicket:
        with self._lock:
            ticket = self.support_tickets.get(ticket_id)
            if ticket is None:
                raise NotFoundError("Support ticket not found")
            # Re-resolving an already resolved ticket stamps resolvedAt again.
            ticket = ticket.model_copy(
                update={
                    "status": data.status or ticket.status,
                    "responseMessage": data.responseMessage or ticket.responseMessage,
                    "resolvedAt": _now() if data.status == "resolvido" else ticket.resolvedAt,
                }
            )
            self.support_tickets[ticket_id] = ticket
            self.save()
            return _copy(ticket)

    # ---------- Announcements ----------

    def get_announcements(self) -> List[Announcement]:
        with self._lock:
            return [_copy(a) for a in self.announcements.values()]

    def create_announcement(self, message: str) -> Announcement:
        with self._lock:
            announcement = Announcement(id=self._next_id(), message=message, createdAt=_now())
            self.announcements[announcement.id] = announcement
            self.save()
            return _copy(announcement)

    def delete_announcement(self, announcement_id: int) -> None:
        with self._lock:
            if announcement_id not in self.announcements:
                raise NotFoundError("Announcement not found")
            del self.announcements[announcement_id]
            self.save()

    # ---------- Chat ----------

    def get_chat_messages(self, limit: Optional[int] = None) -> List[ChatMessage]:
        with self._lock:
            messages = [_copy(m) for m in self.chat_messages.values()]
        if limit is not None:
            messages = messages[-limit:] if limit > 0 else []
        return messages

    def create_chat_message(self, user_id: int, message: str) -> ChatMessage:
        with self._lock:
            chat_message = ChatMessage(id=self._next_id(), userId=user_id, message=message, createdAt=_now())
            self.chat_messages[chat_message.id] = chat_message
            self.save()
            return _copy(chat_message)
