import logging
import os
import time
from datetime import timedelta
from typing import List, Optional

from fastapi import (
    Depends,
    FastAPI,
    File,
    Form,
    Header,
    HTTPException,
    Query,
    Request,
    Response,
    UploadFile,
    WebSocket,
    WebSocketDisconnect,
)
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles
from pydantic import BaseModel, ValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException

from auth import SessionStore, verify_password
from config import Config
from database import JsonFileDatabase
from realtime import Broadcaster
from schemas import (
    Announcement,
    AnnouncementCreate,
    ChatIn,
    ChatMessage,
    Comment,
    CommentCreate,
    LoginRequest,
    Mod,
    ModCreate,
    ModUpdate,
    PublicUser,
    RateRequest,
    RegisterRequest,
    ReportRequest,
    SupportTicket,
    SupportTicketCreate,
    SupportTicketUpdate,
    User,
)
from storage import ConflictError, NotFoundError, Storage
from uploads import UploadError, save_upload

logging.basicConfig(
    level=Config.LOG_LEVEL,
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)
logger = logging.getLogger("modhub")

app = FastAPI(title="ModHub API")

app.add_middleware(
    CORSMiddleware,
    allow_origins=Config.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.mount("/uploads", StaticFiles(directory=Config.UPLOAD_FOLDER, check_dir=False), name="uploads")

storage = Storage(
    JsonFileDatabase(Config.DATA_FILE),
    admin_username=Config.ADMIN_USERNAME,
    admin_password=Config.ADMIN_PASSWORD,
)
broadcaster = Broadcaster()
sessions = SessionStore(ttl=timedelta(days=Config.SESSION_TTL_DAYS))


# ---------- Auth Models ----------

class AuthResponse(BaseModel):
    token: str
    user: PublicUser


class UploadResponse(BaseModel):
    url: str


# ---------- Startup: restore persisted state ----------

@app.on_event("startup")
def load_storage():
    os.makedirs(Config.UPLOAD_FOLDER, exist_ok=True)
    storage.load()
    logger.info("Storage ready: %s", storage.stats())


# ---------- Error handlers ----------

def _validation_message(errors) -> str:
    parts = []
    for err in errors:
        loc = ".".join(str(p) for p in err.get("loc", ()) if p != "body")
        parts.append(f"{loc}: {err.get('msg')}" if loc else str(err.get("msg")))
    return "; ".join(parts) or "Invalid request"


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(_request: Request, exc: StarletteHTTPException):
    return JSONResponse(status_code=exc.status_code, content={"message": str(exc.detail)}, headers=exc.headers)


@app.exception_handler(RequestValidationError)
async def validation_error_handler(_request: Request, exc: RequestValidationError):
    return JSONResponse(status_code=400, content={"message": _validation_message(exc.errors())})


@app.exception_handler(NotFoundError)
async def not_found_handler(_request: Request, exc: NotFoundError):
    return JSONResponse(status_code=404, content={"message": str(exc)})


@app.exception_handler(ConflictError)
async def conflict_handler(_request: Request, exc: ConflictError):
    return JSONResponse(status_code=409, content={"message": str(exc)})


@app.exception_handler(UploadError)
async def upload_error_handler(_request: Request, exc: UploadError):
    return JSONResponse(status_code=400, content={"message": str(exc)})


@app.exception_handler(Exception)
async def server_error_handler(request: Request, exc: Exception):
    logger.exception("Server error on %s %s", request.method, request.url.path)
    return JSONResponse(status_code=500, content={"message": "Internal Server Error"})


@app.middleware("http")
async def log_api_requests(request: Request, call_next):
    start = time.perf_counter()
    response = await call_next(request)
    if request.url.path.startswith("/api"):
        duration_ms = (time.perf_counter() - start) * 1000
        logger.info("%s %s %s in %dms", request.method, request.url.path, response.status_code, duration_ms)
    return response


# ---------- Dependencies ----------

def get_storage() -> Storage:
    return storage


def get_broadcaster() -> Broadcaster:
    return broadcaster


def get_sessions() -> SessionStore:
    return sessions


def _bearer_token(authorization: Optional[str]) -> Optional[str]:
    if not authorization or not authorization.lower().startswith("bearer "):
        return None
    return authorization.split(" ", 1)[1].strip() or None


def get_optional_user(
    authorization: Optional[str] = Header(None),
    store: Storage = Depends(get_storage),
    session_store: SessionStore = Depends(get_sessions),
) -> Optional[User]:
    token = _bearer_token(authorization)
    if not token:
        return None
    user_id = session_store.resolve(token)
    if user_id is None:
        return None
    user = store.get_user(user_id)
    if user is None or user.isBanned:
        return None
    return user


def get_current_user(user: Optional[User] = Depends(get_optional_user)) -> User:
    if user is None:
        raise HTTPException(status_code=401, detail="Not authenticated")
    return user


def require_admin(user: User = Depends(get_current_user)) -> User:
    if not user.isAdmin:
        raise HTTPException(status_code=403, detail="Admin access required")
    return user


def _public(users: List[User]) -> List[PublicUser]:
    return [PublicUser.from_user(u) for u in users]


# ---------- Public endpoints ----------

@app.get("/")
def root():
    return {"service": "ModHub API", "status": "ok"}


@app.get("/api/status")
def status(store: Storage = Depends(get_storage), hub: Broadcaster = Depends(get_broadcaster)):
    return {"status": "ok", "connections": len(hub.connections), "storage": store.stats()}


# ---------- Auth endpoints ----------

@app.post("/api/register", response_model=AuthResponse, status_code=201)
def register(
    payload: RegisterRequest,
    store: Storage = Depends(get_storage),
    session_store: SessionStore = Depends(get_sessions),
):
    user = store.create_user(
        payload.username.strip(),
        payload.password,
        bio=payload.bio,
        profile_picture=payload.profilePicture,
    )
    token = session_store.create(user.id)
    logger.info("Registered user %s (id %d)", user.username, user.id)
    return AuthResponse(token=token, user=PublicUser.from_user(user))


@app.post("/api/login", response_model=AuthResponse)
def login(
    payload: LoginRequest,
    store: Storage = Depends(get_storage),
    session_store: SessionStore = Depends(get_sessions),
):
    user = store.get_user_by_username(payload.username)
    if not user or not verify_password(payload.password, user.passwordHash):
        raise HTTPException(status_code=401, detail="Invalid username or password")
    if user.isBanned:
        raise HTTPException(status_code=403, detail="User is banned")
    token = session_store.create(user.id)
    return AuthResponse(token=token, user=PublicUser.from_user(user))


@app.post("/api/logout", status_code=204)
def logout(
    authorization: Optional[str] = Header(None),
    session_store: SessionStore = Depends(get_sessions),
):
    token = _bearer_token(authorization)
    if token:
        session_store.revoke(token)
    return Response(status_code=204)


@app.get("/api/user", response_model=PublicUser)
def me(user: User = Depends(get_current_user)):
    return PublicUser.from_user(user)


# ---------- Uploads ----------

@app.post("/api/upload", response_model=UploadResponse)
async def upload(file: UploadFile = File(...), _user: User = Depends(get_current_user)):
    url = await save_upload(file, Config.UPLOAD_FOLDER, Config.MAX_UPLOAD_BYTES, Config.ALLOWED_IMAGE_TYPES)
    return UploadResponse(url=url)


# ---------- Mods ----------

@app.get("/api/mods", response_model=List[Mod])
def list_mods(q: Optional[str] = None, store: Storage = Depends(get_storage)):
    return store.search_mods(q) if q else store.get_mods()


@app.get("/api/mods/search", response_model=List[Mod])
def search_mods(q: str = "", store: Storage = Depends(get_storage)):
    return store.search_mods(q)


@app.get("/api/mods/{mod_id}", response_model=Mod)
def get_mod(mod_id: int, store: Storage = Depends(get_storage)):
    mod = store.get_mod_by_id(mod_id)
    if mod is None:
        raise HTTPException(status_code=404, detail="Mod not found")
    return mod


@app.post("/api/mods", response_model=Mod, status_code=201)
def create_mod(payload: ModCreate, store: Storage = Depends(get_storage), _admin: User = Depends(require_admin)):
    mod = store.create_mod(payload)
    logger.info("Created mod %d: %s", mod.id, mod.title)
    return mod


@app.put("/api/mods/{mod_id}", response_model=Mod)
def update_mod(
    mod_id: int,
    payload: ModUpdate,
    store: Storage = Depends(get_storage),
    _admin: User = Depends(require_admin),
):
    return store.update_mod(mod_id, payload)


@app.delete("/api/mods/{mod_id}", status_code=204)
def delete_mod(mod_id: int, store: Storage = Depends(get_storage), _admin: User = Depends(require_admin)):
    store.delete_mod(mod_id)
    return Response(status_code=204)


@app.post("/api/mods/{mod_id}/rate", response_model=Mod)
def rate_mod(mod_id: int, payload: RateRequest, store: Storage = Depends(get_storage)):
    return store.rate_mod(mod_id, payload.rating)


# ---------- Comments ----------

@app.get("/api/mods/{mod_id}/comments", response_model=List[Comment])
def list_comments(mod_id: int, store: Storage = Depends(get_storage)):
    return store.get_comments_by_mod_id(mod_id)


@app.post("/api/mods/{mod_id}/comments", response_model=Comment, status_code=201)
def create_comment(
    mod_id: int,
    payload: CommentCreate,
    store: Storage = Depends(get_storage),
    user: Optional[User] = Depends(get_optional_user),
):
    if store.get_mod_by_id(mod_id) is None:
        raise HTTPException(status_code=404, detail="Mod not found")
    if payload.replyToId is not None:
        parent = store.get_comment(payload.replyToId)
        # Threads are one level deep: replies attach to top-level comments only.
        if parent is None or parent.modId != mod_id or parent.replyToId is not None:
            raise HTTPException(status_code=400, detail="replyToId must reference a top-level comment on this mod")
    return store.create_comment(
        mod_id,
        payload.name,
        payload.content,
        user_id=user.id if user else None,
        reply_to_id=payload.replyToId,
    )


@app.post("/api/comments/{comment_id}/report", response_model=Comment)
async def report_comment(
    comment_id: int,
    payload: ReportRequest,
    store: Storage = Depends(get_storage),
    hub: Broadcaster = Depends(get_broadcaster),
):
    comment = store.report_comment(comment_id, payload.reportReason)
    await hub.broadcast("comment_reported", comment)
    return comment


@app.get("/api/comments/reported", response_model=List[Comment])
def reported_comments(
    unresolved: bool = False,
    store: Storage = Depends(get_storage),
    _admin: User = Depends(require_admin),
):
    return store.get_reported_comments(unresolved_only=unresolved)


@app.put("/api/comments/{comment_id}/resolve", response_model=Comment)
def resolve_comment(comment_id: int, store: Storage = Depends(get_storage), _admin: User = Depends(require_admin)):
    return store.resolve_reported_comment(comment_id)


@app.get("/api/comments/{comment_id}/replies", response_model=List[Comment])
def comment_replies(comment_id: int, store: Storage = Depends(get_storage)):
    return store.get_replies_by_comment_id(comment_id)


# ---------- Announcements ----------

@app.get("/api/announcements", response_model=List[Announcement])
def list_announcements(store: Storage = Depends(get_storage)):
    return store.get_announcements()


@app.post("/api/announcements", response_model=Announcement, status_code=201)
async def create_announcement(
    payload: AnnouncementCreate,
    store: Storage = Depends(get_storage),
    hub: Broadcaster = Depends(get_broadcaster),
    _admin: User = Depends(require_admin),
):
    announcement = store.create_announcement(payload.message)
    await hub.broadcast("announcement", announcement)
    return announcement


@app.delete("/api/announcements/{announcement_id}")
async def delete_announcement(
    announcement_id: int,
    store: Storage = Depends(get_storage),
    hub: Broadcaster = Depends(get_broadcaster),
    _admin: User = Depends(require_admin),
):
    store.delete_announcement(announcement_id)
    await hub.broadcast("announcement_deleted", {"id": announcement_id})
    return {"ok": True}


# ---------- Users ----------

@app.get("/api/users", response_model=List[PublicUser])
def list_users(store: Storage = Depends(get_storage), _admin: User = Depends(require_admin)):
    return _public(store.get_all_users())


@app.get("/api/users/reported", response_model=List[PublicUser])
def reported_users(store: Storage = Depends(get_storage), _admin: User = Depends(require_admin)):
    return _public(store.get_reported_users())


@app.get("/api/users/{user_id}", response_model=PublicUser)
def get_user(user_id: int, store: Storage = Depends(get_storage)):
    user = store.get_user(user_id)
    if user is None:
        raise HTTPException(status_code=404, detail="User not found")
    return PublicUser.from_user(user)


@app.put("/api/users/{user_id}/ban", response_model=PublicUser)
async def ban_user(
    user_id: int,
    store: Storage = Depends(get_storage),
    hub: Broadcaster = Depends(get_broadcaster),
    session_store: SessionStore = Depends(get_sessions),
    _admin: User = Depends(require_admin),
):
    user = store.ban_user(user_id)
    session_store.revoke_user(user_id)
    await hub.broadcast("user_banned", {"userId": user_id})
    return PublicUser.from_user(user)


@app.put("/api/users/{user_id}/unban", response_model=PublicUser)
async def unban_user(
    user_id: int,
    store: Storage = Depends(get_storage),
    hub: Broadcaster = Depends(get_broadcaster),
    _admin: User = Depends(require_admin),
):
    user = store.unban_user(user_id)
    await hub.broadcast("user_unbanned", {"userId": user_id})
    return PublicUser.from_user(user)


@app.put("/api/users/{user_id}/approve", response_model=PublicUser)
def approve_user(user_id: int, store: Storage = Depends(get_storage), _admin: User = Depends(require_admin)):
    return PublicUser.from_user(store.approve_user_profile(user_id))


@app.put("/api/users/{user_id}/profile", response_model=PublicUser)
async def update_profile(
    user_id: int,
    bio: Optional[str] = Form(None),
    profilePicture: Optional[UploadFile] = File(None),
    store: Storage = Depends(get_storage),
    user: User = Depends(get_current_user),
):
    if user.id != user_id and not user.isAdmin:
        raise HTTPException(status_code=403, detail="Not allowed")
    if store.get_user(user_id) is None:
        raise HTTPException(status_code=404, detail="User not found")
    picture_url = None
    if profilePicture is not None and profilePicture.filename:
        picture_url = await save_upload(
            profilePicture, Config.UPLOAD_FOLDER, Config.MAX_UPLOAD_BYTES, Config.ALLOWED_IMAGE_TYPES
        )
    updated = store.update_user_profile(user_id, bio=bio, profile_picture=picture_url)
    return PublicUser.from_user(updated)


@app.post("/api/users/{user_id}/report", response_model=PublicUser)
async def report_user(
    user_id: int,
    payload: ReportRequest,
    store: Storage = Depends(get_storage),
    hub: Broadcaster = Depends(get_broadcaster),
):
    user = store.report_user(user_id, payload.reportReason)
    await hub.broadcast("user_reported", {"userId": user_id, "reason": payload.reportReason})
    return PublicUser.from_user(user)


# ---------- Support tickets ----------

@app.post("/api/support", response_model=SupportTicket, status_code=201)
async def create_ticket(
    payload: SupportTicketCreate,
    store: Storage = Depends(get_storage),
    hub: Broadcaster = Depends(get_broadcaster),
    user: User = Depends(get_current_user),
):
    ticket = store.create_support_ticket(user.id, payload.subject, payload.message)
    await hub.broadcast("support_ticket_created", ticket)
    return ticket


@app.get("/api/support", response_model=List[SupportTicket])
def list_tickets(store: Storage = Depends(get_storage), user: User = Depends(get_current_user)):
    if user.isAdmin:
        return store.get_support_tickets()
    return store.get_support_tickets(user_id=user.id)


@app.get("/api/support/{ticket_id}", response_model=SupportTicket)
def get_ticket(ticket_id: int, store: Storage = Depends(get_storage), user: User = Depends(get_current_user)):
    ticket = store.get_support_ticket_by_id(ticket_id)
    if ticket is None:
        raise HTTPException(status_code=404, detail="Support ticket not found")
    if not user.isAdmin and ticket.userId != user.id:
        raise HTTPException(status_code=403, detail="Not allowed")
    return ticket


@app.put("/api/support/{ticket_id}", response_model=SupportTicket)
async def update_ticket(
    ticket_id: int,
    payload: SupportTicketUpdate,
    store: Storage = Depends(get_storage),
    hub: Broadcaster = Depends(get_broadcaster),
    _admin: User = Depends(require_admin),
):
    ticket = store.update_support_ticket(ticket_id, payload)
    if payload.status == "resolvido":
        await hub.broadcast("support_ticket_resolved", ticket)
    return ticket


# ---------- Chat ----------

@app.get("/api/chat", response_model=List[ChatMessage])
def chat_history(limit: Optional[int] = Query(None, ge=1, le=500), store: Storage = Depends(get_storage)):
    return store.get_chat_messages(limit=limit)


async def _handle_chat(
    raw: str,
    token: Optional[str],
    store: Storage,
    hub: Broadcaster,
    session_store: SessionStore,
) -> None:
    # Resolved per message so logout and ban take effect on sockets already open.
    user_id = session_store.resolve(token) if token else None
    if user_id is None:
        logger.info("Ignoring chat message from anonymous socket")
        return
    user = store.get_user(user_id)
    if user is None or user.isBanned:
        logger.info("Ignoring chat message from user %s", user_id)
        return
    try:
        payload = ChatIn.model_validate_json(raw)
    except ValidationError:
        logger.info("Ignoring malformed chat message from user %d", user_id)
        return
    chat_message = store.create_chat_message(user.id, payload.message)
    await hub.broadcast("chat", chat_message)


@app.websocket("/ws")
async def websocket_endpoint(
    websocket: WebSocket,
    token: Optional[str] = Query(None),
    store: Storage = Depends(get_storage),
    hub: Broadcaster = Depends(get_broadcaster),
    session_store: SessionStore = Depends(get_sessions),
):
    await hub.connect(websocket)
    try:
        while True:
            raw = await websocket.receive_text()
            await _handle_chat(raw, token, store, hub, session_store)
    except WebSocketDisconnect:
        logger.debug("WebSocket closed by client")
    finally:
        hub.disconnect(websocket)


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host=Config.HOST, port=Config.PORT)
