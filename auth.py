import hashlib
import hmac
import secrets
import threading
from datetime import datetime, timedelta, timezone
from typing import Dict, Optional, Tuple

PBKDF2_ITERATIONS = 200_000


def _now() -> datetime:
    return datetime.now(timezone.utc)


def hash_password(password: str, salt: Optional[str] = None) -> str:
    if salt is None:
        salt = secrets.token_hex(16)
    digest = hashlib.pbkdf2_hmac("sha256", password.encode(), salt.encode(), PBKDF2_ITERATIONS).hex()
    return f"{salt}${digest}"


def verify_password(password: str, stored_hash: str) -> bool:
    try:
        salt, _digest = stored_hash.split("$")
    except ValueError:
        return False
    return hmac.compare_digest(hash_password(password, salt), stored_hash)


class SessionStore:
    """Bearer tokens issued at login. Kept in memory only; a restart logs everyone out."""

    def __init__(self, ttl: timedelta = timedelta(days=30)) -> None:
        self.ttl = ttl
        self._lock = threading.Lock()
        self._sessions: Dict[str, Tuple[int, datetime]] = {}

    def create(self, user_id: int) -> str:
        token = secrets.token_urlsafe(32)
        with self._lock:
            self._sessions[token] = (user_id, _now() + self.ttl)
        return token

    def resolve(self, token: str) -> Optional[int]:
        with self._lock:
            entry = self._sessions.get(token)
            if entry is None:
                return None
            user_id, expires_at = entry
            if expires_at < _now():
                del self._sessions[token]
                return None
            return user_id

    def revoke(self, token: str) -> None:
        with self._lock:
            self._sessions.pop(token, None)

    def revoke_user(self, user_id: int) -> None:
        with self._lock:
            for token in [t for t, (uid, _) in self._sessions.items() if uid == user_id]:
                del self._sessions[token]
