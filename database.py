"""
JSON file persistence for the in-memory store.

The whole store is written as one document after every mutation:

    {
      "currentId": 12,
      "users": [[1, {...}], ...],
      "mods": [[2, {...}], ...],
      ...
    }

Nothing here knows about record shapes; `storage.Storage` builds and reads
the snapshot dict.
"""

import json
import logging
from pathlib import Path
from typing import Any, Dict, Optional, Union

logger = logging.getLogger(__name__)

COLLECTIONS = (
    "users",
    "mods",
    "comments",
    "announcements",
    "chatMessages",
    "supportTickets",
)


class PersistenceError(Exception):
    pass


def _write_atomic_json(path: Path, data: Dict[str, Any]) -> None:
    tmp = path.with_suffix(path.suffix + ".tmp")
    tmp.write_text(json.dumps(data, indent=2, ensure_ascii=False), encoding="utf-8")
    tmp.replace(path)


def _check_snapshot(data: Any) -> Dict[str, Any]:
    if not isinstance(data, dict):
        raise PersistenceError("snapshot is not an object")
    if not isinstance(data.get("currentId"), int):
        raise PersistenceError("snapshot has no integer currentId")
    for name in COLLECTIONS:
        pairs = data.get(name, [])
        if not isinstance(pairs, list):
            raise PersistenceError(f"{name} is not a list")
        for pair in pairs:
            if not (isinstance(pair, list) and len(pair) == 2 and isinstance(pair[0], int) and isinstance(pair[1], dict)):
                raise PersistenceError(f"{name} holds a malformed [id, record] pair")
    return data


class JsonFileDatabase:
    def __init__(self, path: Union[str, Path]) -> None:
        self.path = Path(path)

    def save(self, snapshot: Dict[str, Any]) -> bool:
        """Overwrite the file with `snapshot`. Returns False if the write failed.

        A failed write is logged and swallowed: the process keeps serving from
        memory and the next successful save catches the file up.
        """
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            _write_atomic_json(self.path, snapshot)
        except (OSError, TypeError, ValueError):
            logger.exception("Could not persist storage snapshot to %s", self.path)
            return False
        return True

    def load(self) -> Optional[Dict[str, Any]]:
        """Return the stored snapshot, or None if there is nothing usable.

        A missing file and a corrupt file both yield None; the corrupt case is
        logged so the operator can recover it by hand.
        """
        if not self.path.exists():
            logger.info("No storage snapshot at %s, starting empty", self.path)
            return None
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
            return _check_snapshot(data)
        except (OSError, ValueError, PersistenceError):
            logger.exception("Storage snapshot at %s is unreadable, starting empty", self.path)
            return None
