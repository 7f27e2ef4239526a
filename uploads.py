import logging
import os
import secrets
import time
from typing import Iterable

from fastapi import UploadFile

logger = logging.getLogger(__name__)

_EXTENSIONS = {
    "image/jpeg": ".jpg",
    "image/png": ".png",
    "image/gif": ".gif",
}


class UploadError(Exception):
    pass


def _unique_name(content_type: str) -> str:
    # The extension decides the served Content-Type, so it never comes from the client filename.
    return f"{int(time.time() * 1000)}-{secrets.randbelow(10**9)}{_EXTENSIONS[content_type]}"


async def save_upload(
    file: UploadFile,
    folder: str,
    max_bytes: int,
    allowed_types: Iterable[str],
) -> str:
    """Store an uploaded image and return the URL it is served from.

    Reads at most max_bytes + 1 bytes, so an oversize upload is rejected
    without buffering all of it.
    """
    if file.content_type not in set(allowed_types) or file.content_type not in _EXTENSIONS:
        raise UploadError("Invalid file type")
    content = await file.read(max_bytes + 1)
    if len(content) > max_bytes:
        raise UploadError("File too large")
    if not content:
        raise UploadError("No file uploaded")

    os.makedirs(folder, exist_ok=True)
    filename = _unique_name(file.content_type)
    with open(os.path.join(folder, filename), "wb") as out:
        out.write(content)
    logger.info("Stored upload %s (%d bytes)", filename, len(content))
    return f"/uploads/{filename}"
