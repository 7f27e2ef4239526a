import os

BASE_DIR = os.path.abspath(os.path.dirname(__file__))


def _csv(value: str) -> list:
    return [item.strip() for item in value.split(",") if item.strip()]


class Config:
    HOST = os.getenv("HOST", "0.0.0.0")
    PORT = int(os.getenv("PORT", "5000"))
    LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
    CORS_ORIGINS = _csv(os.getenv("CORS_ORIGINS", "*"))

    DATA_FILE = os.getenv("DATA_FILE") or os.path.join(BASE_DIR, "data", "storage.json")

    UPLOAD_FOLDER = os.getenv("UPLOAD_FOLDER") or os.path.join(BASE_DIR, "uploads")
    MAX_UPLOAD_BYTES = int(os.getenv("MAX_UPLOAD_BYTES", str(5 * 1024 * 1024)))  # 5MB
    ALLOWED_IMAGE_TYPES = {"image/jpeg", "image/png", "image/gif"}

    ADMIN_USERNAME = os.getenv("ADMIN_USERNAME", "admin")
    ADMIN_PASSWORD = os.getenv("ADMIN_PASSWORD", "admin123")
    SESSION_TTL_DAYS = int(os.getenv("SESSION_TTL_DAYS", "30"))
