import os
from typing import Tuple


def _int_env(name: str, default: int) -> int:
    value = os.environ.get(name, "").strip()
    return int(value) if value else default


def _days_env(name: str, default: str) -> Tuple[int, ...]:
    raw = os.environ.get(name, default)
    return tuple(int(d) for d in raw.split(",") if d.strip())


BOT_TOKEN = os.environ.get("BOT_TOKEN", "")
EPUB_PATH = os.environ.get("EPUB_PATH", "data/book.epub")
BOOK_TABLE_PATH = os.environ.get("BOOK_TABLE_PATH", "")
DB_PATH = os.environ.get("DB_PATH", "svitbiblii.db")
LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

TZ_NAME = os.environ.get("TZ_NAME", "Europe/Kyiv")
# 0 = Sunday, as in telegram.ext.JobQueue.run_daily
MAILING_DAYS = _days_env("MAILING_DAYS", "3,5")
MAILING_HOUR = _int_env("MAILING_HOUR", 8)

GEMINI_API_KEY = os.environ.get("GEMINI_API_KEY", "")
GEMINI_MODEL = os.environ.get("GEMINI_MODEL", "gemini-pro-latest")
AI_MAX_REQUESTS_PER_DAY = _int_env("AI_MAX_REQUESTS_PER_DAY", 3)
AI_MAX_RESPONSE_LENGTH = _int_env("AI_MAX_RESPONSE_LENGTH", 2000)
ADMIN_USER_ID = os.environ.get("ADMIN_USER_ID", "")


def is_admin(user_id: int) -> bool:
    return bool(ADMIN_USER_ID) and str(user_id) == str(ADMIN_USER_ID)
