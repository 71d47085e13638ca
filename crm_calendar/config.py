import os
from pathlib import Path

from dotenv import load_dotenv

# Load .env from project root
env_path = Path(__file__).resolve().parent.parent / ".env"
load_dotenv(dotenv_path=env_path)

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./crm_calendar.db")

# Redis is optional - analytics caching is disabled when REDIS_URL is unset
REDIS_URL = os.getenv("REDIS_URL")
ANALYTICS_CACHE_TTL = int(os.getenv("ANALYTICS_CACHE_TTL", "300"))

# Slot generation defaults (minutes)
DEFAULT_SLOT_STEP_MINUTES = int(os.getenv("DEFAULT_SLOT_STEP_MINUTES", "15"))
DEFAULT_BUFFER_MINUTES = int(os.getenv("DEFAULT_BUFFER_MINUTES", "15"))
SLOT_HOLD_TTL_MINUTES = int(os.getenv("SLOT_HOLD_TTL_MINUTES", "10"))

# Conflict detection - suggestions are searched on the same day +/- N days
CONFLICT_SUGGESTION_DAYS = int(os.getenv("CONFLICT_SUGGESTION_DAYS", "3"))
CONFLICT_MAX_SUGGESTIONS = int(os.getenv("CONFLICT_MAX_SUGGESTIONS", "10"))

# Smart scheduling
SMART_SCHEDULE_WINDOW_DAYS = int(os.getenv("SMART_SCHEDULE_WINDOW_DAYS", "14"))
SMART_SCHEDULE_MAX_RETRIES = int(os.getenv("SMART_SCHEDULE_MAX_RETRIES", "3"))
SMART_SCHEDULE_TIMEOUT_SECONDS = float(os.getenv("SMART_SCHEDULE_TIMEOUT_SECONDS", "10"))

# Scoring weights - tune per deployment, they are not invariants
SCORE_WEIGHT_PROXIMITY = float(os.getenv("SCORE_WEIGHT_PROXIMITY", "0.45"))
SCORE_WEIGHT_URGENCY = float(os.getenv("SCORE_WEIGHT_URGENCY", "0.25"))
SCORE_WEIGHT_LOAD = float(os.getenv("SCORE_WEIGHT_LOAD", "0.2"))
SCORE_WEIGHT_HOUR = float(os.getenv("SCORE_WEIGHT_HOUR", "0.1"))
# Minimum finished appointments in an hour bucket before it can be avoided
HOUR_AVOIDANCE_MIN_SAMPLES = int(os.getenv("HOUR_AVOIDANCE_MIN_SAMPLES", "3"))

# Google Calendar push (post-commit, best effort)
GOOGLE_CALENDAR_API = os.getenv("GOOGLE_CALENDAR_API", "https://www.googleapis.com/calendar/v3")
CALENDAR_SYNC_TIMEOUT = float(os.getenv("CALENDAR_SYNC_TIMEOUT", "10"))
