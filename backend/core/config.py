import os
from pathlib import Path
from dotenv import load_dotenv

_BACKEND_ROOT = Path(__file__).resolve().parents[1]
_BACKEND_ENV_PATH = _BACKEND_ROOT / ".env"
load_dotenv(dotenv_path=_BACKEND_ENV_PATH, override=False)


def _env_flag(name: str, default: str = "false") -> bool:
    return str(os.getenv(name, default)).strip().lower() in {"1", "true", "yes", "on"}


QA_MODE = _env_flag("QA_MODE")

# persistence: memory | file | redis
SESSION_STORE_BACKEND = str(os.getenv("SESSION_STORE_BACKEND") or "memory").strip().lower()
SESSION_STORE_PATH = Path(
    str(os.getenv("SESSION_STORE_PATH") or (_BACKEND_ROOT / "data" / "interview_sessions.json"))
)
SESSION_STORAGE_KEY = str(os.getenv("SESSION_STORAGE_KEY") or "interview-session-v2").strip()
REDIS_URL = str(os.getenv("REDIS_URL") or "").strip()

# round sequencer
QUESTIONS_PER_SESSION = 15

# scoring scales
THEORY_RATING_MAX = max(1, int(os.getenv("THEORY_RATING_MAX", "5")))
THEORY_PASS_THRESHOLD = max(1, int(os.getenv("THEORY_PASS_THRESHOLD", "3")))
CODE_RATING_MAX = max(1, int(os.getenv("CODE_RATING_MAX", "10")))
DEFAULT_THEORY_TIME_SEC = 30
DEFAULT_MATCH_TIME_SEC = 60
DEFAULT_CODE_TIME_SEC = 120

# proctoring
PROCTOR_WARNING_CLEAR_SEC = max(0.0, float(os.getenv("PROCTOR_WARNING_CLEAR_SEC", "5")))
PROCTOR_FINAL_WARNING_AT = max(1, int(os.getenv("PROCTOR_FINAL_WARNING_AT", "3")))

# runtime registry
SESSION_CLEANUP_TTL_SEC = max(60, int(os.getenv("SESSION_CLEANUP_TTL_SEC", "1800")))
SESSION_CLEANUP_INTERVAL_SEC = max(30, int(os.getenv("SESSION_CLEANUP_INTERVAL_SEC", "120")))

# topics offered when no session is active
AVAILABLE_TOPICS = [
    item.strip()
    for item in str(os.getenv("AVAILABLE_TOPICS") or "DBMS,React,DSA,JavaScript,Python,System Design,SQL").split(",")
    if item.strip()
]

CORS_ALLOW_ORIGINS = str(os.getenv("CORS_ALLOW_ORIGINS") or "").strip()
