import os
import re
from pathlib import Path

from dotenv import load_dotenv

# Load .env file into environment
load_dotenv()

STATE_DIR = Path(os.getenv("JOBREC_STATE_DIR", "state"))
POLICY_DB_PATH = Path(os.getenv("JOBREC_POLICY_DB", str(STATE_DIR / "bandit_policy.sqlite3")))
BEHAVIOR_DB_PATH = Path(os.getenv("JOBREC_BEHAVIOR_DB", str(STATE_DIR / "behavior_log.sqlite3")))

VECTOR_SEARCH_URL = os.getenv("JOBREC_VECTOR_SEARCH_URL", "").strip()
VECTOR_SEARCH_API_KEY = os.getenv("JOBREC_VECTOR_SEARCH_API_KEY")
RANKING_CONFIG_PATH = os.getenv("JOBREC_RANKING_CONFIG")

_ID_RE = re.compile(r"^[A-Za-z0-9_.:@-]{1,128}$")


def sanitize_user_id(value: object) -> str:
    if not isinstance(value, str):
        raise ValueError("user_id must be a string")
    raw = value.strip()
    if not _ID_RE.fullmatch(raw):
        raise ValueError(f"invalid user_id: {value!r}")
    return raw


def sanitize_job_id(value: object) -> str:
    if not isinstance(value, (str, int)) or isinstance(value, bool):
        raise ValueError("job_id must be a string")
    raw = str(value).strip()
    if not _ID_RE.fullmatch(raw):
        raise ValueError(f"invalid job_id: {value!r}")
    return raw
