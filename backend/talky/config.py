import os
from dotenv import load_dotenv

load_dotenv()

GITHUB_TOKEN = os.getenv("GITHUB_TOKEN")
GITHUB_OWNER = os.getenv("GITHUB_OWNER")
GITHUB_REPO = os.getenv("GITHUB_REPO")
GITHUB_BRANCH = os.getenv("GITHUB_BRANCH", "main")
DATA_PATH = os.getenv("DATA_PATH", "talky/data.json")
LOCAL_DATA_FILE = os.getenv("LOCAL_DATA_FILE", "data/talky.json")

CACHE_TTL_SECONDS = float(os.getenv("CACHE_TTL_SECONDS", "3"))
CALL_RING_TTL_SECONDS = int(os.getenv("CALL_RING_TTL_SECONDS", "3600"))
CALL_RETENTION_SECONDS = int(os.getenv("CALL_RETENTION_SECONDS", "3600"))

CONFLICT_POLICY = os.getenv("CONFLICT_POLICY", "drop")
WRITE_MAX_ATTEMPTS = int(os.getenv("WRITE_MAX_ATTEMPTS", "3"))
WRITE_BACKOFF_SECONDS = float(os.getenv("WRITE_BACKOFF_SECONDS", "0.5"))

JWT_SECRET = os.getenv("JWT_SECRET") or "dev-secret-change-me"
TOKEN_TTL_HOURS = int(os.getenv("TOKEN_TTL_HOURS", "24"))
ADMIN_PASSWORD = os.getenv("ADMIN_PASSWORD")

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")


def github_configured() -> bool:
    return bool(GITHUB_TOKEN and GITHUB_OWNER and GITHUB_REPO)
