from pathlib import Path
import os

BASE_DIR = Path(__file__).resolve().parent.parent

DATABASE_URL = os.getenv("NOJ_DATABASE_URL") or f"sqlite:///{BASE_DIR / 'noj.db'}"
STORAGE_DIR = Path(os.getenv("NOJ_STORAGE_DIR") or str(BASE_DIR / "storage"))

SECRET_KEY = os.getenv("NOJ_SECRET_KEY", "your-secret-key-change-in-production")
ALGORITHM = "HS256"
TOKEN_TTL_SECONDS = int(os.getenv("NOJ_TOKEN_TTL_SECONDS", "86400"))
BCRYPT_ROUNDS = int(os.getenv("NOJ_BCRYPT_ROUNDS", "12"))

# shared secret presented by the grading pipeline when it reports results
SANDBOX_TOKEN = os.getenv("NOJ_SANDBOX_TOKEN", "sandbox-token-change-in-production")

# uploaded test case archives larger than this are refused
MAX_TEST_CASE_BYTES = int(os.getenv("NOJ_MAX_TEST_CASE_BYTES", str(64 * 1024 * 1024)))

LOG_LEVEL = os.getenv("NOJ_LOG_LEVEL", "INFO")
DEFAULT_PAGE_SIZE = int(os.getenv("NOJ_DEFAULT_PAGE_SIZE", "10"))

HOST = os.getenv("NOJ_HOST", "127.0.0.1")
PORT = int(os.getenv("NOJ_PORT", "8000"))
