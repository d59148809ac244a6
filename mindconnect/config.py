from __future__ import annotations
import os
from dotenv import load_dotenv

load_dotenv()

DATABASE_URL = os.getenv("DATABASE_URL", "").strip()

SESSION_SECRET = os.getenv("SESSION_SECRET", "").strip() or "dev-session-secret"
SESSION_TTL_SECONDS = int(os.getenv("SESSION_TTL_SECONDS", str(7 * 24 * 60 * 60)))
SESSION_HTTPS_ONLY = os.getenv("SESSION_HTTPS_ONLY", "false").lower() in ("true", "1", "yes")
LOCAL_SESSION_TTL_SECONDS = int(os.getenv("LOCAL_SESSION_TTL_SECONDS", "86400"))

# Empty issuer means local development login.
OIDC_ISSUER_URL = os.getenv("OIDC_ISSUER_URL", "").strip()
OIDC_CLIENT_ID = os.getenv("OIDC_CLIENT_ID", "").strip()
OIDC_CLIENT_SECRET = os.getenv("OIDC_CLIENT_SECRET", "").strip() or None
OIDC_HTTP_TIMEOUT = float(os.getenv("OIDC_HTTP_TIMEOUT", "10"))
OIDC_SCOPE = "openid email profile offline_access"

ADMIN_API_KEY = os.getenv("ADMIN_API_KEY", "").strip() or None

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

POST_CATEGORIES = ["free", "worry", "info"]


def oidc_enabled() -> bool:
    return bool(OIDC_ISSUER_URL and OIDC_CLIENT_ID)
