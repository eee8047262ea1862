"""
Centralised configuration constants and environment helpers.
"""

import os
import sys

from dotenv import load_dotenv

load_dotenv()

# ── Backend ──────────────────────────────────────────────────────────
BASE_URL = os.getenv("BASE_URL", "http://localhost:4000/api/v1").rstrip("/")
REQUEST_TIMEOUT_SECONDS = float(os.getenv("REQUEST_TIMEOUT_SECONDS", "30"))

SESSION_ENDPOINT = "/user/me"
LOGIN_ENDPOINT = "/user/login"
LOGOUT_ENDPOINT = "/user/logout"

# A 401 from these never triggers the session-expired flow (login page loop).
AUTH_EXEMPT_ENDPOINTS = (SESSION_ENDPOINT, LOGIN_ENDPOINT, LOGOUT_ENDPOINT)

# Cookie the backend sets on login.
AUTH_COOKIE_NAME = "jwt"

# ── Web app ──────────────────────────────────────────────────────────
# Flask cookie signing key; create_app refuses to start without it.
SECRET_KEY_ENV = "CLINICDESK_SECRET_KEY"
SECRET_KEY_HINT = "run python scripts/generate_secret_key.py --write"
SESSION_IDLE_HOURS = 24

LOGIN_ROUTE = "/login"
NOT_AUTHORIZED_ROUTE = "/not-authorized"

# ── Lists / forms ────────────────────────────────────────────────────
PAGE_SIZE_CHOICES = (10, 20, 50, 100)
DEFAULT_PAGE_SIZE = 10
SEARCH_DEBOUNCE_MS = 300
FORM_CLOSE_DELAY_SECONDS = 0.3

# ── Display ──────────────────────────────────────────────────────────
PLACEHOLDER = "N/A"
DATE_DISPLAY_FORMAT = "%b %d, %Y"
GENERIC_ERROR_MESSAGE = "An unexpected error occurred."

STATUS_BADGES = {
    "completed": "badge-green",
    "pending": "badge-yellow",
    "cancelled": "badge-red",
    "active": "badge-blue",
    "inactive": "badge-gray",
    "available": "badge-green",
    "low": "badge-yellow",
    "out of stock": "badge-red",
}
DEFAULT_BADGE = "badge-default"


def get_env(name: str, hint: str = "") -> str:
    """Return an environment variable or exit with an error message."""
    value = os.getenv(name)
    if not value:
        print(f"ERROR: env var {name} is not set", file=sys.stderr)
        if hint:
            print(f"       {hint}", file=sys.stderr)
        sys.exit(1)
    return value
