import os

class Config:
    """
    Central configuration for 75Guard.

    Uses environment variables in production,
    and safe fallbacks locally.
    """

    # Flask security key
    # In production this MUST come from the environment
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev_secret_key_change_me")

    # sqlite file holding the subject list
    DATABASE_PATH = os.environ.get(
        "DATABASE_PATH",
        os.path.join(os.path.dirname(__file__), "75guard.db")  # local fallback
    )

    CORS_ORIGINS = os.environ.get("CORS_ORIGINS", "*")

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

    # Optional JSON file overriding the built-in semester calendar
    SEMESTER_FILE = os.environ.get("SEMESTER_FILE", "")

    # Used when an imported subject omits its term shape
    DEFAULT_TOTAL_SESSIONS = int(os.environ.get("DEFAULT_TOTAL_SESSIONS", "75"))
    DEFAULT_SESSIONS_PER_WEEK = int(os.environ.get("DEFAULT_SESSIONS_PER_WEEK", "4"))
