"""
MedChain Backend – Configuration Loader
Loads all secrets and settings from .env via environment variables.
No secret may be hard-coded anywhere in the codebase.
"""

import os
from pathlib import Path
from dotenv import load_dotenv

# Load .env from project root
_env_path = Path(__file__).resolve().parent.parent.parent / ".env"
load_dotenv(dotenv_path=_env_path)


class Config:
    """Base configuration – values sourced exclusively from environment."""

    # --- Secrets ---
    SUPABASE_URL: str = os.environ.get("SUPABASE_URL", "")
    SUPABASE_KEY: str = os.environ.get("SUPABASE_KEY", "")
    FLASK_SECRET_KEY: str = os.environ.get("FLASK_SECRET_KEY", "")
    JWT_SECRET: str = os.environ.get("JWT_SECRET", "")

    # --- App ---
    APP_ENV: str = os.environ.get("APP_ENV", "development")
    DEBUG: bool = APP_ENV == "development"
    FRONTEND_URL: str = os.environ.get("FRONTEND_URL", "http://localhost:5000")
    SESSION_TTL_HOURS: int = int(os.environ.get("SESSION_TTL_HOURS", "12"))

    # --- Verification polling ---
    POLL_INTERVAL_SECONDS: float = float(os.environ.get("POLL_INTERVAL_SECONDS", "5"))
    POLL_MAX_WORKERS: int = int(os.environ.get("POLL_MAX_WORKERS", "4"))

    # --- Rate limiting ---
    RATE_LIMIT_DEFAULT: str = "60/minute"

    # --- Validation ---
    @classmethod
    def validate(cls) -> None:
        """Raise on missing critical environment variables."""
        required = ["SUPABASE_URL", "SUPABASE_KEY", "FLASK_SECRET_KEY", "JWT_SECRET"]
        missing = [k for k in required if not getattr(cls, k)]
        if missing:
            raise EnvironmentError(
                f"Missing required environment variables: {', '.join(missing)}. "
                "Ensure a .env file exists with all required values."
            )
