"""
Engine Configuration

Loads environment variables and provides configuration settings.
"""

from dataclasses import dataclass
from typing import Optional
from pathlib import Path
import logging
import os

from dotenv import load_dotenv

logger = logging.getLogger(__name__)

# Load .env.local first (for local development), then .env as fallback
ROOT_DIR = Path(__file__).parent.parent
env_local = ROOT_DIR / '.env.local'
env_file = ROOT_DIR / '.env'

if env_local.exists():
    load_dotenv(env_local)
elif env_file.exists():
    load_dotenv(env_file)

# Gemini
GOOGLE_API_KEY = os.getenv("GOOGLE_API_KEY")
GEMINI_MODEL = os.getenv("GEMINI_MODEL", "gemini-2.0-flash")
MODEL_TIMEOUT_SECONDS = float(os.getenv("MODEL_TIMEOUT_SECONDS", "8.0"))

# MongoDB
MONGODB_URI = os.getenv("MONGODB_URI", "mongodb://localhost:27017")
DATABASE_NAME = os.getenv("DATABASE_NAME", "tutor_engine")
USE_MONGO = os.getenv("USE_MONGO", "false").lower() in ("1", "true", "yes")
PERSISTENCE_TIMEOUT_SECONDS = float(os.getenv("PERSISTENCE_TIMEOUT_SECONDS", "5.0"))

# Sessions
SESSION_IDLE_MINUTES = int(os.getenv("SESSION_IDLE_MINUTES", "30"))
DEFAULT_STRICTNESS = os.getenv("DEFAULT_STRICTNESS", "moderate")
MAX_MESSAGE_CHARS = int(os.getenv("MAX_MESSAGE_CHARS", "2000"))

# Server
BACKEND_HOST = os.getenv("BACKEND_HOST", "0.0.0.0")
BACKEND_PORT = int(os.getenv("BACKEND_PORT", "8000"))
CORS_ORIGINS = os.getenv("CORS_ORIGINS", "*")


@dataclass
class Settings:
    """Snapshot of the environment, injectable for tests."""
    google_api_key: Optional[str] = None
    gemini_model: str = GEMINI_MODEL
    model_timeout_seconds: float = MODEL_TIMEOUT_SECONDS
    mongodb_uri: str = MONGODB_URI
    database_name: str = DATABASE_NAME
    use_mongo: bool = False
    persistence_timeout_seconds: float = PERSISTENCE_TIMEOUT_SECONDS
    session_idle_minutes: int = SESSION_IDLE_MINUTES
    default_strictness: str = DEFAULT_STRICTNESS
    max_message_chars: int = MAX_MESSAGE_CHARS
    backend_host: str = BACKEND_HOST
    backend_port: int = BACKEND_PORT
    cors_origins: str = CORS_ORIGINS

    @classmethod
    def from_env(cls) -> "Settings":
        settings = cls(google_api_key=GOOGLE_API_KEY, use_mongo=USE_MONGO)
        if not settings.google_api_key:
            logger.warning(
                "GOOGLE_API_KEY not found - agent responses and contextual "
                "grammar analysis will use fallback mode"
            )
        return settings
