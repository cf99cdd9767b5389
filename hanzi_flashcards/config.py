"""Environment-driven settings for the flashcard backend."""
import os
from pathlib import Path

from dotenv import load_dotenv

# Local development reads .env.local; deployed containers set real env vars.
load_dotenv('.env.local')

PACKAGE_DIR = Path(__file__).resolve().parent
DEFAULT_POLYPHONIC_JSON = PACKAGE_DIR / "data" / "polyphonic.json"


def _env_flag(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    return raw.strip().lower() in ('1', 'true', 'yes', 'on')


def get_database_url() -> str:
    """Database URL from DATABASE_URL, defaulting to a local SQLite file."""
    database_url = os.getenv('DATABASE_URL', '').strip() or 'sqlite:///hanzi_flashcards.db'
    # SQLAlchemy defaults `postgresql://` to psycopg2; we ship psycopg v3.
    if database_url.startswith("postgresql://"):
        database_url = "postgresql+psycopg://" + database_url[len("postgresql://"):]
    return database_url


def get_cors_origins() -> list:
    raw = os.getenv('CORS_ORIGINS', 'http://localhost:3000').split(',')
    return [origin.strip() for origin in raw if origin.strip()]


def load_settings() -> dict:
    """Collect app settings from the environment (Flask config keys)."""
    environment = os.getenv('ENVIRONMENT', '').strip().lower()
    review_seed = os.getenv('REVIEW_SEED', '').strip() or None
    return {
        'ENVIRONMENT': environment,
        'SQLALCHEMY_DATABASE_URI': get_database_url(),
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'POLYPHONIC_JSON': Path(os.getenv('POLYPHONIC_JSON', str(DEFAULT_POLYPHONIC_JSON))),
        'LOGS_DIR': Path(os.getenv('LOGS_DIR', 'logs')),
        'CORS_ORIGINS': get_cors_origins(),
        # Internal error details stay out of responses in production.
        'EXPOSE_ERROR_DETAILS': _env_flag('EXPOSE_ERROR_DETAILS', environment != 'production'),
        'REVIEW_MAX_SESSIONS': int(os.getenv('REVIEW_MAX_SESSIONS', '1000')),
        'REVIEW_SEED': review_seed,
        'MAX_CONTENT_LENGTH': int(os.getenv('MAX_UPLOAD_BYTES', str(2 * 1024 * 1024))),
    }
