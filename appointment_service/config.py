"""Runtime settings, read from the environment (and a local .env file)."""
import logging
import os

from dotenv import load_dotenv

load_dotenv()

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite+aiosqlite:///./appointments.db")
DB_ECHO = os.getenv("DB_ECHO", "0") == "1"

# Empty key disables bearer auth (local development)
API_KEY = os.getenv("API_KEY", "")

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
APP_HOST = os.getenv("APP_HOST", "0.0.0.0")
APP_PORT = int(os.getenv("APP_PORT", "9090"))


def configure_logging(level: str = LOG_LEVEL) -> None:
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )
