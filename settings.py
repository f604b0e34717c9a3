"""
Runtime configuration for the TravelBuddy console.

Values come from the environment (a local .env file is honoured), with
defaults that work against a backend running on localhost.
"""

import os
from pathlib import Path

from dotenv import load_dotenv

load_dotenv()

BASE_DIR = Path(__file__).resolve().parent
OUTPUT_DIR = Path(os.getenv("OUTPUT_DIR", str(BASE_DIR / "output")))
PREFERENCES_DB_PATH = OUTPUT_DIR / "preferences.db"

# NOTE: the backend REST API is an external collaborator, only its base URL lives here.
API_URL = os.getenv("TRAVEL_API_URL", "http://localhost:3001").rstrip("/")
API_TIMEOUT_SECONDS = float(os.getenv("TRAVEL_API_TIMEOUT_SECONDS", "15"))

# Session timer (milliseconds)
SESSION_TIMEOUT_MS = int(os.getenv("SESSION_TIMEOUT_MS", str(30 * 60 * 1000)))
SESSION_WARNING_MS = int(os.getenv("SESSION_WARNING_MS", str(5 * 60 * 1000)))
SESSION_POLL_INTERVAL_MS = int(os.getenv("SESSION_POLL_INTERVAL_MS", "1000"))

TABLE_PAGE_SIZE = int(os.getenv("TABLE_PAGE_SIZE", "25"))

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
