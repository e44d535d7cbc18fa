"""Settings for the quiz server, read from the environment."""
import os
import logging
from dotenv import load_dotenv

load_dotenv()

# --- Server ---
HOST = os.getenv("HOST", "0.0.0.0")
PORT = int(os.getenv("PORT", "8000"))
ALLOWED_ORIGINS = os.getenv("ALLOWED_ORIGINS", "")

# --- WebSocket Security ---
WS_RATE_LIMIT_PER_SEC = 10  # max messages per second per client
MAX_WS_MESSAGE_SIZE = 64 * 1024  # UTF-8 bytes, a create:game carries the whole quiz

# --- Storage Limits ---
MAX_SESSIONS = int(os.getenv("MAX_SESSIONS", "500"))

# --- Sessions ---
ROOM_CODE_MIN = 100000
ROOM_CODE_MAX = 999999
MAX_ROOM_CODE_ATTEMPTS = 10
HOST_DISPLAY_NAME = "Host"
MAX_NICKNAME_LENGTH = 20
MAX_TITLE_LENGTH = 200
OPTIONS_PER_QUESTION = 4

# --- Scoring ---
MAX_POINTS = 1000
MIN_CORRECT_POINTS = 500
POINTS_LOST_PER_SECOND = 10

# --- Logging ---
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
LOG_FILE = os.getenv("LOG_FILE", "")  # empty = stdout only


def setup_logging():
    handlers: list[logging.Handler] = [logging.StreamHandler()]
    if LOG_FILE:
        handlers.append(logging.FileHandler(LOG_FILE))
    logging.basicConfig(
        level=getattr(logging, LOG_LEVEL, logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        handlers=handlers,
    )
