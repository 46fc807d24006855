"""
Runtime configuration

Everything is read from the environment (optionally seeded from a .env file
next to the project root). Values are plain module constants so that tests
can patch them the same way they patch database.DB_PATH.
"""

import logging
import os
from pathlib import Path

from dotenv import load_dotenv

ROOT_DIR = Path(__file__).parent.parent

load_dotenv(ROOT_DIR / ".env")


def _env_bool(name: str, default: str = "false") -> bool:
    return os.environ.get(name, default).strip().lower() in ("1", "true", "yes", "on")


# ---------------------------------------------------------------------------
# HTTP
# ---------------------------------------------------------------------------

PORT = int(os.environ.get("PORT", 5000))
DEBUG = _env_bool("DEBUG")
SECRET_KEY = os.environ.get("SECRET_KEY", "change-me-in-production")

# ---------------------------------------------------------------------------
# Storage
# ---------------------------------------------------------------------------

DB_PATH = Path(os.environ.get("VOTING_DB_PATH", str(Path(__file__).parent / "voting_app.db")))
DB_BUSY_TIMEOUT_SECONDS = float(os.environ.get("DB_BUSY_TIMEOUT_SECONDS", 10))

# ---------------------------------------------------------------------------
# Bootstrap account
# ---------------------------------------------------------------------------

ADMIN_USERNAME = os.environ.get("ADMIN_USERNAME", "admin")
ADMIN_PASSWORD = os.environ.get("ADMIN_PASSWORD", "admin123")

# ---------------------------------------------------------------------------
# Identity oracle
# ---------------------------------------------------------------------------

FACE_MATCH_THRESHOLD = float(os.environ.get("FACE_MATCH_THRESHOLD", 0.4))

# ---------------------------------------------------------------------------
# Anchor service (Ethereum JSON-RPC)
# ---------------------------------------------------------------------------

ANCHOR_RPC_URL = os.environ.get("ANCHOR_RPC_URL", "http://127.0.0.1:8545")
ANCHOR_CONTRACT_ADDRESS = os.environ.get("ANCHOR_CONTRACT_ADDRESS", "")
ANCHOR_SIGNER_PRIVATE_KEY = os.environ.get("ANCHOR_SIGNER_PRIVATE_KEY", "")
ANCHOR_TIMEOUT_SECONDS = float(os.environ.get("ANCHOR_TIMEOUT_SECONDS", 30))

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO").upper()


def configure_logging(level: str = None):
    """Install the root handler once; later calls only adjust the level."""
    logging.basicConfig(
        level=level or LOG_LEVEL,
        format="%(asctime)s [%(name)s] %(levelname)s %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    logging.getLogger().setLevel(level or LOG_LEVEL)
