"""
Runtime configuration for the Hà Lan store POS.

Values come from the process environment, with a local `.env` file loaded
first. Empty strings are treated as unset.

Env vars:
  STORE_DB_PATH         SQLite file holding the persisted blobs (default: store.db)
  STORE_NAME            Store name seeded on first run
  SHEET_WEBHOOK_URL     Spreadsheet webhook seeded on first run (empty = sync off)
  LOW_STOCK_THRESHOLD   Stock level at or below which a product is "low" (default: 5)
  SHEET_SYNC_TIMEOUT    Seconds per remote request (default: 15)
  ORDER_DELETE_ROLE     'any' | 'admin' - who may delete a completed order (default: any)
  STORE_BACKUP_DIR      Where NDJSON order backups are written (default: store_backup)
  STORE_LOG_LEVEL       Logging level name (default: INFO)
"""
import os
from typing import Optional

from dotenv import load_dotenv

load_dotenv()


def _env_string(name: str, default: Optional[str] = None) -> Optional[str]:
    """Return trimmed string-valued env vars, normalizing empty strings to the default."""
    raw = os.getenv(name, default)
    if raw is None:
        return default
    if isinstance(raw, str):
        clean = raw.strip()
        return clean if clean else default
    return raw


def _env_int(name: str, default: int) -> int:
    try:
        return int(_env_string(name, str(default)))
    except (TypeError, ValueError):
        return default


def _env_float(name: str, default: float) -> float:
    try:
        return float(_env_string(name, str(default)))
    except (TypeError, ValueError):
        return default


STORE_DB_PATH = _env_string('STORE_DB_PATH', 'store.db')
STORE_NAME = _env_string('STORE_NAME', 'Hà Lan Buslines Store')
SHEET_WEBHOOK_URL = _env_string('SHEET_WEBHOOK_URL', '') or ''
LOW_STOCK_THRESHOLD = _env_int('LOW_STOCK_THRESHOLD', 5)
SHEET_SYNC_TIMEOUT = _env_float('SHEET_SYNC_TIMEOUT', 15.0)
STORE_BACKUP_DIR = _env_string('STORE_BACKUP_DIR', 'store_backup')
LOG_LEVEL = (_env_string('STORE_LOG_LEVEL', 'INFO') or 'INFO').upper()

ORDER_DELETE_ROLE = (_env_string('ORDER_DELETE_ROLE', 'any') or 'any').lower()
if ORDER_DELETE_ROLE not in ('any', 'admin'):
    ORDER_DELETE_ROLE = 'any'

HOST = _env_string('HOST', '0.0.0.0')
PORT = _env_int('PORT', 5000)
FLASK_DEBUG = _env_string('FLASK_DEBUG', '0') == '1'
