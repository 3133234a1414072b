# Local persistence: named JSON blobs in SQLite + NDJSON order backups
import json
import logging
import sqlite3
import time
import datetime as dt
from pathlib import Path
from typing import Any, Dict, List, Optional

import store_config as cfg

logger = logging.getLogger(__name__)

PRODUCTS_KEY = "halan_buslines_store_data"
SETTINGS_KEY = "halan_buslines_settings"
ORDERS_KEY = "halan_buslines_orders"
CART_KEY = "halan_buslines_cart_draft"

DEFAULT_ADMIN = {"id": "1", "name": "Quản trị viên", "pin": "0000", "role": "admin"}

# Demo catalog seeded when no catalog blob exists yet
DEMO_PRODUCTS = [
    {
        "id": "1",
        "name": "Mô hình xe giường nằm Hà Lan (Limited)",
        "imageUrl": "https://i.pinimg.com/736x/88/2c/3f/882c3f585a21323330623a8b41724227.jpg",
        "stock": 5,
        "costPrice": 250000,
        "sellingPrice": 450000,
    },
    {
        "id": "2",
        "name": "Vé tháng tuyến Thái Nguyên - Hà Nội",
        "imageUrl": "https://busvietnam.net/wp-content/uploads/2016/11/ve-xe-bus.jpg",
        "stock": 50,
        "costPrice": 800000,
        "sellingPrice": 850000,
    },
    {
        "id": "3",
        "name": "Gối cổ chữ U cao cấp (Memory Foam)",
        "imageUrl": "https://cf.shopee.vn/file/2065842c36688756d1088496739f37c3",
        "stock": 25,
        "costPrice": 85000,
        "sellingPrice": 180000,
    },
    {
        "id": "4",
        "name": "Nước suối Hà Lan (Thùng 24 chai)",
        "imageUrl": "https://cdn.tgdd.vn/Products/Images/3364/79468/bhx/thung-24-chai-nuoc-tinh-khiet-aquafina-500ml-202302271445524675.jpg",
        "stock": 100,
        "costPrice": 70000,
        "sellingPrice": 110000,
    },
    {
        "id": "5",
        "name": "Dù cầm tay in logo Hà Lan",
        "imageUrl": "https://bizweb.dktcdn.net/thumb/1024x1024/100/364/630/products/o-cam-tay-khung-sat.jpg",
        "stock": 15,
        "costPrice": 60000,
        "sellingPrice": 150000,
    },
]


def now_ms() -> int:
    return int(time.time() * 1000)


def iso_now() -> str:
    return dt.datetime.utcnow().replace(microsecond=0).isoformat() + "Z"


def connect(db_path: str = cfg.STORE_DB_PATH) -> sqlite3.Connection:
    # Flask serves requests on worker threads; StoreService serialises access.
    conn = sqlite3.connect(db_path, timeout=30, check_same_thread=False)
    conn.row_factory = sqlite3.Row
    if db_path != ":memory:":
        conn.execute("PRAGMA journal_mode=WAL;")
        conn.execute("PRAGMA synchronous=NORMAL;")
    init_db(conn)
    return conn


def init_db(conn: sqlite3.Connection):
    conn.execute("""
    CREATE TABLE IF NOT EXISTS blobs (
      name         TEXT PRIMARY KEY,
      payload_json TEXT NOT NULL,
      updated_utc  TEXT NOT NULL
    )
    """)
    conn.commit()


def load_blob(conn: sqlite3.Connection, name: str, default: Any = None) -> Any:
    row = conn.execute("SELECT payload_json FROM blobs WHERE name=?", (name,)).fetchone()
    if row is None:
        return default
    try:
        return json.loads(row["payload_json"])
    except (TypeError, ValueError):
        logger.warning("Stored blob %s is not valid JSON; ignoring it", name)
        return default


def save_blob(conn: sqlite3.Connection, name: str, value: Any):
    """Rewrite the whole snapshot stored under `name`."""
    conn.execute("""
        INSERT INTO blobs (name, payload_json, updated_utc) VALUES (?,?,?)
        ON CONFLICT(name) DO UPDATE SET
          payload_json=excluded.payload_json,
          updated_utc=excluded.updated_utc
    """, (name, json.dumps(value, ensure_ascii=False, separators=(",", ":")), iso_now()))
    conn.commit()


def demo_products() -> List[Dict[str, Any]]:
    created = now_ms()
    return [dict(p, createdAt=created) for p in DEMO_PRODUCTS]


def default_settings() -> Dict[str, Any]:
    return {
        "storeName": cfg.STORE_NAME,
        "googleScriptUrl": cfg.SHEET_WEBHOOK_URL,
        "bankAccounts": [],
        "employees": [dict(DEFAULT_ADMIN)],
    }


def _normalize_settings(raw: Any) -> Dict[str, Any]:
    if not isinstance(raw, dict):
        return default_settings()
    settings = dict(raw)
    if not settings.get("employees"):
        settings["employees"] = [dict(DEFAULT_ADMIN)]
    settings["bankAccounts"] = settings.get("bankAccounts") or []
    settings.setdefault("storeName", cfg.STORE_NAME)
    settings["googleScriptUrl"] = (settings.get("googleScriptUrl") or "").strip()
    return settings


def load_state(conn: sqlite3.Connection) -> Dict[str, Any]:
    """
    Load the four persisted blobs. Returns
      { 'products': [...], 'settings': {...}, 'orders': [...], 'cart': [...] }
    A missing catalog is seeded with the demo products and a missing settings
    blob with the default administrator; both seeds are written back.
    """
    products = load_blob(conn, PRODUCTS_KEY)
    if not isinstance(products, list):
        products = demo_products()
        save_blob(conn, PRODUCTS_KEY, products)
        logger.info("Seeded demo catalog with %d products", len(products))

    stored_settings = load_blob(conn, SETTINGS_KEY)
    settings = _normalize_settings(stored_settings)
    if settings != stored_settings:
        save_blob(conn, SETTINGS_KEY, settings)

    orders = load_blob(conn, ORDERS_KEY, [])
    if not isinstance(orders, list):
        orders = []
    cart = load_blob(conn, CART_KEY, [])
    if not isinstance(cart, list):
        cart = []
    return {"products": products, "settings": settings, "orders": orders, "cart": cart}


# ---------- BACKUPS ----------
def ensure_dir(p: str):
    Path(p).mkdir(parents=True, exist_ok=True)


def backup_orders_ndjson(orders: List[Dict[str, Any]], day: Optional[str] = None,
                         backup_dir: Optional[str] = None) -> Path:
    """
    day: 'YYYY-MM-DD' in local time. Defaults to today.
    Writes one JSON line per order placed that day, oldest first.
    """
    if day is None:
        day = dt.date.today().isoformat()
    start = dt.datetime.fromisoformat(day)
    end = start + dt.timedelta(days=1)
    start_ms = int(start.timestamp() * 1000)
    end_ms = int(end.timestamp() * 1000)

    target_dir = backup_dir or cfg.STORE_BACKUP_DIR
    ensure_dir(target_dir)
    path = Path(target_dir) / f"orders_{day}.ndjson"
    selected = [o for o in orders if start_ms <= int(o.get("timestamp") or 0) < end_ms]
    selected.sort(key=lambda o: o.get("timestamp") or 0)
    with open(path, "w", encoding="utf-8") as f:
        for order in selected:
            f.write(json.dumps(order, ensure_ascii=False, separators=(",", ":")) + "\n")
    logger.info("Backed up %d orders to %s", len(selected), path)
    return path
