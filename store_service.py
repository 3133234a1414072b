#!/usr/bin/env python3
"""
Store service: wires the persisted state into the catalog, cart, ledger and
checkout components, plus a small maintenance CLI.

Run:
  python store_service.py --seed
  python store_service.py --sync-now
  python store_service.py --test-connection
  python store_service.py --backup [--day 2026-10-18]
"""
import argparse
import logging
import sqlite3
import sys
import threading
from typing import Optional

import requests

import store_config as cfg
import store_db as db
from cart import CartEngine
from catalog import CatalogStore
from checkout import CheckoutOrchestrator
from ledger import OrderLedger
from session import SettingsManager, StoreSession
from sheet_sync import SheetSyncClient


class StoreService:
    """
    One till's worth of state. `lock` serialises state transitions so the
    HTTP layer behaves like the single-threaded event loop the rules assume.
    """

    def __init__(self, conn: sqlite3.Connection, session: Optional[requests.Session] = None,
                 detach_sync: bool = True, order_delete_role: str = cfg.ORDER_DELETE_ROLE,
                 low_stock_threshold: int = cfg.LOW_STOCK_THRESHOLD):
        self.conn = conn
        self.lock = threading.RLock()
        self.low_stock_threshold = low_stock_threshold
        state = db.load_state(conn)
        self.settings = SettingsManager(conn, state["settings"])
        self.session = StoreSession(self.settings)
        self.sync = SheetSyncClient(lambda: self.settings.sync_url, session=session, detach=detach_sync)
        self.catalog = CatalogStore(conn, state["products"], sync=self.sync)
        self.cart = CartEngine(conn, self.catalog, state["cart"])
        self.ledger = OrderLedger(conn, state["orders"])
        self.checkout = CheckoutOrchestrator(
            self.catalog, self.cart, self.ledger, self.sync, self.session,
            order_delete_role=order_delete_role,
        )

    def low_stock(self):
        return self.catalog.low_stock(self.low_stock_threshold)

    def test_connection(self) -> bool:
        if not self.sync.enabled:
            return False
        self.sync.test_connection(self.settings.store_name)
        return True


def build_service(db_path: str = cfg.STORE_DB_PATH, **kwargs) -> StoreService:
    return StoreService(db.connect(db_path), **kwargs)


def main():
    logging.basicConfig(level=getattr(logging, cfg.LOG_LEVEL, logging.INFO),
                        format="%(asctime)s %(levelname)s %(name)s %(message)s")
    ap = argparse.ArgumentParser(description="Hà Lan store maintenance")
    ap.add_argument("--db", default=cfg.STORE_DB_PATH, help="Path to SQLite DB")
    ap.add_argument("--seed", action="store_true", help="Create the demo catalog and default admin if missing")
    ap.add_argument("--sync-now", action="store_true", help="Replace local products/orders with the sheet's copy")
    ap.add_argument("--test-connection", action="store_true", help="Send a test event to the sheet webhook")
    ap.add_argument("--backup", action="store_true", help="Write an NDJSON backup of one day's orders")
    ap.add_argument("--day", default=None, help="Day to back up (YYYY-MM-DD, default today)")
    args = ap.parse_args()

    # building the service loads state, which seeds missing blobs
    service = build_service(args.db, detach_sync=False)
    status = 0

    if args.seed:
        print(f"Catalog has {len(service.catalog.all())} products, "
              f"{len(service.settings.employees())} employees")

    if args.sync_now:
        if service.checkout.sync_now():
            print("Local catalog and orders replaced from sheet")
        else:
            print("Sync failed or no sheet URL configured", file=sys.stderr)
            status = 1

    if args.test_connection:
        if service.test_connection():
            print("Test event sent; check the sheet")
        else:
            print("No sheet URL configured", file=sys.stderr)
            status = 1

    if args.backup:
        path = db.backup_orders_ndjson(service.ledger.all(), args.day)
        print("Backed up to", path)

    service.conn.close()
    return status


if __name__ == "__main__":
    sys.exit(main())
