"""Completed orders, most recent first, with the history screen's filters."""
import datetime as dt
import sqlite3
import time
from typing import Any, Dict, List, Optional

import store_db as db

DAY_MS = 24 * 60 * 60 * 1000
DATE_RANGES = ("today", "yesterday", "week", "month", "all")
PAYMENT_FILTERS = ("all", "cash", "transfer")


def _ms(moment: dt.datetime) -> int:
    return int(moment.timestamp() * 1000)


def date_window(date_range: str, now: Optional[dt.datetime] = None):
    """(start_ms, end_ms) for a named range in local time; None bounds are open."""
    now = now or dt.datetime.now()
    start_of_day = now.replace(hour=0, minute=0, second=0, microsecond=0)
    if date_range == "today":
        return _ms(start_of_day), None
    if date_range == "yesterday":
        return _ms(start_of_day - dt.timedelta(days=1)), _ms(start_of_day)
    if date_range == "week":
        # weeks start on Sunday
        days_since_sunday = (now.weekday() + 1) % 7
        return _ms(start_of_day - dt.timedelta(days=days_since_sunday)), None
    if date_range == "month":
        return _ms(start_of_day.replace(day=1)), None
    return None, None


def order_stats(orders: List[Dict[str, Any]]) -> Dict[str, int]:
    stats = {"revenue": 0, "orders": 0, "cash": 0, "transfer": 0}
    for order in orders:
        amount = int(order.get("totalAmount") or 0)
        stats["revenue"] += amount
        stats["orders"] += 1
        if order.get("paymentMethod") == "cash":
            stats["cash"] += amount
        elif order.get("paymentMethod") == "transfer":
            stats["transfer"] += amount
    return stats


class OrderLedger:
    def __init__(self, conn: sqlite3.Connection, orders: Optional[List[Dict[str, Any]]] = None):
        self.conn = conn
        self._orders: List[Dict[str, Any]] = [dict(o) for o in (orders or [])]

    def _flush(self):
        db.save_blob(self.conn, db.ORDERS_KEY, self._orders)

    def get(self, order_id: str) -> Optional[Dict[str, Any]]:
        for order in self._orders:
            if order.get("id") == order_id:
                return dict(order)
        return None

    def contains(self, order_id: str) -> bool:
        return any(o.get("id") == order_id for o in self._orders)

    def all(self) -> List[Dict[str, Any]]:
        return [dict(o) for o in self._orders]

    def record(self, order: Dict[str, Any]):
        self._orders.insert(0, dict(order))
        self._flush()

    def remove(self, order_id: str) -> Optional[Dict[str, Any]]:
        for idx, order in enumerate(self._orders):
            if order.get("id") == order_id:
                removed = self._orders.pop(idx)
                self._flush()
                return dict(removed)
        return None

    def replace_all(self, orders: List[Dict[str, Any]]):
        self._orders = [dict(o) for o in orders]
        self._flush()

    def filter(self, term: str = "", date_range: str = "all", payment: str = "all",
               now: Optional[dt.datetime] = None) -> List[Dict[str, Any]]:
        needle = (term or "").lower()
        start, end = date_window(date_range, now)
        out = []
        for order in self._orders:
            if needle:
                haystacks = (order.get("id"), order.get("employeeName"), order.get("paymentNote"))
                if not any(needle in (h or "").lower() for h in haystacks):
                    continue
            if payment != "all" and order.get("paymentMethod") != payment:
                continue
            ts = int(order.get("timestamp") or 0)
            if start is not None and ts < start:
                continue
            if end is not None and ts >= end:
                continue
            out.append(dict(order))
        return out

    def recent_totals(self, window_ms: int = DAY_MS, now_ms: Optional[int] = None) -> Dict[str, int]:
        """Revenue and profit over a trailing window (dashboard figures)."""
        now_ms = now_ms if now_ms is not None else int(time.time() * 1000)
        revenue = 0
        profit = 0
        for order in self._orders:
            if now_ms - int(order.get("timestamp") or 0) < window_ms:
                revenue += int(order.get("totalAmount") or 0)
                profit += int(order.get("totalProfit") or 0)
        return {"revenue": revenue, "profit": profit}
