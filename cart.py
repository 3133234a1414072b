"""Cart for the till session being built, capped by live catalog stock."""
import logging
import sqlite3
from typing import Any, Dict, List, Optional

import store_db as db
from catalog import CatalogStore
from store_errors import StockExceeded

logger = logging.getLogger(__name__)


def cart_totals(items: List[Dict[str, Any]]) -> Dict[str, int]:
    amount = 0
    profit = 0
    count = 0
    for item in items:
        qty = int(item.get("quantity") or 0)
        selling = int(item.get("sellingPrice") or 0)
        cost = int(item.get("costPrice") or 0)
        amount += selling * qty
        profit += (selling - cost) * qty
        count += qty
    return {"amount": amount, "profit": profit, "itemCount": count}


class CartEngine:
    def __init__(self, conn: sqlite3.Connection, catalog: CatalogStore,
                 items: Optional[List[Dict[str, Any]]] = None):
        self.conn = conn
        self.catalog = catalog
        self._items: List[Dict[str, Any]] = [dict(i) for i in (items or [])]

    def _flush(self):
        db.save_blob(self.conn, db.CART_KEY, self._items)

    def _index(self, product_id: str) -> Optional[int]:
        for idx, item in enumerate(self._items):
            if item.get("id") == product_id:
                return idx
        return None

    def _live_stock(self, product_id: str) -> int:
        product = self.catalog.get(product_id)
        # a product deleted from the catalog can no longer be sold
        return int(product.get("stock") or 0) if product else 0

    def items(self) -> List[Dict[str, Any]]:
        return [dict(i) for i in self._items]

    def quantity(self, product_id: str) -> int:
        idx = self._index(product_id)
        return int(self._items[idx]["quantity"]) if idx is not None else 0

    def is_empty(self) -> bool:
        return not self._items

    def totals(self) -> Dict[str, int]:
        return cart_totals(self._items)

    def add_item(self, product: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        """Add one unit of `product`; the first add snapshots its prices."""
        product_id = product.get("id")
        live = self.catalog.get(product_id)
        if live is None:
            logger.warning("Cannot add unknown product %s to cart", product_id)
            return None
        stock = int(live.get("stock") or 0)
        idx = self._index(product_id)
        if idx is None:
            if stock < 1:
                raise StockExceeded(f"{live.get('name')} is out of stock")
            line = dict(live, quantity=1)
            self._items.append(line)
        else:
            line = self._items[idx]
            if line["quantity"] >= stock:
                raise StockExceeded(f"Only {stock} of {live.get('name')} in stock")
            line["quantity"] += 1
        self._flush()
        return dict(line)

    def change_quantity(self, product_id: str, delta: int) -> Optional[Dict[str, Any]]:
        """Apply `delta` to a line. Returns the line, or None once it is dropped."""
        idx = self._index(product_id)
        if idx is None:
            return None
        line = self._items[idx]
        new_qty = int(line["quantity"]) + int(delta)
        if new_qty <= 0:
            self._items.pop(idx)
            self._flush()
            return None
        stock = self._live_stock(product_id)
        if new_qty > stock:
            raise StockExceeded(f"Only {stock} of {line.get('name')} in stock")
        line["quantity"] = new_qty
        self._flush()
        return dict(line)

    def remove_item(self, product_id: str):
        idx = self._index(product_id)
        if idx is None:
            return
        self._items.pop(idx)
        self._flush()

    def clear(self):
        self._items = []
        self._flush()

    def restore(self, items: List[Dict[str, Any]]):
        self._items = [dict(i) for i in items]
        self._flush()

    def validate(self) -> List[Dict[str, Any]]:
        """Lines whose quantity is above the product's current stock."""
        problems = []
        for item in self._items:
            stock = self._live_stock(item.get("id"))
            if int(item.get("quantity") or 0) > stock:
                problems.append({
                    "id": item.get("id"),
                    "name": item.get("name"),
                    "quantity": item.get("quantity"),
                    "stock": stock,
                })
        return problems
