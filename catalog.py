"""Product catalog: the authoritative in-memory product list, most recent first."""
import logging
import sqlite3
import uuid
from typing import Any, Dict, List, Optional

import store_db as db
from store_errors import PermissionDenied

logger = logging.getLogger(__name__)

MUTABLE_FIELDS = ("name", "imageUrl", "stock", "costPrice", "sellingPrice")

SORT_KEYS = {
    "priceAsc": (lambda p: p.get("sellingPrice") or 0, False),
    "priceDesc": (lambda p: p.get("sellingPrice") or 0, True),
    "stockAsc": (lambda p: p.get("stock") or 0, False),
    "stockDesc": (lambda p: p.get("stock") or 0, True),
}


def _form_fields(data: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "name": data.get("name", ""),
        "imageUrl": data.get("imageUrl") or "",
        "stock": int(data.get("stock") or 0),
        "costPrice": int(data.get("costPrice") or 0),
        "sellingPrice": int(data.get("sellingPrice") or 0),
    }


class CatalogStore:
    def __init__(self, conn: sqlite3.Connection, products: List[Dict[str, Any]], sync=None):
        self.conn = conn
        self.sync = sync
        self._products: List[Dict[str, Any]] = [dict(p) for p in products]

    def _flush(self):
        db.save_blob(self.conn, db.PRODUCTS_KEY, self._products)

    def _mirror(self, product: Dict[str, Any], action: str):
        if self.sync is not None:
            self.sync.push_product_event(dict(product), action)

    def _index(self, product_id: str) -> Optional[int]:
        for idx, p in enumerate(self._products):
            if p.get("id") == product_id:
                return idx
        return None

    # ---------- queries ----------
    def get(self, product_id: str) -> Optional[Dict[str, Any]]:
        idx = self._index(product_id)
        return dict(self._products[idx]) if idx is not None else None

    def all(self) -> List[Dict[str, Any]]:
        return [dict(p) for p in self._products]

    def low_stock(self, threshold: int) -> List[Dict[str, Any]]:
        return [dict(p) for p in self._products if (p.get("stock") or 0) <= threshold]

    def search(self, term: str) -> List[Dict[str, Any]]:
        needle = (term or "").lower()
        return [dict(p) for p in self._products if needle in (p.get("name") or "").lower()]

    def sorted(self, option: str = "newest", products: Optional[List[Dict[str, Any]]] = None) -> List[Dict[str, Any]]:
        rows = self.all() if products is None else [dict(p) for p in products]
        if option in SORT_KEYS:
            key, reverse = SORT_KEYS[option]
            rows.sort(key=key, reverse=reverse)
        return rows

    # ---------- mutations ----------
    def add(self, data: Dict[str, Any]) -> Dict[str, Any]:
        product = {"id": uuid.uuid4().hex[:12], "createdAt": db.now_ms()}
        product.update(_form_fields(data))
        self._products.insert(0, product)
        self._flush()
        logger.info("Added product %s (%s)", product["id"], product["name"])
        self._mirror(product, "add_product")
        return dict(product)

    def update(self, product_id: str, data: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        idx = self._index(product_id)
        if idx is None:
            logger.warning("Update for unknown product %s ignored", product_id)
            return None
        product = dict(self._products[idx])
        product.update(_form_fields(data))
        self._products[idx] = product
        self._flush()
        logger.info("Updated product %s", product_id)
        self._mirror(product, "update_product")
        return dict(product)

    def remove(self, product_id: str, actor: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
        """Delete a product. Only an admin may do this."""
        if not actor or actor.get("role") != "admin":
            raise PermissionDenied("Only an admin can delete products")
        idx = self._index(product_id)
        if idx is None:
            logger.warning("Delete for unknown product %s ignored", product_id)
            return None
        product = self._products.pop(idx)
        self._flush()
        logger.info("Removed product %s by %s", product_id, actor.get("name"))
        self._mirror(product, "delete_product")
        return dict(product)

    def adjust_stock(self, product_id: str, delta: int) -> Optional[Dict[str, Any]]:
        """Shift stock by `delta`, never below zero. The caller mirrors the change."""
        idx = self._index(product_id)
        if idx is None:
            return None
        product = dict(self._products[idx])
        product["stock"] = max(0, int(product.get("stock") or 0) + int(delta))
        self._products[idx] = product
        self._flush()
        return dict(product)

    def replace_all(self, products: List[Dict[str, Any]]):
        self._products = [dict(p) for p in products]
        self._flush()
