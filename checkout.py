"""
Checkout: turns the cart into a completed order, and undoes orders.

Both transitions run entirely against in-memory state (each store snapshots
itself to SQLite as it changes). Mirroring to the sheet happens afterwards and
can never undo or block the local change.
"""
import logging
import random
from typing import Any, Dict, List, NamedTuple, Optional

import store_config as cfg
import store_db as db
from cart import CartEngine
from catalog import CatalogStore
from ledger import OrderLedger
from session import StoreSession
from sheet_sync import DispatchOutcome, SheetSyncClient
from store_errors import PermissionDenied, StockExceeded, ValidationError

logger = logging.getLogger(__name__)

PAYMENT_METHODS = ("cash", "transfer")


class PendingSale(NamedTuple):
    order: Dict[str, Any]
    products: List[Dict[str, Any]]


class CheckoutResult(NamedTuple):
    order: Dict[str, Any]
    synced: bool
    offline: bool


class CheckoutOrchestrator:
    def __init__(self, catalog: CatalogStore, cart: CartEngine, ledger: OrderLedger,
                 sync: SheetSyncClient, session: StoreSession,
                 order_delete_role: str = cfg.ORDER_DELETE_ROLE):
        self.catalog = catalog
        self.cart = cart
        self.ledger = ledger
        self.sync = sync
        self.session = session
        self.order_delete_role = order_delete_role

    def _new_order_id(self) -> str:
        while True:
            order_id = f"DH-{random.randint(0, 999999):06d}"
            if not self.ledger.contains(order_id):
                return order_id

    def commit(self, payment_method: str, payment_note: str = "") -> Optional[PendingSale]:
        """
        Apply a sale locally: record the order, take the stock, empty the cart.
        Returns None for an empty cart. Raises StockExceeded (and changes
        nothing) if any line is now above the product's live stock.
        """
        if self.cart.is_empty():
            return None
        if payment_method not in PAYMENT_METHODS:
            raise ValidationError(f"Unknown payment method {payment_method!r}")
        problems = self.cart.validate()
        if problems:
            names = ", ".join(f"{p['name']} ({p['quantity']}/{p['stock']})" for p in problems)
            raise StockExceeded(f"Not enough stock for: {names}", lines=problems)

        totals = self.cart.totals()
        lines = self.cart.items()
        order = {
            "id": self._new_order_id(),
            "items": lines,
            "totalAmount": totals["amount"],
            "totalProfit": totals["profit"],
            "timestamp": db.now_ms(),
            "paymentMethod": payment_method,
            "paymentNote": (payment_note or "").strip() if payment_method == "transfer" else "",
            "employeeName": self.session.employee_name,
        }

        updated: List[Dict[str, Any]] = []
        for line in lines:
            product = self.catalog.adjust_stock(line["id"], -int(line["quantity"]))
            if product is not None:
                updated.append(product)
        self.ledger.record(order)
        self.cart.clear()
        logger.info("Checkout %s: %d lines, total=%s, by %s",
                    order["id"], len(lines), order["totalAmount"], order["employeeName"])
        return PendingSale(order=order, products=updated)

    def mirror(self, sale: PendingSale) -> CheckoutResult:
        """
        Push a committed sale to the sheet: the order, then each new stock
        level. Touches no local state, so callers run it outside their lock.
        """
        outcome = DispatchOutcome.DISABLED
        if self.sync.enabled:
            outcome = self.sync.push_order_event(sale.order)
            for product in sale.products:
                self.sync.push_product_event(product, "update_product")
        if outcome is DispatchOutcome.FAILED:
            logger.warning("Order %s saved locally; sheet sync failed", sale.order["id"])
        return CheckoutResult(
            order=sale.order,
            synced=outcome is DispatchOutcome.SENT,
            offline=outcome is DispatchOutcome.FAILED,
        )

    def checkout(self, payment_method: str, payment_note: str = "") -> Optional[CheckoutResult]:
        """Commit then mirror in one call. Returns None for an empty cart."""
        sale = self.commit(payment_method, payment_note)
        if sale is None:
            return None
        return self.mirror(sale)

    def delete_order(self, order_id: str, actor: Optional[Dict[str, Any]] = None) -> Optional[Dict[str, Any]]:
        """
        Remove an order and put its quantities back into stock. Lines for
        products deleted since the sale are skipped. The sheet keeps its copy
        of the order.
        """
        if self.order_delete_role == "admin" and (not actor or actor.get("role") != "admin"):
            raise PermissionDenied("Only an admin can delete orders")
        order = self.ledger.get(order_id)
        if order is None:
            logger.warning("Delete for unknown order %s ignored", order_id)
            return None

        restored: Dict[str, Dict[str, Any]] = {}
        for line in order.get("items") or []:
            product = self.catalog.adjust_stock(line.get("id"), int(line.get("quantity") or 0))
            if product is None:
                logger.info("Order %s: product %s no longer exists; skipping restock", order_id, line.get("id"))
                continue
            restored[product["id"]] = product
        for product in restored.values():
            self.sync.push_product_event(product, "update_product")
        self.ledger.remove(order_id)
        logger.info("Deleted order %s, restocked %d products", order_id, len(restored))
        return order

    def sync_now(self) -> bool:
        """Replace local products and orders with the sheet's copy (remote wins)."""
        if not self.sync.enabled:
            return False
        data = self.sync.pull_all()
        if data is None:
            return False
        self.catalog.replace_all(data["products"])
        self.ledger.replace_all(data["orders"])
        logger.info("Synced %d products and %d orders from sheet",
                    len(data["products"]), len(data["orders"]))
        return True
