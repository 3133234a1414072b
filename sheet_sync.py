"""
Best-effort mirroring of local store changes to a spreadsheet webhook.

Pushes are fire-and-forget: the webhook gives no acknowledgement we can rely
on, so a push only reports whether the request left this machine
(DispatchOutcome.SENT) or not (FAILED). The response body is never read on the
push path. `pull_all` is the one request/response call and is only used by an
explicit "sync now".
"""
import datetime as dt
import enum
import json
import logging
import threading
from typing import Any, Dict, List, Optional

import requests

import store_config as cfg
from store_errors import RemoteUnavailable

logger = logging.getLogger(__name__)

PRODUCT_ACTIONS = ("add_product", "update_product", "delete_product")
UNNAMED_EMPLOYEE = "Không tên"
TEST_MESSAGE = "Kết nối thành công từ {store}"


class DispatchOutcome(enum.Enum):
    SENT = "sent"
    FAILED = "failed"
    DISABLED = "disabled"


def format_local_date(timestamp_ms: Optional[int] = None) -> str:
    """Local wall-clock time as shown on receipts, e.g. 14:05:09 18/10/2026."""
    if timestamp_ms is None:
        moment = dt.datetime.now()
    else:
        moment = dt.datetime.fromtimestamp(timestamp_ms / 1000.0)
    return moment.strftime("%H:%M:%S %d/%m/%Y")


def product_event(product: Dict[str, Any], action: str) -> Dict[str, Any]:
    if action not in PRODUCT_ACTIONS:
        raise ValueError(f"Unknown product action {action!r}")
    return {
        "action": action,
        "id": product.get("id"),
        "name": product.get("name"),
        "imageUrl": product.get("imageUrl", ""),
        "stock": product.get("stock"),
        "costPrice": product.get("costPrice"),
        "sellingPrice": product.get("sellingPrice"),
        "createdAt": product.get("createdAt"),
    }


def order_event(order: Dict[str, Any]) -> Dict[str, Any]:
    items = order.get("items") or []
    return {
        "action": "add_order",
        "orderId": order.get("id"),
        "date": format_local_date(order.get("timestamp")),
        "timestamp": order.get("timestamp"),
        # full JSON so a later pull can rebuild the order
        "items": json.dumps(items, ensure_ascii=False),
        "itemsReadable": ", ".join(f"{i.get('name')} (x{i.get('quantity')})" for i in items),
        "totalAmount": order.get("totalAmount"),
        "totalProfit": order.get("totalProfit"),
        "paymentMethod": order.get("paymentMethod"),
        "paymentNote": order.get("paymentNote") or "",
        "employeeName": order.get("employeeName") or UNNAMED_EMPLOYEE,
    }


def connection_test_event(store_name: Optional[str] = None) -> Dict[str, Any]:
    return {
        "action": "test_connection",
        "date": format_local_date(),
        "message": TEST_MESSAGE.format(store=store_name or cfg.STORE_NAME),
    }


def _as_int(value: Any) -> Optional[int]:
    """Whole numbers as sheets return them (int, integral float or digit string)."""
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, float):
        return int(value) if value.is_integer() else None
    try:
        return int(str(value).strip())
    except ValueError:
        return None


def _as_id(value: Any) -> Optional[str]:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    text = str(value).strip()
    return text or None


def _decode_product(raw: Any) -> Optional[Dict[str, Any]]:
    if not isinstance(raw, dict):
        return None
    product = dict(raw)
    product["id"] = _as_id(raw.get("id"))
    if product["id"] is None or not isinstance(raw.get("name"), str):
        return None
    for field in ("stock", "costPrice", "sellingPrice", "createdAt"):
        value = _as_int(raw.get(field))
        if value is None or value < 0:
            return None
        product[field] = value
    product["imageUrl"] = raw.get("imageUrl") or ""
    return product


def _decode_line(raw: Any) -> Optional[Dict[str, Any]]:
    if not isinstance(raw, dict):
        return None
    line = dict(raw)
    line["id"] = _as_id(raw.get("id"))
    line["quantity"] = _as_int(raw.get("quantity"))
    if line["id"] is None or line["quantity"] is None:
        return None
    for field in ("costPrice", "sellingPrice"):
        if field in raw:
            line[field] = _as_int(raw[field])
            if line[field] is None:
                return None
    return line


def _decode_order(raw: Any) -> Optional[Dict[str, Any]]:
    if not isinstance(raw, dict):
        return None
    order = dict(raw)
    order["id"] = _as_id(raw.get("id"))
    if order["id"] is None:
        return None
    for field in ("timestamp", "totalAmount", "totalProfit"):
        order[field] = _as_int(raw.get(field))
        if order[field] is None:
            return None
    items = order.get("items")
    if isinstance(items, str):
        try:
            items = json.loads(items) if items.strip() else []
        except ValueError:
            return None
    if not isinstance(items, list):
        return None
    lines = [_decode_line(i) for i in items]
    if any(line is None for line in lines):
        return None
    order["items"] = lines
    return order


class SheetSyncClient:
    """
    Talks to one webhook URL. `url_provider` is called on every request so a
    settings change takes effect immediately; an empty URL disables sync.
    """

    def __init__(self, url_provider, session: Optional[requests.Session] = None,
                 timeout: float = cfg.SHEET_SYNC_TIMEOUT, detach: bool = True):
        self._url_provider = url_provider
        self.session = session or requests.Session()
        self.timeout = timeout
        self.detach = detach

    @property
    def url(self) -> str:
        return (self._url_provider() or "").strip()

    @property
    def enabled(self) -> bool:
        return bool(self.url)

    # ---------- transport ----------
    def _post(self, url: str, event: Dict[str, Any]):
        try:
            self.session.post(
                url,
                data=json.dumps(event, ensure_ascii=False).encode("utf-8"),
                headers={"Content-Type": "application/json"},
                timeout=self.timeout,
            )
        except requests.RequestException as exc:
            raise RemoteUnavailable(f"{event.get('action')} not dispatched: {exc}") from exc

    def dispatch(self, event: Dict[str, Any]) -> DispatchOutcome:
        """Send one event and wait only for the request to go out."""
        url = self.url
        if not url:
            return DispatchOutcome.DISABLED
        try:
            self._post(url, event)
        except RemoteUnavailable as exc:
            logger.warning("Sheet sync failed: %s", exc)
            return DispatchOutcome.FAILED
        logger.debug("Sheet sync sent %s", event.get("action"))
        return DispatchOutcome.SENT

    def _fire(self, event: Dict[str, Any]) -> Optional[threading.Thread]:
        if not self.enabled:
            return None
        if not self.detach:
            self.dispatch(event)
            return None
        thread = threading.Thread(
            target=self.dispatch,
            args=(event,),
            name=f"sheet-sync-{event.get('action')}",
            daemon=True,
        )
        thread.start()
        return thread

    # ---------- public API ----------
    def push_product_event(self, product: Dict[str, Any], action: str):
        self._fire(product_event(product, action))

    def push_order_event(self, order: Dict[str, Any]) -> DispatchOutcome:
        return self.dispatch(order_event(order))

    def test_connection(self, store_name: Optional[str] = None):
        self._fire(connection_test_event(store_name))

    def pull_all(self) -> Optional[Dict[str, List[Dict[str, Any]]]]:
        """Fetch the full remote product and order lists, or None on any failure."""
        url = self.url
        if not url:
            return None
        try:
            resp = self.session.get(url, params={"action": "get_all_data"}, timeout=self.timeout)
            resp.raise_for_status()
            body = resp.json()
        except requests.RequestException as exc:
            logger.warning("Sheet pull failed: %s", exc)
            return None
        except ValueError:
            logger.warning("Sheet pull returned a non-JSON body")
            return None
        if not isinstance(body, dict):
            logger.warning("Sheet pull returned %s instead of an object", type(body).__name__)
            return None
        products = body.get("products")
        orders = body.get("orders")
        if not isinstance(products, list) or not isinstance(orders, list):
            logger.warning("Sheet pull payload is missing products or orders")
            return None
        decoded_orders = [_decode_order(o) for o in orders]
        if any(o is None for o in decoded_orders):
            logger.warning("Sheet pull payload has malformed orders")
            return None
        decoded_products = [_decode_product(p) for p in products]
        if any(p is None for p in decoded_products):
            logger.warning("Sheet pull payload has malformed products")
            return None
        return {"products": decoded_products, "orders": decoded_orders}
