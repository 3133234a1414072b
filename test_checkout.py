import json
import unittest

import requests

import store_db as db
from sheet_sync import DispatchOutcome
from store_errors import PermissionDenied, StockExceeded, ValidationError
from store_service import StoreService

SHEET_URL = "https://script.example/macros/s/abc/exec"


class FakeResponse:
    def __init__(self, status_code=200, body=None, text=""):
        self.status_code = status_code
        self._body = body
        self.text = text

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} error")

    def json(self):
        if self._body is None:
            raise ValueError("no JSON")
        return self._body


class FakeSheet:
    """Stands in for requests.Session, recording what would hit the webhook."""

    def __init__(self, fail_post=False, pull_body=None):
        self.fail_post = fail_post
        self.pull_body = pull_body
        self.posts = []
        self.gets = []

    def post(self, url, data=None, headers=None, timeout=None):
        if self.fail_post:
            raise requests.ConnectionError("network down")
        self.posts.append(json.loads(data.decode("utf-8")))
        # webhook bodies are opaque; an error page still counts as sent
        return FakeResponse(302, text="<html>moved</html>")

    def get(self, url, params=None, timeout=None):
        self.gets.append(params)
        return FakeResponse(200, self.pull_body)

    def actions(self):
        return [p["action"] for p in self.posts]


class CheckoutTest(unittest.TestCase):
    def setUp(self):
        self.conn = db.connect(":memory:")
        self.sheet = FakeSheet()
        self.service = StoreService(self.conn, session=self.sheet, detach_sync=False)
        self.catalog = self.service.catalog
        self.cart = self.service.cart
        self.ledger = self.service.ledger
        self.checkout = self.service.checkout
        self.service.settings.update(sync_url="")
        self.a = self.catalog.add({"name": "A", "stock": 5, "costPrice": 60000, "sellingPrice": 100000})
        self.b = self.catalog.add({"name": "B", "stock": 10, "costPrice": 20000, "sellingPrice": 50000})
        self.service.session.login("1", "0000")

    def tearDown(self):
        self.conn.close()

    def _enable_sync(self):
        self.service.settings.update(sync_url=SHEET_URL)
        self.sheet.posts.clear()

    def test_checkout_scenario_cash(self):
        for _ in range(3):
            self.cart.add_item(self.a)
        result = self.checkout.checkout("cash", "ignored note")
        self.assertEqual(self.catalog.get(self.a["id"])["stock"], 2)
        order = result.order
        self.assertEqual(order["totalAmount"], 300000)
        self.assertEqual(order["totalProfit"], 120000)
        self.assertEqual(len(order["items"]), 1)
        self.assertEqual(order["items"][0]["id"], self.a["id"])
        self.assertEqual(order["items"][0]["quantity"], 3)
        self.assertEqual(order["paymentMethod"], "cash")
        self.assertEqual(order["paymentNote"], "")
        self.assertEqual(order["employeeName"], "Quản trị viên")
        self.assertTrue(order["id"].startswith("DH-"))
        self.assertTrue(self.cart.is_empty())
        self.assertEqual(self.ledger.all()[0]["id"], order["id"])
        self.assertFalse(result.offline)
        self.assertFalse(result.synced)

    def test_checkout_conserves_stock_over_several_lines(self):
        self.cart.add_item(self.a)
        self.cart.add_item(self.a)
        for _ in range(4):
            self.cart.add_item(self.b)
        expected = self.cart.totals()
        before = len(self.ledger.all())
        result = self.checkout.checkout("transfer", "  VCB 0123456789  ")
        self.assertEqual(self.catalog.get(self.a["id"])["stock"], 3)
        self.assertEqual(self.catalog.get(self.b["id"])["stock"], 6)
        self.assertEqual(len(self.ledger.all()), before + 1)
        self.assertEqual(result.order["totalAmount"], expected["amount"])
        self.assertEqual(result.order["totalProfit"], expected["profit"])
        self.assertEqual(result.order["paymentNote"], "VCB 0123456789")
        self.assertEqual([i["id"] for i in result.order["items"]], [self.a["id"], self.b["id"]])

    def test_checkout_persists_all_blobs(self):
        self.cart.add_item(self.b)
        result = self.checkout.checkout("cash")
        state = db.load_state(self.conn)
        self.assertEqual(state["cart"], [])
        self.assertEqual(state["orders"][0]["id"], result.order["id"])
        stock = {p["id"]: p["stock"] for p in state["products"]}
        self.assertEqual(stock[self.b["id"]], 9)

    def test_empty_cart_checkout_is_a_noop(self):
        self._enable_sync()
        products = self.catalog.all()
        self.assertIsNone(self.checkout.checkout("cash"))
        self.assertEqual(self.ledger.all(), [])
        self.assertEqual(self.catalog.all(), products)
        self.assertEqual(self.sheet.posts, [])

    def test_unknown_payment_method_rejected(self):
        self.cart.add_item(self.a)
        with self.assertRaises(ValidationError):
            self.checkout.checkout("card")
        self.assertEqual(self.cart.quantity(self.a["id"]), 1)
        self.assertEqual(self.ledger.all(), [])

    def test_checkout_revalidates_cart_against_live_stock(self):
        for _ in range(4):
            self.cart.add_item(self.a)
        self.cart.add_item(self.b)
        self.catalog.update(self.a["id"], {"name": "A", "stock": 2, "costPrice": 60000, "sellingPrice": 100000})
        with self.assertRaises(StockExceeded) as ctx:
            self.checkout.checkout("cash")
        self.assertEqual(ctx.exception.lines[0]["id"], self.a["id"])
        self.assertEqual(self.catalog.get(self.a["id"])["stock"], 2)
        self.assertEqual(self.catalog.get(self.b["id"])["stock"], 10)
        self.assertEqual(self.ledger.all(), [])
        self.assertEqual(self.cart.quantity(self.a["id"]), 4)

    def test_employee_name_falls_back_when_logged_out(self):
        self.service.session.logout()
        self.cart.add_item(self.a)
        result = self.checkout.checkout("cash")
        self.assertEqual(result.order["employeeName"], "Không xác định")

    def test_checkout_mirrors_order_then_stock(self):
        self._enable_sync()
        self.cart.add_item(self.a)
        self.cart.add_item(self.b)
        result = self.checkout.checkout("cash")
        self.assertTrue(result.synced)
        self.assertFalse(result.offline)
        self.assertEqual(self.sheet.actions(), ["add_order", "update_product", "update_product"])
        order_event = self.sheet.posts[0]
        self.assertEqual(order_event["orderId"], result.order["id"])
        self.assertEqual(json.loads(order_event["items"])[0]["id"], self.a["id"])
        stocks = {p["id"]: p["stock"] for p in self.sheet.posts[1:]}
        self.assertEqual(stocks, {self.a["id"]: 4, self.b["id"]: 9})

    def test_commit_is_local_and_mirror_pushes_afterwards(self):
        self._enable_sync()
        self.cart.add_item(self.b)
        sale = self.checkout.commit("cash")
        self.assertEqual(self.sheet.posts, [])
        self.assertEqual(self.catalog.get(self.b["id"])["stock"], 9)
        self.assertTrue(self.ledger.contains(sale.order["id"]))
        self.assertTrue(self.cart.is_empty())
        self.assertEqual([p["id"] for p in sale.products], [self.b["id"]])

        self.sheet.fail_post = True
        result = self.checkout.mirror(sale)
        self.assertTrue(result.offline)
        self.assertTrue(self.ledger.contains(sale.order["id"]))

    def test_checkout_offline_still_commits_locally(self):
        self.service.settings.update(sync_url=SHEET_URL)
        self.sheet.fail_post = True
        self.cart.add_item(self.a)
        result = self.checkout.checkout("cash")
        self.assertTrue(result.offline)
        self.assertFalse(result.synced)
        self.assertEqual(self.catalog.get(self.a["id"])["stock"], 4)
        self.assertEqual(self.ledger.all()[0]["id"], result.order["id"])
        self.assertTrue(self.cart.is_empty())

    def test_order_ids_are_unique_in_ledger(self):
        ids = set()
        for _ in range(5):
            self.cart.add_item(self.b)
            ids.add(self.checkout.checkout("cash").order["id"])
        self.assertEqual(len(ids), 5)

    def test_delete_order_restores_stock(self):
        for _ in range(3):
            self.cart.add_item(self.a)
        self.cart.add_item(self.b)
        order = self.checkout.checkout("cash").order
        removed = self.checkout.delete_order(order["id"])
        self.assertEqual(removed["id"], order["id"])
        self.assertEqual(self.catalog.get(self.a["id"])["stock"], 5)
        self.assertEqual(self.catalog.get(self.b["id"])["stock"], 10)
        self.assertIsNone(self.ledger.get(order["id"]))

    def test_delete_order_scenario_mirrors_stock_only(self):
        c = self.catalog.add({"name": "C", "stock": 6, "costPrice": 1000, "sellingPrice": 3000})
        for _ in range(4):
            self.cart.add_item(c)
        order = self.checkout.checkout("cash").order
        self._enable_sync()
        self.checkout.delete_order(order["id"])
        self.assertEqual(self.catalog.get(c["id"])["stock"], 6)
        self.assertEqual(self.sheet.actions(), ["update_product"])
        self.assertEqual(self.sheet.posts[0]["stock"], 6)
        self.assertFalse(self.ledger.contains(order["id"]))

    def test_delete_order_skips_deleted_products(self):
        self.cart.add_item(self.a)
        self.cart.add_item(self.b)
        order = self.checkout.checkout("cash").order
        self.catalog.remove(self.a["id"], self.service.session.current)
        self.checkout.delete_order(order["id"])
        self.assertIsNone(self.catalog.get(self.a["id"]))
        self.assertEqual(self.catalog.get(self.b["id"])["stock"], 10)
        self.assertEqual(self.ledger.all(), [])

    def test_delete_unknown_order_is_a_noop(self):
        self.assertIsNone(self.checkout.delete_order("DH-000000"))

    def test_delete_order_policy(self):
        self.cart.add_item(self.a)
        order = self.checkout.checkout("cash").order
        staff = self.service.settings.add_employee("Lan", "1234", "staff")
        self.checkout.order_delete_role = "admin"
        with self.assertRaises(PermissionDenied):
            self.checkout.delete_order(order["id"], staff)
        self.assertTrue(self.ledger.contains(order["id"]))
        self.checkout.order_delete_role = "any"
        self.checkout.delete_order(order["id"], staff)
        self.assertFalse(self.ledger.contains(order["id"]))

    def test_sync_now_replaces_local_state(self):
        remote_order = {
            "id": "DH-424242", "items": json.dumps([{"id": "r1", "name": "Remote", "quantity": 1}]),
            "totalAmount": 5, "totalProfit": 1, "timestamp": 1, "paymentMethod": "cash",
        }
        self.sheet.pull_body = {
            "products": [{"id": "r1", "name": "Remote", "stock": 3, "costPrice": 1, "sellingPrice": 5, "createdAt": 1}],
            "orders": [remote_order],
        }
        self._enable_sync()
        self.cart.add_item(self.a)
        self.assertTrue(self.checkout.sync_now())
        self.assertEqual([p["id"] for p in self.catalog.all()], ["r1"])
        self.assertEqual(self.ledger.all()[0]["items"][0]["name"], "Remote")
        self.assertEqual(self.cart.quantity(self.a["id"]), 1)
        self.assertEqual(self.sheet.gets, [{"action": "get_all_data"}])

    def test_sync_now_failure_keeps_local_state(self):
        self.sheet.pull_body = {"products": []}
        self._enable_sync()
        products = self.catalog.all()
        self.assertFalse(self.checkout.sync_now())
        self.assertEqual(self.catalog.all(), products)

    def test_sync_now_rejects_malformed_products(self):
        self.sheet.pull_body = {"products": [{"id": "r1", "name": "X", "stock": "nhiều"}], "orders": []}
        self._enable_sync()
        products = self.catalog.all()
        self.assertFalse(self.checkout.sync_now())
        self.assertEqual(self.catalog.all(), products)

    def test_sync_now_disabled(self):
        self.assertFalse(self.checkout.sync_now())
        self.assertEqual(self.sheet.gets, [])

    def test_push_order_outcome_values(self):
        self.assertEqual(self.service.sync.push_order_event({"id": "x", "items": []}), DispatchOutcome.DISABLED)
        self._enable_sync()
        self.assertEqual(self.service.sync.push_order_event({"id": "x", "items": []}), DispatchOutcome.SENT)


if __name__ == "__main__":
    unittest.main()
