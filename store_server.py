from flask import Blueprint, Flask, current_app, jsonify, request
from werkzeug.exceptions import HTTPException
import logging
import threading
from typing import Any, Dict, Optional

import store_config as cfg
from ledger import DATE_RANGES, PAYMENT_FILTERS, order_stats
from store_errors import NotFound, StoreError
from store_service import StoreService, build_service

api = Blueprint('api', __name__)

_SERVICE_LOCK = threading.Lock()
_PUBLIC_ENDPOINTS = {'api.health', 'api.session_login', 'api.employee_list', 'api.session_current'}


def _service() -> StoreService:
    """Return the app's StoreService, opening the configured DB on first use."""
    with _SERVICE_LOCK:
        service = current_app.config.get('STORE_SERVICE')
        if service is None:
            service = build_service(cfg.STORE_DB_PATH)
            current_app.config['STORE_SERVICE'] = service
        return service


def _error(message: str, status: int = 400, **extra):
    payload = {'status': 'error', 'message': message}
    payload.update(extra)
    return jsonify(payload), status


def _ok(**data):
    payload = {'status': 'success'}
    payload.update(data)
    return jsonify(payload)


def _json_body() -> Dict[str, Any]:
    data = request.get_json(silent=True)
    return data if isinstance(data, dict) else {}


def _public_employee(emp: Dict[str, Any]) -> Dict[str, Any]:
    return {'id': emp.get('id'), 'name': emp.get('name'), 'role': emp.get('role')}


def _as_non_negative_int(value: Any) -> Optional[int]:
    if isinstance(value, bool):
        return None
    try:
        num = int(value)
    except (TypeError, ValueError):
        return None
    if isinstance(value, float) and value != num:
        return None
    return num if num >= 0 else None


def _validate_product_payload(data: Dict[str, Any]) -> Optional[str]:
    name = data.get('name')
    if not isinstance(name, str) or not name.strip():
        return 'Product name is required'
    for field in ('stock', 'costPrice', 'sellingPrice'):
        if _as_non_negative_int(data.get(field)) is None:
            return f'{field} must be a non-negative whole number'
    image = data.get('imageUrl', '')
    if image is not None and not isinstance(image, str):
        return 'imageUrl must be a string'
    return None


def _product_form(data: Dict[str, Any]) -> Dict[str, Any]:
    return {
        'name': data['name'].strip(),
        'imageUrl': (data.get('imageUrl') or '').strip(),
        'stock': _as_non_negative_int(data['stock']),
        'costPrice': _as_non_negative_int(data['costPrice']),
        'sellingPrice': _as_non_negative_int(data['sellingPrice']),
    }


@api.app_errorhandler(StoreError)
def _handle_store_error(exc: StoreError):
    extra = {}
    lines = getattr(exc, 'lines', None)
    if lines:
        extra['lines'] = lines
    return _error(exc.message, exc.http_status, **extra)


@api.app_errorhandler(Exception)
def _handle_unexpected(exc: Exception):
    if isinstance(exc, HTTPException):
        return exc
    current_app.logger.exception('Request %s %s failed', request.method, request.path)
    return _error('Internal server error', 500)


@api.before_request
def _require_login():
    if request.endpoint in _PUBLIC_ENDPOINTS:
        return None
    if _service().session.current is None:
        return _error('Login required', 401)
    return None


def _require_admin():
    if not _service().session.is_admin:
        return _error('Admin role required', 403)
    return None


@api.route('/health')
def health():
    return _ok()


# ---------- session ----------
@api.route('/api/employees')
def employee_list():
    service = _service()
    return _ok(employees=[_public_employee(e) for e in service.settings.employees()])


@api.route('/api/session')
def session_current():
    current = _service().session.current
    return _ok(employee=_public_employee(current) if current else None)


@api.route('/api/session/login', methods=['POST'])
def session_login():
    data = _json_body()
    service = _service()
    with service.lock:
        emp = service.session.login(str(data.get('employeeId') or ''), str(data.get('pin') or ''))
    return _ok(employee=_public_employee(emp))


@api.route('/api/session/logout', methods=['POST'])
def session_logout():
    service = _service()
    with service.lock:
        service.session.logout()
    return _ok()


# ---------- products ----------
@api.route('/api/products')
def product_list():
    service = _service()
    term = request.args.get('q', '')
    sort = request.args.get('sort', 'newest')
    with service.lock:
        rows = service.catalog.search(term) if term else service.catalog.all()
        rows = service.catalog.sorted(sort, rows)
    return _ok(products=rows)


@api.route('/api/products/low-stock')
def product_low_stock():
    service = _service()
    threshold = request.args.get('threshold', type=int)
    with service.lock:
        if threshold is None:
            rows = service.low_stock()
        else:
            rows = service.catalog.low_stock(threshold)
    return _ok(products=rows)


@api.route('/api/products', methods=['POST'])
def product_add():
    data = _json_body()
    problem = _validate_product_payload(data)
    if problem:
        return _error(problem)
    service = _service()
    with service.lock:
        product = service.catalog.add(_product_form(data))
    return _ok(product=product), 201


@api.route('/api/products/<product_id>', methods=['PUT'])
def product_update(product_id):
    data = _json_body()
    problem = _validate_product_payload(data)
    if problem:
        return _error(problem)
    service = _service()
    with service.lock:
        product = service.catalog.update(product_id, _product_form(data))
    if product is None:
        raise NotFound(f'Product {product_id} not found')
    return _ok(product=product)


@api.route('/api/products/<product_id>', methods=['DELETE'])
def product_delete(product_id):
    service = _service()
    with service.lock:
        product = service.catalog.remove(product_id, service.session.current)
    if product is None:
        raise NotFound(f'Product {product_id} not found')
    return _ok(product=product)


# ---------- cart ----------
def _cart_payload(service: StoreService):
    return {'items': service.cart.items(), 'totals': service.cart.totals()}


@api.route('/api/cart')
def cart_get():
    service = _service()
    with service.lock:
        return _ok(cart=_cart_payload(service))


@api.route('/api/cart/items', methods=['POST'])
def cart_add():
    data = _json_body()
    service = _service()
    with service.lock:
        product = service.catalog.get(str(data.get('productId') or ''))
        if product is None:
            raise NotFound('Product not found')
        service.cart.add_item(product)
        return _ok(cart=_cart_payload(service))


@api.route('/api/cart/items/<product_id>', methods=['PATCH'])
def cart_change(product_id):
    data = _json_body()
    try:
        delta = int(data.get('delta'))
    except (TypeError, ValueError):
        return _error('delta must be an integer')
    service = _service()
    with service.lock:
        service.cart.change_quantity(product_id, delta)
        return _ok(cart=_cart_payload(service))


@api.route('/api/cart/items/<product_id>', methods=['DELETE'])
def cart_remove(product_id):
    service = _service()
    with service.lock:
        service.cart.remove_item(product_id)
        return _ok(cart=_cart_payload(service))


@api.route('/api/checkout', methods=['POST'])
def checkout():
    data = _json_body()
    service = _service()
    with service.lock:
        sale = service.checkout.commit(
            str(data.get('paymentMethod') or ''),
            str(data.get('paymentNote') or ''),
        )
    if sale is None:
        return _error('Cart is empty')
    # mirrored outside the lock
    result = service.checkout.mirror(sale)
    message = 'Checkout complete'
    if result.offline:
        message = 'Order saved locally (offline) - sheet sync failed'
    return _ok(order=result.order, synced=result.synced, offline=result.offline, message=message)


# ---------- orders ----------
@api.route('/api/orders')
def order_list():
    term = request.args.get('q', '')
    date_range = request.args.get('range', 'all')
    payment = request.args.get('payment', 'all')
    if date_range not in DATE_RANGES:
        return _error(f'range must be one of {", ".join(DATE_RANGES)}')
    if payment not in PAYMENT_FILTERS:
        return _error(f'payment must be one of {", ".join(PAYMENT_FILTERS)}')
    service = _service()
    with service.lock:
        rows = service.ledger.filter(term, date_range, payment)
    return _ok(orders=rows, stats=order_stats(rows))


@api.route('/api/orders/<order_id>', methods=['DELETE'])
def order_delete(order_id):
    service = _service()
    with service.lock:
        order = service.checkout.delete_order(order_id, service.session.current)
    if order is None:
        raise NotFound(f'Order {order_id} not found')
    return _ok(order=order)


@api.route('/api/dashboard')
def dashboard():
    service = _service()
    with service.lock:
        return _ok(
            today=service.ledger.recent_totals(),
            lowStock=service.low_stock(),
            recentOrders=service.ledger.all()[:5],
        )


# ---------- settings ----------
@api.route('/api/settings')
def settings_get():
    denied = _require_admin()
    if denied:
        return denied
    return _ok(settings=_service().settings.snapshot())


@api.route('/api/settings', methods=['PUT'])
def settings_update():
    denied = _require_admin()
    if denied:
        return denied
    data = _json_body()
    service = _service()
    with service.lock:
        settings = service.settings.update(
            store_name=data.get('storeName'),
            sync_url=data.get('googleScriptUrl'),
        )
    return _ok(settings=settings)


@api.route('/api/settings/bank-accounts')
def bank_account_list():
    return _ok(bankAccounts=_service().settings.bank_accounts())


@api.route('/api/settings/bank-accounts', methods=['POST'])
def bank_account_add():
    denied = _require_admin()
    if denied:
        return denied
    data = _json_body()
    service = _service()
    with service.lock:
        account = service.settings.add_bank_account(
            str(data.get('bankName') or ''),
            str(data.get('accountNumber') or ''),
            str(data.get('ownerName') or ''),
        )
    return _ok(account=account), 201


@api.route('/api/settings/bank-accounts/<account_id>', methods=['DELETE'])
def bank_account_delete(account_id):
    denied = _require_admin()
    if denied:
        return denied
    service = _service()
    with service.lock:
        removed = service.settings.remove_bank_account(account_id)
    if not removed:
        raise NotFound(f'Bank account {account_id} not found')
    return _ok()


@api.route('/api/settings/employees', methods=['POST'])
def employee_add():
    denied = _require_admin()
    if denied:
        return denied
    data = _json_body()
    service = _service()
    with service.lock:
        emp = service.settings.add_employee(
            str(data.get('name') or ''),
            str(data.get('pin') or ''),
            str(data.get('role') or 'staff'),
        )
    return _ok(employee=_public_employee(emp)), 201


@api.route('/api/settings/employees/<employee_id>', methods=['DELETE'])
def employee_delete(employee_id):
    denied = _require_admin()
    if denied:
        return denied
    service = _service()
    with service.lock:
        removed = service.settings.remove_employee(employee_id)
    if not removed:
        raise NotFound(f'Employee {employee_id} not found')
    return _ok()


# ---------- sync ----------
@api.route('/api/sync/pull', methods=['POST'])
def sync_pull():
    service = _service()
    with service.lock:
        if not service.sync.enabled:
            return _error('Configure the Google Script URL first', 400)
        ok = service.checkout.sync_now()
    if not ok:
        return _error('Could not fetch data from the sheet', 502)
    return _ok(products=len(service.catalog.all()), orders=len(service.ledger.all()))


@api.route('/api/sync/test', methods=['POST'])
def sync_test():
    service = _service()
    if not service.test_connection():
        return _error('Configure the Google Script URL first', 400)
    return _ok(message='Test request sent; check the sheet')


def create_app(service: Optional[StoreService] = None) -> Flask:
    app = Flask(__name__)
    app.config['STORE_SERVICE'] = service
    app.json.ensure_ascii = False
    app.logger.setLevel(getattr(logging, cfg.LOG_LEVEL, logging.INFO))
    app.register_blueprint(api)
    return app


app = create_app()
