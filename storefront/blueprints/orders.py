"""Orders blueprint - checkout, history and order actions."""
from datetime import datetime
from flask import Blueprint, request, g
from storefront.blueprints import ok, json_body
from storefront.database import get_session
from storefront.exceptions import ValidationError
from storefront.middleware import require_user
from storefront.services import order_service

orders_bp = Blueprint('orders', __name__, url_prefix='/api/orders')


def _parse_date_arg(name):
    value = request.args.get(name)
    if not value:
        return None
    try:
        return datetime.fromisoformat(value)
    except ValueError:
        raise ValidationError(f'{name} must be an ISO date', payload={'field': name})


@orders_bp.route('', methods=['POST'])
@require_user
def place_order():
    """
    Check out the cart.

    Body: {"address_id", "payment_method", "notes"?, "payment"?: {order_info, lang, ...}}
    A MOMO payment that fails to start is reported in data.payment_error;
    the order is still created (201).
    """
    payload = json_body()
    result = order_service.place_order(
        get_session(),
        g.user_id,
        address_id=payload.get('address_id'),
        payment_method=payload.get('payment_method'),
        notes=payload.get('notes'),
        payment_options=payload.get('payment') or None,
    )
    return ok(result, 201)


@orders_bp.route('', methods=['GET'])
@require_user
def list_orders():
    """Order history. Query: page, page_size, status (comma separated), date_from, date_to."""
    return ok(order_service.list_user_orders(
        get_session(),
        g.user_id,
        page=request.args.get('page', 1),
        page_size=request.args.get('page_size', 10),
        statuses=request.args.get('status'),
        date_from=_parse_date_arg('date_from'),
        date_to=_parse_date_arg('date_to'),
    ))


@orders_bp.route('/<int:order_id>', methods=['GET'])
@require_user
def order_detail(order_id):
    return ok(order_service.get_order_detail(get_session(), g.user_id, order_id))


@orders_bp.route('/<int:order_id>/cancel', methods=['POST'])
@require_user
def cancel_order(order_id):
    payload = json_body()
    return ok(order_service.cancel_order(get_session(), g.user_id, order_id, payload.get('reason')))


@orders_bp.route('/<int:order_id>/reorder', methods=['POST'])
@require_user
def reorder(order_id):
    return ok(order_service.reorder(get_session(), g.user_id, order_id))


@orders_bp.route('/<int:order_id>/payments', methods=['GET'])
@require_user
def order_payments(order_id):
    return ok(order_service.list_order_payments(get_session(), g.user_id, order_id))


@orders_bp.route('/<int:order_id>/payments', methods=['POST'])
@require_user
def retry_payment(order_id):
    """New MoMo attempt for an unpaid order."""
    payload = json_body()
    return ok(order_service.retry_payment(get_session(), g.user_id, order_id, payload or None), 201)
