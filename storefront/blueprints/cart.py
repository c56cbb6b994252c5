"""Cart blueprint - the user's persistent cart."""
from flask import Blueprint, g
from storefront.blueprints import ok, json_body
from storefront.database import get_session
from storefront.exceptions import ValidationError
from storefront.middleware import require_user
from storefront.services import cart_service

cart_bp = Blueprint('cart', __name__, url_prefix='/api/cart')


@cart_bp.route('', methods=['GET'])
@require_user
def get_cart():
    """Priced cart view."""
    return ok(cart_service.get_cart(get_session(), g.user_id))


@cart_bp.route('/count', methods=['GET'])
@require_user
def cart_count():
    return ok(cart_service.get_cart_count(get_session(), g.user_id))


@cart_bp.route('/items', methods=['POST'])
@require_user
def add_items():
    """
    Add items to the cart.

    Body: {"items": [{"variant_id": 1, "quantity": 2}, ...]}
    or a single {"variant_id": 1, "quantity": 2}.
    """
    payload = json_body()
    items = payload.get('items')
    if items is None and 'variant_id' in payload:
        items = [{'variant_id': payload.get('variant_id'), 'quantity': payload.get('quantity', 1)}]
    if not isinstance(items, list) or not all(isinstance(i, dict) for i in items):
        raise ValidationError('items must be a list of objects', payload={'field': 'items'})

    return ok(cart_service.add_items(get_session(), g.user_id, items))


@cart_bp.route('/items/<int:item_id>', methods=['PATCH'])
@require_user
def update_item(item_id):
    """Change a line's quantity ({"quantity"}) or its variant ({"variant_id"})."""
    payload = json_body()
    db_session = get_session()

    if 'variant_id' in payload:
        view = cart_service.update_item_variant(db_session, g.user_id, item_id, payload['variant_id'])
    elif 'quantity' in payload:
        view = cart_service.update_item_quantity(db_session, g.user_id, item_id, payload['quantity'])
    else:
        raise ValidationError('quantity or variant_id is required')
    return ok(view)


@cart_bp.route('/items/<int:item_id>', methods=['DELETE'])
@require_user
def remove_item(item_id):
    return ok(cart_service.remove_item(get_session(), g.user_id, item_id))


@cart_bp.route('/coupon', methods=['POST'])
@require_user
def apply_coupon():
    payload = json_body()
    return ok(cart_service.apply_coupon(get_session(), g.user_id, payload.get('code')))


@cart_bp.route('/coupon', methods=['DELETE'])
@require_user
def remove_coupon():
    return ok(cart_service.remove_coupon(get_session(), g.user_id))


@cart_bp.route('/coupons', methods=['GET'])
@require_user
def available_coupons():
    """Coupons usable now, with what each would take off this cart."""
    return ok(cart_service.get_available_coupons(get_session(), g.user_id))


@cart_bp.route('/payment-method', methods=['GET'])
@require_user
def payment_methods():
    return ok(cart_service.get_payment_methods(get_session(), g.user_id))


@cart_bp.route('/payment-method', methods=['PUT'])
@require_user
def set_payment_method():
    payload = json_body()
    return ok(cart_service.set_payment_method(get_session(), g.user_id, payload.get('method')))
