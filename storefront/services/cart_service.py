"""
Cart Service - persistent cart operations and pricing.

build_cart_pricing() is the single place where a cart is priced. It only
flushes, so checkout can run it inside its own transaction; every public
mutation here runs as one transaction (cart and variant rows locked) and
returns the freshly recomputed cart view.
"""
import logging
from collections import OrderedDict
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import List, Dict, Any, Optional
from flask import current_app
from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from storefront.database import atomic
from storefront.models import Cart, CartItem, CartCoupon, Coupon, PaymentMethod
from storefront.exceptions import (
    StoreError, BusinessLogicError, NotFoundError, ValidationError, InsufficientStockError
)
from storefront.services.pricing_service import select_active_prices, get_variant
from storefront.services.coupon_service import (
    CouponEvaluation, evaluate_coupon, check_coupon_usable, find_active_coupon, normalize_code,
    list_available_coupons,
)
from storefront.utils.dates import utcnow
from storefront.utils.money import to_decimal, round_money, as_number

logger = logging.getLogger(__name__)

ZERO = Decimal('0')

PAYMENT_METHOD_LABELS = {
    PaymentMethod.COD: 'Cash on delivery',
    PaymentMethod.BANK_TRANSFER: 'Bank transfer',
    PaymentMethod.MOMO: 'MoMo wallet',
}


@dataclass
class CartPricing:
    """Priced cart. Money fields are rounded to whole units; lines keep raw Decimals."""
    view: Dict[str, Any]
    lines: List[Dict[str, Any]] = field(default_factory=list)
    subtotal: Decimal = ZERO
    discount: Decimal = ZERO
    shipping: Decimal = ZERO
    tax: Decimal = ZERO
    total: Decimal = ZERO
    coupon: Optional[Coupon] = None
    evaluation: Optional[CouponEvaluation] = None


# =====================================================
# INPUT VALIDATION
# =====================================================

def require_id(value, name: str = 'id') -> int:
    """Positive integer id or ValidationError."""
    try:
        parsed = int(value)
    except (TypeError, ValueError):
        raise ValidationError(f'{name} is invalid', code='INVALID_INPUT', payload={'field': name})
    if isinstance(value, bool) or parsed <= 0 or str(parsed) != str(value).strip():
        raise ValidationError(f'{name} is invalid', code='INVALID_INPUT', payload={'field': name})
    return parsed


def require_quantity(value, allow_zero: bool = False) -> int:
    """Integer quantity; positive unless allow_zero (then any integer, <= 0 meaning delete)."""
    if isinstance(value, bool) or not isinstance(value, (int, str)):
        raise ValidationError('quantity must be an integer', code='INVALID_QUANTITY')
    try:
        qty = int(value)
    except ValueError:
        raise ValidationError('quantity must be an integer', code='INVALID_QUANTITY')
    if qty <= 0 and not allow_zero:
        raise ValidationError('quantity must be greater than 0', code='INVALID_QUANTITY')
    return qty


def parse_payment_method(value) -> PaymentMethod:
    """Case-insensitive PaymentMethod lookup."""
    normalized = str(value or '').strip().upper()
    try:
        return PaymentMethod(normalized)
    except ValueError:
        raise ValidationError(
            'Invalid payment method', code='INVALID_PAYMENT_METHOD',
            payload={'allowed': [m.value for m in PaymentMethod]}
        )


# =====================================================
# CART PRICING
# =====================================================

def _pricing_settings() -> Dict[str, Decimal]:
    cfg = current_app.config
    return {
        'tax_rate': to_decimal(cfg.get('TAX_RATE', '0.08')),
        'free_shipping_threshold': to_decimal(cfg.get('FREE_SHIPPING_THRESHOLD', '200')),
        'flat_shipping_fee': to_decimal(cfg.get('FLAT_SHIPPING_FEE', '15')),
    }


def _empty_summary() -> Dict[str, int]:
    return {'subtotal': 0, 'savings': 0, 'promo_discount': 0, 'shipping': 0, 'tax': 0, 'total': 0}


def _item_view(item: CartItem, list_price: Decimal, unit_price: Decimal) -> Dict[str, Any]:
    variant = item.variant
    product = variant.product
    return {
        'id': item.id,
        'variant_id': variant.id,
        'product': {'id': product.id, 'name': product.name, 'image_url': product.image_url},
        'color': variant.color,
        'size': variant.size,
        'quantity': item.quantity,
        'unit_price': as_number(unit_price),
        'list_price': as_number(list_price),
        'in_stock': variant.in_stock,
        'max_quantity': max(0, variant.stock or 0),
        'total_price': as_number(unit_price * item.quantity),
    }


def _detach_coupon(session: Session, cart: Cart, reason: str) -> None:
    """Drop the cart's coupon association (self-healing, not an error)."""
    logger.info(f"Detaching coupon {cart.coupon.coupon_id} from cart {cart.id}: {reason}")
    cart.coupon = None
    session.flush()


def _evaluate_attached_coupon(session: Session, cart: Cart, subtotal: Decimal, now: datetime):
    """Re-validate the persisted coupon against a fresh subtotal; detach it if unusable."""
    if cart.coupon is None:
        return None, None
    try:
        coupon = check_coupon_usable(cart.coupon.coupon, now)
    except StoreError as e:
        _detach_coupon(session, cart, e.code)
        return None, None

    evaluation = evaluate_coupon(coupon, subtotal)
    if not evaluation.is_eligible:
        _detach_coupon(session, cart, 'MIN_ORDER_NOT_MET')
        return None, None
    return coupon, evaluation


def build_cart_pricing(session: Session, cart: Optional[Cart], now: Optional[datetime] = None) -> CartPricing:
    """
    Price a cart: items, savings, coupon, shipping, tax and total.

    Accumulation keeps full precision; rounding happens once when the summary
    is built. Flushes (coupon detach) but never commits.
    """
    now = now or utcnow()
    payment_method = (cart.payment_method if cart and cart.payment_method else PaymentMethod.COD).value

    if cart is None or not cart.items:
        return CartPricing(view={
            'items': [],
            'summary': _empty_summary(),
            'applied_promo': None,
            'payment_method': payment_method,
        })

    settings = _pricing_settings()
    items_view = []
    lines = []
    subtotal = ZERO
    savings = ZERO

    for item in cart.items:
        quote = select_active_prices(item.variant, now)
        line_total = quote.unit_price * item.quantity
        subtotal += line_total
        savings += quote.saving * item.quantity
        items_view.append(_item_view(item, quote.list_price, quote.unit_price))
        lines.append({
            'item': item,
            'variant': item.variant,
            'quantity': item.quantity,
            'unit_price': quote.unit_price,
            'list_price': quote.list_price,
            'line_total': line_total,
        })

    coupon, evaluation = _evaluate_attached_coupon(session, cart, subtotal, now)
    discount = min(evaluation.applied_value, subtotal) if evaluation else ZERO
    free_shipping = bool(evaluation and evaluation.free_shipping)

    taxable = subtotal - discount
    if free_shipping or taxable >= settings['free_shipping_threshold']:
        shipping = ZERO
    else:
        shipping = settings['flat_shipping_fee']
    tax = settings['tax_rate'] * taxable
    total = taxable + shipping + tax

    pricing = CartPricing(
        view={},
        lines=lines,
        subtotal=round_money(subtotal),
        discount=round_money(discount),
        shipping=round_money(shipping),
        tax=round_money(tax),
        total=round_money(total),
        coupon=coupon,
        evaluation=evaluation,
    )
    pricing.view = {
        'items': items_view,
        'summary': {
            'subtotal': as_number(pricing.subtotal),
            'savings': as_number(round_money(savings)),
            'promo_discount': as_number(pricing.discount),
            'shipping': as_number(pricing.shipping),
            'tax': as_number(pricing.tax),
            'total': as_number(pricing.total),
        },
        'applied_promo': {
            'coupon_id': coupon.id,
            'code': coupon.code,
            'type': coupon.type.value,
            'value': as_number(coupon.value),
            'discount': as_number(pricing.discount),
            'free_shipping': evaluation.free_shipping,
        } if coupon else None,
        'payment_method': payment_method,
    }
    return pricing


# =====================================================
# CART LOOKUP
# =====================================================

def load_cart(session: Session, user_id: int, lock: bool = False) -> Optional[Cart]:
    """User's cart or None. lock=True takes the cart row FOR UPDATE."""
    query = session.query(Cart).filter(Cart.user_id == user_id)
    if lock:
        query = query.with_for_update().populate_existing()
    return query.first()


def get_or_create_cart(session: Session, user_id: int) -> Cart:
    """
    Locked cart for user, created on first use.
    One cart per user (unique user_id); a concurrent creator wins the race.
    """
    cart = load_cart(session, user_id, lock=True)
    if cart:
        return cart

    try:
        with session.begin_nested():
            cart = Cart(user_id=user_id, payment_method=PaymentMethod.COD)
            session.add(cart)
    except IntegrityError:
        logger.info(f"Cart for user {user_id} created concurrently, reloading")
        cart = load_cart(session, user_id, lock=True)
    return cart


def _get_owned_item(session: Session, user_id: int, item_id: int) -> CartItem:
    item = (
        session.query(CartItem)
        .join(Cart, Cart.id == CartItem.cart_id)
        .filter(CartItem.id == item_id, Cart.user_id == user_id)
        .first()
    )
    if not item:
        raise NotFoundError('Cart item not found', code='CART_ITEM_NOT_FOUND')
    return item


def _require_sellable(variant) -> None:
    if not variant.is_active:
        raise BusinessLogicError(
            f'"{variant.label}" is no longer available', code='VARIANT_INACTIVE',
            payload={'variant_id': variant.id}
        )
    if (variant.stock or 0) <= 0:
        raise InsufficientStockError(variant.label, 0, code='ITEM_OUT_OF_STOCK', variant_id=variant.id)


# =====================================================
# READS
# =====================================================

def compute_cart(session: Session, user_id: int, now: Optional[datetime] = None) -> Dict[str, Any]:
    """Cart view for user. Joins the caller's transaction (no commit)."""
    cart = load_cart(session, user_id)
    return build_cart_pricing(session, cart, now).view


def get_cart(session: Session, user_id: int, now: Optional[datetime] = None) -> Dict[str, Any]:
    """Standalone cart read; commits any coupon detach made while pricing."""
    with atomic(session):
        return compute_cart(session, user_id, now)


def get_cart_count(session: Session, user_id: int) -> Dict[str, int]:
    """Distinct lines and total units in the user's cart."""
    lines, quantity = (
        session.query(func.count(CartItem.id), func.coalesce(func.sum(CartItem.quantity), 0))
        .join(Cart, Cart.id == CartItem.cart_id)
        .filter(Cart.user_id == user_id)
        .one()
    )
    return {'items': int(lines or 0), 'quantity': int(quantity or 0)}


def get_available_coupons(session: Session, user_id: int, now: Optional[datetime] = None) -> List[Dict[str, Any]]:
    """Usable coupons evaluated against the user's current subtotal."""
    now = now or utcnow()
    cart = load_cart(session, user_id)
    subtotal = ZERO
    if cart:
        for item in cart.items:
            subtotal += select_active_prices(item.variant, now).unit_price * item.quantity
    return list_available_coupons(session, subtotal, now)


def get_payment_methods(session: Session, user_id: int) -> Dict[str, Any]:
    """Payment method catalogue with the cart's current selection."""
    cart = load_cart(session, user_id)
    selected = cart.payment_method if cart and cart.payment_method else PaymentMethod.COD
    momo_enabled = bool(current_app.config.get('MOMO_PARTNER_CODE'))
    return {
        'selected': selected.value,
        'methods': [
            {
                'code': method.value,
                'label': PAYMENT_METHOD_LABELS[method],
                'enabled': momo_enabled if method == PaymentMethod.MOMO else True,
            }
            for method in PaymentMethod
        ],
    }


# =====================================================
# MUTATIONS
# =====================================================

def add_items(session: Session, user_id: int, items: List[Dict[str, Any]], now: Optional[datetime] = None) -> Dict[str, Any]:
    """
    Add one or more variants to the cart.

    Quantities for the same variant are summed first. A new line must fit the
    variant's stock; an existing line grows up to the stock and raises
    QUANTITY_EXCEEDS_STOCK only when nothing more fits. All-or-nothing across
    the whole request.
    """
    if not items:
        raise ValidationError('items is required', code='INVALID_INPUT', payload={'field': 'items'})

    requested = OrderedDict()
    for entry in items:
        variant_id = require_id(entry.get('variant_id'), 'variant_id')
        quantity = require_quantity(entry.get('quantity', 1))
        requested[variant_id] = requested.get(variant_id, 0) + quantity

    with atomic(session):
        cart = get_or_create_cart(session, user_id)
        by_variant = {item.variant_id: item for item in cart.items}

        for variant_id, quantity in requested.items():
            variant = get_variant(session, variant_id, lock=True)
            _require_sellable(variant)

            existing = by_variant.get(variant_id)
            if existing is None and quantity > variant.stock:
                raise InsufficientStockError(variant.label, variant.stock, variant_id=variant_id)

            current_qty = existing.quantity if existing else 0
            new_qty = min(current_qty + quantity, variant.stock)
            if new_qty <= current_qty:
                raise InsufficientStockError(variant.label, variant.stock, variant_id=variant_id)

            if existing:
                existing.quantity = new_qty
            else:
                by_variant[variant_id] = CartItem(variant=variant, quantity=new_qty)
                cart.items.append(by_variant[variant_id])

            logger.info(f"Cart {cart.id}: variant {variant_id} quantity {current_qty} -> {new_qty}")

        session.flush()
        return build_cart_pricing(session, cart, now).view


def add_item(session: Session, user_id: int, variant_id, quantity=1, now: Optional[datetime] = None) -> Dict[str, Any]:
    """Single-variant shorthand for add_items()."""
    return add_items(session, user_id, [{'variant_id': variant_id, 'quantity': quantity}], now)


def update_item_quantity(session: Session, user_id: int, item_id, quantity, now: Optional[datetime] = None) -> Dict[str, Any]:
    """
    Set a line's quantity. <= 0 removes the line.
    Unlike add, a quantity above stock is rejected rather than clamped.
    """
    item_id = require_id(item_id, 'item_id')
    quantity = require_quantity(quantity, allow_zero=True)

    with atomic(session):
        cart = load_cart(session, user_id, lock=True)
        item = _get_owned_item(session, user_id, item_id)

        if quantity <= 0:
            cart.items.remove(item)
        else:
            variant = get_variant(session, item.variant_id, lock=True)
            if quantity > variant.stock:
                raise InsufficientStockError(variant.label, variant.stock, variant_id=variant.id)
            item.quantity = quantity

        session.flush()
        return build_cart_pricing(session, cart, now).view


def update_item_variant(session: Session, user_id: int, item_id, new_variant_id, now: Optional[datetime] = None) -> Dict[str, Any]:
    """
    Swap a line to another variant (e.g. color/size).
    Merges into an existing line for that variant; the result must fit its stock.
    """
    item_id = require_id(item_id, 'item_id')
    new_variant_id = require_id(new_variant_id, 'variant_id')

    with atomic(session):
        cart = load_cart(session, user_id, lock=True)
        item = _get_owned_item(session, user_id, item_id)

        if item.variant_id != new_variant_id:
            variant = get_variant(session, new_variant_id, lock=True)
            _require_sellable(variant)

            same = next((i for i in cart.items if i.variant_id == new_variant_id), None)
            target_qty = item.quantity + (same.quantity if same else 0)
            if target_qty > variant.stock:
                raise InsufficientStockError(variant.label, variant.stock, variant_id=variant.id)

            if same:
                same.quantity = target_qty
                cart.items.remove(item)
            else:
                item.variant = variant

        session.flush()
        return build_cart_pricing(session, cart, now).view


def remove_item(session: Session, user_id: int, item_id, now: Optional[datetime] = None) -> Dict[str, Any]:
    """Delete a line owned by the user."""
    item_id = require_id(item_id, 'item_id')

    with atomic(session):
        cart = load_cart(session, user_id, lock=True)
        item = _get_owned_item(session, user_id, item_id)
        cart.items.remove(item)
        session.flush()
        return build_cart_pricing(session, cart, now).view


def apply_coupon(session: Session, user_id: int, code, now: Optional[datetime] = None) -> Dict[str, Any]:
    """
    Apply a coupon to the cart, replacing any other one.

    Evaluated against the subtotal priced in this same transaction; the
    returned view already reflects the coupon.

    Raises:
        BusinessLogicError: MIN_ORDER_NOT_MET (data.missing_amount) and the
            coupon lookup errors of find_active_coupon().
    """
    code = normalize_code(code)
    now = now or utcnow()

    with atomic(session):
        cart = get_or_create_cart(session, user_id)
        subtotal = sum(
            (select_active_prices(item.variant, now).unit_price * item.quantity for item in cart.items),
            ZERO,
        )

        coupon = find_active_coupon(session, code, now)
        evaluation = evaluate_coupon(coupon, subtotal)
        if not evaluation.is_eligible:
            raise BusinessLogicError(
                f'Add {as_number(round_money(evaluation.missing_amount))} more to use {coupon.code}',
                code='MIN_ORDER_NOT_MET',
                payload={
                    'missing_amount': as_number(evaluation.missing_amount),
                    'min_order_value': as_number(coupon.min_order_value),
                },
            )

        if cart.coupon is not None and cart.coupon.coupon_id != coupon.id:
            # Evict first: cart_id is unique on cart_coupon
            cart.coupon = None
            session.flush()

        if cart.coupon is None:
            cart.coupon = CartCoupon(coupon=coupon)
        cart.coupon.discount_value = evaluation.applied_value
        cart.coupon.free_shipping = evaluation.free_shipping
        cart.coupon.applied_at = now
        session.flush()

        logger.info(f"Cart {cart.id}: applied coupon {coupon.code} ({evaluation.applied_value})")
        return build_cart_pricing(session, cart, now).view


def remove_coupon(session: Session, user_id: int, now: Optional[datetime] = None) -> Dict[str, Any]:
    """Clear any coupon association for the cart."""
    with atomic(session):
        cart = load_cart(session, user_id, lock=True)
        if cart is not None and cart.coupon is not None:
            cart.coupon = None
            session.flush()
        return build_cart_pricing(session, cart, now).view


def set_payment_method(session: Session, user_id: int, method) -> Dict[str, Any]:
    """Persist the user's preferred payment method on the cart."""
    method = parse_payment_method(method)
    with atomic(session):
        cart = get_or_create_cart(session, user_id)
        cart.payment_method = method
    return get_payment_methods(session, user_id)
