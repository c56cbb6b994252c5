"""
Order Service - checkout and order lifecycle.

place_order() turns the user's cart into an order in one transaction: cart
and variant rows are locked, the cart is re-priced inside that transaction,
stock is decremented and the cart is emptied. For MOMO orders a payment
attempt is started after the commit; its failure never undoes the order.
"""
import logging
from datetime import datetime
from decimal import Decimal
from typing import List, Dict, Any, Optional, Sequence
from sqlalchemy.orm import Session, selectinload
from storefront.database import atomic
from storefront.models import (
    Address, Order, OrderItem, OrderCoupon, OrderStatus, PaymentMethod, ProductVariant,
)
from storefront.exceptions import StoreError, BusinessLogicError, NotFoundError, ValidationError, InsufficientStockError
from storefront.services import cart_service, payment_service
from storefront.services.cart_service import build_cart_pricing, load_cart, require_id, parse_payment_method
from storefront.services.pricing_service import get_variant
from storefront.utils.dates import utcnow
from storefront.utils.money import ZERO, to_decimal, floor_money

logger = logging.getLogger(__name__)

MAX_NOTES_LENGTH = 1000
MAX_PAGE_SIZE = 50
CANCELLABLE_STATUSES = (OrderStatus.PENDING, OrderStatus.CONFIRMED)
MAX_CANCEL_REASON_LENGTH = 255


def _optional_text(value, name: str, max_length: int) -> Optional[str]:
    """Trimmed free text or None; anything but a string is rejected."""
    if value is None:
        return None
    if not isinstance(value, str):
        raise ValidationError(f'{name} must be a string', code='INVALID_INPUT', payload={'field': name})
    return value.strip()[:max_length] or None


def allocate_tax(line_totals: Sequence, total_tax) -> List[Decimal]:
    """
    Split an order's tax across its lines in proportion to line totals.

    Every line but the last gets floor(total_tax * line / base); the last line
    takes the remainder so the shares add up to total_tax exactly. A zero base
    yields all zeros.
    """
    line_totals = [to_decimal(value) for value in line_totals]
    if not line_totals:
        return []

    total_tax = to_decimal(total_tax)
    base = sum(line_totals, ZERO)
    if base <= 0:
        return [ZERO for _ in line_totals]

    shares = []
    allocated = ZERO
    for line_total in line_totals[:-1]:
        share = floor_money(total_tax * line_total / base)
        shares.append(share)
        allocated += share
    shares.append(total_tax - allocated)
    return shares


def _lock_cart_variants(session: Session, cart) -> Dict[int, ProductVariant]:
    """Lock every variant in the cart, in id order."""
    variant_ids = sorted({item.variant_id for item in cart.items})
    return {variant_id: get_variant(session, variant_id, lock=True) for variant_id in variant_ids}


def _check_line_stock(variant: ProductVariant, quantity: int) -> None:
    if not variant.is_active:
        raise BusinessLogicError(
            f'"{variant.label}" is no longer available', code='VARIANT_INACTIVE',
            payload={'variant_id': variant.id}
        )
    if variant.stock <= 0:
        raise InsufficientStockError(variant.label, 0, code='ITEM_OUT_OF_STOCK', variant_id=variant.id)
    if quantity > variant.stock:
        raise InsufficientStockError(variant.label, variant.stock, variant_id=variant.id)


# =====================================================
# CHECKOUT
# =====================================================

def place_order(
    session: Session,
    user_id: int,
    address_id,
    payment_method,
    notes: Optional[str] = None,
    payment_options: Optional[Dict[str, Any]] = None,
    now: Optional[datetime] = None,
) -> Dict[str, Any]:
    """
    Check out the user's cart.

    Steps:
    1. Verify the address belongs to the user
    2. Lock the cart and every variant in it
    3. Re-price the cart in this transaction (coupon re-validated)
    4. Re-check stock per line
    5. Create the order, its items (tax allocated per line) and coupon snapshot
    6. Decrement stock, empty the cart, remember the payment method
    7. Commit; for MOMO start a payment attempt

    Returns:
        {'order', 'summary', 'payment', 'payment_error'}

    Raises:
        ValidationError: INVALID_INPUT, INVALID_PAYMENT_METHOD
        NotFoundError: ADDRESS_NOT_FOUND, VARIANT_NOT_FOUND
        BusinessLogicError: CART_EMPTY, VARIANT_INACTIVE, ITEM_OUT_OF_STOCK,
            QUANTITY_EXCEEDS_STOCK
    """
    address_id = require_id(address_id, 'address_id')
    method = parse_payment_method(payment_method)
    notes = _optional_text(notes, 'notes', MAX_NOTES_LENGTH)
    if payment_options is not None and not isinstance(payment_options, dict):
        raise ValidationError('payment must be an object', code='INVALID_INPUT', payload={'field': 'payment'})
    now = now or utcnow()

    with atomic(session):
        address = (
            session.query(Address)
            .filter(Address.id == address_id, Address.user_id == user_id)
            .first()
        )
        if not address:
            raise NotFoundError('Address not found', code='ADDRESS_NOT_FOUND')

        cart = load_cart(session, user_id, lock=True)
        if cart is None or not cart.items:
            raise BusinessLogicError('Cart is empty', code='CART_EMPTY')

        _lock_cart_variants(session, cart)
        pricing = build_cart_pricing(session, cart, now)
        if not pricing.lines:
            raise BusinessLogicError('Cart is empty', code='CART_EMPTY')

        for line in pricing.lines:
            _check_line_stock(line['variant'], line['quantity'])

        order = Order(
            user_id=user_id,
            address_id=address.id,
            status=OrderStatus.PENDING,
            payment_method=method,
            subtotal=pricing.subtotal,
            discount=pricing.discount,
            shipping_fee=pricing.shipping,
            tax=pricing.tax,
            total=pricing.total,
            notes=notes,
            shipping_location=address.display_location,
        )
        session.add(order)

        taxes = allocate_tax([line['line_total'] for line in pricing.lines], pricing.tax)
        for line, line_tax in zip(pricing.lines, taxes):
            variant = line['variant']
            order.items.append(OrderItem(
                variant_id=variant.id,
                product_name=variant.product.name,
                variant_label=variant.label,
                quantity=line['quantity'],
                unit_price=line['unit_price'],
                list_price=line['list_price'],
                tax_amount=line_tax,
            ))
            variant.stock -= line['quantity']
            logger.info(f"Stock for variant {variant.id}: -{line['quantity']} -> {variant.stock}")

        if pricing.coupon is not None:
            order.coupon = OrderCoupon(
                coupon_id=pricing.coupon.id,
                code=pricing.coupon.code,
                discount_amount=pricing.discount,
                free_shipping=pricing.evaluation.free_shipping,
            )

        cart.items.clear()
        cart.coupon = None
        cart.payment_method = method

        session.flush()
        order_id = order.id
        summary = pricing.view['summary']

    logger.info(f"Order {order_id} placed by user {user_id}: total={pricing.total} method={method.value}")

    result = {
        'order': get_order_detail(session, user_id, order_id),
        'summary': summary,
        'payment': None,
        'payment_error': None,
    }

    if method == PaymentMethod.MOMO:
        try:
            result['payment'] = payment_service.create_payment_attempt(session, user_id, order_id, payment_options)
        except StoreError as e:
            logger.warning(f"Order {order_id} placed but payment could not start: {e.code} {e.message}")
            result['payment_error'] = e.to_dict()
        except Exception as e:
            logger.exception(f"Order {order_id} placed but payment crashed: {str(e)}")
            session.rollback()
            result['payment_error'] = {
                'status': 'error',
                'kind': 'INTERNAL',
                'code': 'PAYMENT_INIT_FAILED',
                'message': 'Payment could not be started, retry from the order page',
            }

    return result


# =====================================================
# READS
# =====================================================

def _get_owned_order(session: Session, user_id: int, order_id, lock: bool = False) -> Order:
    order_id = require_id(order_id, 'order_id')
    query = session.query(Order).filter(Order.id == order_id, Order.user_id == user_id)
    if lock:
        query = query.with_for_update().populate_existing()
    order = query.first()
    if not order:
        raise NotFoundError('Order not found', code='ORDER_NOT_FOUND')
    return order


def get_order_detail(session: Session, user_id: int, order_id) -> Dict[str, Any]:
    """Order with items, coupon snapshot and payment attempts."""
    order = _get_owned_order(session, user_id, order_id)
    data = order.to_dict()
    data['payments'] = [payment.to_dict() for payment in order.payments]
    return data


def _parse_statuses(statuses) -> List[OrderStatus]:
    """Known statuses from a list or comma separated string; unknown values are ignored."""
    if not statuses:
        return []
    if isinstance(statuses, str):
        statuses = statuses.split(',')
    parsed = []
    for value in statuses:
        try:
            parsed.append(OrderStatus(str(value).strip().upper()))
        except ValueError:
            continue
    return parsed


def list_user_orders(
    session: Session,
    user_id: int,
    page=1,
    page_size=10,
    statuses=None,
    date_from: Optional[datetime] = None,
    date_to: Optional[datetime] = None,
) -> Dict[str, Any]:
    """Paginated order history, newest first."""
    try:
        page = max(1, int(page))
        page_size = min(MAX_PAGE_SIZE, max(1, int(page_size)))
    except (TypeError, ValueError):
        page, page_size = 1, 10

    query = session.query(Order).filter(Order.user_id == user_id)
    status_filter = _parse_statuses(statuses)
    if status_filter:
        query = query.filter(Order.status.in_(status_filter))
    if date_from:
        query = query.filter(Order.created_at >= date_from)
    if date_to:
        query = query.filter(Order.created_at <= date_to)

    total = query.count()
    orders = (
        query.options(selectinload(Order.items), selectinload(Order.coupon))
        .order_by(Order.created_at.desc(), Order.id.desc())
        .offset((page - 1) * page_size)
        .limit(page_size)
        .all()
    )
    return {
        'items': [order.to_dict() for order in orders],
        'pagination': {
            'page': page,
            'page_size': page_size,
            'total': total,
            'total_pages': (total + page_size - 1) // page_size,
        },
    }


# =====================================================
# LIFECYCLE
# =====================================================

def cancel_order(session: Session, user_id: int, order_id, reason: Optional[str] = None,
                 now: Optional[datetime] = None) -> Dict[str, Any]:
    """
    Cancel an unpaid PENDING/CONFIRMED order and put its stock back.

    Raises:
        ValidationError: INVALID_INPUT (reason not a string)
        NotFoundError: ORDER_NOT_FOUND
        BusinessLogicError: ORDER_NOT_CANCELLABLE
    """
    reason = _optional_text(reason, 'reason', MAX_CANCEL_REASON_LENGTH)
    now = now or utcnow()
    with atomic(session):
        order = _get_owned_order(session, user_id, order_id, lock=True)
        if order.status not in CANCELLABLE_STATUSES or order.is_paid:
            raise BusinessLogicError(
                f'Order in status {order.status.value} cannot be cancelled',
                code='ORDER_NOT_CANCELLABLE',
                payload={'status': order.status.value},
            )

        for item in sorted(order.items, key=lambda i: i.variant_id):
            variant = get_variant(session, item.variant_id, lock=True)
            variant.stock += item.quantity

        order.status = OrderStatus.CANCELLED
        order.cancelled_at = now
        order.cancel_reason = reason
        session.flush()
        data = order.to_dict()

    logger.info(f"Order {data['id']} cancelled by user {user_id}")
    return data


def reorder(session: Session, user_id: int, order_id, now: Optional[datetime] = None) -> Dict[str, Any]:
    """
    Put the items of a past order back into the cart.

    Each line is added on its own; lines that cannot be added (inactive,
    out of stock, removed) are reported in 'skipped'.
    """
    order = _get_owned_order(session, user_id, order_id)
    lines = [(item.variant_id, item.quantity) for item in order.items]
    session.rollback()

    added = []
    skipped = []
    for variant_id, quantity in lines:
        try:
            cart_service.add_item(session, user_id, variant_id, quantity, now)
            added.append(variant_id)
        except StoreError as e:
            skipped.append({'variant_id': variant_id, 'code': e.code, 'message': e.message})

    return {
        'added': added,
        'skipped': skipped,
        'cart': cart_service.get_cart(session, user_id, now),
    }


# =====================================================
# PAYMENTS
# =====================================================

def list_order_payments(session: Session, user_id: int, order_id) -> List[Dict[str, Any]]:
    """Payment attempts of an order, oldest first."""
    order_id = require_id(order_id, 'order_id')
    return payment_service.list_payments_for_order(session, user_id, order_id)


def retry_payment(session: Session, user_id: int, order_id, options: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    """Start a new MoMo attempt for an unpaid order."""
    order_id = require_id(order_id, 'order_id')
    return payment_service.create_payment_attempt(session, user_id, order_id, options)
