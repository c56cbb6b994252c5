"""
Payment Service - MoMo payment attempts, notifications, status sync and refunds.

Gateway calls always happen outside a database transaction: the attempt row
is committed first, the outcome is recorded in a second transaction.

An order is marked paid by _apply_gateway_result() only. It is shared by the
notification handler and the status sync so that coupon usage is counted
exactly once, by whichever path sets the order's success anchor first.
"""
import base64
import json
import logging
import time
from datetime import datetime
from decimal import Decimal
from typing import Dict, Any, Optional
from sqlalchemy import func, or_
from sqlalchemy.orm import Session
from storefront.database import atomic
from storefront.models import (
    Order, OrderStatus, OrderCoupon, Coupon, Payment, PaymentMethod, PaymentStatus,
    PaymentWebhook, PaymentRefund,
)
from storefront.exceptions import BusinessLogicError, NotFoundError, ValidationError, GatewayError
from storefront.services.momo_client import get_gateway_client
from storefront.utils.dates import utcnow
from storefront.utils.money import to_decimal, round_money, as_number

logger = logging.getLogger(__name__)

SUCCESS_CODE = 0
AUTHORIZED_CODE = 9000
# Still being processed by the wallet; a status sync leaves the attempt as is
IN_PROGRESS_CODES = frozenset({1000, 7000, 7002})


def _to_int(value) -> Optional[int]:
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def _epoch_ms() -> int:
    return int(time.time() * 1000)


def encode_extra_data(extra) -> str:
    """Gateway extraData: base64 of the JSON object, '' when there is nothing to send."""
    if not extra:
        return ''
    if isinstance(extra, str):
        return extra
    return base64.b64encode(json.dumps(extra, separators=(',', ':')).encode('utf-8')).decode('ascii')


def _get_owned_order(session: Session, user_id: int, order_id: int, lock: bool = False) -> Order:
    query = session.query(Order).filter(Order.id == order_id, Order.user_id == user_id)
    if lock:
        query = query.with_for_update().populate_existing()
    order = query.first()
    if not order:
        raise NotFoundError('Order not found', code='ORDER_NOT_FOUND')
    return order


def _get_owned_payment(session: Session, user_id: int, payment_id: int, lock: bool = False) -> Payment:
    query = (
        session.query(Payment)
        .join(Order, Order.id == Payment.order_id)
        .filter(Payment.id == payment_id, Order.user_id == user_id)
    )
    if lock:
        query = query.with_for_update(of=Payment).populate_existing()
    payment = query.first()
    if not payment:
        raise NotFoundError('Payment not found', code='PAYMENT_NOT_FOUND')
    return payment


# =====================================================
# ATTEMPTS
# =====================================================

def create_payment_attempt(
    session: Session,
    user_id: int,
    order_id: int,
    options: Optional[Dict[str, Any]] = None,
) -> Dict[str, Any]:
    """
    Start a new MoMo payment attempt for an order.

    Steps:
    1. Lock the order, reject CANCELLED (ORDER_CANCELLED) and already paid
       (ORDER_ALREADY_PAID) orders.
    2. Insert a PENDING attempt with the next attempt_no and commit it.
    3. Call the gateway; store payUrl, resultCode and message on the attempt.

    options: order_info, extra_data (dict), auto_capture (default True), lang.

    Raises:
        ValidationError: INVALID_INPUT (options not an object)
        NotFoundError: ORDER_NOT_FOUND
        BusinessLogicError: ORDER_CANCELLED, ORDER_ALREADY_PAID
        GatewayError: the attempt keeps the error message and stays PENDING
    """
    options = options or {}
    if not isinstance(options, dict):
        raise ValidationError('payment options must be an object', code='INVALID_INPUT', payload={'field': 'payment'})

    with atomic(session):
        order = _get_owned_order(session, user_id, order_id, lock=True)
        if order.status == OrderStatus.CANCELLED:
            raise BusinessLogicError('Order is cancelled', code='ORDER_CANCELLED')
        if order.payment_success_id is not None:
            raise BusinessLogicError('Order is already paid', code='ORDER_ALREADY_PAID')

        client = get_gateway_client()
        attempts = session.query(func.count(Payment.id)).filter(Payment.order_id == order.id).scalar()
        attempt_no = (attempts or 0) + 1
        provider_order_id = f"{client.partner_code}-{order.id}-{attempt_no}-{_epoch_ms()}"

        payment = Payment(
            order_id=order.id,
            attempt_no=attempt_no,
            method=PaymentMethod.MOMO,
            status=PaymentStatus.PENDING,
            amount=order.total,
            provider_order_id=provider_order_id,
            provider_request_id=provider_order_id,
            extra_data=encode_extra_data(options.get('extra_data')),
        )
        session.add(payment)
        session.flush()
        payment_id = payment.id
        extra_data = payment.extra_data
        amount = int(round_money(order.total))
        order_info = options.get('order_info') or f'Order #{order.id}'

    logger.info(f"Payment attempt {attempt_no} ({provider_order_id}) created for order {order_id}")

    try:
        response = client.create_payment(
            order_id=provider_order_id,
            request_id=provider_order_id,
            amount=amount,
            order_info=order_info,
            extra_data=extra_data,
            auto_capture=options.get('auto_capture', True),
            lang=options.get('lang', 'vi'),
        )
    except GatewayError as e:
        logger.warning(f"Gateway rejected payment {payment_id}: {e.message}")
        with atomic(session):
            payment = session.get(Payment, payment_id)
            payment.result_message = e.message
        raise

    with atomic(session):
        payment = session.get(Payment, payment_id)
        payment.result_code = _to_int(response.get('resultCode'))
        payment.result_message = response.get('message')
        payment.pay_url = response.get('payUrl') or response.get('deeplink')

    return {
        'payment_id': payment.id,
        'pay_url': payment.pay_url,
        'payment': payment.to_dict(),
        'gateway': response,
    }


# =====================================================
# RESULT APPLICATION
# =====================================================

def _mark_order_paid(session: Session, payment: Payment) -> None:
    """
    PAID + success anchor. Coupon usage is counted only when the anchor is
    set here for the first time; later successes only (re)assert PAID.
    """
    order = (
        session.query(Order)
        .filter(Order.id == payment.order_id)
        .with_for_update()
        .populate_existing()
        .one()
    )
    if order.status == OrderStatus.CANCELLED:
        logger.warning(f"Payment {payment.id} succeeded for cancelled order {order.id}")

    if order.payment_success_id is None:
        coupon_ids = [
            row.coupon_id
            for row in session.query(OrderCoupon.coupon_id).filter(OrderCoupon.order_id == order.id)
        ]
        if coupon_ids:
            session.query(Coupon).filter(Coupon.id.in_(coupon_ids)).update(
                {Coupon.usage_count: Coupon.usage_count + 1}, synchronize_session=False
            )
        order.payment_success_id = payment.id
        logger.info(f"Order {order.id} paid by payment {payment.id} (coupons counted: {coupon_ids})")

    order.status = OrderStatus.PAID


def _apply_gateway_result(
    session: Session,
    payment: Payment,
    result_code: Optional[int],
    data: Dict[str, Any],
    now: datetime,
    keep_in_progress: bool = False,
) -> bool:
    """
    Map a gateway result code onto the attempt (and its order on success).

    0 -> SUCCEEDED, 9000 -> AUTHORIZED, anything else -> FAILED, except that
    with keep_in_progress the in-progress codes leave the status untouched.
    A SUCCEEDED attempt is never downgraded.

    Returns True when the code means success.
    """
    success = result_code == SUCCESS_CODE
    payment.result_code = result_code
    payment.result_message = data.get('message', payment.result_message)
    if data.get('transId') is not None:
        payment.provider_trans_id = str(data['transId'])
    if data.get('payType'):
        payment.pay_type = data['payType']

    if success:
        payment.status = PaymentStatus.SUCCEEDED
        payment.paid_at = payment.paid_at or now
        _mark_order_paid(session, payment)
    elif payment.status == PaymentStatus.SUCCEEDED:
        logger.warning(f"Ignoring result {result_code} for already succeeded payment {payment.id}")
    elif result_code == AUTHORIZED_CODE:
        payment.status = PaymentStatus.AUTHORIZED
        payment.authorized_at = payment.authorized_at or now
    elif keep_in_progress and result_code in IN_PROGRESS_CODES:
        logger.info(f"Payment {payment.id} still in progress (resultCode={result_code})")
    else:
        payment.status = PaymentStatus.FAILED

    return success


def _lock_payment(session: Session, payment_id: int) -> Payment:
    return (
        session.query(Payment)
        .filter(Payment.id == payment_id)
        .with_for_update()
        .populate_existing()
        .one()
    )


def handle_gateway_notification(
    session: Session,
    payload: Dict[str, Any],
    raw_body: Optional[str] = None,
    now: Optional[datetime] = None,
) -> Dict[str, Any]:
    """
    Process an inbound MoMo IPN. Never raises for bad input.

    Unsigned/unknown notifications return {'ok': False, 'code':
    'INVALID_SIGNATURE_OR_PAYMENT'} without touching anything, and missing
    gateway credentials give {'ok': False, 'code': 'GATEWAY_NOT_CONFIGURED'}.
    Otherwise the notification is stored verbatim, then the result is applied.
    Processing the same notification twice is harmless.
    """
    now = now or utcnow()
    payload = payload if isinstance(payload, dict) else {}
    try:
        client = get_gateway_client()
    except GatewayError as e:
        logger.error(f"Cannot verify gateway notification orderId={payload.get('orderId')}: {e.message}")
        return {'ok': False, 'code': e.code}

    verified = client.verify_ipn_signature(payload)
    request_id = str(payload.get('requestId') or '')
    provider_order_id = str(payload.get('orderId') or '')
    payment = None
    if verified and (request_id or provider_order_id):
        payment = (
            session.query(Payment)
            .filter(or_(
                Payment.provider_request_id == request_id,
                Payment.provider_order_id == provider_order_id,
            ))
            .first()
        )

    if not verified or payment is None:
        logger.warning(
            f"Rejected gateway notification orderId={provider_order_id} "
            f"(verified={verified}, payment_found={payment is not None})"
        )
        session.rollback()
        return {'ok': False, 'code': 'INVALID_SIGNATURE_OR_PAYMENT'}

    result_code = _to_int(payload.get('resultCode'))
    payment_id = payment.id

    with atomic(session):
        session.add(PaymentWebhook(
            payment_id=payment_id,
            body_raw=raw_body if raw_body is not None else json.dumps(payload),
            body_json=payload,
            signature=payload.get('signature'),
            verified=True,
            result_code=result_code,
            message=payload.get('message'),
            provider_trans_id=str(payload['transId']) if payload.get('transId') is not None else None,
            received_at=now,
        ))

    with atomic(session):
        payment = _lock_payment(session, payment_id)
        success = _apply_gateway_result(session, payment, result_code, payload, now)

    logger.info(f"Notification for payment {payment_id}: resultCode={result_code} success={success}")
    return {'ok': True, 'success': success, 'payment_id': payment_id, 'status': payment.status.value}


def sync_payment_status(
    session: Session,
    user_id: int,
    payment_id: int,
    now: Optional[datetime] = None,
) -> Dict[str, Any]:
    """
    Ask the gateway for an attempt's current status and apply it.

    Raises:
        NotFoundError: PAYMENT_NOT_FOUND
        ValidationError: MISSING_PROVIDER_IDS
        GatewayError: gateway unreachable; nothing is changed
    """
    now = now or utcnow()

    with atomic(session):
        payment = _get_owned_payment(session, user_id, payment_id)
        if not payment.provider_order_id or not payment.provider_request_id:
            raise ValidationError('Payment has no gateway identifiers', code='MISSING_PROVIDER_IDS')
        provider_order_id = payment.provider_order_id
        provider_request_id = payment.provider_request_id

    client = get_gateway_client()
    response = client.query_payment(order_id=provider_order_id, request_id=provider_request_id)

    with atomic(session):
        payment = _lock_payment(session, payment_id)
        result_code = _to_int(response.get('resultCode'))
        _apply_gateway_result(session, payment, result_code, response, now, keep_in_progress=True)

    return {
        'success': payment.status in (PaymentStatus.SUCCEEDED, PaymentStatus.AUTHORIZED),
        'payment': payment.to_dict(),
        'gateway': response,
    }


# =====================================================
# READS
# =====================================================

def _refunded_total(session: Session, payment_id: int) -> Decimal:
    total = (
        session.query(func.coalesce(func.sum(PaymentRefund.amount), 0))
        .filter(PaymentRefund.payment_id == payment_id, PaymentRefund.refunded_at.isnot(None))
        .scalar()
    )
    return to_decimal(total)


def get_payment(session: Session, user_id: int, payment_id: int) -> Dict[str, Any]:
    """Attempt detail with its refunds."""
    payment = _get_owned_payment(session, user_id, payment_id)
    data = payment.to_dict()
    data['refunds'] = [refund.to_dict() for refund in payment.refunds]
    data['refunded_amount'] = as_number(_refunded_total(session, payment.id))
    return data


def list_payments_for_order(session: Session, user_id: int, order_id: int):
    """Every attempt of an order, oldest first."""
    order = _get_owned_order(session, user_id, order_id)
    return [payment.to_dict() for payment in order.payments]


# =====================================================
# REFUNDS
# =====================================================

def refund_payment(
    session: Session,
    user_id: int,
    payment_id: int,
    amount,
    reason: Optional[str] = None,
    now: Optional[datetime] = None,
) -> Dict[str, Any]:
    """
    Refund part or all of a succeeded attempt.

    The attempt row stays locked across the gateway call so concurrent
    refunds cannot exceed the captured amount together. A refund row is
    recorded whatever the gateway answers; a gateway error is re-raised
    after that row is committed.

    Raises:
        ValidationError: INVALID_AMOUNT, INVALID_INPUT (reason not a string)
        NotFoundError: PAYMENT_NOT_FOUND
        BusinessLogicError: PAYMENT_NOT_SUCCEEDED, MISSING_PROVIDER_TRANS_ID,
            REFUND_AMOUNT_EXCEEDS_PAYMENT
        GatewayError
    """
    now = now or utcnow()
    try:
        amount = round_money(amount)
    except ValueError:
        raise ValidationError('amount must be a number', code='INVALID_AMOUNT')
    if amount <= 0:
        raise ValidationError('amount must be greater than 0', code='INVALID_AMOUNT')
    if reason is not None and not isinstance(reason, str):
        raise ValidationError('reason must be a string', code='INVALID_INPUT', payload={'field': 'reason'})
    reason = (reason or '').strip()[:255] or None

    gateway_error = None
    with atomic(session):
        payment = _get_owned_payment(session, user_id, payment_id, lock=True)
        if payment.status != PaymentStatus.SUCCEEDED:
            raise BusinessLogicError('Only succeeded payments can be refunded', code='PAYMENT_NOT_SUCCEEDED')
        if not payment.provider_trans_id:
            raise BusinessLogicError('Payment has no gateway transaction id', code='MISSING_PROVIDER_TRANS_ID')

        refunded = _refunded_total(session, payment.id)
        if refunded + amount > to_decimal(payment.amount):
            raise BusinessLogicError(
                'Refund exceeds the captured amount',
                code='REFUND_AMOUNT_EXCEEDS_PAYMENT',
                payload={
                    'amount': as_number(payment.amount),
                    'refunded': as_number(refunded),
                    'requested': as_number(amount),
                },
            )

        request_id = f"{payment.provider_request_id or payment.provider_order_id}-refund-{_epoch_ms()}"
        client = get_gateway_client()
        try:
            response = client.refund(
                order_id=request_id,
                request_id=request_id,
                amount=int(amount),
                trans_id=payment.provider_trans_id,
                description=reason or '',
            )
        except GatewayError as e:
            gateway_error = e
            response = e.payload if isinstance(e.payload, dict) else {'message': e.message}

        result_code = _to_int(response.get('resultCode'))
        refund = PaymentRefund(
            payment_id=payment.id,
            amount=amount,
            reason=reason,
            provider_request_id=request_id,
            provider_trans_id=str(response['transId']) if response.get('transId') is not None else None,
            result_code=result_code,
            message=response.get('message'),
            refunded_at=now if gateway_error is None and result_code == SUCCESS_CODE else None,
        )
        session.add(refund)
        session.flush()
        result = {
            'success': refund.succeeded,
            'refund': refund.to_dict(),
            'gateway': response,
        }

    logger.info(f"Refund {request_id} of {amount} on payment {payment_id}: resultCode={result_code}")
    if gateway_error is not None:
        raise gateway_error
    return result
