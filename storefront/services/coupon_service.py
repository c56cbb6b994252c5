"""
Coupon Service - lookup and evaluation of promotional codes.

evaluate_coupon() is pure and never raises: ineligibility is reported in the
result. find_active_coupon() is the lookup step and raises a distinct error
per reason a code cannot be used right now.
"""
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import List, Dict, Any, Optional
from sqlalchemy import or_
from sqlalchemy.orm import Session
from storefront.models import Coupon, CouponType
from storefront.exceptions import NotFoundError, BusinessLogicError, ValidationError
from storefront.utils.dates import utcnow, iso
from storefront.utils.money import to_decimal, as_number

ZERO = Decimal('0')


@dataclass(frozen=True)
class CouponEvaluation:
    is_eligible: bool
    missing_amount: Decimal
    applied_value: Decimal
    free_shipping: bool


def evaluate_coupon(coupon: Coupon, subtotal) -> CouponEvaluation:
    """
    Evaluate a coupon against a subtotal.

    - eligible when subtotal >= min_order_value (default 0)
    - PERCENTAGE: subtotal * value / 100, capped by max_discount when set
    - FIXED: value, capped by the subtotal
    - free_shipping passes through regardless of the discount math
    """
    subtotal = to_decimal(subtotal)
    min_order = to_decimal(coupon.min_order_value)
    free_shipping = bool(coupon.free_shipping)

    if subtotal < min_order:
        return CouponEvaluation(
            is_eligible=False,
            missing_amount=max(ZERO, min_order - subtotal),
            applied_value=ZERO,
            free_shipping=free_shipping,
        )

    value = to_decimal(coupon.value)
    if coupon.type == CouponType.PERCENTAGE:
        applied = subtotal * value / Decimal('100')
        if coupon.max_discount is not None:
            applied = min(applied, to_decimal(coupon.max_discount))
    else:
        applied = min(value, subtotal)

    return CouponEvaluation(
        is_eligible=True,
        missing_amount=ZERO,
        applied_value=max(ZERO, applied),
        free_shipping=free_shipping,
    )


def normalize_code(code) -> str:
    """Upper-case, trimmed coupon code."""
    if code is None or not str(code).strip():
        raise ValidationError('Coupon code is required', code='INVALID_COUPON_CODE')
    return str(code).strip().upper()


def check_coupon_usable(coupon: Optional[Coupon], now: datetime) -> Coupon:
    """
    Raise the first reason a coupon cannot be used at `now`.

    Order: not found, inactive, not started, expired, usage limit reached.
    """
    if coupon is None:
        raise NotFoundError('Coupon not found', code='COUPON_NOT_FOUND')
    if not coupon.is_active:
        raise BusinessLogicError('Coupon is no longer active', code='COUPON_INACTIVE')
    if coupon.start_at is not None and coupon.start_at > now:
        raise BusinessLogicError(
            'Coupon is not valid yet', code='COUPON_NOT_STARTED', payload={'start_at': iso(coupon.start_at)}
        )
    if coupon.end_at is not None and coupon.end_at < now:
        raise BusinessLogicError(
            'Coupon has expired', code='COUPON_EXPIRED', payload={'end_at': iso(coupon.end_at)}
        )
    if coupon.is_exhausted:
        raise BusinessLogicError('Coupon usage limit reached', code='COUPON_USAGE_LIMIT_REACHED')
    return coupon


def find_active_coupon(session: Session, code: str, now: Optional[datetime] = None) -> Coupon:
    """
    Look up a coupon by code and make sure it can be used now.

    Raises:
        NotFoundError: COUPON_NOT_FOUND
        BusinessLogicError: COUPON_INACTIVE, COUPON_NOT_STARTED, COUPON_EXPIRED,
            COUPON_USAGE_LIMIT_REACHED
    """
    now = now or utcnow()
    coupon = session.query(Coupon).filter(Coupon.code == normalize_code(code)).first()
    return check_coupon_usable(coupon, now)


def coupon_to_dict(coupon: Coupon) -> Dict[str, Any]:
    return {
        'id': coupon.id,
        'code': coupon.code,
        'description': coupon.description,
        'type': coupon.type.value,
        'value': as_number(coupon.value),
        'min_order_value': as_number(coupon.min_order_value),
        'max_discount': as_number(coupon.max_discount),
        'free_shipping': coupon.free_shipping,
        'end_at': iso(coupon.end_at),
    }


def list_available_coupons(session: Session, subtotal, now: Optional[datetime] = None) -> List[Dict[str, Any]]:
    """
    Every coupon usable right now, evaluated against a subtotal.

    Eligible coupons come first, biggest discount first; the rest are sorted
    by how much is still missing to unlock them.
    """
    now = now or utcnow()
    coupons = session.query(Coupon).filter(
        Coupon.is_active.is_(True),
        or_(Coupon.start_at.is_(None), Coupon.start_at <= now),
        or_(Coupon.end_at.is_(None), Coupon.end_at >= now),
        or_(Coupon.usage_limit.is_(None), Coupon.usage_count < Coupon.usage_limit),
    ).all()

    results = []
    for coupon in coupons:
        evaluation = evaluate_coupon(coupon, subtotal)
        entry = coupon_to_dict(coupon)
        entry.update({
            'is_eligible': evaluation.is_eligible,
            'missing_amount': as_number(evaluation.missing_amount),
            'applied_value': as_number(evaluation.applied_value),
        })
        results.append((evaluation, entry))

    results.sort(key=lambda pair: (
        not pair[0].is_eligible,
        -pair[0].applied_value,
        pair[0].missing_amount,
        pair[1]['code'],
    ))
    return [entry for _, entry in results]
