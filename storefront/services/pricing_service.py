"""
Pricing resolver.

Picks the list (compare-at) and unit (charged) price of a variant at a given
moment from its Price records, falling back to the variant's direct price and
then to the product's base price.
"""
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Iterable, Optional
from sqlalchemy.orm import Session, joinedload, selectinload
from storefront.models import ProductVariant, Price, PriceType
from storefront.exceptions import NotFoundError
from storefront.utils.dates import utcnow
from storefront.utils.money import to_decimal


@dataclass(frozen=True)
class PriceQuote:
    list_price: Decimal
    unit_price: Decimal

    @property
    def saving(self) -> Decimal:
        """Per-unit saving against the list price, never negative."""
        return max(Decimal('0'), self.list_price - self.unit_price)


def _latest_active(prices: Iterable[Price], price_type: PriceType, as_of: datetime) -> Optional[Price]:
    """Most recently started active record of a type; undated starts lose to dated ones."""
    candidates = [p for p in prices if p.type == price_type and p.is_active_at(as_of)]
    if not candidates:
        return None
    return max(
        candidates,
        key=lambda p: (p.start_at is not None, p.start_at or datetime.min, p.id or 0),
    )


def select_active_prices(variant: ProductVariant, as_of: Optional[datetime] = None) -> PriceQuote:
    """
    Resolve list and unit price for an already-loaded variant.

    - list: active LIST -> variant.price -> product.base_price
    - unit: active SALE -> variant.price -> list
    """
    as_of = as_of or utcnow()
    prices = variant.prices or []

    list_record = _latest_active(prices, PriceType.LIST, as_of)
    sale_record = _latest_active(prices, PriceType.SALE, as_of)

    if list_record is not None:
        list_price = to_decimal(list_record.amount)
    elif variant.price is not None:
        list_price = to_decimal(variant.price)
    else:
        list_price = to_decimal(variant.product.base_price)

    if sale_record is not None:
        unit_price = to_decimal(sale_record.amount)
    elif variant.price is not None:
        unit_price = to_decimal(variant.price)
    else:
        unit_price = list_price

    return PriceQuote(list_price=list_price, unit_price=unit_price)


def get_variant(session: Session, variant_id: int, lock: bool = False) -> ProductVariant:
    """
    Load a variant with product and prices.

    Args:
        lock: take a row lock (SELECT ... FOR UPDATE) on the variant for stock checks

    Raises:
        NotFoundError: VARIANT_NOT_FOUND
    """
    query = session.query(ProductVariant).options(
        joinedload(ProductVariant.product, innerjoin=True),
        selectinload(ProductVariant.prices),
    ).filter(ProductVariant.id == variant_id)
    if lock:
        # Re-read the row so stock reflects the locked state, not the identity map
        query = query.with_for_update(of=ProductVariant).populate_existing()

    variant = query.first()
    if not variant:
        raise NotFoundError('Product variant not found', code='VARIANT_NOT_FOUND', payload={'variant_id': variant_id})
    return variant


def resolve_price(session: Session, variant_id: int, as_of: Optional[datetime] = None) -> PriceQuote:
    """Resolve list/unit price of a variant by id. Pure read."""
    variant = get_variant(session, variant_id)
    return select_active_prices(variant, as_of)
