"""
Unit tests for price resolution, coupon math, tax allocation and money rounding.
"""

from datetime import datetime, timedelta
from decimal import Decimal

import pytest

from storefront.models import Product, ProductVariant, Price, PriceType, Coupon, CouponType
from storefront.services.pricing_service import select_active_prices
from storefront.services.coupon_service import evaluate_coupon
from storefront.services.order_service import allocate_tax
from storefront.utils.money import round_money, floor_money, as_number, to_decimal


NOW = datetime(2024, 6, 1, 12, 0, 0)


def _variant(base_price=100, price=None, prices=()):
    variant = ProductVariant(product=Product(name='Tee', base_price=Decimal(str(base_price))), stock=5)
    variant.price = Decimal(str(price)) if price is not None else None
    for price_type, amount, start_at, end_at in prices:
        variant.prices.append(Price(type=price_type, amount=Decimal(str(amount)), start_at=start_at, end_at=end_at))
    return variant


def _coupon(type=CouponType.PERCENTAGE, value=10, min_order_value=None, max_discount=None, free_shipping=False):
    return Coupon(
        code='TEST',
        type=type,
        value=Decimal(str(value)),
        min_order_value=Decimal(str(min_order_value)) if min_order_value is not None else None,
        max_discount=Decimal(str(max_discount)) if max_discount is not None else None,
        free_shipping=free_shipping,
    )


class TestSelectActivePrices:
    """Tests for list/unit price resolution."""

    def test_list_price_only(self):
        """Without a sale, unit price equals list price."""
        quote = select_active_prices(_variant(prices=[(PriceType.LIST, 100, None, None)]), NOW)

        assert quote.list_price == Decimal('100')
        assert quote.unit_price == Decimal('100')
        assert quote.saving == Decimal('0')

    def test_active_sale_price_wins(self):
        """An active SALE record is the charged price; LIST stays the compare-at price."""
        variant = _variant(prices=[
            (PriceType.LIST, 100, None, None),
            (PriceType.SALE, 80, NOW - timedelta(days=1), NOW + timedelta(days=1)),
        ])
        quote = select_active_prices(variant, NOW)

        assert quote.list_price == Decimal('100')
        assert quote.unit_price == Decimal('80')
        assert quote.saving == Decimal('20')

    def test_expired_and_future_sales_ignored(self):
        variant = _variant(prices=[
            (PriceType.LIST, 100, None, None),
            (PriceType.SALE, 70, NOW - timedelta(days=10), NOW - timedelta(days=1)),
            (PriceType.SALE, 60, NOW + timedelta(days=1), None),
        ])
        quote = select_active_prices(variant, NOW)

        assert quote.unit_price == Decimal('100')

    def test_latest_started_record_wins(self):
        """With overlapping records the most recently started one applies."""
        variant = _variant(prices=[
            (PriceType.LIST, 100, NOW - timedelta(days=30), None),
            (PriceType.LIST, 120, NOW - timedelta(days=2), None),
            (PriceType.SALE, 90, None, None),
            (PriceType.SALE, 85, NOW - timedelta(hours=1), None),
        ])
        quote = select_active_prices(variant, NOW)

        assert quote.list_price == Decimal('120')
        assert quote.unit_price == Decimal('85')

    def test_falls_back_to_variant_price_then_base_price(self):
        """No records: variant price, then product base price."""
        assert select_active_prices(_variant(base_price=50, price=70), NOW).unit_price == Decimal('70')
        assert select_active_prices(_variant(base_price=50, price=70), NOW).list_price == Decimal('70')
        assert select_active_prices(_variant(base_price=50), NOW).unit_price == Decimal('50')

    def test_sale_above_list_has_no_saving(self):
        quote = select_active_prices(_variant(prices=[
            (PriceType.LIST, 100, None, None),
            (PriceType.SALE, 110, None, None),
        ]), NOW)

        assert quote.saving == Decimal('0')


class TestEvaluateCoupon:
    """Tests for the pure coupon evaluator."""

    def test_percentage(self):
        result = evaluate_coupon(_coupon(value=10), Decimal('200'))

        assert result.is_eligible is True
        assert result.applied_value == Decimal('20')
        assert result.missing_amount == Decimal('0')

    def test_percentage_capped_by_max_discount(self):
        result = evaluate_coupon(_coupon(value=50, max_discount=30), Decimal('200'))

        assert result.applied_value == Decimal('30')

    def test_fixed_capped_by_subtotal(self):
        """A fixed discount never exceeds the subtotal."""
        result = evaluate_coupon(_coupon(type=CouponType.FIXED, value=500), Decimal('120'))

        assert result.is_eligible is True
        assert result.applied_value == Decimal('120')

    def test_min_order_not_met(self):
        result = evaluate_coupon(_coupon(min_order_value=500), Decimal('200'))

        assert result.is_eligible is False
        assert result.missing_amount == Decimal('300')
        assert result.applied_value == Decimal('0')

    def test_min_order_met_exactly(self):
        result = evaluate_coupon(_coupon(min_order_value=200), Decimal('200'))

        assert result.is_eligible is True

    def test_free_shipping_passes_through(self):
        """free_shipping is reported even when ineligible or zero-valued."""
        assert evaluate_coupon(_coupon(value=0, free_shipping=True), Decimal('50')).free_shipping is True
        assert evaluate_coupon(_coupon(min_order_value=100, free_shipping=True), Decimal('50')).free_shipping is True


class TestAllocateTax:
    """Tests for per-line tax allocation."""

    def test_single_line_takes_everything(self):
        assert allocate_tax([Decimal('200')], Decimal('14')) == [Decimal('14')]

    def test_floor_then_remainder_on_last_line(self):
        shares = allocate_tax([Decimal('100'), Decimal('100'), Decimal('100')], Decimal('10'))

        assert shares == [Decimal('3'), Decimal('3'), Decimal('4')]
        assert sum(shares) == Decimal('10')

    def test_shares_always_sum_to_total(self):
        line_totals = [Decimal('33.33'), Decimal('66.67'), Decimal('149.5'), Decimal('0.5')]
        for total_tax in (Decimal('0'), Decimal('1'), Decimal('17'), Decimal('20')):
            shares = allocate_tax(line_totals, total_tax)
            assert sum(shares) == total_tax
            assert all(share >= 0 for share in shares)

    def test_zero_base_yields_zeros(self):
        assert allocate_tax([Decimal('0'), Decimal('0')], Decimal('5')) == [Decimal('0'), Decimal('0')]

    def test_no_lines(self):
        assert allocate_tax([], Decimal('5')) == []


class TestMoney:
    """Tests for rounding helpers."""

    def test_round_half_up(self):
        assert round_money(Decimal('14.5')) == Decimal('15')
        assert round_money(Decimal('14.4')) == Decimal('14')
        assert round_money('209.4') == Decimal('209')

    def test_floor(self):
        assert floor_money(Decimal('3.99')) == Decimal('3')

    def test_as_number(self):
        assert as_number(Decimal('209.00')) == 209
        assert isinstance(as_number(Decimal('209.00')), int)
        assert as_number(Decimal('0.5')) == 0.5
        assert as_number(None) is None

    @pytest.mark.parametrize('value', ['NaN', 'Infinity', '-Infinity', float('nan'), float('inf'), Decimal('NaN')])
    def test_non_finite_amounts_rejected(self, value):
        with pytest.raises(ValueError):
            to_decimal(value)
