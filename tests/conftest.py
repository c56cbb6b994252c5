import pytest
from decimal import Decimal
import uuid

from storefront import create_app
from storefront import database
from storefront.database import get_session
from storefront.models import (
    User, Address, Product, ProductVariant, Price, PriceType, Coupon, CouponType,
)
from storefront.middleware import issue_token
from storefront.services import payment_service
from storefront.services.momo_client import MomoClient


@pytest.fixture(scope='session')
def app():
    """Create application instance for testing."""
    app = create_app('config.TestConfig')
    return app


@pytest.fixture(autouse=True)
def app_context(app):
    """Fresh schema and an application context for every test."""
    with app.app_context():
        database.create_all()
        yield
        database.db_session.remove()
        database.drop_all()


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def session():
    """Create database session for testing."""
    session = get_session()
    yield session
    session.rollback()
    session.close()


def _make_user(session, label):
    suffix = str(uuid.uuid4())[:8]
    user = User(email=f'{label}-{suffix}@test.com', full_name=label.title(), active=True)
    session.add(user)
    session.commit()
    return user


@pytest.fixture(scope='function')
def user(session):
    """Buyer under test."""
    return _make_user(session, 'buyer')


@pytest.fixture(scope='function')
def other_user(session):
    """A second buyer, for ownership checks."""
    return _make_user(session, 'other')


@pytest.fixture(scope='function')
def address(session, user):
    """Shipping address owned by user."""
    address = Address(
        user_id=user.id,
        recipient_name='Buyer One',
        phone='0900000000',
        street='12 Nguyen Hue',
        ward='Ben Nghe',
        district='District 1',
        province='Ho Chi Minh City',
        is_default=True,
    )
    session.add(address)
    session.commit()
    return address


@pytest.fixture(scope='function')
def make_variant(session):
    """
    Factory: product + variant with a LIST price and an optional SALE price.

    Usage: make_variant(list_price=100, stock=5, sale_price=None, ...)
    """
    def _make(list_price=100, stock=5, sale_price=None, name='Basic Tee', color='Black', size='M',
              is_active=True):
        product = Product(name=name, base_price=Decimal(str(list_price)), active=True)
        variant = ProductVariant(
            product=product,
            sku=f'SKU-{uuid.uuid4().hex[:10]}',
            color=color,
            size=size,
            stock=stock,
            is_active=is_active,
        )
        variant.prices.append(Price(type=PriceType.LIST, amount=Decimal(str(list_price))))
        if sale_price is not None:
            variant.prices.append(Price(type=PriceType.SALE, amount=Decimal(str(sale_price))))
        session.add(variant)
        session.commit()
        return variant
    return _make


@pytest.fixture(scope='function')
def variant(make_variant):
    """Variant with stock 5 and list price 100, no sale."""
    return make_variant(list_price=100, stock=5)


@pytest.fixture(scope='function')
def make_coupon(session):
    """Factory: coupon with sensible defaults (10% off, no minimum)."""
    def _make(code='SAVE10', type=CouponType.PERCENTAGE, value=10, **kwargs):
        coupon = Coupon(code=code, type=type, value=Decimal(str(value)), **kwargs)
        session.add(coupon)
        session.commit()
        return coupon
    return _make


@pytest.fixture(scope='function')
def auth_headers(app, user):
    """Bearer header for user."""
    return {'Authorization': f'Bearer {issue_token(user.id)}'}


class FakeGateway(MomoClient):
    """
    MomoClient with the HTTP layer replaced.

    Signatures are computed for real; responses per endpoint path can be set
    in `responses` (a dict, or an exception to raise). Every call is recorded.
    """

    def __init__(self, config):
        super().__init__(config)
        self.calls = []
        self.responses = {}

    def _post(self, path, body):
        self.calls.append((path, body))
        response = self.responses.get(path)
        if isinstance(response, Exception):
            raise response
        if response is not None:
            return dict(response)
        if path == self.create_path:
            return {
                'partnerCode': self.partner_code,
                'orderId': body['orderId'],
                'requestId': body['requestId'],
                'amount': body['amount'],
                'resultCode': 0,
                'message': 'Successful.',
                'payUrl': f"https://momo.test/pay/{body['orderId']}",
            }
        if path == self.query_path:
            return {
                'orderId': body['orderId'],
                'requestId': body['requestId'],
                'resultCode': 0,
                'message': 'Successful.',
                'transId': 4088878653,
                'payType': 'qr',
            }
        return {
            'orderId': body['orderId'],
            'requestId': body['requestId'],
            'amount': body['amount'],
            'transId': 4088878999,
            'resultCode': 0,
            'message': 'Successful.',
        }

    def calls_to(self, path):
        return [body for called_path, body in self.calls if called_path == path]

    def ipn_for(self, payment, result_code=0, trans_id=4088878653, **overrides):
        """Signed IPN payload for a payment attempt."""
        payload = {
            'partnerCode': self.partner_code,
            'orderId': payment.provider_order_id,
            'requestId': payment.provider_request_id,
            'amount': int(payment.amount),
            'orderInfo': f'Order #{payment.order_id}',
            'orderType': 'momo_wallet',
            'transId': trans_id,
            'resultCode': result_code,
            'message': 'Successful.' if result_code == 0 else 'Transaction denied.',
            'payType': 'qr',
            'responseTime': 1700000000000,
            'extraData': '',
        }
        payload.update(overrides)
        payload['signature'] = self.build_signature(MomoClient.IPN_FIELDS, payload)
        return payload


@pytest.fixture(scope='function')
def gateway(app, monkeypatch):
    """Fake MoMo gateway wired into the payment service."""
    fake = FakeGateway(app.config)
    monkeypatch.setattr(payment_service, 'get_gateway_client', lambda: fake)
    return fake
