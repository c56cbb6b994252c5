"""
Integration tests for MoMo payment attempts, notifications, sync and refunds.
"""

import pytest

from storefront.exceptions import BusinessLogicError, NotFoundError, ValidationError, GatewayError
from storefront.models import Coupon, Order, OrderStatus, Payment, PaymentStatus, PaymentWebhook, PaymentRefund
from storefront.services import cart_service, order_service, payment_service
from storefront.services.momo_client import MomoClient


@pytest.fixture
def momo_order(session, user, address, variant, make_coupon, gateway):
    """MOMO order for 2 x 100 with SAVE10 (total 209) and its first attempt."""
    make_coupon(code='SAVE10', value=10)
    cart_service.add_item(session, user.id, variant.id, 2)
    cart_service.apply_coupon(session, user.id, 'SAVE10')
    result = order_service.place_order(session, user.id, address.id, 'MOMO')
    return {
        'order_id': result['order']['id'],
        'payment_id': result['payment']['payment_id'],
        'coupon_id': result['order']['coupon']['coupon_id'],
    }


def _payment(session, momo_order):
    return session.get(Payment, momo_order['payment_id'])


class TestCreateAttempt:
    """Tests for starting payment attempts."""

    def test_first_attempt(self, session, momo_order, gateway):
        payment = _payment(session, momo_order)

        assert payment.attempt_no == 1
        assert payment.amount == 209
        assert payment.result_code == 0
        assert payment.pay_url.startswith('https://momo.test/pay/')
        assert gateway.calls_to(gateway.create_path)[0]['amount'] == 209

    def test_retry_creates_next_attempt(self, session, user, momo_order, gateway):
        result = order_service.retry_payment(session, user.id, momo_order['order_id'], {'lang': 'en'})

        assert result['payment']['attempt_no'] == 2
        assert result['payment']['provider_order_id'].startswith(f"MOMOTEST-{momo_order['order_id']}-2-")
        assert gateway.calls_to(gateway.create_path)[-1]['lang'] == 'en'
        assert len(order_service.list_order_payments(session, user.id, momo_order['order_id'])) == 2

    def test_paid_order_rejects_new_attempt(self, session, user, momo_order, gateway):
        payment_service.handle_gateway_notification(session, gateway.ipn_for(_payment(session, momo_order)))

        with pytest.raises(BusinessLogicError) as exc:
            payment_service.create_payment_attempt(session, user.id, momo_order['order_id'])

        assert exc.value.code == 'ORDER_ALREADY_PAID'

    def test_cancelled_order_rejects_new_attempt(self, session, user, momo_order, gateway):
        order_service.cancel_order(session, user.id, momo_order['order_id'])

        with pytest.raises(BusinessLogicError) as exc:
            payment_service.create_payment_attempt(session, user.id, momo_order['order_id'])

        assert exc.value.code == 'ORDER_CANCELLED'

    def test_other_users_order(self, session, other_user, momo_order, gateway):
        with pytest.raises(NotFoundError) as exc:
            payment_service.create_payment_attempt(session, other_user.id, momo_order['order_id'])

        assert exc.value.code == 'ORDER_NOT_FOUND'

    def test_extra_data_is_base64_json(self, session, user, momo_order, gateway):
        payment_service.create_payment_attempt(
            session, user.id, momo_order['order_id'], {'extra_data': {'source': 'app'}}
        )

        assert gateway.calls_to(gateway.create_path)[-1]['extraData'] == 'eyJzb3VyY2UiOiJhcHAifQ=='


class TestNotifications:
    """Tests for the IPN handler."""

    def test_success_marks_order_paid(self, session, momo_order, gateway):
        result = payment_service.handle_gateway_notification(session, gateway.ipn_for(_payment(session, momo_order)))

        assert result['ok'] is True
        assert result['success'] is True
        payment = _payment(session, momo_order)
        assert payment.status == PaymentStatus.SUCCEEDED
        assert payment.provider_trans_id == '4088878653'
        assert payment.paid_at is not None
        order = session.get(Order, momo_order['order_id'])
        assert order.status == OrderStatus.PAID
        assert order.payment_success_id == payment.id
        assert session.get(Coupon, momo_order['coupon_id']).usage_count == 1
        assert session.query(PaymentWebhook).filter_by(payment_id=payment.id, verified=True).count() == 1

    def test_duplicate_success_counts_coupon_once(self, session, momo_order, gateway):
        payload = gateway.ipn_for(_payment(session, momo_order))

        payment_service.handle_gateway_notification(session, payload)
        result = payment_service.handle_gateway_notification(session, dict(payload))

        assert result['ok'] is True
        assert session.get(Coupon, momo_order['coupon_id']).usage_count == 1
        assert session.get(Order, momo_order['order_id']).status == OrderStatus.PAID
        assert session.query(PaymentWebhook).count() == 2

    def test_second_successful_attempt_keeps_first_anchor(self, session, user, momo_order, gateway):
        first = _payment(session, momo_order)
        first_ipn = gateway.ipn_for(first)
        second_id = payment_service.create_payment_attempt(session, user.id, momo_order['order_id'])['payment_id']
        second_ipn = gateway.ipn_for(session.get(Payment, second_id), trans_id=99)

        payment_service.handle_gateway_notification(session, first_ipn)
        payment_service.handle_gateway_notification(session, second_ipn)

        order = session.get(Order, momo_order['order_id'])
        assert order.payment_success_id == momo_order['payment_id']
        assert session.get(Coupon, momo_order['coupon_id']).usage_count == 1

    def test_invalid_signature_changes_nothing(self, session, momo_order, gateway):
        payload = gateway.ipn_for(_payment(session, momo_order))
        payload['amount'] = 1

        result = payment_service.handle_gateway_notification(session, payload)

        assert result == {'ok': False, 'code': 'INVALID_SIGNATURE_OR_PAYMENT'}
        assert _payment(session, momo_order).status == PaymentStatus.PENDING
        assert session.query(PaymentWebhook).count() == 0

    def test_unknown_payment(self, session, momo_order, gateway):
        payload = gateway.ipn_for(_payment(session, momo_order), orderId='MOMOTEST-0-1-1', requestId='MOMOTEST-0-1-1')

        result = payment_service.handle_gateway_notification(session, payload)

        assert result['ok'] is False

    def test_failure_code(self, session, momo_order, gateway):
        result = payment_service.handle_gateway_notification(
            session, gateway.ipn_for(_payment(session, momo_order), result_code=1006)
        )

        assert result == {'ok': True, 'success': False, 'payment_id': momo_order['payment_id'], 'status': 'FAILED'}
        assert session.get(Order, momo_order['order_id']).status == OrderStatus.PENDING
        assert session.get(Coupon, momo_order['coupon_id']).usage_count == 0

    def test_authorized_code(self, session, momo_order, gateway):
        payment_service.handle_gateway_notification(
            session, gateway.ipn_for(_payment(session, momo_order), result_code=9000)
        )

        payment = _payment(session, momo_order)
        assert payment.status == PaymentStatus.AUTHORIZED
        assert payment.authorized_at is not None
        assert session.get(Order, momo_order['order_id']).payment_success_id is None

    def test_late_failure_does_not_downgrade_success(self, session, momo_order, gateway):
        payment = _payment(session, momo_order)
        payment_service.handle_gateway_notification(session, gateway.ipn_for(payment))

        payment_service.handle_gateway_notification(session, gateway.ipn_for(payment, result_code=1006))

        assert _payment(session, momo_order).status == PaymentStatus.SUCCEEDED

    def test_unconfigured_gateway_is_reported(self, session, momo_order, gateway, monkeypatch):
        """Missing MoMo credentials answer ok=False instead of raising."""
        payload = gateway.ipn_for(_payment(session, momo_order))
        monkeypatch.setattr(payment_service, 'get_gateway_client', lambda: MomoClient({}))

        result = payment_service.handle_gateway_notification(session, payload)

        assert result == {'ok': False, 'code': 'GATEWAY_NOT_CONFIGURED'}
        assert _payment(session, momo_order).status == PaymentStatus.PENDING
        assert session.query(PaymentWebhook).count() == 0


class TestSync:
    """Tests for pulling status from the gateway."""

    def test_sync_success(self, session, user, momo_order, gateway):
        result = payment_service.sync_payment_status(session, user.id, momo_order['payment_id'])

        assert result['success'] is True
        assert result['payment']['status'] == 'SUCCEEDED'
        assert session.get(Order, momo_order['order_id']).status == OrderStatus.PAID
        assert session.get(Coupon, momo_order['coupon_id']).usage_count == 1

    def test_sync_then_notification_counts_once(self, session, user, momo_order, gateway):
        payment_service.sync_payment_status(session, user.id, momo_order['payment_id'])
        payment_service.handle_gateway_notification(session, gateway.ipn_for(_payment(session, momo_order)))

        assert session.get(Coupon, momo_order['coupon_id']).usage_count == 1

    def test_sync_in_progress_leaves_status(self, session, user, momo_order, gateway):
        gateway.responses[gateway.query_path] = {'resultCode': 1000, 'message': 'Waiting for user confirmation.'}

        result = payment_service.sync_payment_status(session, user.id, momo_order['payment_id'])

        assert result['success'] is False
        assert result['payment']['status'] == 'PENDING'
        assert result['payment']['result_code'] == 1000

    def test_sync_failure_code(self, session, user, momo_order, gateway):
        gateway.responses[gateway.query_path] = {'resultCode': 1005, 'message': 'Expired.'}

        result = payment_service.sync_payment_status(session, user.id, momo_order['payment_id'])

        assert result['payment']['status'] == 'FAILED'

    def test_sync_gateway_error(self, session, user, momo_order, gateway):
        gateway.responses[gateway.query_path] = GatewayError('MoMo did not answer in time')

        with pytest.raises(GatewayError):
            payment_service.sync_payment_status(session, user.id, momo_order['payment_id'])

        assert _payment(session, momo_order).status == PaymentStatus.PENDING

    def test_missing_provider_ids(self, session, user, momo_order, gateway):
        payment = _payment(session, momo_order)
        payment.provider_request_id = None
        session.commit()

        with pytest.raises(ValidationError) as exc:
            payment_service.sync_payment_status(session, user.id, momo_order['payment_id'])

        assert exc.value.code == 'MISSING_PROVIDER_IDS'

    def test_other_users_payment(self, session, other_user, momo_order, gateway):
        with pytest.raises(NotFoundError) as exc:
            payment_service.sync_payment_status(session, other_user.id, momo_order['payment_id'])

        assert exc.value.code == 'PAYMENT_NOT_FOUND'


class TestRefunds:
    """Tests for refunds against captured payments."""

    def _pay(self, session, momo_order, gateway):
        payment_service.handle_gateway_notification(session, gateway.ipn_for(_payment(session, momo_order)))

    def test_refund_requires_success(self, session, user, momo_order, gateway):
        with pytest.raises(BusinessLogicError) as exc:
            payment_service.refund_payment(session, user.id, momo_order['payment_id'], 50)

        assert exc.value.code == 'PAYMENT_NOT_SUCCEEDED'

    def test_partial_refunds_up_to_amount(self, session, user, momo_order, gateway):
        self._pay(session, momo_order, gateway)

        result = payment_service.refund_payment(session, user.id, momo_order['payment_id'], 100, 'Damaged item')
        assert result['success'] is True
        assert result['refund']['amount'] == 100
        sent = gateway.calls_to(gateway.refund_path)[0]
        assert sent['transId'] == '4088878653'
        assert sent['amount'] == 100

        with pytest.raises(BusinessLogicError) as exc:
            payment_service.refund_payment(session, user.id, momo_order['payment_id'], 110)
        assert exc.value.code == 'REFUND_AMOUNT_EXCEEDS_PAYMENT'
        assert exc.value.payload == {'amount': 209, 'refunded': 100, 'requested': 110}

        payment_service.refund_payment(session, user.id, momo_order['payment_id'], 109)
        detail = payment_service.get_payment(session, user.id, momo_order['payment_id'])
        assert detail['refunded_amount'] == 209
        assert len(detail['refunds']) == 2

    def test_refund_recorded_when_gateway_fails(self, session, user, momo_order, gateway):
        self._pay(session, momo_order, gateway)
        gateway.responses[gateway.refund_path] = GatewayError(
            'Bad request', payload={'resultCode': 1080, 'message': 'Refund rejected.'}
        )

        with pytest.raises(GatewayError):
            payment_service.refund_payment(session, user.id, momo_order['payment_id'], 50)

        refund = session.query(PaymentRefund).one()
        assert refund.result_code == 1080
        assert refund.refunded_at is None
        assert refund.message == 'Refund rejected.'

    def test_rejected_refund_does_not_count(self, session, user, momo_order, gateway):
        self._pay(session, momo_order, gateway)
        gateway.responses[gateway.refund_path] = {'resultCode': 1080, 'message': 'Refund rejected.'}
        result = payment_service.refund_payment(session, user.id, momo_order['payment_id'], 209)
        assert result['success'] is False

        gateway.responses.pop(gateway.refund_path)
        result = payment_service.refund_payment(session, user.id, momo_order['payment_id'], 209)
        assert result['success'] is True

    @pytest.mark.parametrize('amount', [0, -5, 'abc', 'NaN', 'Infinity', float('nan'), float('-inf')])
    def test_invalid_amount(self, session, user, momo_order, gateway, amount):
        with pytest.raises(ValidationError) as exc:
            payment_service.refund_payment(session, user.id, momo_order['payment_id'], amount)

        assert exc.value.code == 'INVALID_AMOUNT'

    def test_reason_must_be_text(self, session, user, momo_order, gateway):
        self._pay(session, momo_order, gateway)

        with pytest.raises(ValidationError) as exc:
            payment_service.refund_payment(session, user.id, momo_order['payment_id'], 50, reason={'why': 'x'})

        assert exc.value.code == 'INVALID_INPUT'
        assert gateway.calls_to(gateway.refund_path) == []
        assert session.query(PaymentRefund).count() == 0
