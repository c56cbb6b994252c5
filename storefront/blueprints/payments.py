"""
Payments blueprint - MoMo attempts and the gateway notification endpoint.
"""
import logging
from flask import Blueprint, request, g, jsonify
from storefront.blueprints import ok, json_body
from storefront.database import get_session
from storefront.middleware import require_user
from storefront.services import payment_service

logger = logging.getLogger(__name__)

payments_bp = Blueprint('payments', __name__, url_prefix='/api/payments')


@payments_bp.route('/<int:payment_id>', methods=['GET'])
@require_user
def payment_detail(payment_id):
    return ok(payment_service.get_payment(get_session(), g.user_id, payment_id))


@payments_bp.route('/<int:payment_id>/sync', methods=['POST'])
@require_user
def sync_payment(payment_id):
    """Pull the attempt's status from MoMo."""
    return ok(payment_service.sync_payment_status(get_session(), g.user_id, payment_id))


@payments_bp.route('/<int:payment_id>/refund', methods=['POST'])
@require_user
def refund_payment(payment_id):
    """Body: {"amount", "reason"?}"""
    payload = json_body()
    return ok(payment_service.refund_payment(
        get_session(), g.user_id, payment_id, payload.get('amount'), payload.get('reason')
    ))


@payments_bp.route('/momo/ipn', methods=['POST'])
def momo_ipn():
    """
    MoMo IPN (public).

    Always acknowledged so the gateway stops retrying: 204 when processed,
    200 with resultCode 1 when the notification is rejected.
    """
    try:
        payload = request.get_json(silent=True) or {}
        logger.info(f"Received MoMo IPN: orderId={payload.get('orderId')}, resultCode={payload.get('resultCode')}")

        result = payment_service.handle_gateway_notification(
            get_session(), payload, raw_body=request.get_data(as_text=True)
        )
        if result['ok']:
            return '', 204
        return jsonify({'resultCode': 1, 'message': 'invalid'}), 200

    except Exception as e:
        logger.exception(f"Error processing MoMo IPN: {e}")
        get_session().rollback()
        return jsonify({'resultCode': 1, 'message': 'error'}), 200
