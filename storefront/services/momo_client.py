"""MoMo wallet API client (v2 gateway): create, query and refund payments."""
import hashlib
import hmac
import requests
from typing import Dict, Any, Iterable, Optional
from flask import current_app
from storefront.exceptions import GatewayError


class MomoClient:
    """Client for the MoMo wallet payment API."""

    # Canonical field order of each signed message
    CREATE_FIELDS = (
        'accessKey', 'amount', 'extraData', 'ipnUrl', 'orderId', 'orderInfo',
        'partnerCode', 'redirectUrl', 'requestId', 'requestType',
    )
    QUERY_FIELDS = ('accessKey', 'orderId', 'partnerCode', 'requestId')
    REFUND_FIELDS = (
        'accessKey', 'amount', 'description', 'orderId', 'partnerCode', 'requestId', 'transId',
    )
    IPN_FIELDS = (
        'accessKey', 'amount', 'extraData', 'message', 'orderId', 'orderInfo', 'orderType',
        'partnerCode', 'payType', 'requestId', 'responseTime', 'resultCode', 'transId',
    )

    def __init__(self, config: Optional[Dict[str, Any]] = None):
        """
        Initialize MoMo client.

        Args:
            config: mapping with the MOMO_* keys. If None, reads current_app.config
        """
        cfg = config if config is not None else current_app.config
        self.partner_code = cfg.get('MOMO_PARTNER_CODE')
        self.access_key = cfg.get('MOMO_ACCESS_KEY')
        self.secret_key = cfg.get('MOMO_SECRET_KEY')
        if not (self.partner_code and self.access_key and self.secret_key):
            raise GatewayError('MoMo credentials are not configured', code='GATEWAY_NOT_CONFIGURED')

        self.endpoint = (cfg.get('MOMO_ENDPOINT') or 'https://test-payment.momo.vn').rstrip('/')
        self.create_path = cfg.get('MOMO_CREATE_PATH', '/v2/gateway/api/create')
        self.query_path = cfg.get('MOMO_QUERY_PATH', '/v2/gateway/api/query')
        self.refund_path = cfg.get('MOMO_REFUND_PATH', '/v2/gateway/api/refund')
        self.redirect_url = cfg.get('MOMO_REDIRECT_URL', '')
        self.ipn_url = cfg.get('MOMO_IPN_URL', '')
        self.partner_name = cfg.get('MOMO_PARTNER_NAME', 'Storefront')
        self.store_id = cfg.get('MOMO_STORE_ID', 'Storefront')
        self.timeout = float(cfg.get('MOMO_TIMEOUT', 15))

        self.headers = {'Content-Type': 'application/json'}

    # -----------------------------------------------------
    # Signatures
    # -----------------------------------------------------

    def build_signature(self, fields: Iterable[str], data: Dict[str, Any]) -> str:
        """
        HMAC-SHA256 (hex) over `key=value` pairs joined by `&` in canonical order.
        accessKey always comes from this client, never from `data`.
        """
        values = dict(data)
        values['accessKey'] = self.access_key
        raw = '&'.join(f"{key}={'' if values.get(key) is None else values.get(key)}" for key in fields)
        return hmac.new(self.secret_key.encode('utf-8'), raw.encode('utf-8'), hashlib.sha256).hexdigest()

    def verify_ipn_signature(self, payload: Dict[str, Any]) -> bool:
        """Check the signature of an inbound payment notification (IPN)."""
        signature = payload.get('signature')
        if not signature:
            current_app.logger.warning("[MoMo] IPN without signature")
            return False
        expected = self.build_signature(self.IPN_FIELDS, payload)
        is_valid = hmac.compare_digest(str(signature), expected)
        if not is_valid:
            current_app.logger.warning(f"[MoMo] Invalid IPN signature for orderId={payload.get('orderId')}")
        return is_valid

    # -----------------------------------------------------
    # API calls
    # -----------------------------------------------------

    def create_payment(
        self,
        order_id: str,
        request_id: str,
        amount: int,
        order_info: str,
        extra_data: str = '',
        auto_capture: bool = True,
        lang: str = 'vi',
        request_type: str = 'payWithMethod'
    ) -> Dict[str, Any]:
        """
        Create a MoMo payment.

        Args:
            order_id: provider order id (unique per attempt)
            request_id: idempotency id of this request
            amount: amount in whole currency units
            order_info: description shown to the payer
            extra_data: base64 JSON passed back in the IPN
            auto_capture: capture immediately (False leaves it AUTHORIZED, code 9000)
            lang: 'vi' or 'en'

        Returns:
            MoMo response including payUrl and resultCode

        Raises:
            GatewayError: transport failure or HTTP error from MoMo
        """
        body = {
            'partnerCode': self.partner_code,
            'partnerName': self.partner_name,
            'storeId': self.store_id,
            'requestId': request_id,
            'amount': int(amount),
            'orderId': order_id,
            'orderInfo': order_info,
            'redirectUrl': self.redirect_url,
            'ipnUrl': self.ipn_url,
            'requestType': request_type,
            'autoCapture': auto_capture,
            'lang': lang,
            'extraData': extra_data or '',
        }
        body['signature'] = self.build_signature(self.CREATE_FIELDS, body)

        current_app.logger.info(f"[MoMo] Creating payment {order_id} amount={body['amount']}")
        data = self._post(self.create_path, body)
        current_app.logger.info(
            f"[MoMo] Payment created: {order_id} - resultCode={data.get('resultCode')} payUrl={data.get('payUrl')}"
        )
        return data

    def query_payment(self, order_id: str, request_id: str, lang: str = 'vi') -> Dict[str, Any]:
        """
        Query the status of a payment.

        Raises:
            GatewayError: transport failure or HTTP error from MoMo
        """
        body = {
            'partnerCode': self.partner_code,
            'requestId': request_id,
            'orderId': order_id,
            'lang': lang,
        }
        body['signature'] = self.build_signature(self.QUERY_FIELDS, body)

        current_app.logger.info(f"[MoMo] Querying payment {order_id}")
        data = self._post(self.query_path, body)
        current_app.logger.info(f"[MoMo] Payment status: resultCode={data.get('resultCode')} - {order_id}")
        return data

    def refund(
        self,
        order_id: str,
        request_id: str,
        amount: int,
        trans_id: str,
        description: str = '',
        lang: str = 'vi'
    ) -> Dict[str, Any]:
        """
        Refund all or part of a captured payment.

        Raises:
            GatewayError: transport failure or HTTP error from MoMo
        """
        body = {
            'partnerCode': self.partner_code,
            'orderId': order_id,
            'requestId': request_id,
            'amount': int(amount),
            'transId': trans_id,
            'lang': lang,
            'description': description or '',
        }
        body['signature'] = self.build_signature(self.REFUND_FIELDS, body)

        current_app.logger.info(f"[MoMo] Refunding {body['amount']} of transId={trans_id}")
        data = self._post(self.refund_path, body)
        current_app.logger.info(f"[MoMo] Refund result: resultCode={data.get('resultCode')} - {request_id}")
        return data

    def _post(self, path: str, body: Dict[str, Any]) -> Dict[str, Any]:
        """POST JSON with a bounded timeout. Never retried here."""
        url = f"{self.endpoint}{path}"
        try:
            response = requests.post(url, json=body, headers=self.headers, timeout=self.timeout)
            response.raise_for_status()
            return response.json()

        except requests.HTTPError as e:
            try:
                payload = e.response.json()
            except ValueError:
                payload = {'message': e.response.text}
            current_app.logger.error(f"[MoMo] HTTP {e.response.status_code} from {path}: {payload}")
            raise GatewayError(str(payload.get('message') or 'MoMo returned an error'), payload=payload) from e
        except requests.Timeout as e:
            current_app.logger.error(f"[MoMo] Timeout after {self.timeout}s calling {path}")
            raise GatewayError('MoMo did not answer in time', payload={'message': str(e)}) from e
        except requests.RequestException as e:
            current_app.logger.error(f"[MoMo] Request error calling {path}: {str(e)}")
            raise GatewayError('MoMo is unreachable', payload={'message': str(e)}) from e
        except ValueError as e:
            current_app.logger.error(f"[MoMo] Invalid JSON from {path}: {str(e)}")
            raise GatewayError('MoMo returned an invalid response', payload={'message': str(e)}) from e


def get_gateway_client() -> MomoClient:
    """Gateway client for the current app."""
    return MomoClient()
