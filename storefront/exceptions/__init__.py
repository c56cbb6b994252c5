"""Custom exceptions for the storefront application."""

class StoreError(Exception):
    """Base exception for all application errors."""
    kind = 'INTERNAL'

    def __init__(self, message="An internal error occurred", status_code=500, payload=None, code='INTERNAL_ERROR'):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.payload = payload
        self.code = code

    def to_dict(self):
        rv = {
            'status': 'error',
            'kind': self.kind,
            'code': self.code,
            'message': self.message,
        }
        if self.payload is not None:
            rv['data'] = self.payload
        return rv

class ValidationError(StoreError):
    """Malformed or missing input, raised before any state is touched."""
    kind = 'VALIDATION'

    def __init__(self, message, code='INVALID_INPUT', payload=None):
        super().__init__(message, 400, payload, code)

class NotFoundError(StoreError):
    """Exception raised when a resource is not found (or is not the caller's)."""
    kind = 'NOT_FOUND'

    def __init__(self, message="Resource not found", code='NOT_FOUND', payload=None):
        super().__init__(message, 404, payload, code)

class UnauthorizedError(StoreError):
    """Raised when the request carries no usable identity."""
    kind = 'UNAUTHORIZED'

    def __init__(self, message="Authentication required", code='UNAUTHORIZED'):
        super().__init__(message, 401, None, code)

class BusinessLogicError(StoreError):
    """Exception raised when current state precludes the requested transition."""
    kind = 'CONFLICT'

    def __init__(self, message, code='CONFLICT', payload=None, status_code=409):
        super().__init__(message, status_code, payload, code)

class InsufficientStockError(BusinessLogicError):
    """Raised when an operation fails due to lack of stock."""

    def __init__(self, variant_label, available, code='QUANTITY_EXCEEDS_STOCK', variant_id=None):
        available = max(0, int(available))
        if code == 'ITEM_OUT_OF_STOCK':
            message = f'"{variant_label}" is out of stock'
        else:
            message = f'Only {available} left for "{variant_label}"'
        payload = {'max': available}
        if variant_id is not None:
            payload['variant_id'] = variant_id
        super().__init__(message, code=code, payload=payload)

class GatewayError(StoreError):
    """Payment gateway unreachable or returned an error; carries the raw upstream payload."""
    kind = 'GATEWAY_ERROR'

    def __init__(self, message="Payment gateway error", payload=None, code='GATEWAY_ERROR'):
        super().__init__(message, 502, payload, code)
