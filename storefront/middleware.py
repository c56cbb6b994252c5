"""Middleware for bearer-token authentication."""
from datetime import datetime, timedelta, timezone
from functools import wraps
import jwt
from flask import g, request, current_app
from storefront.exceptions import UnauthorizedError


def _bearer_token():
    header = request.headers.get('Authorization', '')
    scheme, _, token = header.partition(' ')
    if scheme.lower() != 'bearer' or not token.strip():
        return None
    return token.strip()


def load_user():
    """
    Resolve the caller's identity into g.user_id (None when anonymous).

    The token is an HS256 JWT whose `sub` claim is the user id. Invalid or
    expired tokens leave the request anonymous.
    """
    g.user_id = None
    token = _bearer_token()
    if not token:
        return

    try:
        payload = jwt.decode(
            token,
            current_app.config['JWT_SECRET'],
            algorithms=[current_app.config.get('JWT_ALGORITHM', 'HS256')]
        )
    except jwt.ExpiredSignatureError:
        current_app.logger.info("Expired bearer token")
        return
    except jwt.InvalidTokenError as e:
        current_app.logger.warning(f"Invalid bearer token: {e}")
        return

    try:
        g.user_id = int(payload.get('sub'))
    except (TypeError, ValueError):
        current_app.logger.warning(f"Bearer token without a usable subject: {payload.get('sub')!r}")


def require_user(f):
    """
    Decorator: Require an authenticated user.

    Raises UnauthorizedError (401 JSON) when g.user_id is not set.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        if g.get('user_id') is None:
            raise UnauthorizedError()
        return f(*args, **kwargs)
    return decorated_function


def issue_token(user_id, expires_in=None):
    """Sign a bearer token for user_id."""
    payload = {'sub': str(user_id), 'iat': datetime.now(timezone.utc)}
    if expires_in:
        payload['exp'] = datetime.now(timezone.utc) + timedelta(seconds=expires_in)
    return jwt.encode(
        payload,
        current_app.config['JWT_SECRET'],
        algorithm=current_app.config.get('JWT_ALGORITHM', 'HS256')
    )
