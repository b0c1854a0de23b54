"""
Customer Bearer Token Authentication.

Store and admin endpoints expect `Authorization: Bearer <JWT>` signed with
the app SECRET_KEY (HS256). Token claims:
- sub: customer id
- role: 'customer' (default) or 'admin'
- exp: expiration time
"""
from datetime import datetime, timedelta
from functools import wraps
from typing import Optional

import jwt
from flask import request, g, current_app

from ..utils.errors import ErrorCode, unauthorized, forbidden

JWT_ALGORITHM = 'HS256'
JWT_ACCESS_EXPIRY = timedelta(hours=1)


def create_access_token(customer_id: str, role: str = 'customer', expires_in: timedelta = None) -> str:
    """Issue a token for a customer (used by the storefront session bridge and tests)."""
    now = datetime.utcnow()
    payload = {
        'sub': customer_id,
        'role': role,
        'iat': now,
        'exp': now + (expires_in or JWT_ACCESS_EXPIRY),
    }
    return jwt.encode(payload, current_app.config['SECRET_KEY'], algorithm=JWT_ALGORITHM)


def decode_access_token(token: str) -> Optional[dict]:
    """Verified payload, or None if the token is invalid or expired."""
    if not token:
        return None
    try:
        return jwt.decode(token, current_app.config['SECRET_KEY'], algorithms=[JWT_ALGORITHM])
    except jwt.ExpiredSignatureError:
        current_app.logger.info('Customer token expired')
        return None
    except jwt.InvalidTokenError as e:
        current_app.logger.info(f'Invalid customer token: {e}')
        return None


def _authenticate():
    """Returns (payload, error_response)."""
    auth_header = request.headers.get('Authorization', '')
    if not auth_header.startswith('Bearer '):
        return None, unauthorized('Customer authentication required')

    payload = decode_access_token(auth_header.split(' ', 1)[1].strip())
    if not payload or not payload.get('sub'):
        return None, unauthorized('Invalid or expired token', ErrorCode.INVALID_TOKEN)
    return payload, None


def require_customer(f):
    """
    Decorator requiring an authenticated customer.

    Sets g.customer_id and g.role.

    Usage:
        @require_customer
        def my_endpoint():
            customer_id = g.customer_id
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        payload, error = _authenticate()
        if error:
            return error
        g.customer_id = str(payload['sub'])
        g.role = payload.get('role', 'customer')
        return f(*args, **kwargs)

    return decorated_function


def require_admin(f):
    """Decorator requiring a token with role == 'admin'."""
    @wraps(f)
    def decorated_function(*args, **kwargs):
        payload, error = _authenticate()
        if error:
            return error
        if payload.get('role') != 'admin':
            return forbidden('Admin access required')
        g.customer_id = str(payload['sub'])
        g.role = 'admin'
        return f(*args, **kwargs)

    return decorated_function
