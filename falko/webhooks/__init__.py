"""
Webhook handlers for Falko.
Processes signed order and return events from the commerce platform.
"""
import hmac
import hashlib
import base64
from functools import wraps
from flask import request, current_app

from ..utils.errors import ErrorCode, unauthorized

SIGNATURE_HEADER = 'X-Falko-Hmac-Sha256'


def compute_webhook_signature(data: bytes, secret: str) -> str:
    """Base64 HMAC-SHA256 of the raw body."""
    return base64.b64encode(
        hmac.new(secret.encode('utf-8'), data, hashlib.sha256).digest()
    ).decode('utf-8')


def verify_webhook_signature(data: bytes, hmac_header: str, secret: str) -> bool:
    """
    Verify a webhook HMAC-SHA256 signature.

    Args:
        data: Raw request body bytes
        hmac_header: The X-Falko-Hmac-Sha256 header value
        secret: WEBHOOK_SECRET

    Returns:
        True if signature is valid, False otherwise
    """
    if not secret:
        current_app.logger.warning('No webhook secret configured for verification')
        return False

    if not hmac_header:
        current_app.logger.warning('No HMAC header in webhook request')
        return False

    try:
        computed_hmac = compute_webhook_signature(data, secret)
        # Timing-safe comparison
        return hmac.compare_digest(computed_hmac, hmac_header)
    except Exception as e:
        current_app.logger.error(f'Webhook signature verification error: {e}')
        return False


def require_webhook_signature(f):
    """
    Decorator rejecting unsigned or mis-signed webhooks with 401.

    Without WEBHOOK_SECRET, verification is skipped only under TESTING or
    DEBUG; anywhere else every request fails verification.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        secret = current_app.config.get('WEBHOOK_SECRET')
        if not secret and (current_app.config.get('TESTING') or current_app.config.get('DEBUG')):
            current_app.logger.debug('WEBHOOK_SECRET not set, skipping webhook verification')
            return f(*args, **kwargs)

        hmac_header = request.headers.get(SIGNATURE_HEADER, '')
        if not verify_webhook_signature(request.get_data(), hmac_header, secret):
            current_app.logger.warning(f'Invalid webhook signature on {request.path}')
            return unauthorized('Invalid signature', ErrorCode.INVALID_SIGNATURE)

        return f(*args, **kwargs)

    return decorated_function


from .order_lifecycle import order_lifecycle_bp

__all__ = [
    'order_lifecycle_bp',
    'compute_webhook_signature',
    'verify_webhook_signature',
    'require_webhook_signature',
    'SIGNATURE_HEADER',
]
