"""
Furgonetka shipping label client.

Return labels are prepaid shipments from the customer to the warehouse. The
API is authenticated with OAuth client credentials; the access token is
cached by OAuthTokenHolder until shortly before it expires.
"""
import logging
import threading
import time
from typing import Optional, Dict, Any, Callable

import httpx

from ..utils.exceptions import CollaboratorError

logger = logging.getLogger(__name__)

# Refresh the token this many seconds before the provider says it expires
TOKEN_REFRESH_BUFFER_SECONDS = 5 * 60

FURGONETKA_MEDIA_TYPE = 'application/vnd.furgonetka.v1+json'

# Default parcel for a returned order
DEFAULT_PARCEL = {'length': 30, 'width': 20, 'height': 10}
DEFAULT_ITEM_WEIGHT_KG = 0.5
MIN_PARCEL_WEIGHT_KG = 0.1
MAX_DESCRIPTION_LENGTH = 500


class OAuthTokenHolder:
    """
    Caches a client-credentials access token.

    Thread-safe: concurrent callers in one worker share a single refresh.
    """

    def __init__(
        self,
        base_url: str,
        client_id: str,
        client_secret: str,
        timeout: float = 10.0,
        clock: Callable[[], float] = time.time
    ):
        self.base_url = base_url.rstrip('/')
        self.client_id = client_id
        self.client_secret = client_secret
        self.timeout = timeout
        self._clock = clock
        self._lock = threading.Lock()
        self._access_token: Optional[str] = None
        self._expires_at: float = 0.0

    @property
    def is_configured(self) -> bool:
        return bool(self.client_id and self.client_secret)

    def get_token(self) -> str:
        """Return a cached token, fetching a new one when missing or near expiry."""
        with self._lock:
            if self._access_token and self._clock() < self._expires_at - TOKEN_REFRESH_BUFFER_SECONDS:
                return self._access_token
            return self._refresh()

    def invalidate(self) -> None:
        with self._lock:
            self._access_token = None
            self._expires_at = 0.0

    def _refresh(self) -> str:
        if not self.is_configured:
            raise CollaboratorError(
                'furgonetka',
                'OAuth not configured: FURGONETKA_OAUTH_CLIENT_ID and FURGONETKA_OAUTH_CLIENT_SECRET are required'
            )

        logger.info('Furgonetka OAuth: requesting new access token')
        requested_at = self._clock()
        try:
            with httpx.Client() as client:
                response = client.post(
                    f'{self.base_url}/oauth/token',
                    data={
                        'grant_type': 'client_credentials',
                        'client_id': self.client_id,
                        'client_secret': self.client_secret,
                    },
                    timeout=self.timeout
                )
                response.raise_for_status()
                data = response.json()
        except httpx.HTTPError as e:
            raise CollaboratorError('furgonetka', f'OAuth token request failed: {e}', original_error=e)

        token = data.get('access_token')
        if not token:
            raise CollaboratorError('furgonetka', 'OAuth response did not include an access token')

        self._access_token = token
        self._expires_at = requested_at + int(data.get('expires_in') or 0)
        return token


class ShippingLabelClient:
    """
    Creates prepaid return shipments with Furgonetka.

    Usage:
        tokens = OAuthTokenHolder(base_url, client_id, client_secret)
        client = ShippingLabelClient(base_url, tokens, warehouse_address)
        label = client.create_return_label(return_request, order)
        # {'qr_code_url': ..., 'tracking_number': ..., 'shipment_id': ...}
    """

    def __init__(
        self,
        base_url: str,
        token_holder: OAuthTokenHolder,
        warehouse_address: Dict[str, Any],
        timeout: float = 10.0
    ):
        self.base_url = base_url.rstrip('/')
        self.token_holder = token_holder
        self.warehouse_address = warehouse_address or {}
        self.timeout = timeout

    @classmethod
    def from_config(cls, config) -> 'ShippingLabelClient':
        timeout = config.get('COLLABORATOR_TIMEOUT_SECONDS', 10)
        base_url = config.get('FURGONETKA_BASE_URL', 'https://api.sandbox.furgonetka.pl')
        tokens = OAuthTokenHolder(
            base_url,
            config.get('FURGONETKA_OAUTH_CLIENT_ID', ''),
            config.get('FURGONETKA_OAUTH_CLIENT_SECRET', ''),
            timeout=timeout
        )
        return cls(base_url, tokens, config.get('RETURN_WAREHOUSE_ADDRESS', {}), timeout=timeout)

    def create_return_label(self, return_request, order=None) -> Dict[str, Any]:
        """
        Create a return shipment and return its label details.

        Raises:
            CollaboratorError: credentials missing, provider unreachable or
                the provider rejected the shipment.
        """
        payload = self._build_payload(return_request, order)
        token = self.token_holder.get_token()

        try:
            with httpx.Client() as client:
                response = client.post(
                    f'{self.base_url}/shipments',
                    headers={
                        'Authorization': f'Bearer {token}',
                        'Content-Type': FURGONETKA_MEDIA_TYPE,
                        'Accept': FURGONETKA_MEDIA_TYPE,
                        'X-Language': 'pl_PL',
                    },
                    json=payload,
                    timeout=self.timeout
                )
        except httpx.HTTPError as e:
            raise CollaboratorError('furgonetka', f'Shipment request failed: {e}', original_error=e)

        if response.status_code == 401:
            # Token revoked early; next attempt fetches a fresh one
            self.token_holder.invalidate()
        if response.status_code >= 400:
            raise CollaboratorError(
                'furgonetka',
                f'Shipment rejected: HTTP {response.status_code} {response.text[:200]}'
            )

        result = response.json()
        tracking_number = result.get('tracking_number') or result.get('trackingNumber')
        qr_code_url = (
            result.get('qr_code_url')
            or result.get('label_url')
            or result.get('labelUrl')
        )
        if not qr_code_url:
            raise CollaboratorError('furgonetka', 'Shipment created without a label URL')

        return {
            'qr_code_url': qr_code_url,
            'tracking_number': tracking_number,
            'shipment_id': result.get('id') or result.get('shipment_id'),
        }

    def _build_payload(self, return_request, order=None) -> Dict[str, Any]:
        customer_address = (order.shipping_address if order else None) or {}
        warehouse = self.warehouse_address

        return {
            'service': 'inpost_paczkomaty',
            'service_type': 'parcel_machine',
            'source_order_id': return_request.id,
            'sender': {
                'name': customer_address.get('first_name', ''),
                'surname': customer_address.get('last_name', ''),
                'email': (order.email if order else None) or '',
                'phone': customer_address.get('phone', ''),
                'address': {
                    'street': customer_address.get('address_1', ''),
                    'city': customer_address.get('city', ''),
                    'postal_code': customer_address.get('postal_code', ''),
                    'country_code': (customer_address.get('country_code') or 'PL').upper(),
                },
            },
            'receiver': {
                'company': warehouse.get('company'),
                'name': warehouse.get('name', ''),
                'surname': warehouse.get('surname', ''),
                'email': warehouse.get('email', ''),
                'phone': warehouse.get('phone', ''),
                'address': {
                    'street': warehouse.get('street', ''),
                    'city': warehouse.get('city', ''),
                    'postal_code': warehouse.get('postcode', ''),
                    'country_code': warehouse.get('country_code', 'PL'),
                },
            },
            'packages': [
                {
                    'weight': _parcel_weight(return_request.items),
                    'dimensions': dict(DEFAULT_PARCEL),
                    'description': _parcel_description(return_request),
                    'value': return_request.total_amount / 100,
                },
            ],
        }


def _parcel_weight(items) -> float:
    quantity = sum(int(item.get('quantity', 1)) for item in items or [])
    return max(quantity * DEFAULT_ITEM_WEIGHT_KG, MIN_PARCEL_WEIGHT_KG)


def _parcel_description(return_request) -> str:
    parts = [
        f"{item.get('quantity', 1)}x {item.get('title') or 'Produkt'}"
        for item in return_request.items or []
    ]
    description = f"Zwrot {return_request.id} | {'; '.join(parts)}"
    if len(description) > MAX_DESCRIPTION_LENGTH:
        description = description[:MAX_DESCRIPTION_LENGTH - 3] + '...'
    return description
