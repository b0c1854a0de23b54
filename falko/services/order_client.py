"""
Commerce platform order client.

Reads orders from the storefront's admin API and normalizes them into
OrderSnapshot objects. Amounts are integer minor units (grosze).
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional, Dict, Any, List

import httpx

from ..utils.exceptions import CollaboratorError

logger = logging.getLogger(__name__)


@dataclass
class OrderSnapshot:
    """The fields of an order that loyalty and returns logic depend on."""
    id: str
    customer_id: Optional[str]
    status: str
    total: int
    created_at: datetime
    email: Optional[str] = None
    display_id: Optional[str] = None
    currency_code: str = 'PLN'
    items: List[Dict[str, Any]] = field(default_factory=list)
    metadata: Dict[str, Any] = field(default_factory=dict)
    shipping_address: Dict[str, Any] = field(default_factory=dict)

    @property
    def is_guest(self) -> bool:
        return not self.customer_id

    @property
    def category(self) -> Optional[str]:
        return (self.metadata or {}).get('category')

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'OrderSnapshot':
        """Build from an admin API order payload."""
        created_at = data.get('created_at')
        if isinstance(created_at, str):
            created_at = _parse_timestamp(created_at)

        items = []
        for item in data.get('items') or []:
            items.append({
                'variant_id': item.get('variant_id'),
                'title': item.get('title') or item.get('product_title') or '',
                'quantity': int(item.get('quantity') or 0),
                'unit_price': int(item.get('unit_price') or 0),
            })

        return cls(
            id=str(data['id']),
            customer_id=data.get('customer_id') or None,
            status=data.get('status') or 'pending',
            total=int(data.get('total') or 0),
            created_at=created_at or datetime.utcnow(),
            email=data.get('email'),
            display_id=str(data['display_id']) if data.get('display_id') is not None else None,
            currency_code=(data.get('currency_code') or 'PLN').upper(),
            items=items,
            metadata=data.get('metadata') or {},
            shipping_address=data.get('shipping_address') or {},
        )


def _parse_timestamp(value: str) -> datetime:
    """Parse ISO-8601 (with optional Z suffix) into a naive UTC datetime."""
    parsed = datetime.fromisoformat(value.replace('Z', '+00:00'))
    if parsed.tzinfo is not None:
        parsed = (parsed - parsed.utcoffset()).replace(tzinfo=None)
    return parsed


class OrderClient:
    """
    Client for the commerce platform admin orders API.

    Usage:
        client = OrderClient(base_url, api_token)
        order = client.get_order('order_01H...')  # None if unknown
    """

    def __init__(self, base_url: str, api_token: str = None, timeout: float = 10.0):
        self.base_url = (base_url or '').rstrip('/')
        self.api_token = api_token
        self.timeout = timeout

    @classmethod
    def from_config(cls, config) -> 'OrderClient':
        return cls(
            base_url=config.get('COMMERCE_API_URL'),
            api_token=config.get('COMMERCE_API_TOKEN'),
            timeout=config.get('COLLABORATOR_TIMEOUT_SECONDS', 10),
        )

    def _headers(self) -> Dict[str, str]:
        headers = {'Accept': 'application/json'}
        if self.api_token:
            headers['Authorization'] = f'Bearer {self.api_token}'
        return headers

    def get_order(self, order_id: str) -> Optional[OrderSnapshot]:
        """
        Fetch one order.

        Returns None when the platform answers 404. Raises CollaboratorError
        for transport failures or other error statuses.
        """
        if not self.base_url:
            raise CollaboratorError('orders', 'COMMERCE_API_URL is not configured')

        url = f'{self.base_url}/admin/orders/{order_id}'
        try:
            with httpx.Client() as client:
                response = client.get(url, headers=self._headers(), timeout=self.timeout)
        except httpx.HTTPError as e:
            logger.warning(f"Order lookup failed for {order_id}: {e}")
            raise CollaboratorError('orders', f'Order lookup failed: {e}', original_error=e)

        if response.status_code == 404:
            return None
        if response.status_code >= 400:
            raise CollaboratorError('orders', f'Order lookup returned HTTP {response.status_code}')

        payload = response.json()
        order_data = payload.get('order', payload)
        return OrderSnapshot.from_dict(order_data)
