"""
Business logic services for the Falko loyalty and returns service.

External collaborators are built once in create_app and kept on
app.extensions['falko']; the helpers below assemble request-scoped services
from them.
"""
from dataclasses import dataclass

from flask import current_app

from .ledger_store import LedgerStore
from .loyalty_service import LoyaltyService, LoyaltySettings, RedemptionResult, calculate_tier, points_to_next_tier
from .returns_service import ReturnsService
from .order_client import OrderClient, OrderSnapshot
from .shipping_labels import OAuthTokenHolder, ShippingLabelClient
from .notification_service import NotificationService


@dataclass
class Collaborators:
    order_client: OrderClient
    label_client: ShippingLabelClient
    notifications: NotificationService

    @classmethod
    def from_config(cls, config) -> 'Collaborators':
        return cls(
            order_client=OrderClient.from_config(config),
            label_client=ShippingLabelClient.from_config(config),
            notifications=NotificationService.from_config(config),
        )


def get_collaborators() -> Collaborators:
    return current_app.extensions['falko']


def get_loyalty_service() -> LoyaltyService:
    return LoyaltyService()


def get_returns_service() -> ReturnsService:
    collaborators = get_collaborators()
    return ReturnsService(
        collaborators.order_client,
        collaborators.label_client,
        collaborators.notifications,
    )


__all__ = [
    'LedgerStore',
    'LoyaltyService',
    'LoyaltySettings',
    'RedemptionResult',
    'calculate_tier',
    'points_to_next_tier',
    'ReturnsService',
    'OrderClient',
    'OrderSnapshot',
    'OAuthTokenHolder',
    'ShippingLabelClient',
    'NotificationService',
    'Collaborators',
    'get_collaborators',
    'get_loyalty_service',
    'get_returns_service',
]
