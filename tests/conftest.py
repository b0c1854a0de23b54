"""
Shared pytest fixtures.

The app runs on in-memory SQLite with fake collaborators: orders come from a
dict, labels are generated locally and notifications are a MagicMock.
"""
from datetime import datetime, timedelta
from unittest.mock import MagicMock

import pytest

from falko import create_app
from falko.extensions import db
from falko.middleware.customer_auth import create_access_token
from falko.services import Collaborators, NotificationService, OrderSnapshot
from falko.utils.exceptions import CollaboratorError


class FakeOrderClient:
    """In-memory stand-in for the commerce platform orders API."""

    def __init__(self):
        self.orders = {}
        self.fail = False

    def add(self, order: OrderSnapshot) -> OrderSnapshot:
        self.orders[order.id] = order
        return order

    def get_order(self, order_id):
        if self.fail:
            raise CollaboratorError('orders', 'Order lookup failed: connection refused')
        return self.orders.get(order_id)


class FakeLabelClient:
    """Generates labels locally; set `fail` to simulate a provider outage."""

    def __init__(self):
        self.fail = False
        self.calls = []

    def create_return_label(self, return_request, order=None):
        self.calls.append(return_request.id)
        if self.fail:
            raise CollaboratorError('furgonetka', 'Shipment rejected: HTTP 503')
        return {
            'qr_code_url': f'https://labels.test/{return_request.id}.png',
            'tracking_number': f'RET{len(self.calls):06d}',
            'shipment_id': f'shp_{len(self.calls)}',
        }


@pytest.fixture
def collaborators():
    return Collaborators(
        order_client=FakeOrderClient(),
        label_client=FakeLabelClient(),
        notifications=MagicMock(spec=NotificationService),
    )


@pytest.fixture
def app(collaborators):
    """Create application for testing."""
    app = create_app('testing', collaborators=collaborators)

    with app.app_context():
        db.create_all()

    yield app

    with app.app_context():
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture
def make_order(collaborators):
    """Register an order with the fake orders API."""
    def _make_order(
        order_id='order_1',
        customer_id='cus_1',
        total=10000,
        status='completed',
        days_ago=2,
        category=None,
        email='jan@example.com',
        items=None
    ):
        if items is None:
            items = [
                {'variant_id': 'var_1', 'title': 'Koszulka Falko', 'quantity': 2, 'unit_price': total // 2},
            ]
        order = OrderSnapshot(
            id=order_id,
            customer_id=customer_id,
            status=status,
            total=total,
            created_at=datetime.utcnow() - timedelta(days=days_ago),
            email=email,
            display_id=order_id.replace('order_', ''),
            items=items,
            metadata={'category': category} if category else {},
        )
        return collaborators.order_client.add(order)

    return _make_order


@pytest.fixture
def auth_headers(app):
    """Bearer headers for a customer (or admin)."""
    def _auth_headers(customer_id='cus_1', role='customer'):
        with app.app_context():
            token = create_access_token(customer_id, role=role)
        return {'Authorization': f'Bearer {token}'}

    return _auth_headers


@pytest.fixture
def admin_headers(auth_headers):
    return auth_headers('admin_1', role='admin')


@pytest.fixture
def return_payload():
    """Body for POST /store/returns (and ReturnsService.create_return)."""
    def _return_payload(order_id='order_1', refund_method='loyalty_points', **overrides):
        payload = {
            'order_id': order_id,
            'reason_code': 'wrong_size',
            'refund_method': refund_method,
            'items': [
                {'variant_id': 'var_1', 'title': 'Koszulka Falko', 'quantity': 2, 'unit_price': 5000},
            ],
            'satisfaction_rating': 4,
            'size_issue': 'too_small',
            'description': 'Za mała',
        }
        payload.update(overrides)
        return payload

    return _return_payload
