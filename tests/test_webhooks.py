"""
Tests for order lifecycle webhooks.

Covers:
- Points awarded once per paid order
- Reversal on cancellation, clamped at zero
- Proportional reversal when items are returned
- Signature verification
"""
import json

import pytest

from falko.config import ProductionConfig, validate_config
from falko.models import LoyaltyTransaction
from falko.services import ReturnsService
from falko.services.ledger_store import LedgerStore
from falko.webhooks import SIGNATURE_HEADER, compute_webhook_signature
from falko.webhooks.order_lifecycle import proportional_reversal_points


def post_event(client, path, payload, headers=None):
    return client.post(
        f'/webhooks/{path}',
        data=json.dumps(payload),
        content_type='application/json',
        headers=headers or {}
    )


def balance(app, customer_id='cus_1'):
    with app.app_context():
        account = LedgerStore().get_account(customer_id)
        return account.total_points if account else None


class TestProportionalReversal:
    """Tests for the reversal formula."""

    @pytest.mark.parametrize('original,returned,total,expected', [
        (200, 2500, 10000, 50),
        (200, 10000, 10000, 200),
        (200, 20000, 10000, 200),
        (150, 3333, 10000, 49),
        (200, 0, 10000, 0),
        (0, 5000, 10000, 0),
    ])
    def test_formula(self, original, returned, total, expected):
        assert proportional_reversal_points(original, returned, total) == expected


class TestPaymentCaptured:
    """Tests for /webhooks/orders/payment-captured."""

    def test_awards_points_once(self, app, client, collaborators, make_order):
        make_order(total=10000)

        response = post_event(client, 'orders/payment-captured', {'id': 'order_1'})

        assert response.status_code == 200
        data = response.get_json()
        assert data['success'] is True
        assert data['points_awarded'] == 200
        assert data['new_balance'] == 200
        collaborators.notifications.send_points_earned.assert_called_once_with(
            email='jan@example.com',
            points=200,
            new_balance=200,
            order_number='1'
        )

        # Redelivery
        response = post_event(client, 'orders/payment-captured', {'id': 'order_1'})
        data = response.get_json()
        assert data['skipped'] is True
        assert data['reason'] == 'already_awarded'
        assert balance(app) == 200

    def test_guest_checkout_skipped(self, app, client, make_order):
        make_order(customer_id=None)

        response = post_event(client, 'orders/payment-captured', {'id': 'order_1'})

        assert response.get_json()['reason'] == 'guest_checkout'
        with app.app_context():
            assert LoyaltyTransaction.query.count() == 0

    def test_below_minimum_skipped(self, app, client, make_order):
        make_order(total=4000)

        response = post_event(client, 'orders/payment-captured', {'id': 'order_1'})

        assert response.get_json()['reason'] == 'below_minimum_order_value'
        assert balance(app) is None

    def test_unknown_order_skipped(self, client):
        response = post_event(client, 'orders/payment-captured', {'id': 'order_missing'})

        assert response.status_code == 200
        assert response.get_json()['reason'] == 'order_not_found'

    def test_lookup_failure_reported(self, client, collaborators, make_order):
        make_order()
        collaborators.order_client.fail = True

        response = post_event(client, 'orders/payment-captured', {'id': 'order_1'})

        assert response.status_code == 200
        data = response.get_json()
        assert data['success'] is False
        assert 'connection refused' in data['error']

    @pytest.mark.parametrize('body', [[], {}, {'id': ''}])
    def test_malformed_payload(self, client, body):
        response = post_event(client, 'orders/payment-captured', body)

        assert response.status_code == 400
        assert response.get_json()['error']['code'] == 'INVALID_REQUEST'


class TestOrderCanceled:
    """Tests for /webhooks/orders/canceled."""

    def test_cancel_reverses_points(self, app, client, make_order):
        make_order(total=10000)
        post_event(client, 'orders/payment-captured', {'id': 'order_1'})

        response = post_event(client, 'orders/canceled', {'id': 'order_1'})

        data = response.get_json()
        assert data['points_reversed'] == 200
        assert data['new_balance'] == 0
        with app.app_context():
            account = LedgerStore().get_account('cus_1')
            assert account.lifetime_earned == 200

        # Redelivery
        response = post_event(client, 'orders/canceled', {'id': 'order_1'})
        assert response.get_json()['reason'] == 'already_reversed'

    def test_cancel_without_award(self, client, make_order):
        make_order(total=4000)

        response = post_event(client, 'orders/canceled', {'id': 'order_1'})

        assert response.get_json()['reason'] == 'no_points_awarded'

    def test_cancel_after_spending_clamps_at_zero(self, app, client, make_order):
        make_order(total=10000)
        post_event(client, 'orders/payment-captured', {'id': 'order_1'})
        with app.app_context():
            LedgerStore().debit('cus_1', 150)

        response = post_event(client, 'orders/canceled', {'id': 'order_1'})

        data = response.get_json()
        assert data['points_reversed'] == 200
        assert data['new_balance'] == 0
        with app.app_context():
            reversal = LoyaltyTransaction.query.filter_by(type='refunded').one()
            assert reversal.extra_metadata['shortfall'] == 150


class TestReturnReceived:
    """Tests for /webhooks/returns/received."""

    def test_proportional_reversal(self, app, client, make_order):
        make_order(total=10000)
        post_event(client, 'orders/payment-captured', {'id': 'order_1'})
        event = {
            'id': 'ret_1',
            'order_id': 'order_1',
            'items': [{'variant_id': 'var_1', 'quantity': 1, 'unit_price': 2500}],
        }

        response = post_event(client, 'returns/received', event)

        data = response.get_json()
        assert data['points_reversed'] == 50
        assert data['new_balance'] == 150

        # Redelivery of the same return
        response = post_event(client, 'returns/received', event)
        assert response.get_json()['reason'] == 'already_processed'
        assert balance(app) == 150

    def test_cancel_after_partial_return_reverses_remainder(self, app, client, make_order):
        make_order(total=10000)
        post_event(client, 'orders/payment-captured', {'id': 'order_1'})
        post_event(client, 'returns/received', {
            'id': 'ret_1',
            'order_id': 'order_1',
            'items': [{'quantity': 1, 'unit_price': 2500}],
        })

        response = post_event(client, 'orders/canceled', {'id': 'order_1'})

        assert response.get_json()['points_reversed'] == 150
        assert balance(app) == 0

    def test_uses_return_total_without_item_prices(self, app, client, collaborators, make_order, return_payload):
        make_order(total=20000)
        post_event(client, 'orders/payment-captured', {'id': 'order_1'})
        with app.app_context():
            data = return_payload(items=[
                {'variant_id': 'var_1', 'title': 'Koszulka Falko', 'quantity': 1, 'unit_price': 10000},
            ])
            data['customer_id'] = 'cus_1'
            return_id = ReturnsService(
                collaborators.order_client,
                collaborators.label_client,
                collaborators.notifications
            ).create_return(data).id

        response = post_event(client, 'returns/received', {'id': return_id, 'order_id': 'order_1'})

        # 400 points earned on 20000, half of the order returned
        data = response.get_json()
        assert data['points_reversed'] == 200
        assert data['new_balance'] == 200

    def test_nothing_to_reverse(self, client, make_order):
        make_order(total=10000)
        post_event(client, 'orders/payment-captured', {'id': 'order_1'})

        response = post_event(client, 'returns/received', {'id': 'ret_unknown', 'order_id': 'order_1'})

        assert response.get_json()['reason'] == 'nothing_to_reverse'

    def test_return_refund_credit_untouched(self, app, client, make_order):
        """Points credited as a return refund are not reversed by the webhook."""
        make_order(total=10000)
        with app.app_context():
            LedgerStore().credit('cus_1', 110, order_id='order_1', source='return_refund')

        response = post_event(client, 'returns/received', {
            'id': 'ret_1',
            'order_id': 'order_1',
            'items': [{'quantity': 2, 'unit_price': 5000}],
        })

        assert response.get_json()['reason'] == 'no_points_awarded'
        assert balance(app) == 110


class TestSignature:
    """Tests for webhook signature verification."""

    def test_unsigned_rejected_when_secret_set(self, app, client, make_order):
        app.config['WEBHOOK_SECRET'] = 'whsec_test'
        make_order()

        response = post_event(client, 'orders/payment-captured', {'id': 'order_1'})

        assert response.status_code == 401
        assert response.get_json()['error']['code'] == 'INVALID_SIGNATURE'
        assert balance(app) is None

    def test_wrong_signature_rejected(self, app, client, make_order):
        app.config['WEBHOOK_SECRET'] = 'whsec_test'
        make_order()
        body = json.dumps({'id': 'order_1'})

        response = client.post(
            '/webhooks/orders/payment-captured',
            data=body,
            content_type='application/json',
            headers={SIGNATURE_HEADER: compute_webhook_signature(body.encode('utf-8'), 'other')}
        )

        assert response.status_code == 401

    def test_signed_request_accepted(self, app, client, make_order):
        app.config['WEBHOOK_SECRET'] = 'whsec_test'
        make_order()
        body = json.dumps({'id': 'order_1'})

        response = client.post(
            '/webhooks/orders/payment-captured',
            data=body,
            content_type='application/json',
            headers={SIGNATURE_HEADER: compute_webhook_signature(body.encode('utf-8'), 'whsec_test')}
        )

        assert response.status_code == 200
        assert response.get_json()['points_awarded'] == 200

    def test_unsigned_rejected_without_secret_outside_testing(self, app, client, make_order):
        app.config['WEBHOOK_SECRET'] = ''
        app.config['TESTING'] = False
        app.config['DEBUG'] = False
        make_order()

        response = post_event(client, 'orders/payment-captured', {'id': 'order_1'})

        assert response.status_code == 401
        assert balance(app) is None

    def test_production_requires_webhook_secret(self, monkeypatch):
        monkeypatch.setattr(ProductionConfig, '_secret_key', 'p' * 40)
        monkeypatch.setattr(ProductionConfig, '_webhook_secret', '')

        with pytest.raises(RuntimeError, match='WEBHOOK_SECRET'):
            validate_config('production')

        monkeypatch.setattr(ProductionConfig, '_webhook_secret', 'whsec_live')
        validate_config('production')
