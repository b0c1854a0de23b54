"""
Tests for the ReturnsService.

Covers:
- Eligibility window and order status checks
- Return creation with survey, refund amount and label generation
- Status transitions and refund dispatch on 'received'
"""
from datetime import datetime
from unittest.mock import patch

import pytest
from sqlalchemy import update
from sqlalchemy.exc import SQLAlchemyError

from falko.extensions import db
from falko.models import Return, ReturnSurvey, LoyaltyTransaction
from falko.services import ReturnsService
from falko.services.ledger_store import LedgerStore
from falko.utils.exceptions import (
    AuthorizationError,
    InvalidRequestError,
    NotEligibleError,
    NotFoundError,
    PersistenceError,
)
from falko.utils.errors import ErrorCode


def build_service(collaborators):
    return ReturnsService(
        collaborators.order_client,
        collaborators.label_client,
        collaborators.notifications,
    )


def create(collaborators, payload, customer_id='cus_1'):
    data = dict(payload)
    data['customer_id'] = customer_id
    return build_service(collaborators).create_return(data)


class TestEligibility:
    """Tests for the return window."""

    def test_recent_completed_order_is_eligible(self, app, collaborators, make_order):
        make_order(days_ago=2)

        with app.app_context():
            assert build_service(collaborators).is_order_eligible_for_return('order_1') is True

    def test_window_boundary(self, app, collaborators, make_order):
        """14 whole days is still inside the window, 15 is not."""
        make_order('order_14', days_ago=14.01)
        make_order('order_15', days_ago=15)

        with app.app_context():
            service = build_service(collaborators)
            assert service.is_order_eligible_for_return('order_14') is True
            assert service.is_order_eligible_for_return('order_15') is False

    def test_order_must_be_completed(self, app, collaborators, make_order):
        make_order(status='pending')

        with app.app_context():
            assert build_service(collaborators).is_order_eligible_for_return('order_1') is False

    def test_unknown_order_and_lookup_failure(self, app, collaborators, make_order):
        make_order()

        with app.app_context():
            service = build_service(collaborators)
            assert service.is_order_eligible_for_return('order_missing') is False

            collaborators.order_client.fail = True
            assert service.is_order_eligible_for_return('order_1') is False

    def test_check_eligibility_details(self, app, collaborators, make_order, return_payload):
        make_order(days_ago=4)

        with app.app_context():
            service = build_service(collaborators)
            details = service.check_eligibility('order_1', 'cus_1')

            assert details['eligible'] is True
            assert details['days_passed'] == 4
            assert details['days_remaining'] == 10
            assert details['has_existing_return'] is False

            create(collaborators, return_payload())
            details = service.check_eligibility('order_1', 'cus_1')
            assert details['eligible'] is False
            assert details['has_existing_return'] is True

    def test_check_eligibility_other_customer(self, app, collaborators, make_order):
        make_order(customer_id='cus_other')

        with app.app_context():
            service = build_service(collaborators)
            with pytest.raises(AuthorizationError):
                service.check_eligibility('order_1', 'cus_1')
            with pytest.raises(NotFoundError):
                service.check_eligibility('order_missing', 'cus_1')


class TestCreateReturn:
    """Tests for create_return."""

    def test_create_loyalty_points_return(self, app, collaborators, make_order, return_payload):
        """10000 returned as points refunds 11000."""
        make_order()

        with app.app_context():
            return_request = create(collaborators, return_payload())

            assert return_request.id.startswith('ret_')
            assert return_request.status == 'qr_generated'
            assert return_request.total_amount == 10000
            assert return_request.refund_amount == 11000
            assert return_request.furgonetka_qr_code == f'https://labels.test/{return_request.id}.png'
            assert return_request.furgonetka_tracking_number == 'RET000001'
            assert (return_request.expires_at - return_request.created_at).days == 14

            survey = ReturnSurvey.query.filter_by(return_id=return_request.id).one()
            assert survey.id.startswith('rsv_')
            assert survey.satisfaction_rating == 4
            assert survey.size_issue == 'too_small'

            collaborators.notifications.send_return_confirmation.assert_called_once()
            kwargs = collaborators.notifications.send_return_confirmation.call_args.kwargs
            assert kwargs['email'] == 'jan@example.com'

    def test_create_card_return_has_no_bonus(self, app, collaborators, make_order, return_payload):
        make_order()

        with app.app_context():
            return_request = create(collaborators, return_payload(refund_method='card'))

            assert return_request.refund_amount == 10000

    def test_order_outside_window(self, app, collaborators, make_order, return_payload):
        make_order(days_ago=20)

        with app.app_context():
            with pytest.raises(NotEligibleError):
                create(collaborators, return_payload())
            assert Return.query.count() == 0

    def test_order_not_found(self, app, collaborators, return_payload):
        with app.app_context():
            with pytest.raises(NotEligibleError):
                create(collaborators, return_payload(order_id='order_missing'))

    def test_invalid_refund_method(self, app, collaborators, make_order, return_payload):
        make_order()

        with app.app_context():
            with pytest.raises(InvalidRequestError):
                create(collaborators, return_payload(refund_method='cash'))

    def test_order_of_another_customer(self, app, collaborators, make_order, return_payload):
        make_order(customer_id='cus_other')

        with app.app_context():
            with pytest.raises(AuthorizationError):
                create(collaborators, return_payload())

    def test_one_open_return_per_order(self, app, collaborators, make_order, return_payload):
        make_order()

        with app.app_context():
            first = create(collaborators, return_payload())
            with pytest.raises(NotEligibleError):
                create(collaborators, return_payload())

            # A rejected return frees the order again
            build_service(collaborators).update_return_status(first.id, 'rejected')
            second = create(collaborators, return_payload())
            assert second.id != first.id

    def test_label_failure_keeps_return(self, app, collaborators, make_order, return_payload):
        make_order()
        collaborators.label_client.fail = True

        with app.app_context():
            service = build_service(collaborators)
            return_request = create(collaborators, return_payload())

            assert return_request.status == 'qr_generated'
            assert return_request.furgonetka_qr_code is None
            assert 'HTTP 503' in return_request.label_error
            assert [r.id for r in service.returns_missing_labels()] == [return_request.id]

            collaborators.label_client.fail = False
            service.generate_shipping_label(return_request.id)

            assert return_request.furgonetka_qr_code is not None
            assert return_request.label_error is None
            assert service.returns_missing_labels() == []

    def test_label_info(self, app, collaborators, make_order, return_payload):
        make_order()

        with app.app_context():
            service = build_service(collaborators)
            return_request = create(collaborators, return_payload())

            info = service.get_label_info(return_request.id, 'cus_1')
            assert info['tracking_number'] == 'RET000001'
            assert len(info['instructions']) == 4

            with pytest.raises(AuthorizationError):
                service.get_label_info(return_request.id, 'cus_other')

    def test_item_price_must_match_order(self, app, collaborators, make_order, return_payload):
        make_order(total=10000)
        payload = return_payload(items=[
            {'variant_id': 'var_1', 'title': 'Koszulka Falko', 'quantity': 1, 'unit_price': 100_000_000},
        ])

        with app.app_context():
            with pytest.raises(InvalidRequestError) as exc_info:
                create(collaborators, payload)
            assert exc_info.value.field == 'items.0.unit_price'
            assert Return.query.count() == 0

    def test_item_must_belong_to_order(self, app, collaborators, make_order, return_payload):
        make_order()
        payload = return_payload(items=[
            {'variant_id': 'var_9', 'title': 'Czapka', 'quantity': 1, 'unit_price': 5000},
        ])

        with app.app_context():
            with pytest.raises(InvalidRequestError) as exc_info:
                create(collaborators, payload)
            assert exc_info.value.field == 'items.0.variant_id'

    def test_cannot_return_more_than_ordered(self, app, collaborators, make_order, return_payload):
        make_order()
        payload = return_payload(items=[
            {'variant_id': 'var_1', 'title': 'Koszulka Falko', 'quantity': 2, 'unit_price': 5000},
            {'variant_id': 'var_1', 'title': 'Koszulka Falko', 'quantity': 1, 'unit_price': 5000},
        ])

        with app.app_context():
            with pytest.raises(InvalidRequestError) as exc_info:
                create(collaborators, payload)
            assert exc_info.value.field == 'items.1.quantity'

    def test_partial_return_of_order_lines(self, app, collaborators, make_order, return_payload):
        make_order(total=15000, items=[
            {'variant_id': 'var_1', 'title': 'Koszulka Falko', 'quantity': 2, 'unit_price': 5000},
            {'variant_id': 'var_2', 'title': 'Czapka', 'quantity': 1, 'unit_price': 5000},
        ])
        payload = return_payload(items=[
            {'variant_id': 'var_2', 'title': 'Czapka', 'quantity': 1, 'unit_price': 5000},
        ])

        with app.app_context():
            return_request = create(collaborators, payload)

            assert return_request.total_amount == 5000
            assert return_request.refund_amount == 5500

    def test_label_save_failure_keeps_return(self, app, collaborators, make_order, return_payload):
        make_order()

        with app.app_context():
            real_commit = db.session.commit
            commits = []

            def flaky_commit():
                commits.append(1)
                if len(commits) == 2:
                    raise SQLAlchemyError('disk I/O error')
                return real_commit()

            with patch.object(db.session, 'commit', side_effect=flaky_commit):
                return_request = create(collaborators, return_payload())

            saved = db.session.get(Return, return_request.id)
            assert saved is not None
            assert saved.furgonetka_qr_code is None
            collaborators.notifications.send_return_confirmation.assert_called_once()


class TestStatusAndRefund:
    """Tests for update_return_status and process_refund."""

    def test_received_credits_points(self, app, collaborators, make_order, return_payload):
        """refund_amount 11000 credits 110 points."""
        make_order()

        with app.app_context():
            service = build_service(collaborators)
            return_request = create(collaborators, return_payload())

            result = service.update_return_status(return_request.id, 'received')

            assert result['previous_status'] == 'qr_generated'
            assert result['refund'] == {'success': True}
            assert result['return'].status == 'refunded'
            assert result['return'].processed_at is not None

            account = service.ledger.get_account('cus_1')
            assert account.total_points == 110
            txn = LoyaltyTransaction.query.filter_by(customer_id='cus_1').one()
            assert txn.source == 'return_refund'
            assert txn.extra_metadata['return_id'] == return_request.id

            kwargs = collaborators.notifications.send_return_processed.call_args.kwargs
            assert kwargs['points_added'] == 110

    def test_card_refund_records_reference(self, app, collaborators, make_order, return_payload):
        make_order()

        with app.app_context():
            service = build_service(collaborators)
            return_request = create(collaborators, return_payload(refund_method='card'))

            result = service.update_return_status(return_request.id, 'received')

            assert result['return'].status == 'refunded'
            assert result['return'].refund_reference == f'refund_{return_request.id}'
            assert service.ledger.get_account('cus_1') is None

    def test_process_refund_is_idempotent(self, app, collaborators, make_order, return_payload):
        make_order()

        with app.app_context():
            service = build_service(collaborators)
            return_request = create(collaborators, return_payload())
            service.update_return_status(return_request.id, 'received')

            again = service.process_refund(return_request.id)

            assert again.status == 'refunded'
            assert service.ledger.get_account('cus_1').total_points == 110
            assert LoyaltyTransaction.query.count() == 1

    def test_received_again_after_refund_rejected(self, app, collaborators, make_order, return_payload):
        make_order()

        with app.app_context():
            service = build_service(collaborators)
            return_request = create(collaborators, return_payload())
            service.update_return_status(return_request.id, 'received')

            with pytest.raises(InvalidRequestError) as exc_info:
                service.update_return_status(return_request.id, 'received')

            assert exc_info.value.field == 'status'
            assert service.get_return(return_request.id).status == 'refunded'
            assert service.ledger.get_account('cus_1').total_points == 110

    def test_process_refund_rereads_return_row(self, app, collaborators, make_order, return_payload):
        """A refund committed elsewhere after the return was loaded is not applied again."""
        make_order()

        with app.app_context():
            service = build_service(collaborators)
            return_request = create(collaborators, return_payload())
            assert return_request.processed_at is None

            db.session.connection().execute(
                update(Return.__table__)
                .where(Return.__table__.c.id == return_request.id)
                .values(status='refunded', processed_at=datetime.utcnow())
            )

            service.process_refund(return_request.id)

            assert LoyaltyTransaction.query.count() == 0
            assert service.ledger.get_account('cus_1') is None

    def test_refund_failure_is_reported(self, app, collaborators, make_order, return_payload):
        make_order()

        with app.app_context():
            service = build_service(collaborators)
            return_request = create(collaborators, return_payload())

            with patch.object(LedgerStore, 'credit', side_effect=PersistenceError('Failed to credit points')):
                result = service.update_return_status(return_request.id, 'received')

            assert result['refund']['success'] is False
            assert 'Failed to credit points' in result['refund']['error']
            assert result['return'].status == 'received'
            assert result['return'].processed_at is None

            # Retrying succeeds once the ledger is healthy
            service.process_refund(return_request.id)
            assert service.get_return(return_request.id).status == 'refunded'
            assert service.ledger.get_account('cus_1').total_points == 110

    def test_other_statuses_do_not_refund(self, app, collaborators, make_order, return_payload):
        make_order()

        with app.app_context():
            service = build_service(collaborators)
            return_request = create(collaborators, return_payload())

            result = service.update_return_status(return_request.id, 'shipped_by_customer')

            assert result['refund'] is None
            assert result['return'].status == 'shipped_by_customer'
            assert service.ledger.get_account('cus_1') is None

    def test_invalid_status(self, app, collaborators, make_order, return_payload):
        make_order()

        with app.app_context():
            service = build_service(collaborators)
            return_request = create(collaborators, return_payload())

            with pytest.raises(InvalidRequestError):
                service.update_return_status(return_request.id, 'lost')

    def test_unknown_return(self, app, collaborators):
        with app.app_context():
            with pytest.raises(NotFoundError) as exc_info:
                build_service(collaborators).update_return_status('ret_missing', 'received')
            assert exc_info.value.code is ErrorCode.RETURN_NOT_FOUND


class TestListReturns:
    """Tests for list_returns filters."""

    def test_filters(self, app, collaborators, make_order, return_payload):
        make_order('order_1')
        make_order('order_2')
        make_order('order_3', customer_id='cus_2')

        with app.app_context():
            service = build_service(collaborators)
            first = create(collaborators, return_payload('order_1'))
            create(collaborators, return_payload('order_2', refund_method='card'))
            create(collaborators, return_payload('order_3'), customer_id='cus_2')
            service.update_return_status(first.id, 'shipped_by_customer')

            assert service.list_returns()['total'] == 3
            assert service.list_returns(customer_id='cus_2')['total'] == 1
            assert service.list_returns(order_id='order_2')['returns'][0].refund_method == 'card'

            shipped = service.list_returns(status='shipped_by_customer')
            assert [r.id for r in shipped['returns']] == [first.id]

            paged = service.list_returns(page=2, per_page=2)
            assert len(paged['returns']) == 1
            assert paged['pages'] == 2

            assert len(service.get_customer_returns('cus_1')) == 2
