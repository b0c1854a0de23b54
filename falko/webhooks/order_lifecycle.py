"""
Order lifecycle webhook handlers.
Keeps the loyalty ledger in step with orders and returns.

Events:
1. orders/payment-captured: award purchase points (at most once per order)
2. orders/canceled: reverse the order's purchase points
3. returns/received: reverse purchase points in proportion to the value returned

Loyalty bookkeeping never blocks the order lifecycle: handlers log internal
errors and still answer 200 with a result describing what happened.

Return refunds are NOT credited here. They are credited by the returns
service when an admin marks the return as received.
"""
import math
from flask import Blueprint, request, jsonify, current_app

from . import require_webhook_signature
from ..extensions import db
from ..models.returns import Return
from ..schemas import OrderEvent, ReturnReceivedEvent, validate_body
from ..services import get_collaborators, get_loyalty_service
from ..utils.exceptions import InvalidRequestError
from ..utils.errors import bad_request


order_lifecycle_bp = Blueprint('order_lifecycle', __name__)


def proportional_reversal_points(original_points: int, returned_value: int, order_total: int) -> int:
    """
    floor(original_points * returned_value / order_total).
    """
    if original_points <= 0 or returned_value <= 0 or order_total <= 0:
        return 0
    returned_value = min(returned_value, order_total)
    return math.floor(original_points * returned_value / order_total)


def _skipped(result: dict, reason: str):
    result['skipped'] = True
    result['reason'] = reason
    return jsonify(result)


@order_lifecycle_bp.route('/orders/payment-captured', methods=['POST'])
@require_webhook_signature
def handle_payment_captured():
    """Award purchase points once the order is paid."""
    try:
        event = validate_body(OrderEvent, request.get_json(silent=True))
    except InvalidRequestError as e:
        return bad_request(e.message, details=e.details)

    result = {'success': True, 'order_id': event.id}

    try:
        collaborators = get_collaborators()
        order = collaborators.order_client.get_order(event.id)
        if order is None:
            return _skipped(result, 'order_not_found')

        if order.is_guest:
            # Guest checkout - no points
            return _skipped(result, 'guest_checkout')

        if order.total <= 0:
            return _skipped(result, 'zero_total')

        loyalty = get_loyalty_service()
        if loyalty.ledger.get_order_earning(order.customer_id, order.id):
            return _skipped(result, 'already_awarded')

        points = loyalty.calculate_points_for_order(order)
        if points <= 0:
            return _skipped(result, 'below_minimum_order_value')

        order_label = order.display_id or order.id
        transaction = loyalty.award_points(
            order.customer_id,
            points,
            order_id=order.id,
            description=f'Points for order #{order_label}',
            metadata={'order_total': order.total, 'category': order.category},
        )

        account = loyalty.ledger.get_account(order.customer_id)
        collaborators.notifications.send_points_earned(
            email=order.email,
            points=points,
            new_balance=account.total_points,
            order_number=order_label
        )

        current_app.logger.info(f'Awarded {points} points to {order.customer_id} for order {order.id}')
        result['points_awarded'] = points
        result['transaction_id'] = transaction.id
        result['new_balance'] = account.total_points
        return jsonify(result)

    except Exception as e:
        db.session.rollback()
        current_app.logger.error(f'Error processing payment captured webhook for {event.id}: {str(e)}')
        result['success'] = False
        result['error'] = str(e)
        return jsonify(result)


@order_lifecycle_bp.route('/orders/canceled', methods=['POST'])
@require_webhook_signature
def handle_order_canceled():
    """Reverse the purchase points of a canceled order."""
    try:
        event = validate_body(OrderEvent, request.get_json(silent=True))
    except InvalidRequestError as e:
        return bad_request(e.message, details=e.details)

    result = {'success': True, 'order_id': event.id}

    try:
        order = get_collaborators().order_client.get_order(event.id)
        if order is None:
            return _skipped(result, 'order_not_found')

        if order.is_guest:
            return _skipped(result, 'guest_checkout')

        loyalty = get_loyalty_service()
        earning = loyalty.ledger.get_order_earning(order.customer_id, order.id)
        if earning is None:
            return _skipped(result, 'no_points_awarded')

        # Whole order: reverse whatever earlier partial returns left over
        reversal = loyalty.reverse_order_points(
            order.customer_id,
            order.id,
            description=f'Points reversed - order #{order.display_id or order.id} canceled',
            metadata={'reason': 'order_canceled'}
        )
        if reversal is None:
            return _skipped(result, 'already_reversed')

        account = loyalty.ledger.get_account(order.customer_id)
        result['points_reversed'] = reversal.points
        result['new_balance'] = account.total_points
        return jsonify(result)

    except Exception as e:
        db.session.rollback()
        current_app.logger.error(f'Error processing order canceled webhook for {event.id}: {str(e)}')
        result['success'] = False
        result['error'] = str(e)
        return jsonify(result)


@order_lifecycle_bp.route('/returns/received', methods=['POST'])
@require_webhook_signature
def handle_return_received():
    """
    Reverse purchase points for returned merchandise.

    points = floor(original_earned * returned_value / order_total), capped by
    what has not been reversed yet. When the event carries no item prices,
    the value of the matching return is used.
    """
    try:
        event = validate_body(ReturnReceivedEvent, request.get_json(silent=True))
    except InvalidRequestError as e:
        return bad_request(e.message, details=e.details)

    result = {'success': True, 'return_id': event.id, 'order_id': event.order_id}

    try:
        order = get_collaborators().order_client.get_order(event.order_id)
        if order is None:
            return _skipped(result, 'order_not_found')

        if order.is_guest:
            return _skipped(result, 'guest_checkout')

        loyalty = get_loyalty_service()
        earning = loyalty.ledger.get_order_earning(order.customer_id, order.id)
        if earning is None:
            return _skipped(result, 'no_points_awarded')

        # Redelivered event
        for reversal in loyalty.ledger.get_order_reversals(order.customer_id, order.id):
            if (reversal.extra_metadata or {}).get('return_id') == event.id:
                return _skipped(result, 'already_processed')

        returned_value = event.returned_value
        if returned_value <= 0:
            return_request = db.session.get(Return, event.id)
            if return_request is not None and return_request.order_id == order.id:
                returned_value = return_request.total_amount

        points = proportional_reversal_points(earning.points, returned_value, order.total)
        if points <= 0:
            return _skipped(result, 'nothing_to_reverse')

        reversal = loyalty.reverse_order_points(
            order.customer_id,
            order.id,
            description=f'Points reversed - items returned from order #{order.display_id or order.id}',
            points=points,
            metadata={'reason': 'items_returned', 'return_id': event.id, 'returned_value': returned_value}
        )
        if reversal is None:
            return _skipped(result, 'already_reversed')

        account = loyalty.ledger.get_account(order.customer_id)
        result['points_reversed'] = reversal.points
        result['new_balance'] = account.total_points
        return jsonify(result)

    except Exception as e:
        db.session.rollback()
        current_app.logger.error(f'Error processing return received webhook for {event.id}: {str(e)}')
        result['success'] = False
        result['error'] = str(e)
        return jsonify(result)
