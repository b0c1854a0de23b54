"""
Returns API endpoints for store customers.

Handles:
- Creating a return (with survey) for an eligible order
- Listing the customer's returns
- Return label (QR code) and packing instructions
- Order eligibility check
"""
from flask import Blueprint, request, jsonify, g

from ..middleware.customer_auth import require_customer
from ..schemas import CreateReturnRequest, validate_body
from ..services import get_returns_service

returns_bp = Blueprint('returns', __name__)


@returns_bp.route('/returns', methods=['POST'])
@require_customer
def create_return():
    """
    Create a return request.

    Request body:
        {
            order_id, reason_code, refund_method ('card' | 'loyalty_points'),
            items: [{variant_id, quantity, unit_price, title}],
            satisfaction_rating?, size_issue?, quality_issue?, description?
        }

    Returns:
        201 {success, return, message}
        400 INVALID_REQUEST / NOT_ELIGIBLE
    """
    body = validate_body(CreateReturnRequest, request.get_json(silent=True))
    data = body.model_dump()
    data['customer_id'] = g.customer_id

    return_request = get_returns_service().create_return(data)

    return jsonify({
        'success': True,
        'return': return_request.to_dict(),
        'message': 'Return request created successfully',
    }), 201


@returns_bp.route('/returns', methods=['GET'])
@require_customer
def list_customer_returns():
    """The authenticated customer's returns, newest first."""
    returns = get_returns_service().get_customer_returns(g.customer_id)
    return jsonify({
        'success': True,
        'returns': [r.to_dict() for r in returns],
    })


@returns_bp.route('/returns/<return_id>/qr-code', methods=['GET'])
@require_customer
def get_return_label(return_id):
    """
    Label QR code, tracking number and packing instructions.

    403 if the return belongs to another customer, 404 if no label yet.
    """
    info = get_returns_service().get_label_info(return_id, g.customer_id)
    return jsonify({'success': True, **info})


@returns_bp.route('/orders/<order_id>/returns/eligible', methods=['GET'])
@require_customer
def check_return_eligibility(order_id):
    """Whether an order can still be returned, with days remaining."""
    eligibility = get_returns_service().check_eligibility(order_id, g.customer_id)
    return jsonify({'success': True, **eligibility})
