"""
Admin API endpoints for managing returns.
"""
from flask import Blueprint, request, jsonify

from ..middleware.customer_auth import require_admin
from ..schemas import StatusUpdateRequest, validate_body
from ..services import get_returns_service

admin_returns_bp = Blueprint('admin_returns', __name__)

MAX_PER_PAGE = 100


@admin_returns_bp.route('', methods=['GET'])
@require_admin
def list_returns():
    """
    List returns with optional filters.

    Query params:
        status, order_id, customer_id: exact-match filters
        page: Page number (default 1)
        per_page: Items per page (default 50, max 100)
    """
    page = max(1, request.args.get('page', 1, type=int))
    per_page = max(1, min(request.args.get('per_page', 50, type=int), MAX_PER_PAGE))

    result = get_returns_service().list_returns(
        status=request.args.get('status'),
        order_id=request.args.get('order_id'),
        customer_id=request.args.get('customer_id'),
        page=page,
        per_page=per_page
    )

    return jsonify({
        'success': True,
        'returns': [r.to_dict() for r in result['returns']],
        'total': result['total'],
        'page': result['page'],
        'per_page': result['per_page'],
        'pages': result['pages'],
    })


@admin_returns_bp.route('/<return_id>', methods=['GET'])
@require_admin
def get_return(return_id):
    return_request = get_returns_service().get_return(return_id)
    return jsonify({'success': True, 'return': return_request.to_dict()})


@admin_returns_bp.route('/<return_id>/status', methods=['PUT', 'POST'])
@require_admin
def update_return_status(return_id):
    """
    Update a return's status.

    Moving to 'received' also processes the refund. A refund failure does not
    fail the request; it is reported under 'refund'.
    """
    body = validate_body(StatusUpdateRequest, request.get_json(silent=True))
    result = get_returns_service().update_return_status(return_id, body.status)

    return jsonify({
        'success': True,
        'return': result['return'].to_dict(),
        'message': f"Return status updated to {result['return'].status}",
        'refund': result['refund'],
    })


@admin_returns_bp.route('/<return_id>/label', methods=['POST'])
@require_admin
def retry_label(return_id):
    """Request a new shipping label for a return."""
    return_request = get_returns_service().generate_shipping_label(return_id)
    return jsonify({
        'success': return_request.has_label,
        'return': return_request.to_dict(),
        'label_error': return_request.label_error,
    })
