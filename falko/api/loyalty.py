"""
Loyalty API endpoints for store customers.

Handles:
- Points balance and tier
- Transaction history
- Reward catalog and redemption
"""
from flask import Blueprint, request, jsonify, g

from ..middleware.customer_auth import require_customer
from ..schemas import RedeemRequest, validate_body
from ..services import get_loyalty_service
from ..utils.exceptions import InsufficientPointsError

loyalty_bp = Blueprint('loyalty', __name__)

DEFAULT_HISTORY_LIMIT = 50
MAX_HISTORY_LIMIT = 200


@loyalty_bp.route('/points', methods=['GET'])
@require_customer
def get_points():
    """
    Get the customer's points balance and tier.

    Returns:
        {customer_id, points, lifetime_earned, lifetime_spent, tier, next_tier_points}
    """
    return jsonify(get_loyalty_service().get_points_summary(g.customer_id))


@loyalty_bp.route('/history', methods=['GET'])
@require_customer
def get_history():
    """
    Get the customer's points history, newest first.

    Query params:
        limit: Max transactions to return (default 50, max 200)
    """
    limit = request.args.get('limit', DEFAULT_HISTORY_LIMIT, type=int)
    limit = max(1, min(limit, MAX_HISTORY_LIMIT))
    return jsonify(get_loyalty_service().get_history(g.customer_id, limit=limit))


@loyalty_bp.route('/redeem', methods=['POST'])
@require_customer
def redeem_reward():
    """
    Redeem a reward for points.

    Request body:
        {reward_id}

    Returns:
        200 {success, transaction, new_points_balance}
        400 INSUFFICIENT_POINTS with required / available / shortfall
        404 REWARD_NOT_FOUND
    """
    body = validate_body(RedeemRequest, request.get_json(silent=True))
    result = get_loyalty_service().redeem_reward(g.customer_id, body.reward_id)

    if not result.success:
        raise InsufficientPointsError(result.required, result.available)

    return jsonify({
        'success': True,
        'reward': result.reward.to_dict(),
        'transaction': result.transaction.to_dict(),
        'new_points_balance': result.new_balance,
    })


@loyalty_bp.route('/rewards', methods=['GET'])
def list_rewards():
    """Active, unexpired rewards, cheapest first."""
    rewards = get_loyalty_service().list_rewards()
    return jsonify({'rewards': [reward.to_dict() for reward in rewards]})
