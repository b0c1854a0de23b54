"""
Loyalty Engine for Falko.

Points earning, tiers, redemption and reversal on top of the LedgerStore.

EARNING FORMULA (amounts in minor units):
1. order total below the minimum order value -> 0 points
2. base = floor(total / 100 * points_per_unit)
3. customer's first earning -> x first_order_bonus
4. order category with a multiplier -> x multiplier
5. floor, then cap at max_points_per_order

TIERS (by lifetime points earned):
- Bronze: 0 - 999
- Silver: 1000 - 1999
- Gold:   2000+
"""
import math
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional, Dict, Any, List

from flask import current_app

from ..extensions import db
from ..models.loyalty import LoyaltyTransaction, Reward, TransactionSource
from ..utils.exceptions import NotFoundError
from .ledger_store import LedgerStore


# Tier thresholds on lifetime_earned, highest first
TIER_THRESHOLDS = [
    ('Gold', 2000),
    ('Silver', 1000),
    ('Bronze', 0),
]


@dataclass
class LoyaltySettings:
    points_per_unit: float = 1.0
    first_order_bonus: float = 2.0
    minimum_order_value: int = 5000
    max_points_per_order: int = 1000
    category_multipliers: Dict[str, float] = field(
        default_factory=lambda: {'new-arrivals': 1.5, 'sale': 0.5}
    )

    @classmethod
    def from_config(cls, config) -> 'LoyaltySettings':
        return cls(
            points_per_unit=config.get('LOYALTY_POINTS_PER_UNIT', 1.0),
            first_order_bonus=config.get('LOYALTY_FIRST_ORDER_BONUS', 2.0),
            minimum_order_value=config.get('LOYALTY_MINIMUM_ORDER_VALUE', 5000),
            max_points_per_order=config.get('LOYALTY_MAX_POINTS_PER_ORDER', 1000),
            category_multipliers=dict(config.get('LOYALTY_CATEGORY_MULTIPLIERS') or {}),
        )


@dataclass
class RedemptionResult:
    """Outcome of a reward redemption. Insufficient balance is a typed failure, not an exception."""
    success: bool
    reward: Optional[Reward] = None
    transaction: Optional[LoyaltyTransaction] = None
    new_balance: Optional[int] = None
    required: int = 0
    available: int = 0

    @property
    def shortfall(self) -> int:
        return max(0, self.required - self.available)


def calculate_tier(lifetime_earned: int) -> str:
    for name, threshold in TIER_THRESHOLDS:
        if (lifetime_earned or 0) >= threshold:
            return name
    return 'Bronze'


def points_to_next_tier(lifetime_earned: int) -> int:
    """Distance to the next tier threshold; 0 once at the top tier."""
    lifetime_earned = lifetime_earned or 0
    next_threshold = None
    for _name, threshold in TIER_THRESHOLDS:
        if lifetime_earned < threshold:
            next_threshold = threshold
    if next_threshold is None:
        return 0
    return next_threshold - lifetime_earned


class LoyaltyService:
    """
    Central service for loyalty points operations.

    Usage:
        service = LoyaltyService()

        points = service.calculate_points_for_order(order)
        service.award_points(order.customer_id, points, order.id, f'Order #{order.display_id}')
        result = service.redeem_reward(customer_id, reward_id)
    """

    def __init__(self, ledger: LedgerStore = None, settings: LoyaltySettings = None):
        self.ledger = ledger or LedgerStore()
        self.settings = settings or LoyaltySettings.from_config(current_app.config)

    # ==================== Earning ====================

    def calculate_points_for_order(self, order) -> int:
        """
        Points an order is worth. Reads the ledger once, to see whether this
        would be the customer's first earning.
        """
        settings = self.settings
        total = order.total or 0

        if total < settings.minimum_order_value:
            return 0

        points = math.floor(total / 100 * settings.points_per_unit)

        if order.customer_id and self.is_first_order(order.customer_id):
            points *= settings.first_order_bonus

        category = (order.metadata or {}).get('category')
        if category and category in settings.category_multipliers:
            points *= settings.category_multipliers[category]

        return min(math.floor(points), settings.max_points_per_order)

    def is_first_order(self, customer_id: str) -> bool:
        return self.ledger.count_earned(customer_id) == 0

    def award_points(
        self,
        customer_id: str,
        points: int,
        order_id: str = None,
        description: str = None,
        metadata: Dict[str, Any] = None,
        source: str = TransactionSource.PURCHASE.value,
        commit: bool = True
    ) -> LoyaltyTransaction:
        """Credit points. Not idempotent: callers guard against double awards."""
        transaction = self.ledger.credit(
            customer_id,
            points,
            order_id=order_id,
            description=description,
            metadata=metadata,
            source=source,
            commit=commit
        )
        current_app.logger.info(f"Awarded {points} points to {customer_id} ({transaction.source})")
        return transaction

    def reverse_order_points(
        self,
        customer_id: str,
        order_id: str,
        description: str = None,
        points: int = None,
        metadata: Dict[str, Any] = None
    ) -> Optional[LoyaltyTransaction]:
        """Reverse purchase points for an order. No-op when nothing is left to reverse."""
        return self.ledger.reverse(
            customer_id,
            order_id,
            description=description or f'Points reversed for order {order_id}',
            points=points,
            metadata=metadata
        )

    # ==================== Redemption ====================

    def get_reward(self, reward_id) -> Reward:
        """Active, unexpired reward or NotFoundError."""
        try:
            reward = db.session.get(Reward, int(reward_id))
        except (TypeError, ValueError):
            reward = None
        if reward is None or not reward.is_available():
            raise NotFoundError('Reward', reward_id)
        return reward

    def redeem_reward(self, customer_id: str, reward_id) -> RedemptionResult:
        reward = self.get_reward(reward_id)

        transaction = self.ledger.debit(
            customer_id,
            reward.points_cost,
            reward_id=str(reward.id),
            description=f'Redeemed: {reward.title}',
            metadata={'reward_title': reward.title, 'category': reward.category}
        )

        if transaction is None:
            account = self.ledger.get_account(customer_id)
            available = account.total_points if account else 0
            current_app.logger.info(
                f"Redemption refused for {customer_id}: reward {reward.id} needs "
                f"{reward.points_cost}, has {available}"
            )
            return RedemptionResult(
                success=False,
                reward=reward,
                required=reward.points_cost,
                available=available
            )

        account = self.ledger.get_account(customer_id)
        current_app.logger.info(f"Customer {customer_id} redeemed reward {reward.id} ({reward.title})")
        return RedemptionResult(
            success=True,
            reward=reward,
            transaction=transaction,
            new_balance=account.total_points,
            required=reward.points_cost,
            available=account.total_points + reward.points_cost
        )

    def list_rewards(self) -> List[Reward]:
        """Active, unexpired rewards, cheapest first."""
        now = datetime.utcnow()
        return (
            Reward.query
            .filter(Reward.is_active.is_(True))
            .filter(db.or_(Reward.valid_until.is_(None), Reward.valid_until > now))
            .order_by(Reward.points_cost.asc(), Reward.id.asc())
            .all()
        )

    # ==================== Summary ====================

    def get_points_summary(self, customer_id: str) -> Dict[str, Any]:
        account = self.ledger.get_account(customer_id)
        if account is None:
            return {
                'customer_id': customer_id,
                'points': 0,
                'lifetime_earned': 0,
                'lifetime_spent': 0,
                'tier': calculate_tier(0),
                'next_tier_points': points_to_next_tier(0),
            }

        return {
            'customer_id': customer_id,
            'points': account.total_points,
            'lifetime_earned': account.lifetime_earned,
            'lifetime_spent': account.lifetime_spent,
            'tier': calculate_tier(account.lifetime_earned),
            'next_tier_points': points_to_next_tier(account.lifetime_earned),
        }

    def get_history(self, customer_id: str, limit: int = 50) -> Dict[str, Any]:
        transactions = self.ledger.get_history(customer_id, limit=limit)
        return {
            'customer_id': customer_id,
            'transactions': [txn.to_dict() for txn in transactions],
            'total_count': self.ledger.count_history(customer_id),
        }
