"""
Loyalty points models.

- LoyaltyAccount: cached balance per customer, mutated only by LedgerStore
- LoyaltyTransaction: immutable ledger entry (earned / spent / refunded)
- Reward: catalog entry redeemable with points
"""
from datetime import datetime
from enum import Enum
from typing import Dict, Any
from ..extensions import db


class TransactionType(str, Enum):
    """Direction of a ledger entry. Points are always stored positive."""
    EARNED = 'earned'       # credit
    SPENT = 'spent'         # debit for a reward
    REFUNDED = 'refunded'   # reversal of an earning


class TransactionSource(str, Enum):
    """What produced a ledger entry."""
    PURCHASE = 'purchase'             # points for a paid order
    RETURN_REFUND = 'return_refund'   # return refunded as points
    MANUAL = 'manual'                 # admin / CLI adjustment
    REDEMPTION = 'redemption'         # reward redemption
    REVERSAL = 'reversal'             # cancelled order or returned items


class LoyaltyAccount(db.Model):
    """
    Current points balance for a customer.

    Cached projection of the ledger: total_points equals the signed sum of the
    customer's transactions, floored at zero on the reversal path.
    """
    __tablename__ = 'loyalty_accounts'

    id = db.Column(db.Integer, primary_key=True)
    customer_id = db.Column(db.String(100), nullable=False, unique=True, index=True)

    total_points = db.Column(db.Integer, nullable=False, default=0)
    lifetime_earned = db.Column(db.Integer, nullable=False, default=0)
    lifetime_spent = db.Column(db.Integer, nullable=False, default=0)

    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        db.CheckConstraint('total_points >= 0', name='ck_loyalty_accounts_total_points_non_negative'),
    )

    def __repr__(self):
        return f'<LoyaltyAccount {self.customer_id}: {self.total_points} pts>'

    def to_dict(self) -> Dict[str, Any]:
        return {
            'customer_id': self.customer_id,
            'total_points': self.total_points,
            'lifetime_earned': self.lifetime_earned,
            'lifetime_spent': self.lifetime_spent,
            'created_at': self.created_at.isoformat() if self.created_at else None,
            'updated_at': self.updated_at.isoformat() if self.updated_at else None,
        }


class LoyaltyTransaction(db.Model):
    """
    Points ledger entry - the audit trail of truth.

    Immutable once created: reversals add a new 'refunded' entry pointing at
    the earning they offset via related_transaction_id.
    """
    __tablename__ = 'loyalty_transactions'

    id = db.Column(db.Integer, primary_key=True)
    customer_id = db.Column(db.String(100), nullable=False, index=True)

    type = db.Column(db.String(20), nullable=False, index=True)
    points = db.Column(db.Integer, nullable=False)
    source = db.Column(db.String(30), nullable=False, default=TransactionSource.PURCHASE.value)
    description = db.Column(db.Text, nullable=False)

    # Weak references - no ownership, no cascade
    order_id = db.Column(db.String(100), index=True)
    reward_id = db.Column(db.String(100))
    related_transaction_id = db.Column(db.Integer, db.ForeignKey('loyalty_transactions.id'))

    # 'metadata' is reserved on declarative models
    extra_metadata = db.Column('metadata', db.JSON, default=dict)

    created_at = db.Column(db.DateTime, default=datetime.utcnow, index=True)

    __table_args__ = (
        db.CheckConstraint('points > 0', name='ck_loyalty_transactions_points_positive'),
        db.CheckConstraint("type IN ('earned', 'spent', 'refunded')", name='ck_loyalty_transactions_type'),
        db.Index('ix_loyalty_transactions_customer_order', 'customer_id', 'order_id'),
    )

    def __repr__(self):
        return f'<LoyaltyTransaction {self.id}: {self.type} {self.points} pts for {self.customer_id}>'

    @property
    def signed_points(self) -> int:
        """Points with direction applied: earned is positive, spent/refunded negative."""
        if self.type == TransactionType.EARNED.value:
            return self.points
        return -self.points

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'type': self.type,
            'points': self.points,
            'source': self.source,
            'description': self.description,
            'order_id': self.order_id,
            'reward_id': self.reward_id,
            'metadata': self.extra_metadata or {},
            'created_at': self.created_at.isoformat() if self.created_at else None,
        }


class Reward(db.Model):
    """Catalog entry redeemable by spending points."""
    __tablename__ = 'loyalty_rewards'

    id = db.Column(db.Integer, primary_key=True)
    title = db.Column(db.String(200), nullable=False)
    description = db.Column(db.Text)
    points_cost = db.Column(db.Integer, nullable=False)
    category = db.Column(db.String(50), nullable=False)  # discount, shipping, product, access

    # One of these describes what the reward grants
    discount_amount = db.Column(db.Numeric(10, 2))
    discount_percentage = db.Column(db.Integer)
    product_id = db.Column(db.String(100))

    valid_until = db.Column(db.DateTime)
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    def __repr__(self):
        return f'<Reward {self.id}: {self.title} ({self.points_cost} pts)>'

    def is_available(self, now: datetime = None) -> bool:
        now = now or datetime.utcnow()
        if not self.is_active:
            return False
        return self.valid_until is None or self.valid_until > now

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'title': self.title,
            'description': self.description,
            'points_cost': self.points_cost,
            'category': self.category,
            'discount_amount': float(self.discount_amount) if self.discount_amount is not None else None,
            'discount_percentage': self.discount_percentage,
            'product_id': self.product_id,
            'valid_until': self.valid_until.isoformat() if self.valid_until else None,
            'is_active': self.is_active,
        }


# Default rewards catalog, seeded by `flask loyalty seed-rewards`
DEFAULT_REWARDS = [
    {
        'title': '50 PLN Zniżka',
        'description': 'Zniżka 50 PLN na następne zakupy',
        'points_cost': 500,
        'category': 'discount',
        'discount_amount': 50,
    },
    {
        'title': 'Darmowa dostawa',
        'description': 'Bezpłatna dostawa na następne zamówienie',
        'points_cost': 300,
        'category': 'shipping',
    },
    {
        'title': 'Exclusive T-shirt',
        'description': 'Limitowany t-shirt dostępny tylko za punkty',
        'points_cost': 1500,
        'category': 'product',
        'product_id': 'exclusive-tshirt-001',
    },
    {
        'title': '15% Zniżka Premium',
        'description': '15% zniżki na produkty premium',
        'points_cost': 1000,
        'category': 'discount',
        'discount_percentage': 15,
    },
    {
        'title': 'Early Access',
        'description': 'Wcześniejszy dostęp do nowych kolekcji',
        'points_cost': 3000,
        'category': 'access',
    },
    {
        'title': '20% Zniżka',
        'description': '20% zniżki na cały asortyment',
        'points_cost': 2000,
        'category': 'discount',
        'discount_percentage': 20,
    },
]


def seed_rewards() -> int:
    """Insert default rewards missing from the catalog (matched by title). Returns count created."""
    created = 0
    for reward_data in DEFAULT_REWARDS:
        existing = Reward.query.filter_by(title=reward_data['title']).first()
        if not existing:
            db.session.add(Reward(**reward_data))
            created += 1
    db.session.commit()
    return created
