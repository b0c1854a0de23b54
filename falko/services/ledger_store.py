"""
Ledger Store for Falko loyalty points.

Durable append-only transaction log plus a cached balance per customer.
Every points mutation in the system goes through this class.

CONCURRENCY:
- Each mutation locks the customer's account row (SELECT ... FOR UPDATE) inside
  the current database transaction, so mutations for one customer are
  serialized across workers while different customers proceed in parallel.
- First use of an account races on the unique customer_id constraint; the
  loser of the race re-reads the winner's row under lock.
- Mutations accept commit=False so callers can fold them into a larger unit
  of work (e.g. refund credit + return status change).
"""
import logging
from typing import Optional, List, Dict, Any

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from ..extensions import db
from ..models.loyalty import (
    LoyaltyAccount,
    LoyaltyTransaction,
    TransactionType,
    TransactionSource,
)
from ..utils.exceptions import InvalidRequestError, PersistenceError

logger = logging.getLogger(__name__)


class LedgerStore:
    """
    Append-only points ledger.

    Usage:
        ledger = LedgerStore()

        txn = ledger.credit('cus_123', 200, order_id='order_1', description='Order #1')
        txn = ledger.debit('cus_123', 500, reward_id='1', description='Redeemed: 50 PLN')  # None if short
        txn = ledger.reverse('cus_123', 'order_1', 'Order canceled')
    """

    # ==================== Mutations ====================

    def credit(
        self,
        customer_id: str,
        points: int,
        order_id: str = None,
        description: str = None,
        metadata: Dict[str, Any] = None,
        source: str = TransactionSource.PURCHASE.value,
        commit: bool = True
    ) -> LoyaltyTransaction:
        """
        Add points to a customer's balance, creating the account on first use.

        Inserts an 'earned' transaction and bumps total_points and
        lifetime_earned in the same unit of work.
        """
        self._require_positive(points)

        try:
            account = self._lock_account(customer_id, create=True)

            transaction = LoyaltyTransaction(
                customer_id=customer_id,
                type=TransactionType.EARNED.value,
                points=points,
                source=_enum_value(source),
                description=description or f'Earned {points} points',
                order_id=order_id,
                extra_metadata=metadata or {},
            )
            db.session.add(transaction)

            account.total_points += points
            account.lifetime_earned += points

            self._finish(commit)
        except SQLAlchemyError as e:
            db.session.rollback()
            logger.error(f"Ledger credit failed for customer {customer_id}: {e}")
            raise PersistenceError('Failed to credit points', original_error=e)

        logger.info(
            f"Ledger credit: {customer_id} +{points} pts "
            f"(order={order_id}, source={transaction.source}, balance={account.total_points})"
        )
        return transaction

    def debit(
        self,
        customer_id: str,
        points: int,
        reward_id: str = None,
        description: str = None,
        metadata: Dict[str, Any] = None,
        commit: bool = True
    ) -> Optional[LoyaltyTransaction]:
        """
        Spend points. Returns None, with no state change, when the account is
        missing or the balance is below `points`.
        """
        self._require_positive(points)

        try:
            account = self._lock_account(customer_id)
            if account is None or account.total_points < points:
                logger.info(
                    f"Ledger debit refused: {customer_id} requested {points} pts, "
                    f"available {account.total_points if account else 0}"
                )
                # Release the row lock
                if commit:
                    db.session.rollback()
                return None

            transaction = LoyaltyTransaction(
                customer_id=customer_id,
                type=TransactionType.SPENT.value,
                points=points,
                source=TransactionSource.REDEMPTION.value,
                description=description or f'Spent {points} points',
                reward_id=str(reward_id) if reward_id is not None else None,
                extra_metadata=metadata or {},
            )
            db.session.add(transaction)

            account.total_points -= points
            account.lifetime_spent += points

            self._finish(commit)
        except SQLAlchemyError as e:
            db.session.rollback()
            logger.error(f"Ledger debit failed for customer {customer_id}: {e}")
            raise PersistenceError('Failed to debit points', original_error=e)

        logger.info(
            f"Ledger debit: {customer_id} -{points} pts "
            f"(reward={reward_id}, balance={account.total_points})"
        )
        return transaction

    def reverse(
        self,
        customer_id: str,
        order_id: str,
        description: str = None,
        points: int = None,
        metadata: Dict[str, Any] = None,
        commit: bool = True
    ) -> Optional[LoyaltyTransaction]:
        """
        Reverse points earned for a purchase.

        Targets the most recent purchase earning for (customer, order) and
        reverses what is not yet offset by earlier reversals, or
        min(points, remaining) when a partial amount is given. Returns None
        when there is nothing left to reverse.

        The balance is clamped at zero. When points were already spent, the
        clamped amount is logged and recorded as `shortfall` in metadata.
        """
        if points is not None and points <= 0:
            return None

        try:
            account = self._lock_account(customer_id)
            if account is None:
                return None

            earning = self._latest_purchase_earning(customer_id, order_id)
            if earning is None:
                logger.info(f"Ledger reverse skipped: no purchase earning for {customer_id} order {order_id}")
                return None

            remaining = earning.points - self._reversed_points(earning.id)
            if remaining <= 0:
                logger.info(f"Ledger reverse skipped: order {order_id} already fully reversed")
                return None

            amount = remaining if points is None else min(points, remaining)
            deducted = min(amount, account.total_points)
            shortfall = amount - deducted

            txn_metadata = dict(metadata or {})
            txn_metadata['reversed_transaction_id'] = earning.id
            if shortfall:
                txn_metadata['shortfall'] = shortfall

            transaction = LoyaltyTransaction(
                customer_id=customer_id,
                type=TransactionType.REFUNDED.value,
                points=amount,
                source=TransactionSource.REVERSAL.value,
                description=description or f'Reversed {amount} points for order {order_id}',
                order_id=order_id,
                related_transaction_id=earning.id,
                extra_metadata=txn_metadata,
            )
            db.session.add(transaction)

            account.total_points -= deducted

            self._finish(commit)
        except SQLAlchemyError as e:
            db.session.rollback()
            logger.error(f"Ledger reverse failed for customer {customer_id} order {order_id}: {e}")
            raise PersistenceError('Failed to reverse points', original_error=e)

        if shortfall:
            logger.warning(
                f"Ledger reverse clamped: {customer_id} order {order_id} reversed {amount} pts "
                f"but only {deducted} were available (shortfall {shortfall})"
            )
        else:
            logger.info(f"Ledger reverse: {customer_id} -{amount} pts for order {order_id}")
        return transaction

    # ==================== Queries ====================

    def get_account(self, customer_id: str) -> Optional[LoyaltyAccount]:
        return LoyaltyAccount.query.filter_by(customer_id=customer_id).first()

    def get_history(self, customer_id: str, limit: int = 50) -> List[LoyaltyTransaction]:
        """Newest first."""
        return (
            LoyaltyTransaction.query
            .filter_by(customer_id=customer_id)
            .order_by(LoyaltyTransaction.created_at.desc(), LoyaltyTransaction.id.desc())
            .limit(limit)
            .all()
        )

    def count_history(self, customer_id: str) -> int:
        return LoyaltyTransaction.query.filter_by(customer_id=customer_id).count()

    def count_earned(self, customer_id: str) -> int:
        """Number of 'earned' transactions of any source."""
        return LoyaltyTransaction.query.filter_by(
            customer_id=customer_id,
            type=TransactionType.EARNED.value
        ).count()

    def get_order_earning(self, customer_id: str, order_id: str) -> Optional[LoyaltyTransaction]:
        """Most recent purchase earning for an order, if any."""
        return self._latest_purchase_earning(customer_id, order_id)

    def get_order_reversals(self, customer_id: str, order_id: str) -> List[LoyaltyTransaction]:
        return (
            LoyaltyTransaction.query
            .filter_by(customer_id=customer_id, order_id=order_id, type=TransactionType.REFUNDED.value)
            .order_by(LoyaltyTransaction.created_at.asc(), LoyaltyTransaction.id.asc())
            .all()
        )

    def reconcile(self, customer_id: str, fix: bool = False) -> Dict[str, Any]:
        """
        Recompute the balance from the transaction log and report drift.

        Replays transactions oldest first, flooring at zero on reversals the
        same way `reverse` does. With fix=True the cached account is rewritten.
        """
        transactions = (
            LoyaltyTransaction.query
            .filter_by(customer_id=customer_id)
            .order_by(LoyaltyTransaction.created_at.asc(), LoyaltyTransaction.id.asc())
            .all()
        )

        balance = 0
        lifetime_earned = 0
        lifetime_spent = 0
        for txn in transactions:
            if txn.type == TransactionType.EARNED.value:
                balance += txn.points
                lifetime_earned += txn.points
            elif txn.type == TransactionType.SPENT.value:
                balance -= txn.points
                lifetime_spent += txn.points
            else:
                balance = max(0, balance - txn.points)

        account = self.get_account(customer_id)
        cached = account.total_points if account else 0
        drift = cached - balance

        result = {
            'customer_id': customer_id,
            'transaction_count': len(transactions),
            'cached_balance': cached,
            'expected_balance': balance,
            'expected_lifetime_earned': lifetime_earned,
            'expected_lifetime_spent': lifetime_spent,
            'drift': drift,
            'in_sync': drift == 0 and (
                account is None
                or (account.lifetime_earned == lifetime_earned and account.lifetime_spent == lifetime_spent)
            ),
            'fixed': False,
        }

        if fix and account is not None and not result['in_sync']:
            try:
                account = self._lock_account(customer_id)
                account.total_points = balance
                account.lifetime_earned = lifetime_earned
                account.lifetime_spent = lifetime_spent
                db.session.commit()
            except SQLAlchemyError as e:
                db.session.rollback()
                raise PersistenceError('Failed to reconcile account', original_error=e)
            logger.warning(f"Ledger reconciled {customer_id}: drift {drift} corrected")
            result['fixed'] = True

        return result

    def customers_with_accounts(self) -> List[str]:
        return [row[0] for row in db.session.query(LoyaltyAccount.customer_id).order_by(LoyaltyAccount.id).all()]

    # ==================== Helpers ====================

    def _lock_account(self, customer_id: str, create: bool = False) -> Optional[LoyaltyAccount]:
        account = (
            LoyaltyAccount.query
            .filter_by(customer_id=customer_id)
            .with_for_update()
            .first()
        )
        if account is not None or not create:
            return account

        try:
            with db.session.begin_nested():
                account = LoyaltyAccount(
                    customer_id=customer_id,
                    total_points=0,
                    lifetime_earned=0,
                    lifetime_spent=0,
                )
                db.session.add(account)
        except IntegrityError:
            # Another worker created the account first
            logger.debug(f"Account for {customer_id} created concurrently, re-reading")
            account = (
                LoyaltyAccount.query
                .filter_by(customer_id=customer_id)
                .with_for_update()
                .one()
            )
        return account

    def _latest_purchase_earning(self, customer_id: str, order_id: str) -> Optional[LoyaltyTransaction]:
        return (
            LoyaltyTransaction.query
            .filter_by(
                customer_id=customer_id,
                order_id=order_id,
                type=TransactionType.EARNED.value,
                source=TransactionSource.PURCHASE.value,
            )
            .order_by(LoyaltyTransaction.created_at.desc(), LoyaltyTransaction.id.desc())
            .first()
        )

    def _reversed_points(self, earning_id: int) -> int:
        total = (
            db.session.query(func.coalesce(func.sum(LoyaltyTransaction.points), 0))
            .filter(
                LoyaltyTransaction.related_transaction_id == earning_id,
                LoyaltyTransaction.type == TransactionType.REFUNDED.value,
            )
            .scalar()
        )
        return int(total or 0)

    @staticmethod
    def _require_positive(points: int) -> None:
        if not isinstance(points, int) or isinstance(points, bool) or points <= 0:
            raise InvalidRequestError('Points must be a positive integer', 'points')

    @staticmethod
    def _finish(commit: bool) -> None:
        if commit:
            db.session.commit()
        else:
            db.session.flush()


def _enum_value(value):
    return value.value if hasattr(value, 'value') else value
