"""
Return Case Manager for Falko.

Owns the returns lifecycle: eligibility, creation with survey, shipping-label
generation, status transitions and refund dispatch. Only this service
mutates Return rows.

REFUND MATH (minor units):
- loyalty_points: refund_amount = floor(total_amount * 1.10),
  credited as floor(refund_amount / 100) points when the return is received
- card: refund_amount = total_amount, recorded with a refund reference;
  the payment itself is executed by the payment provider
"""
from datetime import datetime, timedelta
from typing import Optional, Dict, Any, List

from flask import current_app
from sqlalchemy.exc import SQLAlchemyError

from ..extensions import db
from ..models.loyalty import TransactionSource
from ..models.returns import Return, ReturnSurvey, ReturnStatus, RefundMethod
from ..utils.exceptions import (
    AuthorizationError,
    CollaboratorError,
    InvalidRequestError,
    NotEligibleError,
    NotFoundError,
    PersistenceError,
)
from .ledger_store import LedgerStore


# Packing steps shown with the return label
RETURN_INSTRUCTIONS = [
    'Zapakuj zwracane produkty w oryginalne opakowanie lub bezpieczny karton.',
    'Dołącz do paczki kartkę z numerem zwrotu.',
    'Pokaż kod QR w punkcie nadania lub paczkomacie InPost.',
    'Zachowaj potwierdzenie nadania do czasu rozpatrzenia zwrotu.',
]


class ReturnsService:
    """
    Service for merchandise returns.

    Usage:
        service = ReturnsService(order_client, label_client, notifications)

        ret = service.create_return({...})
        service.update_return_status(ret.id, 'received')  # credits the refund
    """

    def __init__(
        self,
        order_client,
        label_client,
        notifications,
        ledger: LedgerStore = None,
        window_days: int = None,
        points_bonus_percent: int = None
    ):
        self.order_client = order_client
        self.label_client = label_client
        self.notifications = notifications
        self.ledger = ledger or LedgerStore()
        config = current_app.config
        self.window_days = window_days if window_days is not None else config.get('RETURN_WINDOW_DAYS', 14)
        self.points_bonus_percent = (
            points_bonus_percent if points_bonus_percent is not None
            else config.get('RETURN_POINTS_BONUS_PERCENT', 10)
        )

    # ==================== Eligibility ====================

    def _days_since(self, created_at: datetime, now: datetime = None) -> int:
        now = now or datetime.utcnow()
        return int((now - created_at).total_seconds() // 86400)

    def _order_is_returnable(self, order, now: datetime = None) -> bool:
        return order.status == 'completed' and self._days_since(order.created_at, now) <= self.window_days

    def is_order_eligible_for_return(self, order_id: str) -> bool:
        """Completed and at most `window_days` whole days old. Lookup failures count as ineligible."""
        try:
            order = self.order_client.get_order(order_id)
        except CollaboratorError as e:
            current_app.logger.warning(f"Eligibility lookup failed for order {order_id}: {e}")
            return False
        if order is None:
            return False
        return self._order_is_returnable(order)

    def _open_return_for_order(self, order_id: str) -> Optional[Return]:
        return (
            Return.query
            .filter(Return.order_id == order_id)
            .filter(Return.status != ReturnStatus.REJECTED.value)
            .first()
        )

    def check_eligibility(self, order_id: str, customer_id: str) -> Dict[str, Any]:
        """Eligibility details for the store UI."""
        order = self.order_client.get_order(order_id)
        if order is None:
            raise NotFoundError('Order', order_id)
        if order.customer_id != customer_id:
            raise AuthorizationError('Order does not belong to this customer')

        days_passed = self._days_since(order.created_at)
        has_existing_return = self._open_return_for_order(order_id) is not None
        within_window = order.status == 'completed' and days_passed <= self.window_days

        return {
            'order_id': order.id,
            'eligible': within_window and not has_existing_return,
            'order_status': order.status,
            'order_date': order.created_at.isoformat(),
            'days_passed': days_passed,
            'days_remaining': max(0, self.window_days - days_passed),
            'has_existing_return': has_existing_return,
            'items': order.items,
        }

    # ==================== Creation ====================

    def calculate_refund_amount(self, total_amount: int, refund_method: str) -> int:
        if refund_method == RefundMethod.LOYALTY_POINTS.value:
            return total_amount * (100 + self.points_bonus_percent) // 100
        return total_amount

    def create_return(self, data: Dict[str, Any]) -> Return:
        """
        Create a return at status qr_generated with its survey, then request a
        label and send the confirmation email. Label and email failures do
        not undo the return.

        `data` is a validated CreateReturnRequest dump plus `customer_id`.
        """
        order_id = data['order_id']
        customer_id = data['customer_id']
        refund_method = data.get('refund_method')

        if refund_method not in RefundMethod.values():
            raise InvalidRequestError('Valid refund method is required (card or loyalty_points)', 'refund_method')

        try:
            order = self.order_client.get_order(order_id)
        except CollaboratorError as e:
            current_app.logger.warning(f"Order lookup failed while creating return for {order_id}: {e}")
            order = None

        if order is None or not self._order_is_returnable(order):
            raise NotEligibleError(
                f'Order is not eligible for return (must be completed and within {self.window_days} days)'
            )
        if order.customer_id != customer_id:
            raise AuthorizationError('Order does not belong to this customer')
        if self._open_return_for_order(order_id) is not None:
            raise NotEligibleError('A return for this order already exists')

        items = self._match_order_items(order, data['items'])
        total_amount = sum(item['unit_price'] * item['quantity'] for item in items)
        refund_amount = self.calculate_refund_amount(total_amount, refund_method)

        now = datetime.utcnow()
        return_request = Return(
            order_id=order_id,
            customer_id=customer_id,
            status=ReturnStatus.QR_GENERATED.value,
            reason_code=data['reason_code'],
            refund_method=refund_method,
            items=items,
            total_amount=total_amount,
            refund_amount=refund_amount,
            created_at=now,
            expires_at=now + timedelta(days=self.window_days),
        )
        return_request.survey = ReturnSurvey(
            reason_code=data['reason_code'],
            satisfaction_rating=data.get('satisfaction_rating'),
            size_issue=data.get('size_issue'),
            quality_issue=data.get('quality_issue'),
            description=data.get('description'),
        )

        try:
            db.session.add(return_request)
            db.session.commit()
        except SQLAlchemyError as e:
            db.session.rollback()
            current_app.logger.error(f"Failed to create return for order {order_id}: {e}")
            raise PersistenceError('Failed to create return', original_error=e)

        current_app.logger.info(
            f"Return {return_request.id} created for order {order_id} "
            f"({refund_method}, refund {refund_amount})"
        )

        self._attach_label(return_request, order)
        self.notifications.send_return_confirmation(
            return_request,
            email=order.email,
            order_number=order.display_id
        )
        return return_request

    def _match_order_items(self, order, requested: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        """
        Check returned lines against the order: every variant must have been
        ordered at the same unit price, and no more than the ordered quantity
        may come back across all lines.
        """
        ordered = {}
        for item in order.items:
            key = str(item.get('variant_id'))
            line = ordered.setdefault(key, {'quantity': 0, 'unit_price': item.get('unit_price')})
            line['quantity'] += int(item.get('quantity') or 0)

        items = []
        returned_quantities = {}
        for index, item in enumerate(requested):
            variant_id = str(item['variant_id'])
            line = ordered.get(variant_id)
            if line is None:
                raise InvalidRequestError(
                    f'Variant {variant_id} is not part of order {order.id}',
                    f'items.{index}.variant_id'
                )

            quantity = int(item['quantity'])
            unit_price = int(item['unit_price'])
            if unit_price != line['unit_price']:
                raise InvalidRequestError(
                    f'Unit price for variant {variant_id} does not match the order',
                    f'items.{index}.unit_price'
                )

            returned_quantities[variant_id] = returned_quantities.get(variant_id, 0) + quantity
            if returned_quantities[variant_id] > line['quantity']:
                raise InvalidRequestError(
                    f'Cannot return more than {line["quantity"]} of variant {variant_id}',
                    f'items.{index}.quantity'
                )

            items.append({
                'variant_id': variant_id,
                'title': item['title'],
                'quantity': quantity,
                'unit_price': unit_price,
            })
        return items

    # ==================== Shipping labels ====================

    def _save_label_result(self, return_request: Return) -> bool:
        try:
            db.session.commit()
        except SQLAlchemyError as e:
            db.session.rollback()
            current_app.logger.error(f"Failed to save label result for return {return_request.id}: {e}")
            return False
        return True

    def _attach_label(self, return_request: Return, order=None) -> bool:
        try:
            label = self.label_client.create_return_label(return_request, order)
        except Exception as e:
            current_app.logger.warning(f"Label generation failed for return {return_request.id}: {e}")
            return_request.label_error = str(e)[:500]
            self._save_label_result(return_request)
            return False

        return_request.furgonetka_qr_code = label['qr_code_url']
        return_request.furgonetka_tracking_number = label.get('tracking_number')
        return_request.label_error = None
        if not self._save_label_result(return_request):
            return False
        current_app.logger.info(
            f"Label generated for return {return_request.id}: {return_request.furgonetka_tracking_number}"
        )
        return True

    def generate_shipping_label(self, return_id: str) -> Return:
        """(Re)request a shipping label. Failures are recorded in label_error."""
        return_request = self.get_return(return_id)
        try:
            order = self.order_client.get_order(return_request.order_id)
        except CollaboratorError:
            order = None
        self._attach_label(return_request, order)
        return return_request

    def returns_missing_labels(self) -> List[Return]:
        """Open returns still waiting for a label."""
        return (
            Return.query
            .filter(Return.furgonetka_qr_code.is_(None))
            .filter(Return.status.in_([
                ReturnStatus.PENDING_SURVEY.value,
                ReturnStatus.SURVEY_COMPLETED.value,
                ReturnStatus.QR_GENERATED.value,
            ]))
            .order_by(Return.created_at.asc())
            .all()
        )

    def get_label_info(self, return_id: str, customer_id: str) -> Dict[str, Any]:
        """Label details and packing instructions for the owner of a return."""
        return_request = self.get_return(return_id)
        if return_request.customer_id != customer_id:
            raise AuthorizationError('Return does not belong to this customer')
        if not return_request.has_label:
            raise NotFoundError('Label', return_id)

        return {
            'return_id': return_request.id,
            'qr_code_url': return_request.furgonetka_qr_code,
            'tracking_number': return_request.furgonetka_tracking_number,
            'expires_at': return_request.expires_at.isoformat() if return_request.expires_at else None,
            'status': return_request.status,
            'instructions': RETURN_INSTRUCTIONS,
        }

    # ==================== Queries ====================

    def get_return(self, return_id: str) -> Return:
        return_request = db.session.get(Return, return_id)
        if return_request is None:
            raise NotFoundError('Return', return_id)
        return return_request

    def get_customer_returns(self, customer_id: str) -> List[Return]:
        return (
            Return.query
            .filter_by(customer_id=customer_id)
            .order_by(Return.created_at.desc())
            .all()
        )

    def list_returns(
        self,
        status: str = None,
        order_id: str = None,
        customer_id: str = None,
        page: int = 1,
        per_page: int = 50
    ) -> Dict[str, Any]:
        query = Return.query
        if status:
            query = query.filter(Return.status == status)
        if order_id:
            query = query.filter(Return.order_id == order_id)
        if customer_id:
            query = query.filter(Return.customer_id == customer_id)

        pagination = query.order_by(Return.created_at.desc()).paginate(
            page=page, per_page=per_page, error_out=False
        )
        return {
            'returns': pagination.items,
            'total': pagination.total,
            'page': page,
            'per_page': per_page,
            'pages': pagination.pages,
        }

    # ==================== Status & refunds ====================

    def update_return_status(self, return_id: str, new_status: str) -> Dict[str, Any]:
        """
        Set a return's status. Any known status is accepted, except
        'received' on a return that is already refunded.

        Moving to 'received' processes the refund right after the status is
        saved. A refund failure is logged and reported under 'refund'; the
        return then stays at 'received' and the refund can be retried.
        """
        if new_status not in ReturnStatus.values():
            raise InvalidRequestError(
                f"Invalid status. Must be one of: {', '.join(ReturnStatus.values())}",
                'status'
            )

        return_request = self._lock_return(return_id)
        if new_status == ReturnStatus.RECEIVED.value and return_request.is_refunded:
            db.session.rollback()
            raise InvalidRequestError(f'Return {return_id} is already refunded', 'status')
        old_status = return_request.status
        return_request.status = new_status

        try:
            db.session.commit()
        except SQLAlchemyError as e:
            db.session.rollback()
            raise PersistenceError('Failed to update return status', original_error=e)

        current_app.logger.info(f"Return {return_id} status {old_status} -> {new_status}")

        refund = None
        if new_status == ReturnStatus.RECEIVED.value:
            try:
                self.process_refund(return_id)
                refund = {'success': True}
            except Exception as e:
                db.session.rollback()
                current_app.logger.error(f"Refund failed for return {return_id}: {e}")
                refund = {'success': False, 'error': str(e)}

        return {
            'return': self.get_return(return_id),
            'previous_status': old_status,
            'refund': refund,
        }

    def _lock_return(self, return_id: str) -> Return:
        return_request = (
            Return.query
            .filter_by(id=return_id)
            .with_for_update()
            .populate_existing()
            .first()
        )
        if return_request is None:
            raise NotFoundError('Return', return_id)
        return return_request

    def process_refund(self, return_id: str) -> Return:
        """
        Finalize the refund for a return. Re-running on a refunded return is a
        no-op, so points are never credited twice.
        """
        return_request = self._lock_return(return_id)
        if return_request.is_refunded:
            # Release the row lock
            db.session.rollback()
            current_app.logger.info(f"Return {return_id} already refunded, skipping")
            return return_request

        points_added = None
        try:
            if return_request.refund_method == RefundMethod.LOYALTY_POINTS.value:
                points_added = return_request.refund_amount // 100
                if points_added > 0:
                    self.ledger.credit(
                        return_request.customer_id,
                        points_added,
                        order_id=return_request.order_id,
                        description=(
                            f'Return refund for return {return_request.id} '
                            f'(order {return_request.order_id})'
                        ),
                        metadata={'return_id': return_request.id, 'source': 'returns'},
                        source=TransactionSource.RETURN_REFUND.value,
                        commit=False
                    )
            else:
                return_request.refund_reference = f'refund_{return_request.id}'

            return_request.status = ReturnStatus.REFUNDED.value
            return_request.processed_at = datetime.utcnow()
            db.session.commit()
        except SQLAlchemyError as e:
            db.session.rollback()
            current_app.logger.error(f"Refund commit failed for return {return_id}: {e}")
            raise PersistenceError('Failed to process refund', original_error=e)

        current_app.logger.info(
            f"Return {return_id} refunded via {return_request.refund_method} "
            f"({return_request.refund_amount}, points={points_added})"
        )

        self._notify_processed(return_request, points_added)
        return return_request

    def _notify_processed(self, return_request: Return, points_added: Optional[int]) -> None:
        try:
            order = self.order_client.get_order(return_request.order_id)
        except CollaboratorError as e:
            current_app.logger.warning(f"Skipping return processed email for {return_request.id}: {e}")
            return
        if order is None:
            return
        self.notifications.send_return_processed(
            return_request,
            email=order.email,
            points_added=points_added,
            order_number=order.display_id
        )
