"""
Merchandise return models.

A Return moves through the lifecycle below; `rejected` can be reached from
any state before `refunded`.

    pending_survey -> survey_completed -> qr_generated -> shipped_by_customer
        -> received -> processed -> refunded
"""
import secrets
import time
from datetime import datetime
from enum import Enum
from typing import Dict, Any
from ..extensions import db


class ReturnStatus(str, Enum):
    PENDING_SURVEY = 'pending_survey'
    SURVEY_COMPLETED = 'survey_completed'
    QR_GENERATED = 'qr_generated'
    SHIPPED_BY_CUSTOMER = 'shipped_by_customer'
    RECEIVED = 'received'
    PROCESSED = 'processed'
    REFUNDED = 'refunded'
    REJECTED = 'rejected'

    @classmethod
    def values(cls):
        return [status.value for status in cls]


class RefundMethod(str, Enum):
    CARD = 'card'
    LOYALTY_POINTS = 'loyalty_points'

    @classmethod
    def values(cls):
        return [method.value for method in cls]


def generate_return_id() -> str:
    """Return ids look like ret_1718000000000_3f9a1c2b7."""
    return f'ret_{int(time.time() * 1000)}_{secrets.token_hex(5)[:9]}'


def generate_survey_id() -> str:
    return f'rsv_{int(time.time() * 1000)}_{secrets.token_hex(5)[:9]}'


class Return(db.Model):
    """
    A customer-initiated return of merchandise from one order.

    Amounts are integer minor units (grosze). refund_method is fixed at
    creation and decides refund_amount: loyalty_points refunds carry a bonus.
    """
    __tablename__ = 'returns'

    id = db.Column(db.String(50), primary_key=True, default=generate_return_id)
    order_id = db.Column(db.String(100), nullable=False, index=True)
    customer_id = db.Column(db.String(100), nullable=False, index=True)

    status = db.Column(db.String(30), nullable=False, default=ReturnStatus.QR_GENERATED.value, index=True)
    reason_code = db.Column(db.String(50), nullable=False)
    refund_method = db.Column(db.String(20), nullable=False)

    # [{variant_id, quantity, unit_price, title}]
    items = db.Column(db.JSON, nullable=False, default=list)
    total_amount = db.Column(db.Integer, nullable=False)
    refund_amount = db.Column(db.Integer, nullable=False)

    # Shipping label, filled in after creation by the label provider
    furgonetka_qr_code = db.Column(db.Text)
    furgonetka_tracking_number = db.Column(db.String(100))
    label_error = db.Column(db.Text)

    refund_reference = db.Column(db.String(100))

    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)
    expires_at = db.Column(db.DateTime)
    processed_at = db.Column(db.DateTime)

    survey = db.relationship(
        'ReturnSurvey',
        backref='return_request',
        uselist=False,
        cascade='all, delete-orphan'
    )

    __table_args__ = (
        db.CheckConstraint(
            "refund_method IN ('card', 'loyalty_points')",
            name='ck_returns_refund_method'
        ),
    )

    def __repr__(self):
        return f'<Return {self.id} ({self.status}) for order {self.order_id}>'

    @property
    def has_label(self) -> bool:
        return bool(self.furgonetka_qr_code)

    @property
    def is_refunded(self) -> bool:
        return self.processed_at is not None

    def to_dict(self, include_survey: bool = True) -> Dict[str, Any]:
        data = {
            'id': self.id,
            'order_id': self.order_id,
            'customer_id': self.customer_id,
            'status': self.status,
            'reason_code': self.reason_code,
            'refund_method': self.refund_method,
            'items': self.items or [],
            'total_amount': self.total_amount,
            'refund_amount': self.refund_amount,
            'furgonetka_qr_code': self.furgonetka_qr_code,
            'furgonetka_tracking_number': self.furgonetka_tracking_number,
            'label_error': self.label_error,
            'refund_reference': self.refund_reference,
            'created_at': self.created_at.isoformat() if self.created_at else None,
            'updated_at': self.updated_at.isoformat() if self.updated_at else None,
            'expires_at': self.expires_at.isoformat() if self.expires_at else None,
            'processed_at': self.processed_at.isoformat() if self.processed_at else None,
        }
        if include_survey:
            data['survey'] = self.survey.to_dict() if self.survey else None
        return data


class ReturnSurvey(db.Model):
    """Why the customer is returning. Created together with its Return."""
    __tablename__ = 'return_surveys'

    id = db.Column(db.String(50), primary_key=True, default=generate_survey_id)
    return_id = db.Column(
        db.String(50),
        db.ForeignKey('returns.id', ondelete='CASCADE'),
        nullable=False,
        unique=True
    )
    reason_code = db.Column(db.String(50), nullable=False)
    satisfaction_rating = db.Column(db.Integer)
    size_issue = db.Column(db.String(50))
    quality_issue = db.Column(db.String(50))
    description = db.Column(db.Text)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    __table_args__ = (
        db.CheckConstraint(
            'satisfaction_rating IS NULL OR (satisfaction_rating >= 1 AND satisfaction_rating <= 5)',
            name='ck_return_surveys_rating_range'
        ),
    )

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'return_id': self.return_id,
            'reason_code': self.reason_code,
            'satisfaction_rating': self.satisfaction_rating,
            'size_issue': self.size_issue,
            'quality_issue': self.quality_issue,
            'description': self.description,
            'created_at': self.created_at.isoformat() if self.created_at else None,
        }
