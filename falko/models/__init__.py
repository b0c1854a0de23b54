"""
Database models for the Falko loyalty and returns service.
"""
from .loyalty import (
    # Enums
    TransactionType,
    TransactionSource,
    # Models
    LoyaltyAccount,
    LoyaltyTransaction,
    Reward,
    # Seeders
    seed_rewards,
    DEFAULT_REWARDS,
)
from .returns import (
    ReturnStatus,
    RefundMethod,
    Return,
    ReturnSurvey,
    generate_return_id,
    generate_survey_id,
)

__all__ = [
    # Loyalty
    'TransactionType',
    'TransactionSource',
    'LoyaltyAccount',
    'LoyaltyTransaction',
    'Reward',
    'seed_rewards',
    'DEFAULT_REWARDS',
    # Returns
    'ReturnStatus',
    'RefundMethod',
    'Return',
    'ReturnSurvey',
    'generate_return_id',
    'generate_survey_id',
]
