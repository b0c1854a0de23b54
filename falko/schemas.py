"""
Request schemas for the Falko HTTP surface.

Bodies are validated here before they reach the services; a failure is
raised as InvalidRequestError naming the offending field.
"""
from typing import List, Optional, Union, Literal, Type, TypeVar

from pydantic import BaseModel, Field, ValidationError, field_validator

from .utils.exceptions import InvalidRequestError

SchemaT = TypeVar('SchemaT', bound=BaseModel)


class ReturnItem(BaseModel):
    variant_id: str = Field(min_length=1)
    title: str = Field(min_length=1)
    quantity: int = Field(gt=0)
    unit_price: int = Field(gt=0)  # minor units

    @field_validator('variant_id', mode='before')
    @classmethod
    def coerce_variant_id(cls, v):
        if isinstance(v, int):
            return str(v)
        return v


class CreateReturnRequest(BaseModel):
    order_id: str = Field(min_length=1)
    items: List[ReturnItem] = Field(min_length=1)
    reason_code: str = Field(min_length=1)
    refund_method: Literal['card', 'loyalty_points']
    satisfaction_rating: Optional[int] = Field(default=None, ge=1, le=5)
    size_issue: Optional[str] = None
    quality_issue: Optional[str] = None
    description: Optional[str] = None


class RedeemRequest(BaseModel):
    reward_id: Union[int, str]


class StatusUpdateRequest(BaseModel):
    status: str = Field(min_length=1)


class OrderEvent(BaseModel):
    """order.payment_captured / order.canceled payload."""
    id: str = Field(min_length=1)

    @field_validator('id', mode='before')
    @classmethod
    def coerce_id(cls, v):
        if isinstance(v, int):
            return str(v)
        return v


class ReturnedItem(BaseModel):
    variant_id: Optional[str] = None
    quantity: int = Field(default=1, gt=0)
    unit_price: int = Field(default=0, ge=0)


class ReturnReceivedEvent(BaseModel):
    """return.received payload: items actually returned to the warehouse."""
    id: str = Field(min_length=1)
    order_id: str = Field(min_length=1)
    items: List[ReturnedItem] = Field(default_factory=list)

    @property
    def returned_value(self) -> int:
        return sum(item.unit_price * item.quantity for item in self.items)


def validate_body(schema: Type[SchemaT], data) -> SchemaT:
    """Parse a JSON body into `schema` or raise InvalidRequestError."""
    if not isinstance(data, dict):
        raise InvalidRequestError('Request body must be a JSON object')

    try:
        return schema.model_validate(data)
    except ValidationError as e:
        first = e.errors()[0]
        field = '.'.join(str(part) for part in first.get('loc', ())) or None
        message = f"{field}: {first.get('msg')}" if field else first.get('msg', 'Invalid request')
        raise InvalidRequestError(message, field)
