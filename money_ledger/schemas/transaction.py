"""
Money Transaction Schema

Ledger records are immutable. Nothing is edited or deleted:
a correction is a new offsetting record.

The stored amount is always a non-negative magnitude.
The direction lives in the payment type.
"""

from datetime import datetime, timezone
from decimal import Decimal
from enum import IntEnum

from pydantic import BaseModel, ConfigDict, Field

from .account import Account


class PaymentType(IntEnum):
    """
    Direction of a money movement.
    Values are persisted, never renumber them.
    """
    INCOME = 1    # balance increases
    OUTCOME = 2   # balance decreases


class MoneyTransaction(BaseModel):
    """One immutable ledger record."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(
        ...,
        description="Globally unique id generated before insert"
    )

    amount: Decimal = Field(
        ...,
        ge=0,
        description="Magnitude of the movement"
    )

    description: str = Field(
        default="",
        description="Free-text description"
    )

    payment_target: str = Field(
        default="",
        description="Who or what the money moved to or from"
    )

    account_id: int
    user_id: int

    payment_type: PaymentType

    creation_date: datetime

    @property
    def signed_amount(self) -> Decimal:
        """Amount with the sign implied by the payment type."""
        if self.payment_type == PaymentType.OUTCOME:
            return -self.amount
        return self.amount


class TransactionIntent(BaseModel):
    """
    A request to move money against an account.

    The account is a snapshot: only its id and user_id are trusted,
    the balance is re-read from the store when the movement is applied.
    """
    account: Account

    amount: Decimal = Field(
        ...,
        ge=0,
        description="Non-negative magnitude; zero is a valid audit entry"
    )

    description: str = ""

    payment_type: PaymentType

    payment_target: str = ""

    created_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc)
    )
