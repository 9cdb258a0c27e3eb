"""
Account Schema

An account is a named pool of money owned by one user.
Ownership is logical: the store never checks that the user still exists.
"""

from datetime import date
from decimal import Decimal

from pydantic import BaseModel, Field


class Account(BaseModel):
    """A persisted account snapshot."""
    id: int = Field(
        ...,
        description="Store-assigned identifier"
    )

    user_id: int = Field(
        ...,
        description="Owning user id (soft reference)"
    )

    name: str = Field(
        ...,
        description="Display name"
    )

    balance: Decimal = Field(
        default=Decimal("0"),
        description="Current balance, may be negative"
    )

    creation_date: date = Field(
        ...,
        description="Date the account was opened"
    )


class AddAccountRequest(BaseModel):
    """Input for opening an account."""
    user_id: int
    name: str
    initial_balance: Decimal = Decimal("0")
