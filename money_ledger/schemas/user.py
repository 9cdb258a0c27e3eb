"""
User Schema

A user is identified internally by a store-assigned integer id and
externally by a unique number (phone, card, opaque token).
"""

from datetime import date

from pydantic import BaseModel, Field


class User(BaseModel):
    """A persisted user."""
    id: int = Field(
        ...,
        description="Store-assigned identifier"
    )

    name: str = Field(
        ...,
        description="Display name"
    )

    number: str = Field(
        ...,
        description="Unique external-facing identifier"
    )

    creation_date: date = Field(
        ...,
        description="Date the user was stored"
    )


class AddUserRequest(BaseModel):
    """Input for creating a user."""
    name: str
    number: str = Field(..., min_length=1)
