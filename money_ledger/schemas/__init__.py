# Canonical schemas for the money ledger.
# Everything the store persists or accepts as input is defined here.

from .user import User, AddUserRequest
from .account import Account, AddAccountRequest
from .transaction import MoneyTransaction, PaymentType, TransactionIntent

__all__ = [
    # User
    "User",
    "AddUserRequest",
    # Account
    "Account",
    "AddAccountRequest",
    # Transaction
    "MoneyTransaction",
    "PaymentType",
    "TransactionIntent",
]
