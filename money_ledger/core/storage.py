"""
Money Storage - user-level money operations

Composes the three storage capabilities into the operations a caller
actually wants: register a user, open an account, deposit, withdraw, read
a balance. Users are addressed by their external number throughout.

MoneyStorage holds no state of its own. Every rule about atomicity and
concurrency lives in the store; this class only decides which store calls
to make.
"""

from decimal import Decimal, InvalidOperation
from typing import Union

from pydantic import ValidationError

from ..observability import get_logger
from ..schemas import (
    Account,
    AddAccountRequest,
    AddUserRequest,
    MoneyTransaction,
    PaymentType,
    TransactionIntent,
    User,
)
from ..db.errors import InvalidRequestError, InvalidTransactionError
from ..db.store import AccountStore, TransactionStore, UserStore

logger = get_logger(__name__)

Amount = Union[Decimal, int, float, str]


class MoneyStorage:
    """
    High-level money operations over pluggable stores.

    The three stores are usually the same object (a SqliteStore), but
    they are taken separately so each can be substituted on its own.
    """

    def __init__(
        self,
        user_store: UserStore,
        account_store: AccountStore,
        transaction_store: TransactionStore,
    ):
        self._users = user_store
        self._accounts = account_store
        self._transactions = transaction_store

    @classmethod
    def from_provider(cls, provider) -> "MoneyStorage":
        """Build from one object implementing all three capabilities."""
        return cls(provider, provider, provider)

    # ================================================================
    # USERS AND ACCOUNTS
    # ================================================================

    def create_user(self, number: str, name: str) -> User:
        """
        Register a user under a unique external number.

        Raises:
            UniqueViolationError: if the number is taken
            InvalidRequestError: if the number is empty
        """
        try:
            request = AddUserRequest(name=name, number=number)
        except ValidationError as e:
            raise InvalidRequestError(f"Invalid user: {e}") from e
        user = self._users.add_user(request)
        logger.info("User registered", user_id=user.id)
        return user

    def open_account(
        self,
        user: User,
        name: str,
        initial_balance: Amount = Decimal("0"),
    ) -> Account:
        """
        Open an account for an existing user.

        Raises:
            InvalidRequestError: if the initial balance is not a number
        """
        try:
            request = AddAccountRequest(
                user_id=user.id,
                name=name,
                initial_balance=Decimal(str(initial_balance)),
            )
        except (InvalidOperation, ValidationError) as e:
            raise InvalidRequestError(
                f"Invalid initial balance: {initial_balance!r}"
            ) from e
        return self._accounts.add_account(request)

    def account_for(self, number: str) -> Account:
        """
        The single account of the user with this number.

        Raises:
            NotFoundError: no such user, no account, or several accounts
        """
        user = self._users.get_user_by_number(number)
        return self._accounts.search_account_by_user(user.id)

    def balance(self, number: str) -> Decimal:
        """Current balance of the user's account."""
        return self.account_for(number).balance

    # ================================================================
    # MONEY MOVEMENTS
    # ================================================================

    def deposit(
        self,
        number: str,
        amount: Amount,
        description: str = "",
        payment_target: str = "",
    ) -> MoneyTransaction:
        """Add money to the user's account."""
        return self._move(number, PaymentType.INCOME, amount, description, payment_target)

    def withdraw(
        self,
        number: str,
        amount: Amount,
        description: str = "",
        payment_target: str = "",
    ) -> MoneyTransaction:
        """
        Take money from the user's account.

        Balances may go negative; overdraft policy belongs to the caller.
        """
        return self._move(number, PaymentType.OUTCOME, amount, description, payment_target)

    def _move(
        self,
        number: str,
        payment_type: PaymentType,
        amount: Amount,
        description: str,
        payment_target: str,
    ) -> MoneyTransaction:
        try:
            magnitude = Decimal(str(amount))
        except InvalidOperation as e:
            raise InvalidTransactionError(f"Invalid amount: {amount!r}") from e
        if not magnitude.is_finite() or magnitude < 0:
            raise InvalidTransactionError(
                f"Amount must be a non-negative magnitude, got {amount!r}"
            )

        account = self.account_for(number)
        try:
            intent = TransactionIntent(
                account=account,
                amount=magnitude,
                description=description,
                payment_type=payment_type,
                payment_target=payment_target,
            )
        except ValidationError as e:
            raise InvalidTransactionError(f"Invalid money movement: {e}") from e
        return self._transactions.execute_transaction(intent)

    def history(self, number: str) -> list[MoneyTransaction]:
        """Ledger records of the user's account, oldest first."""
        account = self.account_for(number)
        return self._transactions.get_transactions_for_account(account.id)
