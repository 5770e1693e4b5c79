"""
Account Ledger Module

Manages customer accounts, funding deposits and transaction history.

Balances are fixed-point (2 places). A deposit inserts its transaction row
and increments the balance inside one storage transaction; the increment
and rounding run inside the storage engine, so concurrent deposits to the
same account cannot lose updates.
"""

from decimal import Decimal
from datetime import datetime, timezone
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Union
from enum import Enum

from .config import BankConfig
from .encryption import generate_account_number
from .errors import BadRequestError, ConflictError, InternalError, NotFoundError, ValidationError
from .logging_config import get_logger, log_action
from .money import ZERO, Number, has_at_most_two_places, quantize, to_decimal
from .storage import StorageInterface, StorageRecord
from .validation import is_valid_bank_account_number, is_valid_card_number, is_valid_routing_number


class AccountType(Enum):
    """Deposit products; a user holds at most one of each"""
    CHECKING = "checking"
    SAVINGS = "savings"


class AccountStatus(Enum):
    """Account lifecycle states"""
    PENDING = "pending"    # Not yet open for funding
    ACTIVE = "active"      # Normal operation


class TransactionType(Enum):
    """Types of ledger transactions"""
    DEPOSIT = "deposit"


class TransactionStatus(Enum):
    """States of a transaction"""
    PENDING = "pending"
    COMPLETED = "completed"


@dataclass
class Account(StorageRecord):
    """Customer deposit account"""
    user_id: int
    account_number: str
    account_type: AccountType
    balance: Decimal
    status: AccountStatus = AccountStatus.PENDING

    def can_fund(self) -> bool:
        """Only active accounts accept deposits"""
        return self.status == AccountStatus.ACTIVE


@dataclass
class Transaction(StorageRecord):
    """
    Ledger transaction. Immutable once completed.

    account_type is filled in when transactions are read back as history.
    """
    account_id: int
    type: TransactionType
    amount: Decimal
    description: Optional[str]
    status: TransactionStatus = TransactionStatus.PENDING
    processed_at: Optional[datetime] = None
    account_type: Optional[AccountType] = None


@dataclass(frozen=True)
class CardFundingSource:
    """Deposit pulled from a debit/credit card"""
    card_number: str
    kind = "card"


@dataclass(frozen=True)
class BankFundingSource:
    """Deposit pulled from an external bank account (ACH)"""
    account_number: str
    routing_number: Optional[str] = None
    kind = "bank"


FundingSource = Union[CardFundingSource, BankFundingSource]


@dataclass
class FundingResult:
    transaction: Transaction
    new_balance: Decimal


@dataclass
class TransactionPage:
    items: List[Transaction]
    next_cursor: Optional[int]


class AccountLedger:
    """
    Account creation, funding and paginated history for one storage gateway
    """

    def __init__(self, storage: StorageInterface, config: BankConfig):
        self.storage = storage
        self.config = config
        self.accounts_table = "accounts"
        self.transactions_table = "transactions"
        self.logger = get_logger("secure_bank.accounts")

    def create_account(self, user_id: int, account_type: AccountType) -> Account:
        """
        Open an active, zero-balance account of the given type.

        Raises:
            ConflictError: the user already has an account of this type
        """
        try:
            account_type = AccountType(account_type)
        except ValueError:
            raise ValidationError(field_errors={"account_type": "Account type must be checking or savings"})

        with self.storage.atomic():
            existing = self.storage.find_one(
                self.accounts_table, {"user_id": user_id, "account_type": account_type}
            )
            if existing:
                raise ConflictError(f"You already have a {account_type.value} account")

            account_number = self._allocate_account_number()

            row = self.storage.insert(self.accounts_table, {
                "user_id": user_id,
                "account_number": account_number,
                "account_type": account_type,
                "balance": ZERO,
                "status": AccountStatus.ACTIVE,
                "created_at": datetime.now(timezone.utc),
            })
        if not row:
            raise InternalError("Failed to create account")

        account = self._account_from_row(row)
        log_action(self.logger, "info", "Account created",
                   user_id=user_id, action="create_account", resource=f"account:{account.id}",
                   extra={"account_type": account_type.value})
        return account

    def get_accounts(self, user_id: int) -> List[Account]:
        """All accounts owned by the user"""
        rows = self.storage.find(self.accounts_table, {"user_id": user_id})
        return [self._account_from_row(row) for row in rows]

    def get_owned_account(self, user_id: int, account_id: int) -> Account:
        """Account by id, only if the user owns it"""
        row = self.storage.find_one(self.accounts_table, {"id": account_id, "user_id": user_id})
        if row is None:
            raise NotFoundError("Account not found")
        return self._account_from_row(row)

    def fund_account(self, user_id: int, account_id: int, amount: Number,
                     funding_source: FundingSource) -> FundingResult:
        """
        Deposit into an owned, active account.

        Args:
            user_id: Caller; must own the account
            account_id: Account to credit
            amount: Positive amount with at most 2 decimal places
            funding_source: Card or bank instrument the deposit comes from

        Returns:
            The completed transaction and the balance as stored after the update

        Raises:
            ValidationError: bad amount or funding source
            NotFoundError: account missing or not owned by the caller
            BadRequestError: account is not active
        """
        amount = self.validate_amount(amount, self.config.max_deposit_amount)
        self.validate_funding_source(funding_source)

        account = self.get_owned_account(user_id, account_id)
        if not account.can_fund():
            raise BadRequestError("Account is not active")

        now = datetime.now(timezone.utc)
        with self.storage.atomic():
            row = self.storage.insert(self.transactions_table, {
                "account_id": account.id,
                "type": TransactionType.DEPOSIT,
                "amount": amount,
                "description": f"Funding from {funding_source.kind}",
                "status": TransactionStatus.COMPLETED,
                "created_at": now,
                "processed_at": now,
            })
            if not row:
                raise InternalError("Failed to record transaction")

            updated = self.storage.increment_balance(account.id, amount)
            if updated is None:
                raise InternalError("Failed to update account balance")

        transaction = self._transaction_from_row(row)
        new_balance = quantize(updated["balance"])

        log_action(self.logger, "info", "Account funded",
                   user_id=user_id, action="fund_account", resource=f"account:{account.id}",
                   extra={"transaction_id": transaction.id, "amount": str(amount),
                          "source": funding_source.kind})
        return FundingResult(transaction=transaction, new_balance=new_balance)

    def get_transactions(self, user_id: int, account_id: int, limit: Optional[int] = None,
                         cursor: Optional[int] = None) -> TransactionPage:
        """
        Newest-first page of an owned account's transactions.

        The cursor is the id of the first transaction of the next page.
        """
        if limit is None:
            limit = self.config.transactions_page_default
        if not 1 <= limit <= self.config.transactions_page_max:
            raise ValidationError(field_errors={
                "limit": f"Limit must be between 1 and {self.config.transactions_page_max}"
            })

        account = self.get_owned_account(user_id, account_id)

        rows = self.storage.find(
            self.transactions_table, {"account_id": account.id},
            order_by="id", descending=True, limit=limit + 1, max_id=cursor,
        )

        next_cursor = None
        if len(rows) > limit:
            next_cursor = rows.pop()["id"]

        items = []
        for row in rows:
            transaction = self._transaction_from_row(row)
            transaction.account_type = account.account_type
            items.append(transaction)

        return TransactionPage(items=items, next_cursor=next_cursor)

    # Validation

    @staticmethod
    def validate_amount(amount: Number, max_amount: Optional[Decimal] = None) -> Decimal:
        """Parse and check a deposit amount; returns it quantized to cents"""
        try:
            value = to_decimal(amount)
        except ValueError:
            raise ValidationError(field_errors={"amount": "Amount must be a valid number"})

        if not value.is_finite():
            raise ValidationError(field_errors={"amount": "Amount must be a valid number"})
        if value <= 0:
            raise ValidationError(field_errors={"amount": "Amount must be greater than $0.00"})
        if max_amount is not None and value > max_amount:
            raise ValidationError(field_errors={"amount": f"Amount cannot exceed ${max_amount:,.2f}"})
        try:
            exact = has_at_most_two_places(value)
        except ValueError:
            raise ValidationError(field_errors={"amount": "Amount is too large"})
        if not exact:
            raise ValidationError(field_errors={"amount": "Amount cannot have more than 2 decimal places"})

        return quantize(value)

    @staticmethod
    def validate_funding_source(source: FundingSource) -> None:
        errors: Dict[str, str] = {}

        if isinstance(source, CardFundingSource):
            if not is_valid_card_number(source.card_number):
                errors["card_number"] = "Invalid card number"
        elif isinstance(source, BankFundingSource):
            if not is_valid_bank_account_number(source.account_number):
                errors["account_number"] = "Invalid account number"
            if not source.routing_number:
                errors["routing_number"] = "Routing number is required"
            elif not is_valid_routing_number(source.routing_number):
                errors["routing_number"] = "Routing number must be 9 digits"
        else:
            errors["funding_source"] = "Unsupported funding source"

        if errors:
            raise ValidationError(field_errors=errors)

    # Private helpers

    def _allocate_account_number(self) -> str:
        """Draw random numbers until one is unused"""
        max_attempts = self.config.account_number_max_attempts
        attempts = 0
        while True:
            attempts += 1
            candidate = generate_account_number()
            if not self.storage.find_one(self.accounts_table, {"account_number": candidate}):
                if attempts > 1:
                    self.logger.info(f"Account number allocated after {attempts} attempts")
                return candidate
            if max_attempts and attempts >= max_attempts:
                raise InternalError("Could not allocate a unique account number")

    def _account_from_row(self, data: Dict[str, Any]) -> Account:
        return Account(
            id=data['id'],
            created_at=datetime.fromisoformat(data['created_at']),
            user_id=data['user_id'],
            account_number=data['account_number'],
            account_type=AccountType(data['account_type']),
            balance=quantize(data['balance']),
            status=AccountStatus(data['status']),
        )

    def _transaction_from_row(self, data: Dict[str, Any]) -> Transaction:
        processed_at = None
        if data.get('processed_at'):
            processed_at = datetime.fromisoformat(data['processed_at'])

        return Transaction(
            id=data['id'],
            created_at=datetime.fromisoformat(data['created_at']),
            account_id=data['account_id'],
            type=TransactionType(data['type']),
            amount=quantize(data['amount']),
            description=data.get('description'),
            status=TransactionStatus(data['status']),
            processed_at=processed_at,
        )
