"""
Pydantic schemas for API requests and responses
"""

from typing import Any, Dict, List, Literal, Optional, Union
from pydantic import BaseModel, Field, StrictFloat, StrictInt, StrictStr

from ..accounts import (
    Account, BankFundingSource, CardFundingSource, FundingResult, FundingSource,
    Transaction, TransactionPage,
)
from ..auth import SignupData, User
from ..money import format_amount


# Auth schemas
class SignupRequest(BaseModel):
    email: str
    password: str
    first_name: str
    last_name: str
    phone_number: str
    date_of_birth: str = Field(..., description="ISO date (YYYY-MM-DD)")
    ssn: str
    address: str
    city: str
    state: str = Field(..., description="Two-letter state code")
    zip_code: str

    def to_signup_data(self) -> SignupData:
        return SignupData(**self.model_dump())


class LoginRequest(BaseModel):
    email: str
    password: str


class UserResponse(BaseModel):
    id: int
    email: str
    first_name: str
    last_name: str
    phone_number: str
    date_of_birth: str
    address: str
    city: str
    state: str
    zip_code: str
    created_at: str

    @classmethod
    def from_user(cls, user: User) -> 'UserResponse':
        return cls(**user.to_public_dict())


class AuthResponse(BaseModel):
    user: UserResponse
    token: str


# Account schemas
class CreateAccountRequest(BaseModel):
    account_type: str = Field(..., description="Account type (checking, savings)")


class AccountResponse(BaseModel):
    id: int
    user_id: int
    account_number: str
    account_type: str
    balance: str = Field(..., description="Decimal amount as string")
    status: str
    created_at: str

    @classmethod
    def from_account(cls, account: Account) -> 'AccountResponse':
        return cls(
            id=account.id,
            user_id=account.user_id,
            account_number=account.account_number,
            account_type=account.account_type.value,
            balance=format_amount(account.balance),
            status=account.status.value,
            created_at=account.created_at.isoformat(),
        )


class FundingSourceModel(BaseModel):
    type: Literal["card", "bank"]
    account_number: str = Field(..., description="Card number for cards, account number for banks")
    routing_number: Optional[str] = None

    def to_funding_source(self) -> FundingSource:
        if self.type == "card":
            return CardFundingSource(card_number=self.account_number)
        return BankFundingSource(account_number=self.account_number, routing_number=self.routing_number)


class FundAccountRequest(BaseModel):
    amount: Union[StrictStr, StrictInt, StrictFloat] = Field(..., description="Positive amount, at most 2 decimal places")
    funding_source: FundingSourceModel


class TransactionResponse(BaseModel):
    id: int
    account_id: int
    type: str
    amount: str = Field(..., description="Decimal amount as string")
    description: Optional[str] = None
    status: str
    created_at: str
    processed_at: Optional[str] = None
    account_type: Optional[str] = None

    @classmethod
    def from_transaction(cls, transaction: Transaction) -> 'TransactionResponse':
        return cls(
            id=transaction.id,
            account_id=transaction.account_id,
            type=transaction.type.value,
            amount=format_amount(transaction.amount),
            description=transaction.description,
            status=transaction.status.value,
            created_at=transaction.created_at.isoformat(),
            processed_at=transaction.processed_at.isoformat() if transaction.processed_at else None,
            account_type=transaction.account_type.value if transaction.account_type else None,
        )


class FundAccountResponse(BaseModel):
    transaction: TransactionResponse
    new_balance: str

    @classmethod
    def from_result(cls, result: FundingResult) -> 'FundAccountResponse':
        return cls(
            transaction=TransactionResponse.from_transaction(result.transaction),
            new_balance=format_amount(result.new_balance),
        )


class TransactionPageResponse(BaseModel):
    items: List[TransactionResponse]
    next_cursor: Optional[int] = None

    @classmethod
    def from_page(cls, page: TransactionPage) -> 'TransactionPageResponse':
        return cls(
            items=[TransactionResponse.from_transaction(t) for t in page.items],
            next_cursor=page.next_cursor,
        )


def error_body(code: str, message: str, field_errors: Optional[Dict[str, str]] = None) -> Dict[str, Any]:
    """JSON body for every error response"""
    error: Dict[str, Any] = {"code": code, "message": message}
    if field_errors:
        error["field_errors"] = field_errors
    return {"error": error}
