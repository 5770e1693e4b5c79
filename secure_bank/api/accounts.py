"""
Account management endpoints
"""

from typing import List, Optional
from fastapi import APIRouter, Depends, status

from .dependencies import BankingSystem, get_banking_system, get_current_user
from .schemas import (
    AccountResponse, CreateAccountRequest, FundAccountRequest, FundAccountResponse,
    TransactionPageResponse,
)
from ..auth import User


router = APIRouter()


@router.post("", status_code=status.HTTP_201_CREATED, response_model=AccountResponse)
def create_account(
    request: CreateAccountRequest,
    user: User = Depends(get_current_user),
    system: BankingSystem = Depends(get_banking_system)
):
    """Open a checking or savings account"""
    account = system.ledger.create_account(user.id, request.account_type)
    return AccountResponse.from_account(account)


@router.get("", response_model=List[AccountResponse])
def get_accounts(
    user: User = Depends(get_current_user),
    system: BankingSystem = Depends(get_banking_system)
):
    """List the caller's accounts"""
    return [AccountResponse.from_account(a) for a in system.ledger.get_accounts(user.id)]


@router.post("/{account_id}/fund", response_model=FundAccountResponse)
def fund_account(
    account_id: int,
    request: FundAccountRequest,
    user: User = Depends(get_current_user),
    system: BankingSystem = Depends(get_banking_system)
):
    """Deposit into one of the caller's accounts"""
    result = system.ledger.fund_account(
        user.id, account_id, request.amount, request.funding_source.to_funding_source()
    )
    return FundAccountResponse.from_result(result)


@router.get("/{account_id}/transactions", response_model=TransactionPageResponse)
def get_transactions(
    account_id: int,
    limit: Optional[int] = None,
    cursor: Optional[int] = None,
    user: User = Depends(get_current_user),
    system: BankingSystem = Depends(get_banking_system)
):
    """Newest-first transaction history, paginated by cursor"""
    page = system.ledger.get_transactions(user.id, account_id, limit=limit, cursor=cursor)
    return TransactionPageResponse.from_page(page)
