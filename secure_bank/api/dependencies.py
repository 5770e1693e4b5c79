"""
System wiring and request dependencies
"""

from typing import Optional

from fastapi import Depends, Request, Response

from ..accounts import AccountLedger
from ..auth import IdentityManager, RequestContext, User
from ..config import BankConfig, get_config
from ..encryption import CryptoService
from ..logging_config import get_logger
from ..migrations import MigrationManager
from ..storage import StorageInterface, create_storage


logger = get_logger("secure_bank.api")


class BankingSystem:
    """Banking backend with all components initialized"""

    def __init__(self, config: Optional[BankConfig] = None, storage: Optional[StorageInterface] = None):
        self.config = config or get_config()

        # Initialize storage
        self.storage = storage or create_storage(self.config.database_path)

        # Fails closed here when production keys are missing
        self.crypto = CryptoService.from_config(self.config)

        self.migrations = MigrationManager(self.storage, self.crypto)
        if self.config.auto_migrate:
            self.migrations.migrate_up()

        # Initialize core components
        self.identity = IdentityManager(self.storage, self.crypto, self.config)
        self.ledger = AccountLedger(self.storage, self.config)

    def close(self) -> None:
        self.storage.close()


# Dependency to get banking system
def get_banking_system(request: Request) -> BankingSystem:
    return request.app.state.banking_system


def get_request_context(
    request: Request,
    response: Response,
    system: BankingSystem = Depends(get_banking_system)
) -> RequestContext:
    """Resolve the session cookie; re-issues the cookie when the session was renewed"""
    context = system.identity.build_context(request.headers.get("cookie"))
    if context.set_cookie:
        response.headers.append("set-cookie", context.set_cookie)
        # Error handlers build their own response
        request.state.renewed_cookie = context.set_cookie
    return context


def get_current_user(
    context: RequestContext = Depends(get_request_context),
    system: BankingSystem = Depends(get_banking_system)
) -> User:
    """Gate for protected endpoints"""
    return system.identity.require_user(context)
