"""
Shared fixtures for SecureBank tests
"""

import pytest
from datetime import datetime, timezone

from secure_bank.auth import SignupData
from secure_bank.config import BankConfig
from secure_bank.encryption import CryptoService
from secure_bank.storage import InMemoryStorage


TEST_ENCRYPTION_KEY = "11" * 32
TEST_INDEX_KEY = "22" * 32


def make_config(**overrides) -> BankConfig:
    """Config isolated from the environment, with fast password hashing"""
    settings = {
        "node_env": "test",
        "database_path": ":memory:",
        "encryption_key": TEST_ENCRYPTION_KEY,
        "ssn_index_key": TEST_INDEX_KEY,
        "jwt_secret": "test-jwt-secret-that-is-long-enough-for-hs256",
        "password_hash_cost": 10,
    }
    settings.update(overrides)
    return BankConfig(_env_file=None, **settings)


def make_signup_data(**overrides) -> SignupData:
    fields = {
        "email": "jane@example.com",
        "password": "StrongP@ssw0rd!",
        "first_name": "Jane",
        "last_name": "Doe",
        "phone_number": "+14155552671",
        "date_of_birth": "1990-01-15",
        "ssn": "123-45-6789",
        "address": "1 Market St",
        "city": "San Francisco",
        "state": "CA",
        "zip_code": "94105",
    }
    fields.update(overrides)
    return SignupData(**fields)


@pytest.fixture
def config():
    return make_config()


@pytest.fixture
def storage():
    return InMemoryStorage()


@pytest.fixture
def crypto(config):
    return CryptoService.from_config(config)


def user_row(email="jane@example.com", ssn_hash="hash-1"):
    """Raw users row for storage and ledger tests"""
    return {
        "email": email,
        "password": "scrypt$10$8$1$00$00",
        "first_name": "Jane",
        "last_name": "Doe",
        "phone_number": "+14155552671",
        "date_of_birth": "1990-01-15",
        "ssn": "envelope",
        "ssn_hash": ssn_hash,
        "address": "1 Market St",
        "city": "San Francisco",
        "state": "CA",
        "zip_code": "94105",
        "created_at": datetime.now(timezone.utc),
    }
