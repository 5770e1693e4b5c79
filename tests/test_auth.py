"""
Tests for signup, login and session handling
"""

import pytest
from datetime import datetime, timedelta, timezone

import jwt

from secure_bank.auth import (
    IdentityManager, PasswordHasher, RequestContext, build_session_cookie, load_jwt_secret,
    parse_cookie_header,
)
from secure_bank.config import DEVELOPMENT_JWT_SECRET
from secure_bank.encryption import CryptoService, KeyConfigurationError
from secure_bank.errors import ConflictError, UnauthorizedError, ValidationError
from secure_bank.storage import InMemoryStorage

from conftest import make_config, make_signup_data


class TestPasswordHasher:
    """Test scrypt password hashing"""

    def setup_method(self):
        self.hasher = PasswordHasher(cost=10)

    def test_hash_and_verify(self):
        encoded = self.hasher.hash("StrongP@ssw0rd!")
        assert encoded.startswith("scrypt$10$")
        assert "StrongP@ssw0rd!" not in encoded
        assert self.hasher.verify("StrongP@ssw0rd!", encoded)
        assert not self.hasher.verify("WrongP@ssw0rd!", encoded)

    def test_salted(self):
        assert self.hasher.hash("StrongP@ssw0rd!") != self.hasher.hash("StrongP@ssw0rd!")

    def test_malformed_hash_does_not_verify(self):
        assert not self.hasher.verify("anything", "not-a-hash")
        assert not self.hasher.verify("anything", "bcrypt$10$8$1$00$00")

    def test_minimum_cost(self):
        with pytest.raises(ValueError):
            PasswordHasher(cost=9)


class TestCookies:
    """Test session cookie formatting and parsing"""

    def test_cookie_attributes(self):
        assert build_session_cookie("session", "tok", 3600) == \
            "session=tok; Path=/; HttpOnly; SameSite=Strict; Max-Age=3600"

    def test_parse_cookie_header(self):
        assert parse_cookie_header("theme=dark; session=abc.def-ghi") == {
            "theme": "dark", "session": "abc.def-ghi"
        }
        assert parse_cookie_header(None) == {}
        assert parse_cookie_header("") == {}

    def test_malformed_neighbour_cookies(self):
        assert parse_cookie_header('prefs={"a":1}; session=abc')["session"] == "abc"
        assert parse_cookie_header("a:b=1; session=abc")["session"] == "abc"


class TestJwtSecret:
    """Test session signing secret loading"""

    def test_development_default_allowed_outside_production(self):
        config = make_config(jwt_secret=DEVELOPMENT_JWT_SECRET)
        assert load_jwt_secret(config) == DEVELOPMENT_JWT_SECRET

    def test_production_fails_closed(self):
        for secret in [DEVELOPMENT_JWT_SECRET, ""]:
            config = make_config(node_env="production", jwt_secret=secret)
            with pytest.raises(KeyConfigurationError):
                IdentityManager(InMemoryStorage(), CryptoService.from_config(config), config)

    def test_production_with_secret(self):
        config = make_config(node_env="production")
        assert load_jwt_secret(config) == config.jwt_secret


class TestSignup:
    """Test user registration"""

    def setup_method(self):
        self.config = make_config()
        self.storage = InMemoryStorage()
        self.crypto = CryptoService.from_config(self.config)
        self.identity = IdentityManager(self.storage, self.crypto, self.config)

    def test_signup_creates_user_and_session(self):
        result = self.identity.signup(make_signup_data())

        assert result.user.id is not None
        assert result.user.email == "jane@example.com"
        assert result.cookie.startswith(f"session={result.token};")
        assert self.storage.find_one("sessions", {"token": result.token}) is not None

    def test_ssn_is_encrypted_and_indexed(self):
        result = self.identity.signup(make_signup_data())
        row = self.storage.find_one("users", {"id": result.user.id})

        assert "123456789" not in row["ssn"]
        assert "123-45-6789" not in row["ssn"]
        assert row["ssn_hash"] == self.crypto.hash("123456789")
        assert self.identity.decrypt_ssn(result.user) == "123456789"

    def test_password_is_hashed(self):
        result = self.identity.signup(make_signup_data())
        assert result.user.password != "StrongP@ssw0rd!"
        assert self.identity.hasher.verify("StrongP@ssw0rd!", result.user.password)

    def test_public_dict_hides_secrets(self):
        user = self.identity.signup(make_signup_data()).user
        public = user.to_public_dict()
        assert "password" not in public
        assert "ssn" not in public
        assert "ssn_hash" not in public
        assert public["date_of_birth"] == "1990-01-15"

    def test_email_is_normalized(self):
        user = self.identity.signup(make_signup_data(email="  Jane@Example.com ")).user
        assert user.email == "jane@example.com"

    def test_duplicate_email(self):
        self.identity.signup(make_signup_data())
        with pytest.raises(ConflictError) as exc_info:
            self.identity.signup(make_signup_data(ssn="987-65-4321"))
        assert exc_info.value.message == "User already exists"

    def test_duplicate_ssn(self):
        self.identity.signup(make_signup_data())
        with pytest.raises(ConflictError) as exc_info:
            self.identity.signup(make_signup_data(email="john@example.com", ssn="123456789"))
        assert exc_info.value.message == "An account with this SSN already exists"

    def test_validation_reports_every_field(self):
        data = make_signup_data(
            email="bad", password="password", date_of_birth="2999-01-01",
            phone_number="123", state="XX", zip_code="1", ssn="12", first_name=" ",
        )
        with pytest.raises(ValidationError) as exc_info:
            self.identity.signup(data)

        errors = exc_info.value.field_errors
        assert set(errors) == {
            "email", "password", "date_of_birth", "phone_number", "state", "zip_code", "ssn", "first_name"
        }
        assert errors["date_of_birth"] == "Date of birth cannot be in the future"
        assert "Password is too common" in errors["password"]
        assert self.storage.find("users") == []


class TestLoginAndSessions:
    """Test login, single-session policy and context resolution"""

    def setup_method(self):
        self.config = make_config()
        self.storage = InMemoryStorage()
        self.identity = IdentityManager(self.storage, CryptoService.from_config(self.config), self.config)
        self.user = self.identity.signup(make_signup_data()).user

    def expire_session_in(self, token, delta):
        row = self.storage.find_one("sessions", {"token": token})
        self.storage.update("sessions", row["id"], {"expires_at": datetime.now(timezone.utc) + delta})

    def test_login(self):
        result = self.identity.login("jane@example.com", "StrongP@ssw0rd!")
        assert result.user.id == self.user.id
        context = self.identity.resolve_token(result.token)
        assert context.is_authenticated
        assert context.user.id == self.user.id

    def test_login_is_case_insensitive_on_email(self):
        assert self.identity.login("JANE@example.com", "StrongP@ssw0rd!").user.id == self.user.id

    def test_wrong_password_and_unknown_email_fail_identically(self):
        with pytest.raises(UnauthorizedError) as wrong_password:
            self.identity.login("jane@example.com", "WrongP@ssw0rd!")
        with pytest.raises(UnauthorizedError) as unknown_email:
            self.identity.login("nobody@example.com", "StrongP@ssw0rd!")
        assert wrong_password.value.message == unknown_email.value.message == "Invalid credentials"

    def test_only_latest_login_resolves(self):
        first = self.identity.login("jane@example.com", "StrongP@ssw0rd!")
        second = self.identity.login("jane@example.com", "StrongP@ssw0rd!")

        assert not self.identity.resolve_token(first.token).is_authenticated
        assert self.identity.resolve_token(second.token).is_authenticated
        assert len(self.storage.find("sessions", {"user_id": self.user.id})) == 1

    def test_build_context_from_cookie_header(self):
        result = self.identity.login("jane@example.com", "StrongP@ssw0rd!")
        context = self.identity.build_context(f"theme=dark; session={result.token}")
        assert context.user.id == self.user.id
        assert context.set_cookie is None

    def test_malformed_neighbour_cookie_keeps_session(self):
        result = self.identity.login("jane@example.com", "StrongP@ssw0rd!")
        context = self.identity.build_context('prefs={"a":1}; session=' + result.token)
        assert context.user.id == self.user.id

    def test_missing_or_garbage_cookie(self):
        assert not self.identity.build_context(None).is_authenticated
        assert not self.identity.build_context("session=garbage").is_authenticated

    def test_token_signed_with_other_secret(self):
        token = jwt.encode({"user_id": self.user.id, "exp": datetime.now(timezone.utc) + timedelta(days=1)},
                           "another-secret-that-is-long-enough-for-hs256", algorithm="HS256")
        assert not self.identity.resolve_token(token).is_authenticated

    def test_session_renewed_below_threshold(self):
        result = self.identity.login("jane@example.com", "StrongP@ssw0rd!")
        self.expire_session_in(result.token, timedelta(minutes=10))

        context = self.identity.resolve_token(result.token)

        assert context.is_authenticated
        assert context.set_cookie == build_session_cookie("session", result.token, 3600)
        row = self.storage.find_one("sessions", {"token": result.token})
        remaining = datetime.fromisoformat(row["expires_at"]) - datetime.now(timezone.utc)
        assert remaining > timedelta(minutes=59)

    def test_session_not_renewed_above_threshold(self):
        result = self.identity.login("jane@example.com", "StrongP@ssw0rd!")
        self.expire_session_in(result.token, timedelta(minutes=45))
        context = self.identity.resolve_token(result.token)
        assert context.is_authenticated
        assert context.set_cookie is None

    def test_session_inside_safety_window_is_rejected(self):
        result = self.identity.login("jane@example.com", "StrongP@ssw0rd!")
        self.expire_session_in(result.token, timedelta(seconds=60))
        assert not self.identity.resolve_token(result.token).is_authenticated

    def test_expired_session_is_rejected(self):
        result = self.identity.login("jane@example.com", "StrongP@ssw0rd!")
        self.expire_session_in(result.token, timedelta(minutes=-5))
        assert not self.identity.resolve_token(result.token).is_authenticated

    def test_token_near_its_own_expiry_is_rejected(self):
        now = datetime.now(timezone.utc)
        token = jwt.encode({"user_id": self.user.id, "exp": now + timedelta(seconds=30)},
                           self.config.jwt_secret, algorithm="HS256")
        self.storage.insert("sessions", {
            "user_id": self.user.id, "token": token,
            "expires_at": now + timedelta(hours=1), "created_at": now,
        })
        assert not self.identity.resolve_token(token).is_authenticated

    def test_logout(self):
        result = self.identity.login("jane@example.com", "StrongP@ssw0rd!")
        context = self.identity.resolve_token(result.token)

        cookie = self.identity.logout(context)

        assert cookie.startswith("session=;")
        assert "Max-Age=0" in cookie
        assert not self.identity.resolve_token(result.token).is_authenticated

    def test_logout_without_session(self):
        assert "Max-Age=0" in self.identity.logout(RequestContext())

    def test_require_user(self):
        with pytest.raises(UnauthorizedError):
            self.identity.require_user(RequestContext())
        result = self.identity.login("jane@example.com", "StrongP@ssw0rd!")
        assert self.identity.require_user(self.identity.resolve_token(result.token)).id == self.user.id
