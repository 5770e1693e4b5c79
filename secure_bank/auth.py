"""
Identity and Session Management Module

User signup and login, password hashing, and cookie-based sessions with a
single-active-session policy and sliding expiration.

Sessions pair a signed token (JWT) with a stored session row. A request is
authenticated only while both are valid; the stored expiry slides forward
while the user stays active.
"""

import hashlib
import hmac
import secrets
from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone
from typing import Any, Dict, Optional

import jwt
from starlette.requests import cookie_parser

from .config import DEVELOPMENT_JWT_SECRET, BankConfig
from .encryption import CryptoService, KeyConfigurationError
from .errors import ConflictError, InternalError, UnauthorizedError, ValidationError
from .logging_config import get_logger, log_action
from .storage import StorageInterface, StorageRecord
from .validation import (
    normalize_phone_number, normalize_ssn, validate_date_of_birth, validate_email,
    validate_password, validate_phone_number, validate_ssn, validate_state,
    validate_zip_code,
)

INVALID_CREDENTIALS = "Invalid credentials"


@dataclass
class User(StorageRecord):
    """Bank customer. ssn holds the encrypted envelope, never plaintext."""
    email: str
    password: str
    first_name: str
    last_name: str
    phone_number: str
    date_of_birth: date
    ssn: str
    ssn_hash: Optional[str]
    address: str
    city: str
    state: str
    zip_code: str

    def to_public_dict(self) -> Dict[str, Any]:
        """Representation safe to return to clients (no password or SSN fields)"""
        return {
            "id": self.id,
            "email": self.email,
            "first_name": self.first_name,
            "last_name": self.last_name,
            "phone_number": self.phone_number,
            "date_of_birth": self.date_of_birth.isoformat(),
            "address": self.address,
            "city": self.city,
            "state": self.state,
            "zip_code": self.zip_code,
            "created_at": self.created_at.isoformat(),
        }


@dataclass
class Session(StorageRecord):
    """Login session keyed by its signed token"""
    user_id: int
    token: str
    expires_at: datetime

    def remaining(self, now: datetime) -> timedelta:
        return self.expires_at - now


@dataclass
class SignupData:
    """Fields accepted by signup"""
    email: str
    password: str
    first_name: str
    last_name: str
    phone_number: str
    date_of_birth: str
    ssn: str
    address: str
    city: str
    state: str
    zip_code: str


@dataclass
class AuthResult:
    """Outcome of signup or login"""
    user: User
    token: str
    cookie: str


@dataclass
class RequestContext:
    """Per-request identity, built from the raw cookie header"""
    user: Optional[User] = None
    token: Optional[str] = None
    # Set-Cookie value to send back when the session was renewed
    set_cookie: Optional[str] = None

    @property
    def is_authenticated(self) -> bool:
        return self.user is not None


class PasswordHasher:
    """Salted scrypt password hashing, encoded as scrypt$cost$r$p$salt$hash"""

    MIN_COST = 10
    R = 8
    P = 1
    SALT_BYTES = 16
    MAX_MEMORY = 64 * 1024 * 1024

    def __init__(self, cost: int = 14):
        if cost < self.MIN_COST:
            raise ValueError(f"Password hash cost must be at least {self.MIN_COST}")
        self.cost = cost

    def _derive(self, password: str, salt: bytes, cost: int, r: int, p: int) -> bytes:
        return hashlib.scrypt(
            password.encode('utf-8'),
            salt=salt,
            n=2 ** cost, r=r, p=p,
            maxmem=self.MAX_MEMORY
        )

    def hash(self, password: str) -> str:
        salt = secrets.token_bytes(self.SALT_BYTES)
        derived = self._derive(password, salt, self.cost, self.R, self.P)
        return f"scrypt${self.cost}${self.R}${self.P}${salt.hex()}${derived.hex()}"

    def verify(self, password: str, encoded: str) -> bool:
        try:
            scheme, cost, r, p, salt_hex, hash_hex = encoded.split("$")
            if scheme != "scrypt":
                return False
            derived = self._derive(password, bytes.fromhex(salt_hex), int(cost), int(r), int(p))
        except ValueError:
            return False
        return hmac.compare_digest(derived.hex(), hash_hex)


def build_session_cookie(name: str, token: str, max_age: int) -> str:
    return f"{name}={token}; Path=/; HttpOnly; SameSite=Strict; Max-Age={max_age}"


def parse_cookie_header(cookie_header: Optional[str]) -> Dict[str, str]:
    """Parse a Cookie header into name -> value; malformed pairs do not hide the rest"""
    if not cookie_header:
        return {}
    return cookie_parser(cookie_header)


def load_jwt_secret(config: BankConfig) -> str:
    """Session signing secret; production refuses the development default"""
    if config.is_production and config.jwt_secret in ("", DEVELOPMENT_JWT_SECRET):
        raise KeyConfigurationError("JWT_SECRET must be set in production")
    return config.jwt_secret


def _parse_timestamp(value: str) -> datetime:
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


class IdentityManager:
    """
    Signup, login/logout and per-request session resolution
    """

    def __init__(self, storage: StorageInterface, crypto: CryptoService, config: BankConfig):
        self.storage = storage
        self.crypto = crypto
        self.config = config
        self.hasher = PasswordHasher(config.password_hash_cost)
        self.jwt_secret = load_jwt_secret(config)
        self.users_table = "users"
        self.sessions_table = "sessions"
        self.logger = get_logger("secure_bank.auth")
        self._dummy_hash: Optional[str] = None

    @property
    def session_ttl(self) -> timedelta:
        return timedelta(minutes=self.config.session_ttl_minutes)

    @property
    def session_max_age(self) -> int:
        return int(self.session_ttl.total_seconds())

    # Signup / login

    def signup(self, data: SignupData) -> AuthResult:
        """
        Register a user and open their first session.

        Raises:
            ValidationError: one or more fields failed validation
            ConflictError: email or SSN already registered
        """
        self._validate_signup(data)

        email = data.email.strip().lower()
        if self.storage.find_one(self.users_table, {"email": email}):
            raise ConflictError("User already exists")

        ssn = normalize_ssn(data.ssn)
        ssn_hash = self.crypto.hash(ssn)
        if self.storage.find_one(self.users_table, {"ssn_hash": ssn_hash}):
            raise ConflictError("An account with this SSN already exists")

        now = datetime.now(timezone.utc)
        row = self.storage.insert(self.users_table, {
            "email": email,
            "password": self.hasher.hash(data.password),
            "first_name": data.first_name.strip(),
            "last_name": data.last_name.strip(),
            "phone_number": normalize_phone_number(data.phone_number),
            "date_of_birth": data.date_of_birth,
            "ssn": self.crypto.encrypt(ssn),
            "ssn_hash": ssn_hash,
            "address": data.address.strip(),
            "city": data.city.strip(),
            "state": data.state.upper(),
            "zip_code": data.zip_code.strip(),
            "created_at": now,
        })
        if not row:
            raise InternalError("Failed to create user")
        user = self._user_from_row(row)

        log_action(self.logger, "info", "User signed up",
                   user_id=user.id, action="signup", resource="user")

        token, cookie = self._open_session(user)
        return AuthResult(user=user, token=token, cookie=cookie)

    def login(self, email: str, password: str) -> AuthResult:
        """
        Verify credentials and replace any existing sessions with a new one.

        Unknown email and wrong password fail identically.
        """
        row = self.storage.find_one(self.users_table, {"email": email.strip().lower()})
        if row is None:
            # Spend the same hashing work so timing does not reveal unknown emails
            self.hasher.verify(password, self._get_dummy_hash())
            log_action(self.logger, "warning", "Login failed", action="login_failed", resource="session")
            raise UnauthorizedError(INVALID_CREDENTIALS)

        user = self._user_from_row(row)
        if not self.hasher.verify(password, user.password):
            log_action(self.logger, "warning", "Login failed",
                       user_id=user.id, action="login_failed", resource="session")
            raise UnauthorizedError(INVALID_CREDENTIALS)

        token, cookie = self._open_session(user)
        log_action(self.logger, "info", "User logged in",
                   user_id=user.id, action="login", resource="session")
        return AuthResult(user=user, token=token, cookie=cookie)

    def logout(self, context: RequestContext) -> str:
        """End the current session; returns a Set-Cookie value clearing the cookie"""
        if context.token:
            removed = self.storage.delete(self.sessions_table, {"token": context.token})
            if removed:
                log_action(self.logger, "info", "User logged out",
                           user_id=context.user.id if context.user else None,
                           action="logout", resource="session")
        return build_session_cookie(self.config.session_cookie_name, "", 0)

    # Request context

    def build_context(self, cookie_header: Optional[str]) -> RequestContext:
        """Resolve the session cookie from a raw Cookie header"""
        token = parse_cookie_header(cookie_header).get(self.config.session_cookie_name)
        if not token:
            return RequestContext()
        return self.resolve_token(token)

    def resolve_token(self, token: str) -> RequestContext:
        """
        Resolve a session token to its user, renewing the session when it is
        close to expiring. Any failure yields an unauthenticated context.
        """
        now = datetime.now(timezone.utc)
        safety_window = timedelta(seconds=self.config.session_safety_window_seconds)

        try:
            claims = jwt.decode(token, self.jwt_secret, algorithms=[self.config.jwt_algorithm])
        except jwt.InvalidTokenError:
            return RequestContext()

        token_expiry = datetime.fromtimestamp(claims.get("exp", 0), tz=timezone.utc)
        if token_expiry <= now + safety_window:
            return RequestContext()

        row = self.storage.find_one(self.sessions_table, {"token": token})
        if row is None:
            return RequestContext()
        session = self._session_from_row(row)

        if session.expires_at <= now + safety_window:
            return RequestContext()
        if claims.get("user_id") != session.user_id:
            return RequestContext()

        user = self.get_user(session.user_id)
        if user is None:
            return RequestContext()

        context = RequestContext(user=user, token=token)

        threshold = timedelta(minutes=self.config.session_renewal_threshold_minutes)
        if session.remaining(now) < threshold:
            context.set_cookie = self._renew_session(session, now)

        return context

    def require_user(self, context: RequestContext) -> User:
        """Gate for protected procedures"""
        if context.user is None:
            raise UnauthorizedError()
        return context.user

    # Users

    def get_user(self, user_id: int) -> Optional[User]:
        row = self.storage.find_one(self.users_table, {"id": user_id})
        return self._user_from_row(row) if row else None

    def decrypt_ssn(self, user: User) -> str:
        """Plaintext SSN; decryption failures propagate"""
        return self.crypto.decrypt(user.ssn)

    # Private helpers

    def _validate_signup(self, data: SignupData) -> None:
        errors: Dict[str, str] = {}

        for name in ("first_name", "last_name", "address", "city"):
            if not getattr(data, name).strip():
                errors[name] = f"{name.replace('_', ' ').capitalize()} is required"

        checks = {
            "email": validate_email(data.email.strip()),
            "date_of_birth": validate_date_of_birth(data.date_of_birth),
            "phone_number": validate_phone_number(data.phone_number),
            "state": validate_state(data.state),
            "zip_code": validate_zip_code(data.zip_code.strip()),
            "ssn": validate_ssn(data.ssn),
        }
        for name, result in checks.items():
            if not result.valid:
                errors[name] = result.message

        password = validate_password(data.password)
        if not password.valid:
            errors["password"] = "; ".join(password.errors)

        if errors:
            raise ValidationError(field_errors=errors)

    def _issue_token(self, user: User, now: datetime) -> str:
        claims = {
            "user_id": user.id,
            "jti": secrets.token_urlsafe(32),
            "iat": now,
            "exp": now + timedelta(days=self.config.token_lifetime_days),
        }
        return jwt.encode(claims, self.jwt_secret, algorithm=self.config.jwt_algorithm)

    def _open_session(self, user: User):
        """Delete the user's sessions and create a fresh one, atomically"""
        now = datetime.now(timezone.utc)
        token = self._issue_token(user, now)

        with self.storage.atomic():
            self.storage.delete(self.sessions_table, {"user_id": user.id})
            row = self.storage.insert(self.sessions_table, {
                "user_id": user.id,
                "token": token,
                "expires_at": now + self.session_ttl,
                "created_at": now,
            })
            if not row:
                raise InternalError("Failed to create session")

        return token, build_session_cookie(self.config.session_cookie_name, token, self.session_max_age)

    def _renew_session(self, session: Session, now: datetime) -> Optional[str]:
        """Slide the session expiry forward; best effort"""
        new_expiry = now + self.session_ttl
        try:
            updated = self.storage.update(self.sessions_table, session.id, {"expires_at": new_expiry})
        except Exception as e:
            self.logger.warning(f"Session renewal failed for user {session.user_id}: {e}")
            return None
        if updated is None:
            return None
        return build_session_cookie(self.config.session_cookie_name, session.token, self.session_max_age)

    def _get_dummy_hash(self) -> str:
        if self._dummy_hash is None:
            self._dummy_hash = self.hasher.hash(secrets.token_urlsafe(16))
        return self._dummy_hash

    def _user_from_row(self, data: Dict[str, Any]) -> User:
        return User(
            id=data['id'],
            created_at=_parse_timestamp(data['created_at']),
            email=data['email'],
            password=data['password'],
            first_name=data['first_name'],
            last_name=data['last_name'],
            phone_number=data['phone_number'],
            date_of_birth=date.fromisoformat(data['date_of_birth']),
            ssn=data['ssn'],
            ssn_hash=data.get('ssn_hash'),
            address=data['address'],
            city=data['city'],
            state=data['state'],
            zip_code=data['zip_code'],
        )

    def _session_from_row(self, data: Dict[str, Any]) -> Session:
        return Session(
            id=data['id'],
            created_at=_parse_timestamp(data['created_at']),
            user_id=data['user_id'],
            token=data['token'],
            expires_at=_parse_timestamp(data['expires_at']),
        )
