"""
Input Validation Module

Pure validators for signup and funding fields. No I/O, no side effects.
Each validator reports the specific reason a value was rejected.
"""

import re
from dataclasses import dataclass, field
from datetime import date
from typing import List, Optional


@dataclass(frozen=True)
class ValidationResult:
    """Outcome of a single-field check"""
    valid: bool
    message: Optional[str] = None


@dataclass(frozen=True)
class PasswordValidation:
    """Outcome of a password check; lists every violated rule"""
    valid: bool
    errors: List[str] = field(default_factory=list)


VALID = ValidationResult(True)


# Email

EMAIL_PATTERN = re.compile(r'^[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}$')
# Suffix typo -> corrected suffix
COMMON_EMAIL_TYPOS = {
    ".con": ".com",
    ".cmo": ".com",
    ".cm": ".com",
    "@gamil.com": "@gmail.com",
    "@yaho.com": "@yahoo.com",
}


def validate_email(value: str) -> ValidationResult:
    """Validate email shape and catch common domain typos"""
    if not EMAIL_PATTERN.match(value):
        return ValidationResult(False, "Invalid email address")

    lowered = value.lower()
    for typo, fix in COMMON_EMAIL_TYPOS.items():
        if lowered.endswith(typo):
            corrected = value[:-len(typo)] + fix
            return ValidationResult(False, f"Did you mean {corrected}?")

    return VALID


# Date of birth

MIN_AGE = 18
MAX_AGE = 120
DATE_PATTERN = re.compile(r'^[0-9]{4}-[0-9]{2}-[0-9]{2}$')


def calculate_age(born: date, today: date) -> int:
    """Whole years between born and today"""
    age = today.year - born.year
    if (today.month, today.day) < (born.month, born.day):
        age -= 1
    return age


def validate_date_of_birth(value: str, today: Optional[date] = None) -> ValidationResult:
    """
    Validate a YYYY-MM-DD date of birth.

    Checks, in order: format and calendar validity, not in the future,
    at least MIN_AGE, at most MAX_AGE.
    """
    invalid_date = ValidationResult(False, "Date of birth must be a valid date")
    if not DATE_PATTERN.match(value):
        return invalid_date

    year, month, day = (int(part) for part in value.split("-"))
    try:
        born = date(year, month, day)
    except ValueError:
        return invalid_date

    today = today or date.today()
    if born > today:
        return ValidationResult(False, "Date of birth cannot be in the future")

    age = calculate_age(born, today)
    if age < MIN_AGE:
        return ValidationResult(False, f"You must be at least {MIN_AGE} years old")
    if age > MAX_AGE:
        return ValidationResult(False, f"Age must be {MAX_AGE} or younger")

    return VALID


# Password

MIN_PASSWORD_LENGTH = 12
COMMON_PASSWORDS = frozenset([
    "password",
    "12345678",
    "qwerty",
    "letmein",
    "admin",
    "welcome",
    "iloveyou",
    "123456789",
    "password1",
    "abc123",
])


def validate_password(value: str) -> PasswordValidation:
    """Check password strength, collecting every violated rule"""
    errors = []

    if len(value) < MIN_PASSWORD_LENGTH:
        errors.append(f"Password must be at least {MIN_PASSWORD_LENGTH} characters")

    if value.lower() in COMMON_PASSWORDS:
        errors.append("Password is too common")

    if not re.search(r'[a-z]', value):
        errors.append("Password must contain a lowercase letter")

    if not re.search(r'[A-Z]', value):
        errors.append("Password must contain an uppercase letter")

    if not re.search(r'[0-9]', value):
        errors.append("Password must contain a number")

    if not re.search(r'[^A-Za-z0-9]', value):
        errors.append("Password must contain a symbol")

    return PasswordValidation(valid=not errors, errors=errors)


# Funding instruments

def normalize_card_number(value: str) -> str:
    return re.sub(r'[\s-]', '', value)


def is_valid_card_number(value: str) -> bool:
    """13-19 digits (spaces and dashes ignored) passing the Luhn checksum"""
    digits = normalize_card_number(value)
    if not re.fullmatch(r'[0-9]{13,19}', digits):
        return False

    total = 0
    for position, char in enumerate(reversed(digits)):
        digit = int(char)
        # Double every second digit counting from the rightmost
        if position % 2 == 1:
            digit *= 2
            if digit > 9:
                digit -= 9
        total += digit

    return total % 10 == 0


def is_valid_bank_account_number(value: str) -> bool:
    return re.fullmatch(r'[0-9]{4,17}', value) is not None


def is_valid_routing_number(value: str) -> bool:
    return re.fullmatch(r'[0-9]{9}', value) is not None


# Contact and address

VALID_STATE_CODES = frozenset([
    "AL", "AK", "AZ", "AR", "CA", "CO", "CT", "DE", "FL", "GA",
    "HI", "ID", "IL", "IN", "IA", "KS", "KY", "LA", "ME", "MD",
    "MA", "MI", "MN", "MS", "MO", "MT", "NE", "NV", "NH", "NJ",
    "NM", "NY", "NC", "ND", "OH", "OK", "OR", "PA", "RI", "SC",
    "SD", "TN", "TX", "UT", "VT", "VA", "WA", "WV", "WI", "WY",
    "DC", "AS", "GU", "MP", "PR", "VI",
])


def validate_state(value: str) -> ValidationResult:
    if value.upper() not in VALID_STATE_CODES:
        return ValidationResult(False, "Invalid state code")
    return VALID


def normalize_phone_number(value: str) -> str:
    return re.sub(r'[\s\-().]', '', value)


def validate_phone_number(value: str) -> ValidationResult:
    """E.164-like: optional +, no leading zero, 8 to 15 digits"""
    if not re.fullmatch(r'\+?[1-9][0-9]{7,14}', normalize_phone_number(value)):
        return ValidationResult(False, "Invalid phone number (E.164 format expected)")
    return VALID


def validate_zip_code(value: str) -> ValidationResult:
    if not re.fullmatch(r'[0-9]{5}(-[0-9]{4})?', value):
        return ValidationResult(False, "Invalid ZIP code")
    return VALID


# SSN

def normalize_ssn(value: str) -> str:
    return re.sub(r'[\s-]', '', value)


def validate_ssn(value: str) -> ValidationResult:
    """Nine digits, optionally written as 123-45-6789"""
    if not re.fullmatch(r'[0-9]{3}-?[0-9]{2}-?[0-9]{4}', value.strip()):
        return ValidationResult(False, "SSN must be 9 digits")
    return VALID
