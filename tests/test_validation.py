"""
Tests for input validators
"""

from datetime import date

from secure_bank.validation import (
    calculate_age, is_valid_bank_account_number, is_valid_card_number,
    is_valid_routing_number, normalize_phone_number, normalize_ssn,
    validate_date_of_birth, validate_email, validate_password,
    validate_phone_number, validate_ssn, validate_state, validate_zip_code,
)


def to_arabic_indic(digits):
    return digits.translate(str.maketrans("0123456789", "\u0660\u0661\u0662\u0663\u0664\u0665\u0666\u0667\u0668\u0669"))


class TestEmailValidation:
    """Test email format and typo checks"""

    def test_valid_email(self):
        assert validate_email("test@example.com").valid

    def test_invalid_formats(self):
        for value in ["invalid-email", "test@", "@example.com", "a b@example.com"]:
            result = validate_email(value)
            assert not result.valid
            assert result.message == "Invalid email address"

    def test_tld_typo_suggestion(self):
        result = validate_email("test@example.con")
        assert not result.valid
        assert result.message == "Did you mean test@example.com?"

    def test_domain_typo_suggestion(self):
        result = validate_email("jane@gamil.com")
        assert not result.valid
        assert result.message == "Did you mean jane@gmail.com?"

    def test_typo_check_is_case_insensitive(self):
        assert not validate_email("test@example.CON").valid


class TestDateOfBirthValidation:
    """Test date of birth rules"""

    today = date(2024, 6, 15)

    def test_valid_adult(self):
        assert validate_date_of_birth("1990-01-01", today=self.today).valid

    def test_invalid_format(self):
        for value in ["01/15/1990", "1990-1-5", "not a date", ""]:
            result = validate_date_of_birth(value, today=self.today)
            assert not result.valid
            assert result.message == "Date of birth must be a valid date"

    def test_fullwidth_digits_rejected(self):
        result = validate_date_of_birth("\uff11\uff19\uff19\uff10-01-01", today=self.today)
        assert result.message == "Date of birth must be a valid date"

    def test_impossible_calendar_date(self):
        result = validate_date_of_birth("1990-02-30", today=self.today)
        assert result.message == "Date of birth must be a valid date"

    def test_future_date(self):
        result = validate_date_of_birth("2024-06-16", today=self.today)
        assert not result.valid
        assert result.message == "Date of birth cannot be in the future"

    def test_exactly_eighteen_is_valid(self):
        assert validate_date_of_birth("2006-06-15", today=self.today).valid

    def test_one_day_short_of_eighteen(self):
        result = validate_date_of_birth("2006-06-16", today=self.today)
        assert not result.valid
        assert result.message == "You must be at least 18 years old"

    def test_over_max_age(self):
        result = validate_date_of_birth("1900-01-01", today=self.today)
        assert not result.valid
        assert result.message == "Age must be 120 or younger"

    def test_leap_day_birthday(self):
        # Turns 18 on March 1st in non-leap years
        assert calculate_age(date(2004, 2, 29), date(2022, 2, 28)) == 17
        assert calculate_age(date(2004, 2, 29), date(2022, 3, 1)) == 18


class TestPasswordValidation:
    """Test password strength rules"""

    def test_strong_password(self):
        result = validate_password("StrongP@ssw0rd!")
        assert result.valid
        assert result.errors == []

    def test_common_password_reports_all_failures(self):
        result = validate_password("password")
        assert not result.valid
        assert "Password must be at least 12 characters" in result.errors
        assert "Password is too common" in result.errors
        assert "Password must contain an uppercase letter" in result.errors

    def test_missing_character_classes(self):
        result = validate_password("abcdefghijkl")
        assert result.errors == [
            "Password must contain an uppercase letter",
            "Password must contain a number",
            "Password must contain a symbol",
        ]

    def test_missing_lowercase(self):
        result = validate_password("ABCDEFGHIJK1!")
        assert result.errors == ["Password must contain a lowercase letter"]


class TestFundingInstrumentValidation:
    """Test card, bank account and routing number checks"""

    def test_luhn_valid_card(self):
        assert is_valid_card_number("4532015112830366")

    def test_luhn_invalid_card(self):
        assert not is_valid_card_number("4532015112830367")

    def test_card_separators_are_ignored(self):
        assert is_valid_card_number("4532 0151 1283 0366")
        assert is_valid_card_number("4532-0151-1283-0366")

    def test_card_length_bounds(self):
        assert not is_valid_card_number("0" * 12)
        assert is_valid_card_number("0" * 13)
        assert not is_valid_card_number("0" * 20)
        assert not is_valid_card_number("4532abcd12830366")

    def test_bank_account_number(self):
        assert is_valid_bank_account_number("1234")
        assert is_valid_bank_account_number("1" * 17)
        assert not is_valid_bank_account_number("123")
        assert not is_valid_bank_account_number("1" * 18)
        assert not is_valid_bank_account_number("12a4")

    def test_routing_number(self):
        assert is_valid_routing_number("021000021")
        assert not is_valid_routing_number("02100002")
        assert not is_valid_routing_number("02100002a")

    def test_non_ascii_digits_rejected(self):
        assert not is_valid_card_number(to_arabic_indic("4532015112830366"))
        assert not is_valid_bank_account_number(to_arabic_indic("123456789"))
        assert not is_valid_routing_number(to_arabic_indic("021000021"))


class TestContactValidation:
    """Test state, phone, ZIP and SSN checks"""

    def test_state_codes(self):
        assert validate_state("CA").valid
        assert validate_state("ny").valid
        result = validate_state("XX")
        assert not result.valid
        assert result.message == "Invalid state code"
        assert not validate_state("Califorina").valid

    def test_phone_numbers(self):
        assert validate_phone_number("+14155552671").valid
        assert validate_phone_number("14155552671").valid
        assert validate_phone_number("(415) 555-2671").valid
        result = validate_phone_number("123")
        assert not result.valid
        assert result.message == "Invalid phone number (E.164 format expected)"
        assert not validate_phone_number("abc").valid

    def test_phone_normalization(self):
        assert normalize_phone_number("+1 (415) 555-2671") == "+14155552671"

    def test_zip_codes(self):
        assert validate_zip_code("94105").valid
        assert validate_zip_code("94105-1234").valid
        assert not validate_zip_code("9410").valid

    def test_ssn(self):
        assert validate_ssn("123-45-6789").valid
        assert validate_ssn("123456789").valid
        result = validate_ssn("12345678")
        assert not result.valid
        assert result.message == "SSN must be 9 digits"
        assert normalize_ssn("123-45-6789") == "123456789"
