"""
Input Validation Utilities

Provides validation for user inputs:
- Order numbers (digits only, Luhn checksum)
- Logins and passwords on registration
- Monetary amounts (positive Decimal, 2 decimal places)
"""
import re
from decimal import Decimal, InvalidOperation


class ValidationPatterns:
    """Regex patterns for validation"""

    # Order numbers are externally assigned numerals, whitespace around them is tolerated
    ORDER_NUMBER = re.compile(r"^[0-9]+$")

    # Latin letters, digits and a few separators
    LOGIN = re.compile(r"^[A-Za-z0-9_.@\-]{1,64}$")


class OrderNumberValidator:
    """Order number validation (Luhn)"""

    MAX_LENGTH = 64

    @staticmethod
    def normalize(number: str) -> str:
        """Strip surrounding whitespace, the only normalization applied"""
        return (number or "").strip()

    @staticmethod
    def luhn_checksum_valid(digits: str) -> bool:
        """
        Luhn mod-10 check.

        Starting from the rightmost digit, every second digit is doubled
        (subtracting 9 when the result exceeds 9); the total must be a
        multiple of 10.
        """
        total = 0
        for index, char in enumerate(reversed(digits)):
            digit = ord(char) - ord("0")
            if index % 2 == 1:
                digit *= 2
                if digit > 9:
                    digit -= 9
            total += digit
        return total % 10 == 0

    @classmethod
    def validate(cls, number: str) -> bool:
        """
        Validate an order number.

        Args:
            number: Raw order number as received

        Returns:
            True if the trimmed value is all digits and passes Luhn
        """
        cleaned = cls.normalize(number)
        if not cleaned or len(cleaned) > cls.MAX_LENGTH:
            return False
        # str.isdigit() accepts non-ASCII digits, the regex does not
        if not ValidationPatterns.ORDER_NUMBER.match(cleaned):
            return False
        return cls.luhn_checksum_valid(cleaned)

    @staticmethod
    def mask(number: str) -> str:
        """Mask order number for logging (1234****03)"""
        if len(number) <= 6:
            return number
        return number[:4] + "****" + number[-2:]


class LoginValidator:
    """Login and password rules for registration"""

    MIN_PASSWORD_LENGTH = 1
    MAX_PASSWORD_LENGTH = 128

    @staticmethod
    def validate_login(login: str) -> tuple[bool, str | None]:
        if not login or not login.strip():
            return False, "Login is required"
        if not ValidationPatterns.LOGIN.match(login):
            return False, "Login may contain only letters, digits and _ . @ -"
        return True, None

    @classmethod
    def validate_password(cls, password: str) -> tuple[bool, str | None]:
        if password is None or len(password) < cls.MIN_PASSWORD_LENGTH:
            return False, "Password is required"
        if len(password) > cls.MAX_PASSWORD_LENGTH:
            return False, f"Password cannot exceed {cls.MAX_PASSWORD_LENGTH} characters"
        return True, None


class AmountValidator:
    """Monetary amount validation"""

    @staticmethod
    def to_decimal(amount: Decimal | float | int | str) -> Decimal:
        """
        Convert to Decimal without going through binary floats.

        Raises:
            ValueError: if the value is not a finite number
        """
        if isinstance(amount, Decimal):
            value = amount
        else:
            try:
                value = Decimal(str(amount))
            except InvalidOperation:
                raise ValueError(f"Not a number: {amount!r}")
        if not value.is_finite():
            raise ValueError(f"Not a finite number: {amount!r}")
        return value

    @classmethod
    def validate(
        cls,
        amount: Decimal | float | int | str,
        max_value: Decimal = Decimal("10000000000"),
    ) -> tuple[bool, str | None]:
        """
        Validate a credit or debit amount.

        Args:
            amount: Amount to validate
            max_value: Upper bound that fits a Numeric(12, 2) column

        Returns:
            Tuple of (is_valid, error_message)
        """
        try:
            value = cls.to_decimal(amount)
        except ValueError as e:
            return False, str(e)

        if value <= 0:
            return False, "Amount must be positive"

        if value >= max_value:
            return False, f"Amount must be below {max_value}"

        if value != value.quantize(Decimal("0.01")):
            return False, "Amount cannot have more than 2 decimal places"

        return True, None
