"""Input validation for account registration."""

import re


class PasswordValidator:
    """Validate password strength and complexity."""

    MIN_LENGTH = 8
    MAX_LENGTH = 128

    SPECIAL_CHARS = "!@#$%^&*(),.?\":{}|<>_-+=[];'/\\~`"

    COMMON_PASSWORDS = {
        "password",
        "12345678",
        "qwerty123",
        "letmein",
        "iloveyou",
        "passw0rd",
        "welcome1",
        "student123",
        "teacher123",
    }

    @classmethod
    def validate(cls, password: str) -> tuple[bool, str | None]:
        """
        Validate password strength.

        Returns:
            Tuple of (is_valid, error_message)
        """
        if len(password) < cls.MIN_LENGTH:
            return False, f"Password must be at least {cls.MIN_LENGTH} characters long"

        if len(password) > cls.MAX_LENGTH:
            return False, f"Password must not exceed {cls.MAX_LENGTH} characters"

        if password.lower() in cls.COMMON_PASSWORDS:
            return (
                False,
                "This password is too common. Please choose a stronger password",
            )

        if not re.search(r"[a-z]", password):
            return False, "Password must contain at least one lowercase letter"

        if not re.search(r"[A-Z]", password):
            return False, "Password must contain at least one uppercase letter"

        if not re.search(r"\d", password):
            return False, "Password must contain at least one digit"

        if not any(c in cls.SPECIAL_CHARS for c in password):
            return False, "Password must contain at least one special character"

        return True, None


class UsnValidator:
    """University seat number, e.g. ``1RV24CS001``."""

    # region digit, college code, admission year, branch code, roll number
    VALID_PATTERN = re.compile(r"^[0-9][A-Z]{2}\d{2}[A-Z]{2,3}\d{3}$")

    @classmethod
    def validate(cls, usn: str) -> tuple[bool, str | None]:
        if not cls.VALID_PATTERN.match(usn.upper()):
            return False, "Invalid USN format. Expected format: 1RV24CS001"
        return True, None


EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
BRANCH_PATTERN = re.compile(r"^[a-z]{2,10}$")
SECTION_PATTERN = re.compile(r"^[a-z]$")


def sanitize_string(value: str, max_length: int = 1000) -> str:
    """
    Sanitize string input by removing markup and control content.

    Args:
        value: String to sanitize
        max_length: Maximum allowed length

    Returns:
        Sanitized string
    """
    if not value:
        return ""

    value = value[:max_length]
    value = value.replace("\x00", "")
    value = re.sub(r"<[^>]*>", "", value)
    return value.strip()


def validate_email(value: str) -> str:
    value = value.strip().lower()
    if not EMAIL_PATTERN.match(value):
        raise ValueError("Invalid email format")
    return value


def validate_branch(value: str) -> str:
    value = value.strip().lower()
    if not BRANCH_PATTERN.match(value):
        raise ValueError("Branch must be 2-10 letters")
    return value


def validate_section(value: str) -> str:
    value = value.strip().lower()
    if not SECTION_PATTERN.match(value):
        raise ValueError("Section must be a single letter (a-z)")
    return value
