"""PASSWORD SERVICE"""

from dataclasses import dataclass
import functools
import logging
import re

from werkzeug.security import check_password_hash, generate_password_hash

from ltipapi.config import get_setting

logger = logging.getLogger(__name__)

MIN_LENGTH = 8
MAX_LENGTH = 128
SPECIAL_CHARACTERS = re.compile(r"[!@#$%^&*()_+\-=\[\]{};':\"\\|,.<>/?`~]")

COMMON_PASSWORDS = frozenset(
    p.lower()
    for p in (
        "123456",
        "password",
        "12345678",
        "qwerty",
        "123456789",
        "12345",
        "1234",
        "111111",
        "1234567",
        "dragon",
        "123123",
        "baseball",
        "iloveyou",
        "trustno1",
        "sunshine",
        "master",
        "welcome",
        "shadow",
        "ashley",
        "football",
        "password1",
        "Password123",
        "Password123!",
        "Qwerty123",
        "Qwerty123!",
        "Welcome1!",
        "letmein",
        "admin",
        "abc123",
        "monkey",
        "1234567890",
    )
)

COMMON_PASSWORD_MESSAGE = (
    "This password is too common and has been found in data breaches"
)


@dataclass(frozen=True)
class PasswordCheck:
    valid: bool
    needs_rehash: bool = False


def _hash_method():
    return get_setting("PASSWORD_HASH_METHOD", "scrypt")


@functools.lru_cache(maxsize=8)
def _method_prefix(method):
    """Full parameter string werkzeug writes for ``method``."""
    return generate_password_hash("", method=method).split("$", 1)[0]


@functools.lru_cache(maxsize=8)
def _dummy_hash(method):
    return generate_password_hash("timing-equalizer", method=method)


class PasswordService:
    """Credential hashing, verification and strength policy"""

    @staticmethod
    def hash(password):
        return generate_password_hash(password, method=_hash_method())

    @staticmethod
    def verify(password, password_hash):
        """Check a password and report whether its hash should be upgraded.

        Werkzeug hashes are ``method$salt$hash``; the method segment carries
        the parameters, so any difference from the configured method means
        the stored hash was produced under older settings.
        """
        try:
            valid = check_password_hash(password_hash, password)
        except (TypeError, ValueError) as e:
            logger.warning(f"[SERVICE]: Password verification error: {e}")
            return PasswordCheck(valid=False)
        if not valid:
            return PasswordCheck(valid=False)
        stored_method = password_hash.split("$", 1)[0]
        return PasswordCheck(
            valid=True, needs_rehash=stored_method != _method_prefix(_hash_method())
        )

    @staticmethod
    def dummy_verify(password):
        """Spend one verification's worth of work on a throwaway hash.

        Used on every rejection path that never reaches a real hash so
        response times do not reveal which path was taken.
        """
        check_password_hash(_dummy_hash(_hash_method()), password or "")

    @staticmethod
    def is_common(password):
        return password.lower() in COMMON_PASSWORDS

    @staticmethod
    def validate(password):
        """Return the list of policy violations, empty when acceptable."""
        violations = []
        if len(password) < MIN_LENGTH:
            violations.append(
                f"Password must be at least {MIN_LENGTH} characters long"
            )
        if len(password) > MAX_LENGTH:
            violations.append(f"Password must not exceed {MAX_LENGTH} characters")
        if not re.search(r"[a-z]", password):
            violations.append("Password must contain at least one lowercase letter")
        if not re.search(r"[A-Z]", password):
            violations.append("Password must contain at least one uppercase letter")
        if not re.search(r"\d", password):
            violations.append("Password must contain at least one digit")
        if not SPECIAL_CHARACTERS.search(password):
            violations.append("Password must contain at least one special character")
        if PasswordService.is_common(password):
            violations.append(COMMON_PASSWORD_MESSAGE)
        return violations
