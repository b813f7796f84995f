"""Tests for password hashing, verification and policy"""

from unittest.mock import patch

from werkzeug.security import generate_password_hash

from ltipapi.services.password_service import (
    COMMON_PASSWORD_MESSAGE,
    PasswordService,
)


class TestPasswordPolicy:
    def test_strong_password_has_no_violations(self):
        assert PasswordService.validate("ValidPass123!") == []

    def test_short_password_rejected(self):
        violations = PasswordService.validate("Ab1!")
        assert any("at least 8" in v for v in violations)

    def test_overlong_password_rejected(self):
        violations = PasswordService.validate("Aa1!" * 40)
        assert any("must not exceed 128" in v for v in violations)

    def test_each_character_class_required(self):
        assert any("lowercase" in v for v in PasswordService.validate("ABCDEFG1!"))
        assert any("uppercase" in v for v in PasswordService.validate("abcdefg1!"))
        assert any("digit" in v for v in PasswordService.validate("Abcdefgh!"))
        assert any("special" in v for v in PasswordService.validate("Abcdefgh1"))

    def test_common_password_flagged_case_insensitively(self):
        assert PasswordService.is_common("PASSWORD123!")
        assert COMMON_PASSWORD_MESSAGE in PasswordService.validate("Password123!")


class TestPasswordHashing:
    def test_hash_and_verify(self, app):
        password_hash = PasswordService.hash("ValidPass123!")
        assert password_hash != "ValidPass123!"

        check = PasswordService.verify("ValidPass123!", password_hash)
        assert check.valid
        assert not check.needs_rehash

    def test_wrong_password(self, app):
        password_hash = PasswordService.hash("ValidPass123!")
        assert not PasswordService.verify("WrongPass123!", password_hash).valid

    def test_outdated_hash_needs_rehash(self, app):
        old_hash = generate_password_hash("ValidPass123!", method="pbkdf2:sha256:500")
        check = PasswordService.verify("ValidPass123!", old_hash)
        assert check.valid
        assert check.needs_rehash

    def test_garbage_hash_is_not_valid(self, app):
        assert not PasswordService.verify("ValidPass123!", "not-a-hash").valid

    def test_dummy_verify_spends_one_hash(self, app):
        with patch(
            "ltipapi.services.password_service.check_password_hash",
            return_value=False,
        ) as check:
            PasswordService.dummy_verify("anything")
        assert check.call_count == 1
