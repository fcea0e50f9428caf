"""Tests for the password strength policy."""

import pytest

from adoptly.service.password_policy import COMMON_PASSWORDS, PasswordPolicy


@pytest.fixture
def policy():
    return PasswordPolicy()


class TestIsValidPassword:
    """Length, character-class and common-password rules."""

    @pytest.mark.parametrize(
        "password",
        ["Senha@123", "Abcdefg1", "abcdefg1!", "ABCDEFG1!", "Passw0rd!", "x" * 120 + "Y1"],
    )
    def test_accepts_three_or_more_classes(self, policy, password):
        assert policy.is_valid_password(password)

    @pytest.mark.parametrize(
        "password",
        [None, "", "        ", "Ab1!", "abcdefgh", "abcdefg1", "ABCDEFGH!", "12345678"],
    )
    def test_rejects_missing_short_or_simple(self, policy, password):
        assert not policy.is_valid_password(password)

    def test_length_bounds_are_inclusive(self, policy):
        assert policy.is_valid_password("Abcdef1!")
        assert policy.is_valid_password("Ab1!" + "a" * 124)
        assert not policy.is_valid_password("Ab1!" + "a" * 125)

    def test_common_password_rejected_case_insensitively(self, policy):
        assert "password123" in COMMON_PASSWORDS
        # Password123 has three classes but is on the list
        assert not policy.is_valid_password("Password123")
        assert not policy.is_valid_password("PASSWORD123")

    def test_classes_counted_anywhere_in_string(self, policy):
        assert policy.is_valid_password("1!abcdefgh")
        assert policy.is_valid_password("abcdefgh1!")


class TestComplexityScore:
    def test_counts_each_class_once(self):
        assert PasswordPolicy.complexity_score("aaaa") == 1
        assert PasswordPolicy.complexity_score("aA") == 2
        assert PasswordPolicy.complexity_score("aA1") == 3
        assert PasswordPolicy.complexity_score("aA1!") == 4

    def test_unlisted_symbols_do_not_count_as_special(self):
        assert PasswordPolicy.complexity_score("aA_~") == 2


class TestCommonPatterns:
    @pytest.mark.parametrize("password", ["Abc123!x", "myQwerty!1", "Zaaa!bc1", "asdf1234"])
    def test_detects_patterns(self, password):
        assert PasswordPolicy.has_common_pattern(password)

    def test_plain_password_has_no_pattern(self):
        assert not PasswordPolicy.has_common_pattern("Tr0ub4dor&Horse")

    def test_pattern_does_not_make_password_invalid(self, policy):
        assert policy.is_valid_password("Senha@123")
        assert policy.has_common_pattern("Senha@123")


class TestWeaknesses:
    def test_missing_password(self, policy):
        assert policy.weaknesses(None) == ["A senha é obrigatória"]

    def test_short_and_simple(self, policy):
        hints = policy.weaknesses("abc")
        assert any("8 caracteres" in h for h in hints)
        assert any("3 tipos" in h for h in hints)

    def test_common_password_hint(self, policy):
        assert "Esta senha é muito comum" in policy.weaknesses("Password123")

    def test_strong_password_has_no_hints(self, policy):
        assert policy.weaknesses("Tr0ub4dor&Horse") == []

    def test_description_names_limits(self, policy):
        assert "8" in policy.description and "128" in policy.description
