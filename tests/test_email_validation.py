"""Tests for email structure, blacklist and domain resolution checks."""

import threading
import time

import pytest

from adoptly.service.email_validation import DISPOSABLE_DOMAINS, EmailValidator, normalize_email


def _validator(resolver=lambda domain: True, **kwargs):
    return EmailValidator(resolver=resolver, **kwargs)


class TestFormat:
    @pytest.mark.parametrize(
        "email",
        ["ana@example.com", "ana.silva+pets@abrigo.org.br", "joao_1@sub.domain.io"],
    )
    def test_accepts_well_formed(self, email):
        assert _validator().is_valid_email(email)

    @pytest.mark.parametrize(
        "email",
        [None, "", "   ", "plainaddress", "@example.com", "ana@", "ana@localhost", "ana@@example.com",
         "ana@example.c", "ana@example.toolongtld"],
    )
    def test_rejects_malformed(self, email):
        assert not _validator().is_valid_email(email)

    def test_input_is_trimmed_and_lowercased(self):
        assert normalize_email("  Ana@Example.COM ") == "ana@example.com"
        assert _validator().is_valid_email("  Ana@Example.COM ")

    def test_known_fake_addresses_rejected(self):
        validator = _validator()
        assert not validator.is_valid_email("test@test.com")
        assert not validator.is_valid_email("ADMIN@admin.com")


class TestBlacklist:
    @pytest.mark.parametrize("domain", sorted(DISPOSABLE_DOMAINS))
    def test_disposable_domains_rejected(self, domain):
        assert not _validator().is_valid_email(f"someone@{domain}")

    def test_blank_domain_counts_as_blacklisted(self):
        validator = _validator()
        assert validator.is_blacklisted_domain("")
        assert validator.is_blacklisted_domain(None)
        assert validator.is_blacklisted_domain("MAILINATOR.COM")
        assert not validator.is_blacklisted_domain("example.com")

    def test_domain_is_text_after_last_at(self):
        assert EmailValidator.extract_domain("a@b@example.com") == "example.com"
        assert EmailValidator.extract_domain("nobody") == ""


class TestDomainResolution:
    def test_unresolvable_domain_rejected(self):
        validator = _validator(resolver=lambda domain: False)
        assert not validator.is_valid_email("ana@nowhere-at-all.com")

    def test_verification_can_be_disabled(self):
        validator = _validator(resolver=lambda domain: False, verify_domains=False)
        assert validator.is_valid_email("ana@nowhere-at-all.com")

    def test_definitive_answers_are_memoized(self):
        calls = []

        def resolver(domain):
            calls.append(domain)
            return True

        validator = _validator(resolver=resolver)
        assert validator.is_valid_email("ana@example.com")
        assert validator.is_valid_email("bob@example.com")
        assert calls == ["example.com"]

    def test_timeout_rejects_and_is_not_memoized(self):
        release = threading.Event()
        calls = []

        def slow_resolver(domain):
            calls.append(domain)
            release.wait(2)
            return True

        validator = _validator(resolver=slow_resolver, dns_timeout=0.05)
        try:
            started = time.monotonic()
            assert not validator.is_domain_resolvable("slow.example")
            assert time.monotonic() - started < 1.5
            release.set()
            time.sleep(0.05)
            assert validator.is_domain_resolvable("slow.example")
            assert len(calls) == 2
        finally:
            release.set()
            validator.close()

    def test_os_error_rejects_without_memoizing(self):
        outcomes = iter([OSError("network unreachable"), True])

        def flaky(domain):
            outcome = next(outcomes)
            if isinstance(outcome, Exception):
                raise outcome
            return outcome

        validator = _validator(resolver=flaky)
        assert not validator.is_domain_resolvable("example.com")
        assert validator.is_domain_resolvable("example.com")
