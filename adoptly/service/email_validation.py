from __future__ import annotations

import re
import socket
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from typing import Callable, Dict, Iterable, Optional

from adoptly.logging import get_logger

logger = get_logger(__name__)

EMAIL_PATTERN = re.compile(
    r"^[a-zA-Z0-9_+&*-]+(?:\.[a-zA-Z0-9_+&*-]+)*@(?:[a-zA-Z0-9-]+\.)+[a-zA-Z]{2,7}$"
)

INVALID_ADDRESSES = frozenset({"test@test.com", "admin@admin.com", "user@user.com"})

DISPOSABLE_DOMAINS = frozenset(
    {
        "10minutemail.com",
        "guerrillamail.com",
        "mailinator.com",
        "tempmail.org",
        "throwaway.email",
        "temp-mail.org",
        "yopmail.com",
        "maildrop.cc",
        "sharklasers.com",
        "trashmail.com",
        "getairmail.com",
        "dispostable.com",
    }
)


def normalize_email(email: Optional[str]) -> str:
    return (email or "").strip().lower()


def resolve_domain(domain: str) -> bool:
    """True when ``domain`` has at least one address record.

    ``socket.gaierror`` is a definitive "no"; other errors propagate so the
    caller can decide whether the answer is cacheable.
    """
    try:
        socket.getaddrinfo(domain, None)
    except (socket.gaierror, UnicodeError):
        return False
    return True


class EmailValidator:
    """Address structure, fake-address, disposable-domain and DNS checks."""

    def __init__(
        self,
        *,
        verify_domains: bool = True,
        dns_timeout: float = 3.0,
        resolver: Callable[[str], bool] = resolve_domain,
        blacklist: Iterable[str] = DISPOSABLE_DOMAINS,
        invalid_addresses: Iterable[str] = INVALID_ADDRESSES,
    ) -> None:
        self.verify_domains = verify_domains
        self.dns_timeout = dns_timeout
        self._resolver = resolver
        self.blacklist = frozenset(d.lower() for d in blacklist)
        self.invalid_addresses = frozenset(a.lower() for a in invalid_addresses)
        # domain -> resolvable; append-only, racing first writes store the same value
        self._domain_cache: Dict[str, bool] = {}
        self._executor = ThreadPoolExecutor(max_workers=4, thread_name_prefix="dns-lookup")

    def is_valid_email(self, email: Optional[str]) -> bool:
        normalized = normalize_email(email)
        if not normalized:
            return False
        if not self.is_valid_format(normalized):
            return False
        if normalized in self.invalid_addresses:
            return False
        domain = self.extract_domain(normalized)
        if self.is_blacklisted_domain(domain):
            logger.info("email_domain_blacklisted", domain=domain)
            return False
        if self.verify_domains and not self.is_domain_resolvable(domain):
            return False
        return True

    @staticmethod
    def is_valid_format(email: str) -> bool:
        return bool(EMAIL_PATTERN.match(email))

    @staticmethod
    def extract_domain(email: str) -> str:
        at = email.rfind("@")
        return email[at + 1:] if at >= 0 else ""

    def is_blacklisted_domain(self, domain: Optional[str]) -> bool:
        if not domain or not domain.strip():
            return True
        return domain.strip().lower() in self.blacklist

    def is_domain_resolvable(self, domain: str) -> bool:
        cached = self._domain_cache.get(domain)
        if cached is not None:
            return cached
        future = self._executor.submit(self._resolver, domain)
        try:
            resolvable = bool(future.result(timeout=self.dns_timeout))
        except FutureTimeoutError:
            # transient; not memoized
            logger.warning("email_domain_lookup_timeout", domain=domain, timeout=self.dns_timeout)
            return False
        except OSError as exc:
            logger.warning("email_domain_lookup_failed", domain=domain, error=str(exc))
            return False
        self._domain_cache[domain] = resolvable
        if not resolvable:
            logger.info("email_domain_unresolvable", domain=domain)
        return resolvable

    def close(self) -> None:
        self._executor.shutdown(wait=False, cancel_futures=True)
