from __future__ import annotations

import asyncio
import functools
import uuid
from dataclasses import dataclass
from datetime import timedelta
from typing import Any, Callable, List, NoReturn, Optional, TypeVar

from adoptly.config import Settings
from adoptly.logging import get_logger
from adoptly.service.auth_cache import AuthenticationCache
from adoptly.service.documents import is_valid_cnpj, is_valid_cpf, is_valid_phone, only_digits
from adoptly.service.email_validation import EmailValidator, normalize_email
from adoptly.service.errors import (
    AccountLockedError,
    AuthenticationError,
    BusinessError,
    ErrorCode,
    NotFoundError,
    ServerError,
    ValidationError,
)
from adoptly.service.hashing import hash_password, verify_password
from adoptly.service.identity import IdentityResolver, IdentityStore
from adoptly.service.password_history import PasswordHistoryGuard
from adoptly.service.password_policy import PasswordPolicy
from adoptly.service.throttle import LoginAttemptThrottle
from adoptly.service.tokens import TOKEN_TYPE, TokenService
from adoptly.storage.errors import ConstraintViolation
from adoptly.storage.models import Identity, IdentityKind, Individual, Organization, Protector, Role

logger = get_logger(__name__)

T = TypeVar("T")

_DUPLICATE_CODES = {
    "email": ErrorCode.USER_EMAIL_EXISTS,
    "registration_number": ErrorCode.USER_CNPJ_EXISTS,
    "document_number": ErrorCode.USER_CPF_EXISTS,
}


@functools.lru_cache(maxsize=1)
def _timing_decoy_hash() -> str:
    # verified against when the email is unknown so both paths cost one argon2 check
    return hash_password(uuid.uuid4().hex)


@dataclass
class AuthResult:
    display_name: str
    token: str
    identity_id: str
    email: str
    role: Role
    session_id: Optional[str] = None
    token_type: str = TOKEN_TYPE
    from_cache: bool = False


@dataclass
class AuthContext:
    identity_id: str
    email: str
    role: Role
    kind: IdentityKind
    display_name: str
    session_id: Optional[str] = None


def _require(**fields: Any) -> None:
    missing = [name for name, value in fields.items() if value is None or not str(value).strip()]
    if missing:
        raise ValidationError(
            error_code=ErrorCode.VALIDATION_REQUIRED_FIELD, detail={"fields": missing}
        )


class AuthService:
    """Login, registration and account-state rules over the identity store.

    Composes the password policy, password history, email validation,
    identity resolver, login throttle, token service and authentication cache.
    """

    def __init__(
        self,
        store: IdentityStore,
        cache: AuthenticationCache,
        settings: Settings,
        *,
        tokens: Optional[TokenService] = None,
        throttle: Optional[LoginAttemptThrottle] = None,
        policy: Optional[PasswordPolicy] = None,
        history: Optional[PasswordHistoryGuard] = None,
        email_validator: Optional[EmailValidator] = None,
    ) -> None:
        self.store = store
        self.cache = cache
        self.settings = settings
        self.resolver = IdentityResolver(store)
        self.tokens = tokens or TokenService.from_settings(settings)
        self.throttle = throttle or LoginAttemptThrottle(
            cache.backend,
            max_attempts=settings.max_login_attempts,
            lockout_seconds=int(timedelta(minutes=settings.lockout_minutes).total_seconds()),
            captcha_after=settings.captcha_after_attempts,
            operation_timeout=cache.operation_timeout,
        )
        self.policy = policy or PasswordPolicy()
        self.history = history or PasswordHistoryGuard(
            store, history_size=settings.password_history_size
        )
        self.email_validator = email_validator or EmailValidator(
            verify_domains=settings.verify_email_domains,
            dns_timeout=settings.dns_timeout_seconds,
        )
        self.logger = logger

    @property
    def lockout_label(self) -> str:
        return f"{self.settings.lockout_minutes} minutos"

    # -- login ------------------------------------------------------------

    async def login(self, email: Optional[str], password: Optional[str]) -> AuthResult:
        _require(email=email, password=password)
        key = normalize_email(email)

        if await self.throttle.is_blocked(key):
            self.logger.warning("login_blocked", email=key)
            raise AccountLockedError(lockout_duration=self.lockout_label)

        cached = await self._cached_login(key, password)
        if cached is not None:
            await self.throttle.record_successful_login(key)
            return cached

        identity = self.resolver.find_by_email(key)
        if identity is None:
            verify_password(_timing_decoy_hash(), password)
            await self._reject_credentials(key)
        if not verify_password(identity.password_hash, password):
            await self._reject_credentials(key)

        if not identity.active:
            self.logger.warning("login_inactive_account", identity_id=identity.id)
            raise AuthenticationError(error_code=ErrorCode.AUTH_ACCOUNT_INACTIVE)

        await self.throttle.record_successful_login(key)
        token = self.tokens.generate_token(identity.email)
        await self.cache.cache_authenticated_identity(identity)
        await self.cache.cache_token(identity.email, token)
        session_id = await self.cache.create_session(identity)
        self.logger.info("login_succeeded", identity_id=identity.id, kind=identity.kind.value)
        return self._result(identity, token, session_id)

    async def _reject_credentials(self, key: str) -> NoReturn:
        attempts = await self.throttle.record_failed_attempt(key)
        remaining = max(0, self.throttle.max_attempts - attempts)
        self.logger.warning("login_failed", email=key, remaining_attempts=remaining)
        raise AuthenticationError(
            f"{ErrorCode.AUTH_INVALID_CREDENTIALS.message}. Tentativas restantes: {remaining}",
            detail={
                "remainingAttempts": remaining,
                "requiresCaptcha": attempts >= self.throttle.captcha_after,
            },
        )

    async def _cached_login(self, key: str, password: str) -> Optional[AuthResult]:
        identity = await self.cache.get_authenticated_identity(key)
        if identity is None or not identity.active:
            return None
        token = await self.cache.get_cached_token(key)
        if not token or self.tokens.validate_token(token) != identity.email:
            return None
        # skips store resolution and token issuance, never the password check
        if not verify_password(identity.password_hash, password):
            return None
        await self.cache.extend(key)
        session_id = await self.cache.create_session(identity)
        self.logger.info("login_succeeded", identity_id=identity.id, cached=True)
        result = self._result(identity, token, session_id)
        result.from_cache = True
        return result

    @staticmethod
    def _result(identity: Identity, token: str, session_id: Optional[str]) -> AuthResult:
        return AuthResult(
            display_name=identity.display_name,
            token=token,
            identity_id=identity.id,
            email=identity.email,
            role=identity.role,
            session_id=session_id,
        )

    # -- registration -----------------------------------------------------

    async def register_individual(
        self,
        *,
        name: Optional[str],
        email: Optional[str],
        password: Optional[str],
        phone: Optional[str] = None,
        role: Role = Role.INDIVIDUAL,
    ) -> AuthResult:
        _require(name=name, email=email, password=password)
        if phone and not is_valid_phone(phone):
            raise ValidationError(error_code=ErrorCode.VALIDATION_INVALID_PHONE, detail={"field": "phone"})
        key = await self._validate_new_credentials(email, password)
        identity = Individual(
            id=str(uuid.uuid4()),
            email=key,
            password_hash=hash_password(password),
            phone=only_digits(phone) or None,
            role=role,
            name=name.strip(),
        )
        return await self._complete_registration(identity)

    async def register_organization(
        self,
        *,
        organization_name: Optional[str],
        registration_number: Optional[str],
        email: Optional[str],
        phone: Optional[str],
        password: Optional[str],
    ) -> AuthResult:
        _require(
            organization_name=organization_name,
            registration_number=registration_number,
            email=email,
            phone=phone,
            password=password,
        )
        if not is_valid_cnpj(registration_number):
            raise ValidationError(
                error_code=ErrorCode.VALIDATION_INVALID_CNPJ, detail={"field": "registration_number"}
            )
        if not is_valid_phone(phone):
            raise ValidationError(error_code=ErrorCode.VALIDATION_INVALID_PHONE, detail={"field": "phone"})
        key = await self._validate_new_credentials(email, password)
        cnpj = only_digits(registration_number)
        if self.store.registration_number_exists(cnpj):
            raise BusinessError(error_code=ErrorCode.USER_CNPJ_EXISTS)
        identity = Organization(
            id=str(uuid.uuid4()),
            email=key,
            password_hash=hash_password(password),
            phone=only_digits(phone),
            organization_name=organization_name.strip(),
            registration_number=cnpj,
        )
        return await self._complete_registration(identity)

    async def register_protector(
        self,
        *,
        full_name: Optional[str],
        document_number: Optional[str],
        email: Optional[str],
        phone: Optional[str],
        password: Optional[str],
    ) -> AuthResult:
        _require(
            full_name=full_name,
            document_number=document_number,
            email=email,
            phone=phone,
            password=password,
        )
        if not is_valid_cpf(document_number):
            raise ValidationError(
                error_code=ErrorCode.VALIDATION_INVALID_CPF, detail={"field": "document_number"}
            )
        if not is_valid_phone(phone):
            raise ValidationError(error_code=ErrorCode.VALIDATION_INVALID_PHONE, detail={"field": "phone"})
        key = await self._validate_new_credentials(email, password)
        cpf = only_digits(document_number)
        if self.store.document_number_exists(cpf):
            raise BusinessError(error_code=ErrorCode.USER_CPF_EXISTS)
        identity = Protector(
            id=str(uuid.uuid4()),
            email=key,
            password_hash=hash_password(password),
            phone=only_digits(phone),
            full_name=full_name.strip(),
            document_number=cpf,
        )
        return await self._complete_registration(identity)

    async def _validate_new_credentials(self, email: str, password: str) -> str:
        """Email shape, password policy and cross-variant uniqueness, in that order."""
        key = normalize_email(email)
        # DNS lookups block; keep them off the event loop
        if not await asyncio.to_thread(self.email_validator.is_valid_email, key):
            raise ValidationError(error_code=ErrorCode.VALIDATION_INVALID_EMAIL, detail={"field": "email"})
        self._enforce_policy(password)
        if self.resolver.exists_by_email(key):
            self.logger.info("registration_duplicate_email", email=key)
            raise BusinessError(error_code=ErrorCode.USER_EMAIL_EXISTS)
        return key

    def _enforce_policy(self, password: str) -> None:
        if not self.policy.is_valid_password(password):
            raise ValidationError(
                error_code=ErrorCode.VALIDATION_WEAK_PASSWORD,
                detail={"field": "password", "hints": self.policy.weaknesses(password)},
            )

    async def _complete_registration(self, identity: Identity) -> AuthResult:
        self._persist(identity)
        self._store_write(
            "record_password_history", self.history.record_password, identity.id, identity.password_hash
        )
        token = self.tokens.generate_token(identity.email)
        session_id = await self.cache.create_session(identity)
        self.logger.info("identity_registered", identity_id=identity.id, kind=identity.kind.value)
        return self._result(identity, token, session_id)

    def _persist(self, identity: Identity) -> None:
        try:
            self._store_write("create_identity", self.store.create_identity, identity)
        except ConstraintViolation as exc:
            code = _DUPLICATE_CODES.get(exc.field or "", ErrorCode.USER_EMAIL_EXISTS)
            self.logger.info("registration_constraint_violation", field=exc.field)
            raise BusinessError(error_code=code) from exc

    def _store_write(self, operation: str, write: Callable[..., T], *args: Any) -> T:
        """Run a store write; I/O and persistence failures become SYSTEM_DATABASE_ERROR."""
        try:
            return write(*args)
        except (OSError, RuntimeError) as exc:
            self.logger.error(
                "identity_store_write_failed",
                operation=operation,
                error_type=type(exc).__name__,
                error=str(exc),
            )
            raise ServerError(error_code=ErrorCode.SYSTEM_DATABASE_ERROR) from exc

    # -- bearer authentication --------------------------------------------

    @staticmethod
    def _extract_bearer(header: Optional[str]) -> Optional[str]:
        if not header:
            return None
        scheme, _, token = header.strip().partition(" ")
        if scheme.lower() != "bearer" or not token.strip():
            return None
        return token.strip()

    async def authenticate(
        self, authorization: Optional[str], session_id: Optional[str] = None
    ) -> Optional[AuthContext]:
        """Resolve ``Authorization: Bearer <token>``; anything unusable is anonymous.

        When ``session_id`` is given it must be a live session of the token's
        identity; each authenticated request slides that session's TTL.
        """
        token = self._extract_bearer(authorization)
        if token is None:
            return None
        email = self.tokens.validate_token(token)
        if email is None:
            self.logger.warning("token_rejected", reason="invalid_or_expired")
            return None
        identity = await self.resolve_identity(email)
        if identity is None or not identity.active:
            self.logger.warning("token_rejected", reason="identity_unavailable", email=email)
            return None
        if session_id:
            if await self.cache.get_session_identity_id(session_id) != identity.id:
                self.logger.warning("session_rejected", identity_id=identity.id)
                return None
            await self.cache.extend_session(session_id)
        return AuthContext(
            identity_id=identity.id,
            email=identity.email,
            role=identity.role,
            kind=identity.kind,
            display_name=identity.display_name,
            session_id=session_id or None,
        )

    def bearer_expired(self, authorization: Optional[str]) -> bool:
        """Whether the header carries a genuine bearer token that has expired."""
        return self.tokens.is_expired(self._extract_bearer(authorization))

    async def resolve_identity(self, email: str) -> Optional[Identity]:
        """Cache first, then the identity store; a store hit repopulates the cache."""
        cached = await self.cache.get_authenticated_identity(email)
        if cached is not None:
            return cached
        identity = self.resolver.find_by_email(email)
        if identity is not None and identity.active:
            await self.cache.cache_authenticated_identity(identity)
        return identity

    async def active_sessions(self, identity_id: str) -> int:
        return await self.cache.active_session_count(identity_id)

    # -- account state ----------------------------------------------------

    async def logout(self, email: str) -> int:
        key = normalize_email(email)
        identity = self.resolver.find_by_email(key)
        await self.cache.evict(key)
        revoked = await self.cache.invalidate_sessions(identity.id) if identity else 0
        self.logger.info("logout", email=key, sessions_revoked=revoked)
        return revoked

    async def deactivate(self, identity_id: str) -> Identity:
        return await self._set_active(identity_id, False)

    async def reactivate(self, identity_id: str) -> Identity:
        return await self._set_active(identity_id, True)

    async def _set_active(self, identity_id: str, active: bool) -> Identity:
        identity = self._store_write(
            "set_identity_active", self.store.set_identity_active, identity_id, active
        )
        if identity is None:
            raise NotFoundError()
        await self.cache.evict(identity.email)
        if not active:
            await self.cache.invalidate_sessions(identity.id)
        self.logger.info(
            "identity_reactivated" if active else "identity_deactivated", identity_id=identity_id
        )
        return identity

    async def set_role(self, identity_id: str, role: Role) -> Identity:
        identity = self._store_write("update_role", self.store.update_role, identity_id, role)
        if identity is None:
            raise NotFoundError()
        await self.cache.evict(identity.email)
        self.logger.info("identity_role_changed", identity_id=identity_id, role=role.value)
        return identity

    async def change_password(
        self, email: str, current_password: Optional[str], new_password: Optional[str]
    ) -> None:
        _require(current_password=current_password, new_password=new_password)
        identity = self.resolver.find_by_email(email)
        if identity is None or not verify_password(identity.password_hash, current_password):
            raise AuthenticationError()
        self._enforce_policy(new_password)
        if self.history.is_password_reused(identity.id, new_password):
            raise ValidationError(
                error_code=ErrorCode.VALIDATION_PASSWORD_REUSED, detail={"field": "new_password"}
            )
        new_hash = hash_password(new_password)
        self._store_write("update_password_hash", self.store.update_password_hash, identity.id, new_hash)
        # the old password must stop working even if recording history fails below
        await self.cache.evict(identity.email)
        await self.cache.invalidate_sessions(identity.id)
        self._store_write("record_password_history", self.history.record_password, identity.id, new_hash)
        self.logger.info("password_changed", identity_id=identity.id)

    def list_identities(self, kind: Optional[IdentityKind] = None) -> List[Identity]:
        return self.store.list_identities(kind)

    # -- maintenance ------------------------------------------------------

    def cleanup_expired_states(self) -> int:
        """Drop expired fallback-cache entries, login counters included."""
        purge = getattr(self.cache.backend, "purge_expired", None)
        cleaned = purge() if purge is not None else 0
        if cleaned:
            self.logger.debug("auth_state_cleanup", cleaned=cleaned)
        return cleaned
