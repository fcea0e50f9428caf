from __future__ import annotations

from enum import Enum
from typing import Optional


LOCKOUT_DURATION_LABEL = "30 minutos"

PASSWORD_POLICY_DESCRIPTION = (
    "A senha deve ter entre 8 e 128 caracteres e conter pelo menos 3 dos seguintes: "
    "letras maiúsculas, letras minúsculas, números, caracteres especiais"
)


class ErrorCode(str, Enum):
    """Stable error codes exposed in the API envelope."""

    AUTH_INVALID_CREDENTIALS = "AUTH_INVALID_CREDENTIALS"
    AUTH_ACCOUNT_LOCKED = "AUTH_ACCOUNT_LOCKED"
    AUTH_ACCOUNT_INACTIVE = "AUTH_ACCOUNT_INACTIVE"
    AUTH_INVALID_TOKEN = "AUTH_INVALID_TOKEN"
    AUTH_TOKEN_EXPIRED = "AUTH_TOKEN_EXPIRED"
    AUTH_FORBIDDEN = "AUTH_FORBIDDEN"
    USER_NOT_FOUND = "USER_NOT_FOUND"
    USER_EMAIL_EXISTS = "USER_EMAIL_EXISTS"
    USER_CPF_EXISTS = "USER_CPF_EXISTS"
    USER_CNPJ_EXISTS = "USER_CNPJ_EXISTS"
    VALIDATION_ERROR = "VALIDATION_ERROR"
    VALIDATION_INVALID_EMAIL = "VALIDATION_INVALID_EMAIL"
    VALIDATION_INVALID_CPF = "VALIDATION_INVALID_CPF"
    VALIDATION_INVALID_CNPJ = "VALIDATION_INVALID_CNPJ"
    VALIDATION_INVALID_PHONE = "VALIDATION_INVALID_PHONE"
    VALIDATION_REQUIRED_FIELD = "VALIDATION_REQUIRED_FIELD"
    VALIDATION_WEAK_PASSWORD = "VALIDATION_WEAK_PASSWORD"
    VALIDATION_PASSWORD_REUSED = "VALIDATION_PASSWORD_REUSED"
    SYSTEM_INTERNAL_ERROR = "SYSTEM_INTERNAL_ERROR"
    SYSTEM_DATABASE_ERROR = "SYSTEM_DATABASE_ERROR"
    SYSTEM_EXTERNAL_SERVICE_ERROR = "SYSTEM_EXTERNAL_SERVICE_ERROR"
    RATE_LIMIT_EXCEEDED = "RATE_LIMIT_EXCEEDED"

    @property
    def message(self) -> str:
        return _MESSAGES[self]


_MESSAGES = {
    ErrorCode.AUTH_INVALID_CREDENTIALS: "Credenciais inválidas",
    ErrorCode.AUTH_ACCOUNT_LOCKED: "Conta temporariamente bloqueada",
    ErrorCode.AUTH_ACCOUNT_INACTIVE: "Conta desativada",
    ErrorCode.AUTH_INVALID_TOKEN: "Token inválido",
    ErrorCode.AUTH_TOKEN_EXPIRED: "Token expirado",
    ErrorCode.AUTH_FORBIDDEN: "Acesso negado",
    ErrorCode.USER_NOT_FOUND: "Usuário não encontrado",
    ErrorCode.USER_EMAIL_EXISTS: "Email já cadastrado",
    ErrorCode.USER_CPF_EXISTS: "CPF já cadastrado",
    ErrorCode.USER_CNPJ_EXISTS: "CNPJ já cadastrado",
    ErrorCode.VALIDATION_ERROR: "Dados inválidos",
    ErrorCode.VALIDATION_INVALID_EMAIL: "Email inválido",
    ErrorCode.VALIDATION_INVALID_CPF: "CPF inválido",
    ErrorCode.VALIDATION_INVALID_CNPJ: "CNPJ inválido",
    ErrorCode.VALIDATION_INVALID_PHONE: "Celular deve ter 10 ou 11 dígitos",
    ErrorCode.VALIDATION_REQUIRED_FIELD: "Campo obrigatório não informado",
    ErrorCode.VALIDATION_WEAK_PASSWORD: PASSWORD_POLICY_DESCRIPTION,
    ErrorCode.VALIDATION_PASSWORD_REUSED: (
        "A nova senha não pode ser igual às últimas senhas utilizadas"
    ),
    ErrorCode.SYSTEM_INTERNAL_ERROR: "Erro interno do sistema",
    ErrorCode.SYSTEM_DATABASE_ERROR: "Erro de conexão com banco de dados",
    ErrorCode.SYSTEM_EXTERNAL_SERVICE_ERROR: "Serviço externo indisponível",
    ErrorCode.RATE_LIMIT_EXCEEDED: "Muitas tentativas. Tente novamente mais tarde",
}


class ServiceError(Exception):
    """Base class for service-layer exceptions mapped to HTTP responses.

    Each subclass pins an HTTP ``status_code`` and a default ``error_code``;
    callers may override either and attach a ``detail`` dict that is sent to
    the client as ``error.details``. Server errors (5xx) never expose their
    message or detail to the client.
    """

    status_code: int = 400
    error_code: ErrorCode = ErrorCode.VALIDATION_ERROR

    def __init__(
        self,
        message: Optional[str] = None,
        *,
        error_code: Optional[ErrorCode] = None,
        status_code: Optional[int] = None,
        detail: Optional[dict] = None,
    ) -> None:
        if error_code is not None:
            self.error_code = error_code
        if status_code is not None:
            self.status_code = status_code
        self.message = message or self.error_code.message
        super().__init__(self.message)
        self.detail = detail or {}


class ValidationError(ServiceError):
    """Malformed input (400)."""
    status_code = 400
    error_code = ErrorCode.VALIDATION_ERROR


class BusinessError(ServiceError):
    """A business rule rejected the request, e.g. duplicate email (400)."""
    status_code = 400
    error_code = ErrorCode.USER_EMAIL_EXISTS


class AuthenticationError(ServiceError):
    """Authentication failed or missing (401)."""
    status_code = 401
    error_code = ErrorCode.AUTH_INVALID_CREDENTIALS


class ForbiddenError(ServiceError):
    """Authenticated but not allowed (403)."""
    status_code = 403
    error_code = ErrorCode.AUTH_FORBIDDEN


class NotFoundError(ServiceError):
    """Resource not found (404)."""
    status_code = 404
    error_code = ErrorCode.USER_NOT_FOUND


class AccountLockedError(ServiceError):
    """Too many failed logins; the account is temporarily locked (429)."""
    status_code = 429
    error_code = ErrorCode.AUTH_ACCOUNT_LOCKED

    def __init__(
        self,
        message: Optional[str] = None,
        *,
        lockout_duration: str = LOCKOUT_DURATION_LABEL,
    ) -> None:
        super().__init__(
            message
            or f"Conta temporariamente bloqueada devido a muitas tentativas. "
            f"Tente novamente em {lockout_duration}.",
            detail={"locked": True, "lockoutDuration": lockout_duration},
        )
        self.lockout_duration = lockout_duration


class RateLimitedError(ServiceError):
    """Request rate limit exceeded (429)."""
    status_code = 429
    error_code = ErrorCode.RATE_LIMIT_EXCEEDED


class ServerError(ServiceError):
    """Store or cache unavailable, or another internal failure (500)."""
    status_code = 500
    error_code = ErrorCode.SYSTEM_INTERNAL_ERROR


__all__ = [
    "AccountLockedError",
    "AuthenticationError",
    "BusinessError",
    "ErrorCode",
    "ForbiddenError",
    "LOCKOUT_DURATION_LABEL",
    "NotFoundError",
    "PASSWORD_POLICY_DESCRIPTION",
    "RateLimitedError",
    "ServerError",
    "ServiceError",
    "ValidationError",
]
