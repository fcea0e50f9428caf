from __future__ import annotations

from datetime import datetime
from typing import Any, Optional
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field, field_validator

from adoptly.service.errors import ErrorCode

_VALID_ERROR_CODES = frozenset(code.value for code in ErrorCode)

MAX_STRING_LENGTH = 256


class ErrorBody(BaseModel):
    """Error envelope body; ``code`` is always one of the stable ErrorCode values."""

    code: str = Field(..., description="Stable error code")
    message: str
    details: Optional[Any] = None

    @field_validator("code")
    @classmethod
    def _validate_error_code(cls, value: str) -> str:
        if value not in _VALID_ERROR_CODES:
            raise ValueError(
                f"Invalid error code '{value}'. Must be one of: {', '.join(sorted(_VALID_ERROR_CODES))}"
            )
        return value


class Envelope(BaseModel):
    """API envelope format."""

    status: str = Field(..., pattern="^(ok|error)$")
    data: Optional[Any] = None
    error: Optional[ErrorBody] = None
    request_id: str = Field(default_factory=lambda: str(uuid4()))


class _CamelRequest(BaseModel):
    # fields stay optional so missing values reach the service's required-field check
    model_config = ConfigDict(populate_by_name=True, str_max_length=MAX_STRING_LENGTH)


class LoginRequest(_CamelRequest):
    email: Optional[str] = None
    password: Optional[str] = None


class IndividualRegistrationRequest(_CamelRequest):
    name: Optional[str] = None
    email: Optional[str] = None
    password: Optional[str] = None
    phone: Optional[str] = None


class OrganizationRegistrationRequest(_CamelRequest):
    organization_name: Optional[str] = Field(default=None, alias="organizationName")
    registration_number: Optional[str] = Field(default=None, alias="cnpj")
    email: Optional[str] = None
    phone: Optional[str] = None
    password: Optional[str] = None


class ProtectorRegistrationRequest(_CamelRequest):
    full_name: Optional[str] = Field(default=None, alias="fullName")
    document_number: Optional[str] = Field(default=None, alias="cpf")
    email: Optional[str] = None
    phone: Optional[str] = None
    password: Optional[str] = None


class PasswordChangeRequest(_CamelRequest):
    current_password: Optional[str] = Field(default=None, alias="currentPassword")
    new_password: Optional[str] = Field(default=None, alias="newPassword")


class AuthResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    display_name: str = Field(..., alias="displayName")
    token: str
    token_type: str = Field("Bearer", alias="tokenType")
    identity_id: str = Field(..., alias="identityId")
    role: str
    session_id: Optional[str] = Field(default=None, alias="sessionId")


class IdentityResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: str
    email: str
    kind: str
    role: str
    display_name: str = Field(..., alias="displayName")
    active: bool
    phone: Optional[str] = None
    created_at: datetime = Field(..., alias="createdAt")


class PasswordPolicyResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    description: str
    min_length: int = Field(..., alias="minLength")
    max_length: int = Field(..., alias="maxLength")
    min_character_classes: int = Field(..., alias="minCharacterClasses")
