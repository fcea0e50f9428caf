from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Header, Query, Request, Response

from adoptly.api.schemas import (
    AuthResponse,
    Envelope,
    IdentityResponse,
    IndividualRegistrationRequest,
    LoginRequest,
    OrganizationRegistrationRequest,
    PasswordChangeRequest,
    PasswordPolicyResponse,
    ProtectorRegistrationRequest,
)
from adoptly.logging import get_logger
from adoptly.service.auth import AuthContext, AuthResult
from adoptly.service.email_validation import normalize_email
from adoptly.service.errors import AuthenticationError, ErrorCode, ForbiddenError, RateLimitedError
from adoptly.service.runtime import check_rate_limit, get_runtime
from adoptly.storage.models import Identity, IdentityKind, Role

logger = get_logger(__name__)

router = APIRouter(prefix="/api/v1")

RATE_LIMIT_WINDOW_SECONDS = 60


class RateLimitInfo:
    """Rate limit state for adding response headers."""

    __slots__ = ("limit", "remaining", "reset_seconds")

    def __init__(self, limit: int, remaining: int, reset_seconds: int):
        self.limit = limit
        self.remaining = remaining
        self.reset_seconds = reset_seconds

    def apply_headers(self, response: Response) -> None:
        response.headers["X-RateLimit-Limit"] = str(self.limit)
        response.headers["X-RateLimit-Remaining"] = str(max(0, self.remaining))
        response.headers["X-RateLimit-Reset"] = str(self.reset_seconds)


def _client_ip(request: Request) -> str:
    return request.client.host if request.client else "unknown"


async def _enforce_rate_limit(
    runtime, key: str, limit: int, window_seconds: int, *, response: Optional[Response] = None
) -> RateLimitInfo:
    """Apply the token-bucket limit for ``key``; 429 once the bucket is empty."""
    allowed, remaining, reset_seconds = await check_rate_limit(
        runtime, key, limit, window_seconds, return_remaining=True
    )
    info = RateLimitInfo(limit, remaining, reset_seconds or window_seconds)
    if response is not None:
        info.apply_headers(response)
    if not allowed:
        logger.warning("rate_limited", key=key, limit=limit)
        raise RateLimitedError(detail={"retryAfterSeconds": info.reset_seconds})
    return info


async def get_identity(
    authorization: Optional[str] = Header(None),
    x_session_id: Optional[str] = Header(None),
) -> AuthContext:
    """Bearer token, optionally bound to the session named in X-Session-ID."""
    runtime = get_runtime()
    ctx = await runtime.auth.authenticate(authorization, x_session_id)
    if not ctx:
        if runtime.auth.bearer_expired(authorization):
            raise AuthenticationError(error_code=ErrorCode.AUTH_TOKEN_EXPIRED)
        raise AuthenticationError(error_code=ErrorCode.AUTH_INVALID_TOKEN)
    return ctx


async def get_admin_identity(principal: AuthContext = Depends(get_identity)) -> AuthContext:
    if principal.role != Role.ADMIN:
        raise ForbiddenError()
    return principal


def _auth_response(result: AuthResult) -> dict:
    return AuthResponse(
        display_name=result.display_name,
        token=result.token,
        token_type=result.token_type,
        identity_id=result.identity_id,
        role=result.role.value,
        session_id=result.session_id,
    ).model_dump(by_alias=True)


def _identity_response(identity: Identity) -> dict:
    return IdentityResponse(
        id=identity.id,
        email=identity.email,
        kind=identity.kind.value,
        role=identity.role.value,
        display_name=identity.display_name,
        active=identity.active,
        phone=identity.phone,
        created_at=identity.created_at,
    ).model_dump(mode="json", by_alias=True)


# -- auth ---------------------------------------------------------------------


@router.post("/auth/login", response_model=Envelope, tags=["auth"])
async def login(body: LoginRequest, request: Request, response: Response):
    """Authenticate with email and password and return a bearer token.

    Raises:
        400: If email or password is missing
        401: If credentials are invalid or the account is deactivated
        429: If the account is locked out or the client exceeded the rate limit
    """
    runtime = get_runtime()
    await _enforce_rate_limit(
        runtime,
        f"login:{_client_ip(request)}",
        runtime.settings.login_rate_limit_per_minute,
        RATE_LIMIT_WINDOW_SECONDS,
        response=response,
    )
    email = normalize_email(body.email)
    if email:
        await _enforce_rate_limit(
            runtime,
            f"login:email:{email}",
            runtime.settings.login_rate_limit_per_minute,
            RATE_LIMIT_WINDOW_SECONDS,
        )
    result = await runtime.auth.login(body.email, body.password)
    return Envelope(status="ok", data=_auth_response(result))


async def _enforce_register_limit(
    runtime, request: Request, response: Response, email: Optional[str]
) -> None:
    await _enforce_rate_limit(
        runtime,
        f"register:{_client_ip(request)}",
        runtime.settings.register_rate_limit_per_minute,
        RATE_LIMIT_WINDOW_SECONDS,
        response=response,
    )
    normalized = normalize_email(email)
    if normalized:
        await _enforce_rate_limit(
            runtime,
            f"register:email:{normalized}",
            runtime.settings.register_rate_limit_per_minute,
            RATE_LIMIT_WINDOW_SECONDS,
        )


@router.post(
    "/auth/register/individual", response_model=Envelope, status_code=201, tags=["auth"]
)
async def register_individual(
    body: IndividualRegistrationRequest, request: Request, response: Response
):
    runtime = get_runtime()
    await _enforce_register_limit(runtime, request, response, body.email)
    result = await runtime.auth.register_individual(
        name=body.name, email=body.email, password=body.password, phone=body.phone
    )
    return Envelope(status="ok", data=_auth_response(result))


@router.post(
    "/auth/register/organization", response_model=Envelope, status_code=201, tags=["auth"]
)
async def register_organization(
    body: OrganizationRegistrationRequest, request: Request, response: Response
):
    runtime = get_runtime()
    await _enforce_register_limit(runtime, request, response, body.email)
    result = await runtime.auth.register_organization(
        organization_name=body.organization_name,
        registration_number=body.registration_number,
        email=body.email,
        phone=body.phone,
        password=body.password,
    )
    return Envelope(status="ok", data=_auth_response(result))


@router.post(
    "/auth/register/protector", response_model=Envelope, status_code=201, tags=["auth"]
)
async def register_protector(
    body: ProtectorRegistrationRequest, request: Request, response: Response
):
    runtime = get_runtime()
    await _enforce_register_limit(runtime, request, response, body.email)
    result = await runtime.auth.register_protector(
        full_name=body.full_name,
        document_number=body.document_number,
        email=body.email,
        phone=body.phone,
        password=body.password,
    )
    return Envelope(status="ok", data=_auth_response(result))


@router.post("/auth/logout", response_model=Envelope, tags=["auth"])
async def logout(principal: AuthContext = Depends(get_identity)):
    runtime = get_runtime()
    revoked = await runtime.auth.logout(principal.email)
    return Envelope(status="ok", data={"loggedOut": True, "sessionsRevoked": revoked})


@router.get("/auth/me", response_model=Envelope, tags=["auth"])
async def get_current_identity(principal: AuthContext = Depends(get_identity)):
    runtime = get_runtime()
    identity = await runtime.auth.resolve_identity(principal.email)
    data = _identity_response(identity)
    data["activeSessions"] = await runtime.auth.active_sessions(identity.id)
    return Envelope(status="ok", data=data)


@router.post("/auth/password", response_model=Envelope, tags=["auth"])
async def change_password(
    body: PasswordChangeRequest,
    response: Response,
    principal: AuthContext = Depends(get_identity),
):
    """Change the caller's password; every open session is revoked afterwards."""
    runtime = get_runtime()
    await _enforce_rate_limit(
        runtime,
        f"password:change:{principal.identity_id}",
        limit=5,
        window_seconds=300,
        response=response,
    )
    await runtime.auth.change_password(principal.email, body.current_password, body.new_password)
    return Envelope(status="ok", data={"changed": True})


@router.get("/auth/password-policy", response_model=Envelope, tags=["auth"])
async def password_policy():
    policy = get_runtime().auth.policy
    return Envelope(
        status="ok",
        data=PasswordPolicyResponse(
            description=policy.description,
            min_length=policy.min_length,
            max_length=policy.max_length,
            min_character_classes=policy.min_classes,
        ).model_dump(by_alias=True),
    )


# -- admin --------------------------------------------------------------------


@router.get("/admin/identities", response_model=Envelope, tags=["admin"])
async def admin_list_identities(
    kind: Optional[IdentityKind] = Query(None, description="Restrict to one identity kind"),
    email: Optional[str] = Query(None, description="Exact email lookup across all kinds"),
    principal: AuthContext = Depends(get_admin_identity),
):
    runtime = get_runtime()
    if email:
        identity = runtime.auth.resolver.find_by_email(normalize_email(email))
        identities = [identity] if identity and (kind is None or identity.kind == kind) else []
    else:
        identities = runtime.auth.list_identities(kind)
    return Envelope(
        status="ok",
        data={"items": [_identity_response(i) for i in identities]},
    )


@router.post("/admin/identities/{identity_id}/deactivate", response_model=Envelope, tags=["admin"])
async def admin_deactivate(identity_id: str, principal: AuthContext = Depends(get_admin_identity)):
    runtime = get_runtime()
    identity = await runtime.auth.deactivate(identity_id)
    logger.info("admin_deactivated_identity", admin_id=principal.identity_id, identity_id=identity_id)
    return Envelope(status="ok", data=_identity_response(identity))


@router.post("/admin/identities/{identity_id}/reactivate", response_model=Envelope, tags=["admin"])
async def admin_reactivate(identity_id: str, principal: AuthContext = Depends(get_admin_identity)):
    runtime = get_runtime()
    identity = await runtime.auth.reactivate(identity_id)
    logger.info("admin_reactivated_identity", admin_id=principal.identity_id, identity_id=identity_id)
    return Envelope(status="ok", data=_identity_response(identity))
