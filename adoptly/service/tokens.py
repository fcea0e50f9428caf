from __future__ import annotations

import base64
import hashlib
import hmac
import json
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Optional
from zoneinfo import ZoneInfo

from adoptly.config import Settings, validate_jwt_secret
from adoptly.logging import get_logger

logger = get_logger(__name__)

TOKEN_TYPE = "Bearer"
DEFAULT_TOKEN_TTL = timedelta(hours=2)


class TokenService:
    """Issues and verifies HS256-signed bearer tokens.

    Claims are ``iss``, ``sub`` (the identity's email), ``iat`` and ``exp``.
    Tokens are stateless: verification needs only the signing secret.
    """

    def __init__(
        self,
        secret: str,
        *,
        issuer: str = "adoptly-api",
        ttl: timedelta = DEFAULT_TOKEN_TTL,
        timezone_name: str = "America/Sao_Paulo",
        now: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self._secret = validate_jwt_secret(secret).encode()
        self.issuer = issuer
        self.ttl = ttl
        self.tz = ZoneInfo(timezone_name)
        self._now = now or (lambda: datetime.now(timezone.utc))

    @classmethod
    def from_settings(cls, settings: Settings) -> "TokenService":
        return cls(
            settings.jwt_secret,
            issuer=settings.jwt_issuer,
            ttl=timedelta(minutes=settings.token_ttl_minutes),
            timezone_name=settings.jwt_timezone,
        )

    @property
    def ttl_seconds(self) -> int:
        return int(self.ttl.total_seconds())

    def expiration_for(self, issued_at: datetime) -> datetime:
        return issued_at.astimezone(self.tz) + self.ttl

    def generate_token(self, subject_email: str) -> str:
        issued_at = self._now()
        payload = {
            "iss": self.issuer,
            "sub": subject_email,
            "iat": int(issued_at.timestamp()),
            "exp": int(self.expiration_for(issued_at).timestamp()),
        }
        return self._encode_jwt(payload)

    def validate_token(self, token: Optional[str]) -> Optional[str]:
        """Subject email of a genuine, unexpired token; ``None`` for anything else."""
        payload = self.decode(token)
        if payload is None:
            return None
        return payload["sub"]

    def is_expired(self, token: Optional[str]) -> bool:
        """True only for a correctly signed token whose ``exp`` has passed."""
        payload = self.decode(token, check_expiry=False)
        return payload is not None and payload["exp"] <= self._now().timestamp()

    def decode(
        self, token: Optional[str], *, check_expiry: bool = True
    ) -> Optional[dict[str, Any]]:
        if not token or not isinstance(token, str):
            return None
        try:
            return self._decode_jwt(token, check_expiry=check_expiry)
        except Exception as exc:
            logger.warning("token_decode_error", error_type=type(exc).__name__)
            return None

    def _encode_segment(self, data: bytes) -> str:
        return base64.urlsafe_b64encode(data).decode("utf-8").rstrip("=")

    def _decode_segment(self, segment: str) -> bytes:
        padding = "=" * ((4 - len(segment) % 4) % 4)
        return base64.urlsafe_b64decode(segment + padding)

    def _sign(self, signing_input: str) -> str:
        return self._encode_segment(
            hmac.new(self._secret, signing_input.encode(), hashlib.sha256).digest()
        )

    def _encode_jwt(self, payload: dict[str, Any]) -> str:
        header = {"alg": "HS256", "typ": "JWT"}
        header_enc = self._encode_segment(json.dumps(header, separators=(",", ":")).encode())
        payload_enc = self._encode_segment(json.dumps(payload, separators=(",", ":")).encode())
        signing_input = f"{header_enc}.{payload_enc}"
        return f"{signing_input}.{self._sign(signing_input)}"

    def _decode_jwt(self, token: str, *, check_expiry: bool = True) -> Optional[dict[str, Any]]:
        parts = token.split(".")
        if len(parts) != 3:
            return None
        header_b64, payload_b64, sig_b64 = parts

        header = json.loads(self._decode_segment(header_b64))
        # pin the algorithm; never trust the header to choose one
        alg = header.get("alg") if isinstance(header, dict) else None
        if alg != "HS256":
            logger.warning("token_invalid_algorithm", alg=alg)
            return None

        # compare encoded text so any change to the signature segment is caught
        if not hmac.compare_digest(self._sign(f"{header_b64}.{payload_b64}"), sig_b64):
            return None

        payload = json.loads(self._decode_segment(payload_b64))
        if not isinstance(payload, dict):
            return None
        if payload.get("iss") != self.issuer:
            return None
        subject = payload.get("sub")
        if not isinstance(subject, str) or not subject:
            return None
        exp = payload.get("exp")
        if not isinstance(exp, (int, float)) or isinstance(exp, bool):
            return None
        if check_expiry and exp <= self._now().timestamp():
            return None
        return payload
