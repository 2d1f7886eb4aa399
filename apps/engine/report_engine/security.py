from __future__ import annotations

import base64
import hashlib
import hmac
import json
import time
from dataclasses import dataclass
from typing import Any

from fastapi import Header

from report_engine.errors import ReportEngineError
from report_engine.settings import get_settings

TOKEN_ISSUER = "report-api"
TOKEN_AUDIENCE = "report-engine"


def _b64url_decode(value: str) -> bytes:
    padding = "=" * (-len(value) % 4)
    return base64.urlsafe_b64decode(value + padding)


def _b64url_encode(value: bytes) -> str:
    return base64.urlsafe_b64encode(value).decode("ascii").rstrip("=")


def _safe_int(value: Any) -> int | None:
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def _invalid_token(message: str) -> ReportEngineError:
    return ReportEngineError(status_code=401, code="invalid_service_token", message=message)


@dataclass(slots=True)
class ServiceAuthContext:
    organization_id: str
    actor_user_id: str | None
    subject: str | None


def _sign(secret: str, signing_input: bytes) -> bytes:
    return hmac.new(secret.encode("utf-8"), signing_input, hashlib.sha256).digest()


def verify_service_token(token: str, *, secret: str | None = None) -> ServiceAuthContext:
    parts = token.split(".")
    if len(parts) != 3:
        raise _invalid_token("Invalid service token format")

    header_b64, payload_b64, signature_b64 = parts
    signing_input = f"{header_b64}.{payload_b64}".encode("ascii")
    expected_sig = _sign(secret or get_settings().engine_service_secret, signing_input)
    try:
        got_sig = _b64url_decode(signature_b64)
        payload = json.loads(_b64url_decode(payload_b64).decode("utf-8"))
    except (ValueError, UnicodeDecodeError) as exc:
        raise _invalid_token("Invalid service token encoding") from exc
    if not hmac.compare_digest(expected_sig, got_sig):
        raise _invalid_token("Invalid service token signature")
    if not isinstance(payload, dict):
        raise _invalid_token("Invalid service token payload")

    exp = _safe_int(payload.get("exp"))
    if exp is None or exp < int(time.time()):
        raise ReportEngineError(status_code=401, code="expired_service_token", message="Service token expired")
    if payload.get("aud") != TOKEN_AUDIENCE:
        raise _invalid_token("Invalid service token audience")
    if payload.get("iss") != TOKEN_ISSUER:
        raise _invalid_token("Invalid service token issuer")

    organization_id = payload.get("organization_id")
    if organization_id in (None, ""):
        raise ReportEngineError(status_code=403, code="missing_scope", message="Service token carries no organization")
    actor = payload.get("actor_user_id")
    return ServiceAuthContext(
        organization_id=str(organization_id),
        actor_user_id=str(actor) if actor is not None else None,
        subject=payload.get("sub"),
    )


def require_service_auth(authorization: str | None = Header(default=None)) -> ServiceAuthContext:
    if not authorization:
        raise ReportEngineError(status_code=401, code="missing_service_token", message="Missing service token")
    scheme, _, raw_token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not raw_token:
        raise _invalid_token("Invalid authorization header")
    return verify_service_token(raw_token)


def mint_service_token(
    *,
    secret: str,
    subject: str,
    organization_id: str,
    actor_user_id: str | None = None,
    ttl_seconds: int = 120,
) -> str:
    now = int(time.time())
    header = {"alg": "HS256", "typ": "JWT"}
    payload = {
        "iss": TOKEN_ISSUER,
        "aud": TOKEN_AUDIENCE,
        "sub": subject,
        "iat": now,
        "exp": now + ttl_seconds,
        "organization_id": organization_id,
        "actor_user_id": actor_user_id,
    }
    header_b64 = _b64url_encode(json.dumps(header, separators=(",", ":"), sort_keys=True).encode("utf-8"))
    payload_b64 = _b64url_encode(json.dumps(payload, separators=(",", ":"), sort_keys=True).encode("utf-8"))
    signing_input = f"{header_b64}.{payload_b64}".encode("ascii")
    return f"{header_b64}.{payload_b64}.{_b64url_encode(_sign(secret, signing_input))}"
