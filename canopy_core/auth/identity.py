from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Any, Mapping

import jwt

from canopy_core.config import get_config
from canopy_core.errors import AuthError
from canopy_core.logging import get_logger

logger = get_logger(__name__)

USER_ID_HEADER = "x-user-id"


@dataclass(frozen=True)
class IdentityConfig:
    hs256_secret: str | None
    issuer: str | None
    audience: str | None
    claim_sub: str
    leeway_seconds: int
    allow_header: bool


def load_identity_config() -> IdentityConfig:
    return IdentityConfig(
        hs256_secret=_env_str("AUTH_JWT_HS256_SECRET"),
        issuer=_env_str("AUTH_ISSUER"),
        audience=_env_str("AUTH_AUDIENCE"),
        claim_sub=os.getenv("AUTH_CLAIM_SUB", "sub"),
        leeway_seconds=_env_int("AUTH_JWT_LEEWAY_SECONDS", 0),
        allow_header=get_config().is_dev(),
    )


def decode_token(token: str, *, config: IdentityConfig | None = None) -> dict[str, Any]:
    config = config or load_identity_config()
    if not config.hs256_secret:
        raise AuthError("JWT verification not configured")
    try:
        return jwt.decode(
            token,
            key=config.hs256_secret,
            algorithms=["HS256"],
            audience=config.audience,
            issuer=config.issuer,
            leeway=config.leeway_seconds,
            options={"require": [config.claim_sub]},
        )
    except jwt.PyJWTError as exc:
        raise AuthError("Invalid JWT") from exc


def resolve_user_id(
    headers: Mapping[str, str],
    *,
    config: IdentityConfig | None = None,
) -> str | None:
    """Return the caller's user id, or None when it cannot be established.

    A bearer token wins over the development header. Invalid tokens
    resolve to None so searches still run; only history is skipped.
    """
    config = config or load_identity_config()
    token = _bearer_token(headers)
    if token:
        try:
            claims = decode_token(token, config=config)
        except AuthError as exc:
            logger.warning(
                "Bearer token rejected",
                extra={"error_message": str(exc)},
            )
            return None
        return _coerce_str(claims.get(config.claim_sub))
    if config.allow_header:
        return _coerce_str(_header(headers, USER_ID_HEADER))
    return None


def _bearer_token(headers: Mapping[str, str]) -> str | None:
    value = _header(headers, "authorization")
    if not value:
        return None
    scheme, _, token = value.partition(" ")
    if scheme.lower() != "bearer":
        return None
    return token.strip() or None


def _header(headers: Mapping[str, str], name: str) -> str | None:
    value = headers.get(name)
    if value is None:
        value = headers.get(name.title())
    return value


def _coerce_str(value: object) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _env_str(name: str) -> str | None:
    value = os.getenv(name)
    if value is None:
        return None
    value = value.strip()
    return value or None


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except ValueError:
        return default
