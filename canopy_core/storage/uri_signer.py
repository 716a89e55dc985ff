from __future__ import annotations

import hashlib
import hmac
import importlib
import os
import time
from typing import Callable
from urllib.parse import quote, urlencode

from canopy_core.config import get_config
from canopy_core.errors import RecoverableError
from canopy_core.logging import get_logger

logger = get_logger(__name__)

# (storage_path, expires_in_seconds) -> time-limited URL
UriSigner = Callable[[str, int], str]

_SIGNER: UriSigner | None = None


def signature_for(path: str, expires_at: int, secret: str) -> str:
    message = f"{path}:{expires_at}".encode("utf-8")
    return hmac.new(secret.encode("utf-8"), message, hashlib.sha256).hexdigest()


def _default_signer(path: str, expires_s: int) -> str:
    config = get_config()
    object_path = path.lstrip("/")
    base = f"{config.storage_public_base_url}/{config.storage_bucket}/{quote(object_path)}"
    expires_at = int(time.time()) + int(expires_s)
    if not config.signing_secret:
        if not config.is_dev():
            raise RecoverableError("SIGNING_SECRET is required to sign storage URLs")
        return f"{base}?{urlencode({'expires': expires_at})}"
    signature = signature_for(object_path, expires_at, config.signing_secret)
    return f"{base}?{urlencode({'expires': expires_at, 'signature': signature})}"


def verify_signature(path: str, expires_at: int, signature: str, secret: str) -> bool:
    if expires_at < int(time.time()):
        return False
    expected = signature_for(path.lstrip("/"), expires_at, secret)
    return hmac.compare_digest(expected, signature)


def load_uri_signer() -> UriSigner:
    global _SIGNER
    if _SIGNER is not None:
        return _SIGNER
    spec = os.getenv("CANOPY_URI_SIGNER", "").strip()
    if not spec:
        _SIGNER = _default_signer
        return _SIGNER
    module_path, _, attr = spec.partition(":")
    if not module_path or not attr:
        raise RecoverableError("CANOPY_URI_SIGNER must be in the form module.path:callable")
    try:
        module = importlib.import_module(module_path)
    except Exception as exc:
        raise RecoverableError(
            f"Failed to import URI signer module '{module_path}': {exc}"
        ) from exc
    signer = getattr(module, attr, None)
    if signer is None or not callable(signer):
        raise RecoverableError(
            f"CANOPY_URI_SIGNER target '{attr}' not found or not callable"
        )
    logger.info(
        "URI signer loaded",
        extra={"uri_signer": f"{module_path}:{attr}"},
    )
    _SIGNER = signer
    return _SIGNER


def reset_uri_signer() -> None:
    global _SIGNER
    _SIGNER = None
