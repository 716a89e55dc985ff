from canopy_core.auth.identity import decode_token, resolve_user_id

__all__ = [
    "decode_token",
    "resolve_user_id",
]
