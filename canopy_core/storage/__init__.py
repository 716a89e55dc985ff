from canopy_core.storage.uri_signer import (
    UriSigner,
    load_uri_signer,
    reset_uri_signer,
    verify_signature,
)

__all__ = [
    "UriSigner",
    "load_uri_signer",
    "reset_uri_signer",
    "verify_signature",
]
