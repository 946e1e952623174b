"""
Core building blocks: cache, integrity checks, downloads and archives.
"""

from .exceptions import (
    DlnaBuildError,
    IntegrityError,
    SignatureError,
    SignatureExistsError,
    FetchError,
    FetchExhaustedError,
    ArchiveExtractionError,
    UnsupportedArchiveFormat,
    PatchError,
    ConfigError,
)

from .verification import (
    HashPolicy,
    VerifyStatus,
    compute_digest,
    verify,
    require_valid,
    sign_file,
    read_signature,
)

from .cache_store import CacheStore

from .download import fetch

__all__ = [
    "DlnaBuildError",
    "IntegrityError",
    "SignatureError",
    "SignatureExistsError",
    "FetchError",
    "FetchExhaustedError",
    "ArchiveExtractionError",
    "UnsupportedArchiveFormat",
    "PatchError",
    "ConfigError",
    "HashPolicy",
    "VerifyStatus",
    "compute_digest",
    "verify",
    "require_valid",
    "sign_file",
    "read_signature",
    "CacheStore",
    "fetch",
]
