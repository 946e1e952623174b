"""
SHA-256 integrity checks for cached sources.

Three hashing policies are supported:

- RAW: digest of the file bytes as stored. Used for upstream release
  tarballs, which are expected to be byte-for-byte stable.
- TAR_CONTENT: digest of the archive's logical content (member names,
  types, link targets and file data, in archive order). Independent of
  compression level and of mtimes, owners and modes.
- DECOMPRESSED: digest of the full decompressed tar stream, headers
  included. Sensitive to timestamps and permissions.

When no digest is pinned, the adjacent ``<file>.sha256`` signature is
trusted instead. Its format mirrors sha256sum output::

    <hex-digest>  <filename>

Only the first whitespace-delimited token is read. A missing or malformed
signature fails closed.
"""

import hashlib
import logging
import os
import re
import secrets
from enum import Enum
from pathlib import Path
from typing import Optional, Union

from dlnabuild.core.archive import open_decompressed, open_tar_stream
from dlnabuild.core.exceptions import (
    IntegrityError,
    SignatureError,
    SignatureExistsError,
)
from dlnabuild.core.filesystem import atomic_write

logger = logging.getLogger(__name__)

SIGNATURE_SUFFIX = ".sha256"
CHUNK_SIZE = 65536

_HEX_DIGEST = re.compile(r"^[0-9a-fA-F]{64}$")


class HashPolicy(Enum):
    """What part of a file the digest covers."""

    RAW = "raw"
    TAR_CONTENT = "tar-content"
    DECOMPRESSED = "decompressed"


class VerifyStatus(Enum):
    """Outcome of a verification."""

    OK = "ok"
    MISMATCH = "mismatch"
    MISSING = "missing"


def _hash_stream(hasher, stream) -> None:
    while chunk := stream.read(CHUNK_SIZE):
        hasher.update(chunk)


def _hash_tar_content(hasher, path: Path) -> None:
    with open_tar_stream(path) as tar:
        for member in tar:
            name = member.name.rstrip("/")
            if name.startswith("./"):
                name = name[2:]
            header = b"\0".join(
                [
                    name.encode("utf-8", "surrogateescape"),
                    member.type,
                    member.linkname.encode("utf-8", "surrogateescape"),
                    str(member.size if member.isreg() else 0).encode(),
                ]
            )
            hasher.update(header + b"\0")
            if member.isreg():
                data = tar.extractfile(member)
                _hash_stream(hasher, data)


def compute_digest(path: Union[str, Path], policy: HashPolicy = HashPolicy.RAW) -> str:
    """
    Compute the SHA-256 digest of a file under the given policy.

    Args:
        path: File to hash
        policy: Which view of the file to hash

    Returns:
        Lowercase hex digest

    Raises:
        FileNotFoundError: If path doesn't exist
        UnsupportedArchiveFormat: If a non-RAW policy is used on an unknown format
    """
    path = Path(path)
    if not path.is_file():
        raise FileNotFoundError(f"File not found: {path}")

    hasher = hashlib.sha256()
    if policy is HashPolicy.RAW:
        with open(path, "rb") as f:
            _hash_stream(hasher, f)
    elif policy is HashPolicy.DECOMPRESSED:
        with open_decompressed(path) as stream:
            _hash_stream(hasher, stream)
    else:
        _hash_tar_content(hasher, path)

    return hasher.hexdigest()


def signature_path(path: Union[str, Path]) -> Path:
    """Return the sidecar signature path for a file."""
    path = Path(path)
    return path.with_name(path.name + SIGNATURE_SUFFIX)


def read_signature(path: Union[str, Path]) -> str:
    """
    Read the pinned digest from a file's signature sidecar.

    Args:
        path: The signed file (not the sidecar itself)

    Returns:
        Lowercase hex digest

    Raises:
        SignatureError: If the sidecar is missing, empty or malformed
    """
    sidecar = signature_path(path)
    try:
        text = sidecar.read_text(encoding="utf-8")
    except FileNotFoundError:
        raise SignatureError(path, f"{sidecar.name} not found")
    except (OSError, UnicodeDecodeError) as e:
        raise SignatureError(path, f"cannot read {sidecar.name}: {e}")

    tokens = text.split()
    if not tokens:
        raise SignatureError(path, f"{sidecar.name} is empty")
    if not _HEX_DIGEST.match(tokens[0]):
        raise SignatureError(path, f"{sidecar.name} does not start with a SHA-256 digest")
    return tokens[0].lower()


def _digests_equal(a: str, b: str) -> bool:
    return secrets.compare_digest(a.lower().encode(), b.lower().encode())


def _check(path: Path, expected_digest: Optional[str], policy: HashPolicy):
    if expected_digest is None:
        expected_digest = read_signature(path)
    elif not _HEX_DIGEST.match(expected_digest):
        raise ValueError(f"Invalid SHA-256 digest: {expected_digest!r}")

    if not path.is_file():
        return VerifyStatus.MISSING, expected_digest.lower(), ""

    actual = compute_digest(path, policy)
    if _digests_equal(actual, expected_digest):
        return VerifyStatus.OK, expected_digest.lower(), actual
    return VerifyStatus.MISMATCH, expected_digest.lower(), actual


def verify(
    path: Union[str, Path],
    expected_digest: Optional[str] = None,
    policy: HashPolicy = HashPolicy.RAW,
) -> VerifyStatus:
    """
    Check a file against an expected digest.

    Args:
        path: File to check
        expected_digest: Pinned hex digest; None trusts the signature sidecar
        policy: Hashing policy the digest was produced with

    Returns:
        VerifyStatus.OK, MISMATCH or MISSING (file absent)

    Raises:
        SignatureError: If expected_digest is None and the sidecar is unusable
        ValueError: If expected_digest is not a SHA-256 hex string
    """
    path = Path(path)
    status, expected, actual = _check(path, expected_digest, policy)

    if status is VerifyStatus.OK:
        logger.debug(f"Verified {path.name} ({policy.value})")
    elif status is VerifyStatus.MISMATCH:
        logger.error(
            f"Digest mismatch for {path.name} ({policy.value}): "
            f"expected {expected}, got {actual}"
        )
    return status


def require_valid(
    path: Union[str, Path],
    expected_digest: Optional[str] = None,
    policy: HashPolicy = HashPolicy.RAW,
) -> str:
    """
    Like verify(), but raise unless the file checks out.

    Returns:
        The verified digest

    Raises:
        IntegrityError: On mismatch or missing file
        SignatureError: If the sidecar is needed and unusable
    """
    path = Path(path)
    status, expected, actual = _check(path, expected_digest, policy)
    if status is not VerifyStatus.OK:
        raise IntegrityError(path, expected=expected, actual=actual)
    logger.info(f"Verified {path.name}")
    return actual


def sign_file(path: Union[str, Path], policy: HashPolicy = HashPolicy.RAW) -> Path:
    """
    Write a signature sidecar for a file.

    The sidecar gets the same mtime as the file it signs. An existing
    sidecar is never replaced.

    Args:
        path: File to sign
        policy: Hashing policy for the recorded digest

    Returns:
        Path to the new sidecar

    Raises:
        SignatureExistsError: If a sidecar already exists
        FileNotFoundError: If path doesn't exist
    """
    path = Path(path)
    sidecar = signature_path(path)
    if sidecar.exists():
        raise SignatureExistsError(sidecar)

    digest = compute_digest(path, policy)
    atomic_write(sidecar, f"{digest}  {path.name}\n")

    stat = path.stat()
    os.utime(sidecar, ns=(stat.st_atime_ns, stat.st_mtime_ns))
    logger.info(f"Signed {path.name}: {digest}")
    return sidecar
