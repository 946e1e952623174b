"""
Centralized exception hierarchy for dlnabuild.

Every failure the pipeline can report derives from DlnaBuildError so the
command line entry point can turn it into a non-zero exit status with a
single except clause.
"""


# ============================================================================
# Base Exceptions
# ============================================================================


class DlnaBuildError(Exception):
    """Base exception for all dlnabuild errors."""

    pass


# ============================================================================
# Integrity Exceptions
# ============================================================================


class IntegrityError(DlnaBuildError):
    """Raised when a file does not match its expected digest."""

    def __init__(self, path, expected: str = "", actual: str = "", message: str = ""):
        self.path = path
        self.expected = expected
        self.actual = actual
        if not message:
            message = (
                f"Digest mismatch for {path}: expected {expected or '<none>'}, "
                f"got {actual or '<missing file>'}"
            )
        super().__init__(message)


class SignatureError(IntegrityError):
    """Raised when a signature file is missing or cannot be parsed."""

    def __init__(self, path, reason: str):
        self.reason = reason
        super().__init__(path, message=f"Signature for {path} unusable: {reason}")


class SignatureExistsError(DlnaBuildError):
    """Raised when signing would overwrite an existing signature."""

    def __init__(self, signature_path):
        self.signature_path = signature_path
        super().__init__(
            f"Refusing to replace existing signature {signature_path}; "
            "delete it explicitly to re-sign"
        )


# ============================================================================
# Fetch Exceptions
# ============================================================================


class FetchError(DlnaBuildError):
    """Base exception for download and snapshot failures."""

    pass


class FetchExhaustedError(FetchError):
    """Raised when every retry attempt for a remote resource has failed."""

    def __init__(self, url: str, attempts: int, last_error: str = ""):
        self.url = url
        self.attempts = attempts
        self.last_error = last_error
        msg = f"Giving up on {url} after {attempts} attempts"
        if last_error:
            msg += f": {last_error}"
        super().__init__(msg)


class SnapshotError(FetchError):
    """Raised when a repository snapshot cannot be produced."""

    pass


class CacheLockTimeout(FetchError):
    """Raised when a cache entry lock cannot be acquired within timeout."""

    pass


# ============================================================================
# Archive and Patch Exceptions
# ============================================================================


class ArchiveExtractionError(DlnaBuildError):
    """Raised when an archive cannot be extracted."""

    pass


class UnsupportedArchiveFormat(ArchiveExtractionError):
    """Raised when an archive's suffix maps to no known decompressor."""

    pass


class InsecureArchiveError(ArchiveExtractionError):
    """Raised when an archive member would land outside the destination."""

    pass


class PatchError(DlnaBuildError):
    """Raised when a patch fails its dry run or its real application."""

    def __init__(self, patch_file, target_dir, output: str = ""):
        self.patch_file = patch_file
        self.target_dir = target_dir
        self.output = output
        msg = f"Patch {patch_file} does not apply to {target_dir}"
        if output:
            msg += f"\n{output.strip()}"
        super().__init__(msg)


# ============================================================================
# Build Backend Exceptions
# ============================================================================


class BuildBackendError(DlnaBuildError):
    """Base exception for external builder failures."""

    def __init__(self, step: str, command, returncode: int, diagnostics=None):
        self.step = step
        self.command = list(command)
        self.returncode = returncode
        self.diagnostics = list(diagnostics or [])
        super().__init__(
            f"{step} failed with exit code {returncode}: {' '.join(self.command)}"
        )


class ConfigureError(BuildBackendError):
    """Raised when configure or cmake exits non-zero."""

    pass


class BuildError(BuildBackendError):
    """Raised when the compile step exits non-zero."""

    pass


class InstallError(BuildBackendError):
    """Raised when the install step exits non-zero."""

    pass


# ============================================================================
# Toolchain Exceptions
# ============================================================================


class ToolchainError(DlnaBuildError):
    """Base exception for toolchain provisioning errors."""

    pass


class ToolchainIncompleteError(ToolchainError):
    """Raised when a provisioned toolchain is missing required pieces."""

    def __init__(self, toolchain_dir, failures):
        self.toolchain_dir = toolchain_dir
        self.failures = list(failures)
        details = "\n  ".join(self.failures)
        super().__init__(f"Toolchain at {toolchain_dir} is incomplete:\n  {details}")


class FinalizeError(DlnaBuildError):
    """Raised when stripping or inspecting a binary fails."""

    pass


class StaticLinkError(FinalizeError):
    """Raised when a finalized binary still records shared library dependencies."""

    def __init__(self, needed):
        self.needed = dict(needed)
        parts = [f"{name}: {', '.join(libs)}" for name, libs in self.needed.items()]
        super().__init__("Not statically linked: " + "; ".join(parts))


# ============================================================================
# Pipeline and Configuration Exceptions
# ============================================================================


class FilesystemError(DlnaBuildError):
    """Raised for unexpected filesystem states."""

    pass


class StageError(DlnaBuildError):
    """Raised when a stage cannot proceed for a reason not covered above."""

    pass


class ConfigError(DlnaBuildError):
    """Raised when the settings file is malformed or names unknown keys."""

    pass
