"""
Vault Exceptions — the error taxonomy of the vault core.

Every exception carries a fixed ``message`` that is safe to show to a user.
Details about *why* an operation failed (wrong password vs. corrupted
ciphertext, which field failed to decode) stay in the internal log.

Security Note:
    Never put passwords, keys, plaintext or ciphertext in an exception.
"""


class VaultError(Exception):
    """Base class for all vault core errors."""

    message: str = "vault operation failed"

    def __init__(self, detail: str | None = None):
        self.detail = detail
        super().__init__(detail or self.message)


class InvalidInput(VaultError, ValueError):
    """Empty or malformed caller arguments."""

    message = "invalid input"


class EntropyUnavailable(VaultError):
    """No cryptographically secure random source; fatal for the operation."""

    message = "this device cannot perform this operation securely"


class MalformedEnvelope(VaultError):
    """The envelope text is not three valid base64 fields."""

    message = "vault data is invalid"


class CorruptVault(VaultError):
    """The decrypted payload is not a well-formed list of records."""

    message = "vault data is invalid"


class DecryptionFailed(VaultError):
    """Authentication failed: wrong password or tampered data, indistinguishably."""

    message = "incorrect password or corrupted data"

    def __init__(self, detail: str | None = None):
        # the detail is dropped: callers must not learn the cause
        super().__init__(None)


class CustodyExpired(VaultError):
    """A custody entry outlived its TTL. Treated as "absent" by recall()."""

    message = "secret is no longer held"


class VaultLocked(VaultError):
    """The vault key is not in custody; unlock again."""

    message = "vault is locked"


class ReauthenticationFailed(VaultError):
    """The identity challenge required by a sensitive operation was not met."""

    message = "re-authentication required"


class UnlockThrottled(VaultError):
    """Too many failed unlock attempts; retry after ``retry_after`` seconds."""

    message = "too many failed attempts, try again later"

    def __init__(self, retry_after: int):
        self.retry_after = retry_after
        super().__init__(f"{self.message} (retry in {retry_after}s)")
