"""
Vault Configuration — validated settings for custody lifetimes and audit.

Cryptographic parameters (iterations, key and nonce sizes) are module
constants in :mod:`zk_vault.kdf` and :mod:`zk_vault.crypto` and are not
configurable: all vaults must stay mutually comparable.

Security Note:
    Configuration never contains key material.
"""
import logging
from collections.abc import Mapping
from typing import Any, Optional

from pydantic import BaseModel, Field, ValidationError, field_validator, model_validator

logger = logging.getLogger("zk_vault")

DEFAULT_AUTO_LOCK_TIMEOUT = 30 * 60
DEFAULT_SESSION_TTL = 60 * 60
DEFAULT_AUDIT_MAX_ENTRIES = 500


class VaultConfig(BaseModel):
    """Validated vault configuration."""

    auto_lock_timeout: int = Field(default=DEFAULT_AUTO_LOCK_TIMEOUT, ge=60, le=86400)
    session_ttl: int = Field(default=DEFAULT_SESSION_TTL, ge=60)
    audit_max_entries: int = Field(default=DEFAULT_AUDIT_MAX_ENTRIES, ge=1, le=10000)
    offload_kdf: bool = Field(default=True)

    model_config = {"extra": "forbid", "frozen": True}

    @field_validator("auto_lock_timeout", "session_ttl", mode="before")
    @classmethod
    def reject_bool(cls, v: Any) -> Any:
        """Booleans are ints in Python; a timeout of ``True`` is a mistake."""
        if isinstance(v, bool):
            raise ValueError("timeouts must be integers, not booleans")
        return v

    @model_validator(mode="after")
    def validate_lifetimes(self) -> "VaultConfig":
        """Session-tier records must not expire before the vault auto-locks."""
        if self.session_ttl < self.auto_lock_timeout:
            raise ValueError(
                f"session_ttl ({self.session_ttl}) must be >= "
                f"auto_lock_timeout ({self.auto_lock_timeout})"
            )
        return self


class ConfigValidation(BaseModel):
    """Outcome of :func:`validate_config`."""

    valid: bool
    config: Optional[VaultConfig] = None
    errors: list[str] = Field(default_factory=list)


def validate_config(data: Mapping[str, Any] | None = None) -> ConfigValidation:
    """Validate a settings mapping into a :class:`VaultConfig`.

    Args:
        data: Raw settings (e.g. loaded by the surrounding application).
            ``None`` yields the defaults.

    Returns:
        A ConfigValidation with either ``config`` set or ``errors`` filled.
    """
    if data is not None and not isinstance(data, Mapping):
        return ConfigValidation(valid=False, errors=["settings must be a mapping"])
    try:
        config = VaultConfig.model_validate(dict(data or {}))
    except ValidationError as err:
        errors = [
            f"{'.'.join(map(str, e['loc'])) or 'settings'}: {e['msg']}"
            for e in err.errors()
        ]
        logger.warning("Invalid vault settings: %d error(s)", len(errors))
        return ConfigValidation(valid=False, errors=errors)
    return ConfigValidation(valid=True, config=config)
