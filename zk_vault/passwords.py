"""
Password utilities: generation, strength rating and master-password policy.
"""
import re
import secrets
import string
from typing import Literal

from pydantic import BaseModel, Field

from .exceptions import InvalidInput

SYMBOLS = "!@#$%^&*()_+~`|}{[]:;?><,./-="
MIN_MASTER_LENGTH = 8

Strength = Literal["weak", "medium", "strong"]

_SYMBOL_RE = re.compile(f"[{re.escape(SYMBOLS)}]")


def generate_password(
    length: int = 16,
    uppercase: bool = True,
    lowercase: bool = True,
    digits: bool = True,
    symbols: bool = True,
) -> str:
    """Random password over the selected character classes.

    ``secrets.choice`` draws uniformly, so no character is favoured. With
    every class disabled, letters and digits are used.
    """
    if isinstance(length, bool) or not isinstance(length, int) or length < 1:
        raise InvalidInput("length must be a positive integer")
    charset = ""
    if lowercase:
        charset += string.ascii_lowercase
    if uppercase:
        charset += string.ascii_uppercase
    if digits:
        charset += string.digits
    if symbols:
        charset += SYMBOLS
    if not charset:
        charset = string.ascii_letters + string.digits
    return "".join(secrets.choice(charset) for _ in range(length))


def _variety(password: str) -> int:
    return sum((
        any(c.islower() for c in password),
        any(c.isupper() for c in password),
        any(c.isdigit() for c in password),
        bool(_SYMBOL_RE.search(password)),
    ))


def password_strength(password: str) -> Strength:
    """weak: under 8 chars or one class; medium: under 12 or two classes."""
    variety = _variety(password)
    if len(password) < 8 or variety < 2:
        return "weak"
    if len(password) < 12 or variety < 3:
        return "medium"
    return "strong"


class PasswordPolicyResult(BaseModel):
    """Outcome of :func:`validate_master_password`."""

    valid: bool
    errors: list[str] = Field(default_factory=list)


def validate_master_password(password: str) -> PasswordPolicyResult:
    """Check a candidate master password against the policy."""
    errors = []
    if len(password) < MIN_MASTER_LENGTH:
        errors.append(f"must be at least {MIN_MASTER_LENGTH} characters long")
    if not any(c.islower() for c in password):
        errors.append("must contain a lowercase letter")
    if not any(c.isupper() for c in password):
        errors.append("must contain an uppercase letter")
    if not any(c.isdigit() for c in password):
        errors.append("must contain a digit")
    if not _SYMBOL_RE.search(password):
        errors.append("must contain a special character")
    return PasswordPolicyResult(valid=not errors, errors=errors)
