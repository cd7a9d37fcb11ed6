"""
Vault Codec — credential records to and from the plaintext payload.

Payload layout (orjson, UTF-8)::

    {"passwords": [ {record}, {record}, ... ]}

Records keep the caller's order; the codec never sorts and never checks id
uniqueness. Anything that is not exactly this shape is rejected with
:class:`CorruptVault`; partial data is never returned.

Security Note:
    The payload contains every secret in the vault. Never log it.
"""
import uuid
import logging
from datetime import datetime, timezone
from typing import Any, Optional

import orjson
from pydantic import BaseModel, Field, SecretStr, ValidationError, field_serializer
from pydantic.alias_generators import to_camel

from .exceptions import CorruptVault

logger = logging.getLogger("zk_vault")

PAYLOAD_KEY = "passwords"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class CustomField(BaseModel):
    """A user-defined (label, value) pair attached to a record."""

    label: str
    value: str

    model_config = {"extra": "forbid"}


class CredentialRecord(BaseModel):
    """One credential in the vault.

    ``secret`` is a :class:`~pydantic.SecretStr` so it never shows up in
    ``repr()`` or tracebacks; it is written out in clear only inside the
    payload that gets encrypted.
    """

    id: str = Field(default_factory=lambda: uuid.uuid4().hex, min_length=1)
    title: str
    secret: SecretStr = Field(alias="password")
    username: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    website: Optional[str] = None
    notes: Optional[str] = None
    custom_fields: list[CustomField] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    model_config = {
        "extra": "forbid",
        "alias_generator": to_camel,
        "populate_by_name": True,
    }

    @field_serializer("secret", when_used="always")
    def _reveal_secret(self, value: SecretStr) -> str:
        return value.get_secret_value()

    def to_payload(self) -> dict[str, Any]:
        """JSON-ready dict with camelCase keys."""
        return self.model_dump(mode="json", by_alias=True)

    def touch(self) -> None:
        self.updated_at = utcnow()


# ---------------------------------------------------------------------------
# Serialization
# ---------------------------------------------------------------------------

def serialize(records: list[CredentialRecord]) -> bytes:
    """Serialize records, in the given order, into the plaintext payload."""
    return orjson.dumps({PAYLOAD_KEY: [record.to_payload() for record in records]})


def deserialize(data: bytes) -> list[CredentialRecord]:
    """Parse a plaintext payload back into records.

    Raises:
        CorruptVault: If the payload is not valid JSON, is not shaped as
            ``{"passwords": [...]}``, or any record fails validation.
    """
    try:
        parsed = orjson.loads(data)
    except (orjson.JSONDecodeError, TypeError) as err:
        raise CorruptVault("payload is not valid JSON") from err
    if not isinstance(parsed, dict) or set(parsed) != {PAYLOAD_KEY}:
        raise CorruptVault("payload must be an object with a single records list")
    items = parsed[PAYLOAD_KEY]
    if not isinstance(items, list):
        raise CorruptVault("records must be a list")
    records: list[CredentialRecord] = []
    for index, item in enumerate(items):
        if not isinstance(item, dict):
            raise CorruptVault(f"record {index} is not an object")
        try:
            records.append(CredentialRecord.model_validate(item))
        except ValidationError as err:
            # field names only; never the values
            fields = sorted({".".join(map(str, e["loc"])) for e in err.errors()})
            logger.warning("Rejected vault record %d: invalid %s", index, fields)
            raise CorruptVault(f"record {index} is invalid") from None
    return records
