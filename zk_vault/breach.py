"""
Breach Check — k-anonymity hashing for password breach lookups.

Only the first five characters of the password's upper-case SHA-1 digest
leave the process; the surrounding application fetches the matching range
(``SUFFIX:COUNT`` lines) and :func:`match_range` looks for the suffix
locally. This module performs no network I/O.
"""
import logging
from typing import Literal

from pydantic import BaseModel

from .crypto import digest_hex
from .exceptions import InvalidInput

logger = logging.getLogger("zk_vault")

PREFIX_LENGTH = 5

BreachRisk = Literal["safe", "low", "medium", "high", "critical"]


class BreachQuery(BaseModel):
    prefix: str
    suffix: str

    model_config = {"frozen": True}

    def __repr__(self) -> str:
        return f"<BreachQuery prefix={self.prefix}>"


class BreachResult(BaseModel):
    breached: bool
    count: int = 0


def breach_query(password: str) -> BreachQuery:
    """Split the SHA-1 digest of ``password`` into the range prefix and suffix."""
    if not isinstance(password, str) or not password:
        raise InvalidInput("password must be a non-empty string")
    digest = digest_hex(password, algorithm="sha1").upper()
    return BreachQuery(prefix=digest[:PREFIX_LENGTH], suffix=digest[PREFIX_LENGTH:])


def match_range(query: BreachQuery, body: str) -> BreachResult:
    """Look up ``query.suffix`` in a range response body.

    Malformed lines are skipped.
    """
    for line in body.splitlines():
        suffix, sep, count = line.strip().partition(":")
        if not sep or suffix.upper() != query.suffix:
            continue
        try:
            found = int(count.strip())
        except ValueError:
            logger.debug("Unparsable count in breach range for prefix=%s", query.prefix)
            continue
        return BreachResult(breached=found > 0, count=found)
    return BreachResult(breached=False, count=0)


def breach_risk(count: int) -> BreachRisk:
    if count <= 0:
        return "safe"
    if count <= 10:
        return "low"
    if count <= 100:
        return "medium"
    if count <= 1000:
        return "high"
    return "critical"
