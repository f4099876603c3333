# exception taxonomy of the ingest run
#   fatal:      AuthError, EntityListingError, InvalidRangeError, InvalidArgumentsError
#   recovered:  Cache*Error, MissingExpiryError -> live auth
#   per job:    FetchError, ParseError, SinkWriteError, DeadlineExceededError

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional


class IngestError(Exception):
    pass


class AuthError(IngestError):
    pass


class CacheError(IngestError):
    pass


class CacheNotFoundError(CacheError):
    pass


class CacheReadError(CacheError):
    pass


class CacheCorruptError(CacheError):
    pass


class CacheWriteError(CacheError):
    pass


class MissingExpiryError(IngestError):
    pass


class EntityListingError(IngestError):
    pass


class FetchError(IngestError):
    pass


class ParseError(IngestError):
    pass


class SinkWriteError(IngestError):
    pass


class DeadlineExceededError(IngestError):
    pass


class InvalidArgumentsError(IngestError, ValueError):
    pass


class InvalidRangeError(InvalidArgumentsError):
    pass


@dataclass
class ApiError:
    http_status: int
    message: str

    def __str__(self) -> str:
        return f"HTTP {self.http_status}: {self.message}" if self.message else f"HTTP {self.http_status}"


def parse_api_error(resp) -> Optional[ApiError]:
    """Pull the upstream error message out of a JSON error body, if there is one."""
    ct = (resp.headers.get("content-type") or "").lower()
    if "application/json" not in ct:
        return None
    try:
        j = resp.json()
    except ValueError:
        return None
    if not isinstance(j, dict):
        return None

    msg = ""
    for key in ("error", "message", "status"):
        m = j.get(key)
        if isinstance(m, dict):
            m = m.get("message") or m.get("value")
        if isinstance(m, str) and m:
            msg = m
            break

    return ApiError(resp.status_code, msg)
