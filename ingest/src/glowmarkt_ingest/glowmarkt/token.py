# access token of the Glowmarkt API and its on-disk cache
#   cache file = the auth response as returned by the API, at least {"token": str, "exp": int}

from __future__ import annotations

import json
import logging
import os
import tempfile
import time

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Mapping, Optional

from glowmarkt_ingest.config import TOKEN_SAFETY_MARGIN
from glowmarkt_ingest.errors import (
    CacheCorruptError,
    CacheNotFoundError,
    CacheReadError,
    CacheWriteError,
    MissingExpiryError,
)


log = logging.getLogger(__name__)


@dataclass(frozen=True)
class Token:
    token: str
    exp: Optional[int]          # unix seconds
    extra: dict[str, Any] = field(default_factory=dict, compare=False)   # rest of the auth response

    def __repr__(self) -> str:
        return f"Token(token='***', exp={self.exp})"

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> "Token":
        """Build a token from a decoded auth response / cache file.

        Raises ValueError if the token string is missing or the expiry is not an integer.
        A missing expiry is allowed here; is_valid() reports it.
        """
        tok = payload.get("token")
        if not isinstance(tok, str) or not tok:
            raise ValueError("'token' missing or not a non-empty string")

        exp = payload.get("exp")
        if exp is not None:
            if isinstance(exp, bool) or not isinstance(exp, (int, float)) or not float(exp).is_integer():
                raise ValueError(f"'exp' is not an epoch seconds value: {exp!r}")
            exp = int(exp)

        extra = {k: v for k, v in payload.items() if k not in ("token", "exp")}
        return cls(token=tok, exp=exp, extra=extra)

    def to_payload(self) -> dict[str, Any]:
        payload = dict(self.extra)
        payload["token"] = self.token
        if self.exp is not None:
            payload["exp"] = self.exp
        return payload


def is_valid(token: Token, now: Optional[float] = None, margin_seconds: int = TOKEN_SAFETY_MARGIN) -> bool:
    if token.exp is None:
        raise MissingExpiryError("token does not contain an expiry")
    if now is None:
        now = time.time()

    remaining = token.exp - now
    log.debug("Token expiry: %s, seconds remaining: %d", token.exp, remaining)
    return remaining > margin_seconds


@dataclass
class TokenStore:
    path: Path

    def load(self) -> Token:
        if not self.path.exists():
            raise CacheNotFoundError(f"No token cache at {self.path}")
        try:
            raw = self.path.read_bytes()
        except OSError as e:
            raise CacheReadError(f"Unable to read token cache {self.path}: {e}") from e

        try:
            data = json.loads(raw.decode("utf-8"))   # UnicodeDecodeError is a ValueError too
        except ValueError as e:
            raise CacheCorruptError(f"Token cache {self.path} is not valid JSON: {e}") from e
        if not isinstance(data, dict):
            raise CacheCorruptError(f"Token cache {self.path} is not a JSON object")
        if "exp" not in data:
            raise CacheCorruptError(f"Token cache {self.path} has no expiry")

        try:
            return Token.from_payload(data)
        except ValueError as e:
            raise CacheCorruptError(f"Token cache {self.path}: {e}") from e

    def save(self, token: Token) -> None:
        # write-then-rename, a crash never leaves a half written cache behind
        tmp_name = None
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with tempfile.NamedTemporaryFile(
                "w", encoding="utf-8", dir=self.path.parent,
                prefix=f".{self.path.name}.", suffix=".tmp", delete=False,
            ) as f:
                tmp_name = f.name
                json.dump(token.to_payload(), f, ensure_ascii=False, indent=2)
            os.replace(tmp_name, self.path)
        except OSError as e:
            if tmp_name and os.path.exists(tmp_name):
                os.unlink(tmp_name)
            raise CacheWriteError(f"Unable to write token cache {self.path}: {e}") from e
        log.debug("Token cached to %s", self.path)

    def clear(self) -> None:
        if self.path.exists():
            self.path.unlink()
