# token lifecycle: cached token while valid, live login on any cache problem
#   a failed login is fatal for the run
#   the cache is not locked, concurrent runs must not share one cache path

from __future__ import annotations

import logging

from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

import requests

from glowmarkt_ingest.config import GlowmarktSettings
from glowmarkt_ingest.errors import AuthError, CacheError, CacheWriteError, MissingExpiryError
from glowmarkt_ingest.glowmarkt.client import build_headers, describe_failure
from glowmarkt_ingest.glowmarkt.token import Token, TokenStore, is_valid


log = logging.getLogger(__name__)


@dataclass(frozen=True)
class Credentials:
    username: str
    password: str = field(repr=False)


class AuthManager:
    def __init__(self, settings: GlowmarktSettings, session: Optional[requests.Session] = None):
        self.settings = settings
        self.session = session if session is not None else requests.Session()

    def obtain_token(self, credentials: Credentials, cache_path: Optional[Path] = None) -> Token:
        if cache_path is None:
            return self.login(credentials)

        store = TokenStore(path=Path(cache_path))
        cached = self._cached_token(store)
        if cached is not None:
            log.info("Using cached token from %s", store.path)
            return cached

        token = self.login(credentials)
        try:
            store.save(token)
        except CacheWriteError as e:
            log.warning("Token not cached, continuing: %s", e)
        return token

    def _cached_token(self, store: TokenStore) -> Optional[Token]:
        try:
            token = store.load()
            if is_valid(token):
                return token
            log.info("Cached token expires soon, refreshing")
        except (CacheError, MissingExpiryError) as e:
            log.info("Token cache not usable (%s), logging in", e)
        return None

    def login(self, credentials: Credentials) -> Token:
        log.info("Requesting new token for %s", credentials.username)
        body = {"username": credentials.username, "password": credentials.password}

        try:
            r = self.session.post(
                self.settings.auth_url,
                json=body,
                headers=build_headers(self.settings),
                timeout=self.settings.timeout,
            )
        except requests.RequestException as e:
            raise AuthError(f"Auth endpoint unreachable: {e}") from e

        if not r.ok:
            raise AuthError(f"Authentication failed: {describe_failure(r)}")

        try:
            payload = r.json()
        except ValueError as e:
            raise AuthError(f"Auth response is not valid JSON: {e}") from e
        if not isinstance(payload, dict):
            raise AuthError("Auth response is not a JSON object")
        if payload.get("valid") is False:
            raise AuthError("Authentication rejected by the API")
        if payload.get("exp") is None:
            raise AuthError("Auth response has no expiry")

        try:
            token = Token.from_payload(payload)
        except ValueError as e:
            raise AuthError(f"Unexpected auth response: {e}") from e

        log.debug("New token valid until %s", token.exp)
        return token
