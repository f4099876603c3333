# client to the Glowmarkt (Bright) API
#   GET /virtualentity                      -> entities with their resources
#   GET /resource/{id}/readings?from&to&period&function -> one reading per window

from __future__ import annotations

import logging
import threading

from typing import Optional

import requests

from glowmarkt_ingest.batching import DateRange
from glowmarkt_ingest.config import GlowmarktSettings
from glowmarkt_ingest.errors import EntityListingError, FetchError, ParseError, parse_api_error
from glowmarkt_ingest.glowmarkt.models import Entity, Reading, ReadingQuery
from glowmarkt_ingest.glowmarkt.token import Token


log = logging.getLogger(__name__)


def build_headers(settings: GlowmarktSettings, token: Optional[Token] = None) -> dict:
    headers = {
        "applicationId": settings.application_id,
        "Content-Type": "application/json",
    }
    if token is not None:
        headers["token"] = token.token
    return headers


def describe_failure(resp) -> str:
    api_err = parse_api_error(resp)
    if api_err:
        return str(api_err)
    return f"HTTP {resp.status_code} {resp.reason or ''}".strip()


class GlowmarktClient:
    def __init__(self, settings: GlowmarktSettings, token: Token, session: Optional[requests.Session] = None):
        self.settings = settings
        self.headers = build_headers(settings, token)
        self.session = session if session is not None else requests.Session()
        self.session.headers.update(self.headers)
        # requests sessions are not thread-safe, pool threads get their own
        self._owner = threading.get_ident()
        self._local = threading.local()
        self._lock = threading.Lock()
        self._worker_sessions: list[requests.Session] = []

    def close(self) -> None:
        self.session.close()
        with self._lock:
            sessions, self._worker_sessions = self._worker_sessions, []
        for s in sessions:
            s.close()

    def _session(self) -> requests.Session:
        if threading.get_ident() == self._owner:
            return self.session
        s = getattr(self._local, "session", None)
        if s is None:
            s = requests.Session()
            s.headers.update(self.headers)
            self._local.session = s
            with self._lock:
                self._worker_sessions.append(s)
        return s

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()

    def list_entities(self) -> list[Entity]:
        url = self.settings.entity_url
        try:
            r = self._session().get(url, timeout=self.settings.timeout)
        except requests.RequestException as e:
            raise EntityListingError(f"Entity listing failed: {e}") from e
        if not r.ok:
            raise EntityListingError(f"Entity listing failed: {describe_failure(r)}")

        try:
            payload = r.json()
        except ValueError as e:
            raise EntityListingError(f"Entity listing returned invalid JSON: {e}") from e
        if not isinstance(payload, list):
            raise EntityListingError("Entity listing did not return a list")

        try:
            entities = [Entity.from_payload(p) for p in payload]
        except ParseError as e:
            raise EntityListingError(f"Entity listing has unexpected shape: {e}") from e

        log.info("Found %d entities with %d resources",
                 len(entities), sum(len(e.resources) for e in entities))
        return entities

    def build_query(self, date_range: DateRange, period: Optional[str] = None,
                    function: Optional[str] = None) -> ReadingQuery:
        from_, to = date_range.query_bounds()
        return ReadingQuery(
            from_=from_,
            to=to,
            period=period or self.settings.period,
            function=function or self.settings.function,
        )

    def get_readings(self, resource_id: str, date_range: DateRange, period: Optional[str] = None,
                     function: Optional[str] = None) -> Reading:
        query = self.build_query(date_range, period, function)
        url = self.settings.readings_url(resource_id)
        log.debug("Fetching %s %s", resource_id, query)

        try:
            r = self._session().get(url, params=query.as_params(), timeout=self.settings.timeout)
        except requests.RequestException as e:
            raise FetchError(f"Readings request for {resource_id} failed: {e}") from e
        if not r.ok:
            raise FetchError(f"Readings request for {resource_id} failed: {describe_failure(r)}")

        try:
            payload = r.json()
        except ValueError as e:
            raise ParseError(f"Readings for {resource_id} are not valid JSON: {e}") from e

        reading = Reading.from_payload(payload, resource_id=resource_id)
        log.info("Fetched %d rows of %s for %s (%s)", len(reading.data), reading.classifier,
                 resource_id, date_range)
        return reading
