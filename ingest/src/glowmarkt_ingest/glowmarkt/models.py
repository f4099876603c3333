# typed records for the Glowmarkt API responses, validated at the boundary

from __future__ import annotations

import math

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Optional

from glowmarkt_ingest.errors import ParseError


def _require_str(payload: dict, key: str, what: str) -> str:
    v = payload.get(key)
    if not isinstance(v, str) or not v:
        raise ParseError(f"{what}: '{key}' missing or not a string")
    return v


def _is_number(v: Any) -> bool:
    # json accepts Infinity and NaN, neither is a reading
    if isinstance(v, bool) or not isinstance(v, (int, float)):
        return False
    return isinstance(v, int) or math.isfinite(v)


def _is_epoch_seconds(ts: int) -> bool:
    try:
        datetime.fromtimestamp(ts, tz=timezone.utc)
    except (OverflowError, ValueError, OSError):
        return False
    return True


@dataclass(frozen=True)
class Resource:
    resource_id: str
    name: str = ""
    resource_type_id: str = ""

    @classmethod
    def from_payload(cls, payload: Any) -> "Resource":
        if not isinstance(payload, dict):
            raise ParseError("resource is not a JSON object")
        return cls(
            resource_id=_require_str(payload, "resourceId", "resource"),
            name=payload.get("name") or "",
            resource_type_id=payload.get("resourceTypeId") or "",
        )


@dataclass(frozen=True)
class Entity:
    ve_id: str
    name: str = ""
    resources: tuple[Resource, ...] = ()

    @classmethod
    def from_payload(cls, payload: Any) -> "Entity":
        if not isinstance(payload, dict):
            raise ParseError("entity is not a JSON object")
        resources = payload.get("resources")
        if not isinstance(resources, list):
            raise ParseError("entity: 'resources' missing or not a list")
        return cls(
            ve_id=_require_str(payload, "veId", "entity"),
            name=payload.get("name") or "",
            resources=tuple(Resource.from_payload(r) for r in resources),
        )


@dataclass(frozen=True)
class ReadingQuery:
    from_: str      # local wall-clock, YYYY-MM-DDTHH:MM:SS
    to: str
    period: str     # e.g. PT30M
    function: str   # e.g. sum

    def as_params(self) -> dict[str, str]:
        return {"from": self.from_, "to": self.to, "period": self.period, "function": self.function}

    @classmethod
    def from_payload(cls, payload: Any) -> Optional["ReadingQuery"]:
        if not isinstance(payload, dict):
            return None
        return cls(
            from_=str(payload.get("from", "")),
            to=str(payload.get("to", "")),
            period=str(payload.get("period", "")),
            function=str(payload.get("function", "")),
        )


@dataclass(frozen=True)
class Reading:
    resource_id: str
    classifier: str
    units: str = ""
    name: str = ""
    data: tuple[tuple[int, Optional[float]], ...] = ()   # (epoch seconds, value)
    query: Optional[ReadingQuery] = field(default=None, compare=False)

    @classmethod
    def from_payload(cls, payload: Any, resource_id: str = "") -> "Reading":
        if not isinstance(payload, dict):
            raise ParseError("reading response is not a JSON object")

        classifier = _require_str(payload, "classifier", "reading")
        raw = payload.get("data")
        if not isinstance(raw, list):
            raise ParseError("reading: 'data' missing or not a list")

        rows = []
        for i, row in enumerate(raw):
            if not isinstance(row, (list, tuple)) or len(row) != 2:
                raise ParseError(f"reading: data row {i} is not a [timestamp, value] pair")
            ts, value = row
            if not _is_number(ts):
                raise ParseError(f"reading: data row {i} has a non-numeric timestamp {ts!r}")
            if value is not None and not _is_number(value):
                raise ParseError(f"reading: data row {i} has a non-numeric value {value!r}")
            ts = int(ts)
            if not _is_epoch_seconds(ts):
                raise ParseError(f"reading: data row {i} has an out of range timestamp {ts!r}")
            rows.append((ts, None if value is None else float(value)))

        return cls(
            resource_id=payload.get("resourceId") or resource_id,
            classifier=classifier,
            units=payload.get("units") or "",
            name=payload.get("name") or "",
            data=tuple(rows),
            query=ReadingQuery.from_payload(payload.get("query")),
        )
