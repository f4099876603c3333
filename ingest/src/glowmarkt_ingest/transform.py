from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone

from glowmarkt_ingest.glowmarkt.models import Reading


@dataclass(frozen=True)
class ReadingPoint:
    timestamp: datetime         # UTC
    value: float
    measurement: str            # the reading's classifier, e.g. electricity.consumption
    tags: dict[str, str] = field(default_factory=dict)


def to_points(reading: Reading) -> list[ReadingPoint]:
    points = []
    for ts, value in reading.data:
        if value is None:       # gaps come back as null
            continue
        points.append(ReadingPoint(
            timestamp=datetime.fromtimestamp(ts, tz=timezone.utc),
            value=value,
            measurement=reading.classifier,
            tags={"classifier": reading.classifier},
        ))
    return points
