from __future__ import annotations

import logging

from typing import Iterable, Optional, Protocol, Sequence

from influxdb_client import InfluxDBClient, Point, WritePrecision
from influxdb_client.client.write_api import SYNCHRONOUS

from glowmarkt_ingest.config import InfluxSettings
from glowmarkt_ingest.errors import SinkWriteError
from glowmarkt_ingest.transform import ReadingPoint


log = logging.getLogger(__name__)


class PointSink(Protocol):
    def write_points(self, points: Sequence[ReadingPoint]) -> int: ...

    def close(self) -> None: ...


def to_influx_point(p: ReadingPoint) -> Point:
    if p.timestamp.tzinfo is None:
        raise ValueError("ReadingPoint.timestamp must be timezone-aware")

    pt = Point(p.measurement)
    for key, value in p.tags.items():
        pt.tag(key, value)
    pt.field("value", float(p.value))
    pt.time(p.timestamp, WritePrecision.S)
    return pt


class InfluxSink:
    def __init__(self, settings: InfluxSettings, client: Optional[InfluxDBClient] = None):
        self.settings = settings
        self._client = client
        self._write_api = None

    def _api(self):
        if self._write_api is None:
            if self._client is None:
                self._client = InfluxDBClient(url=self.settings.url, token=self.settings.token,
                                              org=self.settings.org)
            self._write_api = self._client.write_api(write_options=SYNCHRONOUS)   # wait until write finished
        return self._write_api

    def write_points(self, points: Iterable[ReadingPoint]) -> int:
        record = [to_influx_point(p) for p in points]
        if not record:
            return 0

        try:
            log.info("Writing %d points to Influx bucket %s", len(record), self.settings.bucket)
            self._api().write(bucket=self.settings.bucket, org=self.settings.org, record=record,
                              write_precision=WritePrecision.S)
        except Exception as e:
            log.exception("Influx write failed")
            raise SinkWriteError(f"Influx write failed: {e}") from e
        return len(record)

    def close(self) -> None:
        if self._client is not None:
            self._client.close()
            self._client = None
            self._write_api = None

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()


class LogSink:
    """Dry-run sink, logs the points instead of writing them."""

    def write_points(self, points: Iterable[ReadingPoint]) -> int:
        n = 0
        for p in points:
            log.debug("%s %s value=%s %s", p.measurement, p.tags, p.value, p.timestamp.isoformat())
            n += 1
        log.info("Dry run: %d points not written", n)
        return n

    def close(self) -> None:
        pass
