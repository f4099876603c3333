"""Tests for the fetch/transform/write orchestration."""

import threading
import time
from datetime import timedelta
from unittest.mock import MagicMock

import pytest

from conftest import reading_payload
from glowmarkt_ingest.batching import batch_range
from glowmarkt_ingest.errors import DeadlineExceededError, FetchError, ParseError, SinkWriteError
from glowmarkt_ingest.glowmarkt.models import Entity, Reading, Resource
from glowmarkt_ingest.pipeline import iter_jobs, run_pipeline


class FakeClient:
    """Answers get_readings from a table; (resource_id, batch index) -> exception fails that job."""

    def __init__(self, batches, failures=None, delay=0.0):
        self.batches = batches
        self.failures = failures or {}
        self.delay = delay
        self.calls = []
        self._lock = threading.Lock()

    def get_readings(self, resource_id, date_range, period=None, function=None):
        with self._lock:
            self.calls.append((resource_id, date_range, period, function))
        if self.delay:
            time.sleep(self.delay)
        i = self.batches.index(date_range)
        error = self.failures.get((resource_id, i))
        if error is not None:
            raise error
        ts = int(date_range.start.timestamp())
        return Reading.from_payload(reading_payload(resource_id=resource_id, data=[[ts, 1.0], [ts + 1800, 2.0]]))


class RecordingSink:
    def __init__(self, fail_on=None):
        self.points = []
        self.fail_on = fail_on

    def write_points(self, points):
        points = list(points)
        if self.fail_on is not None and points and points[0].timestamp == self.fail_on:
            raise SinkWriteError("influx down")
        self.points.extend(points)
        return len(points)


@pytest.fixture
def batches(utc):
    start = utc(2024, 12, 1)
    return batch_range(start, start + timedelta(days=25), 10)


@pytest.fixture
def entities():
    return [
        Entity("ve-1", resources=(Resource("elec"), Resource("gas"))),
        Entity("ve-2", resources=(Resource("solar"),)),
    ]


def test_iter_jobs_order(entities, batches):
    jobs = list(iter_jobs(entities, batches))

    assert len(jobs) == 9
    assert [(j.resource.resource_id, batches.index(j.date_range)) for j in jobs[:4]] == [
        ("elec", 0), ("elec", 1), ("elec", 2), ("gas", 0),
    ]


def test_all_jobs_succeed(entities, batches):
    client, sink = FakeClient(batches), RecordingSink()

    report = run_pipeline(client, entities, batches, sink, period="PT30M", function="sum")

    assert len(report.readings) == 9
    assert report.points_written == 18
    assert len(sink.points) == 18
    assert report.failures == []
    assert report.succeeded
    assert {c[2:] for c in client.calls} == {("PT30M", "sum")}


def test_failure_does_not_stop_other_jobs(entities, batches):
    client = FakeClient(batches, failures={
        ("elec", 1): FetchError("HTTP 500"),
        ("solar", 2): ParseError("bad body"),
    })
    sink = RecordingSink()

    report = run_pipeline(client, entities, batches, sink)

    assert len(client.calls) == 9
    assert len(report.readings) == 7
    assert report.points_written == 14
    assert [(f.resource_id, batches.index(f.date_range)) for f in report.failures] == [
        ("elec", 1), ("solar", 2),
    ]
    assert isinstance(report.failures[1].error, ParseError)
    assert report.succeeded


class MillisecondClient(FakeClient):
    """Sends millisecond timestamps for one resource, as a misbehaving upstream would."""

    def __init__(self, batches, bad_resource):
        super().__init__(batches)
        self.bad_resource = bad_resource

    def get_readings(self, resource_id, date_range, period=None, function=None):
        if resource_id != self.bad_resource:
            return super().get_readings(resource_id, date_range, period, function)
        self.calls.append((resource_id, date_range, period, function))
        ts_ms = int(date_range.start.timestamp()) * 1000
        return Reading.from_payload(reading_payload(resource_id=resource_id, data=[[ts_ms, 1.0]]))


def test_out_of_range_timestamps_fail_only_their_job(entities, batches):
    sink = RecordingSink()

    report = run_pipeline(MillisecondClient(batches, "gas"), entities, batches, sink)

    assert len(report.failures) == 3
    assert {f.resource_id for f in report.failures} == {"gas"}
    assert all(isinstance(f.error, ParseError) for f in report.failures)
    assert report.points_written == 12
    assert {p.timestamp.year for p in sink.points} == {2024}


def test_all_jobs_fail(entities, batches):
    failures = {(r, i): FetchError("down") for r in ("elec", "gas", "solar") for i in range(3)}

    report = run_pipeline(FakeClient(batches, failures), entities, batches, RecordingSink())

    assert report.points_written == 0
    assert len(report.failures) == 9
    assert not report.succeeded


def test_no_resources_is_success(batches):
    report = run_pipeline(FakeClient(batches), [Entity("ve-1")], batches, RecordingSink())

    assert report.points_written == 0
    assert report.succeeded


def test_sink_failure_recorded(entities, batches):
    fail_on = batches[1].start
    sink = RecordingSink(fail_on=fail_on)

    report = run_pipeline(FakeClient(batches), entities, batches, sink)

    assert len(report.failures) == 3    # one per resource
    assert all(isinstance(f.error, SinkWriteError) for f in report.failures)
    assert report.points_written == 12


def test_unexpected_errors_propagate(entities, batches):
    client = FakeClient(batches, failures={("gas", 0): KeyError("bug")})

    with pytest.raises(KeyError):
        run_pipeline(client, entities, batches, RecordingSink())


def test_pooled_matches_sequential(entities, batches):
    failures = {("gas", 1): FetchError("HTTP 502")}
    sink = RecordingSink()

    report = run_pipeline(FakeClient(batches, failures, delay=0.01), entities, batches, sink, workers=4)

    assert len(report.readings) == 8
    assert report.points_written == 16
    assert [(f.resource_id, batches.index(f.date_range)) for f in report.failures] == [("gas", 1)]


def test_deadline_already_passed(entities, batches):
    client = FakeClient(batches)

    report = run_pipeline(client, entities, batches, RecordingSink(), deadline=time.monotonic() - 1)

    assert client.calls == []
    assert len(report.failures) == 9
    assert all(isinstance(f.error, DeadlineExceededError) for f in report.failures)
    assert not report.succeeded


def test_deadline_mid_run(entities, batches):
    client = FakeClient(batches)
    clock = MagicMock(side_effect=[0.0, 0.0, 0.0, 100.0] + [100.0] * 10)

    with pytest.MonkeyPatch.context() as mp:
        mp.setattr("glowmarkt_ingest.pipeline.time.monotonic", clock)
        report = run_pipeline(client, entities, batches, RecordingSink(), deadline=50.0)

    assert len(client.calls) == 3
    assert len(report.readings) == 3
    assert len(report.failures) == 6
    assert report.succeeded


def test_pooled_deadline(entities, batches):
    client = FakeClient(batches, delay=0.5)

    report = run_pipeline(client, entities, batches, RecordingSink(), workers=2,
                          deadline=time.monotonic() + 0.2)

    assert report.readings == []
    assert len(report.failures) == 9
    assert all(isinstance(f.error, DeadlineExceededError) for f in report.failures)


def test_invalid_workers(entities, batches):
    with pytest.raises(ValueError):
        run_pipeline(FakeClient(batches), entities, batches, RecordingSink(), workers=0)
