# fetch every (resource, window) pair and hand the points to a sink
#   failed fetch / bad body / rejected write -> FetchFailure, run goes on with the next job
#   points are written per reading, a deadline or interrupt keeps what was written so far
#   workers > 1: HTTP on a fixed-size pool, one requests session per pool thread;
#   transform and write stay on the calling thread

from __future__ import annotations

import logging
import time

from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from typing import Iterable, Iterator, Optional, Sequence

from glowmarkt_ingest.batching import DateRange
from glowmarkt_ingest.errors import DeadlineExceededError, FetchError, ParseError, SinkWriteError
from glowmarkt_ingest.glowmarkt.client import GlowmarktClient
from glowmarkt_ingest.glowmarkt.models import Entity, Reading, Resource
from glowmarkt_ingest.influx.writer import PointSink
from glowmarkt_ingest.transform import to_points


log = logging.getLogger(__name__)

JOB_ERRORS = (FetchError, ParseError, SinkWriteError)


@dataclass(frozen=True)
class FetchJob:
    resource: Resource
    date_range: DateRange


@dataclass(frozen=True)
class FetchFailure:
    resource_id: str
    date_range: DateRange
    error: Exception

    def __str__(self) -> str:
        return f"{self.resource_id} [{self.date_range}]: {self.error}"


@dataclass
class RunReport:
    readings: list[Reading] = field(default_factory=list)
    failures: list[FetchFailure] = field(default_factory=list)
    points_written: int = 0

    @property
    def succeeded(self) -> bool:
        # all jobs failing is the only unsuccessful outcome of a completed run
        return self.points_written > 0 or not self.failures


def iter_jobs(entities: Iterable[Entity], batches: Sequence[DateRange]) -> Iterator[FetchJob]:
    for entity in entities:
        for resource in entity.resources:
            for date_range in batches:
                yield FetchJob(resource, date_range)


def _deadline_passed(deadline: Optional[float]) -> bool:
    return deadline is not None and time.monotonic() >= deadline


class Pipeline:
    def __init__(self, client: GlowmarktClient, sink: PointSink, period: Optional[str] = None,
                 function: Optional[str] = None, workers: int = 1, deadline: Optional[float] = None):
        if workers < 1:
            raise ValueError("workers must be >= 1")
        self.client = client
        self.sink = sink
        self.period = period
        self.function = function
        self.workers = workers
        self.deadline = deadline
        self.report = RunReport()

    def run(self, jobs: Iterable[FetchJob]) -> RunReport:
        jobs = list(jobs)
        log.info("Processing %d fetch jobs with %d worker(s)", len(jobs), self.workers)
        if self.workers == 1:
            self._run_sequential(jobs)
        else:
            self._run_pooled(jobs)

        log.info("Run finished: %d readings, %d points written, %d failures",
                 len(self.report.readings), self.report.points_written, len(self.report.failures))
        return self.report

    def _fetch(self, job: FetchJob) -> Reading:
        return self.client.get_readings(job.resource.resource_id, job.date_range, self.period, self.function)

    def _fail(self, job: FetchJob, error: Exception) -> None:
        failure = FetchFailure(job.resource.resource_id, job.date_range, error)
        log.error("Job failed: %s", failure)
        self.report.failures.append(failure)

    def _accept(self, job: FetchJob, reading: Reading) -> None:
        self.report.readings.append(reading)
        try:
            self.report.points_written += self.sink.write_points(to_points(reading))
        except SinkWriteError as e:
            self._fail(job, e)

    def _skip_remaining(self, jobs: Iterable[FetchJob]) -> None:
        for job in jobs:
            self._fail(job, DeadlineExceededError("run deadline passed before the job finished"))

    def _run_sequential(self, jobs: list[FetchJob]) -> None:
        for i, job in enumerate(jobs):
            if _deadline_passed(self.deadline):
                self._skip_remaining(jobs[i:])
                return
            try:
                reading = self._fetch(job)
            except JOB_ERRORS as e:
                self._fail(job, e)
                continue
            self._accept(job, reading)

    def _run_pooled(self, jobs: list[FetchJob]) -> None:
        executor = ThreadPoolExecutor(max_workers=self.workers, thread_name_prefix="fetch")
        pending: dict[Future, tuple[int, FetchJob]] = {}
        try:
            pending = {executor.submit(self._fetch, job): (i, job) for i, job in enumerate(jobs)}
            while pending:
                timeout = None
                if self.deadline is not None:
                    timeout = max(0.0, self.deadline - time.monotonic())
                done, _ = wait(pending, timeout=timeout, return_when=FIRST_COMPLETED)
                if not done:        # deadline
                    break
                # keep submission order among the jobs that finished together
                for fut in sorted(done, key=lambda f: pending[f][0]):
                    _, job = pending.pop(fut)
                    try:
                        reading = fut.result()
                    except JOB_ERRORS as e:
                        self._fail(job, e)
                        continue
                    self._accept(job, reading)
        finally:
            # queued jobs never start; in-flight ones run on their own thread's session,
            # bounded by the HTTP timeout, and fail harmlessly once client.close() shuts it
            executor.shutdown(wait=False, cancel_futures=True)

        if pending:
            self._skip_remaining(job for _, job in sorted(pending.values(), key=lambda p: p[0]))


def run_pipeline(client: GlowmarktClient, entities: Iterable[Entity], batches: Sequence[DateRange],
                 sink: PointSink, period: Optional[str] = None, function: Optional[str] = None,
                 workers: int = 1, deadline: Optional[float] = None) -> RunReport:
    pipeline = Pipeline(client, sink, period=period, function=function, workers=workers, deadline=deadline)
    return pipeline.run(iter_jobs(entities, batches))
