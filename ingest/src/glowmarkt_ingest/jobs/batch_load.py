import logging
import argparse
import time

from datetime import datetime, date, timedelta
from pathlib import Path
from typing import Optional

from glowmarkt_ingest.batching import batch_range
from glowmarkt_ingest.config import (
    ConfigError,
    GlowmarktSettings,
    InfluxSettings,
    env,
    token_cache_path,
)
from glowmarkt_ingest.errors import IngestError, InvalidArgumentsError
from glowmarkt_ingest.glowmarkt.auth import AuthManager, Credentials
from glowmarkt_ingest.glowmarkt.client import GlowmarktClient
from glowmarkt_ingest.influx.writer import InfluxSink, LogSink
from glowmarkt_ingest.logging_setup import setup_logging
from glowmarkt_ingest.pipeline import run_pipeline

EXIT_OK = 0
EXIT_FAILED = 1     # fatal error, or every job failed
EXIT_USAGE = 2      # same code argparse uses
EXIT_INTERRUPTED = 130

log = logging.getLogger("batch_loader")


def local_midnight(d: date) -> datetime:
    return datetime.combine(d, datetime.min.time()).astimezone()


def parse_dt(value: str) -> datetime:
    """ISO datetime or date; dates mean local midnight, naive values get the local offset."""
    try:
        dt = datetime.fromisoformat(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"not an ISO date or datetime: {value!r}")
    if dt.tzinfo is None:
        dt = dt.astimezone()    # fixed local offset
    return dt


def default_range(today: Optional[date] = None) -> tuple[datetime, datetime]:
    today = today or date.today()
    return local_midnight(today - timedelta(days=1)), local_midnight(today)


def positive_int(value: str) -> int:
    n = int(value)
    if n <= 0:
        raise argparse.ArgumentTypeError("must be a positive integer")
    return n


def build_parser() -> argparse.ArgumentParser:
    settings = GlowmarktSettings()
    p = argparse.ArgumentParser(description="Pull readings from the Glowmarkt (Bright) API into InfluxDB")
    p.add_argument(
        "start_date", nargs="?", type=parse_dt,
        help="Start of the range (YYYY-MM-DD or ISO datetime), default = yesterday 00:00",
    )
    p.add_argument(
        "end_date", nargs="?", type=parse_dt,
        help="End of the range, exclusive, default = today 00:00",
    )
    p.add_argument("-p", "--period", default=settings.period,
                   help=f"Sampling period of the readings (default {settings.period})")
    p.add_argument("-f", "--function", default=settings.function,
                   help=f"Aggregation function (default {settings.function})")
    p.add_argument("--max-span-days", type=positive_int, default=settings.max_span_days,
                   help=f"Widest window per request in days (default {settings.max_span_days})")
    p.add_argument("-w", "--workers", type=positive_int, default=1,
                   help="Concurrent readings requests (default 1, sequential)")
    p.add_argument("--timeout", type=float, default=None,
                   help="Abort the remaining fetches after this many seconds")
    p.add_argument("--token-cache-file", type=Path, default=token_cache_path(),
                   help="Where to cache the API token (env TOKEN_CACHE_FILE)")
    p.add_argument("--dry-run", action="store_true",
                   help="Fetch and transform, but do not write to InfluxDB")
    return p


def resolve_range(args) -> tuple[datetime, datetime]:
    if (args.start_date is None) != (args.end_date is None):
        raise InvalidArgumentsError("give both start_date and end_date, or neither")
    if args.start_date is None:
        return default_range()
    return args.start_date, args.end_date


def run_batch(argv=None) -> int:
    setup_logging()
    parser = build_parser()
    args = parser.parse_args(argv)

    # everything that can be rejected without the network
    try:
        start, end = resolve_range(args)
        batches = batch_range(start, end, args.max_span_days)
        settings = GlowmarktSettings.from_env()
        credentials = Credentials(env("GM_USERNAME"), env("GM_PASSWORD"))
        influx = None if args.dry_run else InfluxSettings.from_env()
    except InvalidArgumentsError as e:
        log.error("Invalid arguments: %s", e)
        return EXIT_USAGE
    except ConfigError as e:
        log.error("%s", e)
        return EXIT_FAILED

    log.info("Batch run starts")
    log.info("Start: %s, end: %s, %d window(s) of max. %s days",
             start.isoformat(), end.isoformat(), len(batches), args.max_span_days)

    deadline = time.monotonic() + args.timeout if args.timeout else None
    sink = LogSink() if influx is None else InfluxSink(influx)
    try:
        token = AuthManager(settings).obtain_token(credentials, args.token_cache_file)
        with GlowmarktClient(settings, token) as client:
            entities = client.list_entities()
            report = run_pipeline(client, entities, batches, sink, period=args.period,
                                  function=args.function, workers=args.workers, deadline=deadline)
    except IngestError as e:
        log.error("Run aborted: %s", e)
        return EXIT_FAILED
    except KeyboardInterrupt:
        log.warning("Interrupted, points written so far are kept")
        return EXIT_INTERRUPTED
    finally:
        sink.close()

    for failure in report.failures:
        log.warning("Failed: %s", failure)
    if not report.succeeded:
        log.error("No points written, all %d job(s) failed", len(report.failures))
        return EXIT_FAILED
    return EXIT_OK


if __name__ == "__main__":
    raise SystemExit(run_batch())
