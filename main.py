from __future__ import annotations

import argparse
import logging
import os
import sys
import threading
from pathlib import Path

from collector.config import (
    DEFAULT_INTERVAL_MS,
    DEFAULT_MODBUS_PORT,
    DEFAULT_TIMEOUT,
    DEFAULT_UNIT_ID,
    OUTPUT_DIR,
)
from collector.errors import CollectorError, ConfigurationError
from collector.formatter import format_value
from collector.models import DATA_TYPE_LABELS, CollectionConfig, DisplayFormat
from collector.range_file import load_range_file, save_range_file
from collector.ranges import AddressRangeRegistry, format_range
from collector.scheduler import BatchCollectionScheduler
from collector.sink import CsvSink
from modbus_client import ModbusTcpTransport
from utils import default_output_filename, setup_logging

log = logging.getLogger("collector.main")


def _load_registry(path: Path) -> AddressRangeRegistry:
    result = load_range_file(path)
    for err in result.errors:
        log.warning("Range entry %d ignored: %s", err.index, err.message)
    if not result.ranges:
        raise ConfigurationError(f"No usable ranges in {path}")

    registry = AddressRangeRegistry(result.ranges)
    for rng in registry.list():
        state = "on" if rng.enabled else "off"
        label = DATA_TYPE_LABELS.get(rng.data_type, rng.data_type)
        log.info("Range %s [%s] %s %s", rng.name or rng.id, state, format_range(rng), label)
    for conflict in registry.overlaps():
        log.warning("Overlap (collected anyway): %s", conflict.describe())
    log.info("%d addresses across enabled ranges", registry.address_count())
    return registry


def _print_cycle(fmt: DisplayFormat):
    def _on_cycle(batch, report):
        shown = ", ".join(
            f"{v.address}={format_value(v.parsed_value, fmt) if v.success else 'ERR'}"
            for v in batch.results[:8]
        )
        more = " ..." if len(batch.results) > 8 else ""
        log.info(
            "%s ok=%d failed=%d %dms | %s%s",
            batch.timestamp, batch.success_count, batch.failed_count, batch.duration_ms, shown, more,
        )
        if not report.is_valid:
            log.warning("Not written: %s", "; ".join(report.errors))
    return _on_cycle


def run(args: argparse.Namespace) -> int:
    registry = _load_registry(args.ranges)
    if args.export_ranges:
        save_range_file(args.export_ranges, registry.list())

    output = args.output or Path(OUTPUT_DIR) / default_output_filename()
    config = CollectionConfig(
        output_path=os.fspath(output),
        interval_ms=args.interval_ms,
        stop_on_error=args.stop_on_error,
        display_format=DisplayFormat(args.format),
    )

    done = threading.Event()
    cycles_seen = [0]
    on_cycle_print = _print_cycle(config.display_format)

    def _on_cycle(batch, report):
        on_cycle_print(batch, report)
        cycles_seen[0] += 1
        if args.cycles and cycles_seen[0] >= args.cycles:
            done.set()

    def _on_error(exc, reason):
        log.error("Collection aborted: %s", reason)
        done.set()

    log.info("Connecting to %s:%s (unit/device_id %s)...", args.host, args.port, args.unit)
    with ModbusTcpTransport(args.host, port=args.port, unit=args.unit, timeout=args.timeout) as transport:
        scheduler = BatchCollectionScheduler(
            transport,
            CsvSink(),
            registry,
            on_cycle=_on_cycle,
            on_error=_on_error,
        )
        scheduler.start(config)
        try:
            while scheduler.is_running and not done.wait(0.5):
                pass
        except KeyboardInterrupt:
            log.info("Interrupted.")
        finally:
            scheduler.stop("Collection finished")

    stats = scheduler.stats
    log.info(
        "Final: %d collections, %d ok reads, %d failed reads, avg %.1fms, %d skipped ticks",
        stats.total_collections, stats.successful_reads, stats.failed_reads,
        stats.average_duration_ms, stats.skipped_ticks,
    )
    log.info("Stop reason: %s", scheduler.stop_reason)
    log.info("CSV written to %s", config.output_path)
    return 1 if scheduler.last_error and args.stop_on_error else 0


def main(argv=None) -> int:
    args = _parse_args(argv)
    setup_logging(verbose=args.verbose, log_file=args.log_file)
    try:
        return run(args)
    except CollectorError as e:
        log.error("%s", e)
        return 2


def _parse_args(argv=None) -> argparse.Namespace:
    p = argparse.ArgumentParser(description="Modbus-TCP holding register range collector")
    p.add_argument("--host", required=True)
    p.add_argument("--port", type=int, default=DEFAULT_MODBUS_PORT)
    p.add_argument("--unit", type=int, default=DEFAULT_UNIT_ID)
    p.add_argument("--timeout", type=float, default=DEFAULT_TIMEOUT, help="Per-request timeout in seconds")

    p.add_argument("--ranges", type=Path, required=True, help="Range configuration JSON file")
    p.add_argument(
        "--export-ranges",
        type=Path,
        help="Write the loaded ranges (ids filled in) to this JSON file before collecting",
    )
    p.add_argument("--output", type=Path, help="CSV file (default: output/modbus_collection_<stamp>.csv)")
    p.add_argument("--interval-ms", type=int, default=DEFAULT_INTERVAL_MS)
    p.add_argument("--cycles", type=int, default=0, help="Stop after this many cycles (0 = until Ctrl-C)")
    p.add_argument(
        "--stop-on-error",
        action="store_true",
        help="End the session when a whole cycle fails to read",
    )
    p.add_argument("--format", choices=[f.value for f in DisplayFormat], default="dec")
    p.add_argument("--verbose", action="store_true", help="Log per-cycle diagnostics")
    p.add_argument("--log-file", help="Also append log lines to this file")

    return p.parse_args(argv)


if __name__ == "__main__":
    sys.exit(main())
