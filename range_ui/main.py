from __future__ import annotations

import json
import logging
from typing import Callable, Optional

import uvicorn
from fastapi import Body, FastAPI, HTTPException, Query, Request
from pydantic import BaseModel, ConfigDict, Field

from collector.config import (
    DEFAULT_INTERVAL_MS,
    DEFAULT_MODBUS_PORT,
    DEFAULT_TIMEOUT,
    DEFAULT_UNIT_ID,
)
from collector.errors import CollectorError, ConfigurationError, PersistenceError
from collector.formatter import to_parsed_data
from collector.models import CollectionConfig, DataType, DisplayFormat
from collector.range_file import RangeEntry, export_range_config, parse_range_config
from collector.ranges import AddressRangeRegistry, validate
from collector.scheduler import BatchCollectionScheduler
from collector.sink import CsvSink
from modbus_client import ModbusTcpTransport
from range_ui.database import (
    DATABASE_URL,
    create_session_factory,
    delete_range,
    load_ranges,
    replace_ranges,
    save_range,
)
from utils import setup_logging

log = logging.getLogger(__name__)


class RangeUpdate(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    name: Optional[str] = None
    start_address: Optional[int] = Field(default=None, alias="startAddress")
    length: Optional[int] = None
    data_type: Optional[DataType] = Field(default=None, alias="dataType")
    description: Optional[str] = None
    enabled: Optional[bool] = None


class Connection(BaseModel):
    host: str
    port: int = DEFAULT_MODBUS_PORT
    unit: int = DEFAULT_UNIT_ID
    timeout: float = DEFAULT_TIMEOUT


class CollectionStart(Connection):
    output_path: Optional[str] = None
    interval_ms: int = DEFAULT_INTERVAL_MS
    stop_on_error: bool = False
    display_format: DisplayFormat = DisplayFormat.DEC


def _overlaps_payload(registry: AddressRangeRegistry):
    return [
        {
            "range_a": c.range_a.id,
            "range_b": c.range_b.id,
            "overlap_start": c.overlap_start,
            "overlap_end": c.overlap_end,
            "message": c.describe(),
        }
        for c in registry.overlaps()
    ]


def _discard(scheduler: BatchCollectionScheduler, transport) -> None:
    """Close a transport the scheduler did not take over."""
    if transport is not None and transport is not scheduler.transport:
        transport.close()


def create_app(
    database_url: str = DATABASE_URL,
    transport_factory: Callable = ModbusTcpTransport,
    sink_factory: Callable = CsvSink,
) -> FastAPI:
    """
    Build the range management / collection API.

    The registry and scheduler live on ``app.state``; one app drives at most
    one collection session at a time.
    """
    app = FastAPI(title="Modbus Range Collector")

    sessions = create_session_factory(database_url)
    registry = AddressRangeRegistry()
    with sessions() as db:
        registry.replace_all(load_ranges(db))

    app.state.sessions = sessions
    app.state.registry = registry
    app.state.transport_factory = transport_factory
    scheduler = BatchCollectionScheduler(None, sink_factory(), registry)

    def _release_device(reason: str) -> None:
        # every session end (user stop, stop-on-error, sink failure) drops the connection
        if scheduler.transport is not None:
            scheduler.transport.close()

    scheduler.on_session_end = _release_device
    app.state.scheduler = scheduler
    app.state.display_format = DisplayFormat.DEC

    def _sync(db) -> None:
        registry.replace_all(load_ranges(db))

    # ------------- ranges -------------

    @app.get("/api/ranges")
    def list_ranges():
        ranges = registry.list()
        return {
            "ranges": [r.to_dict() for r in ranges],
            "total_addresses": registry.address_count(),
            "overlaps": _overlaps_payload(registry),
        }

    @app.post("/api/ranges", status_code=201)
    def add_range(entry: RangeEntry):
        rng = entry.to_range()
        if registry.get(rng.id) is not None:
            raise HTTPException(status_code=409, detail=f"Range id {rng.id!r} already exists")
        report = validate(rng)
        if not report.is_valid:
            raise HTTPException(status_code=400, detail=report.errors)
        with sessions() as db:
            save_range(db, rng)
            _sync(db)
        return {"range": rng.to_dict(), "warnings": report.warnings}

    @app.put("/api/ranges/{range_id}")
    def update_range(range_id: str, changes: RangeUpdate):
        current = registry.get(range_id)
        if current is None:
            raise HTTPException(status_code=404, detail=f"Unknown range id {range_id!r}")
        for key, value in changes.model_dump(exclude_unset=True).items():
            setattr(current, key, value)
        report = validate(current)
        if not report.is_valid:
            raise HTTPException(status_code=400, detail=report.errors)
        with sessions() as db:
            save_range(db, current)
            _sync(db)
        return {"range": current.to_dict(), "warnings": report.warnings}

    @app.delete("/api/ranges/{range_id}")
    def remove_range(range_id: str):
        with sessions() as db:
            if not delete_range(db, range_id):
                raise HTTPException(status_code=404, detail=f"Unknown range id {range_id!r}")
            _sync(db)
        return {"deleted": range_id}

    @app.get("/api/ranges/overlaps")
    def overlaps():
        conflicts = _overlaps_payload(registry)
        return {"has_overlap": bool(conflicts), "conflicts": conflicts}

    @app.get("/api/ranges/export")
    def export_ranges():
        return json.loads(export_range_config(registry.list()))

    @app.post("/api/ranges/import")
    def import_ranges(payload: dict = Body(...)):
        try:
            result = parse_range_config(json.dumps(payload))
        except ConfigurationError as e:
            raise HTTPException(status_code=400, detail=str(e))
        errors = [{"index": e.index, "message": e.message} for e in result.errors]
        if not result.ranges:
            raise HTTPException(status_code=400, detail={"message": "No valid ranges in import", "errors": errors})
        with sessions() as db:
            replace_ranges(db, result.ranges)
            _sync(db)
        log.info("Imported %d range(s), %d rejected", len(result.ranges), len(errors))
        return {"imported": len(result.ranges), "errors": errors}

    # ------------- collection -------------

    @app.post("/api/collection/start")
    def start_collection(request: Request, body: CollectionStart):
        scheduler: BatchCollectionScheduler = request.app.state.scheduler
        if scheduler.is_running:
            raise HTTPException(status_code=409, detail="A collection session is already running")

        transport = request.app.state.transport_factory(
            body.host, port=body.port, unit=body.unit, timeout=body.timeout
        )
        request.app.state.display_format = body.display_format
        config = CollectionConfig(
            output_path=body.output_path,
            interval_ms=body.interval_ms,
            stop_on_error=body.stop_on_error,
            display_format=body.display_format,
        )
        try:
            scheduler.start(config, transport=transport)
        except ConfigurationError as e:
            _discard(scheduler, transport)
            raise HTTPException(status_code=400, detail=str(e))
        except PersistenceError as e:
            _discard(scheduler, transport)
            raise HTTPException(status_code=500, detail=str(e))
        return scheduler.status()

    @app.post("/api/collection/stop")
    def stop_collection(request: Request):
        scheduler: BatchCollectionScheduler = request.app.state.scheduler
        if not scheduler.stop():
            raise HTTPException(status_code=409, detail="No collection session is running")
        return scheduler.status()

    @app.get("/api/collection/status")
    def collection_status(request: Request):
        return request.app.state.scheduler.status()

    @app.get("/api/collection/latest")
    def latest(request: Request, format: Optional[DisplayFormat] = Query(None)):
        scheduler: BatchCollectionScheduler = request.app.state.scheduler
        batch = scheduler.last_result
        if batch is None:
            return {"batch": None, "rows": []}
        fmt = format or request.app.state.display_format
        report = scheduler.last_report
        return {
            "timestamp": batch.timestamp,
            "duration_ms": batch.duration_ms,
            "success_count": batch.success_count,
            "failed_count": batch.failed_count,
            "validation": report.to_dict() if report else None,
            "rows": [row.to_dict() for row in to_parsed_data(batch, fmt)],
        }

    @app.get("/api/collection/history")
    def history(request: Request, limit: int = Query(20, ge=1, le=1000)):
        batches = request.app.state.scheduler.history[:limit]
        return {
            "count": len(batches),
            "batches": [
                {
                    "timestamp": b.timestamp,
                    "total_count": b.total_count,
                    "success_count": b.success_count,
                    "failed_count": b.failed_count,
                    "duration_ms": b.duration_ms,
                }
                for b in batches
            ],
        }

    @app.delete("/api/collection/stats")
    def clear_stats(request: Request):
        request.app.state.scheduler.clear_stats()
        return request.app.state.scheduler.status()

    @app.post("/api/read")
    def read_once(request: Request, body: Connection, format: DisplayFormat = Query(DisplayFormat.DEC)):
        """Single read of the enabled ranges; nothing is written or counted."""
        scheduler: BatchCollectionScheduler = request.app.state.scheduler
        transport = None
        if not scheduler.is_running:
            transport = request.app.state.transport_factory(
                body.host, port=body.port, unit=body.unit, timeout=body.timeout
            )
        try:
            batch, report = scheduler.read_once(transport)
        except CollectorError as e:
            raise HTTPException(status_code=502, detail=str(e))
        finally:
            _discard(scheduler, transport)
        return {
            "timestamp": batch.timestamp,
            "validation": report.to_dict(),
            "rows": [row.to_dict() for row in to_parsed_data(batch, format)],
        }

    @app.get("/api/test_device")
    def test_device(
        request: Request,
        host: str = Query(...),
        port: int = Query(DEFAULT_MODBUS_PORT),
        unit: int = Query(DEFAULT_UNIT_ID),
        address: int = Query(0, ge=0, le=65535),
    ):
        """
        Read one holding register to check the device answers.

        Returns a reason string on failure so the UI can show something more
        useful than a generic "No Modbus response" message.
        """
        transport = request.app.state.transport_factory(host, port=port, unit=unit, timeout=DEFAULT_TIMEOUT)
        try:
            if not transport.connect():
                return {"reachable": False, "reason": "TCP connect failed"}
            words = transport.read_block(address, 1)
            return {"reachable": True, "address": address, "value": words[0]}
        except Exception as exc:  # pragma: no cover - network errors
            log.warning("Device test %s:%s failed: %s", host, port, exc)
            return {"reachable": False, "reason": str(exc)}
        finally:
            transport.close()

    return app


def serve(host: str = "127.0.0.1", port: int = 8000) -> None:
    """Run the API with uvicorn against ``ranges.db`` in the working directory."""
    setup_logging()
    uvicorn.run(create_app(), host=host, port=port)


if __name__ == "__main__":
    serve()
