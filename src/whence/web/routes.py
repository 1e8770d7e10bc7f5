"""API endpoints: ingest, paths, timeline, Immich import jobs and logs."""

import asyncio
import io
import json
import queue
import threading
import time
from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Header, HTTPException, Query, Request
from fastapi.responses import PlainTextResponse, Response, StreamingResponse
from pydantic import BaseModel, Field
from sqlalchemy.exc import SQLAlchemyError

from whence.core.exceptions import (
    AssetSourceError,
    JobNotFoundError,
    JobNotResumableError,
    TimelineParseError,
)
from whence.core.logger import log_info, log_warning
from whence.models.job import ImportConfig, PreviewProgress
from whence.models.location import BBox, Sample
from whence.services.backfill import BackfillJobManager
from whence.services.immich import ImmichClient
from whence.services.photo_clusters import cluster_photos, cluster_radius
from whence.services.simplifier import SimplifyOptions
from whence.services.timeline_loader import DEFAULT_DEVICE_ID, TimelineLoader
from whence.services.timezone import parse_iso8601, validate_sample_values
from whence.web.state import app_state, log_buffer

router = APIRouter()

SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
}
KEEPALIVE_SECONDS = 30
TIMELINE_BATCH_SIZE = 1000


class OwnTracksPayload(BaseModel):
    """OwnTracks HTTP message. Only ``_type == "location"`` is stored."""
    type: str = Field("", alias="_type")
    lat: Optional[float] = None
    lon: Optional[float] = None
    tst: Optional[int] = None
    tid: Optional[str] = None
    acc: Optional[float] = None  # m
    alt: Optional[float] = None  # m
    vel: Optional[float] = None  # km/h


class ImportRequest(BaseModel):
    """Start of an Immich import."""
    after: Optional[str] = None  # RFC 3339
    before: Optional[str] = None
    devices: List[str] = Field(default_factory=list)
    user_id: Optional[str] = None


# --- Helpers ---

def _sse(data: dict, event: Optional[str] = None) -> str:
    prefix = f"event: {event}\n" if event else ""
    return f"{prefix}data: {json.dumps(data)}\n\n"


def _parse_int(value: Optional[str], name: str) -> Optional[int]:
    if value is None or value == "":
        return None
    try:
        return int(value)
    except ValueError:
        raise HTTPException(status_code=400, detail=f"invalid {name}")


def _parse_float(value: Optional[str], name: str) -> Optional[float]:
    if value is None or value == "":
        return None
    try:
        return float(value)
    except ValueError:
        raise HTTPException(status_code=400, detail=f"invalid {name}")


def _parse_time(value: Optional[str], name: str) -> Optional[datetime]:
    if not value:
        return None
    parsed = parse_iso8601(value)
    if parsed is None:
        raise HTTPException(status_code=400, detail=f"invalid {name}, use RFC 3339")
    return parsed


def _parse_bbox(value: str) -> BBox:
    try:
        return BBox.from_string(value)
    except ValueError:
        raise HTTPException(status_code=400, detail="invalid bbox format, use sw_lng,sw_lat,ne_lng,ne_lat")


def _require_immich() -> ImmichClient:
    if app_state.immich is None:
        raise HTTPException(status_code=503, detail="Immich not configured, add an immich section to the config file")
    return app_state.immich


def _require_manager() -> BackfillJobManager:
    _require_immich()
    return app_state.manager


def _validate_sample(sample: Sample) -> None:
    try:
        validate_sample_values(sample.timestamp, sample.lat, sample.lon)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))


def _update_paths(samples: List[Sample]) -> None:
    # Bod je už uložený, chyba přepočtu trasy ho neruší
    try:
        app_state.indexer.update_for_samples(samples)
    except SQLAlchemyError as e:
        log_warning(f"Aktualizace tras selhala: {e}")


# --- Ingest endpoints ---

@router.post("/owntracks")
def owntracks(payload: OwnTracksPayload, x_limit_u: Optional[str] = Header(None)):
    """OwnTracks HTTP mode endpoint."""
    if payload.type != "location":
        return {}

    if payload.lat is None or payload.lon is None or payload.tst is None:
        raise HTTPException(status_code=400, detail="lat, lon and tst are required")

    sample = Sample(
        timestamp=payload.tst,
        user_id=x_limit_u or app_state.default_user,
        device_id=payload.tid or "owntracks",
        lat=payload.lat,
        lon=payload.lon,
        accuracy_m=payload.acc,
        altitude_m=payload.alt,
        speed_kmh=payload.vel,
        source="owntracks",
    )
    _validate_sample(sample)
    app_state.store.insert_samples([sample])
    _update_paths([sample])
    return {}


@router.get("/gpslogger", response_class=PlainTextResponse)
def gpslogger(
    lat: Optional[str] = None,
    lon: Optional[str] = None,
    time_param: Optional[str] = Query(None, alias="time"),
):
    """GPSLogger custom URL endpoint: ?lat=..&lon=..&time=.."""
    try:
        lat_value = float(lat)
    except (TypeError, ValueError):
        raise HTTPException(status_code=400, detail="invalid lat")
    try:
        lon_value = float(lon)
    except (TypeError, ValueError):
        raise HTTPException(status_code=400, detail="invalid lon")

    # Unix timestamp, RFC 3339, jinak aktuální čas
    timestamp = int(time.time())
    if time_param:
        try:
            timestamp = int(time_param)
        except ValueError:
            parsed = parse_iso8601(time_param)
            if parsed is not None:
                timestamp = int(parsed.timestamp())

    sample = Sample(
        timestamp=timestamp,
        user_id=app_state.default_user,
        device_id="gpslogger",
        lat=lat_value,
        lon=lon_value,
        source="gpslogger",
    )
    _validate_sample(sample)
    app_state.store.insert_samples([sample])
    _update_paths([sample])
    return "OK"


# --- Path endpoints ---

@router.get("/api/paths")
def get_paths(
    bbox: str,
    start: Optional[str] = None,
    end: Optional[str] = None,
    prune: Optional[str] = None,
    spikes: Optional[str] = None,
    order: Optional[str] = None,
):
    """Stored paths intersecting the viewport, simplified for its zoom level."""
    viewport = _parse_bbox(bbox)
    start_ts = _parse_int(start, "start")
    end_ts = _parse_int(end, "end")

    try:
        options = SimplifyOptions.from_query(
            prune=_parse_float(prune, "prune"),
            spikes=_parse_float(spikes, "spikes"),
            order=order,
        )
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

    result = app_state.simplifier.query(viewport, start_ts, end_ts, options)

    # Aktuální poloha jen pokud spadá do zvoleného rozsahu
    current = None
    latest = app_state.store.latest_sample()
    if latest is not None:
        in_range = (start_ts is None or latest.timestamp >= start_ts) and (end_ts is None or latest.timestamp <= end_ts)
        if in_range:
            current = latest.to_point().to_dict()

    return {
        "paths": [p.to_dict() for p in result.paths],
        "current": current,
        "removed": result.removed.to_dict(),
    }


@router.post("/api/paths/rebuild")
def rebuild_paths():
    """Recompute all paths from stored samples."""
    count = app_state.indexer.rebuild_all()
    return {"status": "ok", "paths": count}


@router.get("/api/bounds")
def get_bounds(start: str, end: str):
    """Bounding box of all samples in a time range, or null."""
    bounds = app_state.store.bounds_for_range(_parse_int(start, "start"), _parse_int(end, "end"))
    return bounds.to_dict() if bounds else None


@router.get("/api/latest")
def get_latest():
    """Most recent sample, or null."""
    sample = app_state.store.latest_sample()
    return sample.to_dict() if sample else None


@router.get("/api/location/source")
def get_location_source(timestamp: str, device_id: Optional[str] = None):
    """Photo provenance of a sample, or null."""
    source = app_state.store.get_location_source(_parse_int(timestamp, "timestamp"), device_id)
    if source is None:
        return None

    data = {"source_type": source.source_type, "source_id": source.source_id}
    for key in ("web_url", "filename", "make", "model"):
        if source.metadata.get(key):
            data[key] = source.metadata[key]
    return data


@router.get("/api/photos")
def get_photos(start: Optional[str] = None, end: Optional[str] = None, bbox: Optional[str] = None):
    """Photo locations in a time range, clustered for the viewport."""
    start_ts = _parse_int(start, "start")
    end_ts = _parse_int(end, "end")
    if start_ts is None or end_ts is None:
        raise HTTPException(status_code=400, detail="start and end timestamps required")
    if not bbox:
        raise HTTPException(status_code=400, detail="bbox required")
    viewport = _parse_bbox(bbox)

    photos = app_state.store.query_photo_locations(start_ts, end_ts)
    clusters = cluster_photos(photos, cluster_radius(viewport))
    return {"clusters": [c.to_dict() for c in clusters]}


@router.get("/api/timeline")
def get_timeline(date: str, user_id: Optional[str] = None):
    """Stops and travels of one local day."""
    try:
        datetime.strptime(date, "%Y-%m-%d")
    except ValueError:
        raise HTTPException(status_code=400, detail="invalid date format, use YYYY-MM-DD")

    entries = app_state.timeline.build_day(user_id or app_state.default_user, date)
    return {"date": date, "entries": [e.to_dict() for e in entries]}


@router.post("/api/import/timeline")
async def import_timeline(request: Request, device_id: Optional[str] = None, user_id: Optional[str] = None):
    """Import Android Timeline JSON (request body) with SSE progress."""
    body = await request.body()
    loader = TimelineLoader(user_id or app_state.default_user, device_id or DEFAULT_DEVICE_ID)

    def event_generator():
        stats = {"total": 0, "parsed": 0, "inserted": 0, "skipped": 0, "errors": 0}
        yield _sse({"stats": stats, "message": "Parsing timeline file...", "complete": False})

        try:
            samples, errors = loader.read(io.StringIO(body.decode("utf-8", errors="replace")))
        except TimelineParseError as e:
            yield _sse({"stats": stats, "error": str(e), "complete": True})
            return

        stats.update(total=len(samples) + len(errors), parsed=len(samples), errors=len(errors))
        yield _sse({"stats": stats, "message": f"Parsed {len(samples)} locations, importing...", "complete": False})

        for i in range(0, len(samples), TIMELINE_BATCH_SIZE):
            try:
                inserted, skipped = app_state.store.insert_samples(samples[i:i + TIMELINE_BATCH_SIZE])
            except SQLAlchemyError as e:
                yield _sse({
                    "stats": stats,
                    "error": f"Database error at batch {i // TIMELINE_BATCH_SIZE}: {e}",
                    "complete": True,
                })
                return
            stats["inserted"] += inserted
            stats["skipped"] += skipped
            yield _sse({
                "stats": stats,
                "message": f"Imported {stats['inserted'] + stats['skipped']}/{len(samples)} locations...",
                "complete": False,
            })

        if stats["inserted"] > 0:
            yield _sse({"stats": stats, "message": "Updating path index...", "complete": False})
            _update_paths(samples)

        log_info(f"Timeline import: {stats['inserted']} vloženo, {stats['skipped']} duplicit")
        yield _sse({
            "stats": stats,
            "message": f"Import complete: {stats['inserted']} inserted, {stats['skipped']} duplicates skipped",
            "complete": True,
        })

    return StreamingResponse(event_generator(), media_type="text/event-stream", headers=SSE_HEADERS)


# --- Immich endpoints ---

@router.get("/api/immich/status")
async def immich_status():
    """Immich configuration and connection check."""
    if app_state.immich is None:
        return {"configured": False, "message": "Add an immich section to the config file"}

    client = app_state.immich
    try:
        await asyncio.to_thread(client.validate_connection)
    except AssetSourceError as e:
        return {"configured": True, "connected": False, "error": str(e), "url": client.base_url}

    return {"configured": True, "connected": True, "url": client.base_url}


@router.get("/api/immich/preview")
async def immich_preview(after: Optional[str] = None, before: Optional[str] = None):
    """SSE stream of a read-only scan grouped by device."""
    manager = _require_manager()
    config = ImportConfig(
        user_id=app_state.default_user,
        after=_parse_time(after, "after"),
        before=_parse_time(before, "before"),
    )

    updates: queue.Queue = queue.Queue()
    cancel_event = threading.Event()

    def run_preview():
        try:
            manager.preview(config, updates.put, cancel_event)
        finally:
            updates.put(None)

    threading.Thread(target=run_preview, daemon=True).start()

    async def event_generator():
        try:
            while True:
                try:
                    progress: Optional[PreviewProgress] = await asyncio.get_event_loop().run_in_executor(
                        None, lambda: updates.get(timeout=KEEPALIVE_SECONDS)
                    )
                except queue.Empty:
                    yield ": keep-alive\n\n"
                    continue

                if progress is None:
                    return
                event = "progress"
                if progress.complete:
                    event = "complete"
                if progress.error:
                    event = "error"
                yield _sse(progress.to_dict(), event)
        finally:
            cancel_event.set()

    return StreamingResponse(event_generator(), media_type="text/event-stream", headers=SSE_HEADERS)


@router.post("/api/immich/import")
def immich_import(request: ImportRequest):
    """Start a background import job."""
    manager = _require_manager()
    config = ImportConfig(
        user_id=request.user_id or app_state.default_user,
        after=_parse_time(request.after, "after"),
        before=_parse_time(request.before, "before"),
        devices=request.devices,
    )
    job_id = manager.start_import(config)
    return {"job_id": job_id, "status": "running"}


@router.get("/api/immich/jobs")
def list_jobs():
    """Import jobs, newest first."""
    return {"jobs": [job.to_dict() for job in app_state.store.list_jobs()]}


@router.get("/api/immich/jobs/{job_id}")
def get_job(job_id: str):
    """Progress snapshot of one job."""
    manager = _require_manager()
    try:
        return manager.get_job_progress(job_id).to_dict()
    except JobNotFoundError:
        raise HTTPException(status_code=404, detail="job not found")


@router.post("/api/immich/jobs/{job_id}/resume")
def resume_job(job_id: str):
    """Resume an interrupted or failed job after its last checkpoint."""
    manager = _require_manager()
    try:
        manager.resume_import(job_id)
    except JobNotFoundError:
        raise HTTPException(status_code=404, detail="job not found")
    except JobNotResumableError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return {"status": "resumed"}


@router.post("/api/immich/jobs/{job_id}/cancel")
def cancel_job(job_id: str):
    """Request cancellation; the job stops at the next page boundary."""
    manager = _require_manager()
    try:
        manager.cancel_import(job_id)
    except JobNotFoundError:
        raise HTTPException(status_code=404, detail="job not found")
    return {"status": "cancelling"}


@router.get("/api/immich/jobs/{job_id}/stream")
async def stream_job(job_id: str):
    """SSE stream of job progress until the job finishes."""
    manager = _require_manager()
    try:
        snapshot = manager.get_job_progress(job_id)
    except JobNotFoundError:
        raise HTTPException(status_code=404, detail="job not found")

    updates, unsubscribe = manager.subscribe(job_id)

    async def event_generator():
        try:
            yield _sse(snapshot.to_dict(), "progress")
            if not manager.is_running(job_id):
                yield _sse(manager.get_job_progress(job_id).to_dict(), "done")
                return

            while True:
                try:
                    progress = await asyncio.get_event_loop().run_in_executor(
                        None, lambda: updates.get(timeout=KEEPALIVE_SECONDS)
                    )
                except queue.Empty:
                    yield ": keep-alive\n\n"
                    continue

                if progress is None:
                    yield _sse(manager.get_job_progress(job_id).to_dict(), "done")
                    return
                yield _sse(progress.to_dict(), "progress")
        finally:
            unsubscribe()

    return StreamingResponse(event_generator(), media_type="text/event-stream", headers=SSE_HEADERS)


@router.get("/api/immich/assets/{asset_id}/thumbnail")
def immich_thumbnail(asset_id: str, size: str = Query("thumbnail", pattern="^(thumbnail|preview|fullsize)$")):
    """Proxy an asset thumbnail from Immich."""
    client = _require_immich()
    try:
        data, content_type = client.get_thumbnail(asset_id, size)
    except AssetSourceError as e:
        raise HTTPException(status_code=502, detail=str(e))
    return Response(content=data, media_type=content_type, headers={"Cache-Control": "public, max-age=86400"})


@router.post("/api/immich/sync")
def immich_sync(user_id: Optional[str] = None):
    """Import only assets taken since the previous sync."""
    manager = _require_manager()
    job_id = manager.start_sync(user_id or app_state.default_user)
    return {"job_id": job_id, "status": "running"}


@router.get("/api/immich/sync/status")
def immich_sync_status():
    """Time of the last sync (unix seconds), or null."""
    return {"last_sync": app_state.store.get_last_sync_timestamp()}


# --- Logs endpoints ---

@router.get("/api/logs")
async def get_logs():
    """Get all log entries."""
    return {"logs": log_buffer.get_all()}


@router.delete("/api/logs")
async def clear_logs():
    """Clear log buffer."""
    log_buffer.clear()
    return {"success": True}


@router.get("/api/logs/stream")
async def stream_logs():
    """SSE stream of log entries."""
    async def event_generator():
        q = log_buffer.subscribe()
        try:
            # First send existing logs
            for entry in log_buffer.get_all():
                yield f"data: {json.dumps(entry)}\n\n"

            while True:
                try:
                    entry = await asyncio.get_event_loop().run_in_executor(
                        None, lambda: q.get(timeout=KEEPALIVE_SECONDS)
                    )
                    yield f"data: {json.dumps(entry)}\n\n"
                except queue.Empty:
                    yield ": keep-alive\n\n"
        finally:
            log_buffer.unsubscribe(q)

    return StreamingResponse(event_generator(), media_type="text/event-stream", headers=SSE_HEADERS)
