"""SQLite úložiště bodů, tras, importních jobů a geocache."""

import json
import time
from contextlib import contextmanager
from pathlib import Path as FilePath
from typing import Dict, Iterator, List, Optional, Tuple, Union

from sqlalchemy import create_engine, delete, func, select, update
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.orm import Session, sessionmaker

from whence.core.logger import log_call, log_result
from whence.models.job import ImportConfig, ImportJob, JobStatus
from whence.models.location import (
    BBox,
    GeocodedPlace,
    LocationSource,
    PathPoint,
    PhotoLocation,
    Sample,
)
from whence.models.path import Path
from whence.services.timezone import date_window, try_local_date
from whence.state.tables import (
    Base,
    GeocacheRow,
    ImportJobRow,
    LocationRow,
    LocationSourceRow,
    PathPointRow,
    PathRow,
    SyncStateRow,
)

SYNC_STATE_ID = "immich"
MAX_LISTED_JOBS = 50


def _sample_from_row(row: LocationRow) -> Sample:
    return Sample(
        timestamp=row.timestamp,
        user_id=row.user_id,
        device_id=row.device_id,
        lat=row.lat,
        lon=row.lon,
        accuracy_m=row.accuracy_m,
        altitude_m=row.altitude_m,
        speed_kmh=row.speed_kmh,
        source=row.source,
    )


def _path_from_row(row: PathRow) -> Path:
    return Path(
        id=row.id,
        user_id=row.user_id,
        date=row.date,
        start_ts=row.start_ts,
        end_ts=row.end_ts,
        min_lat=row.min_lat,
        max_lat=row.max_lat,
        min_lon=row.min_lon,
        max_lon=row.max_lon,
        point_count=row.point_count,
    )


def _job_from_row(row: ImportJobRow) -> ImportJob:
    return ImportJob(
        id=row.id,
        status=JobStatus(row.status),
        started_at=row.started_at,
        completed_at=row.completed_at,
        total=row.total_assets,
        processed=row.processed,
        imported=row.imported,
        skipped=row.skipped,
        errors=row.errors,
        last_page=row.last_page,
        config=ImportConfig.from_json(row.config_json),
        last_error=row.last_error,
    )


def _load_meta(raw: Optional[str]) -> dict:
    if not raw:
        return {}
    try:
        data = json.loads(raw)
    except json.JSONDecodeError:
        return {}
    return data if isinstance(data, dict) else {}


def _sample_values(sample: Sample) -> dict:
    return {
        "timestamp": sample.timestamp,
        "user_id": sample.user_id,
        "device_id": sample.device_id,
        "lat": sample.lat,
        "lon": sample.lon,
        "accuracy_m": sample.accuracy_m,
        "altitude_m": sample.altitude_m,
        "speed_kmh": sample.speed_kmh,
        "source": sample.source,
    }


class Store:
    """Transakční úložiště nad SQLite (SQLAlchemy).

    Každá vícekroková změna běží v jedné session transakci; při chybě se
    transakce odvolá a výjimka propaguje volajícímu.
    """

    def __init__(self, db: Union[str, FilePath]):
        """
        Args:
            db: Cesta k SQLite souboru nebo SQLAlchemy URL
        """
        url = str(db)
        if "://" not in url:
            FilePath(url).parent.mkdir(parents=True, exist_ok=True)
            url = f"sqlite:///{url}"

        # Sdílené mezi request vlákny a import workery
        self.engine = create_engine(
            url,
            connect_args={"check_same_thread": False, "timeout": 30},
        )
        Base.metadata.create_all(self.engine)
        self._session_factory = sessionmaker(bind=self.engine, expire_on_commit=False)

    def close(self) -> None:
        self.engine.dispose()

    @contextmanager
    def session_scope(self) -> Iterator[Session]:
        """Session s commitem na konci, nebo rollbackem při výjimce."""
        session = self._session_factory()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    # --- Samples ---

    def insert_samples(self, samples: List[Sample]) -> Tuple[int, int]:
        """Vloží dávku bodů, duplicity (timestamp, device_id) přeskočí.

        Returns:
            (inserted, skipped)
        """
        inserted = 0
        skipped = 0
        with self.session_scope() as session:
            for sample in samples:
                stmt = sqlite_insert(LocationRow).values(**_sample_values(sample))
                result = session.execute(stmt.on_conflict_do_nothing())
                if result.rowcount > 0:
                    inserted += 1
                else:
                    skipped += 1
        return inserted, skipped

    def insert_sample_with_source(self, sample: Sample, source: LocationSource) -> bool:
        """Vloží bod i s vazbou na zdroj v jedné transakci.

        Returns:
            True pokud byl bod nový
        """
        with self.session_scope() as session:
            stmt = sqlite_insert(LocationRow).values(**_sample_values(sample))
            result = session.execute(stmt.on_conflict_do_nothing())
            if result.rowcount == 0:
                return False

            # Zbylá vazba po dřívějším smazání bodu se přepíše
            session.merge(
                LocationSourceRow(
                    timestamp=source.timestamp,
                    device_id=source.device_id,
                    source_type=source.source_type,
                    source_id=source.source_id,
                    meta=json.dumps(source.metadata) if source.metadata else None,
                )
            )
        return True

    def query_samples_for_user_date(self, user_id: str, date: str) -> List[Sample]:
        """Vrátí všechny body uživatele, jejichž lokální datum je ``date``."""
        start_ts, end_ts = date_window(date)
        with self.session_scope() as session:
            rows = session.scalars(
                select(LocationRow)
                .where(
                    LocationRow.user_id == user_id,
                    LocationRow.timestamp >= start_ts,
                    LocationRow.timestamp <= end_ts,
                )
                .order_by(LocationRow.timestamp)
            ).all()
            samples = [_sample_from_row(row) for row in rows]
        return [s for s in samples if try_local_date(s.timestamp, s.lat, s.lon) == date]

    def all_samples(self) -> List[Sample]:
        with self.session_scope() as session:
            rows = session.scalars(select(LocationRow).order_by(LocationRow.timestamp)).all()
            return [_sample_from_row(row) for row in rows]

    def latest_sample(self) -> Optional[Sample]:
        with self.session_scope() as session:
            row = session.scalars(
                select(LocationRow).order_by(LocationRow.timestamp.desc()).limit(1)
            ).first()
            return _sample_from_row(row) if row else None

    def count_samples(self) -> int:
        with self.session_scope() as session:
            return session.scalar(select(func.count()).select_from(LocationRow)) or 0

    def bounds_for_range(self, start: int, end: int) -> Optional[BBox]:
        """Obálka všech bodů v časovém rozsahu, nebo None."""
        with self.session_scope() as session:
            row = session.execute(
                select(
                    func.min(LocationRow.lat),
                    func.max(LocationRow.lat),
                    func.min(LocationRow.lon),
                    func.max(LocationRow.lon),
                ).where(LocationRow.timestamp >= start, LocationRow.timestamp <= end)
            ).one()
        if row[0] is None:
            return None
        return BBox(sw_lat=row[0], ne_lat=row[1], sw_lon=row[2], ne_lon=row[3])

    # --- Sources ---

    def get_location_source(self, timestamp: int, device_id: Optional[str] = None) -> Optional[LocationSource]:
        """Vazba bodu na zdroj; bez ``device_id`` první shoda podle času."""
        with self.session_scope() as session:
            query = select(LocationSourceRow).where(LocationSourceRow.timestamp == timestamp)
            if device_id:
                query = query.where(LocationSourceRow.device_id == device_id)
            row = session.scalars(query.limit(1)).first()
            if row is None:
                return None
            return LocationSource(
                timestamp=row.timestamp,
                device_id=row.device_id,
                source_type=row.source_type,
                source_id=row.source_id,
                metadata=_load_meta(row.meta),
            )

    def query_photo_locations(self, start: int, end: int) -> List[PhotoLocation]:
        """Body s vazbou na fotku v časovém rozsahu, seřazené podle času."""
        with self.session_scope() as session:
            rows = session.execute(
                select(LocationRow, LocationSourceRow)
                .join(
                    LocationSourceRow,
                    (LocationRow.timestamp == LocationSourceRow.timestamp)
                    & (LocationRow.device_id == LocationSourceRow.device_id),
                )
                .where(LocationRow.timestamp >= start, LocationRow.timestamp <= end)
                .order_by(LocationRow.timestamp)
            ).all()

            photos = []
            for location, source in rows:
                meta = _load_meta(source.meta)
                photos.append(
                    PhotoLocation(
                        timestamp=location.timestamp,
                        lat=location.lat,
                        lon=location.lon,
                        source_type=source.source_type,
                        source_id=source.source_id,
                        web_url=meta.get("web_url"),
                        filename=meta.get("filename"),
                    )
                )
            return photos

    # --- Paths ---

    def _write_path(self, session: Session, path: Path) -> None:
        existing = session.scalars(
            select(PathRow).where(PathRow.user_id == path.user_id, PathRow.date == path.date)
        ).first()

        if existing is None:
            row = PathRow(user_id=path.user_id, date=path.date)
            session.add(row)
        else:
            row = existing
            session.execute(delete(PathPointRow).where(PathPointRow.path_id == row.id))

        row.start_ts = path.start_ts
        row.end_ts = path.end_ts
        row.min_lat = path.min_lat
        row.max_lat = path.max_lat
        row.min_lon = path.min_lon
        row.max_lon = path.max_lon
        row.point_count = path.point_count
        session.flush()
        path.id = row.id

        session.add_all(
            PathPointRow(path_id=row.id, seq=seq, timestamp=p.timestamp, lat=p.lat, lon=p.lon)
            for seq, p in enumerate(path.points)
        )

    def upsert_path(self, path: Path) -> None:
        """Vloží nebo přepíše trasu (metadata i všechny body) atomicky."""
        with self.session_scope() as session:
            self._write_path(session, path)

    def replace_all_paths(self, paths: List[Path]) -> None:
        """Smaže všechny trasy a uloží nové, vše v jedné transakci."""
        with self.session_scope() as session:
            session.execute(delete(PathPointRow))
            session.execute(delete(PathRow))
            for path in paths:
                self._write_path(session, path)

    def delete_all_paths(self) -> None:
        with self.session_scope() as session:
            session.execute(delete(PathPointRow))
            session.execute(delete(PathRow))

    def query_paths_intersecting(
        self,
        bbox: BBox,
        start: Optional[int] = None,
        end: Optional[int] = None,
    ) -> List[Path]:
        """Metadata tras, jejichž obálka protíná ``bbox`` (a časový rozsah)."""
        query = select(PathRow).where(
            PathRow.max_lat >= bbox.sw_lat,
            PathRow.min_lat <= bbox.ne_lat,
            PathRow.max_lon >= bbox.sw_lon,
            PathRow.min_lon <= bbox.ne_lon,
        )
        if start is not None:
            query = query.where(PathRow.end_ts >= start)
        if end is not None:
            query = query.where(PathRow.start_ts <= end)

        with self.session_scope() as session:
            rows = session.scalars(query.order_by(PathRow.start_ts)).all()
            return [_path_from_row(row) for row in rows]

    def get_path(self, user_id: str, date: str) -> Optional[Path]:
        with self.session_scope() as session:
            row = session.scalars(
                select(PathRow).where(PathRow.user_id == user_id, PathRow.date == date)
            ).first()
            return _path_from_row(row) if row else None

    def get_path_points(self, path_id: int) -> List[PathPoint]:
        with self.session_scope() as session:
            rows = session.scalars(
                select(PathPointRow).where(PathPointRow.path_id == path_id).order_by(PathPointRow.seq)
            ).all()
            return [PathPoint(lat=r.lat, lon=r.lon, timestamp=r.timestamp) for r in rows]

    # --- Import jobs ---

    def create_job(self, job: ImportJob) -> None:
        with self.session_scope() as session:
            session.add(
                ImportJobRow(
                    id=job.id,
                    status=job.status.value,
                    started_at=job.started_at,
                    completed_at=job.completed_at,
                    total_assets=job.total,
                    processed=job.processed,
                    imported=job.imported,
                    skipped=job.skipped,
                    errors=job.errors,
                    last_page=job.last_page,
                    config_json=job.config.to_json(),
                    last_error=job.last_error,
                )
            )

    def get_job(self, job_id: str) -> Optional[ImportJob]:
        with self.session_scope() as session:
            row = session.get(ImportJobRow, job_id)
            return _job_from_row(row) if row else None

    def update_job(self, job: ImportJob) -> None:
        """Uloží stav a počítadla jobu (checkpoint)."""
        with self.session_scope() as session:
            session.execute(
                update(ImportJobRow)
                .where(ImportJobRow.id == job.id)
                .values(
                    status=job.status.value,
                    completed_at=job.completed_at,
                    total_assets=job.total,
                    processed=job.processed,
                    imported=job.imported,
                    skipped=job.skipped,
                    errors=job.errors,
                    last_page=job.last_page,
                    last_error=job.last_error,
                )
            )

    def list_jobs(self, status: Optional[JobStatus] = None, limit: Optional[int] = MAX_LISTED_JOBS) -> List[ImportJob]:
        """Joby od nejnovějšího."""
        query = select(ImportJobRow).order_by(ImportJobRow.started_at.desc())
        if status is not None:
            query = query.where(ImportJobRow.status == status.value)
        if limit is not None:
            query = query.limit(limit)

        with self.session_scope() as session:
            return [_job_from_row(row) for row in session.scalars(query).all()]

    # --- Sync state ---

    def get_last_sync_timestamp(self) -> Optional[int]:
        with self.session_scope() as session:
            row = session.get(SyncStateRow, SYNC_STATE_ID)
            return row.last_sync if row else None

    def set_last_sync_timestamp(self, timestamp: int) -> None:
        with self.session_scope() as session:
            stmt = sqlite_insert(SyncStateRow).values(id=SYNC_STATE_ID, last_sync=timestamp)
            session.execute(
                stmt.on_conflict_do_update(
                    index_elements=["id"],
                    set_={"last_sync": stmt.excluded.last_sync},
                )
            )

    # --- Geocache ---

    def lookup_place(self, lat: float, lon: float) -> Optional[GeocodedPlace]:
        """Najde uložené místo, jehož bounding box obsahuje bod."""
        with self.session_scope() as session:
            row = session.scalars(
                select(GeocacheRow)
                .where(
                    GeocacheRow.min_lat <= lat,
                    GeocacheRow.max_lat >= lat,
                    GeocacheRow.min_lon <= lon,
                    GeocacheRow.max_lon >= lon,
                )
                .limit(1)
            ).first()
            if row is None:
                return None
            return GeocodedPlace(
                place_name=row.place_name,
                place_type=row.place_type,
                display_name=row.display_name,
                lat=lat,
                lon=lon,
            )

    def cache_place(self, bbox: BBox, place: GeocodedPlace) -> None:
        log_call("Store", "cache_place", bbox=str(bbox), place=place.place_name)
        with self.session_scope() as session:
            stmt = sqlite_insert(GeocacheRow).values(
                min_lat=bbox.sw_lat,
                max_lat=bbox.ne_lat,
                min_lon=bbox.sw_lon,
                max_lon=bbox.ne_lon,
                place_name=place.place_name,
                place_type=place.place_type,
                display_name=place.display_name,
                created_at=int(time.time()),
            )
            session.execute(stmt.on_conflict_do_nothing())

    def stats(self) -> Dict[str, int]:
        """Počty řádků pro příkaz status."""
        with self.session_scope() as session:
            result = {
                "locations": session.scalar(select(func.count()).select_from(LocationRow)) or 0,
                "photo_sources": session.scalar(select(func.count()).select_from(LocationSourceRow)) or 0,
                "paths": session.scalar(select(func.count()).select_from(PathRow)) or 0,
                "path_points": session.scalar(select(func.count()).select_from(PathPointRow)) or 0,
                "jobs": session.scalar(select(func.count()).select_from(ImportJobRow)) or 0,
                "geocache": session.scalar(select(func.count()).select_from(GeocacheRow)) or 0,
            }
        log_result("Store", "stats", result)
        return result
