"""SQLAlchemy tabulky pro SQLite databázi."""

from typing import Optional

from sqlalchemy import Float, ForeignKey, Index, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    pass


class LocationRow(Base):
    __tablename__ = "locations"
    __table_args__ = (
        Index("idx_locations_lat_lon", "lat", "lon"),
        Index("idx_locations_timestamp", "timestamp"),
        Index("idx_locations_user_timestamp", "user_id", "timestamp"),
    )

    timestamp: Mapped[int] = mapped_column(Integer, primary_key=True)
    device_id: Mapped[str] = mapped_column(String, primary_key=True)
    user_id: Mapped[str] = mapped_column(String)
    lat: Mapped[float] = mapped_column(Float)
    lon: Mapped[float] = mapped_column(Float)

    # Rozšířená pole z OwnTracks / Timeline exportu
    accuracy_m: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    altitude_m: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    speed_kmh: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    source: Mapped[Optional[str]] = mapped_column(String, nullable=True)


class LocationSourceRow(Base):
    """Vazba bodu na zdrojovou fotku."""

    __tablename__ = "location_sources"
    __table_args__ = (
        Index("idx_location_sources_source", "source_type", "source_id"),
    )

    timestamp: Mapped[int] = mapped_column(Integer, primary_key=True)
    device_id: Mapped[str] = mapped_column(String, primary_key=True)
    source_type: Mapped[str] = mapped_column(String)
    source_id: Mapped[str] = mapped_column(String)
    # "metadata" je v deklarativních modelech rezervované jméno
    meta: Mapped[Optional[str]] = mapped_column("metadata", Text, nullable=True)


class ImportJobRow(Base):
    __tablename__ = "import_jobs"
    __table_args__ = (
        Index("idx_import_jobs_status", "status"),
    )

    id: Mapped[str] = mapped_column(String, primary_key=True)
    status: Mapped[str] = mapped_column(String)
    started_at: Mapped[int] = mapped_column(Integer)
    completed_at: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)

    total_assets: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    processed: Mapped[int] = mapped_column(Integer, default=0)
    imported: Mapped[int] = mapped_column(Integer, default=0)
    skipped: Mapped[int] = mapped_column(Integer, default=0)
    errors: Mapped[int] = mapped_column(Integer, default=0)

    # Checkpoint pro obnovení
    last_page: Mapped[int] = mapped_column(Integer, default=0)

    config_json: Mapped[str] = mapped_column(Text)
    last_error: Mapped[Optional[str]] = mapped_column(Text, nullable=True)


class SyncStateRow(Base):
    __tablename__ = "sync_state"

    id: Mapped[str] = mapped_column(String, primary_key=True, default="immich")
    last_sync: Mapped[int] = mapped_column(Integer)
    meta: Mapped[Optional[str]] = mapped_column("metadata", Text, nullable=True)


class PathRow(Base):
    """Předpočítaná trasa uživatele za jeden lokální den."""

    __tablename__ = "paths"
    __table_args__ = (
        UniqueConstraint("user_id", "date", name="uq_paths_user_date"),
        Index("idx_paths_bbox", "min_lat", "max_lat", "min_lon", "max_lon"),
        Index("idx_paths_time", "start_ts", "end_ts"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[str] = mapped_column(String)
    date: Mapped[str] = mapped_column(String)  # YYYY-MM-DD
    start_ts: Mapped[int] = mapped_column(Integer)
    end_ts: Mapped[int] = mapped_column(Integer)

    min_lat: Mapped[float] = mapped_column(Float)
    max_lat: Mapped[float] = mapped_column(Float)
    min_lon: Mapped[float] = mapped_column(Float)
    max_lon: Mapped[float] = mapped_column(Float)

    point_count: Mapped[int] = mapped_column(Integer)


class PathPointRow(Base):
    __tablename__ = "path_points"

    path_id: Mapped[int] = mapped_column(ForeignKey("paths.id", ondelete="CASCADE"), primary_key=True)
    # pořadí v trase (0, 1, 2, ...)
    seq: Mapped[int] = mapped_column(Integer, primary_key=True)
    timestamp: Mapped[int] = mapped_column(Integer)
    lat: Mapped[float] = mapped_column(Float)
    lon: Mapped[float] = mapped_column(Float)


class GeocacheRow(Base):
    """Výsledek reverse geocodingu platný pro celý bounding box."""

    __tablename__ = "geocache"
    __table_args__ = (
        UniqueConstraint("min_lat", "max_lat", "min_lon", "max_lon", name="uq_geocache_bbox"),
        Index("idx_geocache_bbox", "min_lat", "max_lat", "min_lon", "max_lon"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    min_lat: Mapped[float] = mapped_column(Float)
    max_lat: Mapped[float] = mapped_column(Float)
    min_lon: Mapped[float] = mapped_column(Float)
    max_lon: Mapped[float] = mapped_column(Float)
    place_name: Mapped[str] = mapped_column(String)
    place_type: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    display_name: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_at: Mapped[int] = mapped_column(Integer)
