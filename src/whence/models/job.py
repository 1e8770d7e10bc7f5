"""Modely pro importní joby a jejich průběh."""

import json
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import List, Optional


class JobStatus(str, Enum):
    """Stav importního jobu."""
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"
    INTERRUPTED = "interrupted"

    @property
    def resumable(self) -> bool:
        return self in (JobStatus.INTERRUPTED, JobStatus.FAILED)


def _format_dt(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def _parse_dt(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    dt = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


@dataclass
class ImportConfig:
    """Parametry importu. Ukládá se k jobu, aby šel obnovit se stejnými filtry."""

    user_id: str = "default"
    after: Optional[datetime] = None
    before: Optional[datetime] = None
    devices: List[str] = field(default_factory=list)  # prázdné = všechna zařízení

    def allows_device(self, device_id: str) -> bool:
        return not self.devices or device_id in self.devices

    def to_dict(self) -> dict:
        return {
            "user_id": self.user_id,
            "after": _format_dt(self.after),
            "before": _format_dt(self.before),
            "devices": list(self.devices),
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict())

    @classmethod
    def from_dict(cls, data: dict) -> "ImportConfig":
        return cls(
            user_id=data.get("user_id") or "default",
            after=_parse_dt(data.get("after")),
            before=_parse_dt(data.get("before")),
            devices=list(data.get("devices") or []),
        )

    @classmethod
    def from_json(cls, raw: str) -> "ImportConfig":
        return cls.from_dict(json.loads(raw) if raw else {})


@dataclass
class ImportJob:
    """Persistovaný stav importního jobu."""

    id: str
    status: JobStatus
    started_at: int
    config: ImportConfig = field(default_factory=ImportConfig)
    completed_at: Optional[int] = None
    total: Optional[int] = None
    processed: int = 0
    imported: int = 0
    skipped: int = 0
    errors: int = 0
    last_page: int = 0  # checkpoint - poslední kompletně zpracovaná stránka
    last_error: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "status": self.status.value,
            "started_at": self.started_at,
            "completed_at": self.completed_at,
            "total": self.total,
            "processed": self.processed,
            "imported": self.imported,
            "skipped": self.skipped,
            "errors": self.errors,
            "last_page": self.last_page,
            "config": self.config.to_dict(),
            "last_error": self.last_error,
        }


@dataclass
class ImportProgress:
    """Snapshot průběhu, který se posílá odběratelům."""

    job_id: str
    status: JobStatus
    total: int = 0
    processed: int = 0
    imported: int = 0
    skipped: int = 0
    errors: int = 0
    percent: float = 0.0
    error: Optional[str] = None

    @property
    def finished(self) -> bool:
        return self.status not in (JobStatus.PENDING, JobStatus.RUNNING)

    @classmethod
    def from_job(cls, job: ImportJob, error: Optional[str] = None) -> "ImportProgress":
        # Bez známého celku se jako celek hlásí počet zpracovaných
        total = job.processed
        percent = 0.0
        if job.total:
            total = job.total
            percent = job.processed / total * 100
        return cls(
            job_id=job.id,
            status=job.status,
            total=total,
            processed=job.processed,
            imported=job.imported,
            skipped=job.skipped,
            errors=job.errors,
            percent=percent,
            error=error,
        )

    def to_dict(self) -> dict:
        data = {
            "job_id": self.job_id,
            "status": self.status.value,
            "total": self.total,
            "processed": self.processed,
            "imported": self.imported,
            "skipped": self.skipped,
            "errors": self.errors,
            "percent": self.percent,
        }
        if self.error:
            data["error"] = self.error
        return data


@dataclass
class DevicePreview:
    """Souhrn jednoho zařízení v náhledu importu."""

    device_id: str
    count: int
    earliest: datetime
    latest: datetime

    def to_dict(self) -> dict:
        return {
            "device_id": self.device_id,
            "count": self.count,
            "earliest": self.earliest.isoformat(),
            "latest": self.latest.isoformat(),
        }


@dataclass
class PreviewProgress:
    """Průběh náhledu (read-only průchod zdrojem)."""

    scanned: int = 0
    total_estimated: int = 0
    percent: float = 0.0
    photos_with_gps: int = 0
    devices: List[DevicePreview] = field(default_factory=list)
    complete: bool = False
    error: Optional[str] = None

    def to_dict(self) -> dict:
        data = {
            "scanned": self.scanned,
            "total_estimated": self.total_estimated,
            "percent": self.percent,
            "photos_with_gps": self.photos_with_gps,
            "devices": [d.to_dict() for d in self.devices],
            "complete": self.complete,
        }
        if self.error:
            data["error"] = self.error
        return data
