"""Resumable bulk import of photo GPS data from an asset source."""

import queue
import threading
import time
import uuid
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional, Tuple

from sqlalchemy.exc import SQLAlchemyError

from whence.core.exceptions import AssetSourceError, JobNotFoundError, JobNotResumableError
from whence.core.logger import log_call, log_error, log_info, log_warning
from whence.models.asset import Asset
from whence.models.job import (
    DevicePreview,
    ImportConfig,
    ImportJob,
    ImportProgress,
    JobStatus,
    PreviewProgress,
)
from whence.models.location import LocationSource, Sample
from whence.services.timezone import validate_sample_values

DEFAULT_PAGE_SIZE = 200

# Odhad celku v náhledu, dokud zbývají stránky
PREVIEW_LOOKAHEAD = 200

INTERRUPTED_MESSAGE = "server restarted"


class ProgressHub:
    """Fan-out of job progress to subscribers.

    Every subscriber owns a small bounded queue. Slow consumers miss
    updates instead of blocking the worker; the end-of-stream marker
    (``None``) is always delivered.
    """

    QUEUE_SIZE = 10

    def __init__(self):
        self._lock = threading.Lock()
        self._subscribers: Dict[str, List[queue.Queue]] = {}

    def subscribe(self, job_id: str) -> Tuple[queue.Queue, Callable[[], None]]:
        """Register a subscriber for a job.

        Returns:
            (queue, unsubscribe) - the queue yields ImportProgress items and
            ``None`` once the job has finished
        """
        q: queue.Queue = queue.Queue(maxsize=self.QUEUE_SIZE)
        with self._lock:
            self._subscribers.setdefault(job_id, []).append(q)

        def unsubscribe() -> None:
            with self._lock:
                subscribers = self._subscribers.get(job_id)
                if subscribers and q in subscribers:
                    subscribers.remove(q)

        return q, unsubscribe

    def subscriber_count(self, job_id: str) -> int:
        with self._lock:
            return len(self._subscribers.get(job_id, []))

    def publish(self, job_id: str, progress: ImportProgress) -> None:
        with self._lock:
            subscribers = list(self._subscribers.get(job_id, []))

        for q in subscribers:
            try:
                q.put_nowait(progress)
            except queue.Full:
                pass

    def close(self, job_id: str) -> None:
        """Send end-of-stream to every subscriber and forget them."""
        with self._lock:
            subscribers = self._subscribers.pop(job_id, [])

        for q in subscribers:
            while True:
                try:
                    q.put_nowait(None)
                    break
                except queue.Full:
                    # Uvolnit místo zahozením nejstarší zprávy
                    try:
                        q.get_nowait()
                    except queue.Empty:
                        pass


def _asset_to_sample(asset: Asset, user_id: str) -> Tuple[Sample, LocationSource]:
    device_id = asset.device_id
    timestamp = asset.timestamp
    sample = Sample(
        timestamp=timestamp,
        user_id=user_id,
        device_id=device_id,
        lat=asset.latitude,
        lon=asset.longitude,
    )
    source = LocationSource(
        timestamp=timestamp,
        device_id=device_id,
        source_type=asset.source_type,
        source_id=asset.id,
        metadata=asset.source_metadata(),
    )
    return sample, source


def _estimate_total(scanned: int, page_len: int, has_more: bool) -> int:
    if has_more and page_len > 0:
        return max(scanned * 2, scanned + PREVIEW_LOOKAHEAD)
    return scanned


class BackfillJobManager:
    """Runs import jobs that copy photo GPS positions into the store.

    Each job runs in its own daemon thread and pages through the asset
    source. After every page the job row is checkpointed (``last_page``),
    so an interrupted or failed job can continue with the next page.
    Jobs found ``running`` when the manager starts belong to a previous
    process and are marked ``interrupted``.
    """

    def __init__(
        self,
        store,
        source,
        indexer=None,
        page_size: int = DEFAULT_PAGE_SIZE,
        hub: Optional[ProgressHub] = None,
        recover_interrupted: bool = True,
    ):
        """
        Args:
            store: Store for samples and job rows
            source: Asset source (ImmichClient, LocalPhotoSource)
            indexer: PathIndexer rebuilt after a job imports something
            page_size: Assets requested per page
            hub: Progress fan-out (a new one by default)
            recover_interrupted: Mark jobs left ``running`` by a previous
                process as interrupted
        """
        self.store = store
        self.source = source
        self.indexer = indexer
        self.page_size = page_size
        self.hub = hub or ProgressHub()

        self._lock = threading.Lock()
        self._cancel_events: Dict[str, threading.Event] = {}
        self._threads: Dict[str, threading.Thread] = {}

        if recover_interrupted:
            self._mark_interrupted_jobs()

    def _mark_interrupted_jobs(self) -> None:
        try:
            jobs = self.store.list_jobs(status=JobStatus.RUNNING, limit=None)
        except SQLAlchemyError as e:
            log_warning(f"Nelze načíst importní joby: {e}")
            return

        for job in jobs:
            job.status = JobStatus.INTERRUPTED
            job.last_error = INTERRUPTED_MESSAGE
            self._save(job)
            log_info(f"Job {job.id} označen jako přerušený")

    # --- Job control ---

    def start_import(self, config: ImportConfig) -> str:
        """Create a job and start importing from the first page.

        Returns:
            Id of the new job
        """
        log_call("BackfillJobManager", "start_import", config=config.to_dict())

        job = ImportJob(
            id=str(uuid.uuid4()),
            status=JobStatus.RUNNING,
            started_at=int(time.time()),
            config=config,
        )
        self.store.create_job(job)
        self._launch(job.id, config, start_page=1)
        return job.id

    def resume_import(self, job_id: str) -> None:
        """Continue an interrupted or failed job after its last checkpoint.

        Raises:
            JobNotFoundError: Unknown job
            JobNotResumableError: Job is not interrupted or failed
        """
        log_call("BackfillJobManager", "resume_import", job_id=job_id)

        job = self.store.get_job(job_id)
        if job is None:
            raise JobNotFoundError(job_id)
        if not job.status.resumable:
            raise JobNotResumableError(job_id, job.status.value)

        job.status = JobStatus.RUNNING
        job.last_error = None
        job.completed_at = None
        self.store.update_job(job)

        self._launch(job.id, job.config, start_page=job.last_page + 1)

    def cancel_import(self, job_id: str) -> None:
        """Ask a running job to stop at the next page boundary.

        Raises:
            JobNotFoundError: No running job with this id
        """
        log_call("BackfillJobManager", "cancel_import", job_id=job_id)

        with self._lock:
            event = self._cancel_events.pop(job_id, None)
        if event is None:
            raise JobNotFoundError(job_id)
        event.set()

    def start_sync(self, user_id: str) -> str:
        """Import assets taken since the previous sync (all on the first run).

        Returns:
            Id of the started job
        """
        last_sync = self.store.get_last_sync_timestamp()
        after = datetime.fromtimestamp(last_sync, timezone.utc) if last_sync else None

        job_id = self.start_import(ImportConfig(user_id=user_id, after=after))
        try:
            self.store.set_last_sync_timestamp(int(time.time()))
        except SQLAlchemyError as e:
            log_warning(f"Nelze uložit čas synchronizace: {e}")
        return job_id

    def get_job_progress(self, job_id: str) -> ImportProgress:
        """
        Raises:
            JobNotFoundError: Unknown job
        """
        job = self.store.get_job(job_id)
        if job is None:
            raise JobNotFoundError(job_id)
        return ImportProgress.from_job(job, error=job.last_error)

    def list_jobs(self, status: Optional[JobStatus] = None) -> List[ImportJob]:
        return self.store.list_jobs(status=status)

    def is_running(self, job_id: str) -> bool:
        with self._lock:
            return job_id in self._threads

    def subscribe(self, job_id: str) -> Tuple[queue.Queue, Callable[[], None]]:
        return self.hub.subscribe(job_id)

    def wait(self, job_id: str, timeout: Optional[float] = None) -> bool:
        """Block until the job's worker finishes.

        Returns:
            True if no worker is running for the job anymore
        """
        with self._lock:
            thread = self._threads.get(job_id)
        if thread is None:
            return True
        thread.join(timeout)
        return not thread.is_alive()

    # --- Preview ---

    def preview(
        self,
        config: ImportConfig,
        callback: Callable[[PreviewProgress], None],
        cancel_event: Optional[threading.Event] = None,
    ) -> None:
        """Scan the source without importing and report per-device totals.

        ``callback`` is called after every page; the last call has
        ``complete=True``. A source error ends the scan with a single
        ``PreviewProgress(error=...)``.
        """
        log_call("BackfillJobManager", "preview", config=config.to_dict())

        devices: Dict[str, DevicePreview] = {}
        scanned = 0
        with_gps = 0
        page = 1

        while True:
            if cancel_event is not None and cancel_event.is_set():
                return

            try:
                assets, has_more = self.source.search_assets(
                    after=config.after, before=config.before, page=page, page_size=self.page_size
                )
            except AssetSourceError as e:
                callback(PreviewProgress(error=str(e)))
                return

            for asset in assets:
                scanned += 1
                if not asset.has_gps:
                    continue
                with_gps += 1

                device = devices.get(asset.device_id)
                if device is None:
                    devices[asset.device_id] = DevicePreview(
                        device_id=asset.device_id, count=1, earliest=asset.taken_at, latest=asset.taken_at
                    )
                    continue
                device.count += 1
                device.earliest = min(device.earliest, asset.taken_at)
                device.latest = max(device.latest, asset.taken_at)

            total = _estimate_total(scanned, len(assets), has_more)
            callback(
                PreviewProgress(
                    scanned=scanned,
                    total_estimated=total,
                    percent=scanned / total * 100 if total else 0.0,
                    photos_with_gps=with_gps,
                    devices=sorted(devices.values(), key=lambda d: (-d.count, d.device_id)),
                    complete=not has_more,
                )
            )

            if not has_more:
                return
            page += 1

    # --- Worker ---

    def _launch(self, job_id: str, config: ImportConfig, start_page: int) -> None:
        cancel_event = threading.Event()
        thread = threading.Thread(
            target=self._run_import,
            args=(job_id, config, start_page, cancel_event),
            name=f"import-{job_id[:8]}",
            daemon=True,
        )
        with self._lock:
            self._cancel_events[job_id] = cancel_event
            self._threads[job_id] = thread
        thread.start()

    def _save(self, job: ImportJob) -> None:
        try:
            self.store.update_job(job)
        except SQLAlchemyError as e:
            log_warning(f"Nelze uložit stav jobu {job.id}: {e}")

    def _finish(self, job: ImportJob, status: JobStatus, error: Optional[str] = None) -> None:
        job.status = status
        job.completed_at = int(time.time())
        if error:
            job.last_error = error
        self._save(job)
        self.hub.publish(job.id, ImportProgress.from_job(job, error=error))

    def _run_import(self, job_id: str, config: ImportConfig, start_page: int, cancel_event: threading.Event) -> None:
        job = None
        try:
            job = self.store.get_job(job_id)
            if job is None:
                log_warning(f"Job {job_id} nenalezen")
                return
            self._import_pages(job, config, start_page, cancel_event)
        except Exception as e:
            log_error(f"Import {job_id} selhal: {e}")
            if job is not None:
                self._finish(job, JobStatus.FAILED, error=str(e))
        finally:
            with self._lock:
                if self._cancel_events.get(job_id) is cancel_event:
                    del self._cancel_events[job_id]
                # Obnovený job už může běžet v novém vlákně se stejnými odběrateli
                owner = self._threads.get(job_id) is threading.current_thread()
                if owner:
                    del self._threads[job_id]
            if owner:
                self.hub.close(job_id)

    def _import_pages(self, job: ImportJob, config: ImportConfig, start_page: int, cancel_event: threading.Event) -> None:
        page = start_page
        while True:
            if cancel_event.is_set():
                self._finish(job, JobStatus.CANCELLED)
                log_info(f"Import {job.id} zrušen po stránce {job.last_page}")
                return

            try:
                assets, has_more = self.source.search_assets(
                    after=config.after, before=config.before, page=page, page_size=self.page_size
                )
            except AssetSourceError as e:
                log_error(f"Import {job.id}: stránka {page} selhala: {e}")
                self._finish(job, JobStatus.FAILED, error=str(e))
                return

            for asset in assets:
                job.processed += 1
                if not asset.has_gps:
                    continue
                if not config.allows_device(asset.device_id):
                    continue

                sample, source = _asset_to_sample(asset, config.user_id)
                try:
                    validate_sample_values(sample.timestamp, sample.lat, sample.lon)
                except ValueError as e:
                    job.errors += 1
                    log_warning(f"Import {job.id}: fotka {asset.id} má neplatnou polohu: {e}")
                    continue

                try:
                    inserted = self.store.insert_sample_with_source(sample, source)
                except SQLAlchemyError as e:
                    job.errors += 1
                    log_warning(f"Import {job.id}: bod {asset.id} nelze uložit: {e}")
                    continue

                if inserted:
                    job.imported += 1
                else:
                    job.skipped += 1

            # Checkpoint
            job.last_page = page
            self._save(job)
            self.hub.publish(job.id, ImportProgress.from_job(job))

            if not has_more:
                break
            page += 1

        self._finish(job, JobStatus.COMPLETED)
        log_info(
            f"Import {job.id} dokončen: importováno {job.imported}, "
            f"přeskočeno {job.skipped}, chyb {job.errors}"
        )

        if job.imported > 0 and self.indexer is not None:
            try:
                count = self.indexer.rebuild_all()
                log_info(f"Přepočítáno {count} tras")
            except Exception as e:
                # Job je už uložený jako dokončený
                log_warning(f"Přepočet tras po importu selhal: {e}")
