"""Testy pro importní joby a rozesílání průběhu."""

import threading
from dataclasses import replace
from datetime import datetime, timedelta, timezone

import pytest
from whence.core.exceptions import AssetSourceError, JobNotFoundError, JobNotResumableError
from whence.models.asset import Asset
from whence.models.job import ImportConfig, ImportJob, ImportProgress, JobStatus
from whence.services.backfill import INTERRUPTED_MESSAGE, BackfillJobManager, ProgressHub
from whence.services.path_indexer import PathIndexer

TAKEN = datetime(2024, 6, 1, 10, 0, tzinfo=timezone.utc)


def _asset(n: int, make: str = "Apple", model: str = "iPhone 12", gps: bool = True) -> Asset:
    return Asset(
        id=f"asset-{n}",
        taken_at=TAKEN + timedelta(minutes=n),
        filename=f"IMG_{n}.jpg",
        latitude=50.0 + n * 0.001 if gps else None,
        longitude=14.4 if gps else None,
        make=make,
        model=model,
        web_url=f"https://photos.example.com/photos/asset-{n}",
    )


class FakeSource:
    """Stránkovaný zdroj fotek v paměti."""

    source_type = "immich"

    def __init__(self, pages, fail_pages=None, gate=None, error=None):
        self.pages = pages
        self.fail_pages = set(fail_pages or [])
        self.gate = gate
        self.error = error
        self.requested = []
        self.ranges = []
        self.started = threading.Event()

    def search_assets(self, after=None, before=None, page=1, page_size=200):
        self.requested.append(page)
        self.ranges.append((after, before))
        self.started.set()
        if self.gate is not None:
            self.gate.wait(5)
        if self.error is not None:
            raise self.error
        if page in self.fail_pages:
            self.fail_pages.discard(page)
            raise AssetSourceError(f"page {page} unavailable")
        assets = self.pages[page - 1] if page <= len(self.pages) else []
        return assets, page < len(self.pages)

    def validate_connection(self):
        pass


def _pages():
    return [
        [_asset(1), _asset(2), _asset(3, gps=False)],
        [_asset(4, make="Canon", model="Canon EOS R5")],
    ]


def _run(manager: BackfillJobManager, config: ImportConfig = None) -> ImportJob:
    job_id = manager.start_import(config or ImportConfig(user_id="alice"))
    assert manager.wait(job_id, timeout=10)
    return manager.store.get_job(job_id)


class TestProgressHub:
    """Testy pro ProgressHub."""

    def _progress(self, processed: int) -> ImportProgress:
        return ImportProgress(job_id="j", status=JobStatus.RUNNING, processed=processed)

    def test_publish_and_close(self):
        hub = ProgressHub()
        q, _ = hub.subscribe("j")

        hub.publish("j", self._progress(1))
        hub.close("j")

        assert q.get_nowait().processed == 1
        assert q.get_nowait() is None
        assert hub.subscriber_count("j") == 0

    def test_full_queue_drops_updates(self):
        """Pomalý odběratel přijde o zprávy, worker neblokuje."""
        hub = ProgressHub()
        q, _ = hub.subscribe("j")

        for i in range(ProgressHub.QUEUE_SIZE + 5):
            hub.publish("j", self._progress(i))

        assert q.qsize() == ProgressHub.QUEUE_SIZE

    def test_close_delivers_end_marker_to_full_queue(self):
        """Značka konce se doručí i do plné fronty."""
        hub = ProgressHub()
        q, _ = hub.subscribe("j")
        for i in range(ProgressHub.QUEUE_SIZE):
            hub.publish("j", self._progress(i))

        hub.close("j")

        items = [q.get_nowait() for _ in range(q.qsize())]
        assert items[-1] is None
        assert items[0].processed == 1

    def test_unsubscribe(self):
        hub = ProgressHub()
        q, unsubscribe = hub.subscribe("j")
        unsubscribe()
        unsubscribe()

        hub.publish("j", self._progress(1))
        assert q.empty()
        assert hub.subscriber_count("j") == 0

    def test_other_jobs_not_affected(self):
        hub = ProgressHub()
        q, _ = hub.subscribe("a")
        hub.publish("b", self._progress(1))
        hub.close("b")
        assert q.empty()


class TestImport:
    """Testy pro běh importu."""

    def test_import_completes(self, store):
        """Import projde všechny stránky a spočítá výsledky."""
        source = FakeSource(_pages())
        job = _run(BackfillJobManager(store, source))

        assert job.status == JobStatus.COMPLETED
        assert job.processed == 4
        assert job.imported == 3
        assert job.skipped == 0
        assert job.errors == 0
        assert job.last_page == 2
        assert job.completed_at is not None
        assert source.requested == [1, 2]
        assert store.count_samples() == 3

    def test_sample_and_source_saved(self, store):
        """Bod se uloží se zařízením z EXIF a vazbou na fotku."""
        _run(BackfillJobManager(store, FakeSource(_pages())))

        ts = int(_asset(1).taken_at.timestamp())
        source = store.get_location_source(ts, "Apple iPhone 12")
        assert source.source_type == "immich"
        assert source.source_id == "asset-1"
        assert source.metadata["filename"] == "IMG_1.jpg"
        assert store.get_location_source(int(_asset(4).taken_at.timestamp()), "Canon EOS R5") is not None

    def test_second_import_skips_duplicates(self, store):
        manager = BackfillJobManager(store, FakeSource(_pages()))
        _run(manager)
        job = _run(manager)

        assert job.imported == 0
        assert job.skipped == 3

    def test_device_allow_list(self, store):
        """Importují se jen vybraná zařízení."""
        job = _run(
            BackfillJobManager(store, FakeSource(_pages())),
            ImportConfig(user_id="alice", devices=["Canon EOS R5"]),
        )

        assert job.processed == 4
        assert job.imported == 1
        assert store.latest_sample().device_id == "Canon EOS R5"

    def test_rebuild_after_import(self, store):
        """Po importu se přepočítají trasy."""
        _run(BackfillJobManager(store, FakeSource(_pages()), PathIndexer(store)))

        path = store.get_path("alice", "2024-06-01")
        assert path is not None
        assert path.point_count == 3

    def test_time_range_passed_to_source(self, store):
        source = FakeSource(_pages())
        after = TAKEN - timedelta(days=1)
        _run(BackfillJobManager(store, source), ImportConfig(user_id="alice", after=after))
        assert source.ranges[0] == (after, None)

    def test_progress_published_per_page(self, store):
        """Odběratel dostane průběh po každé stránce a nakonec None."""
        gate = threading.Event()
        manager = BackfillJobManager(store, FakeSource(_pages(), gate=gate))

        job_id = manager.start_import(ImportConfig(user_id="alice"))
        updates, unsubscribe = manager.subscribe(job_id)
        gate.set()
        assert manager.wait(job_id, timeout=10)

        received = []
        while True:
            item = updates.get(timeout=5)
            if item is None:
                break
            received.append(item)
        unsubscribe()

        assert [p.processed for p in received] == [3, 4, 4]
        assert received[-1].status == JobStatus.COMPLETED
        assert received[-1].percent == 0.0
        assert not manager.is_running(job_id)

    def test_invalid_position_counted_as_error(self, store):
        """Fotka s polohou NaN se neuloží, započítá se jako chyba."""
        broken = replace(_asset(2), latitude=float("nan"))
        job = _run(BackfillJobManager(store, FakeSource([[_asset(1), broken]]), PathIndexer(store)))

        assert job.status == JobStatus.COMPLETED
        assert job.imported == 1
        assert job.errors == 1
        assert store.count_samples() == 1

    def test_rebuild_failure_keeps_completed(self, store):
        """Chyba přepočtu tras po importu nezmění stav dokončeného jobu."""

        class BrokenIndexer:
            def rebuild_all(self):
                raise RuntimeError("rebuild exploded")

        job = _run(BackfillJobManager(store, FakeSource(_pages()), BrokenIndexer()))

        assert job.status == JobStatus.COMPLETED
        assert job.last_error is None
        assert job.imported == 3

    def test_finished_worker_keeps_subscribers_of_newer_worker(self, store):
        """Dokončené vlákno neuzavře odběratele, pokud job mezitím převzalo nové vlákno."""
        gate = threading.Event()
        source = FakeSource(_pages(), gate=gate)
        manager = BackfillJobManager(store, source)

        job_id = manager.start_import(ImportConfig(user_id="alice"))
        assert source.started.wait(5)
        old_worker = manager._threads[job_id]
        # Stejně jako resume_import zaregistruje nové vlákno
        manager._threads[job_id] = threading.Thread(target=lambda: None)
        updates, unsubscribe = manager.subscribe(job_id)

        gate.set()
        old_worker.join(10)
        assert not old_worker.is_alive()

        received = []
        while not updates.empty():
            received.append(updates.get_nowait())
        assert None not in received
        assert manager.hub.subscriber_count(job_id) == 1
        assert manager.is_running(job_id)
        unsubscribe()


class TestFailureAndResume:
    """Testy pro selhání, obnovení a zrušení."""

    def test_page_error_marks_failed(self, store):
        """Chyba stránky ukončí job jako failed s chybou."""
        job = _run(BackfillJobManager(store, FakeSource(_pages(), fail_pages=[2])))

        assert job.status == JobStatus.FAILED
        assert job.last_page == 1
        assert "page 2 unavailable" in job.last_error
        assert job.completed_at is not None

    def test_resume_continues_after_checkpoint(self, store):
        """Obnovený job pokračuje stránkou za checkpointem."""
        source = FakeSource(_pages(), fail_pages=[2])
        manager = BackfillJobManager(store, source)
        job = _run(manager)

        manager.resume_import(job.id)
        assert manager.wait(job.id, timeout=10)

        resumed = store.get_job(job.id)
        assert resumed.status == JobStatus.COMPLETED
        assert resumed.last_error is None
        assert resumed.imported == 3
        assert resumed.processed == 4
        assert source.requested == [1, 2, 2]

    def test_unexpected_error_marks_failed(self, store):
        job = _run(BackfillJobManager(store, FakeSource(_pages(), error=RuntimeError("disk on fire"))))

        assert job.status == JobStatus.FAILED
        assert job.last_error == "disk on fire"

    def test_resume_rejected_for_completed(self, store):
        manager = BackfillJobManager(store, FakeSource(_pages()))
        job = _run(manager)

        with pytest.raises(JobNotResumableError):
            manager.resume_import(job.id)

    def test_resume_unknown(self, store):
        with pytest.raises(JobNotFoundError):
            BackfillJobManager(store, FakeSource([])).resume_import("missing")

    def test_interrupted_on_restart(self, store):
        """Job, který zůstal running, se po restartu označí jako přerušený."""
        store.create_job(
            ImportJob(id="old", status=JobStatus.RUNNING, started_at=1, last_page=1,
                      config=ImportConfig(user_id="alice"))
        )

        source = FakeSource(_pages())
        manager = BackfillJobManager(store, source)
        job = store.get_job("old")
        assert job.status == JobStatus.INTERRUPTED
        assert job.last_error == INTERRUPTED_MESSAGE

        manager.resume_import("old")
        assert manager.wait("old", timeout=10)
        assert store.get_job("old").status == JobStatus.COMPLETED
        assert source.requested == [2]

    def test_recovery_can_be_disabled(self, store):
        store.create_job(ImportJob(id="live", status=JobStatus.RUNNING, started_at=1))
        BackfillJobManager(store, FakeSource([]), recover_interrupted=False)
        assert store.get_job("live").status == JobStatus.RUNNING

    def test_cancel_stops_at_page_boundary(self, store):
        """Zrušení se projeví před další stránkou, checkpoint zůstane."""
        gate = threading.Event()
        source = FakeSource(_pages(), gate=gate)
        manager = BackfillJobManager(store, source)

        job_id = manager.start_import(ImportConfig(user_id="alice"))
        assert source.started.wait(5)
        manager.cancel_import(job_id)
        gate.set()
        assert manager.wait(job_id, timeout=10)

        job = store.get_job(job_id)
        assert job.status == JobStatus.CANCELLED
        assert job.last_page == 1
        assert job.processed == 3
        assert source.requested == [1]

    def test_cancel_twice_reports_not_found(self, store):
        gate = threading.Event()
        manager = BackfillJobManager(store, FakeSource(_pages(), gate=gate))

        job_id = manager.start_import(ImportConfig(user_id="alice"))
        manager.cancel_import(job_id)
        with pytest.raises(JobNotFoundError):
            manager.cancel_import(job_id)
        gate.set()
        manager.wait(job_id, timeout=10)

    def test_cancel_finished_job(self, store):
        manager = BackfillJobManager(store, FakeSource(_pages()))
        job = _run(manager)
        with pytest.raises(JobNotFoundError):
            manager.cancel_import(job.id)

    def test_get_job_progress(self, store):
        manager = BackfillJobManager(store, FakeSource(_pages(), fail_pages=[1]))
        job = _run(manager)

        progress = manager.get_job_progress(job.id)
        assert progress.status == JobStatus.FAILED
        assert "page 1 unavailable" in progress.error
        with pytest.raises(JobNotFoundError):
            manager.get_job_progress("missing")


class TestSync:
    """Testy pro synchronizaci."""

    def test_first_sync_imports_everything(self, store):
        source = FakeSource(_pages())
        manager = BackfillJobManager(store, source)

        job_id = manager.start_sync("alice")
        manager.wait(job_id, timeout=10)

        assert source.ranges[0] == (None, None)
        assert store.get_last_sync_timestamp() is not None

    def test_next_sync_starts_after_last(self, store):
        store.set_last_sync_timestamp(1717236000)
        source = FakeSource(_pages())
        manager = BackfillJobManager(store, source)

        job_id = manager.start_sync("alice")
        manager.wait(job_id, timeout=10)

        assert source.ranges[0][0] == datetime(2024, 6, 1, 10, 0, tzinfo=timezone.utc)
        assert store.get_last_sync_timestamp() > 1717236000


class TestPreview:
    """Testy pro náhled importu."""

    def test_groups_by_device(self, store):
        """Náhled spočítá fotky s GPS podle zařízení, nic neukládá."""
        results = []
        BackfillJobManager(store, FakeSource(_pages())).preview(ImportConfig(), results.append)

        assert len(results) == 2
        first, final = results
        assert first.complete is False
        assert first.total_estimated == 203
        assert final.complete is True
        assert final.scanned == 4
        assert final.total_estimated == 4
        assert final.percent == pytest.approx(100.0)
        assert final.photos_with_gps == 3
        assert [(d.device_id, d.count) for d in final.devices] == [("Apple iPhone 12", 2), ("Canon EOS R5", 1)]
        assert final.devices[0].earliest == _asset(1).taken_at
        assert final.devices[0].latest == _asset(2).taken_at
        assert store.count_samples() == 0

    def test_source_error(self, store):
        results = []
        BackfillJobManager(store, FakeSource(_pages(), fail_pages=[1])).preview(ImportConfig(), results.append)

        assert len(results) == 1
        assert "page 1 unavailable" in results[0].error

    def test_cancelled_preview(self, store):
        cancel = threading.Event()
        cancel.set()
        results = []
        source = FakeSource(_pages())
        BackfillJobManager(store, source).preview(ImportConfig(), results.append, cancel)

        assert results == []
        assert source.requested == []

    def test_estimate_does_not_depend_on_page_size(self, store):
        """Odhad celku přičítá pevných 200 bez ohledu na velikost stránky."""
        results = []
        BackfillJobManager(store, FakeSource(_pages()), page_size=2).preview(ImportConfig(), results.append)

        assert results[0].scanned == 3
        assert results[0].total_estimated == 203
