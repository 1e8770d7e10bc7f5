"""Testy pro HTTP API."""

import json
from datetime import datetime, timedelta, timezone

import pytest
from fastapi.testclient import TestClient
from whence.core.config import Config
from whence.core.exceptions import AssetSourceError
from whence.models.asset import Asset
from whence.models.location import LocationSource, Sample
from whence.web.app import create_app
from whence.web.state import app_state, log_buffer

MORNING = 1717236000  # 2024-06-01 10:00:00 UTC
PRAGUE_BBOX = "14.0,49.9,14.8,50.3"


class FakeImmich:
    """Immich klient vracející jednu stránku fotek."""

    source_type = "immich"
    base_url = "https://photos.example.com"

    def __init__(self, assets=None, reachable=True):
        self.assets = assets or []
        self.reachable = reachable

    def search_assets(self, after=None, before=None, page=1, page_size=200):
        if not self.reachable:
            raise AssetSourceError("connection refused")
        return (self.assets if page == 1 else []), False

    def validate_connection(self):
        if not self.reachable:
            raise AssetSourceError("connection refused")

    def get_thumbnail(self, asset_id, size="thumbnail"):
        if asset_id == "missing":
            raise AssetSourceError("thumbnail request failed with status 404")
        return b"\xff\xd8" + size.encode(), "image/jpeg"


def _assets():
    taken = datetime(2024, 6, 1, 10, 0, tzinfo=timezone.utc)
    return [
        Asset(
            id=f"asset-{i}",
            taken_at=taken + timedelta(minutes=i),
            filename=f"IMG_{i}.jpg",
            latitude=50.08,
            longitude=14.42 + i * 0.001,
            make="Apple",
            model="iPhone 12",
            web_url=f"https://photos.example.com/photos/asset-{i}",
        )
        for i in range(3)
    ]


def _events(body: str):
    """Rozloží SSE odpověď na dvojice (event, data)."""
    events = []
    for block in body.strip().split("\n\n"):
        event = None
        data = None
        for line in block.splitlines():
            if line.startswith("event: "):
                event = line[len("event: "):]
            elif line.startswith("data: "):
                data = json.loads(line[len("data: "):])
        if data is not None:
            events.append((event, data))
    return events


@pytest.fixture
def config(tmp_path):
    return Config(data_dir=tmp_path, default_user="alice")


@pytest.fixture
def client(config, store):
    """API s Immich klientem."""
    app = create_app(config, store=store, immich=FakeImmich(_assets()), geocode=False)
    return TestClient(app)


@pytest.fixture
def bare_client(config, store):
    """API bez Immich."""
    app = create_app(config, store=store, geocode=False)
    return TestClient(app)


def _owntracks(client, tst, lat=50.08, lon=14.42, **extra):
    payload = {"_type": "location", "lat": lat, "lon": lon, "tst": tst, "tid": "ph"}
    payload.update(extra)
    return client.post("/owntracks", json=payload, headers={"X-Limit-U": "alice"})


class TestIngest:
    """Testy pro příjem poloh."""

    def test_owntracks_location(self, client, store):
        """Poloha z OwnTracks se uloží a přepočítá se trasa dne."""
        response = _owntracks(client, MORNING, acc=12, vel=30, batt=80)

        assert response.status_code == 200
        assert response.json() == {}
        sample = store.latest_sample()
        assert sample.user_id == "alice"
        assert sample.device_id == "ph"
        assert sample.source == "owntracks"
        assert sample.accuracy_m == 12
        assert sample.speed_kmh == 30
        assert store.get_path("alice", "2024-06-01") is not None

    def test_owntracks_defaults(self, client, store):
        """Bez hlavičky a tid se použije výchozí uživatel a zařízení."""
        client.post("/owntracks", json={"_type": "location", "lat": 50.0, "lon": 14.0, "tst": MORNING})

        sample = store.latest_sample()
        assert sample.user_id == "alice"
        assert sample.device_id == "owntracks"

    def test_owntracks_other_message_types_ignored(self, client, store):
        response = client.post("/owntracks", json={"_type": "transition", "event": "enter"})
        assert response.status_code == 200
        assert response.json() == {}
        assert store.count_samples() == 0

    def test_owntracks_missing_fields(self, client):
        response = client.post("/owntracks", json={"_type": "location", "lat": 50.0, "lon": 14.0})
        assert response.status_code == 400

    def test_gpslogger(self, client, store):
        response = client.get("/gpslogger", params={"lat": "50.1", "lon": "14.5", "time": str(MORNING)})

        assert response.status_code == 200
        assert response.text == "OK"
        sample = store.latest_sample()
        assert sample.timestamp == MORNING
        assert sample.device_id == "gpslogger"

    def test_gpslogger_iso_time(self, client, store):
        client.get("/gpslogger", params={"lat": "50.1", "lon": "14.5", "time": "2024-06-01T10:00:00Z"})
        assert store.latest_sample().timestamp == MORNING

    def test_gpslogger_invalid_lat(self, client):
        assert client.get("/gpslogger", params={"lat": "north", "lon": "14.5"}).status_code == 400

    def test_owntracks_millisecond_timestamp_rejected(self, client, store):
        """Čas v milisekundách se odmítne dřív, než se bod uloží."""
        response = _owntracks(client, MORNING * 1000)

        assert response.status_code == 400
        assert "out of range" in response.json()["detail"]
        assert store.count_samples() == 0

        _owntracks(client, MORNING)
        assert client.post("/api/paths/rebuild").json() == {"status": "ok", "paths": 1}

    @pytest.mark.parametrize("params", [
        {"lat": "50.1", "lon": "inf", "time": str(MORNING)},
        {"lat": "nan", "lon": "14.5", "time": str(MORNING)},
        {"lat": "50.1", "lon": "14.5", "time": str(MORNING * 1000)},
    ])
    def test_gpslogger_unusable_values_rejected(self, client, store, params):
        assert client.get("/gpslogger", params=params).status_code == 400
        assert store.count_samples() == 0
        assert client.get("/gpslogger", params={"lon": "14.5"}).status_code == 400


class TestPathsApi:
    """Testy pro trasy a dotazy nad body."""

    def test_paths_in_viewport(self, client):
        for i in range(3):
            _owntracks(client, MORNING + i * 600, lon=14.42 + i * 0.01)

        data = client.get("/api/paths", params={"bbox": PRAGUE_BBOX}).json()

        assert len(data["paths"]) == 1
        assert data["paths"][0]["date"] == "2024-06-01"
        assert data["current"]["timestamp"] == MORNING + 1200
        assert data["removed"] == {"stationary": [], "spikes": []}

    def test_current_outside_range(self, client):
        _owntracks(client, MORNING)
        data = client.get("/api/paths", params={"bbox": PRAGUE_BBOX, "end": str(MORNING - 1)}).json()
        assert data["current"] is None
        assert data["paths"] == []

    def test_paths_with_stages(self, client):
        _owntracks(client, MORNING)
        _owntracks(client, MORNING + 60, lat=50.0801)
        _owntracks(client, MORNING + 120, lat=50.2)

        data = client.get("/api/paths", params={"bbox": PRAGUE_BBOX, "prune": "50", "spikes": "0"}).json()
        assert len(data["removed"]["stationary"]) == 1

    @pytest.mark.parametrize("params", [
        {"bbox": "1,2,3"},
        {"bbox": PRAGUE_BBOX, "start": "yesterday"},
        {"bbox": PRAGUE_BBOX, "prune": "a lot"},
        {"bbox": PRAGUE_BBOX, "order": "stationary,smoothing"},
    ])
    def test_bad_parameters(self, client, params):
        assert client.get("/api/paths", params=params).status_code == 400

    def test_rebuild(self, client):
        _owntracks(client, MORNING)
        _owntracks(client, MORNING + 86400)

        assert client.post("/api/paths/rebuild").json() == {"status": "ok", "paths": 2}

    def test_bounds_and_latest(self, client):
        assert client.get("/api/latest").json() is None
        assert client.get("/api/bounds", params={"start": "0", "end": "2000000000"}).json() is None

        _owntracks(client, MORNING, lat=50.0, lon=14.0)
        _owntracks(client, MORNING + 60, lat=50.5, lon=14.5)

        bounds = client.get("/api/bounds", params={"start": "0", "end": "2000000000"}).json()
        assert bounds == {"min_lat": 50.0, "max_lat": 50.5, "min_lon": 14.0, "max_lon": 14.5}
        assert client.get("/api/latest").json()["timestamp"] == MORNING + 60

    def test_timeline(self, client):
        for i in range(16):
            _owntracks(client, MORNING + i * 60)

        data = client.get("/api/timeline", params={"date": "2024-06-01"}).json()
        assert data["date"] == "2024-06-01"
        assert [e["type"] for e in data["entries"]] == ["stop"]
        assert data["entries"][0]["duration_seconds"] == 900

    def test_timeline_bad_date(self, client):
        assert client.get("/api/timeline", params={"date": "01.06.2024"}).status_code == 400


class TestTimelineImport:
    """Testy pro import Timeline JSON přes API."""

    def test_import_streams_progress(self, client, store):
        body = {
            "rawSignals": [
                {"position": {"LatLng": "50.08°, 14.42°", "timestamp": "2024-06-01T10:00:00Z"}},
                {"position": {"LatLng": "50.09°, 14.43°", "timestamp": "2024-06-01T10:05:00Z"}},
                {"position": {"LatLng": "broken", "timestamp": "2024-06-01T10:10:00Z"}},
            ]
        }
        response = client.post("/api/import/timeline", params={"device_id": "pixel"}, content=json.dumps(body))

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/event-stream")
        events = [data for _, data in _events(response.text)]
        final = events[-1]
        assert final["complete"] is True
        assert final["stats"]["inserted"] == 2
        assert final["stats"]["errors"] == 1
        assert store.latest_sample().device_id == "pixel"
        assert store.get_path("alice", "2024-06-01") is not None

    def test_import_invalid_json(self, client):
        response = client.post("/api/import/timeline", content="{broken")
        final = [data for _, data in _events(response.text)][-1]
        assert final["complete"] is True
        assert "error" in final


class TestImmichApi:
    """Testy pro Immich import a joby."""

    def test_not_configured(self, bare_client):
        assert bare_client.get("/api/immich/status").json()["configured"] is False
        assert bare_client.post("/api/immich/import", json={}).status_code == 503
        assert bare_client.get("/api/immich/assets/a1/thumbnail").status_code == 503

    def test_status(self, client):
        data = client.get("/api/immich/status").json()
        assert data == {"configured": True, "connected": True, "url": "https://photos.example.com"}

    def test_status_unreachable(self, config, store):
        app = create_app(config, store=store, immich=FakeImmich(reachable=False), geocode=False)
        data = TestClient(app).get("/api/immich/status").json()
        assert data["connected"] is False
        assert "connection refused" in data["error"]

    def test_import_job(self, client, store):
        """Import běží na pozadí a stav jde zjistit přes API."""
        response = client.post("/api/immich/import", json={"after": "2024-01-01T00:00:00Z"})
        assert response.status_code == 200
        job_id = response.json()["job_id"]
        assert response.json()["status"] == "running"
        assert app_state.manager.wait(job_id, timeout=10)

        progress = client.get(f"/api/immich/jobs/{job_id}").json()
        assert progress["status"] == "completed"
        assert progress["imported"] == 3

        jobs = client.get("/api/immich/jobs").json()["jobs"]
        assert [j["id"] for j in jobs] == [job_id]
        assert jobs[0]["config"]["user_id"] == "alice"

        ts = int(_assets()[0].taken_at.timestamp())
        source = client.get("/api/location/source", params={"timestamp": str(ts)}).json()
        assert source["source_type"] == "immich"
        assert source["source_id"] == "asset-0"
        assert source["filename"] == "IMG_0.jpg"

    def test_import_bad_time(self, client):
        assert client.post("/api/immich/import", json={"after": "last week"}).status_code == 400

    def test_unknown_job(self, client):
        assert client.get("/api/immich/jobs/nope").status_code == 404
        assert client.post("/api/immich/jobs/nope/resume").status_code == 404
        assert client.post("/api/immich/jobs/nope/cancel").status_code == 404
        assert client.get("/api/immich/jobs/nope/stream").status_code == 404

    def test_resume_completed_job_rejected(self, client):
        job_id = client.post("/api/immich/import", json={}).json()["job_id"]
        app_state.manager.wait(job_id, timeout=10)

        assert client.post(f"/api/immich/jobs/{job_id}/resume").status_code == 400
        assert client.post(f"/api/immich/jobs/{job_id}/cancel").status_code == 404

    def test_stream_finished_job(self, client):
        """Stream dokončeného jobu pošle snapshot a hned done."""
        job_id = client.post("/api/immich/import", json={}).json()["job_id"]
        app_state.manager.wait(job_id, timeout=10)

        events = _events(client.get(f"/api/immich/jobs/{job_id}/stream").text)
        assert [e for e, _ in events] == ["progress", "done"]
        assert events[-1][1]["status"] == "completed"

    def test_preview(self, client, store):
        events = _events(client.get("/api/immich/preview").text)

        assert events[-1][0] == "complete"
        data = events[-1][1]
        assert data["photos_with_gps"] == 3
        assert data["devices"][0]["device_id"] == "Apple iPhone 12"
        assert store.count_samples() == 0

    def test_thumbnail(self, client):
        response = client.get("/api/immich/assets/a1/thumbnail", params={"size": "preview"})

        assert response.status_code == 200
        assert response.content == b"\xff\xd8preview"
        assert response.headers["content-type"] == "image/jpeg"
        assert "max-age=86400" in response.headers["cache-control"]

    def test_thumbnail_errors(self, client):
        assert client.get("/api/immich/assets/missing/thumbnail").status_code == 502
        assert client.get("/api/immich/assets/a1/thumbnail", params={"size": "huge"}).status_code == 422

    def test_sync(self, client):
        assert client.get("/api/immich/sync/status").json() == {"last_sync": None}

        job_id = client.post("/api/immich/sync").json()["job_id"]
        app_state.manager.wait(job_id, timeout=10)

        assert client.get("/api/immich/sync/status").json()["last_sync"] is not None


def _photo(store, ts, lat, lon, source_id):
    store.insert_sample_with_source(
        Sample(timestamp=ts, user_id="alice", device_id="cam", lat=lat, lon=lon),
        LocationSource(timestamp=ts, device_id="cam", source_type="immich", source_id=source_id,
                       metadata={"filename": f"{source_id}.jpg"}),
    )


class TestPhotosApi:
    """Testy pro shlukování fotek na mapě."""

    def test_clusters(self, client, store):
        """Blízké fotky tvoří jeden shluk, klíčová fotka je nejnovější."""
        _photo(store, MORNING, 50.080, 14.420, "p1")
        _photo(store, MORNING + 60, 50.081, 14.421, "p2")
        _photo(store, MORNING + 120, 50.200, 14.600, "p3")

        response = client.get("/api/photos", params={"start": MORNING, "end": MORNING + 3600, "bbox": PRAGUE_BBOX})

        assert response.status_code == 200
        clusters = response.json()["clusters"]
        assert [c["count"] for c in clusters] == [2, 1]
        first = clusters[0]
        assert first["lat"] == pytest.approx(50.081)
        assert first["lon"] == pytest.approx(14.421)
        assert first["thumbnail_url"] == "/api/immich/assets/p2/thumbnail"
        assert [p["source_id"] for p in first["photos"]] == ["p1", "p2"]
        assert first["photos"][0]["filename"] == "p1.jpg"

    def test_time_range(self, client, store):
        _photo(store, MORNING, 50.080, 14.420, "p1")
        response = client.get("/api/photos", params={"start": MORNING + 1, "end": MORNING + 3600, "bbox": PRAGUE_BBOX})
        assert response.json() == {"clusters": []}

    @pytest.mark.parametrize("params", [
        {"end": MORNING, "bbox": PRAGUE_BBOX},
        {"start": MORNING, "bbox": PRAGUE_BBOX},
        {"start": MORNING, "end": MORNING + 60},
        {"start": "abc", "end": MORNING, "bbox": PRAGUE_BBOX},
        {"start": MORNING, "end": MORNING + 60, "bbox": "1,2,3"},
    ])
    def test_bad_params(self, client, params):
        assert client.get("/api/photos", params=params).status_code == 400

class TestLogsApi:
    """Testy pro log endpointy."""

    def test_get_and_clear(self, client):
        log_buffer.add("info", "hello")
        messages = [e["message"] for e in client.get("/api/logs").json()["logs"]]
        assert "hello" in messages

        assert client.delete("/api/logs").json() == {"success": True}
        assert client.get("/api/logs").json() == {"logs": []}
