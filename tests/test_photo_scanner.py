"""Testy pro lokální zdroj fotek."""

from datetime import datetime, timedelta, timezone

import piexif
import pytest
from whence.core.exceptions import AssetSourceError
from whence.services import photo_scanner
from whence.services.photo_scanner import OFFSET_TIME_ORIGINAL, LocalPhotoSource


def _exif(taken: str, gps=None, offset=None, make=b"Apple", model=b"iPhone 12\x00"):
    exif = {piexif.ExifIFD.DateTimeOriginal: taken.encode()}
    if offset:
        exif[OFFSET_TIME_ORIGINAL] = offset.encode()
    data = {"0th": {piexif.ImageIFD.Make: make, piexif.ImageIFD.Model: model}, "Exif": exif, "GPS": {}}
    if gps:
        lat, lat_ref, lon, lon_ref = gps
        data["GPS"] = {
            piexif.GPSIFD.GPSLatitude: lat,
            piexif.GPSIFD.GPSLatitudeRef: lat_ref,
            piexif.GPSIFD.GPSLongitude: lon,
            piexif.GPSIFD.GPSLongitudeRef: lon_ref,
        }
    return data


PRAGUE_GPS = (((50, 1), (4, 1), (3180, 100)), b"N", ((14, 1), (26, 1), (1608, 100)), b"E")


@pytest.fixture
def photos_dir(tmp_path, monkeypatch):
    """Složka s fotkami, EXIF se čte z tabulky místo ze souborů."""
    exif_by_name = {
        "b.jpg": _exif("2024:06:01 12:00:00", gps=PRAGUE_GPS, offset="+02:00"),
        "a.JPG": _exif("2024:06:01 11:00:00", gps=PRAGUE_GPS, offset="+02:00"),
        "no_gps.jpg": _exif("2024:06:01 13:00:00", offset="+02:00"),
        "no_date.jpg": {"0th": {}, "Exif": {}, "GPS": {}},
        "broken.jpg": None,
    }
    for name in exif_by_name:
        (tmp_path / name).write_bytes(b"\xff\xd8\xff\xd9")
    (tmp_path / "sub").mkdir()
    (tmp_path / "sub" / "c.jpeg").write_bytes(b"\xff\xd8\xff\xd9")
    exif_by_name["c.jpeg"] = _exif("2024:06:01 14:00:00", gps=PRAGUE_GPS, offset="+02:00", make=b"", model=b"")
    (tmp_path / "notes.txt").write_text("ignored")

    def fake_load(path):
        data = exif_by_name[path.rsplit("/", 1)[-1]]
        if data is None:
            raise ValueError("not a JPEG")
        return data

    monkeypatch.setattr(photo_scanner.piexif, "load", fake_load)
    return tmp_path


class TestLocalPhotoSource:
    """Testy pro LocalPhotoSource."""

    def test_scan_sorted_by_time(self, photos_dir):
        """Čitelné fotky s datem, seřazené podle času pořízení."""
        assets = LocalPhotoSource(photos_dir).scan()

        assert [a.filename for a in assets] == ["a.JPG", "b.jpg", "no_gps.jpg", "c.jpeg"]
        assert assets[3].id == "sub/c.jpeg"
        assert all(a.source_type == "local" for a in assets)

    def test_gps_and_device(self, photos_dir):
        asset = LocalPhotoSource(photos_dir).scan()[0]

        assert asset.latitude == pytest.approx(50 + 4 / 60 + 31.8 / 3600)
        assert asset.longitude == pytest.approx(14 + 26 / 60 + 16.08 / 3600)
        assert asset.device_id == "Apple iPhone 12"
        assert asset.web_url.startswith("file://")

    def test_offset_time(self, photos_dir):
        """OffsetTimeOriginal určuje časové pásmo."""
        asset = LocalPhotoSource(photos_dir).scan()[0]
        assert asset.taken_at == datetime(2024, 6, 1, 9, 0, tzinfo=timezone.utc)
        assert asset.taken_at.utcoffset() == timedelta(hours=2)

    def test_missing_gps_and_device(self, photos_dir):
        assets = LocalPhotoSource(photos_dir).scan()
        assert not assets[2].has_gps
        assert assets[3].device_id == "local-unknown"

    def test_southern_western_hemisphere(self):
        source = LocalPhotoSource(None)
        gps = (((33, 1), (52, 1), (0, 1)), b"S", ((151, 1), (12, 1), (0, 1)), b"W")
        lat, lon = source._extract_gps(_exif("2024:06:01 12:00:00", gps=gps))
        assert lat == pytest.approx(-(33 + 52 / 60))
        assert lon == pytest.approx(-(151 + 12 / 60))

    def test_non_recursive(self, photos_dir):
        assets = LocalPhotoSource(photos_dir, recursive=False).scan()
        assert "c.jpeg" not in [a.filename for a in assets]

    def test_pagination(self, photos_dir):
        source = LocalPhotoSource(photos_dir)

        page1, more1 = source.search_assets(page=1, page_size=3)
        page2, more2 = source.search_assets(page=2, page_size=3)

        assert len(page1) == 3 and more1 is True
        assert len(page2) == 1 and more2 is False

    def test_time_filter(self, photos_dir):
        after = datetime(2024, 6, 1, 9, 30, tzinfo=timezone.utc)
        assets, _ = LocalPhotoSource(photos_dir).search_assets(after=after)
        assert [a.filename for a in assets] == ["b.jpg", "no_gps.jpg", "c.jpeg"]

    def test_missing_directory(self, tmp_path):
        source = LocalPhotoSource(tmp_path / "missing")
        with pytest.raises(AssetSourceError):
            source.validate_connection()
        with pytest.raises(AssetSourceError):
            source.search_assets()
