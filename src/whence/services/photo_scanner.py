"""Scanning JPEG files and reading EXIF GPS data."""

import threading
from datetime import datetime
from pathlib import Path
from typing import List, Optional, Tuple

import piexif

from whence.core.exceptions import AssetSourceError
from whence.core.logger import log_call, log_result, log_warning
from whence.models.asset import Asset

DEFAULT_PAGE_SIZE = 200

EXIF_DATETIME_FORMAT = "%Y:%m:%d %H:%M:%S"

# EXIF 2.31 tag, missing from older piexif releases
OFFSET_TIME_ORIGINAL = 0x9011


def _decode(value) -> Optional[str]:
    if value is None:
        return None
    if isinstance(value, bytes):
        value = value.decode("utf-8", errors="ignore")
    value = value.strip("\x00").strip()
    return value or None


class LocalPhotoSource:
    """Asset source reading JPEG photos from a local directory.

    The directory is scanned once on first use; pages are slices of the
    photos ordered by capture time, like the Immich search results.
    """

    source_type = "local"

    JPEG_EXTENSIONS = {".jpg", ".jpeg"}

    def __init__(self, directory: Path, recursive: bool = True):
        """
        Args:
            directory: Directory with photos
            recursive: Also scan subdirectories
        """
        self.directory = directory
        self.recursive = recursive
        self._assets: Optional[List[Asset]] = None
        self._lock = threading.Lock()

    def search_assets(
        self,
        after: Optional[datetime] = None,
        before: Optional[datetime] = None,
        page: int = 1,
        page_size: int = DEFAULT_PAGE_SIZE,
    ) -> Tuple[List[Asset], bool]:
        """Return one page of photos taken within the optional time range.

        Raises:
            AssetSourceError: If the directory cannot be read
        """
        assets = [
            a for a in self._scan()
            if (after is None or a.taken_at > after) and (before is None or a.taken_at < before)
        ]
        start = (page - 1) * page_size
        page_assets = assets[start:start + page_size]
        return page_assets, start + page_size < len(assets)

    def validate_connection(self) -> None:
        if not self.directory.is_dir():
            raise AssetSourceError(f"Složka neexistuje: {self.directory}")

    def _scan(self) -> List[Asset]:
        with self._lock:
            if self._assets is None:
                self._assets = self.scan()
            return self._assets

    def scan(self) -> List[Asset]:
        """Scan the directory and return photos with a capture time.

        Returns:
            List of Asset objects sorted by capture time
        """
        log_call("LocalPhotoSource", "scan", directory=str(self.directory))

        if not self.directory.is_dir():
            raise AssetSourceError(f"Složka neexistuje: {self.directory}")

        pattern = "**/*" if self.recursive else "*"
        try:
            files = sorted(
                p for p in self.directory.glob(pattern)
                if p.suffix.lower() in self.JPEG_EXTENSIONS and p.is_file()
            )
        except OSError as e:
            raise AssetSourceError(f"Nelze číst složku {self.directory}: {e}") from e

        assets = []
        for file_path in files:
            asset = self._read_photo(file_path)
            if asset is not None:
                assets.append(asset)

        assets.sort(key=lambda a: a.taken_at)

        log_result("LocalPhotoSource", "scan", f"{len(assets)} photos")
        return assets

    def _read_photo(self, path: Path) -> Optional[Asset]:
        """Read EXIF data from a photo; photos without a timestamp are skipped."""
        try:
            exif_dict = piexif.load(str(path))
        except Exception as e:
            # Nečitelné EXIF, fotku přeskočit
            log_warning(f"EXIF nelze načíst ({path.name}): {e}")
            return None

        taken_at = self._extract_timestamp(exif_dict)
        if taken_at is None:
            return None

        gps = self._extract_gps(exif_dict)
        ifd0 = exif_dict.get("0th", {})

        return Asset(
            id=str(path.relative_to(self.directory)),
            taken_at=taken_at,
            filename=path.name,
            latitude=gps[0] if gps else None,
            longitude=gps[1] if gps else None,
            make=_decode(ifd0.get(piexif.ImageIFD.Make)),
            model=_decode(ifd0.get(piexif.ImageIFD.Model)),
            web_url=path.resolve().as_uri(),
            source_type=self.source_type,
        )

    def _extract_timestamp(self, exif_dict: dict) -> Optional[datetime]:
        """Extract capture time from EXIF data.

        Uses OffsetTimeOriginal when present; otherwise the value is taken
        as local time of this machine.
        """
        exif_data = exif_dict.get("Exif", {})
        ifd0_data = exif_dict.get("0th", {})

        raw = _decode(exif_data.get(piexif.ExifIFD.DateTimeOriginal)) or _decode(
            ifd0_data.get(piexif.ImageIFD.DateTime)
        )
        if not raw:
            return None

        try:
            naive = datetime.strptime(raw, EXIF_DATETIME_FORMAT)
        except ValueError:
            return None

        offset = _decode(exif_data.get(OFFSET_TIME_ORIGINAL))
        if offset:
            try:
                return datetime.strptime(f"{raw}{offset.replace(':', '')}", EXIF_DATETIME_FORMAT + "%z")
            except ValueError:
                pass

        return naive.astimezone()

    def _extract_gps(self, exif_dict: dict) -> Optional[Tuple[float, float]]:
        """Extract GPS coordinates from EXIF data."""
        gps_data = exif_dict.get("GPS", {})

        if not gps_data:
            return None

        lat = gps_data.get(piexif.GPSIFD.GPSLatitude)
        lat_ref = _decode(gps_data.get(piexif.GPSIFD.GPSLatitudeRef))
        lon = gps_data.get(piexif.GPSIFD.GPSLongitude)
        lon_ref = _decode(gps_data.get(piexif.GPSIFD.GPSLongitudeRef))

        if not all([lat, lat_ref, lon, lon_ref]):
            return None

        try:
            latitude = self._dms_to_decimal(lat)
            longitude = self._dms_to_decimal(lon)
        except (ValueError, TypeError, ZeroDivisionError, IndexError):
            return None

        if lat_ref == "S":
            latitude = -latitude
        if lon_ref == "W":
            longitude = -longitude

        return latitude, longitude

    @staticmethod
    def _dms_to_decimal(dms: tuple) -> float:
        """Convert degrees, minutes, seconds to decimal degrees."""
        # dms is a tuple of rationals: ((degrees, 1), (minutes, 1), (seconds, denom))
        degrees = dms[0][0] / dms[0][1]
        minutes = dms[1][0] / dms[1][1]
        seconds = dms[2][0] / dms[2][1]
        return degrees + minutes / 60 + seconds / 3600
