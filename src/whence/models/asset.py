"""Model for a photo asset coming from an external asset source."""

from dataclasses import dataclass
from datetime import datetime
from typing import Optional


@dataclass
class Asset:
    """A photo with optional EXIF GPS, independent of where it is stored."""

    id: str
    taken_at: datetime
    filename: str = ""
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    make: Optional[str] = None
    model: Optional[str] = None
    web_url: Optional[str] = None
    source_type: str = "immich"

    @property
    def has_gps(self) -> bool:
        return self.latitude is not None and self.longitude is not None

    @property
    def timestamp(self) -> int:
        return int(self.taken_at.timestamp())

    @property
    def device_id(self) -> str:
        """Device identifier derived from EXIF make/model.

        "Apple" + "iPhone 12" gives "Apple iPhone 12", while "Canon" +
        "Canon EOS R5" gives just "Canon EOS R5".
        """
        make = (self.make or "").strip()
        model = (self.model or "").strip()

        if not make and not model:
            return f"{self.source_type}-unknown"
        if not make:
            return model
        if not model:
            return make
        if model.lower().startswith(make.lower()):
            return model
        return f"{make} {model}"

    def source_metadata(self) -> dict:
        """Metadata stored alongside the imported sample."""
        meta = {"filename": self.filename}
        if self.web_url:
            meta["web_url"] = self.web_url
        if self.make:
            meta["make"] = self.make
        if self.model:
            meta["model"] = self.model
        return meta
