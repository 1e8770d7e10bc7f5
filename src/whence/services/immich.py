"""Client for the Immich photo server API."""

from datetime import datetime, timezone
from typing import List, Optional, Tuple

import requests

from whence.core.exceptions import AssetSourceError
from whence.core.logger import log_call, log_result
from whence.models.asset import Asset
from whence.services.timezone import parse_iso8601

DEFAULT_PAGE_SIZE = 200


def _format_rfc3339(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.isoformat(timespec="seconds")


class ImmichClient:
    """Asset source backed by an Immich server.

    Only needs an API key with the ``asset.read`` permission.
    """

    source_type = "immich"

    def __init__(self, base_url: str, api_key: str, timeout: float = 30, session: Optional[requests.Session] = None):
        """
        Args:
            base_url: Server URL, e.g. "https://photos.example.com"
            api_key: Immich API key
            timeout: HTTP timeout in seconds
            session: HTTP session (one is created when omitted)
        """
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.timeout = timeout
        self.http = session or requests.Session()

    def _headers(self) -> dict:
        return {"x-api-key": self.api_key, "Accept": "application/json"}

    def web_url(self, asset_id: str) -> str:
        """URL of the asset in the Immich web UI."""
        return f"{self.base_url}/photos/{asset_id}"

    def search_assets(
        self,
        after: Optional[datetime] = None,
        before: Optional[datetime] = None,
        page: int = 1,
        page_size: int = DEFAULT_PAGE_SIZE,
    ) -> Tuple[List[Asset], bool]:
        """Fetch one page of assets, oldest first.

        Args:
            after: Only assets taken after this time
            before: Only assets taken before this time
            page: 1-based page number
            page_size: Assets per page

        Returns:
            (assets, has_more)

        Raises:
            AssetSourceError: If the request fails or the response is invalid
        """
        log_call("ImmichClient", "search_assets", page=page, size=page_size, after=after, before=before)

        body = {
            "page": page,
            "size": page_size,
            "withExif": True,
            "order": "asc",  # stable pagination
        }
        if after is not None:
            body["takenAfter"] = _format_rfc3339(after)
        if before is not None:
            body["takenBefore"] = _format_rfc3339(before)

        try:
            response = self.http.post(
                f"{self.base_url}/api/search/metadata",
                json=body,
                headers=self._headers(),
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            raise AssetSourceError(f"search request failed: {e}") from e

        if response.status_code != 200:
            raise AssetSourceError(f"search failed with status {response.status_code}: {response.text[:200]}")

        try:
            data = response.json()
        except ValueError as e:
            raise AssetSourceError(f"failed to parse search response: {e}") from e

        assets_data = (data or {}).get("assets") or {}
        items = assets_data.get("items") or []
        assets = [asset for asset in (self._parse_asset(item) for item in items) if asset is not None]
        has_more = assets_data.get("nextPage") is not None

        log_result("ImmichClient", "search_assets", f"{len(assets)} assets, has_more={has_more}")
        return assets, has_more

    def validate_connection(self) -> None:
        """Check the server is reachable and the key can read assets.

        Raises:
            AssetSourceError: If the minimal search fails
        """
        try:
            self.search_assets(page=1, page_size=1)
        except AssetSourceError as e:
            raise AssetSourceError(f"failed to connect or API key lacks asset.read permission: {e}") from e

    def get_thumbnail(self, asset_id: str, size: str = "thumbnail") -> Tuple[bytes, str]:
        """Download a thumbnail.

        Args:
            asset_id: Immich asset id
            size: "thumbnail", "preview" or "fullsize"

        Returns:
            (image bytes, content type)

        Raises:
            AssetSourceError: If the download fails
        """
        params = {"size": size} if size and size != "thumbnail" else None
        try:
            response = self.http.get(
                f"{self.base_url}/api/assets/{asset_id}/thumbnail",
                params=params,
                headers={"x-api-key": self.api_key},
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            raise AssetSourceError(f"thumbnail request failed: {e}") from e

        if response.status_code != 200:
            raise AssetSourceError(f"thumbnail request failed with status {response.status_code}")

        return response.content, response.headers.get("Content-Type") or "image/jpeg"

    def _parse_asset(self, item: dict) -> Optional[Asset]:
        """Convert a search result item; items without any timestamp are dropped."""
        exif = item.get("exifInfo") or {}

        taken_at = parse_iso8601(exif.get("dateTimeOriginal")) or parse_iso8601(item.get("fileCreatedAt"))
        if taken_at is None:
            return None

        original_path = item.get("originalPath") or ""
        filename = item.get("originalFileName") or original_path.rsplit("/", 1)[-1]

        return Asset(
            id=item["id"],
            taken_at=taken_at,
            filename=filename,
            latitude=exif.get("latitude"),
            longitude=exif.get("longitude"),
            make=exif.get("make"),
            model=exif.get("model"),
            web_url=self.web_url(item["id"]),
            source_type=self.source_type,
        )
