"""Bucketing of raw samples into per-user, per-local-day paths."""

from typing import Dict, Iterable, List, Optional, Tuple

from whence.core.logger import log_call, log_info, log_result, log_warning
from whence.models.location import Sample
from whence.models.path import Path
from whence.services.timezone import try_local_date

PathKey = Tuple[str, str]  # (user_id, date)


def _sample_date(sample: Sample) -> Optional[str]:
    date = try_local_date(sample.timestamp, sample.lat, sample.lon)
    if date is None:
        log_warning(f"Bod {sample.timestamp}/{sample.device_id} nemá platné lokální datum, přeskakuji")
    return date


def compute_paths(samples: Iterable[Sample]) -> Dict[PathKey, Path]:
    """Group samples into paths keyed by (user_id, local date).

    Points within each path are sorted by timestamp (stable, so samples
    sharing a timestamp keep their input order). Samples without a valid
    local date (e.g. millisecond timestamps) are skipped.
    """
    paths: Dict[PathKey, Path] = {}

    for sample in samples:
        date = _sample_date(sample)
        if date is None:
            continue
        key = (sample.user_id, date)

        path = paths.get(key)
        if path is None:
            path = Path(user_id=sample.user_id, date=date)
            paths[key] = path
        path.add_point(sample.to_point())

    for path in paths.values():
        path.points.sort(key=lambda p: p.timestamp)

    return paths


class PathIndexer:
    """Keeps the stored paths in sync with the stored samples."""

    def __init__(self, store):
        """
        Args:
            store: Store with sample queries and path upserts
        """
        self.store = store

    def upsert_path(self, path: Path) -> None:
        self.store.upsert_path(path)

    def update_for_samples(self, samples: List[Sample]) -> int:
        """Recompute the whole path of every (user, day) the samples touch.

        All stored samples of an affected day are re-read, so delivering
        the same batch twice gives the same result.

        Returns:
            Number of paths written
        """
        if not samples:
            return 0

        log_call("PathIndexer", "update_for_samples", samples=len(samples))

        keys = set()
        for sample in samples:
            date = _sample_date(sample)
            if date is not None:
                keys.add((sample.user_id, date))

        written = 0
        for user_id, date in sorted(keys):
            day_samples = self.store.query_samples_for_user_date(user_id, date)
            path = compute_paths(day_samples).get((user_id, date))
            if path is None:
                continue
            self.store.upsert_path(path)
            written += 1

        log_result("PathIndexer", "update_for_samples", f"{written} paths")
        return written

    def rebuild_all(self) -> int:
        """Drop every stored path and recompute all of them from samples.

        Returns:
            Number of paths written
        """
        log_call("PathIndexer", "rebuild_all")

        samples = self.store.all_samples()
        paths = compute_paths(samples)
        self.store.replace_all_paths(list(paths.values()))

        log_info(f"rebuilt {len(paths)} paths from {len(samples)} samples")
        return len(paths)
