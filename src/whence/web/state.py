"""Sdílený stav web serveru: služby nad úložištěm a log buffer."""

from datetime import datetime
from typing import List, Optional
import threading
import queue

from whence.core.config import Config
from whence.services.backfill import BackfillJobManager
from whence.services.geocoder import Geocoder
from whence.services.immich import ImmichClient
from whence.services.path_indexer import PathIndexer
from whence.services.simplifier import PathSimplifier
from whence.services.timeline_builder import TimelineBuilder
from whence.state.store import Store


class LogBuffer:
    """Thread-safe log buffer pro web UI."""

    MAX_ENTRIES = 1000

    def __init__(self):
        self.entries: List[dict] = []
        self.lock = threading.Lock()
        self.subscribers: List[queue.Queue] = []

    def add(self, level: str, message: str, data: Optional[dict] = None):
        """Přidá log entry."""
        entry = {
            "timestamp": datetime.now().isoformat(),
            "level": level,
            "message": message,
            "data": data,
        }

        with self.lock:
            self.entries.append(entry)
            # Omezit velikost bufferu
            if len(self.entries) > self.MAX_ENTRIES:
                self.entries = self.entries[-self.MAX_ENTRIES:]

            for q in self.subscribers:
                try:
                    q.put_nowait(entry)
                except queue.Full:
                    pass

    def get_all(self) -> List[dict]:
        """Vrátí všechny log entries."""
        with self.lock:
            return list(self.entries)

    def clear(self):
        """Vymaže log buffer."""
        with self.lock:
            self.entries.clear()

    def subscribe(self) -> queue.Queue:
        """Vytvoří nový subscriber queue pro SSE."""
        q = queue.Queue(maxsize=100)
        with self.lock:
            self.subscribers.append(q)
        return q

    def unsubscribe(self, q: queue.Queue):
        """Odstraní subscriber queue."""
        with self.lock:
            if q in self.subscribers:
                self.subscribers.remove(q)


# Global log buffer
log_buffer = LogBuffer()


class AppState:
    """Globální stav aplikace.

    Drží úložiště a služby nad ním. Immich klient a importní manažer
    existují jen pokud je Immich nakonfigurovaný.
    """

    def __init__(self):
        self.config: Optional[Config] = None
        self.store: Optional[Store] = None
        self.indexer: Optional[PathIndexer] = None
        self.simplifier: Optional[PathSimplifier] = None
        self.timeline: Optional[TimelineBuilder] = None
        self.geocoder: Optional[Geocoder] = None
        self.immich: Optional[ImmichClient] = None
        self.manager: Optional[BackfillJobManager] = None

    @property
    def default_user(self) -> str:
        return self.config.default_user if self.config else "default"

    def configure(
        self,
        config: Config,
        store: Optional[Store] = None,
        immich: Optional[ImmichClient] = None,
        geocoder: Optional[Geocoder] = None,
    ) -> None:
        """Sestaví služby podle konfigurace.

        Args:
            config: Konfigurace
            store: Úložiště (výchozí SQLite v ``config.data_dir``)
            immich: Immich klient (výchozí podle konfigurace)
            geocoder: Geocoder pro názvy zastávek (None = bez geokódování)
        """
        self.close()

        self.config = config
        if store is None:
            config.ensure_dirs()
            store = Store(config.db_path)
        self.store = store

        self.indexer = PathIndexer(store)
        self.simplifier = PathSimplifier(store)
        self.geocoder = geocoder
        self.timeline = TimelineBuilder(store, geocoder)

        if immich is None and config.immich_configured:
            immich = ImmichClient(config.immich_url, config.immich_api_key)
        self.immich = immich
        self.manager = BackfillJobManager(store, immich, self.indexer) if immich else None

    def close(self) -> None:
        if self.store is not None:
            self.store.close()
        self.store = None


# Global app state
app_state = AppState()
