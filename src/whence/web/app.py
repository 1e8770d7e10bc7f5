"""FastAPI aplikace pro Whence API."""

from typing import Optional

from fastapi import FastAPI

from whence import __version__
from whence.core.config import Config
from whence.core.logger import log_info
from whence.services.geocoder import Geocoder
from whence.services.immich import ImmichClient
from whence.state.store import Store
from whence.web.routes import router
from whence.web.state import app_state


def create_app(
    config: Config,
    store: Optional[Store] = None,
    immich: Optional[ImmichClient] = None,
    geocode: bool = True,
) -> FastAPI:
    """Create and configure FastAPI app.

    Args:
        config: Konfigurace
        store: Úložiště (výchozí podle konfigurace)
        immich: Immich klient (výchozí podle konfigurace)
        geocode: Doplňovat názvy zastávek přes Nominatim
    """
    app = FastAPI(
        title="Whence",
        description="Historie polohy: trasy, časová osa a import z fotek",
        version=__version__,
    )

    app_state.configure(config, store=store, immich=immich)
    if geocode:
        app_state.geocoder = Geocoder(app_state.store)
        app_state.timeline.geocoder = app_state.geocoder

    if app_state.immich is not None:
        log_info(f"Immich nakonfigurován: {app_state.immich.base_url}")
    else:
        log_info("Immich není nakonfigurován (doplňte sekci immich do konfigurace)")

    app.include_router(router)

    return app
