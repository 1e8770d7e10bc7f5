"""Vlastní výjimky pro Whence."""


class WhenceError(Exception):
    """Základní výjimka pro Whence."""

    pass


class ConfigError(WhenceError):
    """Chyba při načítání konfigurace."""

    pass


class TimelineParseError(WhenceError):
    """Chyba při parsování Timeline JSON."""

    pass


class AssetSourceError(WhenceError):
    """Chyba při komunikaci se zdrojem fotek (Immich, lokální složka)."""

    pass


class JobNotFoundError(WhenceError):
    """Importní job neexistuje nebo už neběží."""

    def __init__(self, job_id: str) -> None:
        self.job_id = job_id
        super().__init__(f"Job nenalezen: {job_id}")


class JobNotResumableError(WhenceError):
    """Job nelze obnovit z aktuálního stavu."""

    def __init__(self, job_id: str, status: str) -> None:
        self.job_id = job_id
        self.status = status
        super().__init__(
            f"Job {job_id} nelze obnovit ze stavu '{status}' "
            "(povoleno jen z 'interrupted' nebo 'failed')"
        )
