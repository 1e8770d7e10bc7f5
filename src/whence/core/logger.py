"""Verbose logger pro Whence."""

from typing import Any, Optional
from rich.console import Console

# Globální instance
_console = Console()
_verbose = False
_web_mode = False


def set_verbose(enabled: bool) -> None:
    """Nastaví verbose mode."""
    global _verbose
    _verbose = enabled


def is_verbose() -> bool:
    """Vrátí, zda je verbose mode zapnutý."""
    return _verbose


def set_web_mode(enabled: bool) -> None:
    """Nastaví web mode - loguje do web bufferu."""
    global _web_mode
    _web_mode = enabled


def _web_log(level: str, message: str, data: Optional[dict] = None) -> None:
    """Zaloguje do web bufferu pokud je web mode aktivní."""
    if not _web_mode:
        return
    from whence.web.state import log_buffer
    log_buffer.add(level, message, data)


def _shorten(value: Any, limit: int) -> str:
    text = str(value)
    if len(text) > limit:
        text = text[: limit - 3] + "..."
    return text


def log_call(service: str, method: str, **kwargs: Any) -> None:
    """Zaloguje volání služby s parametry.

    Args:
        service: Název služby (např. "Geocoder")
        method: Název metody (např. "resolve")
        **kwargs: Parametry volání
    """
    params = [f"{key}={_shorten(value, 50)}" for key, value in kwargs.items() if value is not None]
    message = f"→ {service}.{method}({', '.join(params)})"

    _web_log("call", message, {"service": service, "method": method, "params": {k: str(v) for k, v in kwargs.items()}})

    if _verbose:
        _console.print(f"  [dim]{message}[/dim]")


def log_result(service: str, method: str, result: Any) -> None:
    """Zaloguje výsledek volání služby.

    Args:
        service: Název služby
        method: Název metody
        result: Výsledek volání
    """
    message = f"← {service}.{method} = {_shorten(result, 80)}"

    _web_log("result", message, {"service": service, "method": method, "result": str(result)})

    if _verbose:
        _console.print(f"  [dim]{message}[/dim]")


def log_info(message: str) -> None:
    """Zaloguje informační zprávu."""
    _web_log("info", message)

    if _verbose:
        _console.print(f"  [dim]{message}[/dim]")


def log_warning(message: str) -> None:
    """Zaloguje varovnou zprávu."""
    _web_log("warning", message)

    # Varování vždy i do konzole
    _console.print(f"  [yellow]⚠ {message}[/yellow]")


def log_error(message: str) -> None:
    """Zaloguje chybu (job selhal, zdroj nedostupný)."""
    _web_log("error", message)

    _console.print(f"  [red]✗ {message}[/red]")
