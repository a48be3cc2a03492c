from __future__ import annotations

import logging
import sys


APP_LOGGER = "shiftplan"

# Chatty third-party loggers under NiceGUI; they stay at WARNING
_QUIET = ("uvicorn.access", "watchfiles", "nicegui.binding")

_HANDLER_NAME = "shiftplan-console"


def resolve_level(level: str | int) -> int:
    """Map "debug"/"INFO"/20 to a logging level. Raises ValueError."""
    if isinstance(level, int):
        return level
    numeric = logging.getLevelName(str(level).strip().upper())
    if not isinstance(numeric, int):
        raise ValueError(f"nivel de log inválido: {level!r}")
    return numeric


def configure_logging(level: str | int = "INFO") -> None:
    """Send log records to stdout.

    `level` applies to the shiftplan package; other libraries log at INFO or
    above. Calling it again replaces the console handler it installed and
    leaves any other handler alone.
    """
    try:
        app_level = resolve_level(level)
    except ValueError:
        app_level = logging.INFO
        logging.getLogger(__name__).warning("Invalid log level %r, using INFO", level)

    handler = logging.StreamHandler(sys.stdout)
    handler.set_name(_HANDLER_NAME)
    handler.setFormatter(
        logging.Formatter(
            fmt="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )
    )

    root = logging.getLogger()
    for h in list(root.handlers):
        if h.get_name() == _HANDLER_NAME:
            root.removeHandler(h)
    root.addHandler(handler)
    root.setLevel(min(app_level, logging.INFO))

    logging.getLogger(APP_LOGGER).setLevel(app_level)
    for name in _QUIET:
        logging.getLogger(name).setLevel(logging.WARNING)
