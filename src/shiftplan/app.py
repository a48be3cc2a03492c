from __future__ import annotations

import argparse
import logging

from nicegui import ui

from shiftplan.data.db import Db
from shiftplan.data.repository import Repository
from shiftplan.logging_conf import configure_logging
from shiftplan.settings import Settings, default_db_path
from shiftplan.ui.pages import register_pages


logger = logging.getLogger(__name__)


def build_arg_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Cola de Producción")
    parser.add_argument("--host", type=str, default="0.0.0.0")
    parser.add_argument("--port", type=int, default=8080)
    parser.add_argument("--planta", type=str, default="Cola de Producción", help="Nombre de la planta")
    parser.add_argument("--log-level", type=str, default="INFO")
    return parser


def main() -> None:
    args = build_arg_parser().parse_args()
    settings = Settings(
        db_path=default_db_path(),
        host=args.host,
        port=args.port,
        planta=args.planta,
        log_level=args.log_level,
    )
    configure_logging(settings.log_level)

    db = Db(settings.db_path)
    db.ensure_schema()

    repo = Repository(db)
    # Refresh the stored schedule in case config changed between runs
    repo.reschedule()
    register_pages(repo, title=settings.planta)

    logger.info("Starting %s on %s:%s (db=%s)", settings.planta, settings.host, settings.port, settings.db_path)
    ui.run(host=settings.host, port=settings.port, title=settings.planta, reload=False)


if __name__ in {"__main__", "__mp_main__"}:
    main()
