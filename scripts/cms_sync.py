"""
CLI: CMS -> model store (one-way sync).

Uso recomendado:
  - Ejecutar como job (systemd/supervisor) con el poll loop.
  - No se integra a un request/response para evitar timeouts.

Variables de entorno (ver cms_mirror.core.config.Settings):
  - CMS_API_URL
  - TARGET_STORE (memory | postgres) y DATABASE_URL si es postgres
  - SYNC_POLL_INTERVAL_S

Ejecución:
  python scripts/cms_sync.py                      # full sync + poll loop
  python scripts/cms_sync.py --full-only
  python scripts/cms_sync.py --changes-only       # full sync implícito + 1 change sync
  python scripts/cms_sync.py --iterations 10 --interval 5
"""

from __future__ import annotations

import argparse
import sys
from pathlib import Path

from dotenv import load_dotenv
from loguru import logger

# Permite ejecutar este script desde cualquier cwd sin instalar el paquete.
_PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(_PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(_PROJECT_ROOT))

load_dotenv(_PROJECT_ROOT / ".env", override=False)

from cms_mirror.application.use_cases.sync_use_cases import build_from_settings
from cms_mirror.core.config import get_settings
from cms_mirror.core.logging import configure_logging


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Mirror de entidades CMS -> model store")
    mode = parser.add_mutually_exclusive_group()
    mode.add_argument(
        "--full-only",
        action="store_true",
        help="Solo discovery + full sync (sin poll loop).",
    )
    mode.add_argument(
        "--changes-only",
        action="store_true",
        help="Full sync implícito y un único change sync.",
    )
    parser.add_argument(
        "--interval",
        type=float,
        default=None,
        help="Segundos entre change syncs (default: SYNC_POLL_INTERVAL_S).",
    )
    parser.add_argument(
        "--iterations",
        type=int,
        default=None,
        help="Cantidad máxima de change syncs (default: infinito).",
    )
    args = parser.parse_args(argv)

    settings = get_settings()
    configure_logging(settings.LOG_LEVEL, settings.LOG_FILE or None)

    service = build_from_settings(settings)
    logger.info(f"Iniciando CMS -> {service.store.name} sync ({settings.CMS_API_URL})...")

    try:
        if args.full_only or args.changes_only:
            full_report = service.run_full_sync()
            logger.info(full_report.summary())
            if full_report.aborted or full_report.skipped:
                return 1
            if args.full_only:
                return 0

            report = service.run_change_sync()
            logger.info(report.summary())
            return 1 if report.aborted else 0

        interval = args.interval if args.interval is not None else settings.SYNC_POLL_INTERVAL_S
        logger.info(f"Full sync y poll loop de cambios cada {interval}s")
        reports = service.run(poll_interval_s=interval, max_iterations=args.iterations)
        if reports[0].skipped:
            return 1
        return 1 if any(r.aborted for r in reports) else 0
    except KeyboardInterrupt:
        logger.info("Sync interrumpido por el usuario")
        return 0
    finally:
        service.store.close()


if __name__ == "__main__":
    raise SystemExit(main())
