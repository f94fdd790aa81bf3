"""
Configuracion de loguru para los jobs de sincronizacion.
"""
import sys
from typing import Optional

from loguru import logger


def configure_logging(level: str = "INFO", log_file: Optional[str] = None) -> None:
    """
    Reemplaza el sink por defecto de loguru.

    Args:
        level: Nivel minimo (DEBUG, INFO, WARNING...)
        log_file: Ruta opcional de archivo con rotacion
    """
    logger.remove()
    logger.add(sys.stderr, level=level.upper())

    if log_file:
        logger.add(
            log_file,
            rotation="500 MB",
            retention="10 days",
            level=level.upper(),
        )
