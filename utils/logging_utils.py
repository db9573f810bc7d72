import logging
import os
from logging.handlers import RotatingFileHandler
from pathlib import Path

_LOGGER_NAME = "motel_pos"
_LOG_FILE = Path(os.getenv("MOTEL_LOG_FILE", "motel_pos_logs.txt"))
_LOG_LEVEL = os.getenv("MOTEL_LOG_LEVEL", "INFO").upper()


def _build_handler() -> logging.Handler:
    try:
        return RotatingFileHandler(_LOG_FILE, maxBytes=2_000_000, backupCount=5, encoding="utf-8")
    except OSError:
        # Sin permisos de escritura: se registra en consola
        return logging.StreamHandler()


def _configure_logger() -> logging.Logger:
    logger = logging.getLogger(_LOGGER_NAME)
    if not logger.handlers:
        logger.setLevel(getattr(logging, _LOG_LEVEL, logging.INFO))
        logger.propagate = False
        handler = _build_handler()
        handler.setFormatter(logging.Formatter("%(asctime)s | %(levelname)s | %(name)s | %(message)s"))
        logger.addHandler(handler)
    return logger


_logger = _configure_logger()


def _format(area: str, usuario: str, accion: str, detalle: str) -> str:
    partes = [area.upper(), f"Usuario: {usuario}", f"Accion: {accion}"]
    if detalle:
        partes.append(f"Detalle: {detalle}")
    return " | ".join(partes)


def log_event(area: str, usuario: str, accion: str, detalle: str = "") -> None:
    """Evento operativo del tablero (nivel INFO)"""
    _logger.info(_format(area, usuario, accion, detalle))


def log_error(area: str, usuario: str, accion: str, detalle: str = "") -> None:
    """Fallo de operación o del almacén (nivel ERROR)"""
    _logger.error(_format(area, usuario, accion, detalle))
