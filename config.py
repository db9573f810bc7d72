"""
Configuración de operación del tablero de habitaciones
"""
import os

from dotenv import load_dotenv

load_dotenv()


def _env_int(name: str, default: int) -> int:
    try:
        return int(os.getenv(name, default))
    except (TypeError, ValueError):
        return default


# Zona horaria del negocio (fin de semana, check-out de hotel)
HOTEL_TIMEZONE = os.getenv("HOTEL_TIMEZONE", "America/Mexico_City")

# Tolerancia de salida (motel)
TOLERANCE_MINUTES = _env_int("TOLERANCE_MINUTES", 60)
TOLERANCE_SWEEP_SECONDS = _env_int("TOLERANCE_SWEEP_SECONDS", 60)
ENABLE_TOLERANCE_SWEEP = os.getenv("ENABLE_TOLERANCE_SWEEP", "true").lower() == "true"

# Políticas por defecto cuando el tipo de habitación no las define
HOTEL_CHECKOUT_HOUR = _env_int("HOTEL_CHECKOUT_HOUR", 12)
DEFAULT_WEEKDAY_HOURS = _env_int("DEFAULT_WEEKDAY_HOURS", 12)
DEFAULT_WEEKEND_HOURS = _env_int("DEFAULT_WEEKEND_HOURS", 8)
DEFAULT_MAX_PEOPLE = _env_int("DEFAULT_MAX_PEOPLE", 2)
INCLUDED_PEOPLE = 2

# Avisos de vencimiento (minutos antes del check-out esperado)
CHECKOUT_REMINDER_MINUTES = sorted(
    (int(m) for m in os.getenv("CHECKOUT_REMINDER_MINUTES", "20,5").split(",") if m.strip()),
    reverse=True,
)

CURRENCY = os.getenv("CURRENCY", "MXN")
