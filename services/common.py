"""
Piezas comunes de los servicios del tablero: carga de contexto,
códigos de error y manejo uniforme de fallos del almacén.
"""

from datetime import datetime
from decimal import Decimal
from typing import Optional, Tuple

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from models.core import Room, RoomStay, RoomStatus, RoomType, StayStatus
from utils.billing import add_charge, to_money
from utils.logging_utils import log_error
from utils.timezone import as_utc, utcnow
from utils.tolerance_engine import expiry_charge

# Códigos de error (los endpoints los traducen a HTTP)
NOT_FOUND = "NOT_FOUND"
CONFLICT = "CONFLICT"
STALE_TOLERANCE = "STALE_TOLERANCE"
STORE_ERROR = "STORE_ERROR"
PAYMENT_REJECTED = "PAYMENT_REJECTED"

CONFLICT_MESSAGE = "La estancia fue modificada por otra operación. Actualice el tablero e intente de nuevo."


def ahora(now: Optional[datetime] = None) -> datetime:
    return as_utc(now) if now else utcnow()


def no_encontrado(mensaje: str):
    return False, mensaje, {"error_code": NOT_FOUND}


def fallo_store(db: Session, area: str, usuario: str, accion: str, exc: SQLAlchemyError):
    """Rollback + log + tupla de fallo. Los pasos previos de la operación se descartan."""
    db.rollback()
    if isinstance(exc, StaleDataError):
        log_error(area, usuario, accion, f"Conflicto de concurrencia: {exc}")
        return False, CONFLICT_MESSAGE, {"error_code": CONFLICT}
    log_error(area, usuario, accion, str(exc))
    return False, f"Error al {accion}: {exc}", {"error_code": STORE_ERROR}


def get_active_stay(db: Session, room_id: int) -> Optional[RoomStay]:
    return (
        db.query(RoomStay)
        .filter(RoomStay.room_id == room_id, RoomStay.status == StayStatus.ACTIVA.value)
        .first()
    )


def cargar_contexto_activo(db: Session, room_id: int) -> Tuple[Optional[Room], Optional[RoomStay], Optional[tuple]]:
    """
    Habitación ocupada + estancia activa + tipo de habitación.

    Returns:
        (room, stay, fallo): fallo es la tupla de error lista para retornar
    """
    room = db.query(Room).filter(Room.id == room_id).first()
    if not room:
        return None, None, no_encontrado(f"Habitación {room_id} no encontrada")

    if room.status != RoomStatus.OCUPADA.value:
        return room, None, (False, f"La habitación {room.number} no está ocupada (estado: {room.status})", None)

    stay = get_active_stay(db, room.id)
    if not stay:
        return room, None, no_encontrado("No se encontró una estancia activa para esta habitación")

    if not room.room_type:
        return room, stay, (False, "No se encontró el tipo de habitación", None)

    return room, stay, None


def stay_snapshot(stay: RoomStay) -> dict:
    order = stay.sales_order
    return {
        "stay_id": stay.id,
        "room_id": stay.room_id,
        "sales_order_id": stay.sales_order_id,
        "status": stay.status,
        "current_people": stay.current_people,
        "total_people": stay.total_people,
        "tolerance_started_at": stay.tolerance_started_at,
        "tolerance_type": stay.tolerance_type,
        "expected_check_out_at": stay.expected_check_out_at,
        "remaining_amount": to_money(order.remaining_amount) if order else None,
    }


def aplicar_cargo_tolerancia(db: Session, stay: RoomStay, room_type: RoomType, now: datetime) -> Optional[Decimal]:
    """
    Cobra el vencimiento de la tolerancia actual una sola vez
    (marca tolerance_charged_at). Retorna el monto cobrado o None.
    Con precio en cero no hay cargo, pero la tolerancia queda marcada como aplicada.
    """
    if stay.tolerance_charged_at is not None:
        return None
    charge = expiry_charge(stay.tolerance_type, room_type)
    if charge is None:
        stay.tolerance_charged_at = now
        return None
    add_charge(
        db, stay.sales_order, charge.concept_type, charge.amount, charge.concept,
        charge.reference_prefix, description=charge.description,
    )
    stay.tolerance_charged_at = now
    return charge.amount
