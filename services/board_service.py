"""
Services del tablero de habitaciones
- Estado de todas las habitaciones para el tablero
- Barrido periódico de tolerancias vencidas
- Avisos de check-out próximo
"""

import math
from datetime import datetime, timedelta
from typing import List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, joinedload

from config import CHECKOUT_REMINDER_MINUTES
from models.core import Room, RoomStay, StayStatus
from services.common import ahora, aplicar_cargo_tolerancia
from utils.audit import record_audit
from utils.billing import to_money
from utils.logging_utils import log_error, log_event
from utils.timezone import as_utc
from utils.tolerance_engine import is_tolerance_expired, remaining_tolerance_minutes


def _minutes_until(target: Optional[datetime], now: datetime) -> Optional[int]:
    if target is None:
        return None
    return math.floor((as_utc(target) - now) / timedelta(minutes=1))


class BoardService:

    @staticmethod
    def list_rooms(db: Session, now: Optional[datetime] = None) -> List[dict]:
        """Habitaciones ordenadas por número con su estancia activa (si hay)"""
        now = ahora(now)
        rooms = (
            db.query(Room)
            .options(joinedload(Room.room_type))
            .order_by(Room.number)
            .all()
        )

        tablero = []
        for room in rooms:
            stay = room.get_active_stay()
            room_type = room.room_type
            entrada = {
                "id": room.id,
                "number": room.number,
                "status": room.status,
                "room_type": {
                    "id": room_type.id,
                    "name": room_type.name,
                    "is_hotel": room_type.is_hotel,
                    "max_people": room_type.max_people,
                } if room_type else None,
                "active_stay": None,
            }
            if stay:
                order = stay.sales_order
                tolerancia_activa = stay.has_tolerance()
                entrada["active_stay"] = {
                    "id": stay.id,
                    "sales_order_id": stay.sales_order_id,
                    "check_in_at": stay.check_in_at,
                    "expected_check_out_at": stay.expected_check_out_at,
                    "current_people": stay.current_people,
                    "total_people": stay.total_people,
                    "tolerance_type": stay.tolerance_type,
                    "tolerance_started_at": stay.tolerance_started_at,
                    "tolerance_expired": is_tolerance_expired(stay.tolerance_started_at, now),
                    "tolerance_remaining_minutes": (
                        remaining_tolerance_minutes(stay.tolerance_started_at, now) if tolerancia_activa else None
                    ),
                    "tolerance_charged": stay.tolerance_charged_at is not None,
                    "minutes_to_checkout": _minutes_until(stay.expected_check_out_at, now),
                    "remaining_amount": to_money(order.remaining_amount) if order else None,
                    "vehicle_plate": stay.vehicle_plate,
                }
            tablero.append(entrada)
        return tablero

    @staticmethod
    def sweep_tolerances(db: Session, usuario: str = "sistema", now: Optional[datetime] = None) -> List[dict]:
        """
        Cobra las tolerancias vencidas que aún no se cobraron.
        Cada estancia se confirma por separado: un fallo se registra y el barrido continúa.
        """
        now = ahora(now)
        stays = (
            db.query(RoomStay)
            .filter(
                RoomStay.status == StayStatus.ACTIVA.value,
                RoomStay.tolerance_started_at.isnot(None),
                RoomStay.tolerance_charged_at.is_(None),
            )
            .order_by(RoomStay.id)
            .all()
        )
        stay_ids = [s.id for s in stays if is_tolerance_expired(s.tolerance_started_at, now)]

        cobrados = []
        for stay_id in stay_ids:
            try:
                stay = db.query(RoomStay).filter(RoomStay.id == stay_id).first()
                # Pudo cambiar entre la consulta y el cobro
                if not stay or not stay.is_active() or stay.tolerance_charged_at is not None:
                    continue
                if not is_tolerance_expired(stay.tolerance_started_at, now):
                    continue

                room = stay.room
                monto = aplicar_cargo_tolerancia(db, stay, room.room_type, now)
                record_audit(
                    db, "room_stay", stay.id, "TOLERANCE_EXPIRED", usuario,
                    descripcion=f"Tolerancia expirada ({stay.tolerance_type}) - Hab. {room.number}",
                    payload={"cargo": monto, "tolerance_type": stay.tolerance_type},
                )
                db.commit()
            except SQLAlchemyError as e:
                db.rollback()
                log_error("tolerance_sweep", usuario, "Cobrar tolerancia", f"stay_id={stay_id}: {e}")
                continue

            log_event("tolerance_sweep", usuario, "Tolerancia expirada", f"stay_id={stay_id}, room={room.number}, cargo=${monto}")
            cobrados.append({
                "stay_id": stay_id,
                "room_id": room.id,
                "room_number": room.number,
                "tolerance_type": stay.tolerance_type,
                "charged_amount": monto,
            })
        return cobrados

    @staticmethod
    def checkout_reminders(db: Session, now: Optional[datetime] = None) -> List[dict]:
        """
        Estancias activas cuyo check-out esperado cae dentro de algún umbral de aviso
        (por defecto 20 y 5 minutos). Se reporta el umbral más cercano alcanzado.
        """
        now = ahora(now)
        if not CHECKOUT_REMINDER_MINUTES:
            return []
        horizonte = now + timedelta(minutes=max(CHECKOUT_REMINDER_MINUTES))
        stays = (
            db.query(RoomStay)
            .filter(
                RoomStay.status == StayStatus.ACTIVA.value,
                RoomStay.expected_check_out_at.isnot(None),
                RoomStay.expected_check_out_at <= horizonte,
            )
            .order_by(RoomStay.expected_check_out_at)
            .all()
        )

        avisos = []
        for stay in stays:
            minutos = _minutes_until(stay.expected_check_out_at, now)
            if minutos is None or minutos < 0:
                continue
            umbral = min((m for m in CHECKOUT_REMINDER_MINUTES if minutos <= m), default=None)
            if umbral is None:
                continue
            avisos.append({
                "stay_id": stay.id,
                "room_id": stay.room_id,
                "room_number": stay.room.number,
                "expected_check_out_at": stay.expected_check_out_at,
                "minutes_left": minutos,
                "threshold": umbral,
            })
        return avisos
