import math
from datetime import datetime, timedelta
from decimal import Decimal
from typing import NamedTuple, Optional

from config import TOLERANCE_MINUTES
from models.core import RoomType, ToleranceType
from models.ventas import ConceptType, PaymentConcept
from utils.timezone import as_utc, utcnow

TOLERANCE_WINDOW = timedelta(minutes=TOLERANCE_MINUTES)


class ToleranceCharge(NamedTuple):
    """Cargo a aplicar cuando vence una tolerancia"""
    amount: Decimal
    concept_type: str
    concept: str
    reference_prefix: str
    description: str


def is_tolerance_expired(started_at: Optional[datetime], now: Optional[datetime] = None) -> bool:
    """
    True si pasó la ventana completa desde started_at.
    Sin tolerancia activa (None) nunca está vencida.
    """
    if started_at is None:
        return False
    now = as_utc(now) if now else utcnow()
    return now - as_utc(started_at) >= TOLERANCE_WINDOW


def remaining_tolerance_minutes(started_at: Optional[datetime], now: Optional[datetime] = None) -> int:
    """
    Minutos que quedan de tolerancia, redondeados hacia arriba y nunca negativos.
    Sin tolerancia activa retorna la ventana completa (solo para mostrar);
    el llamador debe verificar antes que haya tolerancia.
    """
    if started_at is None:
        return TOLERANCE_MINUTES
    now = as_utc(now) if now else utcnow()
    remaining = TOLERANCE_WINDOW - (now - as_utc(started_at))
    if remaining <= timedelta(0):
        return 0
    return math.ceil(remaining / timedelta(minutes=1))


def select_tolerance_type(new_current_people: int) -> str:
    """ROOM_EMPTY si salió el último ocupante, PERSON_LEFT en otro caso"""
    if new_current_people <= 0:
        return ToleranceType.ROOM_EMPTY.value
    return ToleranceType.PERSON_LEFT.value


def expiry_charge(tolerance_type: Optional[str], room_type: Optional[RoomType]) -> Optional[ToleranceCharge]:
    """
    Cargo por tolerancia vencida:
    - ROOM_EMPTY: la habitación completa (base_price)
    - PERSON_LEFT: una persona extra (extra_person_price)
    Retorna None si el precio configurado es cero o no existe.
    """
    if room_type is None:
        return None

    if tolerance_type == ToleranceType.ROOM_EMPTY.value:
        price = Decimal(str(room_type.base_price or 0))
        if price <= 0:
            return None
        return ToleranceCharge(
            amount=price,
            concept_type=ConceptType.TOLERANCE_EXPIRED.value,
            concept=PaymentConcept.TOLERANCIA_EXPIRADA.value,
            reference_prefix="TOL",
            description="Tolerancia expirada - habitación vacía",
        )

    if tolerance_type == ToleranceType.PERSON_LEFT.value:
        price = Decimal(str(room_type.extra_person_price or 0))
        if price <= 0:
            return None
        return ToleranceCharge(
            amount=price,
            concept_type=ConceptType.EXTRA_PERSON.value,
            concept=PaymentConcept.PERSONA_EXTRA.value,
            reference_prefix="PEX",
            description="Tolerancia expirada - persona extra",
        )

    return None
