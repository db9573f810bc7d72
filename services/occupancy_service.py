"""
Services para la ocupación de habitaciones
Contiene lógica de negocio para:
- Entrada y salida de personas (con tolerancia de regreso)
- Horas extra manuales
- Inicio de estancia (con cobro) y check-in rápido (sin cobro)
- Cambio de habitación y cancelación de estancia
"""

from datetime import datetime, time, timedelta
from decimal import Decimal
from typing import Any, List, Optional, Tuple

import pytz
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from config import (
    CURRENCY, DEFAULT_MAX_PEOPLE, DEFAULT_WEEKDAY_HOURS, DEFAULT_WEEKEND_HOURS,
    HOTEL_CHECKOUT_HOUR, INCLUDED_PEOPLE,
)
from models.core import Room, RoomStay, RoomType, RoomStatus, StayStatus
from models.ventas import (
    SalesOrder, SalesOrderStatus, ConceptType, PaymentConcept, PaymentMethod, PaymentStatus,
)
from services.common import (
    ahora, aplicar_cargo_tolerancia, cargar_contexto_activo, fallo_store, get_active_stay,
    no_encontrado, stay_snapshot,
)
from utils.audit import record_audit
from utils.billing import (
    add_charge, create_item, create_multi_payment, create_payment, entries_total,
    normalize_payment_entries, settlement_method, to_money, PaymentEntry,
)
from utils.logging_utils import log_event
from utils.timezone import HOTEL_TZ, as_utc, to_hotel_time
from utils.tolerance_engine import (
    is_tolerance_expired, remaining_tolerance_minutes, select_tolerance_type,
)


def calculate_expected_checkout(room_type: RoomType, start: datetime) -> datetime:
    """
    Hotel: al día siguiente a la hora de check-out configurada (hora del hotel).
    Motel: start + horas de fin de semana (viernes y sábado) o de entre semana.
    """
    start_local = to_hotel_time(start)

    if room_type.is_hotel:
        next_day = (start_local + timedelta(days=1)).date()
        checkout_local = HOTEL_TZ.localize(datetime.combine(next_day, time(HOTEL_CHECKOUT_HOUR, 0)))
        return checkout_local.astimezone(pytz.utc)

    is_weekend = start_local.weekday() in (4, 5)  # viernes, sábado
    if is_weekend:
        hours = room_type.weekend_hours or DEFAULT_WEEKEND_HOURS
    else:
        hours = room_type.weekday_hours or DEFAULT_WEEKDAY_HOURS
    return as_utc(start) + timedelta(hours=hours)


def _extra_people(room_type: RoomType, people: int) -> int:
    if room_type.is_hotel:
        return 0
    return max(0, people - INCLUDED_PEOPLE)


def calculate_stay_price(room_type: RoomType, people: int) -> Decimal:
    """base_price + personas por encima de las incluidas × extra_person_price"""
    base = to_money(room_type.base_price)
    return base + to_money(room_type.extra_person_price) * _extra_people(room_type, people)


class OccupancyService:
    """Transiciones de ocupación de una estancia activa"""

    @staticmethod
    def add_person(
        db: Session,
        room_id: int,
        usuario: str,
        now: Optional[datetime] = None,
    ) -> Tuple[bool, str, Optional[dict]]:
        """
        Entra una persona. Si hay tolerancia activa es la misma persona que regresa
        (no cuenta en el histórico); si no, es una persona nueva.

        Returns:
            (exitoso, mensaje, resultado_dict)
        """
        now = ahora(now)
        room, stay, fallo = cargar_contexto_activo(db, room_id)
        if fallo:
            return fallo

        room_type = room.room_type
        max_people = room_type.max_people or DEFAULT_MAX_PEOPLE
        current = stay.current_people or 0
        next_people = current + 1

        if next_people > max_people:
            return False, f"Límite de personas excedido: máximo {max_people} personas para {room_type.name}", None

        try:
            cargo = None
            if stay.has_tolerance():
                vencida = is_tolerance_expired(stay.tolerance_started_at, now)
                restantes = remaining_tolerance_minutes(stay.tolerance_started_at, now)
                tolerance_type = stay.tolerance_type
                if vencida:
                    cargo = aplicar_cargo_tolerancia(db, stay, room_type, now)

                stay.current_people = next_people
                stay.clear_tolerance()

                accion = "REGRESO_TOLERANCIA"
                if vencida:
                    mensaje = f"Tolerancia expirada ({tolerance_type}) - Hab. {room.number}"
                    if cargo:
                        mensaje += f": +${cargo}"
                else:
                    mensaje = f"Regreso dentro de tolerancia - Hab. {room.number} (quedaban {restantes} min)"
            else:
                previous_total = stay.total_people if stay.total_people is not None else current
                # Hotel: tarifa por noche, sin persona extra
                should_charge_extra = not room_type.is_hotel and (
                    next_people > INCLUDED_PEOPLE or previous_total >= INCLUDED_PEOPLE
                )

                stay.current_people = next_people
                stay.total_people = previous_total + 1

                accion = "ADD_PERSON"
                mensaje = f"Persona agregada - Hab. {room.number}: {next_people} personas"
                if should_charge_extra:
                    extra_price = to_money(room_type.extra_person_price)
                    if extra_price > 0:
                        add_charge(
                            db, stay.sales_order, ConceptType.EXTRA_PERSON.value, extra_price,
                            PaymentConcept.PERSONA_EXTRA.value, "PEX", description="Persona extra",
                        )
                        cargo = extra_price
                        mensaje = (
                            f"Persona extra registrada - Hab. {room.number}: {next_people} personas "
                            f"(histórico: {stay.total_people}). +${extra_price}"
                        )
                    else:
                        mensaje += " (no se configuró precio de persona extra)"

            record_audit(
                db, "room_stay", stay.id, accion, usuario,
                descripcion=mensaje,
                payload={"current_people": stay.current_people, "total_people": stay.total_people, "cargo": cargo},
            )
            db.commit()
        except SQLAlchemyError as e:
            return fallo_store(db, "occupancy", usuario, "agregar persona", e)

        log_event("occupancy", usuario, "Agregar persona", f"room_id={room.id}, stay_id={stay.id}, cargo={cargo}")
        resultado = stay_snapshot(stay)
        resultado["charged_amount"] = cargo
        return True, mensaje, resultado

    @staticmethod
    def remove_person(db: Session, room_id: int, usuario: str) -> Tuple[bool, str, Optional[dict]]:
        """Una persona se va definitivamente. El histórico no cambia."""
        room, stay, fallo = cargar_contexto_activo(db, room_id)
        if fallo:
            return fallo

        current = stay.current_people or 0
        if current <= 1:
            return False, "Debe haber al menos 1 persona en la habitación. Use check-out si no queda nadie.", None

        try:
            stay.current_people = current - 1
            record_audit(
                db, "room_stay", stay.id, "REMOVE_PERSON", usuario,
                descripcion=f"Persona removida - Hab. {room.number}",
                payload={"current_people": stay.current_people},
            )
            db.commit()
        except SQLAlchemyError as e:
            return fallo_store(db, "occupancy", usuario, "remover persona", e)

        log_event("occupancy", usuario, "Remover persona", f"room_id={room.id}, current_people={stay.current_people}")
        return True, f"Persona removida - Hab. {room.number}: {stay.current_people} personas", stay_snapshot(stay)

    @staticmethod
    def person_left_returning(
        db: Session,
        room_id: int,
        usuario: str,
        now: Optional[datetime] = None,
    ) -> Tuple[bool, str, Optional[dict]]:
        """
        Botón de tolerancia (solo motel):
        - sin tolerancia: sale una persona que va a regresar, inicia la ventana
        - con tolerancia: la persona regresó, se cancela la ventana
        """
        now = ahora(now)
        room, stay, fallo = cargar_contexto_activo(db, room_id)
        if fallo:
            return fallo

        room_type = room.room_type
        if room_type.is_hotel:
            return False, "Esta función no aplica para habitaciones de hotel", None

        current = stay.current_people or 0
        cargo = None

        try:
            if stay.has_tolerance():
                if is_tolerance_expired(stay.tolerance_started_at, now):
                    cargo = aplicar_cargo_tolerancia(db, stay, room_type, now)
                stay.current_people = current + 1
                stay.clear_tolerance()
                accion = "TOLERANCE_CANCEL"
                mensaje = f"Tolerancia cancelada - Hab. {room.number}: {stay.current_people} personas"
                if cargo:
                    mensaje += f" (tolerancia expirada: +${cargo})"
            else:
                if current <= 0:
                    return False, "No hay personas en la habitación", None
                new_current = current - 1
                stay.current_people = new_current
                stay.tolerance_type = select_tolerance_type(new_current)
                stay.tolerance_started_at = now
                stay.tolerance_charged_at = None
                accion = "TOLERANCE_START"
                if new_current == 0:
                    mensaje = (
                        f"Tolerancia iniciada - Habitación vacía. Hab. {room.number}: "
                        "1 hora para regresar, después se cobra habitación completa."
                    )
                else:
                    mensaje = (
                        f"Tolerancia iniciada - Persona salió. Hab. {room.number}: "
                        "1 hora para regresar, después se cobra persona extra."
                    )

            record_audit(
                db, "room_stay", stay.id, accion, usuario,
                descripcion=mensaje,
                payload={
                    "current_people": stay.current_people,
                    "tolerance_type": stay.tolerance_type,
                    "tolerance_started_at": stay.tolerance_started_at,
                    "cargo": cargo,
                },
            )
            db.commit()
        except SQLAlchemyError as e:
            return fallo_store(db, "occupancy", usuario, "actualizar tolerancia", e)

        log_event("occupancy", usuario, accion, f"room_id={room.id}, stay_id={stay.id}")
        resultado = stay_snapshot(stay)
        resultado["charged_amount"] = cargo
        return True, mensaje, resultado

    @staticmethod
    def add_extra_hour(db: Session, room_id: int, usuario: str) -> Tuple[bool, str, Optional[dict]]:
        """Cargo manual de una hora extra. No mueve el check-out esperado."""
        room, stay, fallo = cargar_contexto_activo(db, room_id)
        if fallo:
            return fallo

        extra_hour_price = to_money(room.room_type.extra_hour_price)
        if extra_hour_price <= 0:
            return False, "No se configuró el precio de hora extra para este tipo", None

        try:
            add_charge(
                db, stay.sales_order, ConceptType.EXTRA_HOUR.value, extra_hour_price,
                PaymentConcept.HORA_EXTRA.value, "HEX", description="Hora extra",
            )
            record_audit(
                db, "room_stay", stay.id, "EXTRA_HOUR", usuario,
                descripcion=f"Hora extra - Hab. {room.number}",
                payload={"monto": extra_hour_price},
            )
            db.commit()
        except SQLAlchemyError as e:
            return fallo_store(db, "occupancy", usuario, "agregar hora extra", e)

        log_event("occupancy", usuario, "Hora extra", f"room_id={room.id}, monto=${extra_hour_price}")
        resultado = stay_snapshot(stay)
        resultado["charged_amount"] = extra_hour_price
        return True, f"Hora extra agregada - Hab. {room.number}: +${extra_hour_price}", resultado

    @staticmethod
    def _validar_inicio(db: Session, room_id: int, people: int) -> Tuple[Optional[Room], Optional[tuple]]:
        room = db.query(Room).filter(Room.id == room_id).first()
        if not room:
            return None, no_encontrado(f"Habitación {room_id} no encontrada")
        if not room.room_type:
            return room, (False, "No se encontró el tipo de habitación", None)
        if room.status != RoomStatus.LIBRE.value:
            return room, (False, f"La habitación {room.number} no está libre (estado: {room.status})", None)
        if get_active_stay(db, room.id):
            return room, (False, f"La habitación {room.number} ya tiene una estancia activa", None)

        max_people = room.room_type.max_people or DEFAULT_MAX_PEOPLE
        if people < 1:
            return room, (False, "Debe haber al menos 1 persona", None)
        if people > max_people:
            return room, (False, f"Límite de personas excedido: máximo {max_people} personas para {room.room_type.name}", None)
        return room, None

    @staticmethod
    def _crear_estancia(
        db: Session,
        room: Room,
        people: int,
        entries: List[PaymentEntry],
        vehicle: Optional[Any],
        check_in_at: datetime,
        now: datetime,
    ) -> RoomStay:
        room_type = room.room_type
        base = to_money(room_type.base_price)
        extra = to_money(room_type.extra_person_price)
        extras = _extra_people(room_type, people)
        total = calculate_stay_price(room_type, people)
        paid = entries_total(entries)
        remaining = total - paid if total > paid else Decimal("0")
        method = settlement_method(entries)

        order = SalesOrder(
            subtotal=total,
            tax=Decimal("0"),
            total=total,
            paid_amount=paid,
            remaining_amount=remaining,
            status=SalesOrderStatus.OPEN.value,
            payment_method=method,
            currency=CURRENCY,
            notes=f"Estancia {room_type.name} Hab. {room.number}",
        )
        db.add(order)

        # Cada partida queda pagada si el pago acumulado la cubre
        partidas = [(ConceptType.ROOM_BASE.value, base, f"Estancia {room_type.name}")]
        if extra > 0:
            partidas += [(ConceptType.EXTRA_PERSON.value, extra, "Persona extra")] * extras
        acumulado = Decimal("0")
        for concept_type, price, descripcion in partidas:
            acumulado += price
            create_item(
                db, order, concept_type, price, description=descripcion,
                is_paid=acumulado <= paid, payment_method=method, paid_at=now,
            )

        if entries:
            create_multi_payment(db, order, entries, PaymentConcept.ESTANCIA.value, prefix="EST")
        if remaining > 0:
            create_payment(
                db, order, remaining, PaymentMethod.PENDIENTE.value, PaymentConcept.ESTANCIA.value,
                status=PaymentStatus.PENDIENTE.value, prefix="EST",
            )

        stay = RoomStay(
            room=room,
            sales_order=order,
            status=StayStatus.ACTIVA.value,
            check_in_at=check_in_at,
            expected_check_out_at=calculate_expected_checkout(room_type, check_in_at),
            current_people=people,
            total_people=people,
            vehicle_plate=getattr(vehicle, "plate", None) if vehicle else None,
            vehicle_brand=getattr(vehicle, "brand", None) if vehicle else None,
            vehicle_model=getattr(vehicle, "model", None) if vehicle else None,
        )
        db.add(stay)
        room.status = RoomStatus.OCUPADA.value
        return stay

    @staticmethod
    def start_stay(
        db: Session,
        room_id: int,
        people: int,
        payments: Optional[List[Any]],
        usuario: str,
        vehicle: Optional[Any] = None,
        now: Optional[datetime] = None,
    ) -> Tuple[bool, str, Optional[dict]]:
        """
        Inicia la ocupación cobrando al entrar.
        Un método: un pago COMPLETO; varios: sobre MIXTO + sub-pagos PARCIAL.
        """
        now = ahora(now)
        room, fallo = OccupancyService._validar_inicio(db, room_id, people)
        if fallo:
            return fallo

        entries = normalize_payment_entries(payments)
        total = calculate_stay_price(room.room_type, people)
        paid = entries_total(entries)
        if paid > total:
            return False, f"El pago (${paid}) excede el total de la estancia (${total})", None

        try:
            stay = OccupancyService._crear_estancia(db, room, people, entries, vehicle, now, now)
            db.flush()
            record_audit(
                db, "room_stay", stay.id, "START_STAY", usuario,
                descripcion=f"Estancia iniciada - Hab. {room.number}",
                payload={"people": people, "total": total, "pagado": paid},
            )
            db.commit()
        except SQLAlchemyError as e:
            return fallo_store(db, "occupancy", usuario, "iniciar estancia", e)

        log_event("occupancy", usuario, "Iniciar estancia", f"room_id={room.id}, stay_id={stay.id}, total=${total}, pagado=${paid}")
        return True, f"Estancia iniciada - Hab. {room.number}", stay_snapshot(stay)

    @staticmethod
    def quick_checkin(
        db: Session,
        room_id: int,
        people: int,
        usuario: str,
        vehicle: Optional[Any] = None,
        actual_entry_time: Optional[datetime] = None,
        now: Optional[datetime] = None,
    ) -> Tuple[bool, str, Optional[dict]]:
        """
        Entrada rápida sin cobro: todo queda PENDIENTE.
        Permite registrar la hora real de llegada (anterior a ahora).
        """
        now = ahora(now)
        check_in_at = as_utc(actual_entry_time) if actual_entry_time else now
        if check_in_at > now:
            return False, "La hora de entrada no puede ser futura", None

        room, fallo = OccupancyService._validar_inicio(db, room_id, people)
        if fallo:
            return fallo

        try:
            stay = OccupancyService._crear_estancia(db, room, people, [], vehicle, check_in_at, now)
            db.flush()
            record_audit(
                db, "room_stay", stay.id, "QUICK_CHECKIN", usuario,
                descripcion=f"Entrada rápida - Hab. {room.number}",
                payload={"people": people, "check_in_at": check_in_at},
            )
            db.commit()
        except SQLAlchemyError as e:
            return fallo_store(db, "occupancy", usuario, "registrar entrada rápida", e)

        log_event("occupancy", usuario, "Entrada rápida", f"room_id={room.id}, stay_id={stay.id}")
        return True, f"Entrada registrada - Hab. {room.number} (pago pendiente)", stay_snapshot(stay)

    @staticmethod
    def cancel_stay(
        db: Session,
        stay_id: int,
        reason: str,
        usuario: str,
        refund: Optional[Any] = None,
        now: Optional[datetime] = None,
    ) -> Tuple[bool, str, Optional[dict]]:
        """
        Cancelación administrativa. El reembolso solo queda anotado:
        los pagos ya liquidados no se revierten.
        """
        now = ahora(now)
        if not reason or not reason.strip():
            return False, "Debe indicar el motivo de la cancelación", None

        stay = db.query(RoomStay).filter(RoomStay.id == stay_id).first()
        if not stay:
            return no_encontrado(f"Estancia {stay_id} no encontrada")
        if not stay.is_active():
            return False, f"La estancia no está activa (estado: {stay.status})", None

        nota_reembolso = None
        if refund is not None:
            monto = to_money(getattr(refund, "amount", None))
            metodo = getattr(refund, "method", None)
            metodo = getattr(metodo, "value", metodo)
            nota_reembolso = f"Reembolso: ${monto} ({metodo or 'N/A'})"
            notas = getattr(refund, "notes", None)
            if notas:
                nota_reembolso += f" - {notas}"

        try:
            room = stay.room
            order = stay.sales_order

            stay.status = StayStatus.CANCELADA.value
            stay.cancel_reason = reason.strip()
            stay.actual_check_out_at = now
            stay.clear_tolerance()
            if nota_reembolso:
                stay.notes = "\n".join(filter(None, [stay.notes, nota_reembolso]))

            room.status = RoomStatus.SUCIA.value

            order.status = SalesOrderStatus.CANCELLED.value
            order.notes = "\n".join(filter(None, [order.notes, f"Cancelada: {reason.strip()}", nota_reembolso]))
            for payment in order.payments:
                if payment.status == PaymentStatus.PENDIENTE.value:
                    payment.status = PaymentStatus.CANCELADO.value

            record_audit(
                db, "room_stay", stay.id, "CANCEL_STAY", usuario,
                descripcion=f"Estancia cancelada - Hab. {room.number}",
                payload={"motivo": reason, "reembolso": nota_reembolso},
            )
            db.commit()
        except SQLAlchemyError as e:
            return fallo_store(db, "occupancy", usuario, "cancelar estancia", e)

        log_event("occupancy", usuario, "Cancelar estancia", f"stay_id={stay.id}, motivo={reason}")
        return True, f"Estancia cancelada - Hab. {room.number} → SUCIA", stay_snapshot(stay)

    @staticmethod
    def change_room(
        db: Session,
        stay_id: int,
        new_room_id: int,
        keep_time: bool,
        usuario: str,
        reason: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> Tuple[bool, str, Optional[dict]]:
        """Mueve una estancia activa a otra habitación conservando la orden"""
        now = ahora(now)
        stay = db.query(RoomStay).filter(RoomStay.id == stay_id).first()
        if not stay:
            return no_encontrado(f"Estancia {stay_id} no encontrada")
        if not stay.is_active():
            return False, f"La estancia no está activa (estado: {stay.status})", None

        new_room = db.query(Room).filter(Room.id == new_room_id).first()
        if not new_room:
            return no_encontrado(f"Habitación {new_room_id} no encontrada")
        if new_room.id == stay.room_id:
            return False, "La habitación destino es la misma que la actual", None
        if new_room.status != RoomStatus.LIBRE.value:
            return False, f"La habitación {new_room.number} no está libre (estado: {new_room.status})", None
        if get_active_stay(db, new_room.id):
            return False, f"La habitación {new_room.number} ya tiene una estancia activa", None
        if not keep_time and not new_room.room_type:
            return False, "No se encontró el tipo de la habitación destino", None

        try:
            old_room = stay.room
            stay.room = new_room
            if not keep_time:
                stay.expected_check_out_at = calculate_expected_checkout(new_room.room_type, now)

            old_room.status = RoomStatus.SUCIA.value
            new_room.status = RoomStatus.OCUPADA.value

            record_audit(
                db, "room_stay", stay.id, "ROOM_MOVE", usuario,
                descripcion=f"Cambio de habitación {old_room.number} → {new_room.number}",
                payload={
                    "habitacion_anterior": old_room.id,
                    "habitacion_nueva": new_room.id,
                    "mantener_tiempo": keep_time,
                    "razon": reason,
                },
            )
            db.commit()
        except SQLAlchemyError as e:
            return fallo_store(db, "occupancy", usuario, "cambiar habitación", e)

        log_event("room_move", usuario, "Cambiar habitación", f"stay_id={stay.id}, {old_room.number} -> {new_room.number}")
        return True, f"Estancia movida de Hab. {old_room.number} a Hab. {new_room.number}", stay_snapshot(stay)

    @staticmethod
    def update_room_status(
        db: Session,
        room_id: int,
        new_status: str,
        usuario: str,
    ) -> Tuple[bool, str, Optional[dict]]:
        """Cambio manual de estado (limpia, sucia, bloqueada) de una habitación sin estancia"""
        new_status = getattr(new_status, "value", new_status)
        if new_status not in {s.value for s in RoomStatus}:
            return False, f"Estado de habitación inválido: {new_status}", None
        if new_status == RoomStatus.OCUPADA.value:
            return False, "Para ocupar una habitación inicie una estancia", None

        room = db.query(Room).filter(Room.id == room_id).first()
        if not room:
            return no_encontrado(f"Habitación {room_id} no encontrada")
        if get_active_stay(db, room.id):
            return False, f"La habitación {room.number} tiene una estancia activa", None

        anterior = room.status
        try:
            room.status = new_status
            record_audit(
                db, "room", room.id, "STATUS_CHANGE", usuario,
                descripcion=f"Hab. {room.number}: {anterior} → {new_status}",
                payload={"anterior": anterior, "nuevo": new_status},
            )
            db.commit()
        except SQLAlchemyError as e:
            return fallo_store(db, "rooms", usuario, "actualizar estado de habitación", e)

        log_event("rooms", usuario, "Cambiar estado", f"room_id={room.id}, {anterior} -> {new_status}")
        return True, f"Hab. {room.number} → {new_status}", {"room_id": room.id, "status": room.status}
