"""
Services para el check-out de estancias
Contiene lógica de negocio para:
- Preparación del check-out (cobro automático de horas de retraso)
- Liquidación con conciliación de pagos pendientes
- Pago granular por partidas (con descuento por partida)
- Cierre de estancia
"""

import math
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Any, Dict, List, Optional, Set, Tuple

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from models.core import Room, RoomStay, RoomStatus, StayStatus
from models.ventas import (
    SalesOrder, SalesOrderItem, Payment,
    SalesOrderStatus, ConceptType, PaymentConcept, PaymentMethod, PaymentStatus, PaymentType,
)
from services.common import (
    PAYMENT_REJECTED, STALE_TOLERANCE,
    ahora, aplicar_cargo_tolerancia, cargar_contexto_activo, fallo_store,
)
from services.ledger_gateway import LedgerGateway, default_gateway
from utils.audit import record_audit
from utils.billing import (
    PaymentEntry, create_multi_payment, create_payment, entries_total, normalize_payment_entries,
    recompute_remaining_from_items, settlement_method, split_proportionally, to_money,
    update_sales_order_totals,
)
from utils.logging_utils import log_event
from utils.timezone import as_utc
from utils.tolerance_engine import is_tolerance_expired

# Partidas que se liquidan al cerrar la estancia
SETTLED_CONCEPT_TYPES = (
    ConceptType.ROOM_BASE.value,
    ConceptType.EXTRA_PERSON.value,
    ConceptType.EXTRA_HOUR.value,
    ConceptType.TOLERANCE_EXPIRED.value,
)

CONCEPT_BY_ITEM_TYPE = {
    ConceptType.ROOM_BASE.value: PaymentConcept.ESTANCIA.value,
    ConceptType.EXTRA_HOUR.value: PaymentConcept.HORA_EXTRA.value,
    ConceptType.EXTRA_PERSON.value: PaymentConcept.PERSONA_EXTRA.value,
    ConceptType.CONSUMPTION.value: PaymentConcept.CONSUMO.value,
    ConceptType.PRODUCT.value: PaymentConcept.CONSUMO.value,
    ConceptType.TOLERANCE_EXPIRED.value: PaymentConcept.TOLERANCIA_EXPIRADA.value,
}


def calculate_overage_hours(expected_check_out_at: Optional[datetime], now: datetime) -> int:
    """Horas de retraso sobre el check-out esperado, redondeadas hacia arriba"""
    if expected_check_out_at is None:
        return 0
    overage = as_utc(now) - as_utc(expected_check_out_at)
    if overage <= timedelta(0):
        return 0
    return math.ceil(overage / timedelta(hours=1))


def _field(value: Any, key: str):
    if value is None:
        return None
    if isinstance(value, dict):
        return value.get(key)
    return getattr(value, key, None)


def _aplicar_metodo(db: Session, order: SalesOrder, payment: Payment, entries: List[PaymentEntry]):
    """
    Liquida un pago PENDIENTE con los métodos entregados.
    Con varios métodos el pago pasa a MIXTO y se desglosa en sub-pagos PARCIAL.
    """
    payment.status = PaymentStatus.PAGADO.value
    if len(entries) == 1:
        entry = entries[0]
        payment.payment_method = entry.method
        if entry.method == PaymentMethod.TARJETA.value:
            payment.terminal_code = entry.terminal
        return

    payment.payment_method = PaymentMethod.MIXTO.value
    for entry, share in split_proportionally(payment.amount, entries):
        if share <= 0:
            continue
        create_payment(
            db, order, share, entry.method, payment.concept,
            payment_type=PaymentType.PARCIAL.value,
            parent=payment,
            prefix="SUB",
            terminal=entry.terminal,
        )


def _conciliar_pendientes(
    db: Session,
    order: SalesOrder,
    entries: List[PaymentEntry],
    concepts: Optional[Set[str]] = None,
) -> Tuple[List[Payment], Decimal]:
    """
    Aplica lo entregado contra los pagos PENDIENTE de la orden, del más antiguo al más nuevo.
    Se detiene en el primer pendiente que no alcanza a cubrirse completo.

    Returns:
        (pagos_conciliados, monto_sobrante)
    """
    disponible = entries_total(entries)
    if disponible <= 0:
        return [], Decimal("0")

    db.flush()
    query = db.query(Payment).filter(
        Payment.sales_order_id == order.id,
        Payment.parent_payment_id.is_(None),
        Payment.status == PaymentStatus.PENDIENTE.value,
    )
    if concepts:
        query = query.filter(Payment.concept.in_(concepts))
    pendientes = query.order_by(Payment.created_at.asc(), Payment.id.asc()).all()

    conciliados = []
    for pendiente in pendientes:
        monto = to_money(pendiente.amount)
        if monto > disponible:
            break
        _aplicar_metodo(db, order, pendiente, entries)
        conciliados.append(pendiente)
        disponible -= monto

    return conciliados, disponible


def _registrar_sobrante(
    db: Session,
    order: SalesOrder,
    entries: List[PaymentEntry],
    sobrante: Decimal,
    concept: str,
    prefix: str,
) -> Optional[Payment]:
    """El sobrante de la conciliación se registra como un pago nuevo (simple o mixto)"""
    if sobrante <= 0:
        return None
    if len(entries) == 1:
        porciones = [entries[0]._replace(amount=sobrante)]
    else:
        porciones = [
            entry._replace(amount=share)
            for entry, share in split_proportionally(sobrante, entries)
            if share > 0
        ]
    return create_multi_payment(db, order, porciones, concept, prefix=prefix)


class CheckoutService:
    """Check-out en dos fases: preparar y liquidar"""

    @staticmethod
    def prepare_checkout(
        db: Session,
        room_id: int,
        usuario: str,
        now: Optional[datetime] = None,
    ) -> Tuple[bool, str, Optional[dict]]:
        """
        Prepara el check-out:
        1. Cobra la tolerancia vencida que aún no se cobró
        2. Cobra las horas de retraso que no se hayan cobrado antes (un solo cargo, sin partidas)
        3. Retorna el saldo de la orden para mostrar en el diálogo

        Returns:
            (exitoso, mensaje, {sales_order_id, remaining_amount, extra_hours, extra_amount, ...})
        """
        now = ahora(now)
        room, stay, fallo = cargar_contexto_activo(db, room_id)
        if fallo:
            return fallo

        order = stay.sales_order
        room_type = room.room_type
        mensajes = []
        tolerancia_cobrada = None
        tolerancia_aplicada = False
        extra_hours = 0
        extra_amount = Decimal("0")

        try:
            if (
                stay.has_tolerance()
                and stay.tolerance_charged_at is None
                and is_tolerance_expired(stay.tolerance_started_at, now)
            ):
                tolerancia_cobrada = aplicar_cargo_tolerancia(db, stay, room_type, now)
                tolerancia_aplicada = True
                if tolerancia_cobrada:
                    mensajes.append(f"Tolerancia expirada: +${tolerancia_cobrada}")

            overage_hours = calculate_overage_hours(stay.expected_check_out_at, now)
            pending_hours = overage_hours - (stay.overage_hours_charged or 0)
            extra_hour_price = to_money(room_type.extra_hour_price)
            if pending_hours > 0 and extra_hour_price > 0:
                extra_hours = pending_hours
                extra_amount = extra_hour_price * pending_hours
                update_sales_order_totals(order, extra_amount)
                stay.overage_hours_charged = overage_hours
                mensajes.append(f"Se agregaron {extra_hours} hora(s) extra: +${extra_amount}")

            if tolerancia_aplicada or extra_hours:
                record_audit(
                    db, "room_stay", stay.id, "PREPARE_CHECKOUT", usuario,
                    descripcion="; ".join(mensajes),
                    payload={"horas_extra": extra_hours, "monto_horas": extra_amount, "tolerancia": tolerancia_cobrada},
                )
                db.commit()
        except SQLAlchemyError as e:
            return fallo_store(db, "checkout", usuario, "preparar check-out", e)

        remaining = to_money(order.remaining_amount)
        log_event("checkout", usuario, "Preparar check-out", f"room_id={room.id}, order_id={order.id}, saldo=${remaining}")
        mensaje = "; ".join(mensajes) if mensajes else f"Saldo pendiente: ${remaining}"
        return True, mensaje, {
            "stay_id": stay.id,
            "sales_order_id": order.id,
            "remaining_amount": remaining,
            "total": to_money(order.total),
            "paid_amount": to_money(order.paid_amount),
            "extra_hours": extra_hours,
            "extra_amount": extra_amount,
            "tolerance_charged": tolerancia_cobrada,
        }

    @staticmethod
    def finalize_stay(
        db: Session,
        stay: RoomStay,
        room: Room,
        order: SalesOrder,
        payment_method: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> None:
        """Cierra la estancia: FINALIZADA, habitación SUCIA, orden ENDED (sin commit)"""
        stay.status = StayStatus.FINALIZADA.value
        stay.actual_check_out_at = ahora(now)
        stay.clear_tolerance()
        room.status = RoomStatus.SUCIA.value
        order.status = SalesOrderStatus.ENDED.value
        if payment_method:
            order.payment_method = payment_method

    @staticmethod
    def settle(
        db: Session,
        room_id: int,
        checkout_info: Any,
        payments: Optional[List[Any]],
        usuario: str,
        now: Optional[datetime] = None,
        gateway: Optional[LedgerGateway] = None,
    ) -> Tuple[bool, str, Optional[dict]]:
        """
        Liquida el check-out en una sola transacción:
        1. Revalida la tolerancia leyendo la estancia fresca del almacén
        2. Concilia contra los pagos PENDIENTE (más antiguos primero)
        3. El sobrante se registra como pago CHECKOUT
        4. Marca pagadas las partidas de estancia/personas/horas/tolerancia
        5. Finaliza, o aplica el pago en el libro y finaliza si el saldo llegó a 0

        Un rechazo del libro o un error del almacén revierte todo y la estancia sigue ACTIVA.
        """
        now = ahora(now)
        gateway = gateway or default_gateway
        room, stay, fallo = cargar_contexto_activo(db, room_id)
        if fallo:
            return fallo

        # Lectura fresca: la tolerancia pudo vencer con el diálogo abierto
        db.refresh(stay)
        if (
            stay.has_tolerance()
            and stay.tolerance_charged_at is None
            and is_tolerance_expired(stay.tolerance_started_at, now)
        ):
            return (
                False,
                "La tolerancia expiró mientras se preparaba el check-out. Vuelva a abrir el check-out.",
                {"error_code": STALE_TOLERANCE},
            )

        order = stay.sales_order
        info_order_id = _field(checkout_info, "sales_order_id")
        if info_order_id is not None and int(info_order_id) != order.id:
            return False, "La orden del check-out no corresponde a la estancia activa", None

        entries = normalize_payment_entries(payments)
        tendered = entries_total(entries)
        remaining_info = to_money(_field(checkout_info, "remaining_amount"), fallback=to_money(order.remaining_amount))
        method = settlement_method(entries)

        try:
            conciliados, sobrante = _conciliar_pendientes(db, order, entries)
            nuevo_pago = _registrar_sobrante(
                db, order, entries, sobrante, PaymentConcept.CHECKOUT.value, "CHK",
            )

            metodo_partidas = method or order.payment_method
            for item in order.items:
                if item.is_paid or item.concept_type not in SETTLED_CONCEPT_TYPES:
                    continue
                item.is_paid = True
                item.paid_at = now
                item.payment_method = metodo_partidas

            if method:
                order.payment_method = method

            finalizada = False
            if remaining_info <= 0 or tendered <= 0:
                CheckoutService.finalize_stay(db, stay, room, order, method, now)
                finalizada = True
            else:
                resultado = gateway.process_payment(db, order.id, tendered, usuario)
                if not resultado.get("success"):
                    db.rollback()
                    mensaje = resultado.get("message") or "El pago fue rechazado"
                    log_event("checkout", usuario, "Pago rechazado", f"room_id={room_id}, motivo={mensaje}")
                    return False, mensaje, {"error_code": PAYMENT_REJECTED}

                if to_money(order.remaining_amount) <= 0:
                    CheckoutService.finalize_stay(db, stay, room, order, method, now)
                    finalizada = True

            record_audit(
                db, "room_stay", stay.id, "CHECKOUT" if finalizada else "PARTIAL_PAYMENT", usuario,
                descripcion=f"Check-out Hab. {room.number}" if finalizada else f"Pago parcial Hab. {room.number}",
                payload={
                    "entregado": tendered,
                    "metodo": method,
                    "pendientes_conciliados": [p.id for p in conciliados],
                    "saldo": to_money(order.remaining_amount),
                },
            )
            db.commit()
        except SQLAlchemyError as e:
            return fallo_store(db, "checkout", usuario, "liquidar check-out", e)

        remaining = to_money(order.remaining_amount)
        log_event(
            "checkout", usuario, "Check-out" if finalizada else "Pago parcial",
            f"room_id={room.id}, order_id={order.id}, entregado=${tendered}, saldo=${remaining}",
        )
        if finalizada:
            mensaje = f"Check-out completado - Hab. {room.number} → SUCIA"
        else:
            mensaje = f"Pago parcial registrado. Saldo pendiente: ${remaining}"
        return True, mensaje, {
            "finalized": finalizada,
            "remaining_amount": remaining,
            "reconciled_payment_ids": [p.id for p in conciliados],
            "new_payment_id": nuevo_pago.id if nuevo_pago else None,
        }

    @staticmethod
    def pay_items(
        db: Session,
        room_id: int,
        selections: List[Any],
        payments: Optional[List[Any]],
        usuario: str,
        now: Optional[datetime] = None,
    ) -> Tuple[bool, str, Optional[dict]]:
        """
        Pago granular de partidas seleccionadas.
        Cada selección: {item_id, discount}. El descuento va de 0 al total de la partida
        y lo entregado debe coincidir con la suma de las partidas ya descontadas.
        El saldo de la orden se recalcula completo desde las partidas no pagadas.
        """
        now = ahora(now)
        room, stay, fallo = cargar_contexto_activo(db, room_id)
        if fallo:
            return fallo

        if not selections:
            return False, "Debe seleccionar al menos una partida", None

        order = stay.sales_order
        items_by_id: Dict[int, SalesOrderItem] = {item.id: item for item in order.items}

        seleccion = []
        vistos = set()
        for sel in selections:
            item_id = _field(sel, "item_id")
            item = items_by_id.get(item_id)
            if item is None:
                return False, f"La partida {item_id} no pertenece a la orden", None
            if item_id in vistos:
                return False, f"La partida {item_id} está repetida", None
            if item.is_paid:
                return False, f"La partida {item_id} ya está pagada", None
            vistos.add(item_id)

            total_item = to_money(item.total)
            discount = to_money(_field(sel, "discount"))
            if discount < 0 or discount > total_item:
                return False, f"Descuento inválido para la partida {item_id}: debe estar entre 0 y ${total_item}", None
            seleccion.append((item, discount))

        a_pagar = sum((to_money(item.total) - discount for item, discount in seleccion), Decimal("0"))
        descuentos = sum((discount for _, discount in seleccion), Decimal("0"))
        entries = normalize_payment_entries(payments)
        tendered = entries_total(entries)
        if tendered != a_pagar:
            return False, f"El monto entregado (${tendered}) no coincide con el total seleccionado (${a_pagar})", None

        method = settlement_method(entries)
        tipos = {item.concept_type for item, _ in seleccion}
        concepts = {CONCEPT_BY_ITEM_TYPE.get(t, PaymentConcept.CHECKOUT.value) for t in tipos}
        concept = concepts.pop() if len(concepts) == 1 else PaymentConcept.CHECKOUT.value

        try:
            for item, discount in seleccion:
                item.discount = to_money(item.discount) + discount
                item.total = to_money(item.total) - discount
                item.is_paid = True
                item.paid_at = now
                item.payment_method = method

            if descuentos > 0:
                order.subtotal = to_money(order.subtotal) - descuentos
                order.total = to_money(order.subtotal) + to_money(order.tax)

            conciliados, sobrante = _conciliar_pendientes(
                db, order, entries, {CONCEPT_BY_ITEM_TYPE.get(t, PaymentConcept.CHECKOUT.value) for t in tipos},
            )
            nuevo_pago = _registrar_sobrante(db, order, entries, sobrante, concept, "GRA")

            order.paid_amount = to_money(order.paid_amount) + tendered
            remaining = recompute_remaining_from_items(order)
            if remaining <= 0:
                order.status = SalesOrderStatus.COMPLETED.value
            elif tendered > 0:
                order.status = SalesOrderStatus.PARTIAL.value
            if method:
                order.payment_method = method

            record_audit(
                db, "sales_order", order.id, "PAY_ITEMS", usuario,
                descripcion=f"Pago de {len(seleccion)} partida(s) - Hab. {room.number}",
                payload={
                    "partidas": [item.id for item, _ in seleccion],
                    "descuentos": descuentos,
                    "entregado": tendered,
                    "metodo": method,
                },
            )
            db.commit()
        except SQLAlchemyError as e:
            return fallo_store(db, "checkout", usuario, "pagar partidas", e)

        log_event("checkout", usuario, "Pago por partidas", f"order_id={order.id}, partidas={len(seleccion)}, monto=${tendered}")
        return True, f"Partidas pagadas: ${tendered}. Saldo: ${remaining}", {
            "sales_order_id": order.id,
            "paid_item_ids": [item.id for item, _ in seleccion],
            "remaining_amount": remaining,
            "order_status": order.status,
            "reconciled_payment_ids": [p.id for p in conciliados],
            "new_payment_id": nuevo_pago.id if nuevo_pago else None,
        }
