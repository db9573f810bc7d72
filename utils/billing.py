"""
Helpers de facturación compartidos por ocupación y check-out:
referencias de pago, actualización de totales, cargos y pagos (simples o mixtos).
"""

import random
import time
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any, Dict, Iterable, List, NamedTuple, Optional, Tuple

from sqlalchemy.orm import Session

from models.ventas import (
    SalesOrder, SalesOrderItem, Payment,
    SalesOrderStatus, PaymentMethod, PaymentStatus, PaymentType, MULTIPAGO,
)

CENT = Decimal("0.01")
_BASE36 = "0123456789ABCDEFGHIJKLMNOPQRSTUVWXYZ"


class PaymentEntry(NamedTuple):
    """Una porción de un pago (método + monto)"""
    method: str
    amount: Decimal
    reference: Optional[str] = None
    terminal: Optional[str] = None


def to_money(value, fallback: Decimal = Decimal("0")) -> Decimal:
    """Convierte a Decimal con dos decimales de forma segura"""
    if value is None:
        return fallback
    try:
        if not isinstance(value, Decimal):
            value = Decimal(str(value))
        return value.quantize(CENT, rounding=ROUND_HALF_UP)
    except (InvalidOperation, ValueError, TypeError):
        return fallback


def _base36(number: int) -> str:
    if number == 0:
        return "0"
    digits = []
    while number:
        number, rem = divmod(number, 36)
        digits.append(_BASE36[rem])
    return "".join(reversed(digits))


def generate_payment_reference(prefix: str = "CHK") -> str:
    """Referencia única: {PREFIJO}-{timestamp base36}-{4 caracteres aleatorios}"""
    timestamp = _base36(int(time.time() * 1000))
    suffix = "".join(random.choices(_BASE36, k=4))
    return f"{prefix}-{timestamp}-{suffix}"


def _field(entry: Any, key: str):
    if isinstance(entry, dict):
        return entry.get(key)
    return getattr(entry, key, None)


def normalize_payment_entries(entries: Optional[Iterable[Any]]) -> List[PaymentEntry]:
    """
    Acepta dicts o schemas (method/amount/reference/terminal) y descarta
    los montos no positivos.
    """
    normalized = []
    for entry in entries or []:
        method = _field(entry, "method")
        method = getattr(method, "value", method)
        amount = to_money(_field(entry, "amount"))
        if amount <= 0 or not method:
            continue
        normalized.append(PaymentEntry(
            method=str(method).upper(),
            amount=amount,
            reference=_field(entry, "reference"),
            terminal=_field(entry, "terminal"),
        ))
    return normalized


def entries_total(entries: List[PaymentEntry]) -> Decimal:
    return sum((e.amount for e in entries), Decimal("0"))


def settlement_method(entries: List[PaymentEntry]) -> Optional[str]:
    """Método del lote: el único usado, o MULTIPAGO si hubo varios"""
    methods = {e.method for e in entries}
    if not methods:
        return None
    if len(methods) > 1:
        return MULTIPAGO
    return methods.pop()


def split_proportionally(amount: Decimal, entries: List[PaymentEntry]) -> List[Tuple[PaymentEntry, Decimal]]:
    """
    Reparte amount entre las entradas en proporción a lo entregado con cada método.
    La última porción absorbe el redondeo para que la suma sea exacta.
    """
    amount = to_money(amount)
    total = entries_total(entries)
    if total <= 0 or not entries:
        return []

    shares = []
    acumulado = Decimal("0")
    for idx, entry in enumerate(entries):
        if idx == len(entries) - 1:
            share = amount - acumulado
        else:
            share = (amount * entry.amount / total).quantize(CENT, rounding=ROUND_HALF_UP)
            acumulado += share
        shares.append((entry, share))
    return shares


def update_sales_order_totals(order: SalesOrder, additional_amount) -> Dict[str, Decimal]:
    """
    Suma un cargo a la orden de forma incremental:
    subtotal += monto, total = subtotal + tax, remaining += monto.
    """
    additional = to_money(additional_amount)
    new_subtotal = to_money(order.subtotal) + additional
    new_total = new_subtotal + to_money(order.tax)
    new_remaining = to_money(order.remaining_amount) + additional

    order.subtotal = new_subtotal
    order.total = new_total
    order.remaining_amount = new_remaining

    # Una orden saldada vuelve a tener saldo
    if order.status == SalesOrderStatus.COMPLETED.value and new_remaining > 0:
        order.status = SalesOrderStatus.PARTIAL.value

    return {
        "new_subtotal": new_subtotal,
        "new_total": new_total,
        "new_remaining": new_remaining,
    }


def recompute_remaining_from_items(order: SalesOrder) -> Decimal:
    """Recalcula el saldo completo como la suma de las partidas no pagadas"""
    remaining = sum(
        (to_money(item.total) for item in order.items if not item.is_paid),
        Decimal("0"),
    )
    order.remaining_amount = remaining
    return remaining


def create_item(
    db: Session,
    order: SalesOrder,
    concept_type: str,
    unit_price,
    description: Optional[str] = None,
    qty: int = 1,
    is_paid: bool = False,
    payment_method: Optional[str] = None,
    paid_at=None,
) -> SalesOrderItem:
    unit_price = to_money(unit_price)
    item = SalesOrderItem(
        sales_order=order,
        concept_type=concept_type,
        description=description,
        qty=qty,
        unit_price=unit_price,
        total=unit_price * qty,
        discount=Decimal("0"),
        is_paid=is_paid,
        paid_at=paid_at if is_paid else None,
        payment_method=payment_method if is_paid else None,
    )
    db.add(item)
    return item


def create_payment(
    db: Session,
    order: SalesOrder,
    amount,
    payment_method: str,
    concept: str,
    status: str = PaymentStatus.PAGADO.value,
    payment_type: str = PaymentType.COMPLETO.value,
    parent: Optional[Payment] = None,
    reference: Optional[str] = None,
    prefix: str = "CHK",
    terminal: Optional[str] = None,
) -> Payment:
    payment = Payment(
        sales_order=order,
        amount=to_money(amount),
        payment_method=payment_method,
        reference=reference or generate_payment_reference(prefix),
        concept=concept,
        status=status,
        payment_type=payment_type,
        parent=parent,
        terminal_code=terminal if payment_method == PaymentMethod.TARJETA.value else None,
    )
    db.add(payment)
    return payment


def create_multi_payment(
    db: Session,
    order: SalesOrder,
    entries: List[PaymentEntry],
    concept: str,
    prefix: str = "CHK",
) -> Optional[Payment]:
    """
    Un método: un pago COMPLETO.
    Varios: pago COMPLETO "sobre" (MIXTO) + sub-pagos PARCIAL que suman su monto.
    """
    if not entries:
        return None

    if len(entries) == 1:
        entry = entries[0]
        return create_payment(
            db, order, entry.amount, entry.method, concept,
            reference=entry.reference, prefix=prefix, terminal=entry.terminal,
        )

    main = create_payment(
        db, order, entries_total(entries), PaymentMethod.MIXTO.value, concept, prefix=prefix,
    )
    for entry in entries:
        create_payment(
            db, order, entry.amount, entry.method, concept,
            payment_type=PaymentType.PARCIAL.value,
            parent=main,
            reference=entry.reference,
            prefix="SUB",
            terminal=entry.terminal,
        )
    return main


def add_charge(
    db: Session,
    order: SalesOrder,
    concept_type: str,
    amount,
    concept: str,
    prefix: str,
    description: Optional[str] = None,
) -> Tuple[SalesOrderItem, Payment, Dict[str, Decimal]]:
    """
    Registra un cargo: partida sin pagar + totales de la orden + pago PENDIENTE.
    """
    item = create_item(db, order, concept_type, amount, description=description)
    totals = update_sales_order_totals(order, amount)
    payment = create_payment(
        db, order, amount, PaymentMethod.PENDIENTE.value, concept,
        status=PaymentStatus.PENDIENTE.value, prefix=prefix,
    )
    return item, payment, totals
