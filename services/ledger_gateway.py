"""
Gateway del libro de pagos.
Implementa el procedimiento atómico process_payment(order_id, amount):
valida contra el saldo, actualiza paid/remaining/status de la orden y
deja un asiento en el libro (audit_events). Nunca lanza excepciones por
reglas de negocio: retorna {"success": False, "message": ...}.
"""

from decimal import Decimal
from typing import Dict, Any

from sqlalchemy.orm import Session

from models.ventas import SalesOrder, SalesOrderStatus
from utils.audit import record_audit
from utils.billing import to_money
from utils.logging_utils import log_event


class LedgerGateway:
    """Procedimiento de liquidación de pagos sobre una orden"""

    def process_payment(self, db: Session, order_id: int, payment_amount, usuario: str = "sistema") -> Dict[str, Any]:
        amount = to_money(payment_amount)
        if amount <= 0:
            return {"success": False, "message": "El monto del pago debe ser mayor a 0"}

        # Bloqueo de fila: serializa pagos concurrentes sobre la misma orden
        order = (
            db.query(SalesOrder)
            .filter(SalesOrder.id == order_id)
            .with_for_update()
            .first()
        )
        if not order:
            return {"success": False, "message": f"Orden {order_id} no encontrada"}

        if order.status in (SalesOrderStatus.CANCELLED.value, SalesOrderStatus.ENDED.value):
            return {"success": False, "message": f"La orden está cerrada (estado: {order.status})"}

        remaining = to_money(order.remaining_amount)
        if amount > remaining:
            return {
                "success": False,
                "message": f"El monto ${amount} excede el saldo pendiente (${remaining})",
            }

        new_paid = to_money(order.paid_amount) + amount
        new_remaining = to_money(order.total) - new_paid
        if new_remaining < 0:
            new_remaining = Decimal("0")

        order.paid_amount = new_paid
        order.remaining_amount = new_remaining
        order.status = (
            SalesOrderStatus.COMPLETED.value if new_remaining <= 0 else SalesOrderStatus.PARTIAL.value
        )

        record_audit(
            db, "sales_order", order.id, "PAYMENT", usuario,
            descripcion=f"Pago de ${amount} aplicado",
            payload={
                "monto": amount,
                "saldo_anterior": remaining,
                "saldo_nuevo": new_remaining,
                "pagado_total": new_paid,
            },
        )
        db.flush()

        log_event("ledger", usuario, "process_payment", f"order_id={order.id}, monto=${amount}, saldo=${new_remaining}")
        return {"success": True, "message": "Pago aplicado"}


default_gateway = LedgerGateway()
