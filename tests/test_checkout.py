"""
Tests del check-out
- Preparación (horas de retraso y tolerancia vencida)
- Liquidación con conciliación de pendientes
- Pago granular por partidas
"""

from datetime import timedelta
from decimal import Decimal
from unittest.mock import Mock

import pytest

from models import (
    AuditEvent, Payment, RoomStay, SalesOrderItem,
    ConceptType, PaymentConcept, PaymentStatus, PaymentType, RoomStatus, StayStatus, MULTIPAGO,
)
from services import CheckoutService, OccupancyService
from services.common import PAYMENT_REJECTED, STALE_TOLERANCE


def _iniciar(db, room, people=2, payments=None, now=None):
    ok, mensaje, data = OccupancyService.start_stay(db, room.id, people, payments, "tester", now=now)
    assert ok, mensaje
    return db.get(RoomStay, data["stay_id"])


def _entrada_rapida(db, room, people=2, now=None):
    ok, mensaje, data = OccupancyService.quick_checkin(db, room.id, people, "tester", now=now)
    assert ok, mensaje
    return db.get(RoomStay, data["stay_id"])


def _info(stay):
    order = stay.sales_order
    return {"sales_order_id": order.id, "remaining_amount": order.remaining_amount}


def _pagos(db, order_id):
    return db.query(Payment).filter(Payment.sales_order_id == order_id).order_by(Payment.id).all()


class TestPrepareCheckout:

    def test_sin_retraso(self, db, rooms, now):
        stay = _entrada_rapida(db, rooms["101"], now=now)
        ok, _, data = CheckoutService.prepare_checkout(db, rooms["101"].id, "tester", now=now + timedelta(hours=2))
        assert ok
        assert data["sales_order_id"] == stay.sales_order_id
        assert data["remaining_amount"] == Decimal("300")
        assert data["extra_hours"] == 0

    def test_horas_de_retraso_un_solo_cargo(self, db, rooms, now):
        """Hora y media de retraso = 2 horas, sin crear partidas"""
        stay = _entrada_rapida(db, rooms["101"], now=now)
        items_antes = len(stay.sales_order.items)

        ok, _, data = CheckoutService.prepare_checkout(
            db, rooms["101"].id, "tester", now=now + timedelta(hours=13, minutes=30),
        )
        assert ok
        assert data["extra_hours"] == 2
        assert data["extra_amount"] == Decimal("160")
        assert data["remaining_amount"] == Decimal("460")

        db.refresh(stay)
        assert len(stay.sales_order.items) == items_antes
        assert stay.sales_order.total == Decimal("460")

    def test_reabrir_no_duplica_horas(self, db, rooms, now):
        stay = _entrada_rapida(db, rooms["101"], now=now)
        momento = now + timedelta(hours=13, minutes=30)
        CheckoutService.prepare_checkout(db, rooms["101"].id, "tester", now=momento)

        ok, _, data = CheckoutService.prepare_checkout(db, rooms["101"].id, "tester", now=momento)
        assert ok
        assert data["extra_hours"] == 0
        assert data["remaining_amount"] == Decimal("460")

        ok, _, data = CheckoutService.prepare_checkout(
            db, rooms["101"].id, "tester", now=now + timedelta(hours=14, minutes=30),
        )
        assert data["extra_hours"] == 1
        assert data["remaining_amount"] == Decimal("540")
        db.refresh(stay)
        assert stay.overage_hours_charged == 3

    def test_hotel_sin_precio_de_hora(self, db, rooms, now):
        _entrada_rapida(db, rooms["201"], now=now)
        ok, _, data = CheckoutService.prepare_checkout(db, rooms["201"].id, "tester", now=now + timedelta(days=2))
        assert ok
        assert data["extra_hours"] == 0
        assert data["remaining_amount"] == Decimal("900")

    def test_cobra_tolerancia_vencida(self, db, rooms, now):
        _entrada_rapida(db, rooms["101"], now=now)
        OccupancyService.person_left_returning(db, rooms["101"].id, "tester", now=now)
        ok, _, data = CheckoutService.prepare_checkout(
            db, rooms["101"].id, "tester", now=now + timedelta(minutes=61),
        )
        assert ok
        assert data["tolerance_charged"] == Decimal("50")
        assert data["remaining_amount"] == Decimal("350")


class TestSettle:

    def test_saldo_cero_finaliza_sin_llamar_al_libro(self, db, rooms, now):
        stay = _iniciar(db, rooms["101"], payments=[{"method": "EFECTIVO", "amount": 300}], now=now)
        gateway = Mock()

        ok, _, data = CheckoutService.settle(
            db, rooms["101"].id, _info(stay), [], "tester", now=now + timedelta(hours=2), gateway=gateway,
        )
        assert ok
        assert data["finalized"] is True
        gateway.process_payment.assert_not_called()

        db.refresh(stay)
        assert stay.status == StayStatus.FINALIZADA.value
        assert stay.actual_check_out_at is not None
        assert stay.sales_order.status == "ENDED"
        assert rooms["101"].status == RoomStatus.SUCIA.value

    def test_pendiente_cubierto_sin_pago_nuevo(self, db, rooms, now):
        """Saldo de 100 en un solo pendiente; se paga 100 en efectivo"""
        stay = _entrada_rapida(db, rooms["103"], now=now)
        order_id = stay.sales_order_id
        pendiente = _pagos(db, order_id)[0]
        assert pendiente.status == PaymentStatus.PENDIENTE.value
        assert pendiente.amount == Decimal("100")

        ok, _, data = CheckoutService.settle(
            db, rooms["103"].id, _info(stay), [{"method": "EFECTIVO", "amount": 100}], "tester", now=now,
        )
        assert ok
        assert data["finalized"] is True
        assert data["new_payment_id"] is None
        assert data["reconciled_payment_ids"] == [pendiente.id]

        pagos = _pagos(db, order_id)
        assert len(pagos) == 1
        assert pagos[0].status == PaymentStatus.PAGADO.value
        assert pagos[0].payment_method == "EFECTIVO"

        db.refresh(stay)
        order = stay.sales_order
        assert stay.status == StayStatus.FINALIZADA.value
        assert order.paid_amount == Decimal("100")
        assert order.remaining_amount == Decimal("0")
        assert all(item.is_paid for item in order.items)

        asiento = db.query(AuditEvent).filter(
            AuditEvent.entity_type == "sales_order", AuditEvent.action == "PAYMENT",
        ).one()
        assert asiento.entity_id == order_id

    def test_pendientes_en_orden_y_sobrante(self, db, rooms, now):
        """Pendientes [300, 80, 50] con 390 entregados: se cubren 300 y 80, sobran 10"""
        stay = _entrada_rapida(db, rooms["101"], now=now)
        OccupancyService.add_extra_hour(db, rooms["101"].id, "tester")
        OccupancyService.add_person(db, rooms["101"].id, "tester", now=now)
        order_id = stay.sales_order_id

        pendientes = [p for p in _pagos(db, order_id) if p.status == PaymentStatus.PENDIENTE.value]
        assert [p.amount for p in pendientes] == [Decimal("300"), Decimal("80"), Decimal("50")]

        db.refresh(stay)
        ok, _, data = CheckoutService.settle(
            db, rooms["101"].id, _info(stay), [{"method": "EFECTIVO", "amount": 390}], "tester", now=now,
        )
        assert ok
        assert data["reconciled_payment_ids"] == [pendientes[0].id, pendientes[1].id]
        assert data["finalized"] is False
        assert data["remaining_amount"] == Decimal("40")

        nuevo = db.get(Payment, data["new_payment_id"])
        assert nuevo.amount == Decimal("10")
        assert nuevo.concept == PaymentConcept.CHECKOUT.value
        assert nuevo.reference.startswith("CHK-")
        assert nuevo.id > pendientes[2].id

        assert db.get(Payment, pendientes[2].id).status == PaymentStatus.PENDIENTE.value
        db.refresh(stay)
        assert stay.status == StayStatus.ACTIVA.value
        assert stay.sales_order.status == "PARTIAL"

    def test_pago_mixto_desglosa_el_pendiente(self, db, rooms, now):
        stay = _entrada_rapida(db, rooms["101"], now=now)
        order_id = stay.sales_order_id
        pendiente_id = _pagos(db, order_id)[0].id

        ok, _, data = CheckoutService.settle(db, rooms["101"].id, _info(stay), [
            {"method": "EFECTIVO", "amount": 200},
            {"method": "TARJETA", "amount": 100, "terminal": "T-02"},
        ], "tester", now=now)
        assert ok
        assert data["finalized"] is True

        pendiente = db.get(Payment, pendiente_id)
        assert pendiente.status == PaymentStatus.PAGADO.value
        assert pendiente.payment_method == "MIXTO"
        hijos = pendiente.children
        assert {h.payment_method: h.amount for h in hijos} == {
            "EFECTIVO": Decimal("200"), "TARJETA": Decimal("100"),
        }
        assert all(h.payment_type == PaymentType.PARCIAL.value for h in hijos)

        items = db.query(SalesOrderItem).filter(SalesOrderItem.sales_order_id == order_id).all()
        assert all(i.is_paid and i.payment_method == MULTIPAGO for i in items)

    def test_rechazo_del_libro_revierte_todo(self, db, rooms, now):
        stay = _entrada_rapida(db, rooms["101"], now=now)
        order_id = stay.sales_order_id
        gateway = Mock()
        gateway.process_payment.return_value = {"success": False, "message": "Terminal fuera de línea"}

        ok, mensaje, data = CheckoutService.settle(
            db, rooms["101"].id, _info(stay), [{"method": "TARJETA", "amount": 300}], "tester",
            now=now, gateway=gateway,
        )
        assert ok is False
        assert mensaje == "Terminal fuera de línea"
        assert data["error_code"] == PAYMENT_REJECTED
        gateway.process_payment.assert_called_once()

        pagos = _pagos(db, order_id)
        assert len(pagos) == 1
        assert pagos[0].status == PaymentStatus.PENDIENTE.value
        db.refresh(stay)
        assert stay.status == StayStatus.ACTIVA.value
        assert not any(i.is_paid for i in stay.sales_order.items)

    def test_sobrepago_rechazado_por_el_libro(self, db, rooms, now):
        stay = _entrada_rapida(db, rooms["101"], now=now)
        ok, mensaje, data = CheckoutService.settle(
            db, rooms["101"].id, _info(stay), [{"method": "EFECTIVO", "amount": 500}], "tester", now=now,
        )
        assert ok is False
        assert "excede" in mensaje
        assert data["error_code"] == PAYMENT_REJECTED
        assert len(_pagos(db, stay.sales_order_id)) == 1
        db.refresh(stay)
        assert stay.status == StayStatus.ACTIVA.value
        assert stay.sales_order.paid_amount == Decimal("0")

    def test_pago_parcial_deja_la_estancia_activa(self, db, rooms, now):
        stay = _entrada_rapida(db, rooms["101"], now=now)
        ok, mensaje, data = CheckoutService.settle(
            db, rooms["101"].id, _info(stay), [{"method": "EFECTIVO", "amount": 100}], "tester", now=now,
        )
        assert ok
        assert data["finalized"] is False
        assert data["remaining_amount"] == Decimal("200")
        assert data["reconciled_payment_ids"] == []
        assert "200" in mensaje
        db.refresh(stay)
        assert stay.status == StayStatus.ACTIVA.value
        assert rooms["101"].status == RoomStatus.OCUPADA.value

    def test_tolerancia_vencida_con_dialogo_abierto(self, db, rooms, now):
        stay = _entrada_rapida(db, rooms["101"], now=now)
        ok, _, info = CheckoutService.prepare_checkout(db, rooms["101"].id, "tester", now=now)
        OccupancyService.person_left_returning(db, rooms["101"].id, "tester", now=now)

        ok, _, data = CheckoutService.settle(
            db, rooms["101"].id, info, [{"method": "EFECTIVO", "amount": 300}], "tester",
            now=now + timedelta(minutes=61),
        )
        assert ok is False
        assert data["error_code"] == STALE_TOLERANCE
        db.refresh(stay)
        assert stay.status == StayStatus.ACTIVA.value
        assert len(_pagos(db, stay.sales_order_id)) == 1

        # Reabrir el check-out cobra la tolerancia y permite liquidar
        ok, _, info = CheckoutService.prepare_checkout(
            db, rooms["101"].id, "tester", now=now + timedelta(minutes=61),
        )
        assert info["remaining_amount"] == Decimal("350")
        ok, _, data = CheckoutService.settle(
            db, rooms["101"].id, info, [{"method": "EFECTIVO", "amount": 350}], "tester",
            now=now + timedelta(minutes=62),
        )
        assert ok
        assert data["finalized"] is True
        assert len(data["reconciled_payment_ids"]) == 2

    def test_tolerancia_vencida_sin_precio_no_bloquea(self, db, rooms, now):
        """Persona extra en $0: la tolerancia vence sin cargo y el check-out se completa"""
        stay = _iniciar(db, rooms["103"], payments=[{"method": "EFECTIVO", "amount": 100}], now=now)
        ok, _, _ = OccupancyService.person_left_returning(db, rooms["103"].id, "tester", now=now)
        assert ok
        momento = now + timedelta(minutes=61)

        ok, _, info = CheckoutService.prepare_checkout(db, rooms["103"].id, "tester", now=momento)
        assert ok
        assert info["tolerance_charged"] is None
        assert info["remaining_amount"] == Decimal("0")
        db.refresh(stay)
        assert stay.tolerance_charged_at is not None

        ok, mensaje, data = CheckoutService.settle(db, rooms["103"].id, info, [], "tester", now=momento)
        assert ok, mensaje
        assert data["finalized"] is True
        db.refresh(stay)
        assert stay.status == StayStatus.FINALIZADA.value
        assert stay.sales_order.total == Decimal("100")

    def test_orden_no_corresponde(self, db, rooms, now):
        _entrada_rapida(db, rooms["101"], now=now)
        ok, _, _ = CheckoutService.settle(
            db, rooms["101"].id, {"sales_order_id": 999, "remaining_amount": 300},
            [{"method": "EFECTIVO", "amount": 300}], "tester", now=now,
        )
        assert ok is False

    def test_habitacion_sin_estancia(self, db, rooms, now):
        ok, _, _ = CheckoutService.settle(db, rooms["102"].id, None, [], "tester", now=now)
        assert ok is False


class TestPayItems:

    def test_pago_de_hora_extra_concilia_su_pendiente(self, db, rooms, now):
        stay = _entrada_rapida(db, rooms["101"], people=3, now=now)
        OccupancyService.add_extra_hour(db, rooms["101"].id, "tester")
        db.refresh(stay)
        hora = [i for i in stay.sales_order.items if i.concept_type == ConceptType.EXTRA_HOUR.value][0]

        ok, _, data = CheckoutService.pay_items(
            db, rooms["101"].id, [{"item_id": hora.id, "discount": 0}],
            [{"method": "EFECTIVO", "amount": 80}], "tester", now=now,
        )
        assert ok
        assert data["new_payment_id"] is None
        assert len(data["reconciled_payment_ids"]) == 1
        assert data["remaining_amount"] == Decimal("350")
        assert data["order_status"] == "PARTIAL"

        conciliado = db.get(Payment, data["reconciled_payment_ids"][0])
        assert conciliado.concept == PaymentConcept.HORA_EXTRA.value
        assert conciliado.status == PaymentStatus.PAGADO.value
        db.refresh(stay)
        assert stay.sales_order.paid_amount == Decimal("80")

    def test_descuento_reduce_la_partida(self, db, rooms, now):
        stay = _entrada_rapida(db, rooms["101"], people=3, now=now)
        base = [i for i in stay.sales_order.items if i.concept_type == ConceptType.ROOM_BASE.value][0]

        ok, _, data = CheckoutService.pay_items(
            db, rooms["101"].id, [{"item_id": base.id, "discount": 50}],
            [{"method": "EFECTIVO", "amount": 250}], "tester", now=now,
        )
        assert ok
        assert data["remaining_amount"] == Decimal("50")

        db.refresh(base)
        assert base.is_paid is True
        assert base.total == Decimal("250")
        assert base.discount == Decimal("50")

        nuevo = db.get(Payment, data["new_payment_id"])
        assert nuevo.amount == Decimal("250")
        assert nuevo.concept == PaymentConcept.ESTANCIA.value
        assert nuevo.reference.startswith("GRA-")
        db.refresh(stay)
        assert stay.sales_order.total == Decimal("300")

    def test_pagar_todo_completa_la_orden(self, db, rooms, now):
        stay = _entrada_rapida(db, rooms["101"], people=3, now=now)
        selecciones = [{"item_id": i.id} for i in stay.sales_order.items]

        ok, _, data = CheckoutService.pay_items(
            db, rooms["101"].id, selecciones, [{"method": "TARJETA", "amount": 350}], "tester", now=now,
        )
        assert ok
        assert data["remaining_amount"] == Decimal("0")
        assert data["order_status"] == "COMPLETED"
        assert len(data["reconciled_payment_ids"]) == 1

    @pytest.mark.parametrize("discount,amount", [(Decimal("400"), 0), (Decimal("-1"), 301)])
    def test_descuento_fuera_de_rango(self, db, rooms, now, discount, amount):
        stay = _entrada_rapida(db, rooms["101"], now=now)
        base = stay.sales_order.items[0]
        ok, mensaje, _ = CheckoutService.pay_items(
            db, rooms["101"].id, [{"item_id": base.id, "discount": discount}],
            [{"method": "EFECTIVO", "amount": amount}], "tester", now=now,
        )
        assert ok is False
        assert "Descuento inválido" in mensaje

    def test_monto_no_coincide(self, db, rooms, now):
        stay = _entrada_rapida(db, rooms["101"], now=now)
        base = stay.sales_order.items[0]
        ok, mensaje, _ = CheckoutService.pay_items(
            db, rooms["101"].id, [{"item_id": base.id}],
            [{"method": "EFECTIVO", "amount": 200}], "tester", now=now,
        )
        assert ok is False
        assert "no coincide" in mensaje

    def test_partida_ajena_o_pagada(self, db, rooms, now):
        stay = _iniciar(db, rooms["101"], payments=[{"method": "EFECTIVO", "amount": 300}], now=now)
        base = stay.sales_order.items[0]
        ok, mensaje, _ = CheckoutService.pay_items(
            db, rooms["101"].id, [{"item_id": base.id}], [{"method": "EFECTIVO", "amount": 300}], "tester", now=now,
        )
        assert ok is False
        assert "ya está pagada" in mensaje

        ok, mensaje, _ = CheckoutService.pay_items(
            db, rooms["101"].id, [{"item_id": 9999}], [], "tester", now=now,
        )
        assert ok is False
        assert "no pertenece" in mensaje
