"""
Tests del motor de tolerancia y de los helpers de facturación
"""

import re
from datetime import datetime, timedelta
from decimal import Decimal

import pytest
import pytz

from models import RoomType, SalesOrder, SalesOrderStatus, ToleranceType, MULTIPAGO
from utils.billing import (
    PaymentEntry, generate_payment_reference, normalize_payment_entries, settlement_method,
    split_proportionally, to_money, update_sales_order_totals,
)
from utils.tolerance_engine import (
    expiry_charge, is_tolerance_expired, remaining_tolerance_minutes, select_tolerance_type,
)

NOW = datetime(2026, 3, 10, 18, 0, tzinfo=pytz.utc)


class TestToleranceWindow:
    """Ventana de 60 minutos"""

    def test_sin_tolerancia_no_vence(self):
        assert is_tolerance_expired(None, NOW) is False

    def test_vence_a_los_60_minutos(self):
        assert is_tolerance_expired(NOW - timedelta(minutes=59), NOW) is False
        assert is_tolerance_expired(NOW - timedelta(minutes=60), NOW) is True
        assert is_tolerance_expired(NOW - timedelta(minutes=61), NOW) is True

    def test_fecha_naive_se_toma_como_utc(self):
        naive = datetime(2026, 3, 10, 16, 0)
        assert is_tolerance_expired(naive, NOW) is True

    def test_minutos_restantes_redondea_hacia_arriba(self):
        assert remaining_tolerance_minutes(NOW - timedelta(minutes=10, seconds=30), NOW) == 50
        assert remaining_tolerance_minutes(NOW - timedelta(minutes=59, seconds=59), NOW) == 1

    def test_minutos_restantes_nunca_negativos(self):
        assert remaining_tolerance_minutes(NOW - timedelta(minutes=90), NOW) == 0

    def test_minutos_restantes_sin_tolerancia(self):
        assert remaining_tolerance_minutes(None, NOW) == 60


class TestTolerancePolicy:
    """Tipo de tolerancia y cargo al vencer"""

    def setup_method(self):
        self.room_type = RoomType(
            name="Sencilla", base_price=Decimal("300"), extra_person_price=Decimal("50"),
        )

    def test_tipo_segun_personas_restantes(self):
        assert select_tolerance_type(0) == ToleranceType.ROOM_EMPTY.value
        assert select_tolerance_type(1) == ToleranceType.PERSON_LEFT.value
        assert select_tolerance_type(3) == ToleranceType.PERSON_LEFT.value

    def test_habitacion_vacia_cobra_precio_base(self):
        charge = expiry_charge(ToleranceType.ROOM_EMPTY.value, self.room_type)
        assert charge.amount == Decimal("300")
        assert charge.concept_type == "TOLERANCE_EXPIRED"
        assert charge.concept == "TOLERANCIA_EXPIRADA"
        assert charge.reference_prefix == "TOL"

    def test_persona_salio_cobra_persona_extra(self):
        charge = expiry_charge(ToleranceType.PERSON_LEFT.value, self.room_type)
        assert charge.amount == Decimal("50")
        assert charge.concept_type == "EXTRA_PERSON"
        assert charge.concept == "PERSONA_EXTRA"
        assert charge.reference_prefix == "PEX"

    def test_precio_cero_no_cobra(self):
        gratis = RoomType(name="Gratis", base_price=Decimal("0"), extra_person_price=None)
        assert expiry_charge(ToleranceType.ROOM_EMPTY.value, gratis) is None
        assert expiry_charge(ToleranceType.PERSON_LEFT.value, gratis) is None

    def test_sin_tipo_no_cobra(self):
        assert expiry_charge(None, self.room_type) is None


class TestBillingHelpers:
    """Referencias, montos y pagos mixtos"""

    def test_formato_de_referencia(self):
        ref = generate_payment_reference("PEX")
        assert re.match(r"^PEX-[0-9A-Z]+-[0-9A-Z]{4}$", ref)

    def test_referencias_distintas(self):
        refs = {generate_payment_reference() for _ in range(50)}
        assert len(refs) == 50

    def test_to_money(self):
        assert to_money(None) == Decimal("0")
        assert to_money("10.005") == Decimal("10.01")
        assert to_money(25) == Decimal("25.00")
        assert to_money("abc") == Decimal("0")

    def test_normaliza_entradas_y_descarta_montos_no_positivos(self):
        entries = normalize_payment_entries([
            {"method": "efectivo", "amount": 100},
            {"method": "TARJETA", "amount": 0},
            {"method": None, "amount": 20},
        ])
        assert entries == [PaymentEntry(method="EFECTIVO", amount=Decimal("100.00"))]

    def test_metodo_del_lote(self):
        efectivo = PaymentEntry("EFECTIVO", Decimal("100"))
        tarjeta = PaymentEntry("TARJETA", Decimal("50"))
        assert settlement_method([]) is None
        assert settlement_method([efectivo]) == "EFECTIVO"
        assert settlement_method([efectivo, efectivo]) == "EFECTIVO"
        assert settlement_method([efectivo, tarjeta]) == MULTIPAGO

    def test_reparto_proporcional_suma_exacta(self):
        entries = [PaymentEntry("EFECTIVO", Decimal("200")), PaymentEntry("TARJETA", Decimal("100"))]
        shares = split_proportionally(Decimal("100"), entries)
        assert [s for _, s in shares] == [Decimal("66.67"), Decimal("33.33")]
        assert sum(s for _, s in shares) == Decimal("100")

    def test_cargo_reabre_orden_completada(self):
        order = SalesOrder(
            subtotal=Decimal("300"), tax=Decimal("0"), total=Decimal("300"),
            paid_amount=Decimal("300"), remaining_amount=Decimal("0"),
            status=SalesOrderStatus.COMPLETED.value,
        )
        totals = update_sales_order_totals(order, Decimal("50"))
        assert totals["new_total"] == Decimal("350")
        assert order.remaining_amount == Decimal("50")
        assert order.status == SalesOrderStatus.PARTIAL.value

    @pytest.mark.parametrize("status", ["OPEN", "PARTIAL"])
    def test_cargo_no_cambia_estado_abierto(self, status):
        order = SalesOrder(
            subtotal=Decimal("100"), tax=Decimal("16"), total=Decimal("116"),
            paid_amount=Decimal("0"), remaining_amount=Decimal("116"), status=status,
        )
        update_sales_order_totals(order, Decimal("10"))
        assert order.total == Decimal("126")
        assert order.remaining_amount == Decimal("126")
        assert order.status == status
