"""
Modelos de facturación de estancias: orden de venta, partidas y pagos.
"""
import enum

from sqlalchemy import (
    Column,
    Integer,
    String,
    DateTime,
    Boolean,
    ForeignKey,
    Text,
    UniqueConstraint,
    Index,
    Numeric,
)
from sqlalchemy.orm import relationship

from database.conexion import Base
from utils.timezone import utcnow


class SalesOrderStatus(str, enum.Enum):
    OPEN = "OPEN"
    PARTIAL = "PARTIAL"
    COMPLETED = "COMPLETED"
    ENDED = "ENDED"
    CANCELLED = "CANCELLED"


class ConceptType(str, enum.Enum):
    """Tipo de concepto de una partida"""
    ROOM_BASE = "ROOM_BASE"
    EXTRA_HOUR = "EXTRA_HOUR"
    EXTRA_PERSON = "EXTRA_PERSON"
    CONSUMPTION = "CONSUMPTION"
    PRODUCT = "PRODUCT"
    TOLERANCE_EXPIRED = "TOLERANCE_EXPIRED"


class PaymentMethod(str, enum.Enum):
    EFECTIVO = "EFECTIVO"
    TARJETA = "TARJETA"
    TRANSFERENCIA = "TRANSFERENCIA"
    MIXTO = "MIXTO"
    PENDIENTE = "PENDIENTE"


class PaymentStatus(str, enum.Enum):
    PENDIENTE = "PENDIENTE"
    PAGADO = "PAGADO"
    CANCELADO = "CANCELADO"


class PaymentType(str, enum.Enum):
    COMPLETO = "COMPLETO"
    PARCIAL = "PARCIAL"


class PaymentConcept(str, enum.Enum):
    ESTANCIA = "ESTANCIA"
    CHECKOUT = "CHECKOUT"
    PERSONA_EXTRA = "PERSONA_EXTRA"
    HORA_EXTRA = "HORA_EXTRA"
    TOLERANCIA_EXPIRADA = "TOLERANCIA_EXPIRADA"
    CONSUMO = "CONSUMO"
    SERVICIO = "SERVICIO"


# Marca de método cuando un lote se liquidó con varios métodos
MULTIPAGO = "MULTIPAGO"


class SalesOrder(Base):
    """
    Orden de venta de una estancia.
    total = subtotal + tax ; remaining_amount = total - paid_amount
    """
    __tablename__ = "sales_orders"
    __table_args__ = (
        Index("idx_sales_order_status", "status"),
    )

    id = Column(Integer, primary_key=True)
    subtotal = Column(Numeric(12, 2), nullable=False, default=0)
    tax = Column(Numeric(12, 2), nullable=False, default=0)
    total = Column(Numeric(12, 2), nullable=False, default=0)
    paid_amount = Column(Numeric(12, 2), nullable=False, default=0)
    remaining_amount = Column(Numeric(12, 2), nullable=False, default=0)

    # OPEN | PARTIAL | COMPLETED | ENDED | CANCELLED
    status = Column(String(20), nullable=False, default=SalesOrderStatus.OPEN.value)
    payment_method = Column(String(20), nullable=True)
    currency = Column(String(3), nullable=False, default="MXN")
    notes = Column(Text, nullable=True)

    version = Column(Integer, nullable=False)

    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    __mapper_args__ = {"version_id_col": version}

    stay = relationship("RoomStay", back_populates="sales_order", uselist=False)
    items = relationship("SalesOrderItem", back_populates="sales_order", order_by="SalesOrderItem.id")
    payments = relationship("Payment", back_populates="sales_order", order_by="Payment.id")


class SalesOrderItem(Base):
    __tablename__ = "sales_order_items"
    __table_args__ = (
        Index("idx_item_order", "sales_order_id"),
        Index("idx_item_concept", "concept_type"),
    )

    id = Column(Integer, primary_key=True)
    sales_order_id = Column(Integer, ForeignKey("sales_orders.id", ondelete="CASCADE"), nullable=False)

    concept_type = Column(String(30), nullable=False)
    description = Column(String(200), nullable=True)

    qty = Column(Integer, nullable=False, default=1)
    unit_price = Column(Numeric(12, 2), nullable=False)
    total = Column(Numeric(12, 2), nullable=False)
    discount = Column(Numeric(12, 2), nullable=False, default=0)

    is_paid = Column(Boolean, default=False, nullable=False)
    paid_at = Column(DateTime(timezone=True), nullable=True)
    payment_method = Column(String(20), nullable=True)

    created_at = Column(DateTime(timezone=True), default=utcnow)

    sales_order = relationship("SalesOrder", back_populates="items")


class Payment(Base):
    """
    Asiento de pago. Un pago COMPLETO puede agrupar sub-pagos PARCIAL
    (parent_payment_id) cuando el cliente paga con varios métodos.
    """
    __tablename__ = "payments"
    __table_args__ = (
        UniqueConstraint("reference", name="uq_payment_reference"),
        Index("idx_payment_order", "sales_order_id"),
        Index("idx_payment_status", "status"),
        Index("idx_payment_parent", "parent_payment_id"),
    )

    id = Column(Integer, primary_key=True)
    sales_order_id = Column(Integer, ForeignKey("sales_orders.id", ondelete="CASCADE"), nullable=False)

    amount = Column(Numeric(12, 2), nullable=False)
    payment_method = Column(String(20), nullable=False)
    reference = Column(String(40), nullable=False)
    concept = Column(String(30), nullable=False)
    status = Column(String(20), nullable=False, default=PaymentStatus.PAGADO.value)
    payment_type = Column(String(20), nullable=False, default=PaymentType.COMPLETO.value)
    parent_payment_id = Column(Integer, ForeignKey("payments.id", ondelete="CASCADE"), nullable=True)
    terminal_code = Column(String(30), nullable=True)

    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    sales_order = relationship("SalesOrder", back_populates="payments")
    parent = relationship("Payment", remote_side=[id], back_populates="children")
    children = relationship("Payment", back_populates="parent", order_by="Payment.id")
