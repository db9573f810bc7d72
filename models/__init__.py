"""
Archivo de inicialización del paquete models.
Expone todas las clases para que SQLAlchemy (Base.metadata) las detecte
al importar 'models'.
"""

# 1. Habitaciones y estancias (desde core.py)
from .core import (
    RoomStatus,
    StayStatus,
    ToleranceType,
    RoomType,
    Room,
    RoomStay,
    AuditEvent,
)

# 2. Facturación (desde ventas.py)
from .ventas import (
    SalesOrderStatus,
    ConceptType,
    PaymentMethod,
    PaymentStatus,
    PaymentType,
    PaymentConcept,
    MULTIPAGO,
    SalesOrder,
    SalesOrderItem,
    Payment,
)

__all__ = [
    "RoomStatus", "StayStatus", "ToleranceType",
    "RoomType", "Room", "RoomStay", "AuditEvent",
    "SalesOrderStatus", "ConceptType", "PaymentMethod", "PaymentStatus",
    "PaymentType", "PaymentConcept", "MULTIPAGO",
    "SalesOrder", "SalesOrderItem", "Payment",
]
