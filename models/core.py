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
    JSON,
)
from sqlalchemy.orm import relationship

from database.conexion import Base
from utils.timezone import utcnow


# ============================================================================
# ENUMS
# ============================================================================

class RoomStatus(str, enum.Enum):
    LIBRE = "LIBRE"
    OCUPADA = "OCUPADA"
    SUCIA = "SUCIA"
    BLOQUEADA = "BLOQUEADA"


class StayStatus(str, enum.Enum):
    ACTIVA = "ACTIVA"
    FINALIZADA = "FINALIZADA"
    CANCELADA = "CANCELADA"


class ToleranceType(str, enum.Enum):
    ROOM_EMPTY = "ROOM_EMPTY"    # Habitación vacía (todos salieron)
    PERSON_LEFT = "PERSON_LEFT"  # Una persona salió


# ============================================================================
# HABITACIONES
# ============================================================================

class RoomType(Base):
    """Plantilla de precio y política (motel por horas u hotel por noche)"""
    __tablename__ = "room_types"
    __table_args__ = (
        UniqueConstraint("name", name="uq_roomtype_name"),
    )

    id = Column(Integer, primary_key=True)
    name = Column(String(60), nullable=False)
    base_price = Column(Numeric(12, 2), nullable=True)
    weekday_hours = Column(Integer, nullable=True)
    weekend_hours = Column(Integer, nullable=True)
    extra_person_price = Column(Numeric(12, 2), nullable=True)
    extra_hour_price = Column(Numeric(12, 2), nullable=True)
    max_people = Column(Integer, nullable=True)
    # Hotel: sin tolerancia ni personas extra, check-out fijo al mediodía siguiente
    is_hotel = Column(Boolean, default=False, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)


class Room(Base):
    __tablename__ = "rooms"
    __table_args__ = (
        UniqueConstraint("number", name="uq_room_number"),
        Index("idx_room_tipo", "room_type_id"),
        Index("idx_room_status", "status"),
    )

    id = Column(Integer, primary_key=True)
    number = Column(String(10), nullable=False)
    room_type_id = Column(Integer, ForeignKey("room_types.id"), nullable=False)

    # LIBRE | OCUPADA | SUCIA | BLOQUEADA
    status = Column(String(20), nullable=False, default=RoomStatus.LIBRE.value)
    notes = Column(Text, nullable=True)

    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    room_type = relationship("RoomType")
    stays = relationship("RoomStay", back_populates="room", order_by="RoomStay.id")

    def get_active_stay(self):
        """Retorna la estancia ACTIVA o None"""
        active = [s for s in self.stays if s.status == StayStatus.ACTIVA.value]
        return active[0] if active else None


class RoomStay(Base):
    """
    Un episodio de ocupación de una habitación.
    Dueña 1:1 de la orden de venta que acumula sus cargos.
    """
    __tablename__ = "room_stays"
    __table_args__ = (
        Index("idx_stay_room", "room_id"),
        Index("idx_stay_status", "status"),
        UniqueConstraint("sales_order_id", name="uq_stay_sales_order"),
    )

    id = Column(Integer, primary_key=True)
    room_id = Column(Integer, ForeignKey("rooms.id", ondelete="RESTRICT"), nullable=False)
    sales_order_id = Column(Integer, ForeignKey("sales_orders.id"), nullable=False)

    # ACTIVA | FINALIZADA | CANCELADA
    status = Column(String(20), nullable=False, default=StayStatus.ACTIVA.value)

    check_in_at = Column(DateTime(timezone=True), nullable=False)
    expected_check_out_at = Column(DateTime(timezone=True), nullable=True)
    actual_check_out_at = Column(DateTime(timezone=True), nullable=True)

    current_people = Column(Integer, nullable=False, default=2)
    total_people = Column(Integer, nullable=False, default=2)

    # Tolerancia: started_at y type van siempre juntos
    tolerance_started_at = Column(DateTime(timezone=True), nullable=True)
    tolerance_type = Column(String(20), nullable=True)
    tolerance_charged_at = Column(DateTime(timezone=True), nullable=True)

    # Horas de retraso ya cobradas al preparar el check-out
    overage_hours_charged = Column(Integer, nullable=False, default=0)

    vehicle_plate = Column(String(20), nullable=True)
    vehicle_brand = Column(String(50), nullable=True)
    vehicle_model = Column(String(50), nullable=True)

    cancel_reason = Column(Text, nullable=True)
    notes = Column(Text, nullable=True)

    version = Column(Integer, nullable=False)

    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    __mapper_args__ = {"version_id_col": version}

    room = relationship("Room", back_populates="stays")
    sales_order = relationship("SalesOrder", back_populates="stay")

    def is_active(self):
        return self.status == StayStatus.ACTIVA.value

    def has_tolerance(self):
        return self.tolerance_started_at is not None

    def clear_tolerance(self):
        self.tolerance_started_at = None
        self.tolerance_type = None
        self.tolerance_charged_at = None


class AuditEvent(Base):
    __tablename__ = "audit_events"
    __table_args__ = (
        Index("idx_audit_entity", "entity_type", "entity_id"),
        Index("idx_audit_time", "timestamp"),
        Index("idx_audit_action", "action"),
    )

    id = Column(Integer, primary_key=True)

    # "room" | "room_stay" | "sales_order"
    entity_type = Column(String(30), nullable=False)
    entity_id = Column(Integer, nullable=False)

    action = Column(String(50), nullable=False)  # ADD_PERSON, CHECKOUT, ROOM_MOVE, PAYMENT...
    usuario = Column(String(50), nullable=True)

    timestamp = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    descripcion = Column(Text, nullable=True)
    payload = Column(JSON, nullable=True)
