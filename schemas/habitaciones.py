"""
Schemas Pydantic para el tablero de habitaciones:
ocupación, check-out y pagos.
"""

from datetime import datetime
from decimal import Decimal
from typing import List, Optional, Dict, Any
from pydantic import BaseModel, Field, validator
from enum import Enum


# ========================================================================
# ENUMS
# ========================================================================

class MetodoPagoEnum(str, Enum):
    EFECTIVO = "EFECTIVO"
    TARJETA = "TARJETA"
    TRANSFERENCIA = "TRANSFERENCIA"


class EstadoHabitacionEnum(str, Enum):
    LIBRE = "LIBRE"
    OCUPADA = "OCUPADA"
    SUCIA = "SUCIA"
    BLOQUEADA = "BLOQUEADA"


# ========================================================================
# PAGOS
# ========================================================================

class PaymentEntryRequest(BaseModel):
    """Una porción del pago (un método)"""
    method: MetodoPagoEnum
    amount: Decimal = Field(..., gt=0)
    reference: Optional[str] = Field(None, max_length=40)
    terminal: Optional[str] = Field(None, max_length=30)

    @validator("method", pre=True)
    def normalizar_metodo(cls, v):
        if isinstance(v, str):
            return v.strip().upper()
        return v


class VehicleInfo(BaseModel):
    plate: Optional[str] = Field(None, max_length=20)
    brand: Optional[str] = Field(None, max_length=50)
    model: Optional[str] = Field(None, max_length=50)

    @validator("plate")
    def normalizar_placa(cls, v):
        if v:
            return v.strip().upper()
        return v


# ========================================================================
# OCUPACIÓN
# ========================================================================

class StartStayRequest(BaseModel):
    people: int = Field(..., ge=1)
    payments: List[PaymentEntryRequest] = Field(default_factory=list)
    vehicle: Optional[VehicleInfo] = None
    usuario: str = "admin"


class QuickCheckinRequest(BaseModel):
    """Entrada sin cobro; actual_entry_time permite registrar la hora real de llegada"""
    people: int = Field(..., ge=1)
    vehicle: Optional[VehicleInfo] = None
    actual_entry_time: Optional[datetime] = None
    usuario: str = "admin"


class ChangeRoomRequest(BaseModel):
    new_room_id: int
    keep_time: bool = True
    reason: Optional[str] = Field(None, max_length=200)
    usuario: str = "admin"


class RefundInfo(BaseModel):
    amount: Decimal = Field(default=Decimal("0"), ge=0)
    method: Optional[MetodoPagoEnum] = None
    notes: Optional[str] = Field(None, max_length=200)


class CancelStayRequest(BaseModel):
    reason: str = Field(..., min_length=1, max_length=200)
    refund: Optional[RefundInfo] = None
    usuario: str = "admin"

    @validator("reason")
    def motivo_no_vacio(cls, v):
        if not v.strip():
            raise ValueError("El motivo no puede estar vacío")
        return v.strip()


class RoomStatusRequest(BaseModel):
    status: EstadoHabitacionEnum
    usuario: str = "admin"


# ========================================================================
# CHECK-OUT
# ========================================================================

class CheckoutInfo(BaseModel):
    """Lo que devolvió la preparación del check-out"""
    sales_order_id: int
    remaining_amount: Decimal


class SettleRequest(BaseModel):
    checkout_info: CheckoutInfo
    payments: List[PaymentEntryRequest] = Field(default_factory=list)
    usuario: str = "admin"


class ItemSelection(BaseModel):
    item_id: int
    discount: Decimal = Field(default=Decimal("0"), ge=0)


class PayItemsRequest(BaseModel):
    items: List[ItemSelection] = Field(..., min_items=1)
    payments: List[PaymentEntryRequest] = Field(default_factory=list)
    usuario: str = "admin"

    @validator("items")
    def sin_repetidos(cls, v):
        ids = [sel.item_id for sel in v]
        if len(ids) != len(set(ids)):
            raise ValueError("Hay partidas repetidas en la selección")
        return v


# ========================================================================
# RESPUESTAS
# ========================================================================

class ActionResponse(BaseModel):
    """Respuesta estándar de una acción del operador"""
    success: bool = True
    message: str
    data: Optional[Dict[str, Any]] = None


class SalesOrderItemRead(BaseModel):
    id: int
    concept_type: str
    description: Optional[str] = None
    qty: int
    unit_price: Decimal
    total: Decimal
    discount: Decimal
    is_paid: bool
    paid_at: Optional[datetime] = None
    payment_method: Optional[str] = None

    class Config:
        from_attributes = True


class PaymentRead(BaseModel):
    id: int
    amount: Decimal
    payment_method: str
    reference: str
    concept: str
    status: str
    payment_type: str
    parent_payment_id: Optional[int] = None
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class StayItemsResponse(BaseModel):
    stay_id: int
    sales_order_id: int
    total: Decimal
    paid_amount: Decimal
    remaining_amount: Decimal
    status: str
    items: List[SalesOrderItemRead]
    payments: List[PaymentRead]


# ========================================================================
# ALTA DE TIPOS Y HABITACIONES
# ========================================================================

class RoomTypeCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=60)
    base_price: Decimal = Field(..., ge=0)
    weekday_hours: Optional[int] = Field(None, gt=0)
    weekend_hours: Optional[int] = Field(None, gt=0)
    extra_person_price: Decimal = Field(default=Decimal("0"), ge=0)
    extra_hour_price: Decimal = Field(default=Decimal("0"), ge=0)
    max_people: int = Field(default=2, ge=1)
    is_hotel: bool = False


class RoomTypeRead(RoomTypeCreate):
    id: int
    is_active: bool = True
    rooms_count: int = 0

    class Config:
        from_attributes = True


class RoomCreate(BaseModel):
    number: str = Field(..., min_length=1, max_length=10)
    room_type_id: int
    notes: Optional[str] = None


class RoomRead(BaseModel):
    id: int
    number: str
    room_type_id: int
    status: str
    notes: Optional[str] = None
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True
