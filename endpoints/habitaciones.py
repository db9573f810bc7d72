"""
Endpoints del tablero de habitaciones
Acciones del operador sobre estancias: personas, tolerancia, horas extra,
entrada, cambio/cancelación y check-out.
"""
from typing import List, Optional
from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.orm import Session
from sqlalchemy import func

from database import conexion
from models.core import Room, RoomStay, RoomType
from schemas.habitaciones import (
    ActionResponse, StartStayRequest, QuickCheckinRequest, ChangeRoomRequest,
    CancelStayRequest, RoomStatusRequest, SettleRequest, PayItemsRequest,
    StayItemsResponse, RoomTypeCreate, RoomTypeRead, RoomCreate, RoomRead,
)
from services import BoardService, CheckoutService, OccupancyService
from services.common import CONFLICT, NOT_FOUND, PAYMENT_REJECTED, STALE_TOLERANCE, STORE_ERROR
from utils.logging_utils import log_event

router = APIRouter(prefix="/api/rooms-board", tags=["rooms-board"])

_STATUS_BY_ERROR = {
    NOT_FOUND: status.HTTP_404_NOT_FOUND,
    CONFLICT: status.HTTP_409_CONFLICT,
    STALE_TOLERANCE: status.HTTP_409_CONFLICT,
    PAYMENT_REJECTED: status.HTTP_400_BAD_REQUEST,
    STORE_ERROR: status.HTTP_500_INTERNAL_SERVER_ERROR,
}


def _responder(exitoso: bool, mensaje: str, resultado: Optional[dict]) -> dict:
    """Traduce la tupla del servicio a respuesta o HTTPException"""
    if not exitoso:
        error_code = (resultado or {}).get("error_code")
        raise HTTPException(
            status_code=_STATUS_BY_ERROR.get(error_code, status.HTTP_400_BAD_REQUEST),
            detail=mensaje,
        )
    return {"success": True, "message": mensaje, "data": resultado}


# ========================================================================
# TABLERO
# ========================================================================

@router.get("/")
async def get_board(db: Session = Depends(conexion.get_db)):
    return BoardService.list_rooms(db)


@router.post("/sweep")
async def sweep_tolerances(db: Session = Depends(conexion.get_db), usuario: str = Query("sistema")):
    cobrados = BoardService.sweep_tolerances(db, usuario=usuario)
    return {"charged": cobrados, "count": len(cobrados)}


@router.get("/reminders")
async def checkout_reminders(db: Session = Depends(conexion.get_db)):
    return BoardService.checkout_reminders(db)


# ========================================================================
# TIPOS Y HABITACIONES
# ========================================================================

@router.get("/types", response_model=List[RoomTypeRead])
async def list_room_types(db: Session = Depends(conexion.get_db)):
    tipos = db.query(RoomType).filter(RoomType.is_active == True).order_by(RoomType.name).all()
    result = []
    for tipo in tipos:
        cantidad = db.query(func.count(Room.id)).filter(Room.room_type_id == tipo.id).scalar()
        result.append({
            "id": tipo.id, "name": tipo.name, "base_price": tipo.base_price or 0,
            "weekday_hours": tipo.weekday_hours, "weekend_hours": tipo.weekend_hours,
            "extra_person_price": tipo.extra_person_price or 0, "extra_hour_price": tipo.extra_hour_price or 0,
            "max_people": tipo.max_people or 2, "is_hotel": tipo.is_hotel, "is_active": tipo.is_active,
            "rooms_count": cantidad or 0,
        })
    return result


@router.post("/types", response_model=RoomTypeRead, status_code=status.HTTP_201_CREATED)
async def create_room_type(room_type: RoomTypeCreate, db: Session = Depends(conexion.get_db)):
    existente = db.query(RoomType).filter(RoomType.name == room_type.name).first()
    if existente:
        raise HTTPException(status_code=400, detail=f"Ya existe un tipo de habitación '{room_type.name}'")
    nuevo = RoomType(**room_type.dict())
    db.add(nuevo)
    db.commit()
    db.refresh(nuevo)
    log_event("rooms", "admin", "Crear tipo de habitación", f"id={nuevo.id}, nombre={nuevo.name}")
    return nuevo


@router.post("/rooms", response_model=RoomRead, status_code=status.HTTP_201_CREATED)
async def create_room(room: RoomCreate, db: Session = Depends(conexion.get_db)):
    tipo = db.query(RoomType).filter(RoomType.id == room.room_type_id).first()
    if not tipo:
        raise HTTPException(status_code=404, detail="Tipo de habitación no encontrado")
    if db.query(Room).filter(Room.number == room.number).first():
        raise HTTPException(status_code=400, detail=f"La habitación {room.number} ya existe")
    nueva = Room(**room.dict())
    db.add(nueva)
    db.commit()
    db.refresh(nueva)
    log_event("rooms", "admin", "Crear habitación", f"id={nueva.id}, numero={nueva.number}")
    return nueva


# ========================================================================
# OCUPACIÓN
# ========================================================================

@router.post("/{room_id}/add-person", response_model=ActionResponse)
async def add_person(room_id: int, db: Session = Depends(conexion.get_db), usuario: str = Query("admin")):
    return _responder(*OccupancyService.add_person(db, room_id, usuario))


@router.post("/{room_id}/remove-person", response_model=ActionResponse)
async def remove_person(room_id: int, db: Session = Depends(conexion.get_db), usuario: str = Query("admin")):
    return _responder(*OccupancyService.remove_person(db, room_id, usuario))


@router.post("/{room_id}/person-left", response_model=ActionResponse)
async def person_left_returning(room_id: int, db: Session = Depends(conexion.get_db), usuario: str = Query("admin")):
    return _responder(*OccupancyService.person_left_returning(db, room_id, usuario))


@router.post("/{room_id}/extra-hour", response_model=ActionResponse)
async def add_extra_hour(room_id: int, db: Session = Depends(conexion.get_db), usuario: str = Query("admin")):
    return _responder(*OccupancyService.add_extra_hour(db, room_id, usuario))


@router.post("/{room_id}/start-stay", response_model=ActionResponse, status_code=status.HTTP_201_CREATED)
async def start_stay(room_id: int, datos: StartStayRequest, db: Session = Depends(conexion.get_db)):
    return _responder(*OccupancyService.start_stay(
        db, room_id, datos.people, datos.payments, datos.usuario, vehicle=datos.vehicle,
    ))


@router.post("/{room_id}/quick-checkin", response_model=ActionResponse, status_code=status.HTTP_201_CREATED)
async def quick_checkin(room_id: int, datos: QuickCheckinRequest, db: Session = Depends(conexion.get_db)):
    return _responder(*OccupancyService.quick_checkin(
        db, room_id, datos.people, datos.usuario,
        vehicle=datos.vehicle, actual_entry_time=datos.actual_entry_time,
    ))


@router.post("/{room_id}/status", response_model=ActionResponse)
async def update_room_status(room_id: int, datos: RoomStatusRequest, db: Session = Depends(conexion.get_db)):
    return _responder(*OccupancyService.update_room_status(db, room_id, datos.status.value, datos.usuario))


@router.post("/stays/{stay_id}/change-room", response_model=ActionResponse)
async def change_room(stay_id: int, datos: ChangeRoomRequest, db: Session = Depends(conexion.get_db)):
    return _responder(*OccupancyService.change_room(
        db, stay_id, datos.new_room_id, datos.keep_time, datos.usuario, reason=datos.reason,
    ))


@router.post("/stays/{stay_id}/cancel", response_model=ActionResponse)
async def cancel_stay(stay_id: int, datos: CancelStayRequest, db: Session = Depends(conexion.get_db)):
    return _responder(*OccupancyService.cancel_stay(db, stay_id, datos.reason, datos.usuario, refund=datos.refund))


# ========================================================================
# CHECK-OUT
# ========================================================================

@router.post("/{room_id}/checkout/prepare", response_model=ActionResponse)
async def prepare_checkout(room_id: int, db: Session = Depends(conexion.get_db), usuario: str = Query("admin")):
    return _responder(*CheckoutService.prepare_checkout(db, room_id, usuario))


@router.post("/{room_id}/checkout/settle", response_model=ActionResponse)
async def settle_checkout(room_id: int, datos: SettleRequest, db: Session = Depends(conexion.get_db)):
    return _responder(*CheckoutService.settle(db, room_id, datos.checkout_info, datos.payments, datos.usuario))


@router.post("/{room_id}/pay-items", response_model=ActionResponse)
async def pay_items(room_id: int, datos: PayItemsRequest, db: Session = Depends(conexion.get_db)):
    return _responder(*CheckoutService.pay_items(db, room_id, datos.items, datos.payments, datos.usuario))


@router.get("/stays/{stay_id}/items", response_model=StayItemsResponse)
async def get_stay_items(stay_id: int, db: Session = Depends(conexion.get_db)):
    stay = db.query(RoomStay).filter(RoomStay.id == stay_id).first()
    if not stay:
        raise HTTPException(status_code=404, detail="Estancia no encontrada")
    order = stay.sales_order
    return {
        "stay_id": stay.id,
        "sales_order_id": order.id,
        "total": order.total,
        "paid_amount": order.paid_amount,
        "remaining_amount": order.remaining_amount,
        "status": order.status,
        "items": order.items,
        "payments": order.payments,
    }
