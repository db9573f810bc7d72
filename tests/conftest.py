"""
Fixtures compartidas: base SQLite en memoria y catálogo mínimo de habitaciones.
"""

import os
import sys
from datetime import datetime
from decimal import Decimal
from pathlib import Path

# Agregar directorio raíz al PYTHONPATH para imports
sys.path.insert(0, str(Path(__file__).parent.parent))

os.environ["DATABASE_URL"] = "sqlite://"
os.environ["ENABLE_TOLERANCE_SWEEP"] = "false"
os.environ["HOTEL_TIMEZONE"] = "America/Mexico_City"

import pytest
import pytz
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from database.conexion import Base
import models  # registra todos los modelos
from models import Room, RoomType, RoomStatus

engine = create_engine(
    "sqlite://",
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db():
    Base.metadata.create_all(bind=engine)
    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def otra_sesion(db):
    """Segunda sesión sobre la misma base (otra terminal del tablero)"""
    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def now():
    """Martes 10/03/2026 12:00 hora de Ciudad de México (18:00 UTC)"""
    return datetime(2026, 3, 10, 18, 0, tzinfo=pytz.utc)


@pytest.fixture
def rooms(db):
    """
    101, 102: motel Sencilla (300 base, 50 persona extra, 80 hora extra, máx 4)
    103: motel Económica (100 base, sin extras, máx 2)
    104: Sencilla SUCIA
    201: Hotel (900 por noche, máx 2)
    """
    sencilla = RoomType(
        name="Sencilla", base_price=Decimal("300"), weekday_hours=12, weekend_hours=8,
        extra_person_price=Decimal("50"), extra_hour_price=Decimal("80"), max_people=4,
    )
    economica = RoomType(
        name="Económica", base_price=Decimal("100"), weekday_hours=12, weekend_hours=8,
        extra_person_price=Decimal("0"), extra_hour_price=Decimal("0"), max_people=2,
    )
    hotel = RoomType(
        name="Hotel", base_price=Decimal("900"), extra_person_price=Decimal("0"),
        extra_hour_price=Decimal("0"), max_people=2, is_hotel=True,
    )
    db.add_all([sencilla, economica, hotel])
    db.flush()

    habitaciones = {
        "101": Room(number="101", room_type_id=sencilla.id),
        "102": Room(number="102", room_type_id=sencilla.id),
        "103": Room(number="103", room_type_id=economica.id),
        "104": Room(number="104", room_type_id=sencilla.id, status=RoomStatus.SUCIA.value),
        "201": Room(number="201", room_type_id=hotel.id),
    }
    db.add_all(habitaciones.values())
    db.commit()
    return habitaciones
