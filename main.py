import asyncio

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from starlette.concurrency import run_in_threadpool

from config import ENABLE_TOLERANCE_SWEEP, TOLERANCE_SWEEP_SECONDS
from database.conexion import Base, engine, SessionLocal
import models  # registra todos los modelos
from services.board_service import BoardService
from utils.logging_utils import log_error, log_event

try:
    Base.metadata.create_all(bind=engine)
    print("[OK] Tablas creadas (o ya existian)")
except Exception as e:
    print(f"[ERROR] Error creando tablas: {e}")

app = FastAPI(title="Motel POS - Tablero de habitaciones")

origins = [
    "http://localhost:5173",
    "http://127.0.0.1:5173",
    "http://localhost:3000",
]
app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

from endpoints import habitaciones
app.include_router(habitaciones.router)


def _sweep_once():
    db = SessionLocal()
    try:
        return BoardService.sweep_tolerances(db)
    finally:
        db.close()


async def _tolerance_sweep_loop():
    """Barrido periódico de tolerancias vencidas (cada TOLERANCE_SWEEP_SECONDS)"""
    while True:
        await asyncio.sleep(TOLERANCE_SWEEP_SECONDS)
        try:
            cobrados = await run_in_threadpool(_sweep_once)
            if cobrados:
                log_event("tolerance_sweep", "sistema", "Barrido", f"cobrados={len(cobrados)}")
        except Exception as e:
            log_error("tolerance_sweep", "sistema", "Barrido", str(e))


@app.on_event("startup")
async def start_tolerance_sweep():
    if ENABLE_TOLERANCE_SWEEP:
        app.state.sweep_task = asyncio.create_task(_tolerance_sweep_loop())


@app.on_event("shutdown")
async def stop_tolerance_sweep():
    task = getattr(app.state, "sweep_task", None)
    if task:
        task.cancel()


@app.get("/")
def read_root():
    return {"message": "Motel POS - tablero de habitaciones"}
