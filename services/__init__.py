"""
Servicios de negocio del tablero de habitaciones
"""

from .occupancy_service import OccupancyService
from .checkout_service import CheckoutService
from .board_service import BoardService
from .ledger_gateway import LedgerGateway, default_gateway

__all__ = [
    "OccupancyService",
    "CheckoutService",
    "BoardService",
    "LedgerGateway",
    "default_gateway",
]
