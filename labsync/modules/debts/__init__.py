"""
Módulo de Adeudos - LabSync

Material entregado pendiente de devolución y su liquidación.
"""

from .router import router as debts_router
from .service import DebtService

__all__ = ["debts_router", "DebtService"]
