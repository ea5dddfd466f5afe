"""
Módulo de Solicitudes - LabSync

Flujo de préstamo: creación, revisión docente, entrega en almacén y
cancelación, más la depuración periódica de solicitudes cerradas.
"""

from .router import router as requests_router
from .service import LoanRequestService
from .repository import LoanRequestRepository
from .schemas import RequestStatus

__all__ = [
    "requests_router",
    "LoanRequestService",
    "LoanRequestRepository",
    "RequestStatus"
]
