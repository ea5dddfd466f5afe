from typing import List
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from labsync.config.database import get_db
from labsync.core.auth.dependencies import get_current_user, require_capability, require_roles
from labsync.core.auth.roles import Capability, Role
from labsync.core.auth.schemas import UserResponse
from .service import DebtService
from .schemas import (
    SettleRequest, SettleResponse, DebtDetailResponse, DebtItemResponse, DeliveredRequestSummary,
    DamageReport, DamageResponse
)

router = APIRouter(prefix="/debts", tags=["Debts - Adeudos y devoluciones"])


@router.get("/mine", response_model=List[DebtItemResponse])
async def get_my_debts(
    current_user: UserResponse = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Mis adeudos pendientes"""
    service = DebtService(db)
    return service.get_my_debts(current_user)


@router.get("/delivered", response_model=List[DeliveredRequestSummary])
async def get_delivered_with_debt(
    current_user: UserResponse = Depends(require_roles([Role.WAREHOUSE, Role.ADMIN])),
    db: Session = Depends(get_db)
):
    """Solicitudes entregadas que aún tienen material por devolver"""
    service = DebtService(db)
    return service.get_delivered_with_debt()


@router.get("/{request_id}", response_model=DebtDetailResponse)
async def get_request_debts(
    request_id: int,
    current_user: UserResponse = Depends(require_roles([Role.WAREHOUSE, Role.ADMIN])),
    db: Session = Depends(get_db)
):
    """
    Adeudos de una solicitud

    Solo incluye renglones con cantidad pendiente; lista vacía significa liquidada.
    """
    service = DebtService(db)
    return service.get_request_debts(request_id)


@router.post("/{request_id}/settle", response_model=SettleResponse)
async def settle_debts(
    request_id: int,
    settle_data: SettleRequest,
    current_user: UserResponse = Depends(require_capability(Capability.MODIFY_STOCK)),
    db: Session = Depends(get_db)
):
    """
    Registrar devolución total o parcial

    **Validaciones:**
    - La cantidad devuelta no puede exceder lo pendiente
    - El renglón debe tener adeudo en esta solicitud
    - El material devuelto regresa al stock
    """
    service = DebtService(db)
    return service.settle_debts(request_id, settle_data, current_user)


@router.post("/{request_id}/damaged", response_model=DamageResponse)
async def report_damaged_material(
    request_id: int,
    report: DamageReport,
    current_user: UserResponse = Depends(require_capability(Capability.MODIFY_STOCK)),
    db: Session = Depends(get_db)
):
    """
    Reportar material dañado

    La cantidad se suma al adeudo del renglón; el total pendiente no puede
    superar lo entregado.
    """
    service = DebtService(db)
    return service.report_damaged(request_id, report, current_user)
