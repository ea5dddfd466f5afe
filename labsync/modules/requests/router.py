from datetime import datetime
from typing import List, Optional
from fastapi import APIRouter, Body, Depends, Query, status
from sqlalchemy.orm import Session

from labsync.config.database import get_db
from labsync.core.auth.dependencies import get_current_user, require_capability, require_roles
from labsync.core.auth.roles import Capability, Role
from labsync.core.auth.schemas import UserResponse
from .service import LoanRequestService
from .schemas import (
    LoanRequestCreate, LoanRequestCreated, LoanRequestResponse, ActionResponse,
    DeliveryResponse, WarehouseCancellation, RequestStatus, PopularMaterialReport, StudentRequestReport
)

router = APIRouter(prefix="/requests", tags=["Requests - Solicitudes de préstamo"])

# ===== SOLICITANTE (ALUMNO / DOCENTE) =====

@router.post("", response_model=LoanRequestCreated, status_code=status.HTTP_201_CREATED)
async def create_loan_request(
    request_data: LoanRequestCreate,
    current_user: UserResponse = Depends(require_capability(Capability.CREATE_REQUEST)),
    db: Session = Depends(get_db)
):
    """
    Crear solicitud agrupada de materiales

    **Reglas:**
    - Alumnos con adeudos pendientes no pueden solicitar
    - Solicitudes de docentes (o con auto_approve) nacen aprobadas
    - Las pendientes descuentan stock de inmediato
    - Si algún renglón falla no se guarda nada
    """
    service = LoanRequestService(db)
    return service.create_request(request_data, current_user)


@router.get("/mine", response_model=List[LoanRequestResponse])
async def get_my_requests(
    current_user: UserResponse = Depends(require_roles([Role.STUDENT, Role.TEACHER])),
    db: Session = Depends(get_db)
):
    """Mis solicitudes con sus materiales"""
    service = LoanRequestService(db)
    return service.get_my_requests(current_user)

# ===== DOCENTE =====

@router.get("/pending", response_model=List[LoanRequestResponse])
async def get_pending_requests(
    current_user: UserResponse = Depends(require_capability(Capability.REVIEW_REQUEST)),
    db: Session = Depends(get_db)
):
    """Solicitudes pendientes de revisión"""
    service = LoanRequestService(db)
    return service.get_requests([RequestStatus.PENDING.value])


@router.post("/{request_id}/approve", response_model=ActionResponse)
async def approve_request(
    request_id: int,
    current_user: UserResponse = Depends(require_capability(Capability.REVIEW_REQUEST)),
    db: Session = Depends(get_db)
):
    """Aprobar solicitud pendiente; aprobar una ya aprobada no cambia nada"""
    service = LoanRequestService(db)
    return service.approve_request(request_id, current_user)


@router.post("/{request_id}/reject", response_model=ActionResponse)
async def reject_request(
    request_id: int,
    current_user: UserResponse = Depends(require_capability(Capability.REVIEW_REQUEST)),
    db: Session = Depends(get_db)
):
    """Rechazar solicitud; el stock reservado regresa al inventario"""
    service = LoanRequestService(db)
    return service.reject_request(request_id, current_user)

# ===== ALMACÉN =====

@router.get("/approved", response_model=List[LoanRequestResponse])
async def get_approved_requests(
    current_user: UserResponse = Depends(require_roles([Role.WAREHOUSE])),
    db: Session = Depends(get_db)
):
    """Solicitudes aprobadas listas para entregar"""
    service = LoanRequestService(db)
    return service.get_requests([RequestStatus.APPROVED.value])


@router.post("/{request_id}/deliver", response_model=DeliveryResponse)
async def deliver_request(
    request_id: int,
    current_user: UserResponse = Depends(require_capability(Capability.DELIVER_REQUEST)),
    db: Session = Depends(get_db)
):
    """
    Entregar solicitud aprobada

    Genera un adeudo por cada material entregado.
    """
    service = LoanRequestService(db)
    return service.deliver_request(request_id, current_user)


@router.post("/{request_id}/cancel", response_model=ActionResponse)
async def cancel_request(
    request_id: int,
    cancellation: Optional[WarehouseCancellation] = Body(None),
    current_user: UserResponse = Depends(require_roles([Role.STUDENT, Role.WAREHOUSE])),
    db: Session = Depends(get_db)
):
    """
    Cancelar solicitud

    - Alumno: solo su propia solicitud pendiente; se elimina y se restaura el stock
    - Almacén: cancelación lógica de pendientes o aprobadas, con motivo opcional
    """
    service = LoanRequestService(db)
    return service.cancel_request(request_id, current_user, cancellation)

# ===== CONSULTA GENERAL =====

@router.get("", response_model=List[LoanRequestResponse])
async def list_requests(
    status_filter: Optional[List[RequestStatus]] = Query(None, alias="status", description="Filtrar por estado"),
    date_from: Optional[datetime] = Query(None, alias="from", description="Fecha de solicitud desde"),
    date_to: Optional[datetime] = Query(None, alias="to", description="Fecha de solicitud hasta"),
    material_type: Optional[str] = Query(None, alias="type", description="Solo solicitudes con este tipo de material"),
    user_id: Optional[int] = Query(None, gt=0, description="Solicitante"),
    search: Optional[str] = Query(None, alias="q", max_length=100, description="Folio, alumno, revisor o motivo"),
    current_user: UserResponse = Depends(require_roles([Role.TEACHER, Role.ADMIN])),
    db: Session = Depends(get_db)
):
    """
    Todas las solicitudes con filtros opcionales

    Los filtros se combinan; `type` inválido es un 400.
    """
    service = LoanRequestService(db)
    statuses = [s.value for s in status_filter] if status_filter else None
    return service.get_requests(
        statuses,
        date_from=date_from,
        date_to=date_to,
        material_type=material_type,
        user_id=user_id,
        search=search
    )

# ===== REPORTES =====

@router.get("/reports/popular-materials", response_model=List[PopularMaterialReport])
async def get_popular_materials(
    limit: int = Query(20, ge=1, le=100),
    current_user: UserResponse = Depends(require_roles([Role.TEACHER, Role.ADMIN])),
    db: Session = Depends(get_db)
):
    """Materiales más solicitados en solicitudes aprobadas o entregadas"""
    service = LoanRequestService(db)
    return service.get_popular_materials(limit)


@router.get("/reports/students", response_model=List[StudentRequestReport])
async def get_student_report(
    user_id: Optional[int] = Query(None, gt=0, description="Un solo alumno"),
    current_user: UserResponse = Depends(require_roles([Role.TEACHER, Role.ADMIN])),
    db: Session = Depends(get_db)
):
    """Solicitudes por alumno desglosadas por estado"""
    service = LoanRequestService(db)
    return service.get_student_report(user_id)


@router.get("/{request_id}", response_model=LoanRequestResponse)
async def get_request_detail(
    request_id: int,
    current_user: UserResponse = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Detalle de una solicitud; un alumno solo ve las suyas"""
    service = LoanRequestService(db)
    return service.get_request_detail(request_id, current_user)
