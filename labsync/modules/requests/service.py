import logging
import secrets
from datetime import datetime, timedelta
from typing import List, Optional
from fastapi import HTTPException, status
from sqlalchemy.orm import Session

from labsync.config.database import transaction
from labsync.config.settings import settings
from labsync.core.auth.roles import Role
from labsync.core.auth.schemas import UserResponse
from labsync.modules.materials.repository import MaterialRepository, StockLedger, MATERIAL_NOT_FOUND
from labsync.modules.materials.resolver import resolve_material_type
from labsync.modules.materials.schemas import ChangeType
from labsync.shared.database.models import LoanRequest
from .repository import LoanRequestRepository
from .schemas import (
    LoanRequestCreate, LoanRequestCreated, LoanRequestResponse, RequestItemResponse,
    ActionResponse, DeliveryResponse, WarehouseCancellation, RequestStatus,
    PopularMaterialReport, StudentRequestReport
)

logger = logging.getLogger(__name__)

REQUEST_NOT_FOUND = "Solicitud no encontrada"
UNASSIGNED_REVIEWER = "Sin asignar"


def new_folio() -> str:
    """2 bytes aleatorios en hexadecimal mayúscula"""
    return secrets.token_hex(2).upper()


class LoanRequestService:

    def __init__(self, db: Session):
        self.db = db
        self.repository = LoanRequestRepository(db)
        self.materials = MaterialRepository(db)
        self.ledger = StockLedger(db)

    # ===== CREACIÓN =====

    def create_request(self, request_data: LoanRequestCreate, requester: UserResponse) -> LoanRequestCreated:
        """
        Crear solicitud agrupada

        Las solicitudes pendientes descuentan stock al crearse y quedan con
        stock reservado; las aprobadas desde su creación lo descuentan al
        entregarse. Todo ocurre en una sola transacción.
        """
        if requester.role not in (Role.STUDENT.value, Role.TEACHER.value):
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Solo alumnos y docentes pueden crear solicitudes"
            )

        is_student = requester.role == Role.STUDENT.value

        if is_student and self.repository.has_outstanding_debt(requester.id):
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="Usuario con adeudos pendientes"
            )

        # Validar renglones antes de escribir
        items = []
        for item in request_data.items:
            table = resolve_material_type(item.type)
            if self.materials.get_material_name(table.tag.value, item.material_id) is None:
                raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=MATERIAL_NOT_FOUND)
            if is_student:
                available = self.ledger.available(table.tag.value, item.material_id)
                if available < item.quantity:
                    raise HTTPException(
                        status_code=status.HTTP_400_BAD_REQUEST,
                        detail=f"Stock insuficiente para el material {item.material_id} ({table.tag.value}). "
                               f"Disponible: {available}, Solicitado: {item.quantity}"
                    )
            items.append((table.tag.value, item.material_id, item.quantity))

        approved = self._is_approved_at_creation(request_data, requester)
        reviewer_id, reviewer_name = self._resolve_reviewer(request_data.reviewer_id, requester, approved)
        group = self.repository.get_group(requester.group_id)

        with transaction(self.db):
            loan_request = self.repository.create_request({
                "user_id": requester.id,
                "request_date": request_data.request_date or datetime.utcnow(),
                "created_at": datetime.utcnow(),
                "status": RequestStatus.APPROVED.value if approved else RequestStatus.PENDING.value,
                "reason": request_data.reason,
                "reviewer_id": reviewer_id,
                "student_name": requester.name,
                "reviewer_name": reviewer_name,
                "folio": self._generate_folio(),
                "group_id": requester.group_id,
                "debt_amount": request_data.debt_amount,
                "stock_reserved": not approved,
            })

            for material_type, material_id, quantity in items:
                self.repository.add_item(loan_request.id, material_id, material_type, quantity)
                if not approved:
                    self.ledger.decrement(
                        material_type, material_id, quantity,
                        ChangeType.RESERVE.value,
                        user_id=requester.id,
                        reference_id=loan_request.id
                    )

            response = LoanRequestCreated(
                message="Solicitud creada correctamente",
                request_id=loan_request.id,
                folio=loan_request.folio,
                status=RequestStatus(loan_request.status),
                reviewer_name=reviewer_name,
                group_name=group.name if group else None
            )

        logger.info(
            f"Solicitud {response.folio} (#{response.request_id}) creada por usuario {requester.id} "
            f"con {len(items)} renglones, estado {response.status.value}"
        )
        return response

    def _is_approved_at_creation(self, request_data: LoanRequestCreate, requester: UserResponse) -> bool:
        if requester.role == Role.TEACHER.value:
            return True
        return request_data.auto_approve and settings.allow_student_auto_approve

    def _resolve_reviewer(self, reviewer_id: Optional[int], requester: UserResponse, approved: bool):
        """Revisor: el propio solicitante si ya va aprobada; si no, el docente indicado o el primero activo"""
        if approved:
            return requester.id, requester.name

        if reviewer_id is not None:
            teacher = self.repository.get_active_teacher(reviewer_id)
            if teacher:
                return teacher.id, teacher.name

        teacher = self.repository.get_first_active_teacher()
        if teacher:
            return teacher.id, teacher.name

        return None, UNASSIGNED_REVIEWER

    def _generate_folio(self) -> str:
        """Folio corto de 4 caracteres hexadecimales, regenerado si ya existe"""
        for _ in range(settings.folio_max_attempts):
            folio = new_folio()
            if not self.repository.folio_exists(folio):
                return folio

        logger.error(f"No se pudo generar un folio único tras {settings.folio_max_attempts} intentos")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="No se pudo generar un folio único"
        )

    # ===== REVISIÓN (DOCENTE) =====

    def approve_request(self, request_id: int, reviewer: UserResponse) -> ActionResponse:
        with transaction(self.db):
            loan_request = self._get_locked(request_id)

            if loan_request.status == RequestStatus.APPROVED.value:
                return ActionResponse(
                    message="La solicitud ya estaba aprobada",
                    request_id=request_id,
                    status=RequestStatus.APPROVED
                )

            if loan_request.status != RequestStatus.PENDING.value:
                raise HTTPException(
                    status_code=status.HTTP_400_BAD_REQUEST,
                    detail=f"No se puede aprobar una solicitud en estado {loan_request.status}"
                )

            loan_request.status = RequestStatus.APPROVED.value

        logger.info(f"Solicitud #{request_id} aprobada por docente {reviewer.id}")
        return ActionResponse(message="Solicitud aprobada", request_id=request_id, status=RequestStatus.APPROVED)

    def reject_request(self, request_id: int, reviewer: UserResponse) -> ActionResponse:
        """Rechazar pendiente o aprobada; el stock reservado regresa al inventario"""
        with transaction(self.db):
            loan_request = self._get_locked(request_id)

            if loan_request.status not in (RequestStatus.PENDING.value, RequestStatus.APPROVED.value):
                raise HTTPException(
                    status_code=status.HTTP_400_BAD_REQUEST,
                    detail=f"No se puede rechazar una solicitud en estado {loan_request.status}"
                )

            self._release_reserved_stock(loan_request, reviewer.id)
            loan_request.status = RequestStatus.REJECTED.value

        logger.info(f"Solicitud #{request_id} rechazada por docente {reviewer.id}")
        return ActionResponse(message="Solicitud rechazada", request_id=request_id, status=RequestStatus.REJECTED)

    # ===== ENTREGA (ALMACÉN) =====

    def deliver_request(self, request_id: int, warehouse_user: UserResponse) -> DeliveryResponse:
        """
        Entregar solicitud aprobada y generar un adeudo por renglón

        Si la solicitud no tiene stock reservado (se creó aprobada) el
        descuento se hace aquí; si falla no se entrega nada.
        """
        with transaction(self.db):
            loan_request = self._get_locked(request_id)

            if loan_request.status != RequestStatus.APPROVED.value:
                raise HTTPException(
                    status_code=status.HTTP_400_BAD_REQUEST,
                    detail="Solo se pueden entregar solicitudes aprobadas"
                )

            if not loan_request.stock_reserved:
                for item in loan_request.items:
                    self.ledger.decrement(
                        item.material_type, item.material_id, item.quantity,
                        ChangeType.DELIVER.value,
                        user_id=warehouse_user.id,
                        reference_id=loan_request.id
                    )

            delivered_at = datetime.utcnow()
            for item in loan_request.items:
                self.repository.create_debt(loan_request, item, delivered_at)

            loan_request.status = RequestStatus.DELIVERED.value
            loan_request.delivered_at = delivered_at
            loan_request.stock_reserved = False
            debts_created = len(loan_request.items)

        logger.info(
            f"Solicitud #{request_id} entregada por almacén {warehouse_user.id}; "
            f"{debts_created} adeudos generados"
        )
        return DeliveryResponse(
            message="Solicitud entregada",
            request_id=request_id,
            status=RequestStatus.DELIVERED,
            debts_created=debts_created
        )

    # ===== CANCELACIÓN =====

    def cancel_request(self, request_id: int, user: UserResponse,
                       cancellation: Optional[WarehouseCancellation] = None) -> ActionResponse:
        if user.role == Role.STUDENT.value:
            return self._cancel_by_student(request_id, user)
        if user.role == Role.WAREHOUSE.value:
            return self._cancel_by_warehouse(request_id, user, cancellation)
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Acceso denegado: rol insuficiente"
        )

    def _cancel_by_student(self, request_id: int, student: UserResponse) -> ActionResponse:
        """El alumno cancela su solicitud pendiente: se restaura el stock y se elimina"""
        with transaction(self.db):
            loan_request = self._get_locked(request_id)

            if loan_request.user_id != student.id:
                raise HTTPException(
                    status_code=status.HTTP_403_FORBIDDEN,
                    detail="No puedes cancelar una solicitud que no es tuya"
                )

            if loan_request.status != RequestStatus.PENDING.value:
                raise HTTPException(
                    status_code=status.HTTP_400_BAD_REQUEST,
                    detail="Solo se pueden cancelar solicitudes pendientes"
                )

            self._release_reserved_stock(loan_request, student.id)
            self.repository.delete_request(loan_request)

        logger.info(f"Solicitud #{request_id} cancelada y eliminada por alumno {student.id}")
        return ActionResponse(message="Solicitud cancelada", request_id=request_id)

    def _cancel_by_warehouse(self, request_id: int, warehouse_user: UserResponse,
                             cancellation: Optional[WarehouseCancellation] = None) -> ActionResponse:
        """Cancelación lógica por almacén; una solicitud entregada tiene adeudos y no se cancela"""
        with transaction(self.db):
            loan_request = self._get_locked(request_id)

            if loan_request.status not in (RequestStatus.PENDING.value, RequestStatus.APPROVED.value):
                raise HTTPException(
                    status_code=status.HTTP_400_BAD_REQUEST,
                    detail=f"No se puede cancelar una solicitud en estado {loan_request.status}"
                )

            self._release_reserved_stock(loan_request, warehouse_user.id)
            loan_request.status = RequestStatus.CANCELLED.value
            loan_request.cancel_reason = cancellation.reason if cancellation else None

        logger.info(f"Solicitud #{request_id} cancelada por almacén {warehouse_user.id}")
        return ActionResponse(message="Solicitud cancelada", request_id=request_id, status=RequestStatus.CANCELLED)

    # ===== CONSULTAS =====

    def get_my_requests(self, user: UserResponse) -> List[LoanRequestResponse]:
        return [self._build_response(r) for r in self.repository.get_requests_by_user(user.id)]

    def get_requests(
        self,
        status_filter: Optional[List[str]] = None,
        date_from: Optional[datetime] = None,
        date_to: Optional[datetime] = None,
        material_type: Optional[str] = None,
        user_id: Optional[int] = None,
        search: Optional[str] = None
    ) -> List[LoanRequestResponse]:
        if date_from and date_to and date_from > date_to:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="La fecha inicial no puede ser posterior a la final"
            )
        if material_type is not None:
            material_type = resolve_material_type(material_type).tag.value

        loan_requests = self.repository.get_requests(
            status_filter,
            date_from=date_from,
            date_to=date_to,
            material_type=material_type,
            user_id=user_id,
            search=search.strip() if search else None
        )
        return [self._build_response(r) for r in loan_requests]

    def get_request_detail(self, request_id: int, user: UserResponse) -> LoanRequestResponse:
        loan_request = self.repository.get_request_by_id(request_id)
        # Un alumno no distingue entre ajena e inexistente
        if not loan_request or (user.role == Role.STUDENT.value and loan_request.user_id != user.id):
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=REQUEST_NOT_FOUND)
        return self._build_response(loan_request)

    # ===== REPORTES =====

    def get_popular_materials(self, limit: int = 20) -> List[PopularMaterialReport]:
        report = []
        for material_type, material_id, times_requested, total_quantity in self.repository.get_popular_materials(limit):
            report.append(PopularMaterialReport(
                material_id=material_id,
                type=material_type,
                material_name=self.materials.get_material_name(material_type, material_id),
                unit=resolve_material_type(material_type).unit,
                times_requested=times_requested,
                total_quantity=total_quantity or 0
            ))
        return report

    def get_student_report(self, user_id: Optional[int] = None) -> List[StudentRequestReport]:
        return [
            StudentRequestReport(
                user_id=row[0],
                name=row[1],
                email=row[2],
                total_requests=row[3],
                pending=row[4] or 0,
                approved=row[5] or 0,
                delivered=row[6] or 0,
                rejected=row[7] or 0,
                cancelled=row[8] or 0
            )
            for row in self.repository.get_student_report(user_id)
        ]

    # ===== MANTENIMIENTO =====

    def purge_old_requests(self, days: Optional[int] = None) -> int:
        """Eliminar solicitudes cerradas más antiguas que la retención configurada"""
        retention = settings.request_retention_days if days is None else days
        cutoff = datetime.utcnow() - timedelta(days=retention)

        with transaction(self.db):
            purgeable = self.repository.get_purgeable_requests(cutoff)
            for loan_request in purgeable:
                self.repository.delete_request(loan_request)
            deleted = len(purgeable)

        logger.info(f"Depuración de solicitudes: {deleted} eliminadas (anteriores a {cutoff:%Y-%m-%d})")
        return deleted

    # ===== UTILIDADES =====

    def _get_locked(self, request_id: int) -> LoanRequest:
        loan_request = self.repository.lock_request(request_id)
        if not loan_request:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=REQUEST_NOT_FOUND)
        return loan_request

    def _release_reserved_stock(self, loan_request: LoanRequest, user_id: int):
        if not loan_request.stock_reserved:
            return
        for item in loan_request.items:
            self.ledger.increment(
                item.material_type, item.material_id, item.quantity,
                ChangeType.RELEASE.value,
                user_id=user_id,
                reference_id=loan_request.id
            )
        loan_request.stock_reserved = False

    def _build_response(self, loan_request: LoanRequest) -> LoanRequestResponse:
        items = [
            RequestItemResponse(
                id=item.id,
                material_id=item.material_id,
                type=item.material_type,
                quantity=item.quantity,
                material_name=self.materials.get_material_name(item.material_type, item.material_id)
            )
            for item in loan_request.items
        ]

        return LoanRequestResponse(
            id=loan_request.id,
            folio=loan_request.folio,
            status=RequestStatus(loan_request.status),
            user_id=loan_request.user_id,
            student_name=loan_request.student_name,
            reviewer_id=loan_request.reviewer_id,
            reviewer_name=loan_request.reviewer_name,
            request_date=loan_request.request_date,
            reason=loan_request.reason,
            group_id=loan_request.group_id,
            group_name=loan_request.group.name if loan_request.group else None,
            debt_amount=loan_request.debt_amount,
            delivered_at=loan_request.delivered_at,
            cancel_reason=loan_request.cancel_reason,
            items=items
        )
