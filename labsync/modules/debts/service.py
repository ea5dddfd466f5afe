import logging
from typing import List
from fastapi import HTTPException, status
from sqlalchemy.orm import Session

from labsync.config.database import transaction
from labsync.core.auth.schemas import UserResponse
from labsync.modules.materials.repository import MaterialRepository, StockLedger
from labsync.modules.materials.schemas import ChangeType
from labsync.modules.requests.schemas import RequestStatus
from labsync.modules.requests.service import REQUEST_NOT_FOUND
from labsync.shared.database.models import Debt
from .repository import DebtRepository
from .schemas import (
    SettleRequest, SettleResponse, SettledItemResponse, DebtItemResponse,
    DebtDetailResponse, DeliveredRequestSummary, DamageReport, DamageResponse
)

logger = logging.getLogger(__name__)


class DebtService:

    def __init__(self, db: Session):
        self.db = db
        self.repository = DebtRepository(db)
        self.materials = MaterialRepository(db)
        self.ledger = StockLedger(db)

    def settle_debts(self, request_id: int, settle_data: SettleRequest, user: UserResponse) -> SettleResponse:
        """
        Registrar devolución de materiales

        Cada renglón indicado reduce su adeudo y regresa la misma cantidad al
        stock. Los renglones no indicados siguen pendientes. Si alguno falla
        no se aplica ninguno.
        """
        if not self.repository.get_request(request_id):
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=REQUEST_NOT_FOUND)

        settled = []
        with transaction(self.db):
            for entry in settle_data.items:
                debt = self.repository.get_debt_for_item(request_id, entry.item_id, for_update=True)
                if not debt:
                    raise HTTPException(
                        status_code=status.HTTP_404_NOT_FOUND,
                        detail=f"No existe adeudo para el renglón {entry.item_id} de la solicitud"
                    )

                quantity = debt.outstanding_quantity if entry.quantity is None else entry.quantity
                if quantity > debt.outstanding_quantity:
                    raise HTTPException(
                        status_code=status.HTTP_400_BAD_REQUEST,
                        detail=f"Cantidad devuelta mayor al adeudo del renglón {entry.item_id}. "
                               f"Pendiente: {debt.outstanding_quantity}, Devuelto: {quantity}"
                    )

                new_stock = self.ledger.available(debt.material_type, debt.material_id)
                if quantity > 0:
                    new_stock = self.ledger.increment(
                        debt.material_type, debt.material_id, quantity,
                        ChangeType.RETURN.value,
                        user_id=user.id,
                        reference_id=request_id
                    )
                    debt.outstanding_quantity -= quantity
                    self.db.flush()

                settled.append(SettledItemResponse(
                    item_id=entry.item_id,
                    returned_quantity=quantity,
                    outstanding_quantity=debt.outstanding_quantity,
                    new_stock=new_stock
                ))

            remaining = self.repository.count_outstanding_by_request(request_id)

        logger.info(
            f"Devolución registrada en solicitud #{request_id} por usuario {user.id}: "
            f"{len(settled)} renglones, {remaining} pendientes"
        )
        return SettleResponse(
            message="Adeudo liquidado" if remaining == 0 else "Devolución parcial registrada",
            request_id=request_id,
            settled_items=settled,
            remaining_items=remaining,
            fully_settled=remaining == 0
        )

    def report_damaged(self, request_id: int, report: DamageReport, user: UserResponse) -> DamageResponse:
        """
        Marcar material entregado como dañado

        La cantidad dañada se suma al adeudo del renglón (o lo crea si ya se
        había liquidado y no existe). El stock no cambia: el ajuste del
        inventario dañado se hace aparte.
        """
        with transaction(self.db):
            loan_request = self.repository.get_request(request_id)
            if not loan_request:
                raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=REQUEST_NOT_FOUND)

            if loan_request.status != RequestStatus.DELIVERED.value:
                raise HTTPException(
                    status_code=status.HTTP_400_BAD_REQUEST,
                    detail="Solo se puede reportar material dañado de solicitudes entregadas"
                )

            item = self.repository.get_item(request_id, report.item_id)
            if not item:
                raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Renglón no encontrado en la solicitud")

            debt = self.repository.get_debt_for_item(request_id, item.id, for_update=True)
            outstanding = debt.outstanding_quantity if debt else 0
            if outstanding + report.quantity > item.quantity:
                raise HTTPException(
                    status_code=status.HTTP_400_BAD_REQUEST,
                    detail=f"La cantidad dañada excede lo entregado. "
                           f"Entregado: {item.quantity}, Pendiente: {outstanding}, Dañado: {report.quantity}"
                )

            if debt:
                debt.outstanding_quantity += report.quantity
                self.db.flush()
            else:
                debt = self.repository.create_debt(loan_request, item, report.quantity)
            outstanding = debt.outstanding_quantity

        logger.info(
            f"Material dañado en solicitud #{request_id}, renglón {item.id}: {report.quantity} "
            f"(usuario {user.id}): {report.description or 'sin descripción'}"
        )
        return DamageResponse(
            message="Material marcado como dañado y adeudo registrado",
            request_id=request_id,
            item_id=report.item_id,
            outstanding_quantity=outstanding
        )

    def get_request_debts(self, request_id: int) -> DebtDetailResponse:
        loan_request = self.repository.get_request(request_id)
        if not loan_request:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=REQUEST_NOT_FOUND)

        return DebtDetailResponse(
            request_id=loan_request.id,
            folio=loan_request.folio,
            student_name=loan_request.student_name,
            reviewer_name=loan_request.reviewer_name,
            delivered_at=loan_request.delivered_at,
            items=[self._build_item(d) for d in self.repository.get_outstanding_by_request(request_id)]
        )

    def get_delivered_with_debt(self) -> List[DeliveredRequestSummary]:
        return [
            DeliveredRequestSummary(
                request_id=loan_request.id,
                folio=loan_request.folio,
                student_name=loan_request.student_name,
                delivered_at=loan_request.delivered_at,
                outstanding_items=count
            )
            for loan_request, count in self.repository.get_delivered_with_debt()
        ]

    def get_my_debts(self, user: UserResponse) -> List[DebtItemResponse]:
        return [self._build_item(d) for d in self.repository.get_outstanding_by_user(user.id)]

    def _build_item(self, debt: Debt) -> DebtItemResponse:
        return DebtItemResponse(
            item_id=debt.request_item_id,
            material_id=debt.material_id,
            type=debt.material_type,
            material_name=self.materials.get_material_name(debt.material_type, debt.material_id),
            outstanding_quantity=debt.outstanding_quantity,
            delivered_at=debt.delivered_at
        )
