from typing import List, Optional
from sqlalchemy.orm import Session
from sqlalchemy import and_, desc, func

from labsync.shared.database.models import Debt, LoanRequest, LoanRequestItem

class DebtRepository:

    def __init__(self, db: Session):
        self.db = db

    def get_request(self, request_id: int) -> Optional[LoanRequest]:
        return self.db.query(LoanRequest).filter(LoanRequest.id == request_id).first()

    def get_debt_for_item(self, request_id: int, item_id: int, for_update: bool = False) -> Optional[Debt]:
        query = self.db.query(Debt).filter(
            and_(Debt.request_id == request_id, Debt.request_item_id == item_id)
        )
        if for_update:
            query = query.with_for_update()
        return query.first()

    def get_outstanding_by_request(self, request_id: int) -> List[Debt]:
        return self.db.query(Debt).filter(
            and_(Debt.request_id == request_id, Debt.outstanding_quantity > 0)
        ).order_by(Debt.request_item_id).all()

    def count_outstanding_by_request(self, request_id: int) -> int:
        return self.db.query(func.count(Debt.id)).filter(
            and_(Debt.request_id == request_id, Debt.outstanding_quantity > 0)
        ).scalar() or 0

    def get_outstanding_by_user(self, user_id: int) -> List[Debt]:
        return self.db.query(Debt).filter(
            and_(Debt.user_id == user_id, Debt.outstanding_quantity > 0)
        ).order_by(desc(Debt.delivered_at), Debt.id).all()

    def get_delivered_with_debt(self):
        """Solicitudes entregadas con al menos un renglón pendiente y su conteo"""
        return self.db.query(LoanRequest, func.count(Debt.id))\
            .join(Debt, Debt.request_id == LoanRequest.id)\
            .filter(Debt.outstanding_quantity > 0)\
            .group_by(LoanRequest.id)\
            .order_by(desc(LoanRequest.delivered_at), desc(LoanRequest.id))\
            .all()

    def get_item(self, request_id: int, item_id: int) -> Optional[LoanRequestItem]:
        return self.db.query(LoanRequestItem).filter(
            and_(LoanRequestItem.id == item_id, LoanRequestItem.request_id == request_id)
        ).first()

    def create_debt(self, loan_request: LoanRequest, item: LoanRequestItem, quantity: int) -> Debt:
        debt = Debt(
            request_id=loan_request.id,
            request_item_id=item.id,
            user_id=loan_request.user_id,
            material_id=item.material_id,
            material_type=item.material_type,
            outstanding_quantity=quantity,
            delivered_at=loan_request.delivered_at
        )
        self.db.add(debt)
        self.db.flush()
        return debt
