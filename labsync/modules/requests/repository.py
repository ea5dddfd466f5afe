from datetime import datetime
from typing import List, Optional
from sqlalchemy.orm import Session, joinedload, selectinload
from sqlalchemy import and_, or_, case, desc, exists, func

from labsync.core.auth.roles import Role
from labsync.shared.database.models import LoanRequest, LoanRequestItem, Debt, User, Group
from .schemas import RequestStatus

class LoanRequestRepository:
    """Acceso a datos de solicitudes; no hace commit, la transacción la abre el servicio"""

    def __init__(self, db: Session):
        self.db = db

    # ===== CRUD BÁSICO =====

    def create_request(self, request_data: dict) -> LoanRequest:
        loan_request = LoanRequest(**request_data)
        self.db.add(loan_request)
        self.db.flush()
        return loan_request

    def add_item(self, request_id: int, material_id: int, material_type: str, quantity: int) -> LoanRequestItem:
        item = LoanRequestItem(
            request_id=request_id,
            material_id=material_id,
            material_type=material_type,
            quantity=quantity
        )
        self.db.add(item)
        self.db.flush()
        return item

    def get_request_by_id(self, request_id: int) -> Optional[LoanRequest]:
        return self.db.query(LoanRequest).options(
            selectinload(LoanRequest.items),
            joinedload(LoanRequest.group)
        ).filter(LoanRequest.id == request_id).first()

    def lock_request(self, request_id: int) -> Optional[LoanRequest]:
        """Leer la solicitud bloqueando su renglón para la transición de estado"""
        return self.db.query(LoanRequest)\
            .filter(LoanRequest.id == request_id)\
            .with_for_update()\
            .first()

    def delete_request(self, loan_request: LoanRequest):
        self.db.delete(loan_request)
        self.db.flush()

    def folio_exists(self, folio: str) -> bool:
        return self.db.query(exists().where(LoanRequest.folio == folio)).scalar()

    # ===== USUARIOS =====

    def get_active_teacher(self, teacher_id: int) -> Optional[User]:
        return self.db.query(User).filter(
            and_(
                User.id == teacher_id,
                User.role == Role.TEACHER.value,
                User.is_active == True
            )
        ).first()

    def get_first_active_teacher(self) -> Optional[User]:
        return self.db.query(User).filter(
            and_(User.role == Role.TEACHER.value, User.is_active == True)
        ).order_by(User.id).first()

    def get_group(self, group_id: Optional[int]) -> Optional[Group]:
        if group_id is None:
            return None
        return self.db.query(Group).filter(Group.id == group_id).first()

    def has_outstanding_debt(self, user_id: int) -> bool:
        return self.db.query(
            exists().where(and_(Debt.user_id == user_id, Debt.outstanding_quantity > 0))
        ).scalar()

    # ===== DEUDAS =====

    def create_debt(self, loan_request: LoanRequest, item: LoanRequestItem, delivered_at: datetime) -> Debt:
        debt = Debt(
            request_id=loan_request.id,
            request_item_id=item.id,
            user_id=loan_request.user_id,
            material_id=item.material_id,
            material_type=item.material_type,
            outstanding_quantity=item.quantity,
            delivered_at=delivered_at
        )
        self.db.add(debt)
        return debt

    # ===== CONSULTAS POR ROL =====

    def _base_query(self):
        return self.db.query(LoanRequest).options(
            selectinload(LoanRequest.items),
            joinedload(LoanRequest.group)
        )

    def get_requests_by_user(self, user_id: int) -> List[LoanRequest]:
        return self._base_query()\
            .filter(LoanRequest.user_id == user_id)\
            .order_by(desc(LoanRequest.request_date), desc(LoanRequest.id))\
            .all()

    def get_requests(
        self,
        status_filter: Optional[List[str]] = None,
        date_from: Optional[datetime] = None,
        date_to: Optional[datetime] = None,
        material_type: Optional[str] = None,
        user_id: Optional[int] = None,
        search: Optional[str] = None
    ) -> List[LoanRequest]:
        query = self._base_query()
        if status_filter:
            query = query.filter(LoanRequest.status.in_(status_filter))
        if date_from:
            query = query.filter(LoanRequest.request_date >= date_from)
        if date_to:
            query = query.filter(LoanRequest.request_date <= date_to)
        if user_id:
            query = query.filter(LoanRequest.user_id == user_id)
        if material_type:
            query = query.filter(exists().where(and_(
                LoanRequestItem.request_id == LoanRequest.id,
                LoanRequestItem.material_type == material_type
            )))
        if search:
            term = f"%{search}%"
            query = query.filter(or_(
                LoanRequest.folio.ilike(term),
                LoanRequest.student_name.ilike(term),
                LoanRequest.reviewer_name.ilike(term),
                LoanRequest.reason.ilike(term)
            ))
        return query.order_by(desc(LoanRequest.request_date), desc(LoanRequest.id)).all()

    # ===== REPORTES =====

    def get_popular_materials(self, limit: int):
        """Materiales más pedidos en solicitudes aprobadas o entregadas"""
        times_requested = func.count(LoanRequestItem.id)
        total_quantity = func.sum(LoanRequestItem.quantity)
        return self.db.query(
            LoanRequestItem.material_type,
            LoanRequestItem.material_id,
            times_requested,
            total_quantity
        ).join(LoanRequest, LoanRequestItem.request_id == LoanRequest.id)\
            .filter(LoanRequest.status.in_([RequestStatus.APPROVED.value, RequestStatus.DELIVERED.value]))\
            .group_by(LoanRequestItem.material_type, LoanRequestItem.material_id)\
            .order_by(desc(times_requested), desc(total_quantity), LoanRequestItem.material_id)\
            .limit(limit)\
            .all()

    def get_student_report(self, user_id: Optional[int] = None):
        """Alumnos con su conteo de solicitudes por estado"""
        def count_status(request_status: RequestStatus):
            return func.sum(case((LoanRequest.status == request_status.value, 1), else_=0))

        total = func.count(LoanRequest.id)
        query = self.db.query(
            User.id,
            User.name,
            User.email,
            total,
            count_status(RequestStatus.PENDING),
            count_status(RequestStatus.APPROVED),
            count_status(RequestStatus.DELIVERED),
            count_status(RequestStatus.REJECTED),
            count_status(RequestStatus.CANCELLED)
        ).outerjoin(LoanRequest, LoanRequest.user_id == User.id)\
            .filter(User.role == Role.STUDENT.value)
        if user_id:
            query = query.filter(User.id == user_id)
        return query.group_by(User.id, User.name, User.email)\
            .order_by(desc(total), User.name)\
            .all()

    # ===== MANTENIMIENTO =====

    def get_purgeable_requests(self, older_than: datetime) -> List[LoanRequest]:
        """
        Solicitudes viejas sin efectos pendientes: rechazadas, canceladas o
        entregadas sin adeudo. Nunca las que retienen stock reservado.
        """
        outstanding = exists().where(
            and_(Debt.request_id == LoanRequest.id, Debt.outstanding_quantity > 0)
        )
        return self.db.query(LoanRequest).filter(
            and_(
                LoanRequest.created_at < older_than,
                LoanRequest.stock_reserved == False,
                or_(
                    LoanRequest.status.in_([RequestStatus.REJECTED.value, RequestStatus.CANCELLED.value]),
                    and_(LoanRequest.status == RequestStatus.DELIVERED.value, ~outstanding)
                )
            )
        ).all()
