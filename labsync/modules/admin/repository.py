from typing import Dict, List, Optional, Tuple
from sqlalchemy.orm import Session, joinedload
from sqlalchemy import case, exists, func, or_

from labsync.core.auth.roles import Role
from labsync.shared.database.models import User, WarehousePermission, LoanRequest, Debt

class AdminRepository:

    def __init__(self, db: Session):
        self.db = db

    # ===== USUARIOS =====

    def get_user(self, user_id: int) -> Optional[User]:
        return self.db.query(User).filter(User.id == user_id).first()

    def get_user_by_email(self, email: str) -> Optional[User]:
        return self.db.query(User).filter(func.lower(User.email) == email.lower()).first()

    def create_user(self, user_data: dict) -> User:
        user = User(**user_data)
        self.db.add(user)
        self.db.flush()
        return user

    def get_users(self, role: Optional[str] = None) -> List[User]:
        query = self.db.query(User)
        if role:
            query = query.filter(User.role == role)
        return query.order_by(User.name).all()

    def get_warehouse_users(self) -> List[User]:
        return self.db.query(User)\
            .options(joinedload(User.warehouse_permission))\
            .filter(User.role == Role.WAREHOUSE.value)\
            .order_by(User.name)\
            .all()

    def user_has_requests(self, user_id: int) -> bool:
        """Solicitudes propias o asignadas como revisor"""
        return self.db.query(
            exists().where(or_(LoanRequest.user_id == user_id, LoanRequest.reviewer_id == user_id))
        ).scalar()

    def delete_user(self, user: User):
        self.db.delete(user)
        self.db.flush()

    # ===== PERMISOS =====

    def get_or_create_permission(self, user_id: int) -> WarehousePermission:
        permission = self.db.query(WarehousePermission)\
            .filter(WarehousePermission.user_id == user_id)\
            .first()
        if not permission:
            permission = WarehousePermission(user_id=user_id, chat_access=False, stock_modify=False)
            self.db.add(permission)
            self.db.flush()
        return permission

    # ===== ESTADÍSTICAS =====

    def get_user_counts_by_role(self) -> List[Tuple[str, int, int]]:
        return self.db.query(
            User.role,
            func.count(User.id),
            func.sum(case((User.is_active == True, 1), else_=0))
        ).group_by(User.role).all()

    def get_request_counts_by_status(self) -> Dict[str, int]:
        rows = self.db.query(LoanRequest.status, func.count(LoanRequest.id))\
            .group_by(LoanRequest.status)\
            .all()
        return {status: count for status, count in rows}

    def count_outstanding_debts(self) -> int:
        return self.db.query(func.count(Debt.id))\
            .filter(Debt.outstanding_quantity > 0)\
            .scalar() or 0
