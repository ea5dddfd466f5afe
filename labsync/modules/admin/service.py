import logging
from typing import List, Optional
from fastapi import HTTPException, status
from sqlalchemy.orm import Session

from labsync.config.database import transaction
from labsync.config.settings import settings
from labsync.core.auth.roles import Role
from labsync.core.auth.schemas import UserResponse
from labsync.core.auth.security import get_password_hash, generate_random_password
from labsync.modules.requests.service import LoanRequestService
from labsync.shared.database.models import User
from .repository import AdminRepository
from .schemas import (
    UserCreate, UserCreatedResponse, AdminUserResponse, WarehouseUserResponse,
    PermissionUpdate, AdminActionResponse, RoleStats, SystemStats
)

logger = logging.getLogger(__name__)

USER_NOT_FOUND = "Usuario no encontrado"


class AdminService:

    def __init__(self, db: Session):
        self.db = db
        self.repository = AdminRepository(db)

    # ==================== CREAR USUARIOS ====================

    def create_user(self, user_data: UserCreate, admin: UserResponse) -> UserCreatedResponse:
        """
        Crear usuario activo

        Los usuarios de almacén nacen con su registro de permisos en False.
        Si no se envía contraseña se genera una aleatoria y se devuelve una vez.
        """
        email = user_data.email.lower()
        if not email.endswith("@" + settings.institutional_email_domain):
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="Correo institucional inválido"
            )

        if self.repository.get_user_by_email(email):
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="El correo ya está registrado"
            )

        generated_password = None
        password = user_data.password
        if not password:
            generated_password = password = generate_random_password()

        with transaction(self.db):
            user = self.repository.create_user({
                "name": user_data.name,
                "email": email,
                "password_hash": get_password_hash(password),
                "role": user_data.role.value,
                "is_active": True,
                "group_id": user_data.group_id,
            })
            if user.role == Role.WAREHOUSE.value:
                self.repository.get_or_create_permission(user.id)
            response_user = AdminUserResponse.model_validate(user)

        logger.info(f"Usuario {response_user.id} ({response_user.role}) creado por administrador {admin.id}")
        return UserCreatedResponse(
            message="Usuario creado exitosamente",
            user=response_user,
            generated_password=generated_password
        )

    def get_users(self, role: Optional[str] = None) -> List[AdminUserResponse]:
        return [AdminUserResponse.model_validate(u) for u in self.repository.get_users(role)]

    def get_warehouse_users(self) -> List[WarehouseUserResponse]:
        users = []
        for user in self.repository.get_warehouse_users():
            permission = user.warehouse_permission
            users.append(WarehouseUserResponse(
                id=user.id,
                name=user.name,
                email=user.email,
                role=user.role,
                is_active=user.is_active,
                group_id=user.group_id,
                created_at=user.created_at,
                chat_access=permission.chat_access if permission else False,
                stock_modify=permission.stock_modify if permission else False
            ))
        return users

    # ==================== PERMISOS DE ALMACÉN ====================

    def update_permission(self, update: PermissionUpdate, admin: UserResponse) -> AdminActionResponse:
        with transaction(self.db):
            user = self.repository.get_user(update.user_id)
            if not user or user.role != Role.WAREHOUSE.value:
                raise HTTPException(
                    status_code=status.HTTP_404_NOT_FOUND,
                    detail="Usuario de almacén no encontrado"
                )

            permission = self.repository.get_or_create_permission(user.id)
            setattr(permission, update.field.value, update.value)

        logger.info(
            f"Permiso {update.field.value}={update.value} para usuario {update.user_id} "
            f"por administrador {admin.id}"
        )
        return AdminActionResponse(message="Permisos actualizados", user_id=update.user_id)

    # ==================== BLOQUEO Y ELIMINACIÓN ====================

    def set_user_active(self, user_id: int, active: bool, admin: UserResponse) -> AdminActionResponse:
        if user_id == admin.id and not active:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="No puedes bloquear tu propia cuenta"
            )

        with transaction(self.db):
            user = self._get_user_or_404(user_id)
            user.is_active = active

        logger.info(f"Usuario {user_id} {'desbloqueado' if active else 'bloqueado'} por administrador {admin.id}")
        return AdminActionResponse(
            message="Usuario desbloqueado" if active else "Usuario bloqueado",
            user_id=user_id
        )

    def delete_user(self, user_id: int, admin: UserResponse) -> AdminActionResponse:
        """Eliminación definitiva; arrastra el registro de permisos de almacén"""
        with transaction(self.db):
            user = self._get_user_or_404(user_id)

            if user.role == Role.ADMIN.value:
                raise HTTPException(
                    status_code=status.HTTP_400_BAD_REQUEST,
                    detail="No se puede eliminar un usuario administrador"
                )

            if self.repository.user_has_requests(user_id):
                raise HTTPException(
                    status_code=status.HTTP_400_BAD_REQUEST,
                    detail="No se puede eliminar un usuario con solicitudes registradas"
                )

            self.repository.delete_user(user)

        logger.info(f"Usuario {user_id} eliminado por administrador {admin.id}")
        return AdminActionResponse(message="Usuario eliminado exitosamente", user_id=user_id)

    # ==================== ESTADÍSTICAS Y MANTENIMIENTO ====================

    def get_stats(self) -> SystemStats:
        users_by_role = [
            RoleStats(role=role, total=total, active=active or 0, blocked=total - (active or 0))
            for role, total, active in self.repository.get_user_counts_by_role()
        ]
        return SystemStats(
            users_by_role=users_by_role,
            requests_by_status=self.repository.get_request_counts_by_status(),
            outstanding_debts=self.repository.count_outstanding_debts()
        )

    def purge_requests(self, days: Optional[int], admin: UserResponse) -> int:
        logger.info(f"Depuración manual solicitada por administrador {admin.id}")
        return LoanRequestService(self.db).purge_old_requests(days)

    def _get_user_or_404(self, user_id: int) -> User:
        user = self.repository.get_user(user_id)
        if not user:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=USER_NOT_FOUND)
        return user
