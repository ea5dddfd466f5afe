from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session
from typing import Optional, List

from labsync.config.database import get_db
from labsync.core.auth.dependencies import require_capability
from labsync.core.auth.roles import Capability, Role
from labsync.core.auth.schemas import UserResponse
from labsync.modules.requests.schemas import PurgeResponse
from .service import AdminService
from .schemas import (
    UserCreate, UserCreatedResponse, AdminUserResponse, WarehouseUserResponse,
    PermissionUpdate, AdminActionResponse, SystemStats
)

router = APIRouter(prefix="/admin", tags=["Admin - Administrador"])

require_admin = require_capability(Capability.MANAGE_USERS)

# ==================== USUARIOS ====================

@router.post("/users", response_model=UserCreatedResponse, status_code=status.HTTP_201_CREATED)
async def create_user(
    user_data: UserCreate,
    current_user: UserResponse = Depends(require_admin),
    db: Session = Depends(get_db)
):
    """
    Crear usuarios docentes, de almacén o administradores

    **Validaciones:**
    - Correo del dominio institucional
    - Correo único en el sistema
    - Contraseña generada si no se envía
    """
    service = AdminService(db)
    return service.create_user(user_data, current_user)


@router.get("/users", response_model=List[AdminUserResponse])
async def get_users(
    role: Optional[Role] = Query(None, description="Filtrar por rol"),
    current_user: UserResponse = Depends(require_admin),
    db: Session = Depends(get_db)
):
    service = AdminService(db)
    return service.get_users(role.value if role else None)


@router.get("/warehouse-users", response_model=List[WarehouseUserResponse])
async def get_warehouse_users(
    current_user: UserResponse = Depends(require_admin),
    db: Session = Depends(get_db)
):
    """Usuarios de almacén con sus banderas de permiso"""
    service = AdminService(db)
    return service.get_warehouse_users()


@router.put("/permissions", response_model=AdminActionResponse)
async def update_warehouse_permission(
    update: PermissionUpdate,
    current_user: UserResponse = Depends(require_admin),
    db: Session = Depends(get_db)
):
    """Activar o desactivar chat_access / stock_modify de un usuario de almacén"""
    service = AdminService(db)
    return service.update_permission(update, current_user)


@router.put("/users/{user_id}/block", response_model=AdminActionResponse)
async def block_user(
    user_id: int,
    current_user: UserResponse = Depends(require_admin),
    db: Session = Depends(get_db)
):
    service = AdminService(db)
    return service.set_user_active(user_id, False, current_user)


@router.put("/users/{user_id}/unblock", response_model=AdminActionResponse)
async def unblock_user(
    user_id: int,
    current_user: UserResponse = Depends(require_admin),
    db: Session = Depends(get_db)
):
    service = AdminService(db)
    return service.set_user_active(user_id, True, current_user)


@router.delete("/users/{user_id}", response_model=AdminActionResponse)
async def delete_user(
    user_id: int,
    current_user: UserResponse = Depends(require_admin),
    db: Session = Depends(get_db)
):
    """
    Eliminar usuario definitivamente

    No aplica a administradores ni a usuarios con solicitudes registradas.
    """
    service = AdminService(db)
    return service.delete_user(user_id, current_user)

# ==================== ESTADÍSTICAS Y MANTENIMIENTO ====================

@router.get("/stats", response_model=SystemStats)
async def get_system_stats(
    current_user: UserResponse = Depends(require_admin),
    db: Session = Depends(get_db)
):
    """Usuarios por rol, solicitudes por estado y adeudos pendientes"""
    service = AdminService(db)
    return service.get_stats()


@router.post("/maintenance/purge-requests", response_model=PurgeResponse)
async def purge_old_requests(
    days: Optional[int] = Query(None, ge=1, description="Antigüedad mínima en días; por defecto la configurada"),
    current_user: UserResponse = Depends(require_admin),
    db: Session = Depends(get_db)
):
    """Ejecutar ahora la depuración de solicitudes cerradas"""
    service = AdminService(db)
    deleted = service.purge_requests(days, current_user)
    return PurgeResponse(message=f"{deleted} solicitudes eliminadas", deleted=deleted)
