"""Dependencias FastAPI: usuario actual desde el JWT y guardas de rol/capacidad."""
from typing import List, Optional, Union

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.orm import Session

from labsync.config.database import get_db
from labsync.core.auth.roles import Capability, Role, has_capability
from labsync.core.auth.schemas import UserResponse, WarehousePermissions
from labsync.core.auth.security import get_user_id_from_token
from labsync.shared.database.models import User

http_bearer = HTTPBearer(auto_error=False)


def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(http_bearer),
    db: Session = Depends(get_db)
) -> UserResponse:
    """Cargar el usuario activo del token; para almacén adjunta sus permisos"""
    if not credentials:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Token no proporcionado",
            headers={"WWW-Authenticate": "Bearer"},
        )

    user_id = get_user_id_from_token(credentials.credentials)
    if user_id is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Token inválido")

    user = db.query(User).filter(User.id == user_id, User.is_active == True).first()
    if not user:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Usuario no encontrado o inactivo"
        )

    permissions = WarehousePermissions()
    if user.role == Role.WAREHOUSE.value and user.warehouse_permission:
        permissions = WarehousePermissions(
            chat_access=user.warehouse_permission.chat_access,
            stock_modify=user.warehouse_permission.stock_modify
        )

    return UserResponse(
        id=user.id,
        name=user.name,
        email=user.email,
        role=user.role,
        is_active=user.is_active,
        group_id=user.group_id,
        permissions=permissions
    )


def require_roles(allowed_roles: List[Union[Role, str]]):
    """Dependencia que exige uno de los roles indicados"""
    allowed = {r.value if isinstance(r, Role) else r for r in allowed_roles}

    def role_checker(current_user: UserResponse = Depends(get_current_user)) -> UserResponse:
        if current_user.role not in allowed:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Acceso denegado: rol insuficiente"
            )
        return current_user

    return role_checker


def require_capability(capability: Capability):
    """Dependencia que consulta la tabla de capacidades y las banderas de almacén"""

    def capability_checker(current_user: UserResponse = Depends(get_current_user)) -> UserResponse:
        if not has_capability(current_user.role, capability, current_user.permissions.model_dump()):
            if capability in (Capability.MODIFY_STOCK, Capability.DELIVER_REQUEST):
                detail = "Acceso denegado. Se requieren permisos para modificar stock."
            else:
                detail = "Acceso denegado: rol insuficiente"
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=detail)
        return current_user

    return capability_checker
