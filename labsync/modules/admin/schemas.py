from pydantic import BaseModel, Field, EmailStr, ConfigDict, field_validator
from typing import Dict, List, Optional
from datetime import datetime
from enum import Enum

class ManagedRole(str, Enum):
    """Roles que puede crear el administrador"""
    TEACHER = "teacher"
    WAREHOUSE = "warehouse"
    ADMIN = "admin"

class PermissionField(str, Enum):
    CHAT_ACCESS = "chat_access"
    STOCK_MODIFY = "stock_modify"

# ==================== GESTIÓN DE USUARIOS ====================

class UserCreate(BaseModel):
    """Crear usuario activo (docente, almacén o administrador)"""
    name: str = Field(..., min_length=2, max_length=255, description="Nombre completo")
    email: EmailStr = Field(..., description="Correo institucional único")
    role: ManagedRole = Field(..., description="Rol del usuario")
    password: Optional[str] = Field(None, min_length=6, description="Contraseña; se genera si se omite")
    group_id: Optional[int] = Field(None, description="Grupo escolar")

    @field_validator('name')
    @classmethod
    def validate_name(cls, v: str):
        if not v.strip():
            raise ValueError('El nombre no puede estar vacío')
        return v.strip()

class PermissionUpdate(BaseModel):
    user_id: int = Field(..., gt=0)
    field: PermissionField = Field(..., description="chat_access o stock_modify")
    value: bool

class AdminUserResponse(BaseModel):
    id: int
    name: str
    email: str
    role: str
    is_active: bool
    group_id: Optional[int] = None
    created_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)

class UserCreatedResponse(BaseModel):
    success: bool = True
    message: str
    user: AdminUserResponse
    generated_password: Optional[str] = Field(None, description="Solo cuando la contraseña se generó")

class WarehouseUserResponse(AdminUserResponse):
    chat_access: bool = False
    stock_modify: bool = False

class AdminActionResponse(BaseModel):
    success: bool = True
    message: str
    user_id: int

# ==================== ESTADÍSTICAS ====================

class RoleStats(BaseModel):
    role: str
    total: int
    active: int
    blocked: int

class SystemStats(BaseModel):
    users_by_role: List[RoleStats]
    requests_by_status: Dict[str, int]
    outstanding_debts: int
